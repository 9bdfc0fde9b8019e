from __future__ import annotations

import argparse
import asyncio
import json
import os
from pathlib import Path
from typing import Any
from uuid import uuid4

import uvicorn

from .api import create_app
from .errors import CredscopeError
from .service import CredscopeService
from .vault import CaptureKind


def _service() -> CredscopeService:
    return CredscopeService.create()


def _print(payload: Any) -> None:
    print(json.dumps(payload, indent=2, ensure_ascii=False))


def _parse_numbers(raw: str | None, cast: type) -> list[Any]:
    if not raw:
        return []
    return [cast(part) for part in raw.split(",") if part.strip()]


def _parse_substitution(raw: str) -> tuple[str, str]:
    source, sep, replacement = raw.partition("=")
    if not sep or not source:
        raise argparse.ArgumentTypeError("substitution must look like FROM=TO")
    return source, replacement


async def _analyze_flow(service: CredscopeService, args: argparse.Namespace, context: dict[str, str]) -> dict[str, Any]:
    try:
        await service.analyze(args.text, kind=args.kind, **context)
        result = service.snapshot()
        if args.save:
            result["saved"] = service.save_current(**context)
        return result
    finally:
        await service.close()


async def _boost_flow(service: CredscopeService, args: argparse.Namespace, context: dict[str, str]) -> dict[str, Any]:
    try:
        await service.analyze(args.text, **context)
        if not args.manual:
            await service.boost_auto(**context)
        else:
            session = await service.boost_manual(**context)
            if session is not None:
                for text in args.insert:
                    service.insert(text, **context)
                for source, replacement in args.sub:
                    service.substitute(source, replacement, **context)
                await service.commit_session(**context)
        result = service.snapshot()
        if args.save:
            result["saved"] = service.save_current(**context)
        return result
    finally:
        await service.close()


async def _fingerprint_flow(
    service: CredscopeService, args: argparse.Namespace, context: dict[str, str]
) -> dict[str, Any]:
    try:
        await service.capture(
            args.kind,
            samples=_parse_numbers(args.samples, float),
            pixels=_parse_numbers(args.pixels, int),
            device_id=args.device_id,
            **context,
        )
        result = service.snapshot()
        if args.save:
            result["saved"] = service.save_current(**context)
        return result
    finally:
        await service.close()


def main() -> int:
    parser = argparse.ArgumentParser(description="credscope credential hygiene CLI")
    sub = parser.add_subparsers(dest="command", required=True)
    default_actor_id = os.environ.get("CREDSCOPE_ACTOR_ID", "unknown")
    kinds = [kind.value for kind in CaptureKind]

    analyze_cmd = sub.add_parser("analyze", help="Analyze one credential")
    analyze_cmd.add_argument("text", help="Credential text to analyze")
    analyze_cmd.add_argument("--kind", default="text", choices=kinds)
    analyze_cmd.add_argument("--save", action="store_true", help="Archive the credential when the scan completes")
    analyze_cmd.add_argument("--actor-id", default=default_actor_id, help="Telemetry actor identifier")

    boost_cmd = sub.add_parser("boost", help="Analyze then strengthen a credential")
    boost_cmd.add_argument("text", help="Credential text to boost")
    boost_cmd.add_argument("--manual", action="store_true", help="Use the manual mutation strategy")
    boost_cmd.add_argument("--insert", action="append", default=[], help="Text to append (repeatable)")
    boost_cmd.add_argument(
        "--sub", action="append", default=[], type=_parse_substitution, help="Substitution FROM=TO (repeatable)"
    )
    boost_cmd.add_argument("--save", action="store_true")
    boost_cmd.add_argument("--actor-id", default=default_actor_id, help="Telemetry actor identifier")

    fingerprint_cmd = sub.add_parser("fingerprint", help="Reduce a captured signal to a credential and analyze it")
    fingerprint_cmd.add_argument("kind", choices=["voice", "retina", "bio"])
    fingerprint_cmd.add_argument("--samples", default=None, help="Comma separated frequency magnitudes")
    fingerprint_cmd.add_argument("--pixels", default=None, help="Comma separated RGBA byte values")
    fingerprint_cmd.add_argument("--device-id", default=None, help="Platform authenticator credential id")
    fingerprint_cmd.add_argument("--save", action="store_true")
    fingerprint_cmd.add_argument("--actor-id", default=default_actor_id, help="Telemetry actor identifier")

    vault_cmd = sub.add_parser("vault", help="Vault operations")
    vault_sub = vault_cmd.add_subparsers(dest="vault_command", required=True)
    vault_list = vault_sub.add_parser("list", help="List entries with masked secrets")
    vault_list.add_argument("--kind", default=None, choices=kinds)
    vault_list.add_argument("--trashed", action="store_true", help="List the recycle bin instead")
    for name, help_text in (
        ("delete", "Move an entry to the recycle bin"),
        ("restore", "Restore an entry from the recycle bin"),
        ("purge", "Permanently remove a recycled entry"),
        ("reveal", "Print an entry's plaintext and stamp its access time"),
    ):
        entry_cmd = vault_sub.add_parser(name, help=help_text)
        entry_cmd.add_argument("entry_id")
        entry_cmd.add_argument("--actor-id", default=default_actor_id, help="Telemetry actor identifier")
    vault_describe = vault_sub.add_parser("describe", help="Set an entry description")
    vault_describe.add_argument("entry_id")
    vault_describe.add_argument("description")
    vault_describe.add_argument("--actor-id", default=default_actor_id, help="Telemetry actor identifier")
    vault_expire = vault_sub.add_parser("expire", help="Set an entry expiry date (YYYY-MM-DD or 'none')")
    vault_expire.add_argument("entry_id")
    vault_expire.add_argument("date")
    vault_expire.add_argument("--actor-id", default=default_actor_id, help="Telemetry actor identifier")

    api_cmd = sub.add_parser("api", help="Run local API server")
    api_cmd.add_argument("--host", default="127.0.0.1")
    api_cmd.add_argument("--port", type=int, default=8000)

    telemetry_cmd = sub.add_parser("telemetry", help="Telemetry operations")
    telemetry_sub = telemetry_cmd.add_subparsers(dest="telemetry_command", required=True)
    telemetry_sub.add_parser("status", help="Show telemetry status")
    telemetry_purge = telemetry_sub.add_parser("purge", help="Purge local telemetry events older than a range")
    telemetry_purge.add_argument("--older-than", default=None, help="Range like 30d or 720h")
    telemetry_purge.add_argument("--actor-id", default=default_actor_id, help="Telemetry actor identifier")
    telemetry_export = telemetry_sub.add_parser("export", help="Export aggregated telemetry summary")
    telemetry_export.add_argument("--range", default="7d", help="Range window like 7d or 24h")
    telemetry_export.add_argument("--out", default=None, help="Optional output JSON path")

    args = parser.parse_args()
    service = _service()
    trace_id = f"cli:{uuid4()}"
    context = {"source": "cli", "actor_id": getattr(args, "actor_id", default_actor_id), "trace_id": trace_id}

    try:
        if args.command == "analyze":
            _print(asyncio.run(_analyze_flow(service, args, context)))
            return 0

        if args.command == "boost":
            _print(asyncio.run(_boost_flow(service, args, context)))
            return 0

        if args.command == "fingerprint":
            _print(asyncio.run(_fingerprint_flow(service, args, context)))
            return 0

        if args.command == "vault":
            if args.vault_command == "list":
                _print(service.vault_view(args.kind, trashed=args.trashed))
                return 0
            if args.vault_command == "delete":
                _print(service.delete_entry(args.entry_id, **context))
                return 0
            if args.vault_command == "restore":
                _print(service.restore_entry(args.entry_id, **context))
                return 0
            if args.vault_command == "purge":
                _print(service.purge_entry(args.entry_id, **context))
                return 0
            if args.vault_command == "reveal":
                _print(service.reveal_entry(args.entry_id, **context))
                return 0
            if args.vault_command == "describe":
                _print(service.describe_entry(args.entry_id, args.description, **context))
                return 0
            if args.vault_command == "expire":
                expires_at = None if args.date.strip().lower() == "none" else args.date
                _print(service.set_expiry(args.entry_id, expires_at, **context))
                return 0

        if args.command == "api":
            app = create_app(service)
            uvicorn.run(app, host=args.host, port=args.port, log_level="info")
            return 0

        if args.command == "telemetry":
            if args.telemetry_command == "status":
                _print(service.telemetry_status())
                return 0
            if args.telemetry_command == "purge":
                _print(service.telemetry_purge(older_than=args.older_than, **context))
                return 0
            if args.telemetry_command == "export":
                out_path = Path(args.out) if args.out else service.dirs["exports"] / "telemetry_summary.json"
                _print(service.telemetry_export(args.range, out_path))
                return 0
    except CredscopeError as exc:
        _print({"error": exc.to_dict()})
        return 1
    except ValueError as exc:
        _print({"error": {"code": "INVALID_ARGUMENT", "message": str(exc)}})
        return 1

    return 1


if __name__ == "__main__":
    raise SystemExit(main())
