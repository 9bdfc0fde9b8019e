from __future__ import annotations

"""Engine settings from defaults, an optional YAML file, and environment overrides."""

import os
from dataclasses import dataclass, fields, replace
from pathlib import Path
from typing import Any

import yaml
from jsonschema import Draft202012Validator

from .paths import credscope_home


CONFIG_FILENAME = "config.yaml"
CONFIG_SCHEMA: dict[str, Any] = {
    "$schema": "https://json-schema.org/draft/2020-12/schema",
    "type": "object",
    "additionalProperties": False,
    "properties": {
        "trace": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "capacity": {"type": "integer", "minimum": 1},
                "delay_scale": {"type": "number", "minimum": 0},
            },
        },
        "boost": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "warmup_seconds": {"type": "number", "minimum": 0},
                "score_ceiling": {"type": "number", "exclusiveMinimum": 0, "maximum": 100},
            },
        },
        "advisor": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "url": {"type": ["string", "null"]},
                "api_key": {"type": ["string", "null"]},
                "timeout_seconds": {"type": "number", "exclusiveMinimum": 0},
            },
        },
        "vault": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "default_ttl_days": {"type": "integer", "minimum": 1},
            },
        },
        "telemetry": {
            "type": "object",
            "additionalProperties": False,
            "properties": {
                "retention_days": {"type": "integer", "minimum": 1},
            },
        },
    },
}

# (section, key) in the YAML file for every Settings field.
_FILE_KEYS = {
    "trace_capacity": ("trace", "capacity"),
    "trace_delay_scale": ("trace", "delay_scale"),
    "boost_warmup_seconds": ("boost", "warmup_seconds"),
    "boost_score_ceiling": ("boost", "score_ceiling"),
    "advisor_url": ("advisor", "url"),
    "advisor_api_key": ("advisor", "api_key"),
    "advisor_timeout_seconds": ("advisor", "timeout_seconds"),
    "vault_default_ttl_days": ("vault", "default_ttl_days"),
    "telemetry_retention_days": ("telemetry", "retention_days"),
}


@dataclass(frozen=True)
class Settings:
    trace_capacity: int = 50
    trace_delay_scale: float = 1.0
    boost_warmup_seconds: float = 2.5
    boost_score_ceiling: float = 95.0
    advisor_url: str | None = None
    advisor_api_key: str | None = None
    advisor_timeout_seconds: float = 30.0
    vault_default_ttl_days: int = 90
    telemetry_retention_days: int = 30

    def to_dict(self, *, include_secrets: bool = False) -> dict[str, Any]:
        payload = {field.name: getattr(self, field.name) for field in fields(self)}
        if not include_secrets:
            payload["advisor_api_key"] = "[set]" if self.advisor_api_key else None
        return payload


def _env_float(name: str, fallback: float, *, allow_zero: bool = True) -> float:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = float(raw)
    except ValueError:
        return fallback
    if value < 0 or (value == 0 and not allow_zero):
        return fallback
    return value


def _env_days(name: str, fallback: int) -> int:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return fallback
    try:
        value = int(raw)
    except ValueError:
        return fallback
    if value <= 0:
        return fallback
    return value


def _env_text(name: str, fallback: str | None) -> str | None:
    raw = os.environ.get(name, "").strip()
    return raw or fallback


def config_path(home: Path | None = None) -> Path:
    configured = os.environ.get("CREDSCOPE_CONFIG")
    if configured:
        return Path(configured).expanduser().resolve()
    return (home or credscope_home()) / CONFIG_FILENAME


def load_config_file(path: Path) -> dict[str, Any]:
    """Load and validate a YAML settings file; a missing file is an empty config."""

    if not path.exists():
        return {}
    try:
        payload = yaml.safe_load(path.read_text(encoding="utf-8"))
    except yaml.YAMLError as exc:
        raise ValueError(f"Config file is not valid YAML: {path}") from exc
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValueError(f"Config file must be a mapping: {path}")
    validator = Draft202012Validator(CONFIG_SCHEMA)
    errors = sorted(validator.iter_errors(payload), key=lambda err: list(err.path))
    if errors:
        first = errors[0]
        where = ".".join(str(part) for part in first.path) or "<root>"
        raise ValueError(f"Config schema validation failed for {path} at {where}: {first.message}")
    return payload


def load_settings(home: Path | None = None, *, path: Path | None = None) -> Settings:
    settings = Settings()
    file_payload = load_config_file(path or config_path(home))
    overrides: dict[str, Any] = {}
    for name, (section, key) in _FILE_KEYS.items():
        node = file_payload.get(section)
        if isinstance(node, dict) and key in node:
            overrides[name] = node[key]
    settings = replace(settings, **overrides)

    return replace(
        settings,
        trace_delay_scale=_env_float("CREDSCOPE_TRACE_DELAY_SCALE", settings.trace_delay_scale),
        boost_warmup_seconds=_env_float("CREDSCOPE_BOOST_WARMUP_SECONDS", settings.boost_warmup_seconds),
        advisor_url=_env_text("CREDSCOPE_ADVISOR_URL", settings.advisor_url),
        advisor_api_key=_env_text("CREDSCOPE_ADVISOR_API_KEY", settings.advisor_api_key),
        advisor_timeout_seconds=_env_float(
            "CREDSCOPE_ADVISOR_TIMEOUT", settings.advisor_timeout_seconds, allow_zero=False
        ),
        telemetry_retention_days=_env_days("CREDSCOPE_TELEMETRY_RETENTION_DAYS", settings.telemetry_retention_days),
    )
