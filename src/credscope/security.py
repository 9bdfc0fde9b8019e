from __future__ import annotations

import hashlib
import re
from typing import Any


SECRET_VALUE_PATTERNS = [
    re.compile(r"\bsk-[A-Za-z0-9]{16,}\b"),
    re.compile(r"\bsk_(?:live|test)_[A-Za-z0-9]{16,}\b"),
    re.compile(r"\bgh[pousr]_[A-Za-z0-9]{20,}\b"),
    re.compile(r"\bxox[baprs]-[A-Za-z0-9-]{20,}\b"),
    re.compile(r"\bAKIA[0-9A-Z]{16}\b"),
    re.compile(r"\bAIza[0-9A-Za-z\-_]{20,}\b"),
    re.compile(r"\b[A-Za-z0-9\-_]{16,}\.[A-Za-z0-9\-_]{16,}\.[A-Za-z0-9\-_]{16,}\b"),  # JWT-like
    re.compile(r"\b(?:Bearer|Token)\s+[A-Za-z0-9\-_\.]{16,}\b", re.IGNORECASE),
    re.compile(
        r"\b(?=[A-Za-z0-9+/=]{40,}\b)(?=[A-Za-z0-9+/=]*[A-Z])(?=[A-Za-z0-9+/=]*[a-z])(?=[A-Za-z0-9+/=]*\d)[A-Za-z0-9+/=]{40,}\b"
    ),  # high-entropy token/base64-like
    re.compile(r"-----BEGIN (?:RSA|EC|OPENSSH|PRIVATE) KEY-----"),
]

FINGERPRINT_PATTERNS = {
    "voice": re.compile(r"^VOICE-AUTH-[A-Z0-9-]+"),
    "retina": re.compile(r"^RETINA-ID:[0-9a-f]+-[A-Z0-9]+$"),
    "bio": re.compile(r"^BIO-(?:PRNT-SIM|AUTH-DEVICE)-"),
}

PII_PATTERNS = [
    re.compile(r"\b\d{3}-\d{2}-\d{4}\b"),  # SSN-like
    re.compile(r"\b[\w\.-]+@[\w\.-]+\.\w{2,}\b"),  # email
    re.compile(r"\b(?:\d{1,3}\.){3}\d{1,3}\b"),  # IPv4
]

MASK_CHAR = "•"


def is_secret_like_text(text: str) -> bool:
    for pattern in SECRET_VALUE_PATTERNS:
        if pattern.search(text):
            return True
    return infer_fingerprint_kind(text) is not None


def infer_fingerprint_kind(text: str) -> str | None:
    """Return the capture modality a fingerprint string was produced by, if any."""

    for kind, pattern in FINGERPRINT_PATTERNS.items():
        if pattern.search(text):
            return kind
    return None


def payload_contains_secrets(payload: Any) -> bool:
    if isinstance(payload, str):
        return is_secret_like_text(payload)
    if isinstance(payload, list):
        return any(payload_contains_secrets(item) for item in payload)
    if isinstance(payload, dict):
        return any(payload_contains_secrets(value) for value in payload.values())
    return False


def payload_contains_pii(payload: Any) -> bool:
    if isinstance(payload, str):
        for pattern in PII_PATTERNS:
            if pattern.search(payload):
                return True
        return False
    if isinstance(payload, list):
        return any(payload_contains_pii(item) for item in payload)
    if isinstance(payload, dict):
        return any(payload_contains_pii(value) for value in payload.values())
    return False


def secret_digest(value: str) -> str:
    """Short SHA-256 digest used to correlate a credential in telemetry without storing it."""

    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:16]


def mask_secret(value: str, *, visible: int = 0) -> str:
    if not value:
        return ""
    visible = max(0, min(visible, len(value)))
    hidden = len(value) - visible
    return value[:visible] + MASK_CHAR * hidden
