"""Hashing and redaction helpers for credential material.

Nothing that identifies a credential or a request is allowed to reach a log
line or a durable store in plain form: credentials are stored under
``hash_credential`` digests, cached results under ``hash_payload`` digests, and
every log message passes through ``redact_secrets``.
"""

import hashlib
import json
import re
from typing import Any

_REDACTIONS: list[tuple[re.Pattern[str], str]] = [
    (re.compile(r"AIza[A-Za-z0-9_-]+"), "[API_KEY_REDACTED]"),
    (re.compile(r"\bsk_[A-Za-z0-9]{8,}"), "[API_KEY_REDACTED]"),
    (re.compile(r"key=.*?(&|$)", re.MULTILINE), r"key=[REDACTED]\1"),
    (re.compile(r"Bearer\s+[A-Za-z0-9._-]+"), "Bearer [REDACTED]"),
    (re.compile(r"authorization:.*$", re.IGNORECASE | re.MULTILINE), "authorization: [REDACTED]"),
    (re.compile(r"x-goog-api-key:.*$", re.IGNORECASE | re.MULTILINE), "x-goog-api-key: [REDACTED]"),
    (re.compile(r"xi-api-key:.*$", re.IGNORECASE | re.MULTILINE), "xi-api-key: [REDACTED]"),
]


def redact_secrets(text: Any) -> str:
    """Mask API keys, tokens and auth headers inside an arbitrary message."""
    if text is None:
        return ""
    message = str(text)
    for pattern, replacement in _REDACTIONS:
        message = pattern.sub(replacement, message)
    return message


def hash_credential(secret: str) -> str:
    """One-way digest used as the durable identity of a credential."""
    digest = hashlib.sha256(secret.encode("utf-8")).hexdigest()
    return f"k_{digest[:16]}"


def hash_payload(fields: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form of a request's semantic fields."""
    canonical = json.dumps(fields, sort_keys=True, ensure_ascii=False, separators=(",", ":"))
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()
