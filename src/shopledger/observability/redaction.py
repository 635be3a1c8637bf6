"""Redaction helpers for safe logging.

Sender ids and message text are PII. Anything derived from a webhook goes
through safe_log_context (or mask_phone for sender ids) before it is logged.
"""

import re
from decimal import Decimal
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

# Context keys whose values are never logged, whatever their type
_SECRET_KEY_PARTS = ("secret", "token", "authorization", "password", "signature")

_REDACTED = "[REDACTED]"

_VISIBLE_DIGITS = 4


def redact_string(value: str) -> str:
    """Replace phone numbers and emails inside free text."""
    result = _PHONE_PATTERN.sub(_REDACTED, value)
    return _EMAIL_PATTERN.sub(_REDACTED, result)


def mask_phone(value: str | None) -> str:
    """Mask a sender id, keeping only the last 4 digits.

    "919876543210" -> "********3210". Values of 4 chars or fewer are fully masked.
    """
    if not value:
        return ""
    if len(value) <= _VISIBLE_DIGITS:
        return "*" * len(value)
    return "*" * (len(value) - _VISIBLE_DIGITS) + value[-_VISIBLE_DIGITS:]


def redact_value(value: Any) -> str:
    """String form of a value that is safe to log."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, (bytes, bytearray)):
        return f"bytes(len={len(value)})"
    if isinstance(value, dict):
        # structure only
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    return f"<{type(value).__name__}>"


def _is_secret_key(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in _SECRET_KEY_PARTS)


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {
        k: _REDACTED if _is_secret_key(k) else redact_value(v) for k, v in kwargs.items()
    }
