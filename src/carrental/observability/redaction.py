"""Redaction helpers for safe logging. All external data must pass through these."""

import re
from datetime import date
from decimal import Decimal
from typing import Any

# Account numbers, card-like references and other long digit runs
_DIGIT_RUN_PATTERN = re.compile(r"\d[\d\s\-]{6,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")

_REDACTED = "[REDACTED]"


def mask_identifier(value: str | None, visible: int = 4) -> str:
    """Mask all but the last `visible` characters of an identifier.

    Used for sender account numbers and payment references, which are
    useful to correlate on but must not appear in full.
    """
    if not value:
        return "null"
    if len(value) <= visible:
        return "*" * len(value)
    return "*" * (len(value) - visible) + value[-visible:]


def redact_string(value: str) -> str:
    """Redact PII patterns from a string."""
    result = _DIGIT_RUN_PATTERN.sub(_REDACTED, value)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float, Decimal)):
        return str(value)
    if isinstance(value, date):
        return value.isoformat()
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple)):
        return f"list(len={len(value)})"
    # For any other type, only log type name
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
