"""Redaction helpers for safe logging. All external data must pass through these.

Gateway identifiers (payment intents, refunds, charges, events) are reduced to
a short prefix; customer emails and phone numbers never reach the logs.
"""

import re
from typing import Any

_PHONE_PATTERN = re.compile(r"\+?\d[\d\s\-()]{8,}\d")
_EMAIL_PATTERN = re.compile(r"[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}")
_GATEWAY_ID_PATTERN = re.compile(r"\b((?:pi|re|ch|pay|ref|evt|cs)_)[A-Za-z0-9]{6,}\b")
_UUID_PATTERN = re.compile(
    r"\b[0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12}\b"
)

_REDACTED = "[REDACTED]"
_PREFIX_LEN = 8


def id_prefix(value: str | None) -> str:
    """Shorten an identifier to a loggable prefix."""
    if not value:
        return ""
    return value[:_PREFIX_LEN] if len(value) >= _PREFIX_LEN else value


def _redact_phones(value: str) -> str:
    # UUIDs are record ids; only the text between them is scanned.
    parts = []
    last = 0
    for match in _UUID_PATTERN.finditer(value):
        parts.append(_PHONE_PATTERN.sub(_REDACTED, value[last:match.start()]))
        parts.append(match.group(0))
        last = match.end()
    parts.append(_PHONE_PATTERN.sub(_REDACTED, value[last:]))
    return "".join(parts)


def redact_string(value: str) -> str:
    """Redact PII patterns and full gateway identifiers from a string."""
    result = _GATEWAY_ID_PATTERN.sub(lambda m: m.group(1) + "…", value)
    result = _redact_phones(result)
    result = _EMAIL_PATTERN.sub(_REDACTED, result)
    return result


def redact_value(value: Any) -> str:
    """Redact any value for safe logging. Returns string representation."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, (int, float)):
        return str(value)
    if isinstance(value, str):
        return redact_string(value)
    if isinstance(value, dict):
        # For dicts, only log keys (structure), never values
        return f"dict(keys={list(value.keys())})"
    if isinstance(value, (list, tuple, set)):
        return f"list(len={len(value)})"
    if hasattr(value, "isoformat"):
        return value.isoformat()
    # For any other type, only log type name
    return f"<{type(value).__name__}>"


def safe_log_context(**kwargs: Any) -> dict[str, str]:
    """Build a context dict safe for logging. All values are redacted."""
    return {k: redact_value(v) for k, v in kwargs.items()}
