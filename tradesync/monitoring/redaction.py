"""
Masks secrets in structured log events.

The investor password and the gateway token must never be rendered, so any
key whose name contains a sensitive fragment has its value replaced.
"""

from __future__ import annotations

from typing import Any

SENSITIVE_KEY_FRAGMENTS = ("password", "token", "secret", "key", "authorization")

REDACTED = "***REDACTED***"


def _masked(key: Any, value: Any) -> Any:
    lowered = str(key).lower()
    if value is not None and any(fragment in lowered for fragment in SENSITIVE_KEY_FRAGMENTS):
        return REDACTED
    return redact(value)


def redact(obj: Any) -> Any:
    """Return a copy of ``obj`` with sensitive dict values masked, recursing into lists."""
    if isinstance(obj, dict):
        return {key: _masked(key, value) for key, value in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [redact(item) for item in obj]
    return obj


def structlog_redaction_processor(_logger: Any, _method_name: str, event_dict: dict) -> dict:
    return redact(event_dict)
