"""Event property sanitization shared by the trackers and the ingestion API."""

import json
import math
from typing import Any

MAX_PROPERTY_CHARS = 50_000
REDACTED = "[REDACTED]"
TRUNCATED = "[TRUNCATED]"
SENSITIVE_KEY_PARTS = ("password", "token")


def _is_sensitive(key: str) -> bool:
    lowered = key.lower()
    return any(part in lowered for part in SENSITIVE_KEY_PARTS)


def _sanitize_value(value: Any) -> Any:
    if isinstance(value, float):
        # NaN and infinities are not valid JSON
        return value if math.isfinite(value) else None
    if isinstance(value, (bool, int)):
        return value
    if isinstance(value, str):
        return TRUNCATED if len(value) > MAX_PROPERTY_CHARS else value

    try:
        serialized = json.dumps(value, default=str)
    except (TypeError, ValueError):
        # Circular references and other unserializable structures
        serialized = None

    if serialized is None:
        coerced = str(value)
        return TRUNCATED if len(coerced) > MAX_PROPERTY_CHARS else coerced
    if len(serialized) > MAX_PROPERTY_CHARS:
        return TRUNCATED
    return json.loads(serialized, parse_constant=lambda _: None)


def sanitize_properties(properties: dict[str, Any] | None) -> dict[str, Any]:
    """
    Make arbitrary caller data safe for the wire and the events table.

    - callables and None values are dropped
    - keys containing "password" or "token" keep the key, lose the value
    - nested structures are deep-copied through JSON (str() for leaves
      JSON cannot encode, str() of the whole value if that still fails)
    - NaN and infinite floats become null, at any depth
    - anything whose serialized form exceeds MAX_PROPERTY_CHARS becomes
      TRUNCATED; the rest of the event is kept
    """
    if not properties:
        return {}

    sanitized: dict[str, Any] = {}
    for key, value in properties.items():
        if value is None or callable(value):
            continue
        key = str(key)
        if _is_sensitive(key):
            sanitized[key] = REDACTED
            continue
        sanitized[key] = _sanitize_value(value)
    return sanitized
