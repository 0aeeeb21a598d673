from __future__ import annotations

import hashlib
import json
from collections.abc import Mapping

from shared.models import JSONValue

SECRET_KEYS = frozenset(
    {"api_key", "app_secret", "authorization", "encrypt_key", "x-api-key", "token", "secret"}
)
# Streamed bodies: summarised earlier than other strings
PAYLOAD_KEYS = frozenset({"text", "content", "delta", "output", "base64"})
MAX_FIELD_PREVIEW = 256
MAX_RECORD_BYTES = 4096
SECRET_PLACEHOLDER = "[secret]"
# Summarised first when a whole event is too large to log
HEAVY_KEYS = ("properties", "state")


def _encode(value: object) -> bytes:
    if isinstance(value, bytes):
        return value
    if isinstance(value, str):
        return value.encode("utf-8", errors="replace")
    try:
        return json.dumps(value, ensure_ascii=False).encode("utf-8", errors="replace")
    except (TypeError, ValueError):
        return str(value).encode("utf-8", errors="replace")


def summarize(value: object) -> dict[str, JSONValue]:
    """Replace ``value`` with a short preview, its size and a digest."""
    raw = _encode(value)
    preview = raw[:MAX_FIELD_PREVIEW].decode("utf-8", errors="replace")
    if len(raw) > MAX_FIELD_PREVIEW:
        preview += "…[truncated]"
    return {
        "preview": preview,
        "bytes_count": len(raw),
        "sha256": hashlib.sha256(raw).hexdigest(),
    }


def _scrub(key: str | None, value: object) -> JSONValue:
    lowered = key.lower() if isinstance(key, str) else ""
    if lowered in SECRET_KEYS:
        return SECRET_PLACEHOLDER
    if value is None or isinstance(value, (bool, int, float)):
        return value
    if isinstance(value, Mapping):
        return {str(k): _scrub(str(k), v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [_scrub(key, item) for item in value]
    if isinstance(value, (str, bytes)):
        size = len(_encode(value))
        limit = MAX_FIELD_PREVIEW // 4 if lowered in PAYLOAD_KEYS else MAX_FIELD_PREVIEW
        if size > limit:
            return summarize(value)
        return value.decode("utf-8", errors="replace") if isinstance(value, bytes) else value
    return str(value)


def _size(record: Mapping[str, JSONValue]) -> int:
    return len(json.dumps(record, ensure_ascii=False).encode("utf-8", errors="replace"))


def sanitize_record(
    record: Mapping[str, JSONValue],
    *,
    max_bytes: int = MAX_RECORD_BYTES,
) -> dict[str, JSONValue]:
    """Log-safe copy of a raw event: secrets masked, large bodies summarised."""
    cleaned = {key: _scrub(key, value) for key, value in record.items()}
    if _size(cleaned) <= max_bytes:
        return cleaned
    for key in HEAVY_KEYS:
        if key in cleaned:
            cleaned[key] = summarize(cleaned[key])
    if _size(cleaned) <= max_bytes:
        return cleaned
    return summarize(cleaned)


def safe_json_loads(raw: str) -> object | None:
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        return None
