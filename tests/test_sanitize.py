from __future__ import annotations

from shared.sanitize import safe_json_loads, sanitize_record


def test_sanitizer_masks_secrets() -> None:
    data = {
        "app_secret": "supersecret",
        "Authorization": "Bearer token",
        "nested": {"token": "abc"},
        "ok": True,
    }
    sanitized = sanitize_record(data)
    assert sanitized["app_secret"] == "[secret]"
    assert sanitized["Authorization"] == "[secret]"
    assert sanitized["nested"]["token"] == "[secret]"  # type: ignore[index]
    assert sanitized["ok"] is True


def test_sanitizer_truncates_streamed_text() -> None:
    delta = "x" * 600
    sanitized = sanitize_record({"type": "message.part.updated", "delta": delta})
    preview = sanitized["delta"]
    assert isinstance(preview, dict)
    assert preview["bytes_count"] == 600
    assert "…[truncated]" in preview["preview"]  # type: ignore[operator]
    assert sanitized["type"] == "message.part.updated"


def test_oversized_event_keeps_type_and_summarises_properties() -> None:
    event = {
        "type": "message.updated",
        "properties": {f"key{i}": "v" * 200 for i in range(40)},
    }
    sanitized = sanitize_record(event, max_bytes=1024)
    assert sanitized["type"] == "message.updated"
    summary = sanitized["properties"]
    assert isinstance(summary, dict)
    assert set(summary) == {"preview", "bytes_count", "sha256"}


def test_safe_json_loads() -> None:
    assert safe_json_loads('{"a": 1}') == {"a": 1}
    assert safe_json_loads("not json") is None
