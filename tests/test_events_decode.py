from __future__ import annotations

from core.events import (
    BackendError,
    IgnoredEvent,
    MessageMetadata,
    PartDelta,
    SessionDeleted,
    SessionError,
    SessionIdle,
    decode_event,
)
from shared.models import ToolStatus
from tests.fakes import message_updated, part_event, session_event, tool_event


def test_decode_message_updated() -> None:
    raw = message_updated(
        "s1",
        "m1",
        error={"name": "APIError", "data": {"message": "quota"}},
        finish="stop",
        time={"created": 1, "completed": 5},
    )
    event = decode_event(raw)
    assert event == MessageMetadata(
        message_id="m1",
        role="assistant",
        session_id="s1",
        error=BackendError(name="APIError", message="quota"),
        finish="stop",
        completed_at=5,
    )


def test_decode_text_part_with_delta() -> None:
    event = decode_event(part_event("s1", "m1", "text", delta="Hel", text="Hel"))
    assert isinstance(event, PartDelta)
    assert event.delta == "Hel"
    assert event.part.kind == "text"
    assert event.part.text == "Hel"


def test_decode_tool_part() -> None:
    raw = tool_event(
        "s1",
        "m1",
        "c1",
        "completed",
        input={"cmd": "ls"},
        output="42",
        time={"start": 1, "end": 2},
    )
    event = decode_event(raw)
    assert isinstance(event, PartDelta)
    state = event.part.state
    assert state is not None
    assert state.status is ToolStatus.COMPLETED
    assert state.output == "42"
    assert (state.start, state.end) == (1, 2)
    assert event.part.call_id == "c1"
    assert event.part.tool_name == "bash"


def test_tool_part_with_unknown_status_is_other() -> None:
    event = decode_event(tool_event("s1", "m1", "c1", "queued"))
    assert isinstance(event, PartDelta)
    assert event.part.kind == "other"


def test_unknown_part_type_is_other() -> None:
    event = decode_event(part_event("s1", "m1", "snapshot"))
    assert isinstance(event, PartDelta)
    assert event.part.kind == "other"


def test_session_events() -> None:
    error = decode_event(
        session_event("session.error", "s1", error={"name": "MessageAbortedError"})
    )
    assert error == SessionError("s1", BackendError(name="MessageAbortedError"))
    assert decode_event(session_event("session.idle", "s1")) == SessionIdle("s1")
    assert decode_event(session_event("session.deleted", "s1")) == SessionDeleted("s1")


def test_missing_identifiers_are_ignored() -> None:
    assert isinstance(decode_event({"type": "message.updated", "properties": {}}), IgnoredEvent)
    assert isinstance(
        decode_event({"type": "message.part.updated", "properties": {"part": {"type": "text"}}}),
        IgnoredEvent,
    )
    assert isinstance(decode_event({"type": "session.idle", "properties": {}}), IgnoredEvent)
    assert isinstance(decode_event("garbage"), IgnoredEvent)
    assert decode_event({"type": "server.heartbeat"}) == IgnoredEvent("server.heartbeat")
