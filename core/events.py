from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Literal

from shared.models import JSONValue, ToolStatus

PartKind = Literal["text", "reasoning", "tool", "step-finish", "other"]

_PART_KINDS: set[str] = {"text", "reasoning", "tool", "step-finish"}
_TOOL_STATUSES = {status.value: status for status in ToolStatus}


@dataclass(frozen=True)
class BackendError:
    name: str | None = None
    message: str | None = None


@dataclass(frozen=True)
class ToolState:
    status: ToolStatus
    title: str | None = None
    input: JSONValue | None = None
    output: str | None = None
    error: str | None = None
    start: int | None = None
    end: int | None = None


@dataclass(frozen=True)
class Part:
    kind: PartKind
    session_id: str
    message_id: str
    text: str | None = None
    call_id: str | None = None
    tool_name: str | None = None
    state: ToolState | None = None
    reason: str | None = None


@dataclass(frozen=True)
class MessageMetadata:
    message_id: str
    role: str
    session_id: str | None = None
    error: BackendError | None = None
    finish: str | None = None
    completed_at: int | None = None


@dataclass(frozen=True)
class PartDelta:
    session_id: str
    message_id: str
    part: Part
    delta: str | None = None


@dataclass(frozen=True)
class SessionError:
    session_id: str
    error: BackendError | None = None


@dataclass(frozen=True)
class SessionIdle:
    session_id: str


@dataclass(frozen=True)
class SessionDeleted:
    session_id: str


@dataclass(frozen=True)
class IgnoredEvent:
    event_type: str | None = None
    reason: str = "unrecognized"


BridgeEvent = (
    MessageMetadata | PartDelta | SessionError | SessionIdle | SessionDeleted | IgnoredEvent
)


def _str_or_none(value: object) -> str | None:
    if isinstance(value, str) and value.strip():
        return value
    return None


def _int_or_none(value: object) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return None


def _mapping(value: object) -> Mapping[str, object]:
    if isinstance(value, Mapping):
        return value
    return {}


def decode_backend_error(raw: object) -> BackendError | None:
    if not isinstance(raw, Mapping):
        return None
    data = _mapping(raw.get("data"))
    return BackendError(
        name=_str_or_none(raw.get("name")),
        message=_str_or_none(data.get("message")) or _str_or_none(raw.get("message")),
    )


def _decode_tool_state(raw: object) -> ToolState | None:
    state = _mapping(raw)
    status = _TOOL_STATUSES.get(str(state.get("status")))
    if status is None:
        return None
    time_block = _mapping(state.get("time"))
    output = state.get("output")
    error = state.get("error")
    return ToolState(
        status=status,
        title=_str_or_none(state.get("title")),
        input=state.get("input"),  # type: ignore[arg-type]
        output=output if isinstance(output, str) else None,
        error=error if isinstance(error, str) else None,
        start=_int_or_none(time_block.get("start")),
        end=_int_or_none(time_block.get("end")),
    )


def decode_part(raw: object) -> Part | None:
    part = _mapping(raw)
    session_id = _str_or_none(part.get("sessionID"))
    message_id = _str_or_none(part.get("messageID"))
    if session_id is None or message_id is None:
        return None
    kind_raw = part.get("type")
    kind: PartKind = kind_raw if kind_raw in _PART_KINDS else "other"  # type: ignore[assignment]
    text = part.get("text")
    if kind == "tool":
        state = _decode_tool_state(part.get("state"))
        call_id = _str_or_none(part.get("callID"))
        if state is None or call_id is None:
            kind = "other"
        return Part(
            kind=kind,
            session_id=session_id,
            message_id=message_id,
            call_id=call_id,
            tool_name=_str_or_none(part.get("tool")),
            state=state,
        )
    return Part(
        kind=kind,
        session_id=session_id,
        message_id=message_id,
        text=text if isinstance(text, str) else None,
        reason=_str_or_none(part.get("reason")),
    )


def decode_event(raw: object) -> BridgeEvent:
    """Decode one raw backend event into a typed variant.

    Events with missing identifiers decode to ``IgnoredEvent`` rather than
    raising, since the feed carries traffic for sessions the bridge does not
    track.
    """
    envelope = _mapping(raw)
    event_type = _str_or_none(envelope.get("type"))
    props = _mapping(envelope.get("properties"))

    if event_type == "message.updated":
        info = _mapping(props.get("info"))
        message_id = _str_or_none(info.get("id"))
        role = _str_or_none(info.get("role"))
        if message_id is None or role is None:
            return IgnoredEvent(event_type, reason="missing message id or role")
        time_block = _mapping(info.get("time"))
        finish = info.get("finish")
        return MessageMetadata(
            message_id=message_id,
            role=role,
            session_id=_str_or_none(info.get("sessionID")),
            error=decode_backend_error(info.get("error")),
            finish=finish if isinstance(finish, str) and finish else None,
            completed_at=_int_or_none(time_block.get("completed")),
        )

    if event_type == "message.part.updated":
        part = decode_part(props.get("part"))
        if part is None:
            return IgnoredEvent(event_type, reason="missing part identifiers")
        delta = props.get("delta")
        return PartDelta(
            session_id=part.session_id,
            message_id=part.message_id,
            part=part,
            delta=delta if isinstance(delta, str) else None,
        )

    if event_type == "session.error":
        session_id = _str_or_none(props.get("sessionID"))
        if session_id is None:
            return IgnoredEvent(event_type, reason="missing session id")
        return SessionError(session_id=session_id, error=decode_backend_error(props.get("error")))

    if event_type == "session.idle":
        session_id = _str_or_none(props.get("sessionID"))
        if session_id is None:
            return IgnoredEvent(event_type, reason="missing session id")
        return SessionIdle(session_id=session_id)

    if event_type == "session.deleted":
        info = _mapping(props.get("info"))
        session_id = _str_or_none(info.get("id")) or _str_or_none(props.get("sessionID"))
        if session_id is None:
            return IgnoredEvent(event_type, reason="missing session id")
        return SessionDeleted(session_id=session_id)

    return IgnoredEvent(event_type)
