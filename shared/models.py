from __future__ import annotations

import asyncio
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import Enum

JSONPrimitive = str | bytes | int | float | bool | None
JSONValue = JSONPrimitive | Sequence["JSONValue"] | Mapping[str, "JSONValue"]


class BufferStatus(str, Enum):
    STREAMING = "streaming"
    DONE = "done"
    ABORTED = "aborted"
    ERROR = "error"

    @property
    def is_failure(self) -> bool:
        return self in (BufferStatus.ABORTED, BufferStatus.ERROR)


class ToolStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    ERROR = "error"

    @property
    def rank(self) -> int:
        return _TOOL_STATUS_RANK[self]

    @property
    def is_terminal(self) -> bool:
        return self in (ToolStatus.COMPLETED, ToolStatus.ERROR)


_TOOL_STATUS_RANK = {
    ToolStatus.PENDING: 0,
    ToolStatus.RUNNING: 1,
    ToolStatus.COMPLETED: 2,
    ToolStatus.ERROR: 2,
}


@dataclass(frozen=True)
class SessionContext:
    session_id: str
    conversation_id: str
    adapter_key: str
    requester_id: str


@dataclass
class ToolView:
    call_id: str
    tool_name: str
    status: ToolStatus = ToolStatus.PENDING
    title: str | None = None
    input_snapshot: JSONValue | None = None
    output: str | None = None
    error_message: str | None = None
    start_time: int | None = None
    end_time: int | None = None


@dataclass(eq=False)
class MessageBuffer:
    """Accumulated state of one AI message mirrored into a chat message."""

    message_id: str
    session_id: str | None = None
    platform_message_id: str | None = None
    reasoning_text: str = ""
    answer_text: str = ""
    tool_views: dict[str, ToolView] = field(default_factory=dict)
    last_flush_timestamp: float = 0.0
    last_content_hash: str = ""
    status: BufferStatus = BufferStatus.STREAMING
    status_note: str | None = None
    write_lock: asyncio.Lock = field(default_factory=asyncio.Lock, repr=False)

    def has_content(self) -> bool:
        return bool(self.reasoning_text or self.answer_text or self.tool_views)


class WriteOutcome(str, Enum):
    OK = "ok"
    RETRYABLE = "retryable"
    FATAL = "fatal"


@dataclass(frozen=True)
class WriteResult:
    outcome: WriteOutcome
    message_id: str | None = None
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.outcome is WriteOutcome.OK

    @classmethod
    def success(cls, message_id: str | None = None) -> WriteResult:
        return cls(outcome=WriteOutcome.OK, message_id=message_id)

    @classmethod
    def retryable(cls, error: str) -> WriteResult:
        return cls(outcome=WriteOutcome.RETRYABLE, error=error)

    @classmethod
    def fatal(cls, error: str) -> WriteResult:
        return cls(outcome=WriteOutcome.FATAL, error=error)
