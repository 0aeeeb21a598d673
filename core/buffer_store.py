from __future__ import annotations

from collections import OrderedDict
from collections.abc import Iterator

from core.events import Part
from shared.models import BufferStatus, MessageBuffer, ToolStatus, ToolView

STATUS_NOTE_MAX_CHARS = 500
MAX_REMEMBERED_IDS = 2000


def clip_note(note: str, max_chars: int = STATUS_NOTE_MAX_CHARS) -> str:
    if len(note) <= max_chars:
        return note
    return note[-max_chars:]


class BufferStore:
    """Owns every MessageBuffer and the role recorded for each message id.

    Finished buffers are retired: dropped, with their id remembered so late
    events for them are recognised. Roles and retired ids are bounded FIFO
    memories of ``max_remembered`` entries each.
    """

    def __init__(self, max_remembered: int = MAX_REMEMBERED_IDS) -> None:
        self.max_remembered = max_remembered
        self._buffers: dict[str, MessageBuffer] = {}
        self._roles: OrderedDict[str, str | None] = OrderedDict()
        self._retired: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._buffers)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._buffers

    def get(self, message_id: str) -> MessageBuffer | None:
        return self._buffers.get(message_id)

    def get_or_init(self, message_id: str, session_id: str | None = None) -> MessageBuffer:
        buffer = self._buffers.get(message_id)
        if buffer is None:
            buffer = MessageBuffer(message_id=message_id, session_id=session_id)
            self._buffers[message_id] = buffer
        elif buffer.session_id is None and session_id is not None:
            buffer.session_id = session_id
        return buffer

    def remove(self, message_id: str) -> MessageBuffer | None:
        self._roles.pop(message_id, None)
        return self._buffers.pop(message_id, None)

    def discard_session(self, session_id: str) -> int:
        doomed = [mid for mid, buf in self._buffers.items() if buf.session_id == session_id]
        for message_id in doomed:
            self.remove(message_id)
        return len(doomed)

    def items(self) -> Iterator[tuple[str, MessageBuffer]]:
        yield from list(self._buffers.items())

    def retire(self, message_id: str) -> MessageBuffer | None:
        buffer = self.remove(message_id)
        self._remember(self._retired, message_id, None)
        return buffer

    def is_retired(self, message_id: str) -> bool:
        return message_id in self._retired

    def clear(self) -> None:
        self._buffers.clear()
        self._roles.clear()
        self._retired.clear()

    @property
    def remembered_roles(self) -> int:
        return len(self._roles)

    def record_role(self, message_id: str, role: str) -> None:
        self._remember(self._roles, message_id, role)

    def _remember(
        self,
        memory: OrderedDict[str, str | None],
        key: str,
        value: str | None,
    ) -> None:
        memory[key] = value
        memory.move_to_end(key)
        while len(memory) > self.max_remembered:
            memory.popitem(last=False)

    def role_of(self, message_id: str) -> str | None:
        return self._roles.get(message_id)

    def mark_done(self, message_id: str, note: str | None = None) -> bool:
        """Completion never overwrites a terminal status; returns True if applied."""
        buffer = self.get_or_init(message_id)
        if buffer.status is not BufferStatus.STREAMING:
            return False
        buffer.status = BufferStatus.DONE
        if note:
            buffer.status_note = clip_note(note)
        return True

    def mark_failed(self, message_id: str, status: BufferStatus, note: str | None = None) -> bool:
        if not status.is_failure:
            raise ValueError(f"not a failure status: {status.value}")
        buffer = self.get_or_init(message_id)
        if buffer.status.is_failure:
            return False
        buffer.status = status
        if note:
            buffer.status_note = clip_note(note)
        return True


def _apply_text(buffer: MessageBuffer, part: Part, delta: str | None) -> None:
    is_reasoning = part.kind == "reasoning"
    current = buffer.reasoning_text if is_reasoning else buffer.answer_text
    if isinstance(delta, str) and delta:
        updated = current + delta
    elif isinstance(part.text, str) and len(part.text) > len(current):
        updated = part.text
    else:
        return
    if is_reasoning:
        buffer.reasoning_text = updated
    else:
        buffer.answer_text = updated


def _apply_tool(buffer: MessageBuffer, part: Part) -> None:
    state = part.state
    if state is None or part.call_id is None:
        return
    view = buffer.tool_views.get(part.call_id)
    if view is None:
        view = ToolView(
            call_id=part.call_id,
            tool_name=part.tool_name or "tool",
            status=state.status,
        )
        buffer.tool_views[part.call_id] = view

    if part.tool_name:
        view.tool_name = part.tool_name
    if not view.status.is_terminal and state.status.rank >= view.status.rank:
        view.status = state.status
    if state.input is not None:
        view.input_snapshot = state.input

    if state.status is ToolStatus.RUNNING:
        if state.title:
            view.title = state.title
        if state.start:
            view.start_time = state.start
    elif state.status is ToolStatus.COMPLETED:
        if state.title:
            view.title = state.title
        if state.output is not None:
            view.output = state.output
        if state.start:
            view.start_time = state.start
        if state.end:
            view.end_time = state.end
    elif state.status is ToolStatus.ERROR:
        if state.error is not None:
            view.error_message = state.error
        if state.start:
            view.start_time = state.start
        if state.end:
            view.end_time = state.end


def apply_part(buffer: MessageBuffer, part: Part, delta: str | None = None) -> None:
    """Fold one streamed part into the buffer.

    Text and reasoning grow by delta append, or by adopting a snapshot that is
    strictly longer than what has accumulated. Tool parts merge into the tool
    view for their call id without ever moving its status backwards.
    Step-finish and unknown parts leave content untouched.
    """
    if part.kind in ("text", "reasoning"):
        _apply_text(buffer, part, delta)
        return
    if part.kind == "tool":
        _apply_tool(buffer, part)
