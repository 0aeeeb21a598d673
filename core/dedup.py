from __future__ import annotations

from collections import OrderedDict

DEFAULT_CAPACITY = 2000


class DuplicateGuard:
    """Bounded FIFO memory of inbound message ids already accepted."""

    def __init__(self, capacity: int = DEFAULT_CAPACITY) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        self._capacity = capacity
        self._seen: OrderedDict[str, None] = OrderedDict()

    def __len__(self) -> int:
        return len(self._seen)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._seen

    def check_and_remember(self, message_id: str) -> bool:
        """Return True if ``message_id`` was already seen, otherwise remember it."""
        if message_id in self._seen:
            return True
        self._seen[message_id] = None
        while len(self._seen) > self._capacity:
            self._seen.popitem(last=False)
        return False
