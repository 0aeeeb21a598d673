from __future__ import annotations

import logging
import time
from collections.abc import Iterator

from core.contracts import BackendApi
from shared.models import SessionContext

logger = logging.getLogger("ChatBridge.Router")


def session_title(adapter_key: str, conversation_id: str) -> str:
    return f"[{adapter_key}] Chat {conversation_id[-4:]} [{time.strftime('%H:%M:%S')}]"


class SessionRouter:
    """Maps backend sessions to the chat conversation that owns them."""

    def __init__(self, backend: BackendApi) -> None:
        self._backend = backend
        self._contexts: dict[str, SessionContext] = {}
        self._cache: dict[tuple[str, str], str] = {}
        self._active_messages: dict[str, str] = {}

    def resolve(self, session_id: str) -> SessionContext | None:
        return self._contexts.get(session_id)

    def bind(self, session_id: str, context: SessionContext) -> None:
        self._contexts[session_id] = context

    def cached_session(self, adapter_key: str, conversation_id: str) -> str | None:
        return self._cache.get((adapter_key, conversation_id))

    async def acquire_session(self, adapter_key: str, conversation_id: str) -> str:
        cached = self._cache.get((adapter_key, conversation_id))
        if cached:
            return cached
        session_id = await self._backend.create_session(session_title(adapter_key, conversation_id))
        if not session_id:
            raise RuntimeError("Failed to init session")
        self._cache[(adapter_key, conversation_id)] = session_id
        logger.info("Created session %s for %s:%s", session_id, adapter_key, conversation_id)
        return session_id

    def evict(self, adapter_key: str, conversation_id: str) -> str | None:
        session_id = self._cache.pop((adapter_key, conversation_id), None)
        if session_id is not None:
            logger.info("Evicted session %s for %s:%s", session_id, adapter_key, conversation_id)
        return session_id

    def forget(self, session_id: str) -> None:
        self._contexts.pop(session_id, None)
        self._active_messages.pop(session_id, None)
        stale = [key for key, value in self._cache.items() if value == session_id]
        for key in stale:
            del self._cache[key]

    def active_message(self, session_id: str) -> str | None:
        return self._active_messages.get(session_id)

    def set_active_message(self, session_id: str, message_id: str) -> None:
        self._active_messages[session_id] = message_id

    def active_messages(self) -> Iterator[tuple[str, str]]:
        yield from list(self._active_messages.items())

    def session_ids(self) -> list[str]:
        return list(self._contexts)

    def clear(self) -> None:
        self._contexts.clear()
        self._cache.clear()
        self._active_messages.clear()
