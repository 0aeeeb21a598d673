from __future__ import annotations

from collections.abc import AsyncIterator
from typing import Protocol, runtime_checkable

from shared.models import JSONValue, WriteResult


class BackendApi(Protocol):
    async def create_session(self, title: str) -> str: ...

    async def prompt_session(self, session_id: str, text: str) -> None: ...

    def subscribe_events(self) -> AsyncIterator[dict[str, JSONValue]]: ...


class ChatTransport(Protocol):
    async def send_message(self, conversation_id: str, content: str) -> WriteResult: ...

    async def edit_message(
        self,
        conversation_id: str,
        message_id: str,
        content: str,
    ) -> WriteResult: ...


@runtime_checkable
class ReactionSupport(Protocol):
    async def add_reaction(self, message_id: str, emoji: str) -> str | None: ...

    async def remove_reaction(self, message_id: str, reaction_id: str) -> None: ...


@runtime_checkable
class CardSupport(Protocol):
    """Transports that can display card documents built from the display sections."""

    supports_cards: bool

    async def send_card(self, conversation_id: str, card: str) -> WriteResult: ...

    async def edit_card(self, conversation_id: str, message_id: str, card: str) -> WriteResult: ...
