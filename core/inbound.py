from __future__ import annotations

import logging
from typing import Final

from backend.client import SessionNotFoundError
from core.contracts import BackendApi, ChatTransport, ReactionSupport
from core.dedup import DuplicateGuard
from core.session_router import SessionRouter
from shared.models import SessionContext

logger = logging.getLogger("ChatBridge.Inbound")

PING_REPLY: Final[str] = "Pong! ⚡️"
LOADING_EMOJI: Final[str] = "Typing"


def is_ping(text: str) -> bool:
    return text.strip().lower() == "ping"


class IncomingMessageHandler:
    """Entry point for user messages arriving from one chat adapter.

    Redelivered inbound ids are dropped by the shared ``DuplicateGuard``; the
    guard key is scoped by adapter so ids from different platforms never
    collide.
    """

    def __init__(
        self,
        backend: BackendApi,
        router: SessionRouter,
        transport: ChatTransport,
        adapter_key: str,
        guard: DuplicateGuard,
    ) -> None:
        self._backend = backend
        self._router = router
        self._transport = transport
        self.adapter_key = adapter_key
        self._guard = guard

    def is_duplicate(self, inbound_message_id: str) -> bool:
        """Remember ``inbound_message_id`` and report whether it was seen before."""
        if not inbound_message_id:
            return False
        return self._guard.check_and_remember(f"{self.adapter_key}:{inbound_message_id}")

    async def on_incoming_message(
        self,
        conversation_id: str,
        text: str,
        inbound_message_id: str,
        sender_id: str,
    ) -> bool:
        if self.is_duplicate(inbound_message_id):
            logger.info("Duplicate inbound message %s ignored", inbound_message_id)
            return False
        await self.process(conversation_id, text, inbound_message_id, sender_id)
        return True

    async def process(
        self,
        conversation_id: str,
        text: str,
        inbound_message_id: str,
        sender_id: str,
    ) -> None:
        if is_ping(text):
            await self._reply(conversation_id, PING_REPLY)
            return

        reaction_id = await self._add_loading_reaction(inbound_message_id)
        try:
            session_id = await self._router.acquire_session(self.adapter_key, conversation_id)
            self._router.bind(
                session_id,
                SessionContext(
                    session_id=session_id,
                    conversation_id=conversation_id,
                    adapter_key=self.adapter_key,
                    requester_id=sender_id,
                ),
            )
            await self._backend.prompt_session(session_id, text)
        except SessionNotFoundError as exc:
            self._router.evict(self.adapter_key, conversation_id)
            logger.warning("Session for %s:%s is gone: %s", self.adapter_key, conversation_id, exc)
            await self._reply(conversation_id, f"Error: {exc}")
        except Exception as exc:  # noqa: BLE001
            logger.error("Prompt for %s:%s failed: %s", self.adapter_key, conversation_id, exc)
            await self._reply(conversation_id, f"Error: {exc}")
        finally:
            await self._remove_loading_reaction(inbound_message_id, reaction_id)

    async def _reply(self, conversation_id: str, content: str) -> None:
        try:
            result = await self._transport.send_message(conversation_id, content)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Reply to %s failed: %s", conversation_id, exc)
            return
        if not result.ok:
            logger.warning("Reply to %s failed: %s", conversation_id, result.error)

    async def _add_loading_reaction(self, inbound_message_id: str) -> str | None:
        if not inbound_message_id or not isinstance(self._transport, ReactionSupport):
            return None
        try:
            return await self._transport.add_reaction(inbound_message_id, LOADING_EMOJI)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Loading reaction on %s failed: %s", inbound_message_id, exc)
            return None

    async def _remove_loading_reaction(
        self,
        inbound_message_id: str,
        reaction_id: str | None,
    ) -> None:
        if reaction_id is None or not isinstance(self._transport, ReactionSupport):
            return
        try:
            await self._transport.remove_reaction(inbound_message_id, reaction_id)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Removing reaction from %s failed: %s", inbound_message_id, exc)
