from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable

from core.card import render_card
from core.contracts import CardSupport, ChatTransport
from core.renderer import content_hash, render, render_sections
from shared.models import MessageBuffer, SessionContext, WriteOutcome, WriteResult

logger = logging.getLogger("ChatBridge.Flush")

DEFAULT_INTERVAL_SECONDS = 0.9
DEFAULT_RETRY_DELAY_SECONDS = 0.5


def card_surface(transport: ChatTransport) -> CardSupport | None:
    if isinstance(transport, CardSupport) and transport.supports_cards:
        return transport
    return None


class FlushScheduler:
    """Decides when a buffer is written to the chat and performs the write.

    Unforced flushes are throttled per buffer and suppressed when the rendered
    content is unchanged. Edits get one retry after a short delay; a second
    failure is dropped because the next due flush carries newer content.
    Card-capable transports get a card assembled from the buffer's sections.
    """

    def __init__(
        self,
        *,
        interval_seconds: float = DEFAULT_INTERVAL_SECONDS,
        retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.interval_seconds = interval_seconds
        self.retry_delay_seconds = retry_delay_seconds
        self._clock = clock
        self._sleep = sleep

    def is_due(self, buffer: MessageBuffer, *, force: bool = False) -> bool:
        if force or buffer.platform_message_id is None:
            return True
        return self._clock() - buffer.last_flush_timestamp > self.interval_seconds

    async def maybe_flush(
        self,
        buffer: MessageBuffer,
        context: SessionContext,
        transport: ChatTransport,
        *,
        force: bool = False,
    ) -> bool:
        """Returns True when the chat message now shows the current content."""
        if not self.is_due(buffer, force=force):
            return False
        # A failed turn is worth showing even if nothing streamed before it
        if not buffer.has_content() and not (force and buffer.status.is_failure):
            return False

        async with buffer.write_lock:
            buffer.last_flush_timestamp = self._clock()
            cards = card_surface(transport)
            if cards is not None:
                content = render_card(render_sections(buffer))
            else:
                content = render(buffer)
            digest = content_hash(content)
            if not force and digest == buffer.last_content_hash:
                return False

            if buffer.platform_message_id is None:
                return await self._send(buffer, context, transport, cards, content, digest)
            return await self._edit(buffer, context, transport, cards, content, digest)

    async def _send(
        self,
        buffer: MessageBuffer,
        context: SessionContext,
        transport: ChatTransport,
        cards: CardSupport | None,
        content: str,
        digest: str,
    ) -> bool:
        conversation_id = context.conversation_id

        def _call() -> Awaitable[WriteResult]:
            if cards is not None:
                return cards.send_card(conversation_id, content)
            return transport.send_message(conversation_id, content)

        result = await _guarded(_call)
        if not result.ok:
            logger.warning(
                "Send failed for message %s (%s): %s",
                buffer.message_id,
                result.outcome.value,
                result.error,
            )
            return False
        if not result.message_id:
            logger.warning("Transport returned no message id for %s", buffer.message_id)
            return False
        buffer.platform_message_id = result.message_id
        buffer.last_content_hash = digest
        return True

    async def _edit(
        self,
        buffer: MessageBuffer,
        context: SessionContext,
        transport: ChatTransport,
        cards: CardSupport | None,
        content: str,
        digest: str,
    ) -> bool:
        platform_id = buffer.platform_message_id
        assert platform_id is not None
        conversation_id = context.conversation_id

        def _call() -> Awaitable[WriteResult]:
            if cards is not None:
                return cards.edit_card(conversation_id, platform_id, content)
            return transport.edit_message(conversation_id, platform_id, content)

        result = await _guarded(_call)
        if result.outcome is WriteOutcome.RETRYABLE:
            await self._sleep(self.retry_delay_seconds)
            result = await _guarded(_call)
        if not result.ok:
            logger.warning(
                "Edit dropped for message %s (%s): %s",
                buffer.message_id,
                result.outcome.value,
                result.error,
            )
            return False
        buffer.last_content_hash = digest
        return True


async def _guarded(call: Callable[[], Awaitable[WriteResult]]) -> WriteResult:
    try:
        return await call()
    except Exception as exc:  # noqa: BLE001
        return WriteResult.retryable(f"{type(exc).__name__}: {exc}")
