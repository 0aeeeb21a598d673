from __future__ import annotations

import asyncio
import logging
from urllib.parse import quote

from core.card import markdown_card
from shared.http_client import HttpClient, HttpConfig, HttpResult
from shared.models import JSONValue, WriteResult

logger = logging.getLogger("ChatBridge.Relay")

RELAY_ADAPTER_KEY = "relay"
_RETRYABLE_STATUSES = {408, 425, 429}


def write_result_from_http(result: HttpResult) -> WriteResult:
    if result.ok:
        return WriteResult.success()
    error = result.error or "relay request failed"
    status = result.status_code
    if status is None or status >= 500 or status in _RETRYABLE_STATUSES:
        return WriteResult.retryable(error)
    return WriteResult.fatal(error)


class RelayTransport:
    """Chat transport that forwards writes to an HTTP relay in front of a chat platform.

    With ``cards`` enabled every write is a card document. Streamed replies
    arrive as cards already built from their sections; plain replies sent
    through ``send_message`` are converted from their markdown.
    """

    def __init__(
        self,
        base_url: str,
        *,
        cards: bool = False,
        client: HttpClient | None = None,
        timeout: int = 15,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.cards = cards
        self._client = client or HttpClient(HttpConfig(timeout=timeout))

    @property
    def supports_cards(self) -> bool:
        return self.cards

    def _payload(self, conversation_id: str, content: str) -> dict[str, JSONValue]:
        if self.cards:
            return self._card_payload(conversation_id, markdown_card(content))
        return {"conversation_id": conversation_id, "content": content, "format": "markdown"}

    def _card_payload(self, conversation_id: str, card: str) -> dict[str, JSONValue]:
        return {"conversation_id": conversation_id, "content": card, "format": "card"}

    async def _post(self, path: str, payload: dict[str, JSONValue]) -> HttpResult:
        url = f"{self.base_url}{path}"
        return await asyncio.to_thread(self._client.post_json, url, json=payload)

    async def _create(self, payload: dict[str, JSONValue]) -> WriteResult:
        result = await self._post("/messages", payload)
        write = write_result_from_http(result)
        if not write.ok:
            return write
        data = result.data if isinstance(result.data, dict) else {}
        message_id = data.get("message_id")
        if not isinstance(message_id, str) or not message_id.strip():
            return WriteResult.fatal("relay response has no message_id")
        return WriteResult.success(message_id.strip())

    async def _update(self, message_id: str, payload: dict[str, JSONValue]) -> WriteResult:
        result = await self._post(f"/messages/{quote(message_id, safe='')}/edit", payload)
        write = write_result_from_http(result)
        if write.ok:
            return WriteResult.success(message_id)
        return write

    async def send_message(self, conversation_id: str, content: str) -> WriteResult:
        return await self._create(self._payload(conversation_id, content))

    async def edit_message(
        self,
        conversation_id: str,
        message_id: str,
        content: str,
    ) -> WriteResult:
        return await self._update(message_id, self._payload(conversation_id, content))

    async def send_card(self, conversation_id: str, card: str) -> WriteResult:
        return await self._create(self._card_payload(conversation_id, card))

    async def edit_card(self, conversation_id: str, message_id: str, card: str) -> WriteResult:
        return await self._update(message_id, self._card_payload(conversation_id, card))

    async def add_reaction(self, message_id: str, emoji: str) -> str | None:
        result = await self._post(
            f"/messages/{quote(message_id, safe='')}/reactions",
            {"emoji": emoji},
        )
        if not result.ok or not isinstance(result.data, dict):
            logger.warning("Reaction %s on %s failed: %s", emoji, message_id, result.error)
            return None
        reaction_id = result.data.get("reaction_id")
        return reaction_id if isinstance(reaction_id, str) and reaction_id else None

    async def remove_reaction(self, message_id: str, reaction_id: str) -> None:
        url = (
            f"{self.base_url}/messages/{quote(message_id, safe='')}"
            f"/reactions/{quote(reaction_id, safe='')}"
        )
        result = await asyncio.to_thread(self._client.delete, url)
        if not result.ok:
            logger.warning(
                "Removing reaction %s from %s failed: %s", reaction_id, message_id, result.error
            )
