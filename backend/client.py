from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterator
from typing import Final
from urllib.parse import quote

import aiohttp

from backend.sse import iter_sse_events
from shared.http_client import HttpClient, HttpConfig, HttpResult
from shared.models import JSONValue

logger = logging.getLogger("ChatBridge.Backend")

DEFAULT_TIMEOUT: Final[int] = 30
DEFAULT_PROMPT_TIMEOUT: Final[int] = 600


class BackendRequestError(RuntimeError):
    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class SessionNotFoundError(BackendRequestError):
    pass


class BackendClient:
    """Client for the AI session backend: sessions, prompts and the event feed."""

    def __init__(
        self,
        base_url: str,
        *,
        http_client: HttpClient | None = None,
        timeout: int = DEFAULT_TIMEOUT,
        prompt_timeout: int = DEFAULT_PROMPT_TIMEOUT,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self._http = http_client or HttpClient(HttpConfig(timeout=timeout))
        self._timeout = timeout
        self._prompt_timeout = prompt_timeout

    async def create_session(self, title: str) -> str:
        result = await asyncio.to_thread(
            self._http.post_json,
            f"{self.base_url}/session",
            json={"title": title},
        )
        if not result.ok:
            raise BackendRequestError(
                f"Failed to create session: {result.error}",
                result.status_code,
            )
        data = result.data if isinstance(result.data, dict) else {}
        session_id = data.get("id")
        if not isinstance(session_id, str) or not session_id.strip():
            raise BackendRequestError("Backend returned no session id", result.status_code)
        return session_id.strip()

    async def prompt_session(self, session_id: str, text: str) -> None:
        result = await asyncio.to_thread(
            self._http.post_text,
            f"{self.base_url}/session/{quote(session_id, safe='')}/message",
            json={"parts": [{"type": "text", "text": text}]},
            timeout=self._prompt_timeout,
        )
        _raise_for_session_result(result, session_id)

    async def subscribe_events(self) -> AsyncIterator[dict[str, JSONValue]]:
        timeout = aiohttp.ClientTimeout(total=None, sock_connect=self._timeout)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            async with session.get(
                f"{self.base_url}/event",
                headers={"Accept": "text/event-stream"},
            ) as response:
                response.raise_for_status()
                logger.info("Connected to event stream at %s", self.base_url)
                async for event in iter_sse_events(response.content.iter_any()):
                    yield event


def _raise_for_session_result(result: HttpResult, session_id: str) -> None:
    if result.ok:
        return
    if result.status_code == 404:
        raise SessionNotFoundError(f"Session {session_id} not found", 404)
    raise BackendRequestError(f"Prompt failed: {result.error}", result.status_code)
