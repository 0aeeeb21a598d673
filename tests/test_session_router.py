from __future__ import annotations

import asyncio
import re

import pytest

from core.session_router import SessionRouter, session_title
from shared.models import SessionContext
from tests.fakes import FakeBackend


class EmptyBackend(FakeBackend):
    async def create_session(self, title: str) -> str:
        return ""


def _context(session_id: str) -> SessionContext:
    return SessionContext(
        session_id=session_id,
        conversation_id="conv-1234",
        adapter_key="relay",
        requester_id="user-1",
    )


def test_session_title_format() -> None:
    title = session_title("relay", "conversation-9876")
    assert re.fullmatch(r"\[relay\] Chat 9876 \[\d{2}:\d{2}:\d{2}\]", title)


def test_acquire_session_caches_per_conversation() -> None:
    backend = FakeBackend()
    router = SessionRouter(backend)

    async def run() -> None:
        first = await router.acquire_session("relay", "conv-1")
        again = await router.acquire_session("relay", "conv-1")
        other = await router.acquire_session("relay", "conv-2")
        assert first == again == "ses-1"
        assert other == "ses-2"

    asyncio.run(run())
    assert len(backend.created) == 2
    assert router.cached_session("relay", "conv-1") == "ses-1"


def test_evict_forces_new_session() -> None:
    backend = FakeBackend()
    router = SessionRouter(backend)

    async def run() -> None:
        await router.acquire_session("relay", "conv-1")
        assert router.evict("relay", "conv-1") == "ses-1"
        assert await router.acquire_session("relay", "conv-1") == "ses-2"

    asyncio.run(run())
    assert router.evict("relay", "missing") is None


def test_empty_session_id_raises() -> None:
    router = SessionRouter(EmptyBackend())
    with pytest.raises(RuntimeError, match="Failed to init session"):
        asyncio.run(router.acquire_session("relay", "conv-1"))


def test_forget_drops_context_pointer_and_cache() -> None:
    router = SessionRouter(FakeBackend())

    async def run() -> None:
        session_id = await router.acquire_session("relay", "conv-1234")
        router.bind(session_id, _context(session_id))
        router.set_active_message(session_id, "m1")

    asyncio.run(run())
    assert router.resolve("ses-1") == _context("ses-1")
    assert list(router.active_messages()) == [("ses-1", "m1")]
    router.forget("ses-1")
    assert router.resolve("ses-1") is None
    assert router.active_message("ses-1") is None
    assert router.cached_session("relay", "conv-1234") is None
    assert router.session_ids() == []
