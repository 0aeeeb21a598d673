from __future__ import annotations

import asyncio

from backend.client import BackendRequestError, SessionNotFoundError
from core.dedup import DuplicateGuard
from core.inbound import LOADING_EMOJI, PING_REPLY, IncomingMessageHandler, is_ping
from core.session_router import SessionRouter
from shared.models import SessionContext
from tests.fakes import FakeBackend, FakeTransport, ReactingTransport


def _handler(
    transport: FakeTransport,
    backend: FakeBackend | None = None,
    guard: DuplicateGuard | None = None,
    adapter_key: str = "relay",
) -> tuple[IncomingMessageHandler, FakeBackend, SessionRouter]:
    backend = backend or FakeBackend()
    router = SessionRouter(backend)
    handler = IncomingMessageHandler(
        backend,
        router,
        transport,
        adapter_key,
        guard or DuplicateGuard(),
    )
    return handler, backend, router


def test_is_ping() -> None:
    assert is_ping(" PING ")
    assert not is_ping("ping me")


def test_ping_replies_without_backend() -> None:
    transport = FakeTransport()
    handler, backend, _ = _handler(transport)

    assert asyncio.run(handler.on_incoming_message("chat-1", "ping", "in-1", "user-1"))
    assert transport.sent == [("chat-1", PING_REPLY)]
    assert backend.created == []
    assert backend.prompts == []


def test_prompt_creates_session_and_binds_context() -> None:
    transport = FakeTransport()
    handler, backend, router = _handler(transport)

    asyncio.run(handler.on_incoming_message("chat-1", "hello", "in-1", "user-1"))
    assert backend.prompts == [("ses-1", "hello")]
    assert router.resolve("ses-1") == SessionContext(
        session_id="ses-1",
        conversation_id="chat-1",
        adapter_key="relay",
        requester_id="user-1",
    )
    assert transport.sent == []


def test_redelivered_message_reaches_prompt_once() -> None:
    transport = FakeTransport()
    handler, backend, _ = _handler(transport)

    async def run() -> list[bool]:
        return [
            await handler.on_incoming_message("chat-1", "hello", "in-1", "user-1"),
            await handler.on_incoming_message("chat-1", "hello", "in-1", "user-1"),
        ]

    assert asyncio.run(run()) == [True, False]
    assert len(backend.prompts) == 1


def test_guard_is_scoped_by_adapter() -> None:
    guard = DuplicateGuard()
    first, _, _ = _handler(FakeTransport(), guard=guard, adapter_key="relay")
    second, _, _ = _handler(FakeTransport(), guard=guard, adapter_key="other")
    assert not first.is_duplicate("in-1")
    assert not second.is_duplicate("in-1")
    assert first.is_duplicate("in-1")


def test_missing_session_evicts_cache_and_replies() -> None:
    transport = FakeTransport()
    backend = FakeBackend()
    backend.prompt_errors.append(SessionNotFoundError("Session ses-1 not found", 404))
    handler, _, router = _handler(transport, backend)

    async def run() -> None:
        await handler.on_incoming_message("chat-1", "hello", "in-1", "user-1")
        assert router.cached_session("relay", "chat-1") is None
        await handler.on_incoming_message("chat-1", "again", "in-2", "user-1")

    asyncio.run(run())
    assert transport.sent == [("chat-1", "Error: Session ses-1 not found")]
    assert backend.prompts[-1] == ("ses-2", "again")


def test_other_prompt_errors_reply_and_keep_session() -> None:
    transport = FakeTransport()
    backend = FakeBackend()
    backend.prompt_errors.append(BackendRequestError("Prompt failed: timeout"))
    handler, _, router = _handler(transport, backend)

    asyncio.run(handler.on_incoming_message("chat-1", "hello", "in-1", "user-1"))
    assert transport.sent == [("chat-1", "Error: Prompt failed: timeout")]
    assert router.cached_session("relay", "chat-1") == "ses-1"


def test_loading_reaction_is_added_and_removed() -> None:
    transport = ReactingTransport()
    backend = FakeBackend()
    backend.prompt_errors.append(RuntimeError("boom"))
    handler, _, _ = _handler(transport, backend)

    asyncio.run(handler.on_incoming_message("chat-1", "hello", "in-1", "user-1"))
    assert transport.reactions == [("in-1", LOADING_EMOJI)]
    assert transport.removed == [("in-1", "reaction-1")]
