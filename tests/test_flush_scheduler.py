from __future__ import annotations

import asyncio
import json

from core.flush import FlushScheduler
from shared.models import BufferStatus, MessageBuffer, SessionContext, WriteResult
from tests.fakes import CardTransport, FakeTransport, ManualClock, RecordingSleep

CONTEXT = SessionContext(
    session_id="s1",
    conversation_id="chat-1",
    adapter_key="fake",
    requester_id="user-1",
)


def _scheduler(clock: ManualClock, sleep: RecordingSleep | None = None) -> FlushScheduler:
    return FlushScheduler(
        interval_seconds=0.9,
        retry_delay_seconds=0.5,
        clock=clock,
        sleep=sleep or RecordingSleep(),
    )


def test_first_flush_sends_and_records_platform_id() -> None:
    clock = ManualClock()
    scheduler = _scheduler(clock)
    transport = FakeTransport()
    buffer = MessageBuffer(message_id="m1", answer_text="Hello")

    async def run() -> None:
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport)

    asyncio.run(run())
    assert transport.sent[0][0] == "chat-1"
    assert "Hello" in transport.sent[0][1]
    assert buffer.platform_message_id == "msg-1"
    assert buffer.last_content_hash


def test_empty_buffer_is_not_sent() -> None:
    scheduler = _scheduler(ManualClock())
    transport = FakeTransport()

    async def run() -> None:
        assert not await scheduler.maybe_flush(MessageBuffer(message_id="m1"), CONTEXT, transport)

    asyncio.run(run())
    assert transport.writes == 0


def test_forced_failure_without_content_is_sent() -> None:
    scheduler = _scheduler(ManualClock())
    transport = FakeTransport()
    buffer = MessageBuffer(message_id="m1", status=BufferStatus.ERROR, status_note="api error")

    async def run() -> None:
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport, force=True)

    asyncio.run(run())
    assert "error: api error" in transport.sent[0][1]


def test_identical_content_is_written_once() -> None:
    clock = ManualClock()
    scheduler = _scheduler(clock)
    transport = FakeTransport()
    buffer = MessageBuffer(message_id="m1", answer_text="same")

    async def run() -> None:
        await scheduler.maybe_flush(buffer, CONTEXT, transport)
        clock.advance(5)
        assert not await scheduler.maybe_flush(buffer, CONTEXT, transport)

    asyncio.run(run())
    assert transport.writes == 1


def test_throttle_window_blocks_unforced_edits() -> None:
    clock = ManualClock()
    scheduler = _scheduler(clock)
    transport = FakeTransport()
    buffer = MessageBuffer(message_id="m1", answer_text="a")

    async def run() -> None:
        await scheduler.maybe_flush(buffer, CONTEXT, transport)
        buffer.answer_text += "b"
        clock.advance(0.5)
        assert not scheduler.is_due(buffer)
        assert not await scheduler.maybe_flush(buffer, CONTEXT, transport)
        clock.advance(0.5)
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport)

    asyncio.run(run())
    assert len(transport.sent) == 1
    assert len(transport.edits) == 1
    assert transport.edits[0][1] == "msg-1"


def test_force_bypasses_throttle_and_hash() -> None:
    clock = ManualClock()
    scheduler = _scheduler(clock)
    transport = FakeTransport()
    buffer = MessageBuffer(message_id="m1", answer_text="a")

    async def run() -> None:
        await scheduler.maybe_flush(buffer, CONTEXT, transport)
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport, force=True)

    asyncio.run(run())
    assert len(transport.edits) == 1


def test_retryable_edit_is_retried_once_after_delay() -> None:
    clock = ManualClock()
    sleep = RecordingSleep()
    scheduler = _scheduler(clock, sleep)
    transport = FakeTransport(edit_outcomes=[WriteResult.retryable("429")])
    buffer = MessageBuffer(message_id="m1", answer_text="a")

    async def run() -> None:
        await scheduler.maybe_flush(buffer, CONTEXT, transport)
        buffer.answer_text += "b"
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport, force=True)

    asyncio.run(run())
    assert len(transport.edits) == 2
    assert sleep.delays == [0.5]


def test_failed_retry_is_dropped_and_not_marked_written() -> None:
    clock = ManualClock()
    scheduler = _scheduler(clock)
    transport = FakeTransport(
        edit_outcomes=[RuntimeError("socket closed"), WriteResult.retryable("still down")]
    )
    buffer = MessageBuffer(message_id="m1", answer_text="a")

    async def run() -> None:
        await scheduler.maybe_flush(buffer, CONTEXT, transport)
        sent_hash = buffer.last_content_hash
        buffer.answer_text += "b"
        assert not await scheduler.maybe_flush(buffer, CONTEXT, transport, force=True)
        assert buffer.last_content_hash == sent_hash

    asyncio.run(run())
    assert len(transport.edits) == 2


def test_fatal_edit_is_not_retried() -> None:
    clock = ManualClock()
    sleep = RecordingSleep()
    scheduler = _scheduler(clock, sleep)
    transport = FakeTransport(edit_outcomes=[WriteResult.fatal("message deleted")])
    buffer = MessageBuffer(message_id="m1", answer_text="a")

    async def run() -> None:
        await scheduler.maybe_flush(buffer, CONTEXT, transport)
        buffer.answer_text += "b"
        assert not await scheduler.maybe_flush(buffer, CONTEXT, transport, force=True)

    asyncio.run(run())
    assert len(transport.edits) == 1
    assert sleep.delays == []


def test_send_without_message_id_is_retried_on_next_flush() -> None:
    clock = ManualClock()
    scheduler = _scheduler(clock)
    transport = FakeTransport(send_outcomes=[WriteResult.success(None)])
    buffer = MessageBuffer(message_id="m1", answer_text="a")

    async def run() -> None:
        assert not await scheduler.maybe_flush(buffer, CONTEXT, transport)
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport)

    asyncio.run(run())
    assert len(transport.sent) == 2
    assert buffer.platform_message_id == "msg-1"


def test_card_transport_gets_card_built_from_sections() -> None:
    clock = ManualClock()
    scheduler = _scheduler(clock)
    transport = CardTransport()
    answer = "Intro\n## Step 1\nrun it\n## Status\nall green"
    buffer = MessageBuffer(message_id="m1", answer_text=answer)

    async def run() -> None:
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport)
        buffer.answer_text += "\nmore"
        clock.advance(1)
        assert await scheduler.maybe_flush(buffer, CONTEXT, transport)

    asyncio.run(run())
    assert len(transport.cards) == 2
    assert transport.edits[0][1] == "msg-1"
    card = json.loads(transport.cards[-1])
    assert card["elements"][0]["text"]["content"] == answer + "\nmore"
    assert all(element["tag"] != "collapsible_panel" for element in card["elements"])
