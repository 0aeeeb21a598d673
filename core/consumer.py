from __future__ import annotations

import asyncio
import contextlib
import logging
from collections.abc import Awaitable, Callable

from core.buffer_store import BufferStore, apply_part
from core.contracts import BackendApi, ChatTransport
from core.events import (
    BackendError,
    BridgeEvent,
    IgnoredEvent,
    MessageMetadata,
    PartDelta,
    SessionDeleted,
    SessionError,
    SessionIdle,
    decode_event,
)
from core.flush import FlushScheduler
from core.session_router import SessionRouter
from shared.models import BufferStatus, SessionContext
from shared.sanitize import sanitize_record
from transport.mux import AdapterMux

logger = logging.getLogger("ChatBridge.Consumer")

DEFAULT_RECONNECT_BASE_SECONDS = 5.0
DEFAULT_RECONNECT_CAP_SECONDS = 60.0
DEFAULT_STOP_TIMEOUT_SECONDS = 5.0

Route = tuple[SessionContext, ChatTransport]


def classify_backend_error(
    error: BackendError | None,
    *,
    default: str = "error",
) -> tuple[BufferStatus, str]:
    name = error.name if error else None
    message = error.message if error else None
    if name == "MessageAbortedError":
        return BufferStatus.ABORTED, message or "aborted"
    if name == "MessageOutputLengthError":
        return BufferStatus.ERROR, "output too long"
    if name == "APIError":
        return BufferStatus.ERROR, message or "api error"
    return BufferStatus.ERROR, message or name or default


class EventStreamConsumer:
    """Drains the backend event feed and mirrors it into chat messages.

    A single task owns the buffer store and the router, so buffer state is
    only ever touched from ``dispatch``. When the feed fails or ends, every
    open buffer is flushed and the subscription is retried after
    ``min(base * attempt, cap)`` seconds; the attempt counter resets as soon
    as a new subscription delivers its first event.
    """

    def __init__(
        self,
        backend: BackendApi,
        router: SessionRouter,
        store: BufferStore,
        scheduler: FlushScheduler,
        mux: AdapterMux,
        *,
        reconnect_base_seconds: float = DEFAULT_RECONNECT_BASE_SECONDS,
        reconnect_cap_seconds: float = DEFAULT_RECONNECT_CAP_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self._backend = backend
        self._router = router
        self._store = store
        self._scheduler = scheduler
        self._mux = mux
        self._reconnect_base = reconnect_base_seconds
        self._reconnect_cap = reconnect_cap_seconds
        self._sleep = sleep
        self._stopping = False
        self._busy = False
        self._attempt = 0
        self._task: asyncio.Task[None] | None = None

    @property
    def attempt(self) -> int:
        return self._attempt

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def backoff_delay(self, attempt: int) -> float:
        return min(self._reconnect_base * attempt, self._reconnect_cap)

    def start(self) -> asyncio.Task[None]:
        if self._task is None or self._task.done():
            self._stopping = False
            self._task = asyncio.create_task(self.run(), name="chatbridge-consumer")
        return self._task

    async def stop(self, timeout: float = DEFAULT_STOP_TIMEOUT_SECONDS) -> None:
        self._stopping = True
        task = self._task
        if task is None or task.done():
            return
        # Idle waits (stream read, reconnect sleep) are cut short; a dispatch
        # in progress is left to finish its write.
        if not self._busy:
            task.cancel()
        done, _ = await asyncio.wait({task}, timeout=timeout)
        if not done:
            task.cancel()
            await asyncio.wait({task})

    async def run(self) -> None:
        logger.info("Starting event subscription")
        while not self._stopping:
            try:
                await self._consume_once()
            except Exception as exc:  # noqa: BLE001
                if self._stopping:
                    break
                logger.error("Event stream disconnected: %s", exc)
            else:
                if self._stopping:
                    break
                logger.warning("Event stream ended")

            self._busy = True
            try:
                await self.flush_all()
            finally:
                self._busy = False
            if self._stopping:
                break
            self._attempt += 1
            delay = self.backoff_delay(self._attempt)
            logger.info("Reconnecting in %.1fs (attempt %d)", delay, self._attempt)
            await self._sleep(delay)
        logger.info("Event subscription stopped")

    async def _consume_once(self) -> None:
        connected = False
        async with contextlib.aclosing(self._backend.subscribe_events()) as stream:
            async for raw in stream:
                if self._stopping:
                    break
                if not connected:
                    connected = True
                    if self._attempt:
                        logger.info("Event stream reconnected after %d attempt(s)", self._attempt)
                    self._attempt = 0
                event = decode_event(raw)
                if isinstance(event, IgnoredEvent) and logger.isEnabledFor(logging.DEBUG):
                    logger.debug("Ignored event %s", sanitize_record(raw))
                self._busy = True
                try:
                    await self.dispatch(event)
                finally:
                    self._busy = False

    async def dispatch(self, event: BridgeEvent) -> None:
        try:
            if isinstance(event, PartDelta):
                await self._on_part(event)
            elif isinstance(event, MessageMetadata):
                await self._on_metadata(event)
            elif isinstance(event, SessionError):
                await self._on_session_error(event)
            elif isinstance(event, SessionIdle):
                await self._on_session_idle(event)
            elif isinstance(event, SessionDeleted):
                await self._on_session_deleted(event)
        except Exception:  # noqa: BLE001
            logger.exception("Failed to handle %s", type(event).__name__)

    async def flush_all(self) -> None:
        for session_id, message_id in self._router.active_messages():
            route = self._route(session_id)
            if route is None:
                continue
            try:
                await self._flush(message_id, route, force=True)
            except Exception:  # noqa: BLE001
                logger.exception("Flush of %s failed", message_id)

    def _route(self, session_id: str) -> Route | None:
        context = self._router.resolve(session_id)
        if context is None:
            return None
        transport = self._mux.get(context.adapter_key)
        if transport is None:
            return None
        return context, transport

    async def _flush(self, message_id: str, route: Route, *, force: bool) -> None:
        buffer = self._store.get(message_id)
        if buffer is None:
            return
        context, transport = route
        await self._scheduler.maybe_flush(buffer, context, transport, force=force)

    async def _activate(self, session_id: str, message_id: str, route: Route) -> None:
        previous = self._router.active_message(session_id)
        if previous and previous != message_id and previous in self._store:
            self._store.mark_done(previous)
            try:
                await self._flush(previous, route, force=True)
            finally:
                self._store.retire(previous)
        self._router.set_active_message(session_id, message_id)

    def _is_stale(self, session_id: str, message_id: str) -> bool:
        if self._store.is_retired(message_id):
            return True
        if self._router.active_message(session_id) == message_id:
            return False
        buffer = self._store.get(message_id)
        return buffer is not None and buffer.status is not BufferStatus.STREAMING

    async def _on_metadata(self, event: MessageMetadata) -> None:
        if event.session_id is None:
            return
        route = self._route(event.session_id)
        if route is None:
            return
        self._store.record_role(event.message_id, event.role)
        if event.role != "assistant":
            return
        # Late updates for finished messages must not take over the session
        if self._is_stale(event.session_id, event.message_id):
            logger.debug("Ignoring late update for message %s", event.message_id)
            return
        await self._activate(event.session_id, event.message_id, route)
        self._store.get_or_init(event.message_id, event.session_id)

        if event.error is not None:
            status, note = classify_backend_error(event.error)
            self._store.mark_failed(event.message_id, status, note)
            await self._flush(event.message_id, route, force=True)
        elif event.finish or event.completed_at:
            self._store.mark_done(event.message_id, event.finish or "completed")
            await self._flush(event.message_id, route, force=True)

    async def _on_part(self, event: PartDelta) -> None:
        if self._store.role_of(event.message_id) == "user":
            return
        route = self._route(event.session_id)
        if route is None:
            return
        if self._store.is_retired(event.message_id):
            logger.debug("Ignoring late part for message %s", event.message_id)
            return
        await self._activate(event.session_id, event.message_id, route)

        buffer = self._store.get_or_init(event.message_id, event.session_id)
        apply_part(buffer, event.part, event.delta)
        if event.part.kind == "step-finish":
            self._store.mark_done(event.message_id, event.part.reason or "step-finish")

        context, transport = route
        await self._scheduler.maybe_flush(buffer, context, transport)

    async def _on_session_error(self, event: SessionError) -> None:
        route = self._route(event.session_id)
        message_id = self._router.active_message(event.session_id)
        if route is None or message_id is None:
            return
        status, note = classify_backend_error(event.error, default="session.error")
        self._store.mark_failed(message_id, status, note)
        await self._flush(message_id, route, force=True)

    async def _on_session_idle(self, event: SessionIdle) -> None:
        route = self._route(event.session_id)
        message_id = self._router.active_message(event.session_id)
        if route is None or message_id is None:
            return
        buffer = self._store.get(message_id)
        if buffer is None:
            return
        if not buffer.status.is_failure:
            self._store.mark_done(message_id, "idle")
        await self._flush(message_id, route, force=True)

    async def _on_session_deleted(self, event: SessionDeleted) -> None:
        route = self._route(event.session_id)
        message_id = self._router.active_message(event.session_id)
        if route is not None and message_id is not None:
            buffer = self._store.get(message_id)
            if buffer is not None and buffer.status is BufferStatus.STREAMING:
                self._store.mark_done(message_id, "deleted")
            await self._flush(message_id, route, force=True)
        self._router.forget(event.session_id)
        self._store.discard_session(event.session_id)
