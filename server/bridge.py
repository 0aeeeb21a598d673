from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Coroutine, Mapping
from typing import Any

from backend.client import BackendClient
from config.bridge_config import BridgeConfig
from core.buffer_store import BufferStore
from core.consumer import EventStreamConsumer
from core.contracts import BackendApi, ChatTransport
from core.dedup import DuplicateGuard
from core.flush import FlushScheduler
from core.inbound import IncomingMessageHandler
from core.session_router import SessionRouter
from shared.models import JSONValue
from transport.mux import AdapterMux
from transport.relay import RELAY_ADAPTER_KEY, RelayTransport

logger = logging.getLogger("ChatBridge.Bridge")


class Bridge:
    """Wires the backend, the sync engine and the chat adapters together."""

    def __init__(
        self,
        config: BridgeConfig,
        *,
        backend: BackendApi | None = None,
        transports: Mapping[str, ChatTransport] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.config = config
        self.backend: BackendApi = backend or BackendClient(
            config.backend_url,
            timeout=config.request_timeout_seconds,
        )
        self.store = BufferStore()
        self.router = SessionRouter(self.backend)
        self.mux = AdapterMux()
        for key, transport in (transports or {}).items():
            self.mux.register(key, transport)
        if config.relay_url and self.mux.get(RELAY_ADAPTER_KEY) is None:
            self.mux.register(
                RELAY_ADAPTER_KEY,
                RelayTransport(
                    config.relay_url,
                    cards=config.relay_cards,
                    timeout=config.request_timeout_seconds,
                ),
            )
        self.scheduler = FlushScheduler(
            interval_seconds=config.update_interval_ms / 1000,
            retry_delay_seconds=config.edit_retry_delay_ms / 1000,
            sleep=sleep,
        )
        self.consumer = EventStreamConsumer(
            self.backend,
            self.router,
            self.store,
            self.scheduler,
            self.mux,
            reconnect_base_seconds=config.reconnect_base_seconds,
            reconnect_cap_seconds=config.reconnect_cap_seconds,
            sleep=sleep,
        )
        self.guard = DuplicateGuard(config.dedup_capacity)
        self._handlers: dict[str, IncomingMessageHandler] = {}
        self._tasks: set[asyncio.Task[None]] = set()

    def handler(self, adapter_key: str) -> IncomingMessageHandler | None:
        handler = self._handlers.get(adapter_key)
        if handler is not None:
            return handler
        transport = self.mux.get(adapter_key)
        if transport is None:
            return None
        handler = IncomingMessageHandler(
            self.backend,
            self.router,
            transport,
            adapter_key,
            self.guard,
        )
        self._handlers[adapter_key] = handler
        return handler

    def schedule(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task[None]:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def start(self) -> None:
        if not self.mux.keys():
            logger.warning("No chat adapters registered; inbound messages will be rejected")
        self.consumer.start()

    async def stop(self) -> None:
        await self.consumer.stop()
        pending = list(self._tasks)
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)
        self.router.clear()
        self.store.clear()

    def status(self) -> dict[str, JSONValue]:
        return {
            "ok": True,
            "adapters": list(self.mux.keys()),
            "sessions": len(self.router.session_ids()),
            "buffers": len(self.store),
            "consumer_running": self.consumer.running,
            "reconnect_attempt": self.consumer.attempt,
        }
