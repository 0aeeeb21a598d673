from __future__ import annotations

from core.contracts import ChatTransport


class AdapterMux:
    def __init__(self) -> None:
        self._adapters: dict[str, ChatTransport] = {}

    def register(self, key: str, transport: ChatTransport) -> None:
        normalized = key.strip()
        if not normalized:
            raise ValueError("adapter key must be non-empty")
        self._adapters[normalized] = transport

    def get(self, key: str) -> ChatTransport | None:
        return self._adapters.get(key)

    def keys(self) -> list[str]:
        return list(self._adapters)
