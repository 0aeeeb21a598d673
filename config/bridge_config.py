from __future__ import annotations

import json
import os
from dataclasses import dataclass
from pathlib import Path

DEFAULT_BACKEND_URL = "http://127.0.0.1:4096"
DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8787
DEFAULT_MAX_REQUEST_BYTES = 1_000_000
DEFAULT_UPDATE_INTERVAL_MS = 900
DEFAULT_EDIT_RETRY_DELAY_MS = 500
DEFAULT_RECONNECT_BASE_SECONDS = 5.0
DEFAULT_RECONNECT_CAP_SECONDS = 60.0
DEFAULT_DEDUP_CAPACITY = 2000
DEFAULT_REQUEST_TIMEOUT_SECONDS = 30
DEFAULT_PATH = Path("config/bridge.json")

_INT_FIELDS = (
    "port",
    "max_request_bytes",
    "update_interval_ms",
    "edit_retry_delay_ms",
    "dedup_capacity",
    "request_timeout_seconds",
)
_FLOAT_FIELDS = ("reconnect_base_seconds", "reconnect_cap_seconds")


@dataclass(frozen=True)
class BridgeConfig:
    backend_url: str = DEFAULT_BACKEND_URL
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    max_request_bytes: int = DEFAULT_MAX_REQUEST_BYTES
    relay_url: str | None = None
    relay_cards: bool = False
    update_interval_ms: int = DEFAULT_UPDATE_INTERVAL_MS
    edit_retry_delay_ms: int = DEFAULT_EDIT_RETRY_DELAY_MS
    reconnect_base_seconds: float = DEFAULT_RECONNECT_BASE_SECONDS
    reconnect_cap_seconds: float = DEFAULT_RECONNECT_CAP_SECONDS
    dedup_capacity: int = DEFAULT_DEDUP_CAPACITY
    request_timeout_seconds: int = DEFAULT_REQUEST_TIMEOUT_SECONDS

    def to_dict(self) -> dict[str, object]:
        return {
            "backend_url": self.backend_url,
            "host": self.host,
            "port": self.port,
            "max_request_bytes": self.max_request_bytes,
            "relay_url": self.relay_url,
            "relay_cards": self.relay_cards,
            "update_interval_ms": self.update_interval_ms,
            "edit_retry_delay_ms": self.edit_retry_delay_ms,
            "reconnect_base_seconds": self.reconnect_base_seconds,
            "reconnect_cap_seconds": self.reconnect_cap_seconds,
            "dedup_capacity": self.dedup_capacity,
            "request_timeout_seconds": self.request_timeout_seconds,
        }


def _required_str(data: dict[str, object], key: str, default: str) -> str:
    value = data.get(key, default)
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"bridge.{key} must be a non-empty string.")
    return value.strip()


def load_bridge_config(path: Path = DEFAULT_PATH) -> BridgeConfig:
    if not path.exists():
        return BridgeConfig()
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except Exception as exc:  # noqa: BLE001
        raise RuntimeError(f"Failed to read {path.name}: {exc}") from exc
    if not isinstance(data, dict):
        raise ValueError(f"{path.name} must contain an object.")

    defaults = BridgeConfig()
    backend_url = _required_str(data, "backend_url", defaults.backend_url)
    host = _required_str(data, "host", defaults.host)

    relay_url = data.get("relay_url")
    if relay_url is not None and (not isinstance(relay_url, str) or not relay_url.strip()):
        raise ValueError("bridge.relay_url must be a non-empty string or null.")
    relay_cards = data.get("relay_cards", defaults.relay_cards)
    if not isinstance(relay_cards, bool):
        raise ValueError("bridge.relay_cards must be bool.")

    numbers: dict[str, int | float] = {}
    for key in _INT_FIELDS:
        value = data.get(key, getattr(defaults, key))
        if not isinstance(value, int) or isinstance(value, bool):
            raise ValueError(f"bridge.{key} must be int.")
        numbers[key] = value
    for key in _FLOAT_FIELDS:
        value = data.get(key, getattr(defaults, key))
        if not isinstance(value, (int, float)) or isinstance(value, bool):
            raise ValueError(f"bridge.{key} must be a number.")
        numbers[key] = float(value)

    return BridgeConfig(
        backend_url=backend_url.rstrip("/"),
        host=host,
        relay_url=relay_url.strip().rstrip("/") if isinstance(relay_url, str) else None,
        relay_cards=relay_cards,
        port=int(numbers["port"]),
        max_request_bytes=int(numbers["max_request_bytes"]),
        update_interval_ms=int(numbers["update_interval_ms"]),
        edit_retry_delay_ms=int(numbers["edit_retry_delay_ms"]),
        dedup_capacity=int(numbers["dedup_capacity"]),
        request_timeout_seconds=int(numbers["request_timeout_seconds"]),
        reconnect_base_seconds=float(numbers["reconnect_base_seconds"]),
        reconnect_cap_seconds=float(numbers["reconnect_cap_seconds"]),
    )


def _env_int(name: str, current: int) -> int:
    raw = os.getenv(name)
    if not isinstance(raw, str) or not raw.strip():
        return current
    try:
        return int(raw.strip())
    except ValueError as exc:
        raise ValueError(f"{name} must be int.") from exc


def resolve_bridge_config(path: Path = DEFAULT_PATH) -> BridgeConfig:
    config = load_bridge_config(path)
    backend_raw = os.getenv("CHATBRIDGE_BACKEND_URL")
    host_raw = os.getenv("CHATBRIDGE_HOST")
    relay_raw = os.getenv("CHATBRIDGE_RELAY_URL")
    cards_raw = os.getenv("CHATBRIDGE_RELAY_CARDS")

    backend_url = config.backend_url
    if isinstance(backend_raw, str) and backend_raw.strip():
        backend_url = backend_raw.strip().rstrip("/")

    host = config.host
    if isinstance(host_raw, str) and host_raw.strip():
        host = host_raw.strip()

    relay_url = config.relay_url
    if isinstance(relay_raw, str) and relay_raw.strip():
        relay_url = relay_raw.strip().rstrip("/")

    relay_cards = config.relay_cards
    if isinstance(cards_raw, str) and cards_raw.strip():
        relay_cards = cards_raw.strip().lower() in {"1", "true", "yes", "on"}

    return BridgeConfig(
        backend_url=backend_url,
        host=host,
        port=_env_int("CHATBRIDGE_PORT", config.port),
        max_request_bytes=config.max_request_bytes,
        relay_url=relay_url,
        relay_cards=relay_cards,
        update_interval_ms=_env_int("CHATBRIDGE_UPDATE_INTERVAL_MS", config.update_interval_ms),
        edit_retry_delay_ms=config.edit_retry_delay_ms,
        reconnect_base_seconds=config.reconnect_base_seconds,
        reconnect_cap_seconds=config.reconnect_cap_seconds,
        dedup_capacity=config.dedup_capacity,
        request_timeout_seconds=config.request_timeout_seconds,
    )
