from __future__ import annotations

import logging
from dataclasses import dataclass

from aiohttp import web

from config.bridge_config import BridgeConfig, resolve_bridge_config
from server.bridge import Bridge
from server.http.responses import accepted_response, error_response, json_response

logger = logging.getLogger("ChatBridge.HttpAPI")


@dataclass(frozen=True)
class InboundRequest:
    conversation_id: str
    text: str
    message_id: str
    sender_id: str


def _parse_inbound_payload(payload: dict[str, object]) -> tuple[InboundRequest | None, str]:
    conversation_id = payload.get("conversation_id")
    if not isinstance(conversation_id, str) or not conversation_id.strip():
        return None, "conversation_id must be a non-empty string."
    text = payload.get("text")
    if not isinstance(text, str) or not text.strip():
        return None, "text must be a non-empty string."
    message_id = payload.get("message_id", "")
    if message_id is None:
        message_id = ""
    if not isinstance(message_id, str):
        return None, "message_id must be a string."
    sender_id = payload.get("sender_id", "")
    if sender_id is None:
        sender_id = ""
    if not isinstance(sender_id, str):
        return None, "sender_id must be a string."
    return (
        InboundRequest(
            conversation_id=conversation_id.strip(),
            text=text,
            message_id=message_id.strip(),
            sender_id=sender_id.strip(),
        ),
        "",
    )


async def handle_inbound(request: web.Request) -> web.Response:
    bridge = request.app["bridge"]
    adapter_key = request.match_info["adapter"]
    handler = bridge.handler(adapter_key)
    if handler is None:
        return error_response(404, "unknown_adapter", f"Unknown adapter: {adapter_key}")

    try:
        payload = await request.json()
    except Exception as exc:  # noqa: BLE001
        return error_response(400, "invalid_json", f"Invalid JSON: {exc}")
    if not isinstance(payload, dict):
        return error_response(400, "invalid_json", "JSON body must be an object.")

    parsed, error_text = _parse_inbound_payload(payload)
    if parsed is None:
        return error_response(400, "invalid_request_error", error_text)

    if handler.is_duplicate(parsed.message_id):
        logger.info("Duplicate inbound message %s from %s", parsed.message_id, adapter_key)
        return accepted_response(duplicate=True)

    bridge.schedule(
        handler.process(
            parsed.conversation_id,
            parsed.text,
            parsed.message_id,
            parsed.sender_id,
        )
    )
    return accepted_response()


async def handle_health(request: web.Request) -> web.Response:
    return json_response(request.app["bridge"].status())


async def _on_startup(app: web.Application) -> None:
    app["bridge"].start()


async def _on_cleanup(app: web.Application) -> None:
    await app["bridge"].stop()


def create_app(bridge: Bridge, *, max_request_bytes: int | None = None) -> web.Application:
    app = web.Application(client_max_size=max_request_bytes or bridge.config.max_request_bytes)
    app["bridge"] = bridge
    app.router.add_post("/bridge/{adapter}/inbound", handle_inbound)
    app.router.add_get("/health", handle_health)
    app.on_startup.append(_on_startup)
    app.on_cleanup.append(_on_cleanup)
    return app


def run_server(config: BridgeConfig) -> None:
    bridge = Bridge(config)
    app = create_app(bridge)
    logger.info("Bridging %s on %s:%s", config.backend_url, config.host, config.port)
    web.run_app(app, host=config.host, port=config.port)


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    config = resolve_bridge_config()
    run_server(config)


if __name__ == "__main__":
    main()
