from __future__ import annotations

from aiohttp import web

from shared.models import JSONValue


def json_response(payload: dict[str, JSONValue], *, status: int = 200) -> web.Response:
    return web.json_response(payload, status=status)


def error_response(
    status: int,
    code: str,
    message: str,
    *,
    details: dict[str, JSONValue] | None = None,
) -> web.Response:
    error_type = "server_error" if status >= 500 else "invalid_request_error"
    return json_response(
        {
            "error": {
                "message": message,
                "type": error_type,
                "code": code,
                "details": details or {},
            }
        },
        status=status,
    )


def accepted_response(*, duplicate: bool = False) -> web.Response:
    payload: dict[str, JSONValue] = {"accepted": not duplicate}
    if duplicate:
        payload["duplicate"] = True
    return json_response(payload, status=202)
