from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any, cast

import requests

from shared.models import JSONValue

logger = logging.getLogger("ChatBridge.HTTPClient")

TRUNCATION_MARKER = "\n...[response truncated]"


@dataclass
class HttpConfig:
    timeout: int = 15
    max_bytes: int = 500_000
    max_json_bytes: int = 1_000_000


@dataclass(frozen=True)
class HttpResult:
    """Outcome of one HTTP call. ``status_code`` is None when no response arrived."""

    ok: bool
    data: JSONValue | None
    status_code: int | None
    error: str | None = None
    headers: dict[str, str] | None = None
    meta: dict[str, JSONValue] | None = None


class HttpClient:
    """Blocking requests wrapper that reports failures as results instead of raising.

    Callers on the event loop run it through ``asyncio.to_thread``.
    """

    def __init__(self, config: HttpConfig | None = None) -> None:
        self.config = config or HttpConfig()

    def get_text(self, url: str, **kwargs: Any) -> HttpResult:
        return self.request("GET", url, parse_json=False, **kwargs)

    def post_json(self, url: str, **kwargs: Any) -> HttpResult:
        return self.request("POST", url, parse_json=True, **kwargs)

    def post_text(self, url: str, **kwargs: Any) -> HttpResult:
        return self.request("POST", url, parse_json=False, **kwargs)

    def delete(self, url: str, **kwargs: Any) -> HttpResult:
        return self.request("DELETE", url, parse_json=False, **kwargs)

    def request(self, method: str, url: str, *, parse_json: bool, **kwargs: Any) -> HttpResult:
        kwargs.setdefault("timeout", self.config.timeout)
        try:
            response = requests.request(method=method, url=url, stream=True, **kwargs)
        except requests.Timeout:
            logger.error("HTTP %s timeout for %s", method, url)
            return HttpResult(ok=False, data=None, status_code=None, error="timeout")
        except requests.RequestException as exc:
            logger.error("HTTP %s error for %s: %s", method, url, exc)
            return HttpResult(ok=False, data=None, status_code=None, error=str(exc))

        status = response.status_code
        headers = dict(response.headers)
        try:
            response.raise_for_status()
        except requests.HTTPError as exc:
            logger.error("HTTP %s status %s for %s", method, status, url)
            return HttpResult(
                ok=False,
                data=None,
                status_code=status,
                error=str(exc),
                headers=headers,
            )

        body, truncated = self._read_body(response)
        meta: dict[str, JSONValue] = {"truncated": truncated, "status_code": status}
        if not parse_json:
            return HttpResult(ok=True, data=body, status_code=status, headers=headers, meta=meta)
        return self._json_result(method, url, body, truncated, status, headers, meta)

    def _json_result(
        self,
        method: str,
        url: str,
        body: str,
        truncated: bool,
        status: int,
        headers: dict[str, str],
        meta: dict[str, JSONValue],
    ) -> HttpResult:
        error: str | None = None
        data: JSONValue | None = None
        if truncated or len(body.encode("utf-8")) > self.config.max_json_bytes:
            error = "payload_too_large"
        elif body.strip():
            try:
                data = cast(JSONValue, json.loads(body))
            except json.JSONDecodeError as exc:
                error = f"json_decode_error: {exc}"
        if error is not None:
            logger.error("HTTP %s bad JSON body from %s: %s", method, url, error)
            return HttpResult(
                ok=False,
                data=None,
                status_code=status,
                error=error,
                headers=headers,
                meta=meta,
            )
        return HttpResult(ok=True, data=data, status_code=status, headers=headers, meta=meta)

    def _read_body(self, response: requests.Response) -> tuple[str, bool]:
        budget = self.config.max_bytes
        parts: list[str] = []
        for chunk in response.iter_content(chunk_size=4096, decode_unicode=True):
            if not chunk:
                continue
            text = chunk if isinstance(chunk, str) else chunk.decode("utf-8", errors="replace")
            budget -= len(text.encode("utf-8"))
            if budget < 0:
                parts.append(TRUNCATION_MARKER)
                return "".join(parts), True
            parts.append(text)
        return "".join(parts), False
