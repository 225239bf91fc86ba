"""JSON-over-HTTP transport shared by the Hub and Fleet helpers."""

from __future__ import annotations

import json
import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Any, Protocol

import aiohttp

from tachobridge._constants import USER_AGENT
from tachobridge._redact import redact_for_log
from tachobridge.exceptions import BridgeTransportError

_logger = logging.getLogger(__name__)

QueryParams = Mapping[str, str] | Sequence[tuple[str, str]]


@dataclass(frozen=True, slots=True)
class HttpResponse:
    """Status and decoded body of a completed HTTP exchange.

    ``data`` is ``None`` when the body is empty or not JSON; interpreting
    that is left to the endpoint helpers.
    """

    status: int
    data: Any = None
    text: str = ""

    @property
    def ok(self) -> bool:
        return 200 <= self.status < 300


class Transport(Protocol):
    """Structural transport interface used by endpoint modules.

    Having a protocol here makes it easy to pass test doubles while keeping
    the production implementation (`AiohttpTransport`) concrete.
    """

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        params: QueryParams | None = None,
    ) -> HttpResponse:
        ...


def _decode_body(text: str) -> Any:
    if not text.strip():
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        _logger.debug("Could not parse JSON response: %s", text[:200])
        return None


class AiohttpTransport:
    """HTTP transport on top of a shared :class:`aiohttp.ClientSession`.

    Never raises on HTTP status; only network failures become
    :class:`BridgeTransportError` (with ``status_code=None``).
    """

    def __init__(self, http_session: aiohttp.ClientSession, *, timeout: float = 30.0) -> None:
        self._http = http_session
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def request(
        self,
        method: str,
        url: str,
        *,
        headers: Mapping[str, str] | None = None,
        json_body: Any = None,
        params: QueryParams | None = None,
    ) -> HttpResponse:
        merged: dict[str, str] = {
            "accept": "application/json",
            "user-agent": USER_AGENT,
        }
        if json_body is not None:
            merged["content-type"] = "application/json"
        if headers:
            merged.update(headers)

        body = json.dumps(json_body) if json_body is not None else None

        _logger.debug("%s %s body=%s", method, url, redact_for_log(json_body))

        try:
            async with self._http.request(
                method,
                url,
                data=body,
                headers=merged,
                params=params,
                timeout=self._timeout,
            ) as resp:
                text = await resp.text()
                status = resp.status
        except (aiohttp.ClientError, TimeoutError) as exc:
            raise BridgeTransportError(
                f"Request to {url} failed: {exc}",
                endpoint=url,
            ) from exc

        data = _decode_body(text)
        _logger.debug("%s %s -> HTTP %s %s", method, url, status, redact_for_log(data))
        return HttpResponse(status=status, data=data, text=text)
