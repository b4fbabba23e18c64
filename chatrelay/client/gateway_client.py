"""HTTP + SSE client for the chat relay gateway.

Maps the method-style requests the reconciler issues (``chat.send``,
``chat.abort``, ``chat.history``, ``sessions.patch``) onto the gateway's
REST routes and exposes the ``/events`` stream as an async iterator of
``(channel, payload)`` pairs.
"""
from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator
from typing import Any

import aiohttp

from chatrelay.engine.errors import GatewayRequestError

logger = logging.getLogger(__name__)

_REQUEST_TIMEOUT_SECONDS = 30.0


def parse_sse_lines(lines: list[str]) -> tuple[str, Any] | None:
    """Decode one SSE frame (the lines before a blank line)."""
    event = "message"
    data_lines: list[str] = []
    for line in lines:
        if not line or line.startswith(":"):
            continue
        field, _, value = line.partition(":")
        if value.startswith(" "):
            value = value[1:]
        if field == "event":
            event = value
        elif field == "data":
            data_lines.append(value)
    if not data_lines:
        return None
    raw = "\n".join(data_lines)
    try:
        return event, json.loads(raw)
    except json.JSONDecodeError:
        return event, raw


class GatewayClient:
    """Async client for one gateway base URL."""

    def __init__(self, base_url: str) -> None:
        self._base_url = base_url.rstrip("/")
        self._session: aiohttp.ClientSession | None = None
        self.connected = False

    async def _get_session(self) -> aiohttp.ClientSession:
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession()
        return self._session

    async def connect(self) -> bool:
        """Probe ``/health``; sets ``connected`` accordingly."""
        session = await self._get_session()
        try:
            async with session.get(
                f"{self._base_url}/health",
                timeout=aiohttp.ClientTimeout(total=_REQUEST_TIMEOUT_SECONDS),
            ) as response:
                self.connected = response.status == 200
        except aiohttp.ClientError as exc:
            logger.warning("Gateway %s unreachable: %s", self._base_url, exc)
            self.connected = False
        return self.connected

    async def close(self) -> None:
        self.connected = False
        if self._session is not None and not self._session.closed:
            await self._session.close()

    def _route(self, method: str, params: dict[str, Any]) -> tuple[str, str, dict[str, Any]]:
        """Return (http_method, path, kwargs) for a request method."""
        if method == "chat.history":
            query = {"sessionKey": params.get("sessionKey", "")}
            if params.get("limit") is not None:
                query["limit"] = str(params["limit"])
            return "GET", "/chat/history", {"params": query}
        if method == "chat.send":
            return "POST", "/chat/send", {"json": params}
        if method == "chat.abort":
            return "POST", "/chat/abort", {"json": params}
        if method == "chat.inject":
            return "POST", "/chat/inject", {"json": params}
        if method == "sessions.patch":
            body = {k: v for k, v in params.items() if k != "sessionKey"}
            return "PATCH", f"/sessions/{params.get('sessionKey', '')}", {"json": body}
        raise GatewayRequestError(method, "unknown request method")

    async def request(self, method: str, params: dict[str, Any]) -> Any:
        http_method, path, kwargs = self._route(method, params)
        session = await self._get_session()
        try:
            async with session.request(
                http_method,
                f"{self._base_url}{path}",
                timeout=aiohttp.ClientTimeout(total=_REQUEST_TIMEOUT_SECONDS),
                **kwargs,
            ) as response:
                try:
                    payload = await response.json(content_type=None)
                except (json.JSONDecodeError, aiohttp.ContentTypeError):
                    payload = None
                if response.status >= 400:
                    reason = (
                        payload.get("error")
                        if isinstance(payload, dict) and payload.get("error")
                        else response.reason or "request failed"
                    )
                    raise GatewayRequestError(method, str(reason), response.status)
                return payload
        except aiohttp.ClientError as exc:
            raise GatewayRequestError(method, str(exc)) from exc

    async def events(self, session_key: str | None = None) -> AsyncIterator[tuple[str, Any]]:
        """Yield ``(channel, payload)`` from the SSE stream until it closes."""
        session = await self._get_session()
        params = {"sessionKey": session_key} if session_key else None
        async with session.get(
            f"{self._base_url}/events",
            params=params,
            timeout=aiohttp.ClientTimeout(total=None, sock_read=None),
        ) as response:
            if response.status != 200:
                raise GatewayRequestError("events", response.reason or "stream refused", response.status)
            frame: list[str] = []
            async for raw_line in response.content:
                line = raw_line.decode("utf-8", errors="replace").rstrip("\r\n")
                if line:
                    frame.append(line)
                    continue
                decoded = parse_sse_lines(frame)
                frame = []
                if decoded is not None:
                    yield decoded
        logger.info("Event stream closed for %s", self._base_url)
