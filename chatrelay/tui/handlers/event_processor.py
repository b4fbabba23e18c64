"""Event processor for the chat viewer.

Consumes the gateway's SSE stream and feeds chat notifications to the
``ChatController``; the app re-renders after each one. A dropped stream
(network error or slow-consumer disconnect) is retried with backoff and
followed by a history re-fetch, since notifications may have been lost.
"""

from __future__ import annotations

import asyncio
import logging
from typing import TYPE_CHECKING, Any

import aiohttp

from chatrelay.adapters.events import AGENT_CHANNEL, CHAT_CHANNEL
from chatrelay.engine.errors import GatewayRequestError

if TYPE_CHECKING:
    from chatrelay.tui.app import ChatRelayApp

logger = logging.getLogger(__name__)

_MAX_BACKOFF_SECONDS = 30.0


class EventProcessor:
    """Processes gateway events on behalf of *ChatRelayApp*."""

    def __init__(self, app: ChatRelayApp) -> None:
        self._app = app
        self.seq_gaps_seen = 0

    async def dispatch(self, channel: str, payload: Any) -> None:
        """Handle one ``(channel, payload)`` pair from the stream."""
        app = self._app
        if channel == CHAT_CHANNEL:
            result = await app.controller.process_event(payload)
            if result is not None:
                app.refresh_view()
        elif channel == AGENT_CHANNEL and isinstance(payload, dict):
            data = payload.get("data")
            if payload.get("stream") == "error" and isinstance(data, dict) and data.get("reason") == "seq gap":
                self.seq_gaps_seen += 1
                logger.warning(
                    "Gateway reported seq gap run=%s expected=%s received=%s",
                    payload.get("runId"), data.get("expected"), data.get("received"),
                )

    async def run(self) -> None:
        """Consume the event stream until cancelled, reconnecting on failure."""
        app = self._app
        client = app.client
        backoff = 1.0
        while True:
            try:
                async for channel, payload in client.events(app.chat_state.session_key):
                    backoff = 1.0
                    await self.dispatch(channel, payload)
                logger.info("Event stream ended; reconnecting")
            except asyncio.CancelledError:
                raise
            except (GatewayRequestError, aiohttp.ClientError) as exc:
                logger.warning("Event stream failed: %s", exc)
            app.chat_state.connected = False
            app.refresh_view()
            await asyncio.sleep(backoff)
            backoff = min(backoff * 2, _MAX_BACKOFF_SECONDS)
            if await client.connect():
                app.chat_state.connected = True
                await app.controller.load_history()
                app.refresh_view()
