"""Fan-out event bus bridging the router to connected clients.

The router emits synchronously; every connected client owns a bounded
``asyncio.Queue`` drained by its SSE handler. Two delivery paths exist:

- ``broadcast`` reaches every subscriber that did not pin a session,
- ``send_to_session`` reaches subscribers pinned to that session key.

When a subscriber's queue is full, droppable payloads (chat deltas) are
skipped for that subscriber; anything else disconnects it.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from collections.abc import AsyncIterator
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

_subscriber_ids = itertools.count(1)


@dataclass
class Subscriber:
    """One connected client and its outbound queue."""

    queue: asyncio.Queue[dict[str, Any] | None]
    session_key: str | None = None
    subscriber_id: int = field(default_factory=lambda: next(_subscriber_ids))
    closed: bool = False
    close_reason: str | None = None


@dataclass
class BusMetrics:
    delivered: int = 0
    dropped: int = 0
    disconnected: int = 0

    def snapshot(self) -> dict[str, int]:
        return dict(self.__dict__)


class EventBus:
    """Per-subscriber bounded queues with a slow-consumer policy."""

    def __init__(self, maxsize: int = 5000) -> None:
        self._maxsize = maxsize
        self._subscribers: list[Subscriber] = []
        self.metrics = BusMetrics()

    def __len__(self) -> int:
        return len(self._subscribers)

    def subscribe(self, session_key: str | None = None) -> Subscriber:
        sub = Subscriber(queue=asyncio.Queue(maxsize=self._maxsize), session_key=session_key)
        self._subscribers.append(sub)
        logger.info(
            "Subscriber connected id=%d session=%s active=%d",
            sub.subscriber_id, session_key or "<all>", len(self._subscribers),
        )
        return sub

    def unsubscribe(self, sub: Subscriber) -> None:
        if sub in self._subscribers:
            self._subscribers.remove(sub)
            logger.info(
                "Subscriber removed id=%d active=%d",
                sub.subscriber_id, len(self._subscribers),
            )

    # ── Delivery ──

    def broadcast(
        self,
        event: str,
        payload: dict[str, Any],
        *,
        drop_if_slow: bool = False,
    ) -> None:
        """Deliver to every subscriber not pinned to a session."""
        msg = {"event": event, "data": payload}
        for sub in list(self._subscribers):
            if sub.session_key is None:
                self._deliver(sub, msg, drop_if_slow)

    def send_to_session(
        self,
        session_key: str,
        event: str,
        payload: dict[str, Any],
        *,
        drop_if_slow: bool = False,
    ) -> None:
        """Deliver to subscribers pinned to *session_key*."""
        msg = {"event": event, "data": payload}
        for sub in list(self._subscribers):
            if sub.session_key == session_key:
                self._deliver(sub, msg, drop_if_slow)

    def _deliver(self, sub: Subscriber, msg: dict[str, Any], drop_if_slow: bool) -> None:
        if sub.closed:
            return
        try:
            sub.queue.put_nowait(msg)
        except asyncio.QueueFull:
            if drop_if_slow:
                self.metrics.dropped += 1
                logger.debug(
                    "Subscriber %d slow, dropping %s event", sub.subscriber_id, msg["event"],
                )
                return
            self._disconnect(sub, "slow consumer")
            return
        self.metrics.delivered += 1

    def _disconnect(self, sub: Subscriber, reason: str) -> None:
        sub.closed = True
        sub.close_reason = reason
        self.metrics.disconnected += 1
        # Make room for the end-of-stream marker.
        while not sub.queue.empty():
            sub.queue.get_nowait()
        sub.queue.put_nowait(None)
        self.unsubscribe(sub)
        logger.warning(
            "Subscriber %d disconnected: %s", sub.subscriber_id, reason,
        )

    # ── Consumption ──

    async def consume(
        self,
        sub: Subscriber,
        keepalive: float | None = None,
    ) -> AsyncIterator[dict[str, Any] | None]:
        """Yield queued messages for *sub* until it is closed.

        With *keepalive* set, ``None`` is yielded after that many idle
        seconds so the caller can write a keepalive frame.
        """
        while not sub.closed or not sub.queue.empty():
            try:
                if keepalive is None:
                    msg = await sub.queue.get()
                else:
                    msg = await asyncio.wait_for(sub.queue.get(), timeout=keepalive)
            except asyncio.TimeoutError:
                yield None
                continue
            if msg is None:
                break
            yield msg

    def close(self) -> None:
        """Disconnect every subscriber."""
        for sub in list(self._subscribers):
            self._disconnect(sub, "bus closed")
