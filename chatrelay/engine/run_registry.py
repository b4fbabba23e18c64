"""Run link registry: FIFO of client runs per execution context.

One execution context (the executor's runId) can serially service
several client-issued runs. Each ``chat.send`` queues a ``RunLink``
under the context key; the head of the queue is the link that
incoming events are attributed to, and it is shifted off when the
context reports a terminal lifecycle event.
"""
from __future__ import annotations

import logging
from collections import deque
from collections.abc import Callable, Iterator

from .models import RunLink

logger = logging.getLogger(__name__)


class RunLinkRegistry:
    """Per-context queues of ``RunLink`` entries.

    Empty queues are deleted, so ``len(registry)`` is the number of
    contexts with at least one pending link.
    """

    def __init__(self) -> None:
        self._queues: dict[str, deque[RunLink]] = {}

    def __len__(self) -> int:
        return len(self._queues)

    def __contains__(self, context_key: object) -> bool:
        return context_key in self._queues

    def add(self, context_key: str, link: RunLink) -> None:
        queue = self._queues.get(context_key)
        if queue is None:
            queue = deque()
            self._queues[context_key] = queue
        queue.append(link)
        logger.debug(
            "Run link queued context=%s run=%s session=%s depth=%d",
            context_key, link.client_run_id, link.session_key, len(queue),
        )

    def peek(self, context_key: str) -> RunLink | None:
        queue = self._queues.get(context_key)
        return queue[0] if queue else None

    def shift(self, context_key: str) -> RunLink | None:
        queue = self._queues.get(context_key)
        if not queue:
            return None
        link = queue.popleft()
        if not queue:
            del self._queues[context_key]
        return link

    def remove_where(
        self,
        context_key: str,
        predicate: Callable[[RunLink], bool],
    ) -> RunLink | None:
        """Remove and return the first link in the queue matching *predicate*."""
        queue = self._queues.get(context_key)
        if not queue:
            return None
        for link in queue:
            if predicate(link):
                queue.remove(link)
                break
        else:
            return None
        if not queue:
            del self._queues[context_key]
        return link

    def remove(
        self,
        context_key: str,
        client_run_id: str,
        session_key: str | None = None,
    ) -> RunLink | None:
        return self.remove_where(
            context_key,
            lambda link: link.client_run_id == client_run_id
            and (session_key is None or link.session_key == session_key),
        )

    def links(self) -> Iterator[tuple[str, RunLink]]:
        """Yield ``(context_key, link)`` for every queued link, head first."""
        for context_key, queue in list(self._queues.items()):
            for link in list(queue):
                yield context_key, link

    def find_context(self, client_run_id: str) -> str | None:
        for context_key, link in self.links():
            if link.client_run_id == client_run_id:
                return context_key
        return None

    def clear(self) -> None:
        self._queues.clear()
