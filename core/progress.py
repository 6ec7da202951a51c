"""
Progress broadcasting.

Stages emit plain-text progress messages; the broadcaster logs them, keeps a
short history and fans them out to every subscribed listener (the SSE endpoint
subscribes one queue per connected client).
"""

import asyncio
import logging
from collections import deque
from typing import AsyncIterator, Deque, List, Set

from .models import ProgressEvent

logger = logging.getLogger(__name__)


class ProgressBroadcaster:
    """Fan-out of progress events to any number of async listeners."""

    def __init__(self, history_size: int = 200, queue_size: int = 500):
        self.history: Deque[ProgressEvent] = deque(maxlen=history_size)
        self.queue_size = queue_size
        self._subscribers: Set[asyncio.Queue] = set()

    def emit(self, message: str) -> ProgressEvent:
        event = ProgressEvent(message)
        logger.info(message)
        self.history.append(event)
        for queue in list(self._subscribers):
            try:
                queue.put_nowait(event)
            except asyncio.QueueFull:
                # Slow client; drop it rather than block the pipeline
                logger.warning("Dropping progress subscriber with a full queue")
                self._subscribers.discard(queue)
        return event

    __call__ = emit

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.add(queue)
        return queue

    def unsubscribe(self, queue: asyncio.Queue):
        self._subscribers.discard(queue)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    def recent(self, limit: int = 50) -> List[ProgressEvent]:
        return list(self.history)[-limit:]

    async def stream(self, heartbeat: float = 15.0) -> AsyncIterator[str]:
        """Yield SSE frames until the consumer stops iterating."""
        queue = self.subscribe()
        try:
            while True:
                try:
                    event = await asyncio.wait_for(queue.get(), timeout=heartbeat)
                except asyncio.TimeoutError:
                    yield ": keep-alive\n\n"
                    continue
                yield event.to_sse()
        finally:
            self.unsubscribe(queue)
