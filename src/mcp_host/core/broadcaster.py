"""
Update Broadcaster

Fan-out of named host events to live Server-Sent Event subscribers.
Subscribers get an unbounded queue each; there is no backpressure and no
replay, so a subscriber connected after an event was published never sees it.
"""

import asyncio
import json
import threading
from typing import Any, AsyncIterator, Set

from .logging import get_logger


logger = get_logger(__name__)


# Channel names
PROGRESS = "progress"
RESOURCES_CHANGE = "resources/change"
RESOURCES_LIST_CHANGED = "resources/list_changed"
PROMPTS_LIST_CHANGED = "prompts/list_changed"
TOOLS_LIST_CHANGED = "tools/list_changed"
SAMPLING_REQUEST = "sampling/request"
SAMPLING_RESPONSE = "sampling/response"
ROOTS_LIST_CHANGED = "roots/list_changed"

CHANNELS = frozenset({
    PROGRESS,
    RESOURCES_CHANGE,
    RESOURCES_LIST_CHANGED,
    PROMPTS_LIST_CHANGED,
    TOOLS_LIST_CHANGED,
    SAMPLING_REQUEST,
    SAMPLING_RESPONSE,
    ROOTS_LIST_CHANGED,
})


class UpdateBroadcaster:
    """Publishes `(event, json_payload)` pairs to every subscribed queue."""

    def __init__(self):
        self._subscribers: Set[asyncio.Queue] = set()
        self._lock = threading.Lock()

    def subscribe(self) -> asyncio.Queue:
        queue: asyncio.Queue = asyncio.Queue()
        with self._lock:
            self._subscribers.add(queue)
        logger.debug(f"Update subscriber added ({self.subscriber_count} active)")
        return queue

    def unsubscribe(self, queue: asyncio.Queue) -> None:
        with self._lock:
            self._subscribers.discard(queue)
        logger.debug(f"Update subscriber removed ({self.subscriber_count} active)")

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscribers)

    def publish(self, event: str, data: Any) -> int:
        """
        Publish an event to all current subscribers.

        Args:
            event: Channel name, one of CHANNELS
            data: JSON-serializable payload

        Returns:
            Number of subscribers the event was queued for
        """
        if event not in CHANNELS:
            raise ValueError(f"Unknown update channel: {event}")
        payload = json.dumps(data, default=str)
        with self._lock:
            subscribers = list(self._subscribers)
        for queue in subscribers:
            queue.put_nowait((event, payload))
        logger.debug(f"Broadcast '{event}' to {len(subscribers)} subscriber(s)")
        return len(subscribers)

    async def stream(self, queue: asyncio.Queue) -> AsyncIterator[str]:
        """Yield SSE frames from a subscriber queue until the consumer goes away."""
        try:
            yield "\n"
            while True:
                event, payload = await queue.get()
                yield f"event: {event}\ndata: {payload}\n\n"
        finally:
            self.unsubscribe(queue)
