"""
Decision Registry

One-shot rendezvous between a suspended sampling handler and the human
approve/deny decision that arrives later through the HTTP API.
"""

import asyncio
import threading
from typing import Dict, Optional

from .logging import get_logger


logger = get_logger(__name__)


class DecisionRegistry:
    """Futures keyed by request id; each one is resolved at most once."""

    def __init__(self):
        self._pending: Dict[str, asyncio.Future] = {}
        self._lock = threading.Lock()

    def pending(self) -> list[str]:
        with self._lock:
            return list(self._pending)

    async def wait(self, request_id: str, timeout: Optional[float] = None) -> bool:
        """
        Suspend until a decision for `request_id` is submitted.

        Args:
            request_id: Rendezvous key
            timeout: Seconds to wait, None waits forever

        Returns:
            True when approved, False when denied

        Raises:
            ValueError: If a waiter for this id already exists
            asyncio.TimeoutError: If the timeout elapses first
        """
        future = asyncio.get_running_loop().create_future()
        with self._lock:
            if request_id in self._pending:
                raise ValueError(f"Decision already pending for request {request_id}")
            self._pending[request_id] = future

        try:
            if timeout:
                return await asyncio.wait_for(future, timeout)
            return await future
        finally:
            with self._lock:
                if self._pending.get(request_id) is future:
                    del self._pending[request_id]

    def resolve(self, request_id: str, approved: bool) -> bool:
        """
        Deliver a decision to the waiter for `request_id`.

        Returns:
            True if a live waiter consumed the decision, False if not found
        """
        with self._lock:
            future = self._pending.pop(request_id, None)

        if future is None or future.done():
            logger.warning(f"No pending sampling decision for request {request_id}")
            return False

        future.get_loop().call_soon_threadsafe(_settle, future, bool(approved))
        logger.info(f"Sampling request {request_id} {'approved' if approved else 'denied'}")
        return True


def _settle(future: asyncio.Future, approved: bool) -> None:
    if not future.done():
        future.set_result(approved)
