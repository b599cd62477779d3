"""
Progress middleware for long-running MCP operations.

`with_progress` decorates a client operation that accepts a
`progress_callback` keyword. Each call is registered as a cancelable task
in the TaskRegistry and every progress update the server reports for it
is republished on the `progress` channel, tagged with the task token that
`POST /tasks/cancel` accepts.
"""

import asyncio
import functools
import uuid
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar

from ..core.broadcaster import PROGRESS
from ..core.logging import get_logger
from ..core.tasks import TaskRegistry, TaskStatus
from .exceptions import MCPClientError


logger = get_logger(__name__)

T = TypeVar("T")

ProgressCallback = Callable[[float, Optional[float], Optional[str]], Awaitable[None]]


class ProgressSink(Protocol):
    def publish(self, event: str, data: Any) -> int: ...


class OperationCancelledError(MCPClientError):
    """Raised to the caller of an operation cancelled through the task registry."""


class ProgressMiddleware:
    """Runs operations as tracked tasks and forwards their progress to a sink."""

    def __init__(self, sink: ProgressSink, tasks: TaskRegistry):
        self._sink = sink
        self._tasks = tasks

    @property
    def tasks(self) -> TaskRegistry:
        return self._tasks

    async def run(self, description: str, operation: Callable[[ProgressCallback], Awaitable[T]]) -> T:
        token = uuid.uuid4().hex
        cancel_reason: dict[str, Optional[str]] = {}

        async def on_progress(progress: float, total: Optional[float] = None, message: Optional[str] = None) -> None:
            event = {"progressToken": token, "progress": progress, "cancellable": True}
            if total is not None:
                event["total"] = total
            if message:
                event["message"] = message
            self._sink.publish(PROGRESS, event)

        inner = asyncio.ensure_future(operation(on_progress))

        def cancel(reason: Optional[str]) -> None:
            cancel_reason["reason"] = reason
            inner.cancel(reason)

        task = self._tasks.create(token, description, cancel)
        try:
            return await inner
        except asyncio.CancelledError:
            if task.status is TaskStatus.CANCELLED and not asyncio.current_task().cancelling():
                reason = cancel_reason.get("reason") or "cancelled by user"
                raise OperationCancelledError(
                    f"Operation cancelled: {reason}",
                    details={"token": token, "description": description}
                ) from None
            raise
        finally:
            self._tasks.complete(token)


def with_progress(describe: Callable[..., str]):
    """
    Decorate an async client method taking a `progress_callback` keyword.

    The decorated object must expose a `progress` attribute holding a
    ProgressMiddleware (or None to call straight through).
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(self, *args, **kwargs):
            middleware: Optional[ProgressMiddleware] = getattr(self, "progress", None)
            if middleware is None:
                return await func(self, *args, **kwargs)
            return await middleware.run(
                describe(*args, **kwargs),
                lambda callback: func(self, *args, progress_callback=callback, **kwargs),
            )
        return wrapper
    return decorator
