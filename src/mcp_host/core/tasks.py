"""
Task Registry

Tracks cancelable, progress-reporting operations keyed by progress token.
Finished tasks are kept for the life of the process.
"""

import threading
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Union

from .logging import get_logger


logger = get_logger(__name__)

Token = Union[str, int]


class TaskStatus(str, Enum):
    RUNNING = "running"
    COMPLETE = "complete"
    CANCELLED = "cancelled"


@dataclass
class Task:
    """A tracked long-running operation."""
    token: Token
    description: str
    cancel_handle: Callable[[Optional[str]], None] = field(repr=False)
    status: TaskStatus = TaskStatus.RUNNING

    def to_dict(self) -> Dict[str, object]:
        return {"token": self.token, "description": self.description, "status": self.status.value}


class TaskRegistry:
    """Registry of tasks; status only ever moves running -> complete or running -> cancelled."""

    def __init__(self):
        self._tasks: Dict[Token, Task] = {}
        self._lock = threading.Lock()

    def create(self, token: Token, description: str, cancel_handle: Callable[[Optional[str]], None]) -> Task:
        task = Task(token=token, description=description, cancel_handle=cancel_handle)
        with self._lock:
            if token in self._tasks:
                raise ValueError(f"Task {token} already registered")
            self._tasks[token] = task
        logger.debug(f"Registered task {token}: {description}")
        return task

    def complete(self, token: Token) -> bool:
        """Mark a running task complete; terminal tasks are left untouched."""
        with self._lock:
            task = self._tasks.get(token)
            if task is None or task.status is not TaskStatus.RUNNING:
                return False
            task.status = TaskStatus.COMPLETE
        logger.debug(f"Task {token} complete")
        return True

    def get(self, token: Token) -> Optional[Task]:
        with self._lock:
            return self._tasks.get(token)

    def list(self) -> List[Dict[str, object]]:
        with self._lock:
            return [task.to_dict() for task in self._tasks.values()]

    def cancel(self, token: Token, reason: Optional[str] = None) -> bool:
        """
        Cancel a running task.

        Returns:
            True if a running task was found and cancelled, False otherwise
        """
        with self._lock:
            task = self._tasks.get(token)
            if task is None or task.status is not TaskStatus.RUNNING:
                return False
            task.status = TaskStatus.CANCELLED

        try:
            task.cancel_handle(reason)
        except Exception as e:
            logger.warning(f"Cancel handle for task {token} failed: {e}")
        logger.info(f"Task {token} cancelled", reason=reason)
        return True
