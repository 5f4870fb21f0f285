"""Job dispatcher interface."""

from abc import ABC, abstractmethod
from typing import Any


class JobDispatcher(ABC):
    """Abstract interface for running generation tasks out-of-band."""

    @abstractmethod
    async def submit(self, task: Any) -> None:
        """Enqueue a task. Returns once queued, not when processed."""
        ...

    @abstractmethod
    async def start(self) -> None:
        """Start the dispatcher (e.g., start worker loops)."""
        ...

    @abstractmethod
    async def stop(self) -> None:
        """Stop the dispatcher gracefully."""
        ...

    @property
    def pending(self) -> int:
        """Tasks queued but not yet picked up by a worker."""
        return 0
