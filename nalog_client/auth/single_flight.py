"""
Single-flight guard for credential-mutating operations.

The slot is either idle or holds one pending task. Callers arriving while a
task is pending attach to it and receive its result or exception; the slot
returns to idle as soon as the task settles.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class SingleFlight:
    """At most one in-flight operation, shared by every concurrent caller."""

    def __init__(self):
        self._pending: Optional[asyncio.Task] = None
        self._label: Optional[str] = None

    @property
    def in_flight(self) -> bool:
        return self._pending is not None

    @property
    def label(self) -> Optional[str]:
        """Name of the pending operation, None when idle."""
        return self._label

    async def run(self, label: str, operation: Callable[[], Awaitable[Any]]) -> Any:
        """
        Run the operation, or join the one already pending.

        Args:
            label: Operation name, used for state reporting and logs
            operation: Zero-argument coroutine function; only called when idle

        Returns:
            Result of the pending operation
        """
        if self._pending is None:
            self._label = label
            self._pending = asyncio.ensure_future(self._settle(operation))
            logger.debug(f"Started {label}")
        else:
            logger.debug(f"Joining pending {self._label} instead of starting {label}")

        # A cancelled caller must not cancel the shared task
        return await asyncio.shield(self._pending)

    async def wait(self) -> Any:
        """Wait for the pending operation, if any."""
        if self._pending is None:
            return None
        return await asyncio.shield(self._pending)

    async def _settle(self, operation: Callable[[], Awaitable[Any]]) -> Any:
        try:
            return await operation()
        finally:
            self._pending = None
            self._label = None
