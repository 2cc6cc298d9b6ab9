"""Per-connection mutual exclusion for operations that touch the same configuration."""

from __future__ import annotations

from contextlib import asynccontextmanager
from typing import AsyncIterator, Dict, Set

import anyio

from ..config import CONCURRENCY_QUEUE, CONCURRENCY_REJECT, SUPPORTED_CONCURRENCY
from ..core.logging import get_logger
from .errors import ConnectionBusyError

LOGGER = get_logger(__name__)


class ConnectionGuard:
    """
    Allow one in-flight operation per connection name.

    With the ``reject`` policy a second caller gets :class:`ConnectionBusyError`
    immediately; with ``queue`` it waits for the first to finish. The guard
    covers callers sharing this instance (and therefore this event loop); it is
    not a cross-process lock.
    """

    def __init__(self, policy: str = CONCURRENCY_REJECT) -> None:
        if policy not in SUPPORTED_CONCURRENCY:
            raise ValueError(f"Unknown concurrency policy '{policy}'.")
        self.policy = policy
        self._in_flight: Set[str] = set()
        self._locks: Dict[str, anyio.Lock] = {}

    def is_busy(self, key: str) -> bool:
        return key in self._in_flight

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        """Hold the token for ``key`` for the duration of the ``async with`` block."""

        if self.policy == CONCURRENCY_QUEUE:
            lock = self._locks.setdefault(key, anyio.Lock())
            async with lock:
                self._in_flight.add(key)
                try:
                    yield
                finally:
                    self._in_flight.discard(key)
            if not lock.locked() and lock.statistics().tasks_waiting == 0:
                self._locks.pop(key, None)
            return

        if key in self._in_flight:
            LOGGER.warning("Rejecting concurrent operation", extra={"connection": key})
            raise ConnectionBusyError(key)
        self._in_flight.add(key)
        try:
            yield
        finally:
            self._in_flight.discard(key)


__all__ = ["ConnectionGuard"]
