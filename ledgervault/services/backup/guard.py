"""
Concurrency Guard

One process-wide lock shared by backup, restore, the retention sweep and
the full data reset. A second request waits for the first to finish.
Record-level lifecycle operations never take it.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import structlog


logger = structlog.get_logger("ledgervault.guard")


class OperationGuard:
    """Named asyncio.Lock. Reports which operation currently holds it."""

    def __init__(self):
        self._lock = asyncio.Lock()
        self._holder: Optional[str] = None

    @property
    def is_held(self) -> bool:
        return self._lock.locked()

    @property
    def current_operation(self) -> Optional[str]:
        return self._holder

    @asynccontextmanager
    async def hold(self, operation: str) -> AsyncIterator[None]:
        if self._lock.locked():
            logger.info("guard_wait", operation=operation, held_by=self._holder)
        async with self._lock:
            self._holder = operation
            try:
                yield
            finally:
                self._holder = None
