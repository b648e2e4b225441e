"""MaintenanceWorker: periodic WAL checkpoint, optimize and incremental vacuum."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from .connection import ConnectionManager

logger = logging.getLogger("docstore.maintenance")

MAINTENANCE_PRAGMAS: tuple[str, ...] = (
    "PRAGMA wal_checkpoint(PASSIVE)",
    "PRAGMA optimize",
    "PRAGMA incremental_vacuum",
)


@runtime_checkable
class IBackgroundWorker(Protocol):
    """Lifecycle protocol for background workers."""

    async def start(self) -> None:
        """Start the background process."""
        ...

    async def stop(self) -> None:
        """Stop the background process gracefully."""
        ...


class MaintenanceWorker(IBackgroundWorker):
    """Periodic housekeeping for file databases.

    Runs every ``interval`` seconds; :meth:`trigger` wakes it early. A cycle
    is skipped for in-memory databases and while any transaction is open.
    Failures are logged and never propagate.

    Implements ``IBackgroundWorker`` (``start`` / ``stop``).
    """

    def __init__(self, manager: ConnectionManager, interval: float = 300.0) -> None:
        self._manager = manager
        self._interval = interval
        self._running = False
        self._task: asyncio.Task[None] | None = None
        self._trigger = asyncio.Event()

    @property
    def running(self) -> bool:
        return self._running

    def trigger(self) -> None:
        """Wake the worker immediately."""
        self._trigger.set()

    async def start(self) -> None:
        if self._running:
            return
        self._running = True
        self._task = asyncio.create_task(self._run_loop())
        logger.info("MaintenanceWorker started (interval=%.1fs)", self._interval)

    async def stop(self) -> None:
        if not self._running:
            return
        self._running = False
        self._trigger.set()
        if self._task:
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError, asyncio.TimeoutError):
                await asyncio.wait_for(self._task, timeout=5.0)
            self._task = None
        logger.info("MaintenanceWorker stopped")

    async def run_once(self) -> bool:
        """Execute a single maintenance cycle. Returns ``True`` if it ran."""
        if self._manager.config.is_memory:
            logger.debug("Skipping maintenance for in-memory database")
            return False
        if not self._manager.is_connected:
            logger.debug("Skipping maintenance: not connected")
            return False
        if self._manager.active_transactions:
            logger.debug(
                "Skipping maintenance: %d transaction(s) open",
                self._manager.active_transactions,
            )
            return False
        try:
            for pragma in MAINTENANCE_PRAGMAS:
                await self._manager.pragma(pragma)
        except Exception:
            logger.exception(
                "Maintenance cycle failed for %s", self._manager.config.path
            )
            return False
        logger.debug("Maintenance cycle completed for %s", self._manager.config.path)
        return True

    async def _run_loop(self) -> None:
        while self._running:
            with contextlib.suppress(asyncio.TimeoutError):
                await asyncio.wait_for(self._trigger.wait(), timeout=self._interval)
            self._trigger.clear()
            if not self._running:
                break
            await self.run_once()
