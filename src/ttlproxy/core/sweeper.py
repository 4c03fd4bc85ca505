"""
Background service that purges expired proxy entries.

Runs one asyncio task for the life of the application; a failed sweep is
logged and the loop carries on with the next tick.
"""

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import structlog

from .metrics import MetricsCollector
from .store import ProxyStore

logger = structlog.get_logger(__name__)


@dataclass
class SweepResult:
    """Result of a single sweep cycle."""
    success: bool
    entries_removed: int
    entries_remaining: int
    error_message: Optional[str] = None


class ExpirySweeper:
    """
    Periodic pruning of expired entries from a ProxyStore.

    Features:
    - Automatic startup/shutdown
    - Fixed-interval sweeping
    - Failure isolation (errors never stop the loop)
    """

    def __init__(
        self,
        store: ProxyStore,
        interval_seconds: float,
        metrics: Optional[MetricsCollector] = None,
    ) -> None:
        self.store = store
        self.interval = interval_seconds
        self.metrics = metrics
        self._task: Optional[asyncio.Task[None]] = None
        self._running = False
        self.last_result: Optional[SweepResult] = None
        self.last_sweep_at: Optional[float] = None
        self.consecutive_failures = 0

        logger.info("Expiry Sweeper initialized", interval_seconds=interval_seconds)

    async def start(self) -> None:
        """Start the sweeper loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._run_sweep_loop())
        self._task.add_done_callback(self._on_task_done)

        logger.info("Expiry Sweeper started")

    async def stop(self) -> None:
        """Stop the sweeper loop."""
        if not self._running:
            return

        self._running = False

        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

        logger.info("Expiry Sweeper stopped")

    async def sweep_once(self) -> SweepResult:
        """Run a single prune cycle and report its outcome."""
        try:
            removed = await self.store.prune()
        except asyncio.CancelledError:
            raise
        except Exception as e:
            self.consecutive_failures += 1
            logger.error(
                "Expiry sweep failed",
                error=str(e),
                error_type=type(e).__name__,
                consecutive_failures=self.consecutive_failures,
            )
            if self.metrics:
                self.metrics.record_sweep_error()
            result = SweepResult(
                success=False,
                entries_removed=0,
                entries_remaining=len(self.store),
                error_message=str(e) or type(e).__name__,
            )
        else:
            self.consecutive_failures = 0
            remaining = len(self.store)
            if self.metrics:
                self.metrics.record_sweep(removed, remaining)
            if removed:
                logger.info("Expiry sweep completed", entries_removed=removed, entries_remaining=remaining)
            result = SweepResult(success=True, entries_removed=removed, entries_remaining=remaining)

        self.last_result = result
        self.last_sweep_at = time.time()
        return result

    async def _run_sweep_loop(self) -> None:
        """Main sweep loop."""
        while self._running:
            try:
                await asyncio.sleep(self.interval)
                await self.sweep_once()
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error("Sweeper loop error", error=str(e), exc_info=True)

    def _on_task_done(self, task: "asyncio.Task[None]") -> None:
        if task.cancelled() or not self._running:
            return
        logger.critical(
            "Expiry Sweeper task exited unexpectedly, expired entries will accumulate",
            error=str(task.exception()) if task.exception() else None,
        )

    def is_healthy(self) -> bool:
        """Check if the sweeper loop is alive."""
        return self._running and self._task is not None and not self._task.done()

    def status(self) -> Dict[str, Any]:
        """Snapshot of sweeper state for health reporting."""
        return {
            "running": self.is_healthy(),
            "interval_seconds": self.interval,
            "last_sweep_at": self.last_sweep_at,
            "last_success": self.last_result.success if self.last_result else None,
            "consecutive_failures": self.consecutive_failures,
        }
