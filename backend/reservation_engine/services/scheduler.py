"""
Periodic background sweeps.

Each sweep is a plain object with an async run_once(); PeriodicSweep only
owns the timer. Sweeps take their clock and store at construction, so tests
call run_once() directly and never wait on the loop.
"""

import asyncio
import contextlib
from dataclasses import dataclass, field
from typing import Protocol

from reservation_engine.core.logging import get_logger, sweep_context
from reservation_engine.core.metrics import record_sweep

logger = get_logger(__name__)


@dataclass
class SweepReport:
    """Outcome counts for one sweep pass."""

    examined: int = 0
    applied: int = 0
    skipped: int = 0
    failed: int = 0
    applied_ids: list[int] = field(default_factory=list)


class Sweep(Protocol):
    async def run_once(self) -> SweepReport: ...


class PeriodicSweep:
    """Runs a sweep every `interval` seconds until stopped."""

    def __init__(self, name: str, sweep: Sweep, interval: float):
        self.name = name
        self.sweep = sweep
        self.interval = interval
        self._task: asyncio.Task[None] | None = None
        self._running = False
        self.passes = 0

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background task."""
        if self._task is None or self._task.done():
            self._running = True
            self._task = asyncio.create_task(self._loop(), name=f"sweep:{self.name}")
            logger.info("sweep_started", sweep=self.name, interval_seconds=self.interval)

    async def stop(self) -> None:
        """Stop the background task and wait for it to exit."""
        self._running = False
        if self._task and not self._task.done():
            self._task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._task
        logger.info("sweep_stopped", sweep=self.name, passes=self.passes)

    async def run_pass(self) -> SweepReport | None:
        """One guarded pass. An exception is logged and counted, never raised."""
        with sweep_context(self.name, self.passes + 1):
            try:
                report = await self.sweep.run_once()
            except Exception as e:
                record_sweep(self.name, ok=False)
                logger.error("sweep_failed", error=str(e), exc_info=True)
                return None
            finally:
                self.passes += 1

            record_sweep(self.name, ok=True)
            logger.info(
                "sweep_completed",
                examined=report.examined,
                applied=report.applied,
                skipped=report.skipped,
                failed=report.failed,
            )
            return report

    async def _loop(self) -> None:
        while self._running:
            await self.run_pass()
            await asyncio.sleep(self.interval)
