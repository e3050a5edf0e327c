"""Background monitors of a run: progress, memory ceiling, run deadline and pause gate."""

import asyncio
import os
import time
from collections.abc import Callable
from datetime import timedelta
from typing import Optional

import psutil
import structlog

from tablemover.exceptions import ResourceLimitError
from tablemover.job import ArchiveJob
from tablemover.metrics import MoverMetrics
from utils.logging import get_logger

MEMORY_CHECK_INTERVAL = 3.0


class PeriodicWatchdog:
    """Runs ``tick()`` every ``interval`` seconds in a background task."""

    def __init__(self, interval: float, logger: structlog.BoundLogger) -> None:
        self.interval = interval
        self.logger = logger
        self._task: Optional[asyncio.Task[None]] = None

    @property
    def running(self) -> bool:
        """True while the background task is alive."""
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background task."""
        if self.running:
            return
        self._task = asyncio.create_task(self._run())

    async def stop(self) -> None:
        """Cancel the background task and wait for it to finish."""
        if self._task is None:
            return
        task, self._task = self._task, None
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        while True:
            await asyncio.sleep(self.interval)
            self.tick()

    def tick(self) -> None:
        raise NotImplementedError


class ProgressReporter(PeriodicWatchdog):
    """Logs selected rows against the planner estimate captured at job start."""

    def __init__(
        self,
        job: ArchiveJob,
        interval: float = 5.0,
        logger: Optional[structlog.BoundLogger] = None,
    ) -> None:
        """Initialize progress reporter.

        Args:
            job: Job whose counters are reported (read only)
            interval: Seconds between reports
            logger: Optional logger instance
        """
        super().__init__(interval, logger or get_logger("progress"))
        self.job = job
        self.records_per_second: float = 0.0
        self._last_count = 0
        self._last_time: Optional[float] = None

    def tick(self) -> None:
        """Emit one progress report."""
        now = time.monotonic()
        selected = self.job.selected
        if self._last_time is not None and now > self._last_time:
            self.records_per_second = (selected - self._last_count) / (now - self._last_time)
        self._last_count = selected
        self._last_time = now

        self.logger.info(
            "Progress",
            progress=f"{selected}/{self.job.estimated_rows}",
            inserted=self.job.inserted,
            deleted=self.job.deleted,
            rate=f"{self.records_per_second:.0f} rec/s",
            eta=self.eta(),
        )

    def eta(self) -> str:
        """Remaining time at the current rate, or N/A."""
        remaining = self.job.estimated_rows - self.job.selected
        if self.records_per_second <= 0 or remaining <= 0:
            return "N/A"
        return str(timedelta(seconds=int(remaining / self.records_per_second)))


class MemoryWatchdog(PeriodicWatchdog):
    """Stops the process when its memory grows past a ceiling.

    Growth is measured as resident set size above the baseline sampled by
    start(). Exceeding the ceiling is unrecoverable: the breach is logged and
    the process exits without unwinding, leaving any open transaction to be
    rolled back by the server.
    """

    def __init__(
        self,
        limit_bytes: int,
        interval: float = MEMORY_CHECK_INTERVAL,
        terminate: Optional[Callable[[int], None]] = None,
        metrics: Optional[MoverMetrics] = None,
        logger: Optional[structlog.BoundLogger] = None,
        process: Optional[psutil.Process] = None,
    ) -> None:
        """Initialize memory watchdog.

        Args:
            limit_bytes: Maximum memory growth in bytes
            interval: Seconds between samples
            terminate: Exit hook called with the exit status (defaults to os._exit)
            metrics: Optional metrics whose memory gauge is updated per sample
            logger: Optional logger instance
            process: Process to sample (defaults to the current process)
        """
        super().__init__(interval, logger or get_logger("memory"))
        self.limit_bytes = limit_bytes
        self.terminate = terminate or os._exit
        self.metrics = metrics
        self.process = process or psutil.Process(os.getpid())
        self.baseline: Optional[int] = None

    def start(self) -> None:
        """Sample the baseline and start monitoring."""
        self.baseline = self.process.memory_info().rss
        self.logger.debug("Memory baseline sampled", baseline_bytes=self.baseline, limit_bytes=self.limit_bytes)
        super().start()

    def tick(self) -> None:
        """Sample memory once and stop the process on a breach."""
        rss = self.process.memory_info().rss
        if self.metrics is not None:
            self.metrics.set_memory_usage(rss)
        if self.baseline is None:
            self.baseline = rss
            return
        increased = rss - self.baseline
        if increased > self.limit_bytes:
            error = ResourceLimitError(
                f"the memory usage({increased}) of the task has exceeded the limit({self.limit_bytes}), "
                "you can either reduce the batch size or increase the memory limit",
                context={"increased_bytes": increased, "limit_bytes": self.limit_bytes},
            )
            self.logger.critical("Memory limit exceeded", error=str(error))
            self.terminate(1)


class RunDeadline:
    """Wall-clock ceiling of a run, checked between batches only."""

    def __init__(
        self,
        run_time_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize run deadline.

        Args:
            run_time_seconds: Allowed run time (0 means unlimited)
            clock: Monotonic clock
        """
        self.run_time_seconds = run_time_seconds
        self.clock = clock
        self._started_at: Optional[float] = None

    def start(self) -> None:
        """Start counting."""
        self._started_at = self.clock()

    def expired(self) -> bool:
        """True once the run time has been used up."""
        if not self.run_time_seconds or self._started_at is None:
            return False
        return self.clock() - self._started_at >= self.run_time_seconds


class PauseGate:
    """Paused flag set by control commands; the loop waits on it between batches."""

    def __init__(self, logger: Optional[structlog.BoundLogger] = None) -> None:
        self.logger = logger or get_logger("pause_gate")
        self._resumed = asyncio.Event()
        self._resumed.set()

    @property
    def paused(self) -> bool:
        return not self._resumed.is_set()

    def pause(self) -> None:
        if not self.paused:
            self.logger.info("Task paused")
        self._resumed.clear()

    def resume(self) -> None:
        if self.paused:
            self.logger.info("Task resumed")
        self._resumed.set()

    async def wait(self) -> None:
        """Return immediately unless paused, else wait for resume()."""
        await self._resumed.wait()
