"""
Token Sweep Scheduler

Runs the token lifecycle maintenance jobs (expired sweep, revoked sweep and
statistics logging) on fixed intervals from a single daemon thread.
"""

import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, List, Optional

from .logging_config import get_logger
from .tokens import TokenLifecycle


@dataclass
class ScheduledJob:
    """A maintenance job and its next due time (monotonic seconds)"""
    name: str
    interval: float
    func: Callable[[], Any]
    next_run: float
    runs: int = 0
    failures: int = 0


class TokenSweepScheduler:
    """
    Background scheduler for token maintenance

    A failing job is logged and rescheduled; it never stops the loop.
    """

    def __init__(
        self,
        lifecycle: TokenLifecycle,
        expired_interval: float = 3600,
        revoked_interval: float = 86400,
        statistics_interval: float = 21600,
        time_source: Callable[[], float] = time.monotonic
    ):
        self.lifecycle = lifecycle
        self.time_source = time_source
        self.logger = get_logger("flashpay.scheduler")
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

        now = time_source()
        self.jobs: List[ScheduledJob] = [
            ScheduledJob("sweep_expired", expired_interval, lifecycle.sweep_expired, now + expired_interval),
            ScheduledJob("sweep_revoked", revoked_interval, lifecycle.sweep_revoked, now + revoked_interval),
            ScheduledJob("token_statistics", statistics_interval, self._log_statistics,
                         now + statistics_interval),
        ]

    def _log_statistics(self) -> None:
        stats = self.lifecycle.token_statistics()
        self.logger.info(
            f"Refresh tokens: {stats['active']} active, {stats['expired']} expired, "
            f"{stats['revoked']} revoked ({stats['total']} total)"
        )

    def run_pending(self) -> int:
        """
        Run every job whose interval has elapsed

        Returns:
            Number of jobs run
        """
        ran = 0
        for job in self.jobs:
            now = self.time_source()
            if now < job.next_run:
                continue
            try:
                job.func()
            except Exception:
                job.failures += 1
                self.logger.error(f"Scheduled job {job.name} failed", exc_info=True)
            job.runs += 1
            job.next_run = now + job.interval
            ran += 1
        return ran

    def seconds_until_next(self) -> float:
        next_run = min(job.next_run for job in self.jobs)
        return max(0.0, next_run - self.time_source())

    def _run_loop(self) -> None:
        self.logger.info("Token sweep scheduler started")
        while not self._stop_event.is_set():
            self.run_pending()
            self._stop_event.wait(self.seconds_until_next())
        self.logger.info("Token sweep scheduler stopped")

    def start(self) -> None:
        """Start the scheduler thread"""
        if self.is_running():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run_loop, name="token-sweep-scheduler")
        self._thread.daemon = True
        self._thread.start()

    def stop(self, timeout: float = 5.0) -> None:
        """Stop the scheduler thread and wait for it to exit"""
        self._stop_event.set()
        if self._thread:
            self._thread.join(timeout=timeout)
            self._thread = None

    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()
