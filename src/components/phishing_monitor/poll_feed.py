"""Scheduled opensquat lookups.

A pass walks the watch-list in order, one request per entry:

- the daily quota is checked before every request and the pass stops the
  moment it is used up
- consecutive requests are paced 1 second apart
- a failed lookup is logged and skipped; it does not use quota
- only one pass runs at a time

The channel owns nothing but its timers. Targets, quota and result handling
come from the host (the orchestrator), which must provide::

    poll_targets() -> list[str]
    quota_available() -> bool
    handle_lookup_result(entry, candidates) -> None
    finish_pass() -> None
"""

import logging
import threading
import time
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum
from typing import Callable, Optional

from services.opensquat import LookupFailure

logger = logging.getLogger(__name__)

WARMUP_DELAY_SECONDS = 30
PACING_DELAY_SECONDS = 1


class PollStatus(Enum):
    DISABLED = "disabled"
    SCHEDULED = "scheduled"
    RUNNING = "running"
    QUOTA_EXHAUSTED = "quota_exhausted"


@dataclass
class PollPassSummary:
    requested: int = 0
    succeeded: int = 0
    failed: int = 0
    candidates: int = 0
    skipped: bool = False
    quota_exhausted: bool = False


class PollFeedChannel:
    """Owns the warm-up and interval timers and runs lookup passes."""

    def __init__(self, client, scheduler, host, sleep: Callable[[float], None] = time.sleep,
                 clock: Optional[Callable[[], datetime]] = None,
                 on_status: Optional[Callable[[PollStatus], None]] = None):
        self.client = client
        self.scheduler = scheduler
        self.host = host
        self.sleep = sleep
        self.clock = clock or datetime.now
        self.on_status = on_status

        self._lock = threading.Lock()
        self._pass_lock = threading.Lock()
        self._warmup_task = None
        self._interval_task = None
        self.interval_minutes: Optional[int] = None
        self.next_run_at: Optional[datetime] = None
        self._interval_started_at: Optional[datetime] = None
        self.status = PollStatus.DISABLED

    @property
    def scheduled(self) -> bool:
        return self._interval_task is not None

    def _set_status(self, status: PollStatus) -> None:
        self.status = status
        if self.on_status:
            try:
                self.on_status(status)
            except Exception as e:
                logger.error(f"Opensquat status listener failed: {e}")

    def start(self, interval_minutes: int) -> None:
        """(Re)schedule from scratch: a warm-up pass in 30s, then every interval."""
        with self._lock:
            self._cancel_timers()
            self.interval_minutes = interval_minutes
            self._warmup_task = self.scheduler.call_later(
                WARMUP_DELAY_SECONDS, self.run_pass, name="opensquat-warmup"
            )
            self._interval_task = self.scheduler.call_every(
                interval_minutes * 60, self._run_scheduled_pass, name="opensquat-interval"
            )
            self._interval_started_at = self.clock()
            self.next_run_at = self._interval_started_at + timedelta(seconds=WARMUP_DELAY_SECONDS)
        self._set_status(PollStatus.SCHEDULED)
        logger.info(f"Opensquat monitoring started ({interval_minutes}min intervals)")

    def stop(self) -> None:
        with self._lock:
            was_scheduled = self._interval_task is not None or self._warmup_task is not None
            self._cancel_timers()
            self.next_run_at = None
            self._interval_started_at = None
        self._set_status(PollStatus.DISABLED)
        if was_scheduled:
            logger.info("Opensquat monitoring stopped")

    def _cancel_timers(self) -> None:
        for task in (self._warmup_task, self._interval_task):
            if task is not None:
                task.cancel()
        self._warmup_task = None
        self._interval_task = None

    def _next_interval_tick(self) -> Optional[datetime]:
        """The recurring timer fires at whole intervals after (re)scheduling."""
        with self._lock:
            started = self._interval_started_at
            if started is None or not self.interval_minutes:
                return None
            interval = timedelta(minutes=self.interval_minutes)
            elapsed_intervals = max(0, (self.clock() - started) // interval)
            return started + (elapsed_intervals + 1) * interval

    def _run_scheduled_pass(self) -> None:
        self.run_pass()

    def run_pass(self) -> PollPassSummary:
        """Run one lookup pass. Manual triggers go through the same quota checks."""
        summary = PollPassSummary()
        if not self._pass_lock.acquire(blocking=False):
            logger.info("Opensquat check already running, skipping")
            summary.skipped = True
            return summary

        try:
            targets = self.host.poll_targets()
            if not targets:
                summary.skipped = True
                return summary

            if not self.host.quota_available():
                logger.warning("Opensquat daily limit reached")
                summary.quota_exhausted = True
                self._set_status(PollStatus.QUOTA_EXHAUSTED)
                return summary

            logger.info("Running Opensquat check...")
            self._set_status(PollStatus.RUNNING)

            for entry in targets:
                if not self.host.quota_available():
                    logger.warning("Opensquat daily limit reached mid-pass, stopping")
                    summary.quota_exhausted = True
                    break

                if summary.requested:
                    self.sleep(PACING_DELAY_SECONDS)
                summary.requested += 1

                try:
                    candidates = self.client.lookup(entry)
                except LookupFailure as e:
                    logger.error(str(e))
                    summary.failed += 1
                    continue

                summary.succeeded += 1
                summary.candidates += len(candidates)
                self.host.handle_lookup_result(entry, candidates)

            self.host.finish_pass()
            if self.interval_minutes and self.scheduled:
                self.next_run_at = self._next_interval_tick()

            if summary.quota_exhausted or not self.host.quota_available():
                self._set_status(PollStatus.QUOTA_EXHAUSTED)
            else:
                self._set_status(PollStatus.SCHEDULED if self.scheduled else PollStatus.DISABLED)

            logger.info(
                f"Opensquat check complete: {summary.succeeded} lookups, "
                f"{summary.failed} failures, {summary.candidates} candidates"
            )
            return summary
        finally:
            self._pass_lock.release()
