"""
Cancellable timers on top of the ``schedule`` library.

The feeds never touch ``threading.Timer`` or the global ``schedule`` jobs
directly. They get a scheduler object with two methods:

    call_later(delay_seconds, func) -> ScheduledTask
    call_every(interval_seconds, func) -> ScheduledTask

so tests can drive time by hand with a fake that has the same shape.
"""

import logging
import threading
import time
from typing import Callable, Optional

import schedule

logger = logging.getLogger(__name__)


class ScheduledTask:
    """Handle for a pending one-shot or recurring job.

    ``cancel()`` may be called any number of times. Once it has been called
    the callback never runs again, even if the job was already due.
    """

    def __init__(self, func: Callable[[], None], name: str = ""):
        self._func = func
        self.name = name or getattr(func, "__name__", "task")
        self._cancelled = threading.Event()
        self._on_cancel: Optional[Callable[[], None]] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled.is_set()

    def cancel(self) -> None:
        if self._cancelled.is_set():
            return
        self._cancelled.set()
        if self._on_cancel:
            self._on_cancel()

    def fire(self) -> None:
        if self._cancelled.is_set():
            return
        try:
            self._func()
        except Exception as e:
            logger.error(f"Scheduled task '{self.name}' failed: {e}", exc_info=True)


class JobScheduler:
    """Runs ``schedule`` jobs from a background thread.

    Each due job is handed to its own daemon thread so a slow job (a poll
    pass with paced HTTP calls) cannot hold up other timers.
    """

    def __init__(self, tick_seconds: float = 1.0):
        self.tick_seconds = tick_seconds
        self._scheduler = schedule.Scheduler()
        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None

    def call_later(self, delay_seconds: float, func: Callable[[], None], name: str = "") -> ScheduledTask:
        task = ScheduledTask(func, name)

        def run_once():
            self._dispatch(task)
            return schedule.CancelJob

        with self._lock:
            job = self._scheduler.every(max(1, int(round(delay_seconds)))).seconds.do(run_once)
        task._on_cancel = lambda: self._cancel_job(job)
        return task

    def call_every(self, interval_seconds: float, func: Callable[[], None], name: str = "") -> ScheduledTask:
        task = ScheduledTask(func, name)
        with self._lock:
            job = self._scheduler.every(max(1, int(round(interval_seconds)))).seconds.do(self._dispatch, task)
        task._on_cancel = lambda: self._cancel_job(job)
        return task

    def _cancel_job(self, job: schedule.Job) -> None:
        with self._lock:
            self._scheduler.cancel_job(job)

    def _dispatch(self, task: ScheduledTask) -> None:
        if task.cancelled:
            return
        threading.Thread(target=task.fire, name=f"job-{task.name}", daemon=True).start()

    def run_pending(self) -> None:
        with self._lock:
            self._scheduler.run_pending()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._run, name="job-scheduler", daemon=True)
        self._thread.start()
        logger.info("Job scheduler started")

    def _run(self) -> None:
        while not self._stop_event.is_set():
            self.run_pending()
            time.sleep(self.tick_seconds)

    def stop(self) -> None:
        self._stop_event.set()
        with self._lock:
            self._scheduler.clear()
        if self._thread:
            self._thread.join(timeout=self.tick_seconds * 2)
        logger.info("Job scheduler stopped")
