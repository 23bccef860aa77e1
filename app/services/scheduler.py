"""
Keyed one-shot timers for expiry-driven cleanup, plus the periodic sweep job.

Timers live in memory (APScheduler BackgroundScheduler) and are lost on restart;
the sweep (app.services.cleanup.run_expiry_sweep) rescans the database for
overdue entities so nothing stays behind after a crash.
"""
import logging
from datetime import datetime, timedelta, timezone
from functools import lru_cache
from typing import Any, Callable

from apscheduler.jobstores.base import JobLookupError
from apscheduler.schedulers.background import BackgroundScheduler

from app.config import get_settings

log = logging.getLogger("uvicorn.error")

SWEEP_JOB_ID = "expiry-sweep"


def signup_expiry_key(user_id: int) -> str:
    return f"signup-expiry:{user_id}"


def account_purge_key(user_id: int) -> str:
    return f"account-purge:{user_id}"


def reservation_expiry_key(occupation_id: int) -> str:
    return f"reservation-expiry:{occupation_id}"


class ExpiryScheduler:
    def __init__(self, scheduler: BackgroundScheduler | None = None):
        self._scheduler = scheduler or BackgroundScheduler(timezone=timezone.utc)

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def schedule(self, key: str, delay: timedelta, callback: Callable[..., Any], *args: Any) -> None:
        """Run `callback(*args)` once after `delay`. Scheduling the same key again replaces the previous timer."""
        run_date = datetime.now(timezone.utc) + delay
        self._scheduler.add_job(
            callback,
            "date",
            run_date=run_date,
            args=list(args),
            id=key,
            replace_existing=True,
            misfire_grace_time=None,
        )
        log.info("[Scheduler] Scheduled %s at %s", key, run_date.isoformat())

    def cancel(self, key: str) -> bool:
        """Cancel a pending timer. Returns False when there was nothing to cancel (already fired or never set)."""
        try:
            self._scheduler.remove_job(key)
        except JobLookupError:
            return False
        log.info("[Scheduler] Cancelled %s", key)
        return True

    def is_scheduled(self, key: str) -> bool:
        return self._scheduler.get_job(key) is not None

    def add_sweep(self, callback: Callable[[], Any], minutes: int) -> None:
        self._scheduler.add_job(
            callback,
            "interval",
            minutes=minutes,
            id=SWEEP_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )

    def start(self) -> None:
        if not self._scheduler.running:
            self._scheduler.start()
            log.info("[Scheduler] Started")

    def shutdown(self) -> None:
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            log.info("[Scheduler] Stopped")


@lru_cache
def get_scheduler() -> ExpiryScheduler:
    return ExpiryScheduler()


def start_scheduler() -> ExpiryScheduler:
    """Start the process-wide scheduler and register the durable sweep."""
    from app.services.cleanup import run_expiry_sweep

    settings = get_settings()
    scheduler = get_scheduler()
    if settings.expiry_sweep_enabled:
        scheduler.add_sweep(run_expiry_sweep, settings.expiry_sweep_interval_minutes)
    scheduler.start()
    return scheduler
