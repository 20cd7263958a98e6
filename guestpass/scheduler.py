"""APScheduler integration."""

from __future__ import annotations

import logging

from apscheduler.schedulers.background import BackgroundScheduler

from .config import settings
from .ratelimit import limiter

logger = logging.getLogger("uvicorn.error")

_scheduler: BackgroundScheduler | None = None


def prune_rate_limits() -> int:
    removed = limiter.prune()
    if removed:
        logger.debug("Pruned %d expired rate-limit windows", removed)
    return removed


def start_scheduler() -> BackgroundScheduler:
    global _scheduler
    if _scheduler and _scheduler.running:
        return _scheduler
    scheduler = BackgroundScheduler(timezone="UTC")
    scheduler.add_job(
        prune_rate_limits,
        "interval",
        minutes=settings.rate_limit_prune_minutes,
        id="rate-limit-prune",
        max_instances=1,
        replace_existing=True,
    )
    scheduler.start()
    _scheduler = scheduler
    return scheduler


def stop_scheduler() -> None:
    global _scheduler
    if _scheduler and _scheduler.running:
        _scheduler.shutdown(wait=False)
        _scheduler = None
