"""Periodic expiry of sessions whose correlated response never arrived."""

from __future__ import annotations

from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.schedulers.base import BaseScheduler
from apscheduler.triggers.interval import IntervalTrigger
from loguru import logger

from agentcore.router import SessionRouter

REAPER_JOB_ID = "agentcore.reap_sessions"


class SessionReaper:
    """Runs `SessionRouter.expire` on an interval job."""

    def __init__(
        self,
        router: SessionRouter,
        *,
        interval_seconds: float,
        scheduler: BaseScheduler | None = None,
    ) -> None:
        self._router = router
        self._interval_seconds = interval_seconds
        self._owns_scheduler = scheduler is None
        self._scheduler = scheduler or BackgroundScheduler(daemon=True)

    @property
    def scheduler(self) -> BaseScheduler:
        return self._scheduler

    @property
    def running(self) -> bool:
        return self._scheduler.get_job(REAPER_JOB_ID) is not None

    def start(self) -> None:
        self._scheduler.add_job(
            self.sweep,
            trigger=IntervalTrigger(seconds=self._interval_seconds),
            id=REAPER_JOB_ID,
            replace_existing=True,
            coalesce=True,
            max_instances=1,
        )
        if self._owns_scheduler and not self._scheduler.running:
            self._scheduler.start()
        logger.info("reaper.started interval_seconds={}", self._interval_seconds)

    def sweep(self) -> list[str]:
        expired = self._router.expire()
        if expired:
            logger.info("reaper.swept expired={}", len(expired))
        return expired

    def stop(self) -> None:
        if self.running:
            self._scheduler.remove_job(REAPER_JOB_ID)
        if self._owns_scheduler and self._scheduler.running:
            self._scheduler.shutdown(wait=False)
        logger.info("reaper.stopped")
