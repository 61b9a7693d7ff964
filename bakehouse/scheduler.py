"""Interval timers for a live session using APScheduler."""

import logging
from typing import Any, Awaitable, Callable

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)


class SessionScheduler:
    """Owns every periodic job of one session on the running event loop.

    Jobs are coalesced and never overlap: a poll that is still waiting on the
    network when its next tick comes due is skipped rather than stacked.
    """

    def __init__(self, scheduler: AsyncIOScheduler | None = None):
        self._scheduler = scheduler or AsyncIOScheduler(
            job_defaults={"coalesce": True, "max_instances": 1, "misfire_grace_time": 1}
        )
        self._job_ids: set[str] = set()
        self._paused: set[str] = set()

    @property
    def running(self) -> bool:
        return self._scheduler.running

    def start(self) -> None:
        """Start the scheduler; must be called from inside the event loop."""
        if not self._scheduler.running:
            self._scheduler.start()
            logger.debug("Session scheduler started")

    def add_interval(
        self,
        job_id: str,
        func: Callable[..., Awaitable[Any]],
        seconds: float,
        name: str | None = None,
        paused: bool = False,
    ) -> None:
        self._scheduler.add_job(
            func,
            IntervalTrigger(seconds=seconds),
            id=job_id,
            name=name or job_id,
            replace_existing=True,
        )
        self._job_ids.add(job_id)
        self._paused.discard(job_id)
        if paused:
            self.pause(job_id)
        logger.debug(f"Registered job: {name or job_id} (every {seconds}s, paused={paused})")

    def pause(self, job_id: str) -> None:
        if job_id in self._job_ids and job_id not in self._paused:
            self._scheduler.pause_job(job_id)
            self._paused.add(job_id)

    def resume(self, job_id: str) -> None:
        if job_id in self._paused:
            self._scheduler.resume_job(job_id)
            self._paused.discard(job_id)

    def is_paused(self, job_id: str) -> bool:
        return job_id in self._paused

    def has_job(self, job_id: str) -> bool:
        return job_id in self._job_ids

    def remove(self, job_id: str) -> None:
        if job_id in self._job_ids:
            self._job_ids.discard(job_id)
            self._paused.discard(job_id)
            if self._scheduler.get_job(job_id) is not None:
                self._scheduler.remove_job(job_id)
            logger.debug(f"Removed job: {job_id}")

    def shutdown(self) -> None:
        """Clear every timer and stop the scheduler."""
        for job_id in list(self._job_ids):
            self.remove(job_id)
        if self._scheduler.running:
            self._scheduler.shutdown(wait=False)
            logger.debug("Session scheduler stopped")
