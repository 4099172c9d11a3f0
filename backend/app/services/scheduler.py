"""
In-process scrape ticker (SCHEDULER_ENABLED, default off).

The normal deployment drives everything through the /cron endpoints. When
enabled, this runs the same entry points on an interval:
- schedule_tick: dispatch platforms whose schedule is due
- poll_cycle: reap stuck jobs, then poll running ones

Ticks are single-leader across instances via pg_try_advisory_lock. The lock
is held on its own connection for the whole tick, while the work commits on
a separate session. On non-Postgres databases the lock is skipped.
"""
from __future__ import annotations

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any

from apscheduler.schedulers.asyncio import AsyncIOScheduler
from apscheduler.triggers.interval import IntervalTrigger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from app.integrations.apify_client import get_apify_client
from app.services import sweep
from app.settings import get_settings

logger = logging.getLogger("scheduler")


class TickerJob(str, Enum):
    schedule_tick = "schedule_tick"
    poll_cycle = "poll_cycle"


# Advisory lock keys (arbitrary int64, unique per ticker job)
LOCK_KEYS = {
    TickerJob.schedule_tick: 910_001,
    TickerJob.poll_cycle: 910_002,
}


@dataclass
class TickerRun:
    job: str
    started_at: datetime
    finished_at: datetime | None = None
    acquired: bool = False
    result: dict[str, Any] | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class SchedulerService:
    """Interval ticker for due schedules and poll cycles."""

    _instance: "SchedulerService | None" = None

    def __init__(self):
        self.scheduler = AsyncIOScheduler(timezone="UTC")
        self._engine: AsyncEngine | None = None
        self._session_factory: async_sessionmaker[AsyncSession] | None = None
        self._running = False
        self.last_runs: dict[str, TickerRun] = {}

    @classmethod
    def get_instance(cls) -> "SchedulerService":
        if cls._instance is None:
            cls._instance = cls()
        return cls._instance

    def configure(self, database_url: str):
        self._engine = create_async_engine(database_url, echo=False)
        self._session_factory = async_sessionmaker(self._engine, expire_on_commit=False)

    async def dispose(self):
        if self._engine is not None:
            await self._engine.dispose()
            self._engine = None
            self._session_factory = None

    @asynccontextmanager
    async def _leader_lock(self, lock_key: int) -> AsyncIterator[bool]:
        """Yield True if this instance leads the tick.

        The lock connection stays checked out until the tick ends, so the
        unlock runs on the connection that took the lock.
        """
        async with self._engine.connect() as conn:
            if conn.dialect.name != "postgresql":
                yield True
                return
            acquired = bool(await conn.scalar(text("SELECT pg_try_advisory_lock(:key)"), {"key": lock_key}))
            try:
                yield acquired
            finally:
                if acquired:
                    await conn.scalar(text("SELECT pg_advisory_unlock(:key)"), {"key": lock_key})

    def start(self):
        """Start the ticker unless SCHEDULER_ENABLED is off."""
        settings = get_settings()
        if not settings.scheduler_enabled:
            logger.info("Scheduler disabled (SCHEDULER_ENABLED=false), relying on /cron triggers")
            return
        if self._running:
            return

        self.scheduler.add_job(
            self.run,
            IntervalTrigger(minutes=settings.scheduler_tick_minutes),
            args=[TickerJob.schedule_tick],
            id=TickerJob.schedule_tick.value,
            name="Dispatch due scrape schedules",
            replace_existing=True,
        )
        self.scheduler.add_job(
            self.run,
            IntervalTrigger(minutes=settings.poll_interval_minutes),
            args=[TickerJob.poll_cycle],
            id=TickerJob.poll_cycle.value,
            name="Reap stuck jobs and poll running ones",
            replace_existing=True,
        )
        self.scheduler.start()
        self._running = True
        logger.info(
            "Scheduler started: tick every %d min, poll every %d min",
            settings.scheduler_tick_minutes, settings.poll_interval_minutes,
        )

    def stop(self):
        if not self._running:
            return
        self.scheduler.shutdown(wait=False)
        self._running = False
        logger.info("Scheduler stopped")

    def is_running(self) -> bool:
        return self._running

    async def run(self, job: TickerJob | str) -> TickerRun:
        """Run one ticker job now if this instance gets the leader lock.

        Failures are logged and recorded on the returned run, never raised,
        so one bad tick does not stop the interval.
        """
        job = TickerJob(job)
        if self._engine is None:
            self.configure(get_settings().async_database_url)

        run = TickerRun(job=job.value, started_at=datetime.now(timezone.utc))
        self.last_runs[job.value] = run
        try:
            async with self._leader_lock(LOCK_KEYS[job]) as acquired:
                run.acquired = acquired
                if acquired:
                    async with self._session_factory() as session:
                        run.result = await self._work(job, session)
                else:
                    logger.debug("[%s] Advisory lock not acquired, skipping tick", job.value)
        except Exception as exc:
            logger.exception("[%s] Tick failed", job.value)
            run.error = str(exc) or exc.__class__.__name__
        run.finished_at = datetime.now(timezone.utc)
        return run

    async def _work(self, job: TickerJob, session: AsyncSession) -> dict[str, Any]:
        client = get_apify_client()
        if job is TickerJob.schedule_tick:
            result = await sweep.run_due_schedules(session, client)
            logger.info("[schedule_tick] due=%s advanced=%s", result.get("due"), result.get("advanced"))
            return result

        if not client.configured:
            logger.debug("[poll_cycle] APIFY_TOKEN missing, skipping tick")
            return {"skipped": "APIFY_TOKEN missing"}
        result = await sweep.run_poll_cycle(session, client)
        logger.info(
            "[poll_cycle] %d timed out, %d completed, %d failed, %d running",
            result["timed_out"], result["completed"], result["failed"], result["still_running"],
        )
        return result

    def get_jobs(self) -> list[dict]:
        jobs = []
        for job in self.scheduler.get_jobs():
            next_run = job.next_run_time
            jobs.append({
                "id": job.id,
                "name": job.name,
                "next_run": next_run.isoformat() if next_run else None,
                "trigger": str(job.trigger),
            })
        return jobs


scheduler_service = SchedulerService.get_instance()
