"""
Scrape job records.

Status moves pending -> running -> completed | failed and never leaves a
terminal state. Terminal transitions go through ``finish_job``, a conditional
UPDATE guarded on the expected current status, so concurrent pollers, the
reaper and manual cancellation cannot overwrite each other.
"""
from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, fields
from datetime import datetime, timedelta, timezone

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import (
    ACTIVE_STATUSES,
    JobStatus,
    JobType,
    ScheduleScope,
    ScrapeJob,
    ScrapePlatform,
)
from app.services.errors import InvalidStateError, NotFoundError

logger = logging.getLogger(__name__)

STUCK_JOB_TIMEOUT = timedelta(minutes=30)
STUCK_JOB_ERROR = "Timed out (exceeded 30 minutes)"
CANCELLED_ERROR = "Manually cancelled"


@dataclass
class JobUpdate:
    """Fields to patch on a job. ``None`` means "leave unchanged"."""

    status: JobStatus | None = None
    apify_run_id: str | None = None
    completed_at: datetime | None = None
    items_scraped: int | None = None
    error: str | None = None

    def values(self) -> dict:
        values = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if value is not None:
                values[f.name] = value.value if isinstance(value, JobStatus) else value
        return values


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


async def create_job(
    session: AsyncSession,
    platform: ScrapePlatform | str,
    job_type: JobType | str,
    *,
    account_id: int | None = None,
    market_id: int | None = None,
    now: datetime | None = None,
) -> ScrapeJob:
    job = ScrapeJob(
        platform=ScrapePlatform(platform).value,
        job_type=JobType(job_type).value,
        status=JobStatus.pending.value,
        account_id=account_id,
        market_id=market_id,
        started_at=_now(now),
    )
    session.add(job)
    await session.commit()
    await session.refresh(job)
    return job


async def get_job(session: AsyncSession, job_id: int) -> ScrapeJob:
    job = await session.get(ScrapeJob, job_id, populate_existing=True)
    if job is None:
        raise NotFoundError(f"Scrape job {job_id} not found")
    return job


async def update_job(
    session: AsyncSession,
    job_id: int,
    patch: JobUpdate,
    *,
    expected: Iterable[JobStatus] = ACTIVE_STATUSES,
) -> ScrapeJob:
    """Apply the fields set on ``patch`` only if the job is still in one of ``expected``.

    Raises InvalidStateError (carrying the current status) when the guard does not match.
    Terminal transitions go through ``finish_job``.
    """
    values = patch.values()
    if "status" in values and JobStatus(values["status"]).is_terminal:
        raise ValueError("terminal transitions go through finish_job")
    expected = [JobStatus(s).value for s in expected]

    won = False
    if values:
        result = await session.execute(
            update(ScrapeJob)
            .where(ScrapeJob.id == job_id, ScrapeJob.status.in_(expected))
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        await session.commit()
        won = result.rowcount == 1

    job = await get_job(session, job_id)
    if not won and job.status not in expected:
        raise InvalidStateError(f"Scrape job {job_id} is already {job.status}")
    return job


async def finish_job(
    session: AsyncSession,
    job_id: int,
    status: JobStatus,
    *,
    error: str | None = None,
    items_scraped: int | None = None,
    expected: Iterable[JobStatus] = (JobStatus.running,),
    now: datetime | None = None,
) -> bool:
    """Move a job to a terminal status only if it is still in one of ``expected``.

    Returns True when this call performed the transition.
    """
    if not status.is_terminal:
        raise ValueError(f"finish_job needs a terminal status, got {status}")
    if status is JobStatus.failed and not error:
        raise ValueError("failed jobs must carry an error")

    values = {"status": status.value, "completed_at": _now(now)}
    if status is JobStatus.failed:
        values["error"] = error
    if items_scraped is not None:
        values["items_scraped"] = items_scraped

    result = await session.execute(
        update(ScrapeJob)
        .where(ScrapeJob.id == job_id, ScrapeJob.status.in_([s.value for s in expected]))
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    await session.commit()
    return result.rowcount == 1


async def cancel_job(session: AsyncSession, job_id: int, *, now: datetime | None = None) -> ScrapeJob:
    """Fail a pending/running job on user request. The external run is not aborted."""
    job = await get_job(session, job_id)
    if JobStatus(job.status) not in ACTIVE_STATUSES:
        raise InvalidStateError(f"Cannot cancel scrape job {job_id} in status {job.status}")

    won = await finish_job(
        session, job_id, JobStatus.failed, error=CANCELLED_ERROR, expected=ACTIVE_STATUSES, now=now,
    )
    job = await get_job(session, job_id)
    if not won:
        raise InvalidStateError(f"Cannot cancel scrape job {job_id} in status {job.status}")
    logger.info("[jobs] Job %d cancelled by user", job_id)
    return job


async def list_recent(session: AsyncSession, limit: int = 20) -> list[ScrapeJob]:
    result = await session.execute(
        select(ScrapeJob).order_by(ScrapeJob.started_at.desc(), ScrapeJob.id.desc()).limit(limit)
    )
    return list(result.scalars().all())


async def list_running(session: AsyncSession) -> list[ScrapeJob]:
    result = await session.execute(
        select(ScrapeJob)
        .where(ScrapeJob.status == JobStatus.running.value)
        .order_by(ScrapeJob.started_at)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def list_filtered(
    session: AsyncSession,
    *,
    platforms: Iterable[ScrapePlatform | str] | None = None,
    platform: ScheduleScope | str | None = None,
    days_back: int = 7,
    limit: int = 100,
    now: datetime | None = None,
) -> list[ScrapeJob]:
    """Recent jobs filtered by platform set (preferred) or legacy single platform.

    The legacy value ``all`` applies no platform filter.
    """
    cutoff = _now(now) - timedelta(days=days_back)
    q = select(ScrapeJob).where(ScrapeJob.started_at >= cutoff)

    platform_set = [ScrapePlatform(p).value for p in platforms] if platforms else []
    if platform_set:
        q = q.where(ScrapeJob.platform.in_(platform_set))
    elif platform is not None and ScheduleScope(platform) is not ScheduleScope.all:
        q = q.where(ScrapeJob.platform == ScheduleScope(platform).value)

    q = q.order_by(ScrapeJob.started_at.desc(), ScrapeJob.id.desc()).limit(limit)
    result = await session.execute(q)
    return list(result.scalars().all())


async def timeout_stuck(session: AsyncSession, *, now: datetime | None = None) -> list[int]:
    """Fail running jobs started more than 30 minutes ago. Returns the ids that were failed."""
    now = _now(now)
    cutoff = now - STUCK_JOB_TIMEOUT
    result = await session.execute(
        select(ScrapeJob.id).where(
            ScrapeJob.status == JobStatus.running.value,
            ScrapeJob.started_at < cutoff,
        )
    )
    stuck_ids = list(result.scalars().all())

    timed_out: list[int] = []
    for job_id in stuck_ids:
        if await finish_job(session, job_id, JobStatus.failed, error=STUCK_JOB_ERROR, now=now):
            timed_out.append(job_id)
    return timed_out
