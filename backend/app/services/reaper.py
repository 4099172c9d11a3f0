"""
Stuck-job reaper: fails scrape jobs that stayed "running" too long.

Stuck criteria:
- status == "running" and started_at < now - 30 minutes

Run it right before a poll cycle so runs that will never report a terminal
status (actor crashed silently, run id lost) do not pile up.
"""
from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import JobStatus, ScrapeJob
from app.services import job_store
from app.services.notify import notify_warn
from app.settings import get_settings

logger = logging.getLogger(__name__)


async def timeout_stuck_jobs(session: AsyncSession, *, now: datetime | None = None) -> dict[str, int]:
    now = now or datetime.now(timezone.utc)
    timed_out = await job_store.timeout_stuck(session, now=now)

    if timed_out:
        logger.warning("[reaper] Timed out %d stuck jobs: %s", len(timed_out), timed_out[:20])
        summary = ", ".join(f"#{job_id}" for job_id in timed_out[:10])
        await notify_warn(f"Scrape reaper: {len(timed_out)} stuck jobs", summary)
    else:
        logger.debug("[reaper] No stuck jobs")

    return {"timed_out": len(timed_out)}


async def get_health(session: AsyncSession, *, now: datetime | None = None) -> dict[str, Any]:
    """Job counts by status plus how many running jobs are past the timeout."""
    settings = get_settings()
    now = now or datetime.now(timezone.utc)

    counts_q = await session.execute(
        select(ScrapeJob.status, func.count(ScrapeJob.id)).group_by(ScrapeJob.status)
    )
    counts = {row[0]: row[1] for row in counts_q.all()}

    stuck = await session.scalar(
        select(func.count(ScrapeJob.id)).where(
            ScrapeJob.status == JobStatus.running.value,
            ScrapeJob.started_at < now - job_store.STUCK_JOB_TIMEOUT,
        )
    )

    return {
        "counts": counts,
        "stuck_running": stuck or 0,
        "stuck_timeout_minutes": int(job_store.STUCK_JOB_TIMEOUT.total_seconds() // 60),
        "scheduler_enabled": settings.scheduler_enabled,
        "apify_configured": bool(settings.apify_token),
        "checked_at": now.isoformat(),
    }
