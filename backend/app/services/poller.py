"""
Job poller: checks Apify for every running job and settles finished ones.

External -> local status mapping:
- SUCCEEDED                    -> completed (items_scraped from the dataset item count)
- FAILED / ABORTED / TIMED-OUT -> failed ("Apify run <status>: <message>")
- anything else                -> untouched, counted as still running

The transition is a conditional update guarded on status == "running".
Side effects of a completion (account last_scraped_at, schedule record_run)
only run for the caller that actually performed the transition, so
overlapping poll cycles do not apply them twice.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.apify_client import ApifyClient, RunStatus
from app.models import JobStatus, ScrapeJob
from app.services import job_store, schedule_store
from app.services.accounts import mark_scraped
from app.settings import get_settings

logger = logging.getLogger(__name__)

OUTCOME_COMPLETED = "completed"
OUTCOME_FAILED = "failed"
OUTCOME_RUNNING = "running"
OUTCOME_SKIPPED = "skipped"


@dataclass
class PollSummary:
    checked: int = 0
    completed: int = 0
    failed: int = 0
    still_running: int = 0

    def to_dict(self) -> dict[str, int]:
        return asdict(self)


def _failure_message(run: RunStatus) -> str:
    message = f"Apify run {run.status.lower()}"
    if run.message:
        message += f": {run.message}"
    return message


async def _fetch_status(
    client: ApifyClient, job: ScrapeJob, semaphore: asyncio.Semaphore
) -> RunStatus | None:
    async with semaphore:
        try:
            return await client.get_run_status(job.apify_run_id)
        except Exception as exc:
            logger.warning("[poll] Status check for job %d (run %s) failed: %s", job.id, job.apify_run_id, exc)
            return None


async def apply_run_status(
    session: AsyncSession, job: ScrapeJob, run: RunStatus, *, now: datetime | None = None
) -> str:
    """Settle ``job`` according to ``run``. Returns the outcome."""
    now = now or datetime.now(timezone.utc)

    if not run.is_terminal:
        return OUTCOME_RUNNING

    if run.succeeded:
        won = await job_store.finish_job(
            session, job.id, JobStatus.completed, items_scraped=run.item_count, now=now,
        )
        if not won:
            return OUTCOME_SKIPPED
        if job.account_id is not None:
            await mark_scraped(session, job.account_id, now=now)
        await schedule_store.record_run_for_platform(session, job.platform, now=now)
        logger.info("[poll] Job %d completed (%s items)", job.id, run.item_count)
        return OUTCOME_COMPLETED

    error = _failure_message(run)
    won = await job_store.finish_job(session, job.id, JobStatus.failed, error=error, now=now)
    if not won:
        return OUTCOME_SKIPPED
    logger.info("[poll] Job %d failed: %s", job.id, error)
    return OUTCOME_FAILED


async def poll_all_running(
    session: AsyncSession, client: ApifyClient, *, now: datetime | None = None
) -> PollSummary:
    jobs = [job for job in await job_store.list_running(session) if job.apify_run_id]
    summary = PollSummary(checked=len(jobs))
    if not jobs:
        return summary

    semaphore = asyncio.Semaphore(max(1, get_settings().poll_max_concurrency))
    statuses = await asyncio.gather(*(_fetch_status(client, job, semaphore) for job in jobs))

    for job, run in zip(jobs, statuses):
        if run is None:
            summary.still_running += 1
            continue
        outcome = await apply_run_status(session, job, run, now=now)
        if outcome == OUTCOME_COMPLETED:
            summary.completed += 1
        elif outcome == OUTCOME_FAILED:
            summary.failed += 1
        elif outcome == OUTCOME_RUNNING:
            summary.still_running += 1

    logger.info(
        "[poll] Checked %d: %d completed, %d failed, %d still running",
        summary.checked, summary.completed, summary.failed, summary.still_running,
    )
    return summary


async def poll_job(
    session: AsyncSession, client: ApifyClient, job_id: int, *, now: datetime | None = None
) -> dict:
    """Check a single job. Terminal jobs and jobs without a run id are returned as-is."""
    job = await job_store.get_job(session, job_id)
    if JobStatus(job.status) is not JobStatus.running or not job.apify_run_id:
        return {"job_id": job.id, "status": job.status, "checked": False}

    run = await client.get_run_status(job.apify_run_id)
    outcome = await apply_run_status(session, job, run, now=now)
    job = await job_store.get_job(session, job_id)
    return {"job_id": job.id, "status": job.status, "checked": True, "outcome": outcome, "external_status": run.status}
