"""
Job dispatcher: starts one Apify actor run per due account of a platform.

Each account gets its own ScrapeJob:
- created as "pending"
- "running" with the Apify run id once the actor accepted the run
- "failed" with the captured error when the start call failed

Actor calls fan out concurrently (bounded by DISPATCH_MAX_CONCURRENCY);
database writes stay sequential on the caller's session. One account's
failure never prevents the others from being dispatched, and no job is
left "pending" when dispatch() returns or raises: if recording the outcomes
is interrupted, the jobs not yet recorded are failed before the error
propagates.

The pending -> running move is guarded on status, so a job cancelled while
its actor call was in flight stays failed.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import asdict, dataclass
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.apify_client import ApifyClient
from app.models import Account, JobStatus, JobType, ScrapePlatform
from app.services import job_store
from app.services.accounts import get_accounts_due_for_scraping
from app.services.errors import ConfigurationError, InvalidStateError
from app.settings import get_settings

logger = logging.getLogger(__name__)

ACTORS = {
    ScrapePlatform.instagram: "apify/instagram-scraper",
    ScrapePlatform.tiktok: "clockworks/tiktok-scraper",
    ScrapePlatform.youtube: "streamers/youtube-scraper",
}

JOB_TYPES = {
    ScrapePlatform.instagram: JobType.posts,
    ScrapePlatform.tiktok: JobType.profile,
    ScrapePlatform.youtube: JobType.profile,
}


@dataclass
class DispatchResult:
    job_id: int
    account_id: int
    account: str
    status: str
    run_id: str | None = None
    error: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def build_actor_input(account: Account) -> dict[str, Any]:
    settings = get_settings()
    platform = ScrapePlatform(account.platform)
    username = account.username.strip().lstrip("@")

    if platform is ScrapePlatform.instagram:
        return {
            "usernames": [username],
            "resultsType": "posts",
            "resultsLimit": settings.instagram_results_limit,
            "searchType": "user",
        }
    if platform is ScrapePlatform.tiktok:
        return {
            "profiles": [username],
            "resultsPerPage": settings.tiktok_results_per_page,
            "shouldDownloadVideos": False,
            "shouldDownloadCovers": True,
        }
    return {
        "startUrls": [{"url": account.profile_url}],
        "maxResults": settings.youtube_max_results,
        "maxResultsShorts": settings.youtube_max_shorts,
    }


async def _start_run(
    client: ApifyClient, account: Account, semaphore: asyncio.Semaphore
) -> tuple[str | None, str | None]:
    """Returns (run_id, error); never raises."""
    platform = ScrapePlatform(account.platform)
    async with semaphore:
        try:
            run_id = await client.start_run(ACTORS[platform], build_actor_input(account))
            return run_id, None
        except Exception as exc:
            logger.warning("[dispatch] %s account %s (%d) failed to start: %s", platform.value, account.username, account.id, exc)
            return None, str(exc) or exc.__class__.__name__


async def _fail_unsettled(
    session: AsyncSession, job_ids: list[int], outcomes: list[tuple[str | None, str | None]]
) -> None:
    """Fail jobs whose outcome could not be recorded, so none stays pending."""
    try:
        await session.rollback()
        for job_id, (run_id, error) in zip(job_ids, outcomes):
            if run_id:
                error = f"Dispatch interrupted after run {run_id} started"
            await job_store.finish_job(
                session, job_id, JobStatus.failed,
                error=error or "Dispatch interrupted", expected=(JobStatus.pending,),
            )
    except Exception:
        logger.exception("[dispatch] Could not fail unsettled jobs %s", job_ids)
        return
    logger.warning("[dispatch] Failed %d jobs left pending by an interrupted dispatch: %s", len(job_ids), job_ids)


async def dispatch_accounts(
    session: AsyncSession,
    platform: ScrapePlatform | str,
    accounts: list[Account],
    client: ApifyClient,
    *,
    now: datetime | None = None,
) -> list[DispatchResult]:
    """Create and start a job for each of ``accounts``."""
    platform = ScrapePlatform(platform)
    if not client.configured:
        raise ConfigurationError("APIFY_TOKEN missing")
    if not accounts:
        return []

    now = now or datetime.now(timezone.utc)
    jobs = []
    for account in accounts:
        job = await job_store.create_job(
            session,
            platform,
            JOB_TYPES[platform],
            account_id=account.id,
            market_id=account.market_id,
            now=now,
        )
        jobs.append(job)

    semaphore = asyncio.Semaphore(max(1, get_settings().dispatch_max_concurrency))
    outcomes = await asyncio.gather(*(_start_run(client, account, semaphore) for account in accounts))

    job_ids = [job.id for job in jobs]
    results: list[DispatchResult] = []
    try:
        for account, job_id, (run_id, error) in zip(accounts, job_ids, outcomes):
            if run_id:
                try:
                    job = await job_store.update_job(
                        session,
                        job_id,
                        job_store.JobUpdate(status=JobStatus.running, apify_run_id=run_id),
                        expected=(JobStatus.pending,),
                    )
                    status_value = job.status
                except InvalidStateError:
                    # cancelled while the actor call was in flight
                    status_value = (await job_store.get_job(session, job_id)).status
            else:
                await job_store.finish_job(
                    session, job_id, JobStatus.failed, error=error, expected=(JobStatus.pending,),
                )
                status_value = JobStatus.failed.value
            results.append(
                DispatchResult(
                    job_id=job_id,
                    account_id=account.id,
                    account=account.username,
                    status=status_value,
                    run_id=run_id,
                    error=error,
                )
            )
    finally:
        if len(results) < len(job_ids):
            await _fail_unsettled(session, job_ids[len(results):], outcomes[len(results):])

    started = sum(1 for r in results if r.run_id)
    logger.info("[dispatch] %s: %d started, %d failed", platform.value, started, len(results) - started)
    return results


async def dispatch(
    session: AsyncSession,
    platform: ScrapePlatform | str,
    client: ApifyClient,
    *,
    now: datetime | None = None,
) -> list[DispatchResult]:
    """Dispatch scrape jobs for every due account of ``platform``."""
    platform = ScrapePlatform(platform)
    if not client.configured:
        raise ConfigurationError("APIFY_TOKEN missing")

    accounts = await get_accounts_due_for_scraping(session, platform, now=now)
    logger.info("[dispatch] %s: %d accounts due", platform.value, len(accounts))
    return await dispatch_accounts(session, platform, accounts, client, now=now)
