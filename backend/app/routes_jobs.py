"""
Scrape job endpoints: dashboards, manual dispatch, poll cycle, cancellation.
"""
from __future__ import annotations

import logging
from typing import List, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_session
from app.integrations.apify_client import ApifyClient, get_apify_client
from app.models import ScheduleScope, ScrapePlatform
from app.schemas import DispatchResponse, PollSummaryRead, ScrapeJobRead
from app.services import job_store
from app.services.dispatcher import dispatch
from app.services.errors import ConfigurationError, InvalidStateError, NotFoundError, TransportError
from app.services.poller import poll_job
from app.services.reaper import get_health, timeout_stuck_jobs
from app.services.sweep import run_poll_cycle

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])

SessionDep = Depends(get_session)
ApifyDep = Depends(get_apify_client)


@router.get("/recent", response_model=list[ScrapeJobRead])
async def recent_jobs(
    limit: int = Query(default=20, ge=1, le=500),
    session: AsyncSession = SessionDep,
):
    return await job_store.list_recent(session, limit=limit)


@router.get("/running", response_model=list[ScrapeJobRead])
async def running_jobs(session: AsyncSession = SessionDep):
    return await job_store.list_running(session)


@router.get("/health")
async def jobs_health(session: AsyncSession = SessionDep):
    """Job counts by status and stuck running jobs."""
    return await get_health(session)


@router.get("", response_model=list[ScrapeJobRead])
async def filtered_jobs(
    platforms: Optional[List[ScrapePlatform]] = Query(default=None),
    platform: Optional[ScheduleScope] = Query(default=None),
    days_back: int = Query(default=7, ge=1, le=365),
    limit: int = Query(default=100, ge=1, le=1000),
    session: AsyncSession = SessionDep,
):
    """Jobs of the last ``days_back`` days; ``platforms`` wins over the legacy ``platform``."""
    return await job_store.list_filtered(
        session, platforms=platforms, platform=platform, days_back=days_back, limit=limit,
    )


@router.post("/dispatch/{platform}", response_model=DispatchResponse)
async def dispatch_platform(
    platform: ScrapePlatform,
    session: AsyncSession = SessionDep,
    client: ApifyClient = ApifyDep,
):
    """Manually dispatch scrape jobs for all due accounts of a platform."""
    try:
        jobs = await dispatch(session, platform, client)
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return {"platform": platform, "jobs": [job.to_dict() for job in jobs]}


@router.post("/poll", response_model=PollSummaryRead)
async def poll_running(
    session: AsyncSession = SessionDep,
    client: ApifyClient = ApifyDep,
):
    """Reap stuck jobs, then check every running job against Apify."""
    if not client.configured:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="APIFY_TOKEN missing")
    return await run_poll_cycle(session, client)


@router.post("/timeout-stuck")
async def timeout_stuck(session: AsyncSession = SessionDep):
    return await timeout_stuck_jobs(session)


@router.get("/{job_id}", response_model=ScrapeJobRead)
async def get_job(job_id: int, session: AsyncSession = SessionDep):
    try:
        return await job_store.get_job(session, job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.post("/{job_id}/cancel", response_model=ScrapeJobRead)
async def cancel_job(job_id: int, session: AsyncSession = SessionDep):
    """Mark a pending/running job as failed. The Apify run itself keeps going."""
    try:
        return await job_store.cancel_job(session, job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except InvalidStateError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc)) from exc


@router.post("/{job_id}/check")
async def check_job(
    job_id: int,
    session: AsyncSession = SessionDep,
    client: ApifyClient = ApifyDep,
):
    """Check one job's Apify run now instead of waiting for the next poll cycle."""
    try:
        return await poll_job(session, client, job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ConfigurationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except TransportError as exc:
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=exc.to_dict()) from exc
