"""
Externally triggered endpoints: cron sweep/tick/poll, Apify webhook, health.

Cron calls authenticate with ``Authorization: Bearer <CRON_SECRET>``. When
CRON_SECRET is not configured every cron call is rejected with 401; the
endpoints never run unauthenticated.
"""
from __future__ import annotations

import logging
import time

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_session
from app.integrations.apify_client import ApifyClient, get_apify_client
from app.models import ScrapeJob
from app.services.errors import ConfigurationError, NotFoundError, TransportError
from app.services.poller import poll_job
from app.services.sweep import run_daily_sweep, run_due_schedules, run_poll_cycle, verify_cron_secret
from app.settings import get_settings

logger = logging.getLogger(__name__)

router = APIRouter(tags=["cron"])

SessionDep = Depends(get_session)
ApifyDep = Depends(get_apify_client)


def require_cron_secret(authorization: str | None = Header(default=None)) -> None:
    """401 unless the bearer token matches CRON_SECRET. An unset secret denies all calls."""
    try:
        verify_cron_secret(authorization, get_settings().cron_secret)
    except ConfigurationError as exc:
        logger.warning("[cron] Rejected call: %s", exc)
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized") from exc


CronAuth = Depends(require_cron_secret)


@router.post("/cron/daily-scrape", dependencies=[CronAuth])
async def cron_daily_scrape(
    session: AsyncSession = SessionDep,
    client: ApifyClient = ApifyDep,
):
    """Dispatch every platform; per-platform failures are reported, not raised."""
    return await run_daily_sweep(session, client)


@router.post("/cron/tick", dependencies=[CronAuth])
async def cron_tick(
    session: AsyncSession = SessionDep,
    client: ApifyClient = ApifyDep,
):
    """Dispatch only the platforms whose schedule is due."""
    return await run_due_schedules(session, client)


@router.post("/cron/poll", dependencies=[CronAuth])
async def cron_poll(
    session: AsyncSession = SessionDep,
    client: ApifyClient = ApifyDep,
):
    if not client.configured:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="APIFY_TOKEN missing")
    return {"ok": True, **(await run_poll_cycle(session, client))}


@router.post("/webhook/apify")
async def apify_webhook(
    request: Request,
    session: AsyncSession = SessionDep,
    client: ApifyClient = ApifyDep,
):
    """Apify run-finished webhook: settle the matching job right away."""
    try:
        body = await request.json()
    except ValueError:
        return {"ok": True, "handled": False}

    event_type = (body or {}).get("eventType") or ""
    run_id = ((body or {}).get("eventData") or {}).get("actorRunId")
    if not event_type.startswith("ACTOR.RUN.") or not run_id:
        return {"ok": True, "handled": False}

    job_id = await session.scalar(select(ScrapeJob.id).where(ScrapeJob.apify_run_id == run_id))
    if job_id is None:
        logger.info("[webhook] %s for unknown run %s", event_type, run_id)
        return {"ok": True, "handled": False}

    try:
        result = await poll_job(session, client, job_id)
    except (ConfigurationError, NotFoundError, TransportError) as exc:
        logger.warning("[webhook] %s for run %s not settled: %s", event_type, run_id, exc)
        return {"ok": True, "handled": False, "error": str(exc)}

    logger.info("[webhook] %s -> job %d %s", event_type, job_id, result.get("status"))
    return {"ok": True, "handled": True, "job": result}


@router.get("/health")
async def health():
    return {"status": "ok", "timestamp": int(time.time() * 1000)}
