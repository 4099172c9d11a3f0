"""
Trigger surface: entry points invoked by the outside scheduler.

- run_daily_sweep: dispatch every scraping platform, one platform's failure
  is reported in its own result entry and does not stop the others
- run_due_schedules: dispatch only the platforms whose schedule is due
- run_poll_cycle: reap stuck jobs, then poll the running ones
"""
from __future__ import annotations

import hmac
import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.integrations.apify_client import ApifyClient
from app.models import ScheduleScope, ScrapePlatform
from app.services import schedule_store
from app.services.dispatcher import dispatch
from app.services.errors import ConfigurationError
from app.services.notify import notify_error
from app.services.poller import poll_all_running
from app.services.reaper import timeout_stuck_jobs

logger = logging.getLogger(__name__)

SWEEP_PLATFORMS = (ScrapePlatform.instagram, ScrapePlatform.tiktok, ScrapePlatform.youtube)


def verify_cron_secret(authorization: str | None, secret: str | None) -> None:
    """Raise ConfigurationError unless ``authorization`` is ``Bearer <secret>``.

    An unconfigured secret rejects every call.
    """
    if not secret:
        raise ConfigurationError("CRON_SECRET is not configured")
    expected = f"Bearer {secret}"
    if not authorization or not hmac.compare_digest(authorization.encode(), expected.encode()):
        raise ConfigurationError("Invalid cron secret")


async def _dispatch_platforms(
    session: AsyncSession,
    client: ApifyClient,
    platforms: tuple[ScrapePlatform, ...] | list[ScrapePlatform],
    *,
    now: datetime | None = None,
) -> list[dict[str, Any]]:
    results: list[dict[str, Any]] = []
    for platform in platforms:
        try:
            jobs = await dispatch(session, platform, client, now=now)
            results.append({"platform": platform.value, "jobs": [job.to_dict() for job in jobs]})
        except Exception as exc:
            logger.exception("[sweep] %s dispatch failed", platform.value)
            await session.rollback()
            results.append({"platform": platform.value, "error": str(exc) or exc.__class__.__name__})
            await notify_error(f"Scrape sweep failed for {platform.value}", str(exc))
    return results


async def run_daily_sweep(
    session: AsyncSession, client: ApifyClient, *, now: datetime | None = None
) -> dict[str, Any]:
    results = await _dispatch_platforms(session, client, SWEEP_PLATFORMS, now=now)
    failed = [r["platform"] for r in results if "error" in r]
    logger.info("[sweep] Daily sweep done: %d platforms, %d failed %s", len(results), len(failed), failed or "")
    return {"ok": True, "results": results}


async def run_due_schedules(
    session: AsyncSession, client: ApifyClient, *, now: datetime | None = None
) -> dict[str, Any]:
    """Dispatch platforms with a due, enabled schedule and advance those schedules.

    A platform with its own schedule row is governed by that row only; ``all``
    covers the platforms without one. A due scope whose platforms all failed to
    dispatch is not advanced, so it stays due for the next tick.
    """
    now = now or datetime.now(timezone.utc)
    due = await schedule_store.get_due(session, now=now)
    if not due:
        return {"ok": True, "due": [], "results": []}

    scopes = [ScheduleScope(s.platform) for s in due]
    governed = governed_platforms(scopes, {ScheduleScope(s.platform) for s in await schedule_store.get_all(session)})
    platforms = [p for p in SWEEP_PLATFORMS if any(p in ps for ps in governed.values())]

    await timeout_stuck_jobs(session, now=now)
    results = await _dispatch_platforms(session, client, platforms, now=now)
    failed = {r["platform"] for r in results if "error" in r}

    advanced = []
    for scope, scope_platforms in governed.items():
        if scope_platforms and all(p.value in failed for p in scope_platforms):
            logger.warning("[sweep] Schedule %s not advanced: every dispatch failed", scope.value)
            continue
        await schedule_store.record_run(session, scope, now=now)
        advanced.append(scope.value)

    logger.info("[sweep] Due schedules %s -> platforms %s", [s.value for s in scopes], [p.value for p in platforms])
    return {"ok": True, "due": [s.value for s in scopes], "advanced": advanced, "results": results}


def governed_platforms(
    due_scopes: list[ScheduleScope], scopes_with_rows: set[ScheduleScope]
) -> dict[ScheduleScope, list[ScrapePlatform]]:
    """Platforms each due scope dispatches. ``all`` skips platforms that have their own row."""
    governed: dict[ScheduleScope, list[ScrapePlatform]] = {}
    for scope in due_scopes:
        if scope is ScheduleScope.all:
            governed[scope] = [p for p in SWEEP_PLATFORMS if ScheduleScope(p.value) not in scopes_with_rows]
        else:
            governed[scope] = [ScrapePlatform(scope.value)]
    return governed


async def run_poll_cycle(
    session: AsyncSession, client: ApifyClient, *, now: datetime | None = None
) -> dict[str, Any]:
    reaped = await timeout_stuck_jobs(session, now=now)
    summary = await poll_all_running(session, client, now=now)
    return {**reaped, **summary.to_dict()}
