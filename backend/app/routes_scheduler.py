"""
In-process ticker endpoints: cadence, last tick results, run a tick now.
"""
from __future__ import annotations

from fastapi import APIRouter

from app.schemas import TickerRunRead, TickerStatusRead
from app.services.scheduler import TickerJob, scheduler_service
from app.settings import get_settings

router = APIRouter(prefix="/api/scheduler", tags=["scheduler"])


@router.get("/status", response_model=TickerStatusRead)
async def ticker_status():
    settings = get_settings()
    return TickerStatusRead(
        enabled=settings.scheduler_enabled,
        running=scheduler_service.is_running(),
        tick_minutes=settings.scheduler_tick_minutes,
        poll_interval_minutes=settings.poll_interval_minutes,
        jobs=scheduler_service.get_jobs(),
        last_runs={name: run.to_dict() for name, run in scheduler_service.last_runs.items()},
    )


@router.post("/{job}/run", response_model=TickerRunRead)
async def run_ticker_job(job: TickerJob):
    """Run schedule_tick or poll_cycle now, under the same leader lock as the interval."""
    run = await scheduler_service.run(job)
    return run.to_dict()
