from __future__ import annotations

import logging

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import PlainTextResponse

from .routes_cron import router as cron_router
from .routes_jobs import router as jobs_router
from .routes_schedule import router as schedule_router
from .routes_scheduler import router as scheduler_router
from .settings import get_settings

logger = logging.getLogger("app")

app = FastAPI(title="competitor-intel")
settings = get_settings()

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url)
    return PlainTextResponse("Internal Server Error", status_code=500)


@app.get("/ping")
async def ping():
    return {"status": "ok"}


app.include_router(cron_router)
app.include_router(jobs_router)
app.include_router(schedule_router)
app.include_router(scheduler_router)


@app.on_event("startup")
async def startup_event():
    """Seed the default schedule and start the optional ticker."""
    from app.db import AsyncSessionLocal
    from app.services.schedule_store import initialize_default_if_empty
    from app.services.scheduler import scheduler_service

    async with AsyncSessionLocal() as session:
        if await initialize_default_if_empty(session):
            logger.info("Default scrape schedule created on startup")

    scheduler_service.configure(settings.async_database_url)
    scheduler_service.start()


@app.on_event("shutdown")
async def shutdown_event():
    from app.services.scheduler import scheduler_service
    scheduler_service.stop()
    await scheduler_service.dispose()
    logger.info("Scheduler stopped on app shutdown")
