"""
Schedule settings endpoints: one recurrence policy per platform scope.
"""
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.db import get_session
from app.models import ScheduleScope
from app.schemas import ScheduleSettingRead, ScheduleUpsert, ToggleResponse
from app.services import schedule_store

router = APIRouter(prefix="/api/schedule", tags=["schedule"])

SessionDep = Depends(get_session)


@router.get("", response_model=list[ScheduleSettingRead])
async def list_schedules(session: AsyncSession = SessionDep):
    return await schedule_store.get_all(session)


@router.post("/initialize")
async def initialize_defaults(session: AsyncSession = SessionDep):
    """Seed the default "all platforms, daily 06:00 UTC" schedule if none exists."""
    initialized = await schedule_store.initialize_default_if_empty(session)
    return {"initialized": initialized}


@router.get("/{scope}", response_model=ScheduleSettingRead)
async def get_schedule(scope: ScheduleScope, session: AsyncSession = SessionDep):
    setting = await schedule_store.get_by_scope(session, scope)
    if setting is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No schedule for {scope.value}")
    return setting


@router.put("/{scope}", response_model=ScheduleSettingRead)
async def upsert_schedule(scope: ScheduleScope, body: ScheduleUpsert, session: AsyncSession = SessionDep):
    policy = schedule_store.SchedulePolicy(
        frequency=body.frequency,
        preferred_hour=body.preferred_hour,
        preferred_days=body.preferred_days,
        is_enabled=body.is_enabled,
    )
    return await schedule_store.upsert(session, scope, policy)


@router.post("/{scope}/toggle", response_model=ToggleResponse)
async def toggle_schedule(scope: ScheduleScope, session: AsyncSession = SessionDep):
    is_enabled = await schedule_store.toggle_enabled(session, scope)
    return ToggleResponse(platform=scope, is_enabled=is_enabled)
