from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

from .models import Frequency, JobStatus, JobType, ScheduleScope, ScrapePlatform


class ScrapeJobRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    platform: ScrapePlatform
    job_type: JobType
    status: JobStatus
    apify_run_id: str | None = None
    account_id: int | None = None
    market_id: int | None = None
    started_at: datetime
    completed_at: datetime | None = None
    items_scraped: int | None = None
    error: str | None = None


class ScheduleSettingRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    platform: ScheduleScope
    is_enabled: bool
    frequency: Frequency
    preferred_hour: int
    preferred_days: list[int] | None = None
    last_run_at: datetime | None = None
    next_scheduled_at: datetime | None = None
    updated_at: datetime


class ScheduleUpsert(BaseModel):
    is_enabled: bool = True
    frequency: Frequency
    preferred_hour: int = Field(ge=0, le=23)
    preferred_days: list[int] | None = None

    @field_validator("preferred_days")
    @classmethod
    def validate_days(cls, value: list[int] | None) -> list[int] | None:
        if value is None:
            return None
        if any(d < 0 or d > 6 for d in value):
            raise ValueError("preferred_days must be within 0..6 (Sunday = 0)")
        return sorted(set(value))


class ToggleResponse(BaseModel):
    platform: ScheduleScope
    is_enabled: bool


class PollSummaryRead(BaseModel):
    timed_out: int = 0
    checked: int
    completed: int
    failed: int
    still_running: int


class DispatchResultRead(BaseModel):
    job_id: int
    account_id: int
    account: str
    status: JobStatus
    run_id: str | None = None
    error: str | None = None


class DispatchResponse(BaseModel):
    platform: ScrapePlatform
    jobs: list[DispatchResultRead]


class TickerRunRead(BaseModel):
    job: str
    started_at: datetime
    finished_at: datetime | None = None
    acquired: bool
    result: dict[str, Any] | None = None
    error: str | None = None


class TickerJobRead(BaseModel):
    id: str
    name: str
    next_run: str | None = None
    trigger: str


class TickerStatusRead(BaseModel):
    enabled: bool
    running: bool
    tick_minutes: int
    poll_interval_minutes: int
    jobs: list[TickerJobRead]
    last_runs: dict[str, TickerRunRead]
