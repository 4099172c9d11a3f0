from __future__ import annotations

from datetime import datetime
from enum import Enum

import sqlalchemy as sa
from sqlalchemy.orm import Mapped, mapped_column

from .db import Base, UTCDateTime


class ScrapePlatform(str, Enum):
    instagram = "instagram"
    tiktok = "tiktok"
    youtube = "youtube"


class ScheduleScope(str, Enum):
    """Schedule target: a single platform or the ``all`` wildcard."""

    instagram = "instagram"
    tiktok = "tiktok"
    youtube = "youtube"
    all = "all"


class Frequency(str, Enum):
    hourly = "hourly"
    every_6_hours = "every_6_hours"
    every_12_hours = "every_12_hours"
    daily = "daily"
    weekly = "weekly"


class JobType(str, Enum):
    profile = "profile"
    posts = "posts"
    comments = "comments"
    engagers = "engagers"


class JobStatus(str, Enum):
    pending = "pending"
    running = "running"
    completed = "completed"
    failed = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.completed, JobStatus.failed})
ACTIVE_STATUSES = frozenset({JobStatus.pending, JobStatus.running})


class Account(Base):
    __tablename__ = "accounts"
    __table_args__ = (sa.UniqueConstraint("platform", "username", name="uq_accounts_platform_username"),)

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    platform: Mapped[ScrapePlatform] = mapped_column(sa.String(32), nullable=False, index=True)
    username: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    profile_url: Mapped[str] = mapped_column(sa.String(512), nullable=False)
    market_id: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    is_active: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=True, server_default=sa.true())
    is_paused: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=False, server_default=sa.false())
    last_scraped_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime(), server_default=sa.func.now(), nullable=False
    )


class ScheduleSetting(Base):
    __tablename__ = "schedule_settings"

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    platform: Mapped[ScheduleScope] = mapped_column(sa.String(32), nullable=False, unique=True)
    is_enabled: Mapped[bool] = mapped_column(sa.Boolean(), nullable=False, default=True)
    frequency: Mapped[Frequency] = mapped_column(sa.String(32), nullable=False)
    preferred_hour: Mapped[int] = mapped_column(sa.Integer(), nullable=False)
    preferred_days: Mapped[list[int] | None] = mapped_column(sa.JSON(), nullable=True)
    last_run_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    next_scheduled_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False)


class ScrapeJob(Base):
    __tablename__ = "scrape_jobs"
    __table_args__ = (
        sa.Index("ix_scrape_jobs_status_started_at", "status", "started_at"),
    )

    id: Mapped[int] = mapped_column(primary_key=True, autoincrement=True)
    platform: Mapped[ScrapePlatform] = mapped_column(sa.String(32), nullable=False, index=True)
    job_type: Mapped[JobType] = mapped_column(sa.String(32), nullable=False)
    status: Mapped[JobStatus] = mapped_column(sa.String(32), nullable=False, default=JobStatus.pending)
    apify_run_id: Mapped[str | None] = mapped_column(sa.String(255), nullable=True, index=True)
    account_id: Mapped[int | None] = mapped_column(
        sa.ForeignKey("accounts.id", ondelete="SET NULL"), nullable=True, index=True
    )
    market_id: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    started_at: Mapped[datetime] = mapped_column(UTCDateTime(), nullable=False, index=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime(), nullable=True)
    items_scraped: Mapped[int | None] = mapped_column(sa.Integer(), nullable=True)
    error: Mapped[str | None] = mapped_column(sa.Text(), nullable=True)
