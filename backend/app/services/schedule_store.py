"""
Schedule settings access.

One row per scope (instagram / tiktok / youtube / all). Every write that
changes the policy or the last run recomputes ``next_scheduled_at``.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Frequency, ScheduleScope, ScheduleSetting, ScrapePlatform
from app.services.next_run import compute_next_run

logger = logging.getLogger(__name__)

DEFAULT_SCOPE = ScheduleScope.all
DEFAULT_FREQUENCY = Frequency.daily
DEFAULT_PREFERRED_HOUR = 6  # 06:00 UTC


@dataclass
class SchedulePolicy:
    frequency: Frequency
    preferred_hour: int
    preferred_days: list[int] | None = field(default=None)
    is_enabled: bool = True

    def next_run(self, now: datetime) -> datetime:
        return compute_next_run(self.frequency, self.preferred_hour, self.preferred_days, now)


def _now(now: datetime | None) -> datetime:
    return now or datetime.now(timezone.utc)


def _policy_of(setting: ScheduleSetting) -> SchedulePolicy:
    return SchedulePolicy(
        frequency=Frequency(setting.frequency),
        preferred_hour=setting.preferred_hour,
        preferred_days=setting.preferred_days,
        is_enabled=setting.is_enabled,
    )


async def get_all(session: AsyncSession) -> list[ScheduleSetting]:
    result = await session.execute(select(ScheduleSetting).order_by(ScheduleSetting.id))
    return list(result.scalars().all())


async def get_by_scope(session: AsyncSession, scope: ScheduleScope | str) -> ScheduleSetting | None:
    scope = ScheduleScope(scope)
    return await session.scalar(select(ScheduleSetting).where(ScheduleSetting.platform == scope.value))


async def upsert(
    session: AsyncSession,
    scope: ScheduleScope | str,
    policy: SchedulePolicy,
    *,
    now: datetime | None = None,
) -> ScheduleSetting:
    """Create or replace the policy for a scope and recompute its next run."""
    scope = ScheduleScope(scope)
    now = _now(now)
    next_scheduled_at = policy.next_run(now)

    setting = await get_by_scope(session, scope)
    if setting is None:
        setting = ScheduleSetting(platform=scope.value)
    setting.is_enabled = policy.is_enabled
    setting.frequency = Frequency(policy.frequency).value
    setting.preferred_hour = policy.preferred_hour
    setting.preferred_days = sorted(set(policy.preferred_days)) if policy.preferred_days else None
    setting.next_scheduled_at = next_scheduled_at
    setting.updated_at = now
    session.add(setting)
    await session.commit()

    logger.info(
        "[schedule] %s set to %s@%02d:00 UTC (enabled=%s), next run %s",
        scope.value, setting.frequency, setting.preferred_hour, setting.is_enabled, next_scheduled_at.isoformat(),
    )
    return setting


async def toggle_enabled(session: AsyncSession, scope: ScheduleScope | str, *, now: datetime | None = None) -> bool:
    """Flip ``is_enabled``; returns the new value (False when the scope has no row)."""
    setting = await get_by_scope(session, scope)
    if setting is None:
        return False
    setting.is_enabled = not setting.is_enabled
    setting.updated_at = _now(now)
    session.add(setting)
    await session.commit()
    return setting.is_enabled


async def record_run(
    session: AsyncSession, scope: ScheduleScope | str, *, now: datetime | None = None
) -> ScheduleSetting | None:
    """Stamp the last run and advance ``next_scheduled_at`` from the stored policy."""
    setting = await get_by_scope(session, scope)
    if setting is None:
        return None
    now = _now(now)
    setting.last_run_at = now
    setting.next_scheduled_at = _policy_of(setting).next_run(now)
    setting.updated_at = now
    session.add(setting)
    await session.commit()
    return setting


async def record_run_for_platform(
    session: AsyncSession, platform: ScrapePlatform | str, *, now: datetime | None = None
) -> ScheduleSetting | None:
    """Record a run against the schedule governing ``platform``: its own row, else ``all``."""
    platform = ScrapePlatform(platform)
    setting = await record_run(session, ScheduleScope(platform.value), now=now)
    if setting is None:
        setting = await record_run(session, ScheduleScope.all, now=now)
    return setting


async def get_due(session: AsyncSession, *, now: datetime | None = None) -> list[ScheduleSetting]:
    now = _now(now)
    result = await session.execute(
        select(ScheduleSetting).where(
            ScheduleSetting.is_enabled.is_(True),
            ScheduleSetting.next_scheduled_at.is_not(None),
            ScheduleSetting.next_scheduled_at <= now,
        )
    )
    return list(result.scalars().all())


async def initialize_default_if_empty(session: AsyncSession, *, now: datetime | None = None) -> bool:
    """Seed the ``all`` daily 06:00 UTC schedule when no schedule row exists at all."""
    count = await session.scalar(select(func.count(ScheduleSetting.id)))
    if count:
        return False

    now = _now(now)
    policy = SchedulePolicy(frequency=DEFAULT_FREQUENCY, preferred_hour=DEFAULT_PREFERRED_HOUR)
    session.add(
        ScheduleSetting(
            platform=DEFAULT_SCOPE.value,
            is_enabled=True,
            frequency=DEFAULT_FREQUENCY.value,
            preferred_hour=DEFAULT_PREFERRED_HOUR,
            preferred_days=None,
            next_scheduled_at=policy.next_run(now),
            updated_at=now,
        )
    )
    await session.commit()
    logger.info("[schedule] Seeded default schedule (all, daily 06:00 UTC)")
    return True
