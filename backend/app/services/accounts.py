from __future__ import annotations

from datetime import datetime, timedelta, timezone

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.models import Account, ScrapePlatform
from app.settings import get_settings


async def get_accounts_due_for_scraping(
    session: AsyncSession,
    platform: ScrapePlatform | str,
    *,
    hours_threshold: int | None = None,
    now: datetime | None = None,
) -> list[Account]:
    """Active, unpaused accounts not scraped within the freshness window."""
    if hours_threshold is None:
        hours_threshold = get_settings().due_threshold_hours
    cutoff = (now or datetime.now(timezone.utc)) - timedelta(hours=hours_threshold)

    result = await session.execute(
        select(Account)
        .where(
            Account.platform == ScrapePlatform(platform).value,
            Account.is_active.is_(True),
            Account.is_paused.is_(False),
            or_(Account.last_scraped_at.is_(None), Account.last_scraped_at < cutoff),
        )
        .order_by(Account.id)
    )
    return list(result.scalars().all())


async def mark_scraped(session: AsyncSession, account_id: int, *, now: datetime | None = None) -> None:
    await session.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(last_scraped_at=now or datetime.now(timezone.utc))
        .execution_options(synchronize_session=False)
    )
    await session.commit()
