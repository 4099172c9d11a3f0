"""
Shared fixtures.

Service tests run one scenario coroutine per test with ``asyncio.run`` on a
fresh in-memory SQLite database. API tests go through ``TestClient`` with a
file-backed SQLite database, because each request may run on its own loop.
"""
from __future__ import annotations

import asyncio
import os
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")

import pytest
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from app.db import Base
from app.integrations.apify_client import RunStatus
from app.models import Account
from app.services.errors import TransportError
from app.settings import get_settings


def utc(*args: int) -> datetime:
    return datetime(*args, tzinfo=timezone.utc)


class FakeApifyClient:
    """Stands in for ApifyClient: scripted run starts and run statuses."""

    def __init__(self, *, configured: bool = True):
        self._configured = configured
        self.failing_inputs: set[str] = set()
        self.statuses: dict[str, RunStatus] = {}
        self.status_errors: set[str] = set()
        self.started: list[tuple[str, dict]] = []
        self.status_calls: list[str] = []
        self.on_start: Callable[[str], Awaitable[None]] | None = None
        self._counter = 0

    @property
    def configured(self) -> bool:
        return self._configured

    async def start_run(self, actor_id: str, payload: dict[str, Any]) -> str:
        key = str(payload.get("usernames") or payload.get("profiles") or payload.get("startUrls"))
        if any(name in key for name in self.failing_inputs):
            raise TransportError("Apify API error: 500 Internal Server Error", status_code=500, actor=actor_id)
        self._counter += 1
        self.started.append((actor_id, payload))
        run_id = f"run-{self._counter}"
        if self.on_start is not None:
            await self.on_start(run_id)
        return run_id

    async def get_run_status(self, run_id: str) -> RunStatus:
        self.status_calls.append(run_id)
        if run_id in self.status_errors:
            raise TransportError("Apify run status failed: 503", status_code=503, run_id=run_id)
        return self.statuses.get(run_id, RunStatus(run_id=run_id, status="RUNNING"))


@pytest.fixture()
def apify() -> FakeApifyClient:
    return FakeApifyClient()


@pytest.fixture()
def run_db() -> Callable[[Callable[[AsyncSession], Awaitable[Any]]], Any]:
    """Run ``scenario(session)`` against a fresh in-memory database."""

    def _run(scenario: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
        async def _main() -> Any:
            engine = create_async_engine("sqlite+aiosqlite://", poolclass=StaticPool)
            async with engine.begin() as conn:
                await conn.run_sync(Base.metadata.create_all)
            factory = async_sessionmaker(engine, expire_on_commit=False)
            try:
                async with factory() as session:
                    return await scenario(session)
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run


@pytest.fixture()
def sqlite_path(tmp_path) -> str:
    path = tmp_path / "jobs.db"
    engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(engine)
    engine.dispose()
    return str(path)


@pytest.fixture()
def session_override(sqlite_path):
    async def _get_session():
        engine = create_async_engine(f"sqlite+aiosqlite:///{sqlite_path}")
        factory = async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
        try:
            async with factory() as session:
                yield session
        finally:
            await engine.dispose()

    return _get_session


@pytest.fixture()
def seed(session_override):
    """Run ``scenario(session)`` against the API test database."""

    def _run(scenario: Callable[[AsyncSession], Awaitable[Any]]) -> Any:
        async def _main() -> Any:
            gen = session_override()
            session = await gen.__anext__()
            try:
                return await scenario(session)
            finally:
                await gen.aclose()

        return asyncio.run(_main())

    return _run


@pytest.fixture()
def run_sessions(sqlite_path):
    """Run ``scenario(factory)`` where each ``factory()`` is an independent session."""

    def _run(scenario: Callable[[async_sessionmaker], Awaitable[Any]]) -> Any:
        async def _main() -> Any:
            engine = create_async_engine(f"sqlite+aiosqlite:///{sqlite_path}")
            try:
                return await scenario(async_sessionmaker(engine, expire_on_commit=False))
            finally:
                await engine.dispose()

        return asyncio.run(_main())

    return _run


@pytest.fixture()
def settings_env(monkeypatch):
    """Set environment-backed settings for one test."""

    def _set(**values: str) -> None:
        for key, value in values.items():
            monkeypatch.setenv(key, value)
        get_settings.cache_clear()

    yield _set
    get_settings.cache_clear()


async def add_account(session: AsyncSession, platform: str, username: str, **kwargs: Any) -> Account:
    account = Account(
        platform=platform,
        username=username,
        profile_url=kwargs.pop("profile_url", f"https://example.com/{platform}/{username}"),
        **kwargs,
    )
    session.add(account)
    await session.commit()
    await session.refresh(account)
    return account
