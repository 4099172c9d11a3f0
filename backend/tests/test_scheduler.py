from __future__ import annotations

import asyncio
from contextlib import asynccontextmanager
from datetime import timedelta

from app.services import schedule_store, sweep
from app.services import scheduler as scheduler_module
from app.services.scheduler import SchedulerService, TickerJob
from conftest import FakeApifyClient, utc


def _service(sqlite_path, monkeypatch, client) -> SchedulerService:
    monkeypatch.setattr(scheduler_module, "get_apify_client", lambda: client)
    service = SchedulerService()
    service.configure(f"sqlite+aiosqlite:///{sqlite_path}")
    return service


def _run(service: SchedulerService, job: TickerJob):
    async def main():
        try:
            return await service.run(job)
        finally:
            await service.dispose()

    return asyncio.run(main())


def test_schedule_tick_dispatches_due_schedules(sqlite_path, seed, monkeypatch, apify) -> None:
    seed(lambda session: schedule_store.initialize_default_if_empty(
        session, now=utc(2020, 1, 1, 0, 0) - timedelta(days=1),
    ))
    service = _service(sqlite_path, monkeypatch, apify)

    run = _run(service, TickerJob.schedule_tick)
    assert run.acquired is True
    assert run.error is None
    assert run.result["due"] == ["all"]
    assert run.result["advanced"] == ["all"]
    assert run.finished_at >= run.started_at
    assert service.last_runs["schedule_tick"] is run


def test_poll_cycle_skips_without_token(sqlite_path, monkeypatch) -> None:
    service = _service(sqlite_path, monkeypatch, FakeApifyClient(configured=False))
    run = _run(service, "poll_cycle")
    assert run.result == {"skipped": "APIFY_TOKEN missing"}


def test_follower_instance_skips_the_tick(sqlite_path, monkeypatch, apify) -> None:
    service = _service(sqlite_path, monkeypatch, apify)

    @asynccontextmanager
    async def held_elsewhere(lock_key):
        yield False

    async def must_not_run(*args, **kwargs):
        raise AssertionError("tick ran without the leader lock")

    monkeypatch.setattr(service, "_leader_lock", held_elsewhere)
    monkeypatch.setattr(sweep, "run_poll_cycle", must_not_run)

    run = _run(service, TickerJob.poll_cycle)
    assert run.acquired is False
    assert run.result is None
    assert run.error is None


def test_tick_failure_is_recorded(sqlite_path, monkeypatch, apify) -> None:
    async def broken(*args, **kwargs):
        raise RuntimeError("apify down")

    monkeypatch.setattr(sweep, "run_poll_cycle", broken)
    service = _service(sqlite_path, monkeypatch, apify)

    run = _run(service, TickerJob.poll_cycle)
    assert run.acquired is True
    assert run.error == "apify down"
    assert service.last_runs["poll_cycle"].error == "apify down"


def test_disabled_ticker_does_not_start(settings_env) -> None:
    settings_env(SCHEDULER_ENABLED="false")
    service = SchedulerService()
    service.start()
    assert service.is_running() is False
    assert service.get_jobs() == []
