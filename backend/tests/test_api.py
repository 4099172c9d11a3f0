"""
HTTP surface tests through FastAPI's TestClient.

The client is not used as a context manager so the startup hook (schedule
seeding against the configured database, optional ticker) does not run.
"""
from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient

from app.db import get_session
from app.integrations.apify_client import RunStatus, get_apify_client
from app.main import app
from app.models import JobStatus
from app.services import job_store
from conftest import add_account

CRON_SECRET = "test-cron-secret"
AUTH = {"Authorization": f"Bearer {CRON_SECRET}"}


@pytest.fixture()
def client(session_override, apify, settings_env):
    settings_env(CRON_SECRET=CRON_SECRET)
    app.dependency_overrides[get_session] = session_override
    app.dependency_overrides[get_apify_client] = lambda: apify
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


async def _running_job(session, platform="instagram", run_id="run-x", started_at=None):
    job = await job_store.create_job(session, platform, "posts", now=started_at)
    return await job_store.update_job(
        session, job.id, job_store.JobUpdate(status=JobStatus.running, apify_run_id=run_id)
    )


class TestCron:
    def test_missing_or_wrong_secret_is_401(self, client) -> None:
        assert client.post("/cron/daily-scrape").status_code == 401
        assert client.post("/cron/tick", headers={"Authorization": "Bearer nope"}).status_code == 401
        assert client.post("/cron/poll", headers={"Authorization": CRON_SECRET}).status_code == 401

    def test_unconfigured_secret_is_401(self, client, settings_env) -> None:
        settings_env(CRON_SECRET="")
        assert client.post("/cron/daily-scrape", headers={"Authorization": "Bearer "}).status_code == 401

    def test_daily_scrape(self, client, seed, apify) -> None:
        async def scenario(session):
            await add_account(session, "instagram", "alpha")
            await add_account(session, "youtube", "gamma")

        seed(scenario)
        resp = client.post("/cron/daily-scrape", headers=AUTH)
        assert resp.status_code == 200
        body = resp.json()
        assert body["ok"] is True
        jobs = {r["platform"]: r["jobs"] for r in body["results"]}
        assert [j["account"] for j in jobs["instagram"]] == ["alpha"]
        assert jobs["tiktok"] == []
        assert len(apify.started) == 2

    def test_poll(self, client, seed, apify) -> None:
        apify.statuses["run-done"] = RunStatus(run_id="run-done", status="SUCCEEDED", item_count=9)
        seed(lambda session: _running_job(session, run_id="run-done"))
        resp = client.post("/cron/poll", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {
            "ok": True, "timed_out": 0, "checked": 1, "completed": 1, "failed": 0, "still_running": 0,
        }

    def test_tick_with_nothing_due(self, client) -> None:
        resp = client.post("/cron/tick", headers=AUTH)
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "due": [], "results": []}


class TestWebhook:
    def test_unknown_run_is_acknowledged(self, client) -> None:
        resp = client.post(
            "/webhook/apify",
            json={"eventType": "ACTOR.RUN.SUCCEEDED", "eventData": {"actorRunId": "ghost"}},
        )
        assert resp.status_code == 200
        assert resp.json() == {"ok": True, "handled": False}

    def test_other_events_are_ignored(self, client) -> None:
        resp = client.post("/webhook/apify", json={"eventType": "TEST", "eventData": {}})
        assert resp.json() == {"ok": True, "handled": False}

    def test_finished_run_settles_job(self, client, seed, apify) -> None:
        apify.statuses["run-w"] = RunStatus(run_id="run-w", status="FAILED", message="blocked")
        job = seed(lambda session: _running_job(session, run_id="run-w"))
        resp = client.post(
            "/webhook/apify",
            json={"eventType": "ACTOR.RUN.FAILED", "eventData": {"actorRunId": "run-w"}},
        )
        body = resp.json()
        assert body["handled"] is True
        assert body["job"]["job_id"] == job.id
        assert body["job"]["status"] == "failed"

        detail = client.get(f"/api/jobs/{job.id}").json()
        assert detail["error"] == "Apify run failed: blocked"


class TestJobs:
    def test_get_missing_job_is_404(self, client) -> None:
        assert client.get("/api/jobs/12345").status_code == 404
        assert client.post("/api/jobs/12345/cancel").status_code == 404

    def test_cancel_then_cancel_again_is_409(self, client, seed) -> None:
        job = seed(lambda session: _running_job(session))
        first = client.post(f"/api/jobs/{job.id}/cancel")
        assert first.status_code == 200
        assert first.json()["status"] == "failed"
        assert first.json()["error"] == "Manually cancelled"

        second = client.post(f"/api/jobs/{job.id}/cancel")
        assert second.status_code == 409
        assert client.get(f"/api/jobs/{job.id}").json()["completed_at"] == first.json()["completed_at"]

    def test_listing_filters(self, client, seed) -> None:
        async def scenario(session):
            await _running_job(session, "instagram", "r1")
            await _running_job(session, "tiktok", "r2")
            await job_store.create_job(
                session, "youtube", "profile", now=datetime.now(timezone.utc) - timedelta(days=20),
            )

        seed(scenario)
        assert len(client.get("/api/jobs/recent").json()) == 3
        assert len(client.get("/api/jobs/running").json()) == 2
        assert [j["platform"] for j in client.get("/api/jobs", params={"platform": "tiktok"}).json()] == ["tiktok"]
        assert len(client.get("/api/jobs", params={"platform": "all"}).json()) == 2
        assert len(client.get("/api/jobs", params={"days_back": 30}).json()) == 3
        both = client.get("/api/jobs", params=[("platforms", "instagram"), ("platforms", "tiktok")]).json()
        assert sorted(j["platform"] for j in both) == ["instagram", "tiktok"]

    def test_check_reports_transport_failure(self, client, seed, apify) -> None:
        apify.status_errors.add("run-err")
        job = seed(lambda session: _running_job(session, run_id="run-err"))
        resp = client.post(f"/api/jobs/{job.id}/check")
        assert resp.status_code == 502
        assert resp.json()["detail"]["runId"] == "run-err"

    def test_manual_dispatch(self, client, seed) -> None:
        seed(lambda session: add_account(session, "tiktok", "beta"))
        resp = client.post("/api/jobs/dispatch/tiktok")
        assert resp.status_code == 200
        body = resp.json()
        assert body["platform"] == "tiktok"
        assert [j["status"] for j in body["jobs"]] == ["running"]

    def test_health(self, client, seed) -> None:
        seed(lambda session: _running_job(session))
        body = client.get("/api/jobs/health").json()
        assert body["counts"] == {"running": 1}
        assert body["stuck_running"] == 0


class TestSchedule:
    def test_put_get_toggle(self, client) -> None:
        assert client.get("/api/schedule/youtube").status_code == 404

        resp = client.put(
            "/api/schedule/youtube",
            json={"frequency": "weekly", "preferred_hour": 9, "preferred_days": [5, 1, 1]},
        )
        assert resp.status_code == 200
        body = resp.json()
        assert body["preferred_days"] == [1, 5]
        assert body["next_scheduled_at"] is not None

        assert client.get("/api/schedule/youtube").json()["frequency"] == "weekly"
        assert client.post("/api/schedule/youtube/toggle").json() == {"platform": "youtube", "is_enabled": False}

    def test_invalid_hour_or_day_is_422(self, client) -> None:
        assert client.put("/api/schedule/all", json={"frequency": "daily", "preferred_hour": 24}).status_code == 422
        assert client.put(
            "/api/schedule/all", json={"frequency": "weekly", "preferred_hour": 3, "preferred_days": [7]},
        ).status_code == 422

    def test_initialize_once(self, client) -> None:
        assert client.post("/api/schedule/initialize").json() == {"initialized": True}
        assert client.post("/api/schedule/initialize").json() == {"initialized": False}
        rows = client.get("/api/schedule").json()
        assert [(r["platform"], r["frequency"], r["preferred_hour"]) for r in rows] == [("all", "daily", 6)]


def test_health_endpoint(client) -> None:
    body = client.get("/health").json()
    assert body["status"] == "ok"
    assert isinstance(body["timestamp"], int)


class TestSchedulerRoutes:
    def test_status_reports_cadence(self, client, settings_env) -> None:
        settings_env(SCHEDULER_ENABLED="false", SCHEDULER_TICK_MINUTES="10", POLL_INTERVAL_MINUTES="3")
        body = client.get("/api/scheduler/status").json()
        assert body["enabled"] is False
        assert body["running"] is False
        assert (body["tick_minutes"], body["poll_interval_minutes"]) == (10, 3)
        assert body["jobs"] == []

    def test_run_now(self, client, monkeypatch) -> None:
        from app.services.scheduler import TickerRun, scheduler_service

        async def fake_run(job):
            run = TickerRun(job=job.value, started_at=datetime.now(timezone.utc), acquired=True, result={"due": []})
            scheduler_service.last_runs[job.value] = run
            return run

        monkeypatch.setattr(scheduler_service, "run", fake_run)
        monkeypatch.setattr(scheduler_service, "last_runs", {})
        resp = client.post("/api/scheduler/schedule_tick/run")
        assert resp.status_code == 200
        assert resp.json()["result"] == {"due": []}
        assert client.get("/api/scheduler/status").json()["last_runs"]["schedule_tick"]["acquired"] is True

    def test_unknown_ticker_job_is_422(self, client) -> None:
        assert client.post("/api/scheduler/nope/run").status_code == 422
