import asyncio
from datetime import datetime, timezone

import pytest

from tentquest.core.errors import ConflictError
from tentquest.workers.scheduler import DailyJobScheduler, next_run_after

FIXED = datetime(2025, 6, 1, 12, 30, tzinfo=timezone.utc)


def _scheduler():
    return DailyJobScheduler(clock=lambda: FIXED)


def test_next_run_after_is_strictly_later():
    assert next_run_after(FIXED, 0) == datetime(2025, 6, 2, 0, 0, tzinfo=timezone.utc)
    assert next_run_after(FIXED, 18) == datetime(2025, 6, 1, 18, 0, tzinfo=timezone.utc)
    assert next_run_after(FIXED, 12, 30) == datetime(2025, 6, 2, 12, 30, tzinfo=timezone.utc)


def test_trigger_runs_job_and_tracks_status():
    calls = []

    def job(trigger):
        calls.append(trigger)
        return {"ok": True}

    scheduler = _scheduler()
    scheduler.register("daily", job, hour_utc=3)

    assert scheduler.trigger("daily") == {"ok": True}
    assert calls == ["manual"]

    [status] = scheduler.status()
    assert status["name"] == "daily"
    assert status["schedule"] == "0 3 * * * (UTC)"
    assert status["running"] is False
    assert status["last_status"] == "success"
    assert status["last_run"] == FIXED.isoformat()
    assert status["next_run"] == "2025-06-02T03:00:00+00:00"


def test_trigger_propagates_job_errors():
    def broken(trigger):
        raise RuntimeError("boom")

    scheduler = _scheduler()
    scheduler.register("broken", broken)

    with pytest.raises(RuntimeError):
        scheduler.trigger("broken")
    assert scheduler.status()[0]["last_status"] == "failed"
    assert scheduler.status()[0]["running"] is False


def test_trigger_unknown_job():
    with pytest.raises(KeyError):
        _scheduler().trigger("missing")


def test_start_and_stop_cancel_job_tasks():
    scheduler = _scheduler()
    scheduler.register("daily", lambda trigger: {}, hour_utc=0)

    async def cycle():
        scheduler.start()
        assert scheduler.started
        await scheduler.stop()

    asyncio.run(cycle())
    assert not scheduler.started


def test_trigger_while_running_is_a_conflict():
    scheduler = _scheduler()
    seen = []

    def job(trigger):
        with pytest.raises(ConflictError):
            scheduler.trigger("daily")
        seen.append(trigger)
        return {}

    scheduler.register("daily", job)
    scheduler.trigger("daily")

    assert seen == ["manual"]
    assert scheduler.status()[0]["running"] is False
    assert scheduler.status()[0]["last_status"] == "success"
