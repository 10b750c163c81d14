from datetime import datetime, timedelta, timezone

from tentquest.features.progress.repository import ProgressStore
from tentquest.features.progress.service import progress_service
from tentquest.models.progress import UserProgress
from tentquest.workers.safety_decay import last_job_run, run_safety_decay_job

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)


def _hours_ago(hours):
    return NOW - timedelta(hours=hours)


def _visible_user(user_id, stage=3, **dates):
    values = {
        "safety_meter_visible": True,
        "current_stage": stage,
        "last_safety_check": _hours_ago(25),
        "last_login_date": _hours_ago(30),
    }
    values.update(dates)
    return ProgressStore.update(user_id, values)


def test_recent_login_never_degrades():
    progress = UserProgress(user_id="u1", last_safety_check=NOW, last_login_date=_hours_ago(2))
    assert not progress.should_degrade(NOW)


def test_stale_login_degrades_when_one_category_is_idle():
    progress = UserProgress(
        user_id="u1",
        last_safety_check=NOW,
        last_login_date=_hours_ago(30),
        last_educational_task_date=_hours_ago(1),
    )
    assert progress.should_degrade(NOW)

    progress.last_social_task_date = _hours_ago(1)
    assert not progress.should_degrade(NOW)


def test_daily_check_degrades_inactive_users():
    _visible_user("idle")
    _visible_user("active", last_login_date=_hours_ago(2))
    _visible_user("busy", last_social_task_date=_hours_ago(3), last_educational_task_date=_hours_ago(4))

    result = progress_service.process_daily_safety_meter_check(now=NOW)

    assert result == {"users_checked": 3, "users_degraded": 1, "errors": []}
    assert ProgressStore.get("idle").current_stage == 2
    assert ProgressStore.get("active").current_stage == 3
    assert ProgressStore.get("busy").current_stage == 3
    assert all(ProgressStore.get(u).last_safety_check == NOW for u in ("idle", "active", "busy"))


def test_daily_check_skips_hidden_meters_and_recent_checks():
    ProgressStore.update("hidden", {"last_safety_check": _hours_ago(48), "last_login_date": _hours_ago(48)})
    _visible_user("checked", last_safety_check=_hours_ago(1))

    result = progress_service.process_daily_safety_meter_check(now=NOW)

    assert result["users_checked"] == 0
    assert ProgressStore.get("hidden").current_stage == 3


def test_stage_floor_is_one():
    _visible_user("u1", stage=1)

    result = progress_service.process_daily_safety_meter_check(now=NOW)

    assert result["users_degraded"] == 1
    assert ProgressStore.get("u1").current_stage == 1


def test_user_not_reselected_within_window():
    _visible_user("u1")

    progress_service.process_daily_safety_meter_check(now=NOW)
    again = progress_service.process_daily_safety_meter_check(now=NOW + timedelta(hours=1))

    assert again["users_checked"] == 0
    assert ProgressStore.get("u1").current_stage == 2


def test_job_records_run():
    _visible_user("u1")

    outcome = run_safety_decay_job(now=NOW, trigger="manual")

    assert outcome["status"] == "success"
    assert outcome["users_degraded"] == 1
    assert outcome["timestamp"] == NOW.isoformat()

    run = last_job_run()
    assert run["trigger"] == "manual"
    assert run["status"] == "success"
    assert run["stats"]["users_checked"] == 1


def test_no_job_run_recorded_yet():
    assert last_job_run() is None
