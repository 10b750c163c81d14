import asyncio

import pytest

from tentquest.core.errors import ValidationError
from tentquest.features.progress.repository import ProgressStore
from tentquest.features.progress.service import progress_service
from tentquest.features.quests.repository import QuestStore
from tentquest.features.quests.service import quest_service


def test_store_links_quest_ids_and_reports_stats(synced_quests):
    result = quest_service.store_user_task_participation("u1", "evt-social", [
        {"task_id": "task-s1", "status": "VALID", "points": 5, "xp": 10,
         "participated_at": "2025-06-01T10:00:00Z"},
        {"task_id": "task-s2", "status": "pending", "points": 3},
    ])

    assert result["stored"] is True
    assert result["stats"] == {
        "total_participations": 2,
        "completed_tasks_count": 1,
        "total_points": 8,
        "total_xp": 10,
    }
    entries = result["data"]["participations"]
    assert entries[0]["quest_id"] == synced_quests["task-s1"].id
    assert entries[0]["participated_at"] == "2025-06-01T10:00:00+00:00"
    assert entries[1]["status"] == "PENDING"


def test_store_merges_by_task_id(synced_quests):
    quest_service.store_user_task_participation("u1", "evt-social", [
        {"task_id": "task-s1", "status": "PENDING"},
        {"task_id": "task-s2", "status": "VALID"},
    ])
    quest_service.store_user_task_participation("u1", "evt-social", [
        {"task_id": "task-s1", "status": "VALID"},
        {"task_id": "task-s3", "status": "VALID"},
    ])

    record = QuestStore.get_participation("u1", "evt-social")
    assert [(p.task_id, p.status.value) for p in record.participations] == [
        ("task-s1", "VALID"),
        ("task-s2", "VALID"),
        ("task-s3", "VALID"),
    ]
    assert record.completed_tasks_count == 3


def test_store_for_unknown_tent_keeps_raw_entries():
    result = quest_service.store_user_task_participation("u1", "evt-elsewhere", [
        {"task_id": "task-x", "status": "VALID"},
    ])

    assert result["data"]["tent_id"] is None
    assert result["data"]["participations"][0]["quest_id"] is None


@pytest.mark.parametrize("entry", [
    {"status": "VALID"},
    {"task_id": "task-s1", "status": "DONE"},
])
def test_store_rejects_bad_entries(entry):
    with pytest.raises(ValidationError):
        quest_service.store_user_task_participation("u1", "evt-social", [entry])
    assert QuestStore.get_participation("u1", "evt-social") is None


def test_refresh_isolates_failing_tents(synced_quests):
    async def source(user_id, event_id):
        if event_id == "evt-edu":
            raise RuntimeError("provider timeout")
        return [{"task_id": "task-s1", "status": "VALID"}]

    outcome = asyncio.run(
        quest_service.refresh_participations_for_tents("u1", QuestStore.list_tents(), source)
    )

    assert outcome == {"refreshed": 1, "failed": 1}
    assert QuestStore.get_participation("u1", "evt-social").completed_tasks_count == 1
    assert QuestStore.get_participation("u1", "evt-edu") is None


def test_user_participations_listing(synced_quests):
    quest_service.store_user_task_participation("u1", "evt-social", [{"task_id": "task-s1", "status": "VALID"}])
    quest_service.store_user_task_participation("u1", "evt-edu", [{"task_id": "task-e1", "status": "INVALID"}])

    listing = quest_service.get_user_participations("u1")

    assert [r["event_id"] for r in listing] == ["evt-social", "evt-edu"]
    assert quest_service.get_user_participations("someone-else") == []


def test_handle_quest_completion_awards_xp(synced_quests):
    result = quest_service.handle_quest_completion("u1", "evt-social", "task-s1")

    assert result["total_xp_gained"] == 10
    assert result["user_progress"]["last_social_task_date"] is not None


def test_handle_quest_completion_unknown_task_is_quiet(synced_quests):
    assert quest_service.handle_quest_completion("u1", "evt-social", "task-missing") is None


def test_newly_valid_entries_award_xp_once(synced_quests):
    first = quest_service.store_user_task_participation("u1", "evt-social", [
        {"task_id": "task-s1", "status": "VALID"},
        {"task_id": "task-s2", "status": "PENDING"},
    ])
    assert first["newly_completed"] == ["task-s1"]
    assert ProgressStore.get("u1").total_lifetime_xp == 10

    second = quest_service.store_user_task_participation("u1", "evt-social", [
        {"task_id": "task-s1", "status": "VALID"},
        {"task_id": "task-s2", "status": "VALID"},
    ])
    assert second["newly_completed"] == ["task-s2"]

    progress = ProgressStore.get("u1")
    assert progress.total_lifetime_xp == 20
    assert progress.xp_meter_visible and progress.safety_meter_visible


def test_completion_failure_does_not_fail_store(synced_quests, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("progress store down")

    monkeypatch.setattr(progress_service, "process_quest_completion", broken)

    result = quest_service.store_user_task_participation("u1", "evt-social", [
        {"task_id": "task-s1", "status": "VALID"},
    ])

    assert result["stored"] is True
    assert result["stats"]["completed_tasks_count"] == 1
    assert ProgressStore.get("u1") is None
