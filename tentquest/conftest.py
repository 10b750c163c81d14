# tentquest/conftest.py
import os
import sys
from pathlib import Path

import pytest

# Add repository root to PYTHONPATH
REPO_ROOT = Path(__file__).resolve().parent.parent
if str(REPO_ROOT) not in sys.path:
    sys.path.insert(0, str(REPO_ROOT))

# Tests run against a single shared in-memory SQLite database
os.environ.setdefault("TEST_DATABASE_URL", "sqlite://")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

TEST_ADMIN_KEY = "test-admin-key"


@pytest.fixture(scope="function", autouse=True)
def reset_db():
    """
    Drop and recreate all tables around each test so every test starts
    from an empty store.
    """
    from tentquest.core.database import reset_database

    reset_database()
    yield
    reset_database()


@pytest.fixture
def admin_key(monkeypatch):
    monkeypatch.setenv("ADMIN_API_KEY", TEST_ADMIN_KEY)
    return TEST_ADMIN_KEY


@pytest.fixture
def client():
    from fastapi.testclient import TestClient
    from tentquest.main import app

    return TestClient(app)


def _task(task_id, title, order, typename, **extra):
    task = {
        "task_id": task_id,
        "title": title,
        "order": order,
        "xp": 10,
        "points": 5,
        "info": {"__typename": typename},
    }
    task.update(extra)
    return task


@pytest.fixture
def campaign_records():
    """A Social and an Educational campaign shaped like a provider import."""
    return [
        {
            "event_id": "evt-social",
            "title": "Social Tent",
            "state": "ONGOING",
            "summary": {"totalTasks": 3},
            "tasks": [
                _task("task-s1", "Follow us", 1, "TwitterFollowTaskData"),
                _task("task-s2", "Join Discord", 2, "DiscordJoinTaskData"),
                _task("task-s3", "Say hello", 3, "NullableTaskData"),
            ],
        },
        {
            "event_id": "evt-edu",
            "title": "Educational Tent",
            "state": "ONGOING",
            "tasks": [
                _task("task-e1", "Read the docs", 1, "LinkTaskData"),
                _task("task-e2", "Quiz", 2, "QuizTaskData", task_type="QUIZ_PLAY"),
                _task(
                    "task-e2-q1", "Question 1", 1, "QuizTaskData",
                    task_type="QUIZ_PLAY", parent_id="task-e2",
                    info={"__typename": "QuizTaskData", "questionType": "SINGLE_CHOICE"},
                ),
            ],
        },
    ]


@pytest.fixture
def synced_quests(campaign_records):
    """Import the two campaigns and return quests keyed by task id."""
    from tentquest.features.quests.repository import QuestStore
    from tentquest.features.quests.service import quest_service

    result = quest_service.sync_tents_and_quests(campaign_records)
    assert result["errors"] == []
    return {q.task_id: q for q in QuestStore.list_quests()}
