"""Lock evaluation over loaded quests; no database involved."""
from datetime import datetime, timedelta, timezone

from tentquest.features.prerequisites.rules import creates_cycle, is_locked
from tentquest.models.guard import PrerequisiteCondition
from tentquest.models.quest import Quest

NOW = datetime(2025, 6, 1, 12, 0, tzinfo=timezone.utc)

QUEST_TASKS = {1: "task-a", 2: "task-b", 3: "task-c"}


def _quest(**overrides) -> Quest:
    values = dict(id=10, tent_id=1, task_id="task-target", title="Target")
    values.update(overrides)
    return Quest(**values)


def test_and_requires_every_prerequisite():
    quest = _quest(dynamic_prerequisites=[1, 2], prerequisite_condition=PrerequisiteCondition.AND)

    assert is_locked(quest, {}, QUEST_TASKS, NOW)
    assert is_locked(quest, {"evt-1": {"task-a"}}, QUEST_TASKS, NOW)
    assert not is_locked(quest, {"evt-1": {"task-a", "task-b"}}, QUEST_TASKS, NOW)


def test_or_requires_any_prerequisite():
    quest = _quest(dynamic_prerequisites=[1, 2], prerequisite_condition=PrerequisiteCondition.OR)

    assert is_locked(quest, {}, QUEST_TASKS, NOW)
    assert not is_locked(quest, {"evt-1": {"task-b"}}, QUEST_TASKS, NOW)


def test_completion_counts_in_any_tent():
    quest = _quest(tent_id=2, dynamic_prerequisites=[1])
    completed_elsewhere = {"social-event": {"task-a"}, "educational-event": set()}

    assert not is_locked(quest, completed_elsewhere, QUEST_TASKS, NOW)


def test_custom_prerequisites_always_and():
    quest = _quest(custom_prerequisites=[1, 2], prerequisite_condition=PrerequisiteCondition.OR)

    assert is_locked(quest, {"evt": {"task-a"}}, QUEST_TASKS, NOW)
    assert not is_locked(quest, {"evt": {"task-a"}, "other": {"task-b"}}, QUEST_TASKS, NOW)


def test_empty_prerequisites_are_unlocked():
    assert not is_locked(_quest(), {}, QUEST_TASKS, NOW)


def test_populated_reference_uses_its_own_task_id():
    prerequisite = _quest(id=99, task_id="task-z", title="Loaded")
    quest = _quest(dynamic_prerequisites=[prerequisite])

    # task-z is not in the reverse map at all
    assert not is_locked(quest, {"evt": {"task-z"}}, QUEST_TASKS, NOW)


def test_unresolvable_reference_is_unsatisfied():
    quest = _quest(custom_prerequisites=[404])
    assert is_locked(quest, {"evt": {"task-a", "task-b", "task-c"}}, QUEST_TASKS, NOW)


def test_date_rules():
    after = _quest(guard_config={"rules": [
        {"ruleType": "DATE", "operator": "GT", "dateValue": (NOW + timedelta(days=1)).isoformat()},
    ]})
    before = _quest(guard_config={"rules": [
        {"ruleType": "DATE", "operator": "LT", "dateValue": (NOW - timedelta(days=1)).isoformat()},
    ]})
    open_window = _quest(guard_config={"rules": [
        {"ruleType": "DATE", "operator": "GT", "dateValue": (NOW - timedelta(days=1)).isoformat()},
        {"ruleType": "DATE", "operator": "LT", "dateValue": (NOW + timedelta(days=1)).isoformat()},
    ]})

    assert is_locked(after, {}, QUEST_TASKS, NOW)
    assert is_locked(before, {}, QUEST_TASKS, NOW)
    assert not is_locked(open_window, {}, QUEST_TASKS, NOW)


def test_max_participants_operators():
    def capped(operator, limit, count):
        return _quest(
            participant_count=count,
            guard_config={"rules": [{"ruleType": "MAX_PARTICIPANTS", "operator": operator, "intValue": limit}]},
        )

    assert not is_locked(capped("LTE", 10, 10), {}, QUEST_TASKS, NOW)
    assert is_locked(capped("LTE", 10, 11), {}, QUEST_TASKS, NOW)
    assert is_locked(capped("LT", 10, 10), {}, QUEST_TASKS, NOW)
    assert not is_locked(capped("GTE", 10, 10), {}, QUEST_TASKS, NOW)
    assert is_locked(capped("GT", 10, 10), {}, QUEST_TASKS, NOW)
    assert not is_locked(capped("EQ", 3, 3), {}, QUEST_TASKS, NOW)
    assert is_locked(capped("EQ", 3, 4), {}, QUEST_TASKS, NOW)


def test_unknown_rules_and_task_id_rules_do_not_lock_by_themselves():
    quest = _quest(guard_config={"rules": [
        {"ruleType": "SOMETHING_NEW", "operator": "EQ", "stringValue": "x"},
        {"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "task-never-completed"},
    ]})
    assert not is_locked(quest, {}, QUEST_TASKS, NOW)


def test_creates_cycle_detects_long_loops():
    # 2 requires 1, 3 requires 2
    edges = {2: [1], 3: [2], 1: []}

    assert creates_cycle(1, [1], edges)
    assert creates_cycle(1, [3], edges)
    assert not creates_cycle(3, [1], edges)
    assert not creates_cycle(4, [3], edges)
