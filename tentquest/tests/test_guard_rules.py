from datetime import datetime, timezone

from tentquest.features.prerequisites.rules import derive_dynamic_prerequisites
from tentquest.models.guard import (
    DateRule,
    GuardConfig,
    MaxParticipantsRule,
    PrerequisiteCondition,
    TaskIdRule,
    UnknownRule,
    parse_rule,
)


def test_parse_rule_kinds():
    assert parse_rule({"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "t-1"}) == TaskIdRule("EQ", "t-1")
    assert parse_rule({"ruleType": "MAX_PARTICIPANTS", "operator": "lte", "intValue": 5}) == MaxParticipantsRule("LTE", 5)

    date_rule = parse_rule({"ruleType": "DATE", "operator": "GT", "dateValue": "2025-01-01T00:00:00Z"})
    assert isinstance(date_rule, DateRule)
    assert date_rule.date == datetime(2025, 1, 1, tzinfo=timezone.utc)

    unknown = parse_rule({"ruleType": "WALLET_BALANCE", "operator": "GT", "intValue": 1})
    assert isinstance(unknown, UnknownRule)
    assert unknown.rule_type == "WALLET_BALANCE"


def test_unparseable_date_does_not_raise():
    rule = parse_rule({"ruleType": "DATE", "operator": "GT", "dateValue": "not a date"})
    assert rule == DateRule("GT", None)


def test_guard_config_parse_absent_or_empty():
    assert GuardConfig.parse(None) is None
    assert GuardConfig.parse({}) is None
    assert GuardConfig.parse({"condition": "OR", "rules": []}) is None


def test_guard_config_condition_defaults_to_and():
    guard = GuardConfig.parse({"rules": [{"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "a"}]})
    assert guard.condition == PrerequisiteCondition.AND

    guard = GuardConfig.parse({"condition": "or", "rules": [{"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "a"}]})
    assert guard.condition == PrerequisiteCondition.OR


def test_derive_dynamic_prerequisites_filters_and_resolves():
    guard_config = {
        "condition": "OR",
        "rules": [
            {"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "task-a"},
            {"ruleType": "TASK_ID", "operator": "NEQ", "stringValue": "task-b"},
            {"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "task-missing"},
            {"ruleType": "DATE", "operator": "GT", "dateValue": "2024-01-01T00:00:00Z"},
            {"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "task-c"},
        ],
    }
    lookup = {"task-a": 1, "task-b": 2, "task-c": 3}

    ids, condition = derive_dynamic_prerequisites(guard_config, lookup)

    assert ids == [1, 3]
    assert condition == PrerequisiteCondition.OR


def test_derive_dynamic_prerequisites_without_guard():
    assert derive_dynamic_prerequisites(None, {"a": 1}) == ([], PrerequisiteCondition.AND)
