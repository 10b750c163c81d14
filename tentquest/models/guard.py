"""
Guard rule model.

Provider tasks carry a loosely-typed ``guardConfig`` blob:

    {"condition": "AND", "rules": [{"ruleType": "TASK_ID", "operator": "EQ", "stringValue": "t-1"}, ...]}

It is parsed once into an explicit sum type so evaluation can match on rule
kind. Kinds this service does not understand are kept as ``UnknownRule`` and
always evaluate as satisfied.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional, Tuple, Union

from tentquest.models.clock import parse_datetime

logger = logging.getLogger("tentquest.guard")


class PrerequisiteCondition(str, Enum):
    AND = "AND"
    OR = "OR"

    @classmethod
    def parse(cls, value: Optional[str]) -> "PrerequisiteCondition":
        if isinstance(value, str) and value.upper() == "OR":
            return cls.OR
        return cls.AND


@dataclass(frozen=True)
class TaskIdRule:
    """Requires another provider task to be completed."""
    operator: str
    task_id: Optional[str]


@dataclass(frozen=True)
class DateRule:
    """Time window gate: GT means "after", LT means "before"."""
    operator: str
    date: Optional[datetime]


@dataclass(frozen=True)
class MaxParticipantsRule:
    """Capacity gate compared against the quest's cached participant count."""
    operator: str
    limit: Optional[int]


@dataclass(frozen=True)
class UnknownRule:
    rule_type: str
    raw: Dict[str, Any] = field(default_factory=dict, compare=False)


GuardRule = Union[TaskIdRule, DateRule, MaxParticipantsRule, UnknownRule]


def parse_rule(raw: Dict[str, Any]) -> GuardRule:
    rule_type = str(raw.get("ruleType") or "")
    operator = str(raw.get("operator") or "").upper()

    if rule_type == "TASK_ID":
        value = raw.get("stringValue")
        return TaskIdRule(operator=operator, task_id=str(value) if value else None)

    if rule_type == "DATE":
        try:
            moment = parse_datetime(raw.get("dateValue"))
        except (TypeError, ValueError):
            # An unparseable date never blocks the quest
            logger.warning("guard.date_unparseable", extra={"value": raw.get("dateValue")})
            moment = None
        return DateRule(operator=operator, date=moment)

    if rule_type == "MAX_PARTICIPANTS":
        value = raw.get("intValue")
        try:
            limit = int(value) if value is not None else None
        except (TypeError, ValueError):
            limit = None
        return MaxParticipantsRule(operator=operator, limit=limit)

    return UnknownRule(rule_type=rule_type, raw=dict(raw))


@dataclass(frozen=True)
class GuardConfig:
    condition: PrerequisiteCondition = PrerequisiteCondition.AND
    rules: Tuple[GuardRule, ...] = ()

    @classmethod
    def parse(cls, raw: Optional[Dict[str, Any]]) -> Optional["GuardConfig"]:
        """Parse a stored guard blob; ``None`` when absent or rule-less."""
        if not raw or not isinstance(raw, dict):
            return None
        raw_rules = raw.get("rules")
        if not raw_rules:
            return None
        rules = tuple(parse_rule(r) for r in raw_rules if isinstance(r, dict))
        return cls(condition=PrerequisiteCondition.parse(raw.get("condition")), rules=rules)

    def task_id_rules(self) -> Tuple[TaskIdRule, ...]:
        return tuple(r for r in self.rules if isinstance(r, TaskIdRule))
