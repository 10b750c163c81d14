"""
Prerequisite lock evaluation.

Pure functions over loaded quests and a user's completion map; no DB access.
Completion is tent-agnostic: a task completed in any tent satisfies every
reference to it.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set, Tuple

from tentquest.models.clock import utc_now
from tentquest.models.guard import (
    DateRule,
    GuardConfig,
    GuardRule,
    MaxParticipantsRule,
    PrerequisiteCondition,
    TaskIdRule,
    UnknownRule,
)
from tentquest.models.quest import PrerequisiteRef, Quest, prerequisite_id

# {event_id: {task_id, ...}} of VALID completions
CompletionMap = Mapping[str, Set[str]]


def derive_dynamic_prerequisites(
    guard_config: Optional[dict],
    task_id_to_quest_id: Mapping[str, int],
) -> Tuple[List[int], PrerequisiteCondition]:
    """Resolve ``TASK_ID``/``EQ`` guard rules to quest ids; unknown task ids are dropped."""
    guard = guard_config if isinstance(guard_config, GuardConfig) else GuardConfig.parse(guard_config)
    if guard is None:
        return [], PrerequisiteCondition.AND

    resolved: List[int] = []
    for rule in guard.task_id_rules():
        if rule.operator != "EQ" or not rule.task_id:
            continue
        quest_id = task_id_to_quest_id.get(rule.task_id)
        if quest_id is not None:
            resolved.append(quest_id)
    return resolved, guard.condition


def is_task_completed(task_id: str, completions: CompletionMap) -> bool:
    return any(task_id in completed for completed in completions.values())


def resolve_task_id(ref: PrerequisiteRef, quest_id_to_task_id: Mapping[int, str]) -> Optional[str]:
    if isinstance(ref, Quest) and ref.task_id:
        return ref.task_id
    try:
        return quest_id_to_task_id.get(prerequisite_id(ref))
    except (TypeError, ValueError):
        return None


def prerequisites_met(
    refs: Iterable[PrerequisiteRef],
    condition: PrerequisiteCondition,
    completions: CompletionMap,
    quest_id_to_task_id: Mapping[int, str],
) -> bool:
    results = []
    for ref in refs:
        task_id = resolve_task_id(ref, quest_id_to_task_id)
        results.append(task_id is not None and is_task_completed(task_id, completions))

    if not results:
        return True
    if condition == PrerequisiteCondition.OR:
        return any(results)
    return all(results)


def guard_rule_met(rule: GuardRule, quest: Quest, now: datetime) -> bool:
    if isinstance(rule, TaskIdRule):
        # Resolved into dynamic prerequisites instead
        return True

    if isinstance(rule, DateRule):
        if rule.date is None:
            return True
        if rule.operator == "GT":
            return now > rule.date
        if rule.operator == "LT":
            return now < rule.date
        return True

    if isinstance(rule, MaxParticipantsRule):
        if rule.limit is None:
            return True
        count = quest.participant_count or 0
        if rule.operator == "LTE":
            return count <= rule.limit
        if rule.operator == "LT":
            return count < rule.limit
        if rule.operator == "GTE":
            return count >= rule.limit
        if rule.operator == "GT":
            return count > rule.limit
        if rule.operator == "EQ":
            return count == rule.limit
        return True

    if isinstance(rule, UnknownRule):
        return True

    return True


def other_guard_rules_met(quest: Quest, now: Optional[datetime] = None) -> bool:
    guard = quest.guard
    if guard is None:
        return True
    moment = now or utc_now()
    return all(guard_rule_met(rule, quest, moment) for rule in guard.rules)


def is_locked(
    quest: Quest,
    completions: CompletionMap,
    quest_id_to_task_id: Mapping[int, str],
    now: Optional[datetime] = None,
) -> bool:
    """
    A quest is locked when any of these fail:
      - dynamic prerequisites under the quest's AND/OR condition
      - custom prerequisites, always AND
      - the non-TASK_ID guard rules (time window, participant cap)
    """
    dynamic_ok = prerequisites_met(
        quest.dynamic_prerequisites, quest.prerequisite_condition, completions, quest_id_to_task_id
    )
    custom_ok = prerequisites_met(
        quest.custom_prerequisites, PrerequisiteCondition.AND, completions, quest_id_to_task_id
    )
    return not (dynamic_ok and custom_ok and other_guard_rules_met(quest, now))


def creates_cycle(
    quest_id: int,
    prerequisite_ids: Iterable[int],
    edges: Mapping[int, Iterable[int]],
) -> bool:
    """
    True if making ``prerequisite_ids`` prerequisites of ``quest_id`` closes a loop.

    ``edges`` maps a quest id to its current prerequisite ids (dynamic and
    custom). Walks depth-first from each candidate looking for ``quest_id``.
    """
    visited: Set[int] = set()
    stack = [int(p) for p in prerequisite_ids]
    while stack:
        current = stack.pop()
        if current == quest_id:
            return True
        if current in visited:
            continue
        visited.add(current)
        stack.extend(int(n) for n in edges.get(current, ()) if n not in visited)
    return False


def prerequisite_graph(quest_list: Iterable[Quest]) -> Dict[int, List[int]]:
    return {q.id: q.all_prerequisite_ids() for q in quest_list}
