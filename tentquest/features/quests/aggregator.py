"""
Completion / unlock aggregation for tent and quest listings.

Tent-level locking is a fixed two-type policy: Social tents are always open,
an Educational tent opens once the first two quests of the Social tent are
completed, anything else stays locked.
"""
from __future__ import annotations

from datetime import datetime
from typing import Dict, Iterable, List, Mapping, Optional, Set

from tentquest.features.prerequisites.rules import CompletionMap, is_locked, is_task_completed
from tentquest.models.quest import (
    EDUCATIONAL_TENT_TYPE,
    SOCIAL_TENT_TYPE,
    ParticipationStatus,
    Quest,
    Tent,
    UserTaskParticipation,
)


def build_completed_quests_map(participations: Iterable[UserTaskParticipation]) -> Dict[str, Set[str]]:
    completed: Dict[str, Set[str]] = {}
    for record in participations:
        if not record.event_id:
            continue
        completed[record.event_id] = {
            entry.task_id
            for entry in record.participations
            if entry.status == ParticipationStatus.VALID and entry.task_id
        }
    return completed


def is_quest_completed_by_user(task_id: str, completed_map: CompletionMap) -> bool:
    return is_task_completed(task_id, completed_map)


def top_level_quests(tent: Tent) -> List[Quest]:
    return [q for q in tent.sorted_quests() if not q.is_sub_question]


def educational_tent_unlocked(completed_map: CompletionMap, all_tents: Iterable[Tent]) -> bool:
    social = next((t for t in all_tents if t.tent_type == SOCIAL_TENT_TYPE), None)
    if social is None or not social.event_id:
        return False

    first_two = top_level_quests(social)[:2]
    if len(first_two) < 2:
        return False
    social_completed = completed_map.get(social.event_id, set())
    return all(q.task_id in social_completed for q in first_two)


def is_tent_locked(tent: Tent, completed_map: CompletionMap, all_tents: Iterable[Tent]) -> bool:
    if tent.tent_type == SOCIAL_TENT_TYPE:
        return False
    if tent.tent_type == EDUCATIONAL_TENT_TYPE:
        return not educational_tent_unlocked(completed_map, all_tents)
    return True


def compute_tent_status(tent: Tent, completed_map: CompletionMap, all_tents: Iterable[Tent]) -> dict:
    quest_list = top_level_quests(tent)
    tent_completed = completed_map.get(tent.event_id, set())
    completed_count = sum(1 for q in quest_list if q.task_id in tent_completed)
    return {
        "quest_count": len(quest_list),
        "completed_quest_count": completed_count,
        "is_completed": len(quest_list) > 0 and completed_count == len(quest_list),
        "is_locked": is_tent_locked(tent, completed_map, all_tents),
    }


def tents_with_status(tent_list: List[Tent], completed_map: CompletionMap) -> List[dict]:
    return [
        {**tent.to_dict(), **compute_tent_status(tent, completed_map, tent_list)}
        for tent in tent_list
    ]


def _quiz_completed(parent: Quest, sub_questions: List[Quest], completed_map: CompletionMap) -> bool:
    if is_task_completed(parent.task_id, completed_map):
        return True
    return bool(sub_questions) and all(is_task_completed(q.task_id, completed_map) for q in sub_questions)


def quests_with_status(
    tent: Tent,
    completed_map: CompletionMap,
    quest_id_to_task_id: Mapping[int, str],
    now: Optional[datetime] = None,
) -> List[dict]:
    """Top-level quests of ``tent`` ordered by ``order`` with completion and lock flags."""
    sub_questions: Dict[str, List[Quest]] = {}
    for quest in tent.quests:
        if quest.parent_id:
            sub_questions.setdefault(quest.parent_id, []).append(quest)

    listing = []
    for quest in top_level_quests(tent):
        if quest.is_quiz_parent:
            completed = _quiz_completed(quest, sub_questions.get(quest.task_id, []), completed_map)
        else:
            completed = is_quest_completed_by_user(quest.task_id, completed_map)
        listing.append({
            **quest.to_dict(),
            "is_completed": completed,
            "is_locked": is_locked(quest, completed_map, quest_id_to_task_id, now),
        })
    return listing
