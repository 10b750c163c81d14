"""Slotting of Social / Educational quests into the cross-campaign rule template."""
from typing import Dict, Iterable, Optional

from tentquest.features.prerequisites.service import cross_campaign_key
from tentquest.models.quest import (
    EDUCATIONAL_TENT_TYPE,
    SOCIAL_TENT_TYPE,
    Quest,
    TaskKind,
    Tent,
)

# (tent type, order) -> task kind expected in that slot
TEMPLATE_SLOTS = {
    (SOCIAL_TENT_TYPE, 1): TaskKind.TWITTER_FOLLOW,
    (SOCIAL_TENT_TYPE, 2): TaskKind.DISCORD_JOIN,
    (SOCIAL_TENT_TYPE, 3): TaskKind.NULLABLE,
    (EDUCATIONAL_TENT_TYPE, 1): TaskKind.LINK,
    (EDUCATIONAL_TENT_TYPE, 2): TaskKind.QUIZ,
}


def template_slot(tent_type: Optional[str], quest: Quest) -> Optional[str]:
    """
    Template key for ``quest`` when its tent type, order and task kind match a
    slot; sub-questions and individual quiz questions never match.
    """
    if quest.parent_id is not None or not tent_type:
        return None
    expected = TEMPLATE_SLOTS.get((tent_type, quest.order or 1))
    if expected is None or quest.task_kind != expected:
        return None
    if expected == TaskKind.QUIZ and (quest.info or {}).get("questionType"):
        return None
    return cross_campaign_key(tent_type, quest.order or 1)


def keys_from_stored_tents(tent_list: Iterable[Tent]) -> Dict[str, int]:
    """Key every top-level quest by its position in its tent, ordered by ``order``."""
    keys: Dict[str, int] = {}
    for tent in tent_list:
        if not tent.tent_type:
            continue
        top_level = [q for q in tent.sorted_quests() if not q.is_sub_question]
        for position, quest in enumerate(top_level, start=1):
            keys[cross_campaign_key(tent.tent_type, position)] = quest.id
    return keys
