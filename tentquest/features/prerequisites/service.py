from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Dict, List, Mapping, Optional, Tuple

from tentquest.core.errors import ConflictError, NotFoundError
from tentquest.features.prerequisites.rules import (
    creates_cycle,
    derive_dynamic_prerequisites,
    prerequisite_graph,
)
from tentquest.features.quests.repository import QuestStore
from tentquest.models.quest import EDUCATIONAL_TENT_TYPE, SOCIAL_TENT_TYPE, Quest, prerequisite_id

logger = logging.getLogger("tentquest.prerequisites")

SELF_REFERENCE_ERROR = "Quest cannot be a prerequisite of itself"
CIRCULAR_DEPENDENCY_ERROR = "Circular dependency detected"


def cross_campaign_key(tent_type: str, position: int) -> str:
    return f"{tent_type}_Quest_{position}"


# (dependent, [prerequisites]) applied in order
CROSS_CAMPAIGN_TEMPLATE: Tuple[Tuple[str, Tuple[str, ...]], ...] = (
    (cross_campaign_key(EDUCATIONAL_TENT_TYPE, 1),
     (cross_campaign_key(SOCIAL_TENT_TYPE, 1), cross_campaign_key(SOCIAL_TENT_TYPE, 2))),
    (cross_campaign_key(SOCIAL_TENT_TYPE, 3), (cross_campaign_key(EDUCATIONAL_TENT_TYPE, 1),)),
    (cross_campaign_key(EDUCATIONAL_TENT_TYPE, 2), (cross_campaign_key(SOCIAL_TENT_TYPE, 3),)),
)


@dataclass
class PrerequisiteValidation:
    valid: bool
    error: Optional[str] = None


class PrerequisiteService:
    """Custom prerequisite edits, the cross-campaign template and dynamic derivation."""

    def __init__(self, store: type[QuestStore] = QuestStore):
        self._store = store

    def validate_custom_prerequisites(self, quest_id: int, prerequisite_ids: List[int]) -> PrerequisiteValidation:
        ids = [int(p) for p in prerequisite_ids]
        if quest_id in ids:
            return PrerequisiteValidation(False, SELF_REFERENCE_ERROR)

        if self._store.get_quest(quest_id) is None:
            raise NotFoundError("Quest not found")
        found = self._store.get_quests_by_ids(ids)
        missing = sorted(set(ids) - set(found))
        if missing:
            raise NotFoundError("Prerequisite quest not found")

        graph = prerequisite_graph(self._store.list_quests())
        if creates_cycle(quest_id, ids, graph):
            return PrerequisiteValidation(False, CIRCULAR_DEPENDENCY_ERROR)
        return PrerequisiteValidation(True)

    def set_custom_prerequisites(self, quest_id: int, prerequisite_ids: List[int]) -> Quest:
        validation = self.validate_custom_prerequisites(quest_id, prerequisite_ids)
        if not validation.valid:
            raise ConflictError(
                "Prerequisite validation failed",
                fields={"prerequisites": validation.error},
            )
        # Keep first occurrence order, drop duplicates
        unique_ids = list(dict.fromkeys(int(p) for p in prerequisite_ids))
        quest = self._store.update_custom_prerequisites(quest_id, unique_ids)
        logger.info(
            "prerequisites.custom_set",
            extra={"quest_id": quest_id, "prerequisite_count": len(unique_ids)},
        )
        return quest

    def set_custom_cross_campaign_rules(self, quests_by_key: Mapping[str, int]) -> List[str]:
        """
        Apply the fixed Social/Educational template. Edges whose endpoints are
        missing from ``quests_by_key`` are skipped. Returns the dependent keys
        that were written.

        Every edge is checked against the graph as it would look after the
        whole template is applied; on a conflict nothing is written.
        """
        planned: List[Tuple[str, int, List[int]]] = []
        for dependent_key, prerequisite_keys in CROSS_CAMPAIGN_TEMPLATE:
            dependent = quests_by_key.get(dependent_key)
            prerequisites = [quests_by_key.get(k) for k in prerequisite_keys]
            if dependent is None or any(p is None for p in prerequisites):
                logger.debug("prerequisites.template_edge_skipped", extra={"dependent": dependent_key})
                continue
            planned.append((dependent_key, int(dependent), [int(p) for p in prerequisites]))

        if not planned:
            return []

        by_id = {q.id: q for q in self._store.list_quests()}
        missing = sorted({qid for _, d, ps in planned for qid in [d, *ps] if qid not in by_id})
        if missing:
            raise NotFoundError("Prerequisite quest not found")

        # Template writes replace the dependent's custom prerequisites
        graph = prerequisite_graph(by_id.values())
        for _, dependent, prerequisites in planned:
            dynamic = [prerequisite_id(ref) for ref in by_id[dependent].dynamic_prerequisites]
            graph[dependent] = dynamic + prerequisites

        conflicts: Dict[str, str] = {}
        for dependent_key, dependent, prerequisites in planned:
            if dependent in prerequisites:
                conflicts[dependent_key] = SELF_REFERENCE_ERROR
            elif creates_cycle(dependent, graph[dependent], graph):
                conflicts[dependent_key] = CIRCULAR_DEPENDENCY_ERROR
        if conflicts:
            logger.warning("prerequisites.template_conflict", extra={"conflicts": sorted(conflicts)})
            raise ConflictError("Cross-campaign rules would create a circular dependency", fields=conflicts)

        applied: List[str] = []
        for dependent_key, dependent, prerequisites in planned:
            self._store.update_custom_prerequisites(dependent, list(dict.fromkeys(prerequisites)))
            applied.append(dependent_key)
        logger.info("prerequisites.template_applied", extra={"applied": applied})
        return applied

    def apply_dynamic_prerequisites(self, task_id_to_quest_id: Optional[Dict[str, int]] = None) -> int:
        """Derive and persist dynamic prerequisites for every quest carrying a guard config."""
        lookup = task_id_to_quest_id if task_id_to_quest_id is not None else self._store.task_id_to_quest_id_map()
        updated = 0
        for quest in self._store.list_quests():
            if not quest.guard_config:
                continue
            try:
                prerequisite_ids, condition = derive_dynamic_prerequisites(quest.guard_config, lookup)
                if prerequisite_ids:
                    self._store.update_dynamic_prerequisites(quest.id, prerequisite_ids, condition)
                    updated += 1
            except Exception as exc:
                logger.error(
                    "prerequisites.dynamic_failed",
                    extra={"quest_id": quest.id, "error": str(exc)},
                )
        return updated


prerequisite_service = PrerequisiteService()
