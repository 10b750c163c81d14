"""
Quest / tent orchestration.

Reads come from ``QuestStore``; lock decisions are delegated to the
prerequisite rules and the aggregator; completions flow into the progress
service. Batch paths (campaign import, participation refresh) collect
per-item failures instead of aborting.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Sequence

from tentquest.core.errors import AppError, NotFoundError, ValidationError
from tentquest.features.prerequisites.service import PrerequisiteService, prerequisite_service
from tentquest.features.progress.service import ProgressService, progress_service
from tentquest.features.quests.aggregator import (
    build_completed_quests_map,
    quests_with_status,
    tents_with_status,
)
from tentquest.features.quests.cross_campaign import keys_from_stored_tents, template_slot
from tentquest.features.quests.repository import QuestStore
from tentquest.models.campaign import CampaignRecord
from tentquest.models.clock import parse_datetime, utc_now
from tentquest.models.quest import ParticipationEntry, ParticipationStatus, Tent

logger = logging.getLogger("tentquest.quests")

# Fetches a user's raw participation entries for one tent event
ParticipationSource = Callable[[str, str], Awaitable[List[Dict[str, Any]]]]


class QuestService:
    def __init__(
        self,
        prerequisites: PrerequisiteService = prerequisite_service,
        progress: ProgressService = progress_service,
    ):
        self._prerequisites = prerequisites
        self._progress = progress

    # Listings --------------------------------------------------------
    def list_tents_with_status(self, user_id: str) -> List[dict]:
        tent_list = QuestStore.list_tents(with_quests=True)
        completed = build_completed_quests_map(QuestStore.list_participations(user_id))
        return tents_with_status(tent_list, completed)

    def list_quests_with_status(self, event_id: str, user_id: str) -> List[dict]:
        tent = QuestStore.get_tent_by_event_id(event_id, with_quests=True)
        if tent is None:
            raise NotFoundError("Tent not found")
        completed = build_completed_quests_map(QuestStore.list_participations(user_id))
        return quests_with_status(tent, completed, QuestStore.quest_id_to_task_id_map())

    def get_quest_prerequisites(self, quest_id: int) -> dict:
        quest = QuestStore.get_quest(quest_id)
        if quest is None:
            raise NotFoundError("Quest not found")
        related = QuestStore.get_quests_by_ids(quest.all_prerequisite_ids())

        def summarize(ids: Iterable[int]) -> List[dict]:
            return [
                {"id": i, "task_id": related[i].task_id, "title": related[i].title}
                for i in ids
                if i in related
            ]

        return {
            "quest_id": quest.id,
            "task_id": quest.task_id,
            "prerequisite_condition": quest.prerequisite_condition.value,
            "dynamic_prerequisites": summarize(int(i) for i in quest.dynamic_prerequisites),
            "custom_prerequisites": summarize(int(i) for i in quest.custom_prerequisites),
            "guard_config": quest.guard_config,
        }

    def set_custom_prerequisites(self, quest_id: int, prerequisite_ids: List[int]) -> dict:
        quest = self._prerequisites.set_custom_prerequisites(quest_id, prerequisite_ids)
        return {
            "success": True,
            "message": "Custom prerequisites set successfully",
            "quest": quest.to_dict(),
        }

    # Campaign import -------------------------------------------------
    def sync_tents_and_quests(self, campaigns: Sequence[Any]) -> Dict[str, Any]:
        """
        Upsert normalized campaign records and their tasks, then derive dynamic
        prerequisites and apply the cross-campaign template.
        """
        results: Dict[str, Any] = {
            "tents_created": 0,
            "tents_updated": 0,
            "quests_created": 0,
            "quests_updated": 0,
            "errors": [],
        }
        task_id_to_quest_id: Dict[str, int] = {}
        template_keys: Dict[str, int] = {}

        for raw in campaigns:
            label = raw.get("event_id") if isinstance(raw, dict) else getattr(raw, "event_id", None)
            try:
                campaign = raw if isinstance(raw, CampaignRecord) else CampaignRecord.model_validate(raw)
                tent, created = QuestStore.upsert_tent(campaign.to_values())
                results["tents_created" if created else "tents_updated"] += 1
            except Exception as exc:
                logger.warning("sync.tent_failed", extra={"event_id": label, "error": str(exc)})
                results["errors"].append(f"Error processing tent {label}: {exc}")
                continue

            tent_type = campaign.resolved_tent_type()
            for task in campaign.tasks:
                try:
                    quest, created = QuestStore.upsert_quest(task.to_values(tent.id))
                    results["quests_created" if created else "quests_updated"] += 1
                    task_id_to_quest_id[quest.task_id] = quest.id
                    slot = template_slot(tent_type, quest)
                    if slot:
                        template_keys[slot] = quest.id
                except Exception as exc:
                    logger.warning("sync.quest_failed", extra={"task_id": task.task_id, "error": str(exc)})
                    results["errors"].append(f"Error processing quest {task.task_id}: {exc}")

        # Prerequisites may point at tasks of campaigns imported earlier
        lookup = {**QuestStore.task_id_to_quest_id_map(), **task_id_to_quest_id}
        self._prerequisites.apply_dynamic_prerequisites(lookup)
        try:
            self._prerequisites.set_custom_cross_campaign_rules(template_keys)
        except AppError as exc:
            results["errors"].append(exc.message)

        logger.info(
            "sync.completed",
            extra={k: (len(v) if isinstance(v, list) else v) for k, v in results.items()},
        )
        return results

    def set_predefined_cross_campaign_rules(self) -> Dict[str, Any]:
        keys = keys_from_stored_tents(QuestStore.list_tents(with_quests=True))
        applied = self._prerequisites.set_custom_cross_campaign_rules(keys)
        return {
            "success": True,
            "message": "Predefined cross-campaign rules set successfully",
            "applied": applied,
        }

    # Participation ---------------------------------------------------
    @staticmethod
    def _entry_from_raw(raw: Dict[str, Any], quest_ids: Dict[str, int]) -> ParticipationEntry:
        task_id = raw.get("task_id")
        if not task_id:
            raise ValidationError("Participation entry is missing task_id", fields={"task_id": "required"})
        try:
            status = ParticipationStatus(str(raw.get("status") or "").upper())
        except ValueError:
            raise ValidationError(
                f"Unknown participation status for task {task_id}",
                fields={"status": "must be one of VALID, INVALID, PENDING, REJECTED"},
            )
        participated_at = parse_datetime(raw.get("participated_at") or raw.get("created_at")) or utc_now()
        return ParticipationEntry(
            task_id=str(task_id),
            quest_id=quest_ids.get(str(task_id)),
            points=int(raw.get("points") or 0),
            xp=int(raw.get("xp") or 0),
            status=status,
            provider_id=raw.get("provider_id"),
            participated_at=participated_at,
            task_data=raw.get("task_data"),
        )

    def store_user_task_participation(
        self, user_id: str, event_id: str, raw_entries: List[Dict[str, Any]]
    ) -> Dict[str, Any]:
        tent = QuestStore.get_tent_by_event_id(event_id)
        quest_ids = {q.task_id: q.id for q in (QuestStore.list_quests(tent_id=tent.id) if tent else [])}
        entries = [self._entry_from_raw(raw, quest_ids) for raw in raw_entries]

        previous = QuestStore.get_participation(user_id, event_id)
        already_valid = {p.task_id for p in previous.participations if p.is_completed} if previous else set()

        record = QuestStore.upsert_participation(user_id, event_id, tent.id if tent else None, entries)

        newly_completed = [
            p.task_id for p in record.participations
            if p.is_completed and p.task_id not in already_valid
        ]
        for task_id in newly_completed:
            self.handle_quest_completion(user_id, event_id, task_id)

        return {
            "message": "User task participation stored successfully",
            "stored": True,
            "newly_completed": newly_completed,
            "data": record.to_dict(),
            "stats": {
                "total_participations": len(record.participations),
                "completed_tasks_count": record.completed_tasks_count,
                "total_points": record.total_points,
                "total_xp": record.total_xp,
            },
        }

    async def _refresh_one(self, user_id: str, tent: Tent, source: ParticipationSource) -> Dict[str, Any]:
        raw_entries = await source(user_id, tent.event_id)
        return await asyncio.to_thread(self.store_user_task_participation, user_id, tent.event_id, raw_entries)

    async def refresh_participations_for_tents(
        self, user_id: str, tent_list: Iterable[Tent], source: ParticipationSource
    ) -> Dict[str, int]:
        """Refresh every tent concurrently; one failing tent never aborts the others."""
        targets = [t for t in tent_list if t.event_id]
        outcomes = await asyncio.gather(
            *(self._refresh_one(user_id, tent, source) for tent in targets),
            return_exceptions=True,
        )
        failed = 0
        for tent, outcome in zip(targets, outcomes):
            if isinstance(outcome, BaseException):
                failed += 1
                logger.error(
                    "participation.refresh_failed",
                    extra={"user_id": user_id, "event_id": tent.event_id, "error": str(outcome)},
                )
        return {"refreshed": len(targets) - failed, "failed": failed}

    def get_user_participations(self, user_id: str) -> List[dict]:
        return [record.to_dict() for record in QuestStore.list_participations(user_id)]

    # Completion side effects -----------------------------------------
    def handle_quest_completion(self, user_id: str, event_id: str, task_id: str) -> Optional[Dict[str, Any]]:
        """
        Award XP for a completed task and re-check meter visibility.

        Runs as a side effect of other flows, so failures are logged and
        ``None`` is returned instead of raising.
        """
        try:
            quest = QuestStore.get_quest_by_task_id(task_id)
            tent = QuestStore.get_tent_by_event_id(event_id)
            if quest is None or tent is None:
                return None
            result = self._progress.process_quest_completion(user_id, quest.xp, tent.tent_type)
            self._progress.check_meter_visibility(user_id)
            return result
        except Exception as exc:
            logger.error(
                "progress.completion_side_effect_failed",
                extra={"user_id": user_id, "task_id": task_id, "error": str(exc)},
            )
            return None


quest_service = QuestService()
