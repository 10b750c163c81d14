from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from tentquest.core.config import settings
from tentquest.features.quests.repository import QuestStore
from tentquest.features.progress.repository import ProgressStore
from tentquest.models.clock import utc_now
from tentquest.models.progress import (
    DEFAULT_LEVEL_REWARDS,
    MAX_STAGE,
    MIN_STAGE,
    ActivityType,
    UserProgress,
)
from tentquest.models.quest import EDUCATIONAL_TENT_TYPE, SOCIAL_TENT_TYPE, ParticipationStatus

logger = logging.getLogger("tentquest.progress")

XP_METER_THRESHOLD = 1
SAFETY_METER_THRESHOLD = 2


def _clamp_stage(stage: int) -> int:
    return max(int(MIN_STAGE), min(int(MAX_STAGE), stage))


class ProgressService:
    """
    Per-user XP / level / safety meter state machine.

    Transitions: quest completion (XP, level, stage +1), activity pings,
    meter visibility flips (one-way) and the daily safety decay (stage -1).
    Every read or write creates the user's record on first touch.
    """

    def __init__(self, xp_per_level: Optional[int] = None, check_interval_hours: Optional[int] = None):
        self._xp_per_level = xp_per_level or settings.XP_PER_LEVEL
        self._window = timedelta(hours=check_interval_hours or settings.SAFETY_CHECK_INTERVAL_HOURS)

    def get_user_progress(self, user_id: str) -> Dict[str, Any]:
        progress = ProgressStore.find_or_create(user_id)
        reward = ProgressStore.get_level_reward(progress.current_level)
        return {
            "xp_meter": {
                "visible": progress.xp_meter_visible,
                "current_xp": progress.current_xp_with_stage(),
                "current_level": progress.current_level,
                "total_lifetime_xp": progress.total_lifetime_xp,
                "level_rewards": reward.to_dict() if reward else None,
            },
            "safety_meter": {
                "visible": progress.safety_meter_visible,
                "current_stage": progress.current_stage,
                "xp_bonus": progress.stage_bonus(),
            },
        }

    def update_user_activity(
        self,
        user_id: str,
        activity_type: ActivityType,
        tent_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> UserProgress:
        return ProgressStore.update(user_id, self._activity_values(activity_type, tent_type, now or utc_now()))

    @staticmethod
    def _activity_values(activity_type: ActivityType, tent_type: Optional[str], now: datetime) -> Dict[str, datetime]:
        activity = ActivityType(activity_type)
        if activity == ActivityType.LOGIN:
            return {"last_login_date": now}
        if activity == ActivityType.SOCIAL_TASK:
            return {"last_social_task_date": now}
        if activity == ActivityType.EDUCATIONAL_TASK:
            return {"last_educational_task_date": now}

        values = {"last_quest_completion_date": now}
        if tent_type == SOCIAL_TENT_TYPE:
            values["last_social_task_date"] = now
        elif tent_type == EDUCATIONAL_TENT_TYPE:
            values["last_educational_task_date"] = now
        return values

    def process_quest_completion(
        self,
        user_id: str,
        quest_xp: int,
        tent_type: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> Dict[str, Any]:
        """
        Award XP for a completed quest.

        The stage bonus applies only once the safety meter is visible, and the
        awarded total never goes below zero. The whole read-modify-write runs
        under a row lock so concurrent completions for one user serialize.
        """
        moment = now or utc_now()
        base_xp = max(0, int(quest_xp or 0))

        with ProgressStore.locked(user_id) as progress:
            stage_bonus = progress.stage_bonus() if progress.safety_meter_visible else 0
            # Never negative: a stage penalty only shrinks this award
            awarded = max(0, base_xp + stage_bonus)

            new_total = progress.total_lifetime_xp + awarded
            levels_gained = new_total // self._xp_per_level
            progress.current_xp = new_total % self._xp_per_level
            progress.current_level = progress.current_level + levels_gained
            progress.total_lifetime_xp = new_total

            if progress.safety_meter_visible:
                progress.current_stage = _clamp_stage(progress.current_stage + 1)

            for field_name, value in self._activity_values(ActivityType.QUEST_COMPLETED, tent_type, moment).items():
                setattr(progress, field_name, value)

        leveled_up = levels_gained > 0
        logger.info(
            "progress.quest_completed",
            extra={
                "user_id": user_id,
                "xp_awarded": awarded,
                "stage_bonus": stage_bonus,
                "leveled_up": leveled_up,
            },
        )
        return {
            "total_xp_gained": awarded,
            "stage_bonus": stage_bonus,
            "leveled_up": leveled_up,
            "new_level": progress.current_level if leveled_up else None,
            "user_progress": progress.to_dict(),
        }

    def get_completed_quests_count(self, user_id: str) -> int:
        return sum(
            1
            for record in QuestStore.list_participations(user_id)
            for entry in record.participations
            if entry.status == ParticipationStatus.VALID
        )

    def check_meter_visibility(self, user_id: str) -> UserProgress:
        """Flip the XP meter on at 1 completion and the safety meter at 2. Never flips back."""
        progress = ProgressStore.find_or_create(user_id)
        completed = self.get_completed_quests_count(user_id)

        updates: Dict[str, bool] = {}
        if completed >= XP_METER_THRESHOLD and not progress.xp_meter_visible:
            updates["xp_meter_visible"] = True
            logger.info("progress.xp_meter_unlocked", extra={"user_id": user_id})
        if completed >= SAFETY_METER_THRESHOLD and not progress.safety_meter_visible:
            updates["safety_meter_visible"] = True
            logger.info("progress.safety_meter_unlocked", extra={"user_id": user_id})

        if not updates:
            return progress
        return ProgressStore.update(user_id, updates)

    def process_daily_safety_meter_check(self, now: Optional[datetime] = None) -> Dict[str, Any]:
        """
        Degrade the safety stage of inactive users by one (floor at stage 1).

        Candidates are users with a visible safety meter not checked within
        the window. Every candidate's ``last_safety_check`` is advanced in one
        bulk statement afterwards. Failures are collected, never raised.
        """
        moment = now or utc_now()
        result: Dict[str, Any] = {"users_checked": 0, "users_degraded": 0, "errors": []}

        try:
            candidates = ProgressStore.find_users_for_safety_check(moment - self._window)
            result["users_checked"] = len(candidates)

            checked: List[str] = []
            for progress in candidates:
                try:
                    if progress.should_degrade(moment, self._window):
                        with ProgressStore.locked(progress.user_id) as current:
                            current.current_stage = _clamp_stage(current.current_stage - 1)
                        result["users_degraded"] += 1
                        logger.info("progress.safety_degraded", extra={"user_id": progress.user_id})
                    checked.append(progress.user_id)
                except Exception as exc:
                    result["errors"].append(f"Error processing user {progress.user_id}: {exc}")

            ProgressStore.bulk_update_safety_check(checked, moment)
        except Exception as exc:
            logger.error("progress.safety_check_failed", extra={"error": str(exc)})
            result["errors"].append(f"Global error: {exc}")

        logger.info(
            "progress.safety_check_completed",
            extra={
                "users_checked": result["users_checked"],
                "users_degraded": result["users_degraded"],
                "errors_count": len(result["errors"]),
            },
        )
        return result

    def initialize_level_rewards(self) -> List[int]:
        """Seed the default rewards; existing levels are left untouched. Returns created levels."""
        created = []
        for reward in DEFAULT_LEVEL_REWARDS:
            if ProgressStore.level_reward_exists(reward.level):
                continue
            if ProgressStore.create_level_reward(reward):
                created.append(reward.level)
                logger.info("progress.level_reward_created", extra={"level": reward.level})
        return created


progress_service = ProgressService()
