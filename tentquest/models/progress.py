from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum, IntEnum
from typing import Dict, List, Optional


class SafetyStage(IntEnum):
    STAGE_1 = 1
    STAGE_2 = 2
    STAGE_3 = 3
    STAGE_4 = 4
    STAGE_5 = 5

    @classmethod
    def clamp(cls, value: int) -> "SafetyStage":
        return cls(max(cls.STAGE_1, min(cls.STAGE_5, int(value))))


MIN_STAGE = SafetyStage.STAGE_1
MAX_STAGE = SafetyStage.STAGE_5
DEFAULT_STAGE = SafetyStage.STAGE_3

# XP added on quest completion while the safety meter is visible
STAGE_BONUS: Dict[SafetyStage, int] = {
    SafetyStage.STAGE_1: -10,
    SafetyStage.STAGE_2: -5,
    SafetyStage.STAGE_3: 0,
    SafetyStage.STAGE_4: 5,
    SafetyStage.STAGE_5: 10,
}


class ActivityType(str, Enum):
    LOGIN = "LOGIN"
    QUEST_COMPLETED = "QUEST_COMPLETED"
    SOCIAL_TASK = "SOCIAL_TASK"
    EDUCATIONAL_TASK = "EDUCATIONAL_TASK"


class RewardType(str, Enum):
    MYSTERY_BOX = "MYSTERY_BOX"
    MULTIPLIER = "MULTIPLIER"
    BOTH = "BOTH"


@dataclass
class UserProgress:
    """
    Domain model for a user's XP / level / safety meter. UTC only, no direct DB concerns.
    """

    user_id: str
    last_safety_check: datetime
    current_xp: int = 0
    current_level: int = 1
    total_lifetime_xp: int = 0
    xp_meter_visible: bool = False
    safety_meter_visible: bool = False
    current_stage: int = DEFAULT_STAGE
    last_login_date: Optional[datetime] = None
    last_quest_completion_date: Optional[datetime] = None
    last_social_task_date: Optional[datetime] = None
    last_educational_task_date: Optional[datetime] = None

    @property
    def stage(self) -> SafetyStage:
        return SafetyStage.clamp(self.current_stage)

    def stage_bonus(self) -> int:
        return STAGE_BONUS[self.stage]

    def current_xp_with_stage(self) -> int:
        if not self.safety_meter_visible:
            return self.total_lifetime_xp
        return max(0, self.current_xp + self.stage_bonus())

    def should_degrade(self, now: datetime, window: timedelta = timedelta(hours=24)) -> bool:
        """No login within the window AND at least one task category idle within it."""
        cutoff = now - window

        def recent(moment: Optional[datetime]) -> bool:
            return moment is not None and moment >= cutoff

        if recent(self.last_login_date):
            return False
        return not recent(self.last_social_task_date) or not recent(self.last_educational_task_date)

    def to_dict(self) -> dict:
        def iso(moment: Optional[datetime]) -> Optional[str]:
            return moment.isoformat() if moment else None

        return {
            "user_id": self.user_id,
            "current_xp": self.current_xp,
            "current_level": self.current_level,
            "total_lifetime_xp": self.total_lifetime_xp,
            "xp_meter_visible": self.xp_meter_visible,
            "safety_meter_visible": self.safety_meter_visible,
            "current_stage": self.current_stage,
            "last_login_date": iso(self.last_login_date),
            "last_quest_completion_date": iso(self.last_quest_completion_date),
            "last_social_task_date": iso(self.last_social_task_date),
            "last_educational_task_date": iso(self.last_educational_task_date),
            "last_safety_check": iso(self.last_safety_check),
        }


@dataclass
class LevelReward:
    level: int
    reward_type: RewardType
    mystery_box_count: int = 0
    multiplier_value: float = 1.0
    description: str = ""
    is_active: bool = True

    def to_dict(self) -> dict:
        return {
            "level": self.level,
            "reward_type": self.reward_type.value,
            "mystery_box_count": self.mystery_box_count,
            "multiplier_value": self.multiplier_value,
            "description": self.description,
            "is_active": self.is_active,
        }


DEFAULT_LEVEL_REWARDS: List[LevelReward] = [
    LevelReward(level=1, reward_type=RewardType.MYSTERY_BOX, mystery_box_count=1,
                multiplier_value=1.0, description="Welcome mystery box"),
    LevelReward(level=2, reward_type=RewardType.MULTIPLIER, mystery_box_count=0,
                multiplier_value=1.1, description="10% XP boost"),
    LevelReward(level=3, reward_type=RewardType.BOTH, mystery_box_count=1,
                multiplier_value=1.15, description="Mystery box + 15% XP boost"),
    LevelReward(level=5, reward_type=RewardType.BOTH, mystery_box_count=2,
                multiplier_value=1.2, description="2 Mystery boxes + 20% XP boost"),
    LevelReward(level=10, reward_type=RewardType.BOTH, mystery_box_count=3,
                multiplier_value=1.5, description="3 Mystery boxes + 50% XP boost"),
]
