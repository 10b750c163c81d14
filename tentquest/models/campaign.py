"""
Normalized campaign import records.

The provider client (outside this service) hands campaigns over in this
shape; field names follow the stored tent / quest columns.
"""
from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field

from tentquest.models.quest import EDUCATIONAL_TENT_TYPE, SOCIAL_TENT_TYPE, TentState

SUMMARY_KEYS = (
    "totalParticipants",
    "totalPoints",
    "totalPointsEarned",
    "totalTaskParticipation",
    "totalTasks",
    "totalXP",
)


class TaskRecord(BaseModel):
    task_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    order: Optional[int] = None
    xp: Optional[int] = 0
    points: Optional[int] = 0
    task_type: Optional[str] = None
    parent_id: Optional[str] = None
    participant_count: Optional[int] = 0
    guard_config: Optional[Dict[str, Any]] = None
    info: Optional[Dict[str, Any]] = None

    def to_values(self, tent_id: int) -> Dict[str, Any]:
        condition = (self.guard_config or {}).get("condition") or "AND"
        return {
            "tent_id": tent_id,
            "task_id": self.task_id,
            "title": self.title,
            "description": self.description,
            "order": self.order or 1,
            "xp": self.xp or 0,
            "points": self.points or 0,
            "task_type": self.task_type,
            "parent_id": self.parent_id,
            "participant_count": self.participant_count or 0,
            "guard_config": self.guard_config,
            "info": self.info,
            # Re-derived after every import
            "dynamic_prerequisites": [],
            "custom_prerequisites": [],
            "prerequisite_condition": "OR" if str(condition).upper() == "OR" else "AND",
        }


class CampaignRecord(BaseModel):
    event_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    tent_type: Optional[str] = None
    state: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    public_link: Optional[str] = None
    banner_url: Optional[str] = None
    reward_title: Optional[str] = None
    reward_subtitle: Optional[str] = None
    summary: Dict[str, Any] = Field(default_factory=dict)
    tasks: List[TaskRecord] = Field(default_factory=list)

    def resolved_tent_type(self) -> str:
        """Explicit type wins; otherwise inferred from the title, defaulting to Social."""
        known = {SOCIAL_TENT_TYPE.lower(): SOCIAL_TENT_TYPE, EDUCATIONAL_TENT_TYPE.lower(): EDUCATIONAL_TENT_TYPE}
        if self.tent_type:
            return known.get(self.tent_type.strip().lower(), self.tent_type)
        lowered = self.title.lower()
        if "social" in lowered:
            return SOCIAL_TENT_TYPE
        if "educational" in lowered:
            return EDUCATIONAL_TENT_TYPE
        return SOCIAL_TENT_TYPE

    def resolved_state(self) -> TentState:
        try:
            return TentState((self.state or TentState.DRAFT.value).upper())
        except ValueError:
            return TentState.DRAFT

    def to_values(self) -> Dict[str, Any]:
        return {
            "event_id": self.event_id,
            "tent_name": self.public_link or self.title,
            "title": self.title,
            "description": self.description,
            "tent_type": self.resolved_tent_type(),
            "state": self.resolved_state(),
            "start_time": self.start_time,
            "end_time": self.end_time,
            "public_link": self.public_link,
            "banner_url": self.banner_url,
            "reward_title": self.reward_title,
            "reward_subtitle": self.reward_subtitle,
            "summary": {key: int(self.summary.get(key) or 0) for key in SUMMARY_KEYS},
        }
