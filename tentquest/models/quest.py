"""
Quest and tent domain models.

Tents are provider campaigns, quests are provider tasks. Both are keyed
internally by integer ids and externally by the provider's ``event_id`` /
``task_id``. No direct DB concerns here; rows are mapped in the repository.
"""

from __future__ import annotations

from dataclasses import dataclass, field, asdict
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional, Union

from tentquest.models.guard import GuardConfig, PrerequisiteCondition

SOCIAL_TENT_TYPE = "Social"
EDUCATIONAL_TENT_TYPE = "Educational"
QUIZ_TASK_TYPE = "QUIZ_PLAY"


class TentState(str, Enum):
    DRAFT = "DRAFT"
    ONGOING = "ONGOING"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"


class ParticipationStatus(str, Enum):
    VALID = "VALID"
    INVALID = "INVALID"
    PENDING = "PENDING"
    REJECTED = "REJECTED"


class QuestType(str, Enum):
    REGULAR = "REGULAR"
    QUIZ = "QUIZ"


class TaskKind(str, Enum):
    """Provider task payload discriminator (``info.__typename``)."""

    TWITTER_FOLLOW = "TwitterFollowTaskData"
    DISCORD_JOIN = "DiscordJoinTaskData"
    NULLABLE = "NullableTaskData"
    LINK = "LinkTaskData"
    QUIZ = "QuizTaskData"
    UNRECOGNIZED = "UNRECOGNIZED"

    @classmethod
    def from_info(cls, info: Optional[Dict[str, Any]]) -> "TaskKind":
        if not info or not isinstance(info, dict):
            return cls.UNRECOGNIZED
        typename = info.get("__typename")
        for kind in cls:
            if kind.value == typename:
                return kind
        return cls.UNRECOGNIZED


@dataclass
class Quest:
    id: int
    tent_id: int
    task_id: str
    title: str
    description: Optional[str] = None
    order: int = 1
    xp: int = 0
    points: int = 0
    task_type: Optional[str] = None
    parent_id: Optional[str] = None
    participant_count: int = 0
    guard_config: Optional[Dict[str, Any]] = None
    info: Optional[Dict[str, Any]] = None
    dynamic_prerequisites: List[PrerequisiteRef] = field(default_factory=list)
    prerequisite_condition: PrerequisiteCondition = PrerequisiteCondition.AND
    custom_prerequisites: List[PrerequisiteRef] = field(default_factory=list)

    @property
    def is_sub_question(self) -> bool:
        return self.parent_id is not None

    @property
    def is_quiz_parent(self) -> bool:
        return self.task_type == QUIZ_TASK_TYPE and self.parent_id is None

    @property
    def quest_type(self) -> QuestType:
        return QuestType.QUIZ if self.is_quiz_parent else QuestType.REGULAR

    @property
    def guard(self) -> Optional[GuardConfig]:
        return GuardConfig.parse(self.guard_config)

    @property
    def task_kind(self) -> TaskKind:
        return TaskKind.from_info(self.info)

    def all_prerequisite_ids(self) -> List[int]:
        """Dynamic and custom prerequisite ids, for graph traversal."""
        return [prerequisite_id(ref) for ref in [*self.dynamic_prerequisites, *self.custom_prerequisites]]

    def to_dict(self) -> dict:
        data = asdict(self)
        data["prerequisite_condition"] = self.prerequisite_condition.value
        data["dynamic_prerequisites"] = [prerequisite_id(ref) for ref in self.dynamic_prerequisites]
        data["custom_prerequisites"] = [prerequisite_id(ref) for ref in self.custom_prerequisites]
        data["quest_type"] = self.quest_type.value
        return data


# A prerequisite is either a bare quest id or a loaded Quest
PrerequisiteRef = Union[int, Quest]


def prerequisite_id(ref: PrerequisiteRef) -> int:
    if isinstance(ref, Quest):
        return ref.id
    return int(ref)


@dataclass
class Tent:
    id: int
    event_id: str
    tent_name: str
    title: str
    description: Optional[str] = None
    tent_type: Optional[str] = None
    state: TentState = TentState.DRAFT
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    public_link: Optional[str] = None
    banner_url: Optional[str] = None
    reward_title: Optional[str] = None
    reward_subtitle: Optional[str] = None
    summary: Dict[str, int] = field(default_factory=dict)
    quests: List[Quest] = field(default_factory=list)

    def sorted_quests(self) -> List[Quest]:
        return sorted(self.quests, key=lambda q: q.order or 0)

    def to_dict(self, include_quests: bool = False) -> dict:
        data = {
            "id": self.id,
            "event_id": self.event_id,
            "tent_name": self.tent_name,
            "title": self.title,
            "description": self.description,
            "tent_type": self.tent_type,
            "state": self.state.value,
            "start_time": self.start_time.isoformat() if self.start_time else None,
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "public_link": self.public_link,
            "banner_url": self.banner_url,
            "reward_title": self.reward_title,
            "reward_subtitle": self.reward_subtitle,
            "summary": dict(self.summary),
        }
        if include_quests:
            data["quests"] = [q.to_dict() for q in self.sorted_quests()]
        return data


@dataclass
class ParticipationEntry:
    task_id: str
    status: ParticipationStatus
    participated_at: datetime
    quest_id: Optional[int] = None
    points: int = 0
    xp: int = 0
    provider_id: Optional[str] = None
    task_data: Optional[Dict[str, Any]] = None

    @property
    def is_completed(self) -> bool:
        return self.status == ParticipationStatus.VALID

    def to_dict(self) -> dict:
        return {
            "task_id": self.task_id,
            "quest_id": self.quest_id,
            "points": self.points,
            "xp": self.xp,
            "status": self.status.value,
            "provider_id": self.provider_id,
            "participated_at": self.participated_at.isoformat(),
            "task_data": self.task_data,
        }


@dataclass
class UserTaskParticipation:
    user_id: str
    event_id: str
    tent_id: Optional[int] = None
    participations: List[ParticipationEntry] = field(default_factory=list)
    total_points: int = 0
    total_xp: int = 0
    completed_tasks_count: int = 0
    last_updated: Optional[datetime] = None

    def recompute_totals(self) -> None:
        self.total_points = sum(p.points for p in self.participations)
        self.total_xp = sum(p.xp for p in self.participations)
        self.completed_tasks_count = sum(1 for p in self.participations if p.is_completed)

    def merge(self, incoming: List[ParticipationEntry]) -> None:
        """Replace entries in place by task id, append new ones, then recompute totals."""
        index = {entry.task_id: i for i, entry in enumerate(self.participations)}
        for entry in incoming:
            position = index.get(entry.task_id)
            if position is None:
                index[entry.task_id] = len(self.participations)
                self.participations.append(entry)
            else:
                self.participations[position] = entry
        self.recompute_totals()

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "event_id": self.event_id,
            "tent_id": self.tent_id,
            "participations": [p.to_dict() for p in self.participations],
            "total_points": self.total_points,
            "total_xp": self.total_xp,
            "completed_tasks_count": self.completed_tasks_count,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }
