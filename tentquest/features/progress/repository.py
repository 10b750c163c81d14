"""
SQL persistence for user progress and level rewards.

Progress rows are created lazily on first touch with the default stage and
``last_login_date`` / ``last_safety_check`` set to the creation time.
"""

from contextlib import contextmanager
from datetime import datetime
from typing import Any, Dict, Iterator, List, Optional

from sqlalchemy import select, insert, update
from sqlalchemy.exc import IntegrityError

from tentquest.core.database import get_db_session, user_progress, level_rewards
from tentquest.models.clock import as_utc, utc_now
from tentquest.models.progress import DEFAULT_STAGE, LevelReward, RewardType, UserProgress

PROGRESS_FIELDS = (
    "current_xp", "current_level", "total_lifetime_xp", "xp_meter_visible",
    "safety_meter_visible", "current_stage", "last_login_date",
    "last_quest_completion_date", "last_social_task_date",
    "last_educational_task_date", "last_safety_check",
)


def _progress_from_row(row) -> UserProgress:
    return UserProgress(
        user_id=row.user_id,
        current_xp=row.current_xp,
        current_level=row.current_level,
        total_lifetime_xp=row.total_lifetime_xp,
        xp_meter_visible=bool(row.xp_meter_visible),
        safety_meter_visible=bool(row.safety_meter_visible),
        current_stage=row.current_stage,
        last_login_date=as_utc(row.last_login_date),
        last_quest_completion_date=as_utc(row.last_quest_completion_date),
        last_social_task_date=as_utc(row.last_social_task_date),
        last_educational_task_date=as_utc(row.last_educational_task_date),
        last_safety_check=as_utc(row.last_safety_check),
    )


def _reward_from_row(row) -> LevelReward:
    return LevelReward(
        level=row.level,
        reward_type=RewardType(row.reward_type),
        mystery_box_count=row.mystery_box_count,
        multiplier_value=row.multiplier_value,
        description=row.description,
        is_active=bool(row.is_active),
    )


def _progress_values(progress: UserProgress) -> Dict[str, Any]:
    return {field: getattr(progress, field) for field in PROGRESS_FIELDS}


class ProgressStore:
    """SQL-backed user progress / level reward store."""

    @staticmethod
    def _select(session, user_id: str, lock: bool = False):
        stmt = select(user_progress).where(user_progress.c.user_id == user_id)
        if lock:
            stmt = stmt.with_for_update()
        return session.execute(stmt).first()

    @staticmethod
    def _find_or_create(session, user_id: str, lock: bool = False) -> UserProgress:
        row = ProgressStore._select(session, user_id, lock)
        if row is None:
            now = utc_now()
            session.execute(
                insert(user_progress).values(
                    user_id=user_id,
                    current_xp=0,
                    current_level=1,
                    total_lifetime_xp=0,
                    xp_meter_visible=False,
                    safety_meter_visible=False,
                    current_stage=int(DEFAULT_STAGE),
                    last_login_date=now,
                    last_safety_check=now,
                    created_at=now,
                    updated_at=now,
                )
            )
            row = ProgressStore._select(session, user_id, lock)
        return _progress_from_row(row)

    @staticmethod
    def find_or_create(user_id: str) -> UserProgress:
        with get_db_session() as session:
            return ProgressStore._find_or_create(session, user_id)

    @staticmethod
    def get(user_id: str) -> Optional[UserProgress]:
        with get_db_session() as session:
            row = ProgressStore._select(session, user_id)
        return _progress_from_row(row) if row else None

    @staticmethod
    @contextmanager
    def locked(user_id: str) -> Iterator[UserProgress]:
        """
        Yield the user's progress under a row lock; changes made to the
        yielded object are written back in the same transaction.
        """
        with get_db_session() as session:
            progress = ProgressStore._find_or_create(session, user_id, lock=True)
            yield progress
            session.execute(
                update(user_progress)
                .where(user_progress.c.user_id == user_id)
                .values(**_progress_values(progress), updated_at=utc_now())
            )

    @staticmethod
    def update(user_id: str, values: Dict[str, Any]) -> UserProgress:
        """Set the given fields, creating the row first if needed."""
        allowed = {k: v for k, v in values.items() if k in PROGRESS_FIELDS}
        with get_db_session() as session:
            ProgressStore._find_or_create(session, user_id)
            if allowed:
                session.execute(
                    update(user_progress)
                    .where(user_progress.c.user_id == user_id)
                    .values(**allowed, updated_at=utc_now())
                )
            return _progress_from_row(ProgressStore._select(session, user_id))

    @staticmethod
    def find_users_for_safety_check(cutoff: datetime) -> List[UserProgress]:
        with get_db_session() as session:
            rows = session.execute(
                select(user_progress)
                .where(
                    user_progress.c.safety_meter_visible.is_(True),
                    user_progress.c.last_safety_check < cutoff,
                )
                .order_by(user_progress.c.user_id)
            ).fetchall()
        return [_progress_from_row(row) for row in rows]

    @staticmethod
    def bulk_update_safety_check(user_ids: List[str], now: datetime) -> int:
        if not user_ids:
            return 0
        with get_db_session() as session:
            result = session.execute(
                update(user_progress)
                .where(user_progress.c.user_id.in_(user_ids))
                .values(last_safety_check=now, updated_at=now)
            )
            return result.rowcount

    # Level rewards ---------------------------------------------------
    @staticmethod
    def get_level_reward(level: int) -> Optional[LevelReward]:
        with get_db_session() as session:
            row = session.execute(
                select(level_rewards).where(
                    level_rewards.c.level == level,
                    level_rewards.c.is_active.is_(True),
                )
            ).first()
        return _reward_from_row(row) if row else None

    @staticmethod
    def level_reward_exists(level: int) -> bool:
        with get_db_session() as session:
            row = session.execute(
                select(level_rewards.c.level).where(level_rewards.c.level == level)
            ).first()
        return row is not None

    @staticmethod
    def create_level_reward(reward: LevelReward) -> bool:
        """Insert a reward row. Returns False if the level already exists."""
        try:
            with get_db_session() as session:
                session.execute(insert(level_rewards).values(**reward.to_dict()))
            return True
        except IntegrityError:
            return False

    @staticmethod
    def list_active_level_rewards() -> List[LevelReward]:
        with get_db_session() as session:
            rows = session.execute(
                select(level_rewards)
                .where(level_rewards.c.is_active.is_(True))
                .order_by(level_rewards.c.level)
            ).fetchall()
        return [_reward_from_row(row) for row in rows]
