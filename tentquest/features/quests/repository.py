"""
tentquest/features/quests/repository.py

SQL persistence for tents, quests and per-user task participation.

Pure data access: rows in, domain models out. Lock rules, unlock policy and
XP semantics live in the services that call this module.
"""

from typing import Any, Dict, Iterable, List, Optional, Tuple

from sqlalchemy import select, insert, update

from tentquest.core.database import (
    get_db_session,
    tents,
    quests,
    user_task_participations,
)
from tentquest.models.clock import as_utc, parse_datetime, utc_now
from tentquest.models.guard import PrerequisiteCondition
from tentquest.models.quest import (
    ParticipationEntry,
    ParticipationStatus,
    Quest,
    Tent,
    TentState,
    UserTaskParticipation,
)

TENT_FIELDS = (
    "event_id", "tent_name", "title", "description", "tent_type", "state",
    "start_time", "end_time", "public_link", "banner_url", "reward_title",
    "reward_subtitle", "summary",
)

QUEST_FIELDS = (
    "tent_id", "task_id", "title", "description", "order", "xp", "points",
    "task_type", "parent_id", "participant_count", "guard_config", "info",
    "dynamic_prerequisites", "prerequisite_condition", "custom_prerequisites",
)


def _tent_from_row(row, quest_list: Optional[List[Quest]] = None) -> Tent:
    try:
        state = TentState(row.state)
    except ValueError:
        state = TentState.DRAFT
    return Tent(
        id=row.id,
        event_id=row.event_id,
        tent_name=row.tent_name,
        title=row.title,
        description=row.description,
        tent_type=row.tent_type,
        state=state,
        start_time=as_utc(row.start_time),
        end_time=as_utc(row.end_time),
        public_link=row.public_link,
        banner_url=row.banner_url,
        reward_title=row.reward_title,
        reward_subtitle=row.reward_subtitle,
        summary=dict(row.summary or {}),
        quests=list(quest_list or []),
    )


def _quest_from_row(row) -> Quest:
    mapping = row._mapping
    return Quest(
        id=mapping["id"],
        tent_id=mapping["tent_id"],
        task_id=mapping["task_id"],
        title=mapping["title"],
        description=mapping["description"],
        order=mapping["order"] if mapping["order"] is not None else 1,
        xp=mapping["xp"] or 0,
        points=mapping["points"] or 0,
        task_type=mapping["task_type"],
        parent_id=mapping["parent_id"],
        participant_count=mapping["participant_count"] or 0,
        guard_config=mapping["guard_config"],
        info=mapping["info"],
        dynamic_prerequisites=[int(i) for i in (mapping["dynamic_prerequisites"] or [])],
        prerequisite_condition=PrerequisiteCondition.parse(mapping["prerequisite_condition"]),
        custom_prerequisites=[int(i) for i in (mapping["custom_prerequisites"] or [])],
    )


def _entry_to_json(entry: ParticipationEntry) -> Dict[str, Any]:
    return entry.to_dict()


def _entry_from_json(data: Dict[str, Any]) -> ParticipationEntry:
    return ParticipationEntry(
        task_id=data["task_id"],
        quest_id=data.get("quest_id"),
        points=data.get("points") or 0,
        xp=data.get("xp") or 0,
        status=ParticipationStatus(data.get("status") or ParticipationStatus.PENDING.value),
        provider_id=data.get("provider_id"),
        participated_at=parse_datetime(data.get("participated_at")) or utc_now(),
        task_data=data.get("task_data"),
    )


def _participation_from_row(row) -> UserTaskParticipation:
    return UserTaskParticipation(
        user_id=row.user_id,
        event_id=row.event_id,
        tent_id=row.tent_id,
        participations=[_entry_from_json(p) for p in (row.participations or [])],
        total_points=row.total_points,
        total_xp=row.total_xp,
        completed_tasks_count=row.completed_tasks_count,
        last_updated=as_utc(row.last_updated),
    )


def _pick(data: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    values = {k: data[k] for k in fields if k in data}
    if isinstance(values.get("state"), TentState):
        values["state"] = values["state"].value
    if isinstance(values.get("prerequisite_condition"), PrerequisiteCondition):
        values["prerequisite_condition"] = values["prerequisite_condition"].value
    return values


class QuestStore:
    """SQL-backed tent / quest / participation store."""

    # Tents -----------------------------------------------------------
    @staticmethod
    def create_tent(data: Dict[str, Any]) -> Tent:
        now = utc_now()
        values = _pick(data, TENT_FIELDS)
        values.setdefault("summary", {})
        with get_db_session() as session:
            result = session.execute(
                insert(tents).values(**values, created_at=now, updated_at=now)
            )
            tent_id = result.inserted_primary_key[0]
            row = session.execute(select(tents).where(tents.c.id == tent_id)).first()
            return _tent_from_row(row)

    @staticmethod
    def update_tent(tent_id: int, data: Dict[str, Any]) -> Optional[Tent]:
        values = _pick(data, TENT_FIELDS)
        with get_db_session() as session:
            session.execute(
                update(tents).where(tents.c.id == tent_id).values(**values, updated_at=utc_now())
            )
            row = session.execute(select(tents).where(tents.c.id == tent_id)).first()
            return _tent_from_row(row) if row else None

    @staticmethod
    def upsert_tent(data: Dict[str, Any]) -> Tuple[Tent, bool]:
        """Create or update by ``event_id``. Returns (tent, created)."""
        existing = QuestStore.get_tent_by_event_id(data["event_id"])
        if existing is None:
            return QuestStore.create_tent(data), True
        return QuestStore.update_tent(existing.id, data), False

    @staticmethod
    def get_tent_by_id(tent_id: int, with_quests: bool = False) -> Optional[Tent]:
        with get_db_session() as session:
            row = session.execute(select(tents).where(tents.c.id == tent_id)).first()
        if row is None:
            return None
        return _tent_from_row(row, QuestStore.list_quests(tent_id=row.id) if with_quests else None)

    @staticmethod
    def get_tent_by_event_id(event_id: str, with_quests: bool = False) -> Optional[Tent]:
        with get_db_session() as session:
            row = session.execute(select(tents).where(tents.c.event_id == event_id)).first()
        if row is None:
            return None
        return _tent_from_row(row, QuestStore.list_quests(tent_id=row.id) if with_quests else None)

    @staticmethod
    def list_tents(with_quests: bool = True) -> List[Tent]:
        with get_db_session() as session:
            tent_rows = session.execute(select(tents).order_by(tents.c.id)).fetchall()
            quest_rows = (
                session.execute(select(quests).order_by(quests.c.tent_id, quests.c["order"])).fetchall()
                if with_quests else []
            )

        by_tent: Dict[int, List[Quest]] = {}
        for row in quest_rows:
            quest = _quest_from_row(row)
            by_tent.setdefault(quest.tent_id, []).append(quest)
        return [_tent_from_row(row, by_tent.get(row.id)) for row in tent_rows]

    # Quests ----------------------------------------------------------
    @staticmethod
    def create_quest(data: Dict[str, Any]) -> Quest:
        return QuestStore.bulk_insert_quests([data])[0]

    @staticmethod
    def bulk_insert_quests(rows: List[Dict[str, Any]]) -> List[Quest]:
        if not rows:
            return []
        now = utc_now()
        created: List[Quest] = []
        with get_db_session() as session:
            for data in rows:
                values = _pick(data, QUEST_FIELDS)
                values.setdefault("dynamic_prerequisites", [])
                values.setdefault("custom_prerequisites", [])
                result = session.execute(
                    insert(quests).values(**values, created_at=now, updated_at=now)
                )
                quest_id = result.inserted_primary_key[0]
                row = session.execute(select(quests).where(quests.c.id == quest_id)).first()
                created.append(_quest_from_row(row))
        return created

    @staticmethod
    def update_quest(quest_id: int, data: Dict[str, Any]) -> Optional[Quest]:
        values = _pick(data, QUEST_FIELDS)
        with get_db_session() as session:
            session.execute(
                update(quests).where(quests.c.id == quest_id).values(**values, updated_at=utc_now())
            )
            row = session.execute(select(quests).where(quests.c.id == quest_id)).first()
            return _quest_from_row(row) if row else None

    @staticmethod
    def upsert_quest(data: Dict[str, Any]) -> Tuple[Quest, bool]:
        """Create or update by ``task_id``. Returns (quest, created)."""
        existing = QuestStore.get_quest_by_task_id(data["task_id"])
        if existing is None:
            return QuestStore.create_quest(data), True
        return QuestStore.update_quest(existing.id, data), False

    @staticmethod
    def get_quest(quest_id: int) -> Optional[Quest]:
        with get_db_session() as session:
            row = session.execute(select(quests).where(quests.c.id == quest_id)).first()
        return _quest_from_row(row) if row else None

    @staticmethod
    def get_quests_by_ids(quest_ids: Iterable[int]) -> Dict[int, Quest]:
        ids = list({int(i) for i in quest_ids})
        if not ids:
            return {}
        with get_db_session() as session:
            rows = session.execute(select(quests).where(quests.c.id.in_(ids))).fetchall()
        return {row.id: _quest_from_row(row) for row in rows}

    @staticmethod
    def get_quest_by_task_id(task_id: str) -> Optional[Quest]:
        with get_db_session() as session:
            row = session.execute(select(quests).where(quests.c.task_id == task_id)).first()
        return _quest_from_row(row) if row else None

    @staticmethod
    def get_quests_by_task_ids(task_ids: Iterable[str]) -> List[Quest]:
        ids = list(task_ids)
        if not ids:
            return []
        with get_db_session() as session:
            rows = session.execute(select(quests).where(quests.c.task_id.in_(ids))).fetchall()
        return [_quest_from_row(row) for row in rows]

    @staticmethod
    def list_quests(tent_id: Optional[int] = None) -> List[Quest]:
        stmt = select(quests)
        if tent_id is not None:
            stmt = stmt.where(quests.c.tent_id == tent_id)
        stmt = stmt.order_by(quests.c["order"], quests.c.id)
        with get_db_session() as session:
            rows = session.execute(stmt).fetchall()
        return [_quest_from_row(row) for row in rows]

    @staticmethod
    def list_quests_by_event_id(event_id: str) -> List[Quest]:
        tent = QuestStore.get_tent_by_event_id(event_id)
        if tent is None:
            return []
        return QuestStore.list_quests(tent_id=tent.id)

    @staticmethod
    def list_quests_by_parent_id(parent_id: str) -> List[Quest]:
        with get_db_session() as session:
            rows = session.execute(
                select(quests).where(quests.c.parent_id == parent_id).order_by(quests.c["order"])
            ).fetchall()
        return [_quest_from_row(row) for row in rows]

    @staticmethod
    def task_id_to_quest_id_map() -> Dict[str, int]:
        with get_db_session() as session:
            rows = session.execute(select(quests.c.id, quests.c.task_id)).fetchall()
        return {row.task_id: row.id for row in rows}

    @staticmethod
    def quest_id_to_task_id_map() -> Dict[int, str]:
        with get_db_session() as session:
            rows = session.execute(select(quests.c.id, quests.c.task_id)).fetchall()
        return {row.id: row.task_id for row in rows}

    @staticmethod
    def update_dynamic_prerequisites(
        quest_id: int, prerequisite_ids: List[int], condition: PrerequisiteCondition
    ) -> Optional[Quest]:
        return QuestStore.update_quest(quest_id, {
            "dynamic_prerequisites": [int(i) for i in prerequisite_ids],
            "prerequisite_condition": condition,
        })

    @staticmethod
    def update_custom_prerequisites(quest_id: int, prerequisite_ids: List[int]) -> Optional[Quest]:
        return QuestStore.update_quest(quest_id, {
            "custom_prerequisites": [int(i) for i in prerequisite_ids],
        })

    # Participation ---------------------------------------------------
    @staticmethod
    def upsert_participation(
        user_id: str,
        event_id: str,
        tent_id: Optional[int],
        entries: List[ParticipationEntry],
    ) -> UserTaskParticipation:
        """Merge ``entries`` into the (user, event) row, creating it on first write."""
        now = utc_now()
        with get_db_session() as session:
            row = session.execute(
                select(user_task_participations)
                .where(
                    user_task_participations.c.user_id == user_id,
                    user_task_participations.c.event_id == event_id,
                )
                .with_for_update()
            ).first()

            if row is None:
                record = UserTaskParticipation(user_id=user_id, event_id=event_id, tent_id=tent_id)
            else:
                record = _participation_from_row(row)
                if tent_id is not None:
                    record.tent_id = tent_id
            record.merge(entries)
            record.last_updated = now

            values = {
                "tent_id": record.tent_id,
                "participations": [_entry_to_json(p) for p in record.participations],
                "total_points": record.total_points,
                "total_xp": record.total_xp,
                "completed_tasks_count": record.completed_tasks_count,
                "last_updated": now,
            }
            if row is None:
                session.execute(
                    insert(user_task_participations).values(user_id=user_id, event_id=event_id, **values)
                )
            else:
                session.execute(
                    update(user_task_participations)
                    .where(user_task_participations.c.id == row.id)
                    .values(**values)
                )
            return record

    @staticmethod
    def get_participation(user_id: str, event_id: str) -> Optional[UserTaskParticipation]:
        with get_db_session() as session:
            row = session.execute(
                select(user_task_participations).where(
                    user_task_participations.c.user_id == user_id,
                    user_task_participations.c.event_id == event_id,
                )
            ).first()
        return _participation_from_row(row) if row else None

    @staticmethod
    def list_participations(user_id: str) -> List[UserTaskParticipation]:
        with get_db_session() as session:
            rows = session.execute(
                select(user_task_participations)
                .where(user_task_participations.c.user_id == user_id)
                .order_by(user_task_participations.c.id)
            ).fetchall()
        return [_participation_from_row(row) for row in rows]
