from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from tentquest.features.progress.service import progress_service
from tentquest.features.quests.service import quest_service

router = APIRouter(tags=["participations"])


class ParticipationItem(BaseModel):
    task_id: str = Field(..., min_length=1)
    status: Literal["VALID", "INVALID", "PENDING", "REJECTED"]
    points: int = 0
    xp: int = 0
    provider_id: Optional[str] = None
    participated_at: Optional[datetime] = None
    task_data: Optional[Dict[str, Any]] = None


class StoreParticipationRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    event_id: str = Field(..., min_length=1)
    participations: List[ParticipationItem] = Field(default_factory=list)


@router.post("/v1/participations")
def store_participations(req: StoreParticipationRequest):
    """Merge participation entries into the user's record for the tent event."""
    raw_entries = [item.model_dump() for item in req.participations]
    return quest_service.store_user_task_participation(req.user_id, req.event_id, raw_entries)


@router.get("/v1/participations/{user_id}")
def list_participations(user_id: str):
    return {"participations": quest_service.get_user_participations(user_id)}


@router.get("/v1/participations/{user_id}/completed-count")
def completed_count(user_id: str):
    return {"user_id": user_id, "completed_count": progress_service.get_completed_quests_count(user_id)}
