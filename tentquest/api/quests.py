from __future__ import annotations

from typing import List

from fastapi import APIRouter, Query
from pydantic import BaseModel, Field

from tentquest.features.quests.service import quest_service

router = APIRouter(tags=["quests"])


class CustomPrerequisitesRequest(BaseModel):
    quest_id: int = Field(..., ge=1)
    custom_prerequisites: List[int] = Field(default_factory=list)


@router.get("/v1/tents")
def list_tents(user_id: str = Query(..., min_length=1)):
    """All tents with quest counts, completion and lock state for the user."""
    tents = quest_service.list_tents_with_status(user_id)
    return {
        "tents": tents,
        "message": "Tents fetched successfully" if tents else "No tents found",
    }


@router.get("/v1/tents/{event_id}/quests")
def list_tent_quests(event_id: str, user_id: str = Query(..., min_length=1)):
    quests = quest_service.list_quests_with_status(event_id, user_id)
    return {"quests": quests, "message": "Quests fetched successfully"}


@router.get("/v1/quests/{quest_id}/prerequisites")
def get_quest_prerequisites(quest_id: int):
    return quest_service.get_quest_prerequisites(quest_id)


@router.post("/v1/quests/custom-prerequisites")
def set_custom_prerequisites(req: CustomPrerequisitesRequest):
    """Replace a quest's custom prerequisites; self-references and cycles are rejected with 409."""
    return quest_service.set_custom_prerequisites(req.quest_id, req.custom_prerequisites)
