from __future__ import annotations

from typing import Optional

from fastapi import APIRouter
from pydantic import BaseModel, Field

from tentquest.features.progress.service import progress_service
from tentquest.models.progress import ActivityType

router = APIRouter(tags=["progress"])


class QuestPayload(BaseModel):
    xp: int = Field(0, ge=0)
    task_id: Optional[str] = None
    title: Optional[str] = None


class QuestCompletionRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    quest: QuestPayload
    tent_type: Optional[str] = None


class ActivityRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    activity_type: ActivityType
    tent_type: Optional[str] = None


class MeterVisibilityRequest(BaseModel):
    user_id: str = Field(..., min_length=1)


@router.post("/v1/progress/quest-completion")
def quest_completion(req: QuestCompletionRequest):
    result = progress_service.process_quest_completion(req.user_id, req.quest.xp, req.tent_type)
    return {**result, "progress": progress_service.get_user_progress(req.user_id)}


@router.post("/v1/progress/activity")
def record_activity(req: ActivityRequest):
    progress_service.update_user_activity(req.user_id, req.activity_type, req.tent_type)
    return {"success": True, "progress": progress_service.get_user_progress(req.user_id)}


@router.post("/v1/progress/check-meter-visibility")
def check_meter_visibility(req: MeterVisibilityRequest):
    progress = progress_service.check_meter_visibility(req.user_id)
    return {
        "user_id": req.user_id,
        "xp_meter_visible": progress.xp_meter_visible,
        "safety_meter_visible": progress.safety_meter_visible,
    }


@router.get("/v1/progress/{user_id}")
def get_progress(user_id: str):
    return progress_service.get_user_progress(user_id)
