"""
Admin API routes for progression and campaign operations.

All routes require the X-Admin-Key header.
"""
from typing import Any, Dict, List

from fastapi import APIRouter, Depends, Request
from pydantic import BaseModel, Field

from tentquest.core.admin_auth import AdminActor, require_admin
from tentquest.core.logging import log_event
from tentquest.features.progress.service import progress_service
from tentquest.features.quests.service import quest_service
from tentquest.workers.safety_decay import JOB_NAME as SAFETY_JOB_NAME, last_job_run

router = APIRouter(prefix="/v1/admin", tags=["admin"])


class SyncRequest(BaseModel):
    # Validated per record by the import so one bad campaign does not reject the batch
    campaigns: List[Dict[str, Any]] = Field(default_factory=list)


@router.post("/safety-check/run")
def run_safety_check(request: Request, actor: AdminActor = Depends(require_admin)) -> dict:
    """Run the daily safety meter check now."""
    result = request.app.state.scheduler.trigger(SAFETY_JOB_NAME)
    log_event("info", "admin.safety_check_triggered", event_type="admin", extra={"actor": actor.actor_id})
    return {"success": True, "message": "Daily safety meter check completed", "data": result}


@router.post("/level-rewards/init")
def init_level_rewards(actor: AdminActor = Depends(require_admin)) -> dict:
    created = progress_service.initialize_level_rewards()
    return {"success": True, "message": "Level rewards initialized", "created_levels": created}


@router.post("/cross-campaign-rules")
def set_cross_campaign_rules(actor: AdminActor = Depends(require_admin)) -> dict:
    return quest_service.set_predefined_cross_campaign_rules()


@router.post("/sync")
def sync_campaigns(body: SyncRequest, actor: AdminActor = Depends(require_admin)) -> dict:
    """Import normalized campaign records. Per-item failures are reported, not raised."""
    result = quest_service.sync_tents_and_quests(body.campaigns)
    log_event(
        "info",
        "admin.sync_completed",
        event_type="admin",
        extra={"actor": actor.actor_id, "errors": len(result["errors"])},
    )
    return {"success": True, "message": "Sync completed", "data": result}


@router.get("/scheduler/status")
def scheduler_status(request: Request, actor: AdminActor = Depends(require_admin)) -> dict:
    scheduler = request.app.state.scheduler
    return {
        "started": scheduler.started,
        "jobs": scheduler.status(),
        "last_safety_check_run": last_job_run(SAFETY_JOB_NAME),
    }
