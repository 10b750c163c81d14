"""Daily safety meter decay job."""
from datetime import datetime
import logging
from typing import Any, Dict, Optional

from sqlalchemy import insert, select

from tentquest.core.database import get_db_session, job_runs
from tentquest.features.progress.service import progress_service
from tentquest.models.clock import as_utc, utc_now

logger = logging.getLogger("tentquest.workers.safety_decay")

JOB_NAME = "safety_meter.daily_check"


def run_safety_decay_job(*, now: Optional[datetime] = None, trigger: str = "scheduled") -> Dict[str, Any]:
    started_at = now or utc_now()
    result = progress_service.process_daily_safety_meter_check(now=started_at)
    status = "success" if not result["errors"] else "partial"

    with get_db_session() as session:
        session.execute(
            insert(job_runs).values(
                job_name=JOB_NAME,
                trigger=trigger,
                started_at=started_at,
                finished_at=utc_now(),
                status=status,
                stats={
                    "users_checked": result["users_checked"],
                    "users_degraded": result["users_degraded"],
                    "errors": result["errors"][:50],
                },
            )
        )

    logger.info(
        "[safety_decay] daily check finished",
        extra={
            "job_name": JOB_NAME,
            "trigger": trigger,
            "users_checked": result["users_checked"],
            "users_degraded": result["users_degraded"],
            "errors_count": len(result["errors"]),
        },
    )
    return {**result, "status": status, "timestamp": started_at.isoformat()}


def last_job_run(job_name: str = JOB_NAME) -> Optional[Dict[str, Any]]:
    with get_db_session() as session:
        row = session.execute(
            select(job_runs)
            .where(job_runs.c.job_name == job_name)
            .order_by(job_runs.c.started_at.desc(), job_runs.c.id.desc())
            .limit(1)
        ).first()
    if row is None:
        return None
    return {
        "trigger": row.trigger,
        "status": row.status,
        "started_at": as_utc(row.started_at).isoformat(),
        "finished_at": as_utc(row.finished_at).isoformat() if row.finished_at else None,
        "stats": row.stats,
    }


if __name__ == "__main__":
    print(run_safety_decay_job(trigger="manual"))
