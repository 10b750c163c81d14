"""
In-process daily job scheduler.

Each registered job gets one asyncio task that sleeps until its next UTC
fire time and then runs the (blocking) job function in a worker thread.
Job failures are logged and never stop the loop. Manual triggers run the
job immediately and let errors reach the caller.
"""
from __future__ import annotations

import asyncio
import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional

from tentquest.core.errors import ConflictError
from tentquest.models.clock import utc_now

logger = logging.getLogger("tentquest.scheduler")

JobFunc = Callable[..., Dict[str, Any]]


def next_run_after(moment: datetime, hour_utc: int, minute: int = 0) -> datetime:
    """First ``hour_utc:minute`` UTC strictly after ``moment``."""
    candidate = moment.replace(hour=hour_utc, minute=minute, second=0, microsecond=0)
    if candidate <= moment:
        candidate += timedelta(days=1)
    return candidate


@dataclass
class ScheduledJob:
    name: str
    func: JobFunc
    hour_utc: int = 0
    minute: int = 0
    running: bool = False
    last_run: Optional[datetime] = None
    last_status: Optional[str] = None
    next_run: Optional[datetime] = None
    _task: Optional[asyncio.Task] = field(default=None, repr=False)

    @property
    def schedule(self) -> str:
        return f"{self.minute} {self.hour_utc} * * * (UTC)"


class DailyJobScheduler:
    def __init__(self, clock: Callable[[], datetime] = utc_now):
        self._jobs: Dict[str, ScheduledJob] = {}
        self._clock = clock
        self._started = False
        # Scheduled runs happen in worker threads, manual triggers in request threads
        self._lock = threading.Lock()

    def register(self, name: str, func: JobFunc, hour_utc: int = 0, minute: int = 0) -> ScheduledJob:
        job = ScheduledJob(name=name, func=func, hour_utc=hour_utc, minute=minute)
        job.next_run = next_run_after(self._clock(), hour_utc, minute)
        self._jobs[name] = job
        return job

    @property
    def started(self) -> bool:
        return self._started

    def start(self) -> None:
        if self._started:
            return
        for job in self._jobs.values():
            job._task = asyncio.create_task(self._loop(job), name=f"scheduler:{job.name}")
        self._started = True
        logger.info("scheduler.started", extra={"jobs": list(self._jobs)})

    async def stop(self) -> None:
        tasks = [job._task for job in self._jobs.values() if job._task is not None]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        for job in self._jobs.values():
            job._task = None
        self._started = False
        logger.info("scheduler.stopped")

    async def _loop(self, job: ScheduledJob) -> None:
        while True:
            job.next_run = next_run_after(self._clock(), job.hour_utc, job.minute)
            delay = max(0.0, (job.next_run - self._clock()).total_seconds())
            await asyncio.sleep(delay)
            try:
                await asyncio.to_thread(self._run, job, "scheduled")
            except Exception:
                logger.exception("scheduler.job_failed", extra={"job_name": job.name})

    def _run(self, job: ScheduledJob, trigger: str) -> Dict[str, Any]:
        with self._lock:
            if job.running:
                raise ConflictError(f"Job {job.name} is already running")
            job.running = True
        job.last_run = self._clock()
        try:
            result = job.func(trigger=trigger)
            job.last_status = "success"
            return result
        except Exception:
            job.last_status = "failed"
            raise
        finally:
            job.running = False

    def trigger(self, name: str) -> Dict[str, Any]:
        job = self._jobs.get(name)
        if job is None:
            raise KeyError(name)
        logger.info("scheduler.manual_trigger", extra={"job_name": name})
        return self._run(job, "manual")

    def status(self) -> List[Dict[str, Any]]:
        return [
            {
                "name": job.name,
                "schedule": job.schedule,
                "running": job.running,
                "last_run": job.last_run.isoformat() if job.last_run else None,
                "last_status": job.last_status,
                "next_run": job.next_run.isoformat() if job.next_run else None,
            }
            for job in self._jobs.values()
        ]
