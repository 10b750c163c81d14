import logging
import os
from contextlib import asynccontextmanager

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException
from fastapi.exceptions import RequestValidationError

# Load env from the working directory before settings are read
if "PYTEST_CURRENT_TEST" not in os.environ:
    load_dotenv()

from tentquest.core.config import settings, validate_config
from tentquest.core.database import create_all_tables
from tentquest.core.logging import configure_logging
from tentquest.core.middleware.request_id import RequestIdMiddleware
from tentquest.core.errors import (
    AppError,
    app_error_handler,
    http_error_handler,
    request_validation_error_handler,
    unhandled_exception_handler,
)
from tentquest.api import admin, health, participations, progress, quests
from tentquest.workers.safety_decay import JOB_NAME as SAFETY_JOB_NAME, run_safety_decay_job
from tentquest.workers.scheduler import DailyJobScheduler

configure_logging(settings.ENV)
validate_config(strict=getattr(settings, "CONFIG_STRICT", False))


def build_scheduler() -> DailyJobScheduler:
    scheduler = DailyJobScheduler()
    scheduler.register(SAFETY_JOB_NAME, run_safety_decay_job, hour_utc=settings.SAFETY_CHECK_HOUR_UTC)
    return scheduler


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger = logging.getLogger("tentquest")
    logger.info("Starting TentQuest backend...")
    create_all_tables()
    if settings.SCHEDULER_ENABLED:
        app.state.scheduler.start()
    try:
        yield
    finally:
        if app.state.scheduler.started:
            await app.state.scheduler.stop()
        logging.getLogger("tentquest").info("Stopping TentQuest backend...")


app = FastAPI(title="TentQuest - Backend", lifespan=lifespan)
app.state.scheduler = build_scheduler()

app.add_middleware(RequestIdMiddleware)

app.add_exception_handler(AppError, app_error_handler)
app.add_exception_handler(RequestValidationError, request_validation_error_handler)
app.add_exception_handler(HTTPException, http_error_handler)
app.add_exception_handler(Exception, unhandled_exception_handler)

app.include_router(quests.router)
app.include_router(participations.router)
app.include_router(progress.router)
app.include_router(admin.router)
app.include_router(health.root_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("tentquest.main:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
