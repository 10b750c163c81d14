import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False

    # Database
    DATABASE_URL: Optional[str] = None
    TEST_DATABASE_URL: Optional[str] = None

    # Admin access (X-Admin-Key)
    ADMIN_KEY: Optional[str] = None
    ENVIRONMENT: str = "dev"  # "dev" | "test" | "prod"

    # Progression
    XP_PER_LEVEL: int = 100

    # Safety meter decay job
    SCHEDULER_ENABLED: bool = True
    SAFETY_CHECK_HOUR_UTC: int = 0  # daily trigger hour, 0 = midnight UTC
    SAFETY_CHECK_INTERVAL_HOURS: int = 24  # inactivity window and re-check interval

    model_config = ConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )
settings = Settings()


def validate_config(strict: Optional[bool] = None, settings_obj: Optional[Settings] = None, logger: Optional[logging.Logger] = None) -> bool:
    """Validate required configuration.

    In strict mode raise RuntimeError; otherwise emit warnings only.
    Secrets are not logged, only missing keys.
    """
    cfg = settings_obj or settings
    log = logger or logging.getLogger("tentquest")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
        "ADMIN_KEY",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    if missing:
        message = f"Missing required configuration: {', '.join(missing)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    if not 0 <= cfg.SAFETY_CHECK_HOUR_UTC <= 23:
        message = f"SAFETY_CHECK_HOUR_UTC must be between 0 and 23 (got {cfg.SAFETY_CHECK_HOUR_UTC})"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
