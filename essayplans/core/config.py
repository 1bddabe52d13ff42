import logging

from pydantic_settings import BaseSettings
from pydantic import ConfigDict
from typing import Optional

class Settings(BaseSettings):
    # Environment
    ENV: str = "development"
    CONFIG_STRICT: bool = False
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: Optional[str] = "sqlite:///./essayplans.db"
    TEST_DATABASE_URL: Optional[str] = None
    SQLITE_BUSY_TIMEOUT_SECONDS: float = 15.0

    # Subscription windows
    SUBSCRIPTION_PERIOD_DAYS: int = 30
    EXPIRING_SOON_DAYS: int = 7

    # Listing caps
    HISTORY_PAGE_LIMIT_MAX: int = 100

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
    log = logger or logging.getLogger("essayplans")
    strict_mode = strict if strict is not None else getattr(cfg, "CONFIG_STRICT", False)

    required_keys = [
        "DATABASE_URL",
    ]

    missing = [key for key in required_keys if not getattr(cfg, key, None)]
    problems = list(missing)
    if getattr(cfg, "SUBSCRIPTION_PERIOD_DAYS", 0) <= 0:
        problems.append("SUBSCRIPTION_PERIOD_DAYS must be positive")

    if problems:
        message = f"Missing required configuration: {', '.join(problems)}"
        if strict_mode:
            raise RuntimeError(message)
        log.warning(message)

    return True
