import os
from functools import lru_cache
from pathlib import Path


class ConfigurationError(RuntimeError):
    pass


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        cleanup_interval_hours: int,
        scheduler_enabled: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.cleanup_interval_hours = cleanup_interval_hours
        self.scheduler_enabled = scheduler_enabled
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None or raw.strip() == "":
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    csrf_secret = os.getenv("EXPENSES_CSRF_SECRET", "").strip()
    if not csrf_secret:
        raise ConfigurationError(
            "EXPENSES_CSRF_SECRET must be set; refusing to start without it"
        )

    database_url = os.getenv("EXPENSES_DATABASE_URL")
    if not database_url:
        default_db = _ensure_data_dir() / "smartspend.db"
        database_url = f"sqlite:///{default_db}"
    timezone = os.getenv("EXPENSES_TIMEZONE", "UTC")
    try:
        cleanup_interval_hours = int(
            os.getenv("EXPENSES_CLEANUP_INTERVAL_HOURS", "6")
        )
    except ValueError as exc:
        raise ConfigurationError(
            "EXPENSES_CLEANUP_INTERVAL_HOURS must be an integer"
        ) from exc
    if cleanup_interval_hours < 1:
        raise ConfigurationError("EXPENSES_CLEANUP_INTERVAL_HOURS must be >= 1")
    scheduler_enabled = _env_flag("EXPENSES_SCHEDULER_ENABLED", True)
    log_level = os.getenv("EXPENSES_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        cleanup_interval_hours=cleanup_interval_hours,
        scheduler_enabled=scheduler_enabled,
        log_level=log_level,
    )
