import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        csrf_max_age_hours: int,
        audit_hour: int,
        audit_minute: int,
        audit_repair: bool,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.csrf_max_age_hours = csrf_max_age_hours
        self.audit_hour = audit_hour
        self.audit_minute = audit_minute
        self.audit_repair = audit_repair


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("HEALTH_EXPENSES_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str = "0") -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "health_expenses.db"
    database_url = os.getenv(
        "HEALTH_EXPENSES_DATABASE_URL", f"sqlite:///{default_db}"
    )
    timezone = os.getenv("HEALTH_EXPENSES_TIMEZONE", "Europe/Zurich")
    csrf_secret = os.getenv(
        "HEALTH_EXPENSES_CSRF_SECRET",
        "5d1f3c0b8e2a47c69f04be7a1d93c2e8f6a0b4d7c1e9f2a3b5c8d0e6f7a9b1c2",
    )
    csrf_max_age_hours = int(os.getenv("HEALTH_EXPENSES_CSRF_MAX_AGE_HOURS", "2"))
    audit_hour = int(os.getenv("HEALTH_EXPENSES_AUDIT_HOUR", "3"))
    audit_minute = int(os.getenv("HEALTH_EXPENSES_AUDIT_MINUTE", "30"))
    audit_repair = _env_flag("HEALTH_EXPENSES_AUDIT_REPAIR")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        csrf_max_age_hours=csrf_max_age_hours,
        audit_hour=audit_hour,
        audit_minute=audit_minute,
        audit_repair=audit_repair,
    )
