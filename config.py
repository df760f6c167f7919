import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        log_level: str,
        default_user_id: int,
        recent_reports_limit: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.log_level = log_level
        self.default_user_id = default_user_id
        self.recent_reports_limit = recent_reports_limit


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("FINANCE_TIMEZONE", "UTC")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    default_user_id = int(os.getenv("FINANCE_DEFAULT_USER_ID", "1"))
    recent_reports_limit = int(os.getenv("FINANCE_RECENT_REPORTS_LIMIT", "10"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        log_level=log_level,
        default_user_id=default_user_id,
        recent_reports_limit=recent_reports_limit,
    )
