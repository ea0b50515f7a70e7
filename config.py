import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        csrf_secret: str,
        analytics_cache_ttl_secs: int,
        suggestion_window_days: int,
        suggestion_limit: int,
        recurring_cadence: str,
        receipt_base_url: str,
        scheduler_enabled: bool,
        default_user_id: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.csrf_secret = csrf_secret
        self.analytics_cache_ttl_secs = analytics_cache_ttl_secs
        self.suggestion_window_days = suggestion_window_days
        self.suggestion_limit = suggestion_limit
        self.recurring_cadence = recurring_cadence
        self.receipt_base_url = receipt_base_url
        self.scheduler_enabled = scheduler_enabled
        self.default_user_id = default_user_id


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("SPLITR_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "splitr.db"
    database_url = os.getenv("SPLITR_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("SPLITR_TIMEZONE", "Europe/Berlin")
    csrf_secret = os.getenv(
        "SPLITR_CSRF_SECRET",
        "5d1c0a8f7e2b4c6d9a3f1e0b8c7d6a5f4e3d2c1b0a9f8e7d6c5b4a3f2e1d0c9b",
    )
    cache_ttl = int(os.getenv("SPLITR_ANALYTICS_CACHE_TTL_SECS", "900"))
    window_days = int(os.getenv("SPLITR_SUGGESTION_WINDOW_DAYS", "90"))
    suggestion_limit = int(os.getenv("SPLITR_SUGGESTION_LIMIT", "10"))
    cadence = os.getenv("SPLITR_RECURRING_CADENCE", "from_now").strip().lower()
    if cadence not in {"from_now", "schedule"}:
        raise ValueError(f"Unsupported recurring cadence: {cadence}")
    receipt_base_url = os.getenv(
        "SPLITR_RECEIPT_BASE_URL", "https://example.com/receipts"
    ).rstrip("/")
    return Settings(
        database_url=database_url,
        timezone=timezone,
        csrf_secret=csrf_secret,
        analytics_cache_ttl_secs=cache_ttl,
        suggestion_window_days=window_days,
        suggestion_limit=suggestion_limit,
        recurring_cadence=cadence,
        receipt_base_url=receipt_base_url,
        scheduler_enabled=_env_flag("SPLITR_SCHEDULER_ENABLED", "1"),
        default_user_id=int(os.getenv("SPLITR_DEFAULT_USER_ID", "1")),
    )
