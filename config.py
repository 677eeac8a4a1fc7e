import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        local_db_path: Path,
        timezone: str,
        default_cycle_length_days: int,
        history_page_size: int,
        snapshot_hour: int,
        snapshot_minute: int,
    ) -> None:
        self.database_url = database_url
        self.local_db_path = local_db_path
        self.timezone = timezone
        self.default_cycle_length_days = default_cycle_length_days
        self.history_page_size = history_page_size
        self.snapshot_hour = snapshot_hour
        self.snapshot_minute = snapshot_minute


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("BUDGET_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "budget.db"
    database_url = os.getenv("BUDGET_DATABASE_URL", f"sqlite:///{default_db}")
    local_db_path = Path(
        os.getenv("BUDGET_LOCAL_DB_PATH", str(data_dir / "budget-local.db"))
    )
    timezone = os.getenv("BUDGET_TIMEZONE", "Europe/Berlin")
    default_cycle_length_days = int(os.getenv("BUDGET_DEFAULT_CYCLE_LENGTH_DAYS", "30"))
    if default_cycle_length_days < 1:
        raise ValueError("BUDGET_DEFAULT_CYCLE_LENGTH_DAYS must be at least 1")
    history_page_size = int(os.getenv("BUDGET_HISTORY_PAGE_SIZE", "12"))
    snapshot_hour = int(os.getenv("BUDGET_SNAPSHOT_HOUR", "3"))
    snapshot_minute = int(os.getenv("BUDGET_SNAPSHOT_MINUTE", "30"))
    return Settings(
        database_url=database_url,
        local_db_path=local_db_path,
        timezone=timezone,
        default_cycle_length_days=default_cycle_length_days,
        history_page_size=history_page_size,
        snapshot_hour=snapshot_hour,
        snapshot_minute=snapshot_minute,
    )
