import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        expansion_hard_cap: int,
        reconcile_expenses: bool,
        log_level: str,
    ) -> None:
        self.database_url = database_url
        self.expansion_hard_cap = expansion_hard_cap
        self.reconcile_expenses = reconcile_expenses
        self.log_level = log_level


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("FINANCE_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in {"1", "true", "yes", "on"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "finance.db"
    database_url = os.getenv("FINANCE_DATABASE_URL", f"sqlite:///{default_db}")
    # 730 = two years of daily occurrences
    expansion_hard_cap = int(os.getenv("FINANCE_EXPANSION_HARD_CAP", "730"))
    reconcile_expenses = _env_flag("FINANCE_RECONCILE_EXPENSES", "false")
    log_level = os.getenv("FINANCE_LOG_LEVEL", "INFO").upper()
    return Settings(
        database_url=database_url,
        expansion_hard_cap=expansion_hard_cap,
        reconcile_expenses=reconcile_expenses,
        log_level=log_level,
    )
