import os
from functools import lru_cache
from pathlib import Path


class Settings:
    def __init__(
        self,
        database_url: str,
        timezone: str,
        secret_key: str,
        cache_ttl_secs: int,
        cache_max_entries: int,
    ) -> None:
        self.database_url = database_url
        self.timezone = timezone
        self.secret_key = secret_key
        self.cache_ttl_secs = cache_ttl_secs
        self.cache_max_entries = cache_max_entries


def _ensure_data_dir() -> Path:
    root = Path(os.getenv("LEDGER_DATA_DIR", "./data")).resolve()
    root.mkdir(parents=True, exist_ok=True)
    return root


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    data_dir = _ensure_data_dir()
    default_db = data_dir / "ledger.db"
    database_url = os.getenv("LEDGER_DATABASE_URL", f"sqlite:///{default_db}")
    timezone = os.getenv("LEDGER_TIMEZONE", "Europe/Amsterdam")
    secret_key = os.getenv(
        "LEDGER_SECRET",
        "5d0c1f8e7a4b93d2c6e18f0a2b7d4c9e31f6a8b0d2e4c6a8f1b3d5e7a9c0b2d4",
    )
    cache_ttl_secs = int(os.getenv("LEDGER_CACHE_TTL_SECS", "3600"))
    cache_max_entries = int(os.getenv("LEDGER_CACHE_MAX_ENTRIES", "512"))
    return Settings(
        database_url=database_url,
        timezone=timezone,
        secret_key=secret_key,
        cache_ttl_secs=cache_ttl_secs,
        cache_max_entries=cache_max_entries,
    )
