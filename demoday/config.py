from __future__ import annotations

import os
from decimal import Decimal
from functools import lru_cache
from pathlib import Path

from pydantic import BaseModel, Field

DEFAULT_BALANCE = Decimal("1000000")


def _resolve_data_dir() -> Path:
    override = os.getenv("DEMODAY_HOME", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return Path(__file__).parent / "data"


def _resolve_db_path() -> Path:
    override = os.getenv("DEMODAY_DB_PATH", "").strip()
    if override:
        return Path(override).expanduser().resolve()
    return _resolve_data_dir() / "demoday.db"


class Settings(BaseModel):
    data_dir: Path = Field(default_factory=_resolve_data_dir)
    database_path: Path = Field(default_factory=_resolve_db_path)

    default_balance: Decimal = Field(
        default_factory=lambda: Decimal(os.getenv("DEMODAY_DEFAULT_BALANCE", str(DEFAULT_BALANCE)))
    )
    sqlite_timeout_seconds: float = Field(
        default_factory=lambda: float(os.getenv("DEMODAY_SQLITE_TIMEOUT", "15"))
    )

    host: str = Field(default_factory=lambda: os.getenv("DEMODAY_HOST", "127.0.0.1"))
    port: int = Field(default_factory=lambda: int(os.getenv("DEMODAY_PORT", "8001")))
    log_level: str = Field(default_factory=lambda: os.getenv("DEMODAY_LOG_LEVEL", "INFO"))

    def ensure_directories(self) -> None:
        self.data_dir.mkdir(parents=True, exist_ok=True)
        self.database_path.parent.mkdir(parents=True, exist_ok=True)


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
