# backend/courtbook/config.py

from functools import lru_cache
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

BASE_DIR = Path(__file__).resolve().parents[2]  # project root


class Settings(BaseSettings):
    database_url: str = "sqlite:///./data/courtbook.db"
    redis_url: str = "redis://localhost:6379/0"
    log_level: str = "INFO"

    default_timezone: str = "Asia/Ho_Chi_Minh"
    hold_minutes: int = 10
    recurring_max_occurrences: int = 50
    claim_bucket_minutes: int = 5
    availability_lookahead_days: int = 10
    sweep_interval_seconds: int = 0  # 0 disables the in-process expiry sweeper

    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        extra="ignore",
    )

    @property
    def resolved_database_url(self) -> str:
        url = self.database_url
        if url.startswith("sqlite:///./"):
            # Relative SQLite paths are resolved against the project root
            relative_path = url.replace("sqlite:///./", "")
            absolute_path = BASE_DIR / relative_path
            return f"sqlite:///{absolute_path}"
        return url


@lru_cache
def get_settings() -> Settings:
    return Settings()
