# inkbook/config.py

from datetime import date, datetime
from functools import lru_cache
from typing import Optional

import pytz
from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="INKBOOK_",
        env_file=".env",
        extra="ignore",
    )

    # SQLite database (file-based) unless overridden
    database_url: str = "sqlite:///./inkbook.db"
    sql_echo: bool = False

    secret_key: SecretStr = SecretStr("change-me-later")
    algorithm: str = "HS256"
    access_token_expire_minutes: int = 30

    # The single artist account is provisioned at startup, never through signup
    artist_email: Optional[str] = None
    artist_password: Optional[SecretStr] = None
    artist_name: str = "Artist"

    studio_name: str = "Studio Saturn"
    studio_timezone: str = "America/New_York"
    default_duration_minutes: int = Field(120, gt=0)

    # Payment event ledger
    stripe_webhook_secret: Optional[SecretStr] = None
    payment_event_max_age_seconds: int = 300
    payment_event_retention_days: int = 30
    payment_event_prune_probability: float = Field(0.1, ge=0.0, le=1.0)

    log_level: str = "INFO"


@lru_cache
def get_settings() -> Settings:
    return Settings()


def studio_timezone():
    return pytz.timezone(get_settings().studio_timezone)


def studio_now() -> datetime:
    """Aware wall-clock time in the studio's timezone."""
    return datetime.now(studio_timezone())


def studio_to_utc(wall_clock: datetime) -> datetime:
    """Attach the studio timezone to a naive wall-clock time and convert to UTC."""
    return studio_timezone().localize(wall_clock).astimezone(pytz.utc)


def studio_today() -> date:
    return studio_now().date()
