"""Runtime settings read from ``CLOZE_*`` environment variables."""

from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict

from cloze_app.constants.network_constants import DEFAULT_HOST, DEFAULT_PORT
from cloze_app.constants.quiz_constants import SESSION_RETENTION_SECONDS


class Settings(BaseSettings):
    """Server settings; the constants modules provide the defaults."""

    model_config = SettingsConfigDict(env_prefix="CLOZE_", env_file=".env", extra="ignore")

    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    log_level: str = "INFO"
    session_retention_seconds: int = SESSION_RETENTION_SECONDS


def get_settings() -> Settings:
    return Settings()
