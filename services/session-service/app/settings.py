from __future__ import annotations

from typing import List

from pydantic import Field, Json
from pydantic_settings import SettingsConfigDict

from mongostore import StoreSettings


class Settings(StoreSettings):
    model_config = SettingsConfigDict(env_prefix="SESSION_SERVICE_", env_file=".env", extra="ignore")

    # API
    SERVICE_NAME: str = "session-service"
    PORT: int = 8040
    # defaults are validated, so they are given as JSON text
    CORS_ALLOW_ORIGINS: Json[List[str]] = Field(default="[]")

    SESSION_NAME: str = "sid"
    STORE_LOG_LEVEL: str = "INFO"


settings = Settings()
