from __future__ import annotations

from typing import List, Optional

from pydantic import BaseModel, Field, Json
from pydantic_settings import BaseSettings, SettingsConfigDict

from .codec import KeyPair
from .session import SessionOptions
from .ttl_index import DEFAULT_INDEX_NAME


class MongoDBStoreConfig(BaseModel):
    # whether to keep a TTL index on the session documents
    index_ttl: bool = True
    session_options: SessionOptions = Field(default_factory=SessionOptions)
    # seconds; None leaves driver calls unbounded
    operation_timeout: Optional[float] = None
    ttl_index_name: str = DEFAULT_INDEX_NAME


DEFAULT_CONFIG = MongoDBStoreConfig(
    index_ttl=True,
    session_options=SessionOptions(path="/", max_age=3600 * 24 * 30, http_only=True),
)


class StoreSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="MONGOSTORE_", env_file=".env", extra="ignore")

    # MongoDB
    MONGO_URI: str = "mongodb://localhost:27017"
    MONGO_DB: str = "sessions"
    COLLECTION: str = "sessions"

    INDEX_TTL: bool = True
    OPERATION_TIMEOUT_SECONDS: Optional[float] = Field(default=5.0)

    # Cookie defaults
    COOKIE_PATH: str = "/"
    COOKIE_DOMAIN: Optional[str] = None
    COOKIE_MAX_AGE: int = 3600 * 24 * 30
    COOKIE_HTTP_ONLY: bool = True
    COOKIE_SECURE: bool = False
    COOKIE_SAMESITE: str = "lax"

    # [[hash_key, block_key|null], ...]; newest pair first
    # given as JSON text: BaseSettings validates defaults
    KEY_PAIRS: Json[List[List[Optional[str]]]] = Field(default="[]")

    LOG_LEVEL: str = "INFO"

    def to_store_config(self) -> MongoDBStoreConfig:
        return MongoDBStoreConfig(
            index_ttl=self.INDEX_TTL,
            operation_timeout=self.OPERATION_TIMEOUT_SECONDS,
            session_options=SessionOptions(
                path=self.COOKIE_PATH,
                domain=self.COOKIE_DOMAIN,
                max_age=self.COOKIE_MAX_AGE,
                http_only=self.COOKIE_HTTP_ONLY,
                secure=self.COOKIE_SECURE,
                same_site=self.COOKIE_SAMESITE.lower(),
            ),
        )

    def key_pairs(self) -> List[KeyPair]:
        out = []
        for pair in self.KEY_PAIRS:
            if not pair or not pair[0]:
                raise ValueError("MONGOSTORE_KEY_PAIRS entries need a hash key")
            out.append(KeyPair(pair[0], pair[1] if len(pair) > 1 else None))
        return out
