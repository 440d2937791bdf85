from .codec import CookieCodec, KeyPair, codecs_from_pairs, decode_multi, encode_multi
from .config import DEFAULT_CONFIG, MongoDBStoreConfig, StoreSettings
from .errors import (
    CookieDecodeError,
    IndexSetupError,
    InvalidIdentifier,
    InvalidModifiedValue,
    InvalidSessionValue,
    RecordLoadError,
    RecordSaveError,
    SessionStoreError,
    StoreTimeoutError,
)
from .registry import SessionRegistry, registry_for
from .session import SessionOptions, SessionRecord
from .store import MongoDBStore, SessionDocument
from .ttl_index import TTLIndexManager

__all__ = [
    "CookieCodec",
    "KeyPair",
    "codecs_from_pairs",
    "decode_multi",
    "encode_multi",
    "DEFAULT_CONFIG",
    "MongoDBStoreConfig",
    "StoreSettings",
    "CookieDecodeError",
    "IndexSetupError",
    "InvalidIdentifier",
    "InvalidModifiedValue",
    "InvalidSessionValue",
    "RecordLoadError",
    "RecordSaveError",
    "SessionStoreError",
    "StoreTimeoutError",
    "SessionRegistry",
    "registry_for",
    "SessionOptions",
    "SessionRecord",
    "MongoDBStore",
    "SessionDocument",
    "TTLIndexManager",
]
