from __future__ import annotations

from typing import Any, Optional


class SessionStoreError(Exception):
    """
    Base error for the session store.

    `session` carries the record the failing call was working on, so callers
    that prefer to continue with a fresh session can pick it up from the error.
    """
    def __init__(self, message: str, *, session: Optional[Any] = None) -> None:
        super().__init__(message)
        self.session = session


class CookieDecodeError(SessionStoreError):
    """Cookie (or stored payload) failed authentication, decryption or parsing."""


class RecordLoadError(SessionStoreError):
    pass


class RecordSaveError(SessionStoreError):
    pass


class InvalidIdentifier(SessionStoreError):
    pass


class InvalidModifiedValue(SessionStoreError):
    pass


class InvalidSessionValue(SessionStoreError):
    """Session values hold something that would not read back unchanged."""


class StoreTimeoutError(SessionStoreError):
    pass


class IndexSetupError(SessionStoreError):
    """
    TTL index could not be ensured.

    The store was still built; it is available on `store` so the caller can
    decide to run without auto-expiry.
    """
    def __init__(self, message: str, *, store: Optional[Any] = None) -> None:
        super().__init__(message)
        self.store = store
