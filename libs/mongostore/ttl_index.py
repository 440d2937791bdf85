from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING
from pymongo.errors import PyMongoError

from ._ops import bounded
from .errors import IndexSetupError, StoreTimeoutError

log = logging.getLogger("mongostore.ttl")

DEFAULT_INDEX_NAME = "modified_at_TTL"
DEFAULT_INDEX_FIELD = "modified"


class TTLIndexManager:
    """
    Keeps a background TTL index on the session `modified` field.

    The index is looked up by its reserved name. If it exists on another key
    (older deployments indexed `modified_at`) or with a different
    expireAfterSeconds (max age changed between deployments) it is dropped and
    built again with the current field and value.
    """
    def __init__(
        self,
        collection,
        expire_after_seconds: int,
        *,
        name: str = DEFAULT_INDEX_NAME,
        field: str = DEFAULT_INDEX_FIELD,
    ) -> None:
        self.col = collection
        self.expire_after_seconds = int(expire_after_seconds)
        self.name = name
        self.field = field

    async def ensure(self, timeout: Optional[float] = None) -> str:
        if self.expire_after_seconds <= 0:
            raise IndexSetupError(
                f"index: expireAfterSeconds must be positive, got {self.expire_after_seconds}"
            )

        try:
            indexes = await bounded("index list", self._list(), timeout)
        except (PyMongoError, StoreTimeoutError) as e:
            raise IndexSetupError(f"index: unable to list indexes: {e}") from e

        current = next((ix for ix in indexes if ix.get("name") == self.name), None)
        if current is not None:
            stored_key = dict(current.get("key") or {})
            if stored_key == {self.field: ASCENDING} and current.get("expireAfterSeconds") == self.expire_after_seconds:
                log.debug("ttl index present name=%s expire_after=%s", self.name, self.expire_after_seconds)
                return "exists"

            log.warning(
                "ttl index mismatch name=%s stored_key=%s stored=%s configured_key=%s configured=%s; recreating",
                self.name,
                stored_key,
                current.get("expireAfterSeconds"),
                {self.field: ASCENDING},
                self.expire_after_seconds,
            )
            try:
                await bounded("index drop", self.col.drop_index(self.name), timeout)
            except (PyMongoError, StoreTimeoutError) as e:
                raise IndexSetupError(f"index: unable to drop stale index {self.name}: {e}") from e
            await self._create(timeout)
            return "recreated"

        await self._create(timeout)
        return "created"

    async def _list(self) -> List[Dict[str, Any]]:
        out = []
        async for ix in self.col.list_indexes():
            out.append(dict(ix))
        return out

    async def _create(self, timeout: Optional[float]) -> None:
        try:
            await bounded(
                "index create",
                self.col.create_index(
                    [(self.field, ASCENDING)],
                    name=self.name,
                    expireAfterSeconds=self.expire_after_seconds,
                    sparse=True,
                    background=True,
                ),
                timeout,
            )
        except (PyMongoError, StoreTimeoutError) as e:
            raise IndexSetupError(f"index: unable to create index {self.name}: {e}") from e
        log.info("ttl index created name=%s field=%s expire_after=%s", self.name, self.field, self.expire_after_seconds)
