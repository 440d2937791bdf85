from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Mapping, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pymongo.errors import PyMongoError

from ._ops import bounded
from .codec import CookieCodec, codecs_from_pairs, decode_multi, encode_multi
from .config import DEFAULT_CONFIG, MongoDBStoreConfig
from .errors import (
    CookieDecodeError,
    IndexSetupError,
    InvalidIdentifier,
    InvalidModifiedValue,
    InvalidSessionValue,
    RecordLoadError,
    RecordSaveError,
    SessionStoreError,
)
from .session import MODIFIED_KEY, SessionOptions, SessionRecord
from .ttl_index import TTLIndexManager

log = logging.getLogger("mongostore.store")


class SessionDocument(BaseModel):
    """
    Stored in MongoDB. `data` is codec output and is never parsed outside the codec.
    """
    model_config = ConfigDict(populate_by_name=True, arbitrary_types_allowed=True, extra="ignore")

    id: ObjectId = Field(alias="_id")
    data: str
    modified: datetime


def _read_cookie(request: Any, name: str) -> Optional[str]:
    # starlette Request, or any plain mapping of cookie name -> value
    cookies: Mapping[str, str] = getattr(request, "cookies", request) or {}
    return cookies.get(name) or None


def _write_cookie(response: Any, session: SessionRecord, value: str) -> None:
    opts = session.options
    response.set_cookie(
        key=session.name,
        value=value,
        max_age=opts.max_age,
        path=opts.path,
        domain=opts.domain,
        secure=opts.secure,
        httponly=opts.http_only,
        samesite=opts.same_site,
    )


def _expire_cookie(response: Any, session: SessionRecord) -> None:
    opts = session.options
    # Max-Age=0 plus an epoch Expires
    response.delete_cookie(
        key=session.name,
        path=opts.path,
        domain=opts.domain,
        secure=opts.secure,
        httponly=opts.http_only,
        samesite=opts.same_site,
    )


class MongoDBStore:
    """
    Stores sessions in a MongoDB collection, keyed by ObjectId.

    Only the session id travels in the cookie; the values live in the
    collection as codec-encoded text. Every load/save is its own round trip,
    concurrent saves of one id resolve as last write wins.
    """
    def __init__(self, collection, *key_pairs, config: Optional[MongoDBStoreConfig] = None) -> None:
        if not key_pairs:
            raise ValueError("mongostore: at least one key pair is required")
        self.col = collection
        self.config = config or DEFAULT_CONFIG
        self.options: SessionOptions = self.config.session_options.model_copy(deep=True)
        self.codecs: list[CookieCodec] = codecs_from_pairs(*key_pairs, max_age=self.options.max_age)

    @classmethod
    async def create(cls, collection, *key_pairs, config: Optional[MongoDBStoreConfig] = None) -> "MongoDBStore":
        """
        Build a store and, if enabled, ensure the TTL index.

        On index failure IndexSetupError is raised with the built store on `.store`.
        """
        store = cls(collection, *key_pairs, config=config)
        if not store.config.index_ttl:
            return store
        try:
            await store.ensure_ttl_index()
        except IndexSetupError as e:
            e.store = store
            raise
        return store

    async def ensure_ttl_index(self, timeout: Optional[float] = None) -> str:
        manager = TTLIndexManager(self.col, self.options.max_age, name=self.config.ttl_index_name)
        return await manager.ensure(timeout=self._timeout(timeout))

    async def get(self, registry, name: str) -> SessionRecord:
        """Return the session for `name`, decoding it at most once per request."""
        return await registry.get(self, name)

    async def new(self, request, name: str) -> SessionRecord:
        """
        Return a fresh decode of the session named `name`.

        A missing cookie yields a new session without touching the store. A
        cookie that fails to decode raises CookieDecodeError with the new
        session on `.session`.
        """
        session = SessionRecord.fresh(name, self.options)

        token = _read_cookie(request, name)
        if token is None:
            return session

        try:
            sid = decode_multi(name, token, self.codecs)
        except CookieDecodeError as e:
            e.session = session
            raise
        if not isinstance(sid, str) or not ObjectId.is_valid(sid):
            raise CookieDecodeError(f"mongostore: cookie {name!r} holds no session id", session=session)
        session.id = sid

        try:
            found = await self.load(session)
        except SessionStoreError as e:
            e.session = session
            raise
        session.is_new = not found
        return session

    async def load(self, session: SessionRecord, timeout: Optional[float] = None) -> bool:
        """
        Fill `session.values` from the stored document.

        Returns False when no document exists (expired or never saved).
        """
        oid = self._parse_id(session)
        try:
            raw = await bounded("load", self.col.find_one({"_id": oid}), self._timeout(timeout))
        except PyMongoError as e:
            raise RecordLoadError(f"mongostore: load: {e}", session=session) from e

        if not raw:
            log.debug("load miss name=%s sid=%s", session.name, session.id)
            return False

        try:
            doc = SessionDocument.model_validate(raw)
            values = decode_multi(session.name, doc.data, self.codecs)
        except (CookieDecodeError, ValidationError) as e:
            raise RecordLoadError(f"mongostore: load: stored session {session.id} unreadable: {e}", session=session) from e
        if not isinstance(values, dict):
            raise RecordLoadError(f"mongostore: load: stored session {session.id} is not a mapping", session=session)

        session.values = values
        log.debug("load hit name=%s sid=%s keys=%d", session.name, session.id, len(values))
        return True

    async def save(self, session: SessionRecord, response, timeout: Optional[float] = None) -> None:
        """
        Persist the session and write its cookie to `response`.

        With options.max_age <= 0 the document is deleted and the cookie expired
        instead. The cookie is only written after the store accepted the change.
        """
        timeout = self._timeout(timeout)

        if session.id is None:
            oid = ObjectId()
            session.id = str(oid)
        else:
            oid = self._parse_id(session)

        if session.options.max_age <= 0:
            try:
                await bounded("delete", self.col.delete_one({"_id": oid}), timeout)
            except PyMongoError as e:
                raise RecordSaveError(f"mongostore: delete: {e}", session=session) from e
            _expire_cookie(response, session)
            log.debug("deleted name=%s sid=%s", session.name, session.id)
            return

        modified = self._modified_for(session)
        try:
            data = encode_multi(session.name, session.values, self.codecs)
            cookie_value = encode_multi(session.name, session.id, self.codecs)
        except InvalidSessionValue as e:
            e.session = session
            raise
        except (TypeError, ValueError) as e:
            raise RecordSaveError(f"mongostore: save: unable to encode session {session.id}: {e}", session=session) from e

        doc = SessionDocument(id=oid, data=data, modified=modified)
        try:
            await bounded(
                "save",
                self.col.update_one(
                    {"_id": oid},
                    {"$set": doc.model_dump(exclude={"id"})},
                    upsert=True,
                ),
                timeout,
            )
        except PyMongoError as e:
            raise RecordSaveError(f"mongostore: save: {e}", session=session) from e

        _write_cookie(response, session, cookie_value)
        log.debug("saved name=%s sid=%s modified=%s", session.name, session.id, modified.isoformat())

    # ----------------- Helpers -----------------

    def _timeout(self, timeout: Optional[float]) -> Optional[float]:
        return timeout if timeout is not None else self.config.operation_timeout

    @staticmethod
    def _parse_id(session: SessionRecord) -> ObjectId:
        if not isinstance(session.id, str) or not ObjectId.is_valid(session.id):
            raise InvalidIdentifier(f"mongostore: invalid session id {session.id!r}", session=session)
        return ObjectId(session.id)

    @staticmethod
    def _modified_for(session: SessionRecord) -> datetime:
        if session.modified is not None:
            if not isinstance(session.modified, datetime):
                raise InvalidModifiedValue("mongostore: invalid modified value", session=session)
            return session.modified
        if MODIFIED_KEY in session.values:
            val = session.values[MODIFIED_KEY]
            if not isinstance(val, datetime):
                raise InvalidModifiedValue(
                    f"mongostore: invalid modified value of type {type(val).__name__}",
                    session=session,
                )
            return val
        return datetime.now(timezone.utc)
