from __future__ import annotations

import logging
from typing import Any, Dict

from .errors import CookieDecodeError
from .session import SessionRecord

log = logging.getLogger("mongostore.registry")

_STATE_ATTR = "mongostore_registry"


class SessionRegistry:
    """
    Per-request map of session name -> decoded SessionRecord.

    Create one per request (or use `registry_for`). Repeated `get` calls for the
    same name return the same object, so all handlers in a request mutate one
    record.
    """
    def __init__(self, request: Any) -> None:
        self.request = request
        self._sessions: Dict[str, SessionRecord] = {}
        self._stores: Dict[str, Any] = {}

    async def get(self, store, name: str) -> SessionRecord:
        if name in self._sessions:
            return self._sessions[name]
        try:
            session = await store.new(self.request, name)
        except CookieDecodeError as e:
            # register the fresh session so later calls don't hit the bad cookie again
            self._register(store, e.session)
            raise
        self._register(store, session)
        return session

    def _register(self, store, session: SessionRecord) -> None:
        self._sessions[session.name] = session
        self._stores[session.name] = store

    async def save_all(self, response: Any) -> None:
        for name, session in self._sessions.items():
            await self._stores[name].save(session, response)

    def __contains__(self, name: str) -> bool:
        return name in self._sessions

    def __len__(self) -> int:
        return len(self._sessions)


def registry_for(request: Any) -> SessionRegistry:
    """Return the registry bound to this request, creating it on first use."""
    reg = getattr(request.state, _STATE_ATTR, None)
    if reg is None:
        reg = SessionRegistry(request)
        setattr(request.state, _STATE_ATTR, reg)
    return reg
