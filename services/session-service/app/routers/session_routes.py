from __future__ import annotations

import logging
from typing import Any, Dict

from bson import ObjectId
from fastapi import APIRouter, HTTPException, Request, Response
from fastapi.encoders import jsonable_encoder

from mongostore import (
    CookieDecodeError,
    InvalidIdentifier,
    InvalidModifiedValue,
    InvalidSessionValue,
    MongoDBStore,
    RecordLoadError,
    RecordSaveError,
    SessionRecord,
    StoreTimeoutError,
    registry_for,
)

from ..settings import settings

router = APIRouter(prefix="/session", tags=["session"])
log = logging.getLogger("session-service.session")


# ---------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------

async def _current_session(request: Request) -> SessionRecord:
    store: MongoDBStore = request.app.state.session_store
    try:
        return await store.get(registry_for(request), settings.SESSION_NAME)
    except CookieDecodeError as e:
        # bad or stale cookie: carry on with the fresh session
        log.warning("cookie rejected err=%s", e)
        return e.session
    except (RecordLoadError, StoreTimeoutError) as e:
        log.error("session load failed err=%s", e)
        raise HTTPException(status_code=503, detail="Session store unavailable")


async def _save(request: Request, response: Response) -> None:
    try:
        await registry_for(request).save_all(response)
    except (InvalidModifiedValue, InvalidSessionValue, InvalidIdentifier) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except (RecordSaveError, StoreTimeoutError) as e:
        log.error("session save failed err=%s", e)
        raise HTTPException(status_code=503, detail="Session store unavailable")


def _contract(session: SessionRecord) -> Dict[str, Any]:
    # values may hold ObjectIds and datetimes written by other handlers
    return {
        "id": session.id,
        "is_new": session.is_new,
        "values": jsonable_encoder(session.values, custom_encoder={ObjectId: str}),
    }


# ---------------------------------------------------------------------
# Routes
# ---------------------------------------------------------------------

@router.get("")
async def read_session(request: Request) -> Dict[str, Any]:
    return _contract(await _current_session(request))


@router.put("/values")
async def update_values(request: Request, response: Response, payload: Dict[str, Any]) -> Dict[str, Any]:
    """
    Merge `payload` into the session values and persist.
    """
    session = await _current_session(request)
    session.values.update(payload)
    await _save(request, response)
    log.info("session updated sid=%s keys=%s", session.id, sorted(payload))
    return _contract(session)


@router.delete("/values/{key}")
async def delete_value(request: Request, response: Response, key: str) -> Dict[str, Any]:
    session = await _current_session(request)
    if key not in session.values:
        raise HTTPException(status_code=404, detail=f"No session value {key!r}")
    session.values.pop(key)
    await _save(request, response)
    return _contract(session)


@router.post("/flashes")
async def add_flash(request: Request, response: Response, payload: Dict[str, Any]) -> Dict[str, Any]:
    message = payload.get("message")
    if not message:
        raise HTTPException(status_code=400, detail="Missing message")
    session = await _current_session(request)
    session.add_flash(message)
    await _save(request, response)
    return {"ok": True}


@router.get("/flashes")
async def pop_flashes(request: Request, response: Response) -> Dict[str, Any]:
    session = await _current_session(request)
    flashes = session.flashes()
    if flashes:
        await _save(request, response)
    return {"flashes": jsonable_encoder(flashes, custom_encoder={ObjectId: str})}


@router.post("/logout")
async def logout(request: Request, response: Response) -> Dict[str, Any]:
    session = await _current_session(request)
    session.options.max_age = -1
    await _save(request, response)
    log.info("session deleted sid=%s", session.id)
    return {"ok": True}
