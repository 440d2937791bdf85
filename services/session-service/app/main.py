from __future__ import annotations

import time
import uuid
import logging

import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from starlette.responses import Response

from motor.motor_asyncio import AsyncIOMotorClient

from mongostore import IndexSetupError, MongoDBStore

from .logger import request_id_var, setup_logging
from .settings import settings
from .routers.health_routes import router as health_router
from .routers.session_routes import router as session_router

setup_logging()
log = logging.getLogger("session-service")

app = FastAPI(title="Session Service")


app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ALLOW_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_context_middleware(request: Request, call_next):
    """
    Bind a request id for every log line of the request (store logs included)
    and echo it back as x-request-id.
    """
    rid = request.headers.get("x-request-id") or uuid.uuid4().hex
    token = request_id_var.set(rid)
    request.state.request_id = rid
    start = time.perf_counter()
    had_cookie = settings.SESSION_NAME in request.cookies

    log.info("REQ %s %s session_cookie=%s", request.method, request.url.path, had_cookie)
    try:
        resp: Response = await call_next(request)
    except Exception:
        log.exception("ERR %s %s dur_ms=%d", request.method, request.url.path, (time.perf_counter() - start) * 1000)
        raise
    else:
        resp.headers["x-request-id"] = rid
        log.info(
            "RES %s %s status=%s dur_ms=%d",
            request.method,
            request.url.path,
            resp.status_code,
            (time.perf_counter() - start) * 1000,
        )
        return resp
    finally:
        request_id_var.reset(token)


@app.on_event("startup")
async def startup():
    log.info(
        "startup begin mongo_db=%s collection=%s index_ttl=%s max_age=%s",
        settings.MONGO_DB,
        settings.COLLECTION,
        settings.INDEX_TTL,
        settings.COOKIE_MAX_AGE,
    )

    client = AsyncIOMotorClient(settings.MONGO_URI)
    col = client[settings.MONGO_DB][settings.COLLECTION]
    app.state.mongo_client = client

    try:
        store = await MongoDBStore.create(col, *settings.key_pairs(), config=settings.to_store_config())
    except IndexSetupError as e:
        # keep serving; documents just won't expire on their own
        log.error("ttl index setup failed err=%s; continuing without auto-expiry", e)
        store = e.store
    app.state.session_store = store

    log.info("startup complete")


@app.on_event("shutdown")
async def shutdown():
    c = getattr(app.state, "mongo_client", None)
    if c:
        c.close()


app.include_router(health_router)
app.include_router(session_router)


if __name__ == "__main__":
    uvicorn.run(
        "app.main:app",
        host="0.0.0.0",
        port=settings.PORT,
        reload=True,
    )
