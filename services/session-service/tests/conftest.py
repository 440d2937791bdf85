"""
Shared fixtures: an in-memory stand-in for the motor collection surface the
store uses, plus store and HTTP client fixtures.
"""
import asyncio
import copy
from http.cookies import SimpleCookie
from types import SimpleNamespace

import pytest
from httpx import ASGITransport, AsyncClient
from pymongo.errors import OperationFailure

from mongostore import MongoDBStore, MongoDBStoreConfig, SessionOptions

HASH_KEY = "test-hash-key-0123456789"


class FakeCommandCursor:
    def __init__(self, docs):
        self._it = iter(docs)

    def __aiter__(self):
        return self

    async def __anext__(self):
        try:
            return next(self._it)
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self):
        self.docs = {}
        self.indexes = {"_id_": {"v": 2, "key": {"_id": 1}, "name": "_id_"}}
        self.calls = []
        self.fail = {}
        self.delay = 0.0

    async def _enter(self, op):
        self.calls.append(op)
        if op in self.fail:
            raise self.fail[op]
        if self.delay:
            await asyncio.sleep(self.delay)

    async def find_one(self, flt):
        await self._enter("find_one")
        doc = self.docs.get(flt["_id"])
        return copy.deepcopy(doc) if doc else None

    async def update_one(self, flt, update, upsert=False):
        await self._enter("update_one")
        _id = flt["_id"]
        doc = self.docs.get(_id)
        upserted_id = None
        if doc is None:
            if not upsert:
                return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)
            doc = {"_id": _id}
            upserted_id = _id
        # replace atomically, no partial documents
        new_doc = dict(doc)
        new_doc.update(copy.deepcopy(update["$set"]))
        self.docs[_id] = new_doc
        return SimpleNamespace(matched_count=0 if upserted_id else 1, modified_count=1, upserted_id=upserted_id)

    async def delete_one(self, flt):
        await self._enter("delete_one")
        removed = self.docs.pop(flt["_id"], None)
        return SimpleNamespace(deleted_count=1 if removed else 0)

    def list_indexes(self):
        self.calls.append("list_indexes")
        if "list_indexes" in self.fail:
            raise self.fail["list_indexes"]
        return FakeCommandCursor([dict(ix) for ix in self.indexes.values()])

    async def create_index(self, keys, **kwargs):
        await self._enter("create_index")
        name = kwargs.pop("name", None) or "_".join(f"{k}_{d}" for k, d in keys)
        ix = {"v": 2, "key": dict(keys), "name": name}
        ix.update(kwargs)
        self.indexes[name] = ix
        return name

    async def drop_index(self, name):
        await self._enter("drop_index")
        if name not in self.indexes:
            raise OperationFailure(f"index not found with name [{name}]")
        del self.indexes[name]


def _set_cookie_headers(response):
    # httpx spells it get_list, starlette getlist
    if hasattr(response.headers, "get_list"):
        return response.headers.get_list("set-cookie")
    return response.headers.getlist("set-cookie")


class CookieReader:
    """Reads Set-Cookie headers off starlette or httpx responses."""

    @staticmethod
    def header(response, name):
        for header in _set_cookie_headers(response):
            if header.startswith(f"{name}="):
                return header
        return None

    @staticmethod
    def value(response, name):
        for header in _set_cookie_headers(response):
            jar = SimpleCookie()
            jar.load(header)
            if name in jar:
                return jar[name].value
        return None


@pytest.fixture
def cookies():
    return CookieReader()


@pytest.fixture
def collection():
    return FakeCollection()


@pytest.fixture
def store_config():
    return MongoDBStoreConfig(index_ttl=False, session_options=SessionOptions(max_age=86400))


@pytest.fixture
def store(collection, store_config):
    return MongoDBStore(collection, HASH_KEY, config=store_config)


@pytest.fixture
async def client(store):
    from app.main import app

    app.state.session_store = store
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
