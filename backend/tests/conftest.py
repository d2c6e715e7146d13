"""
backend/tests/conftest.py

Purpose:
    Shared pytest bootstrap for import paths, plus an in-memory stand-in for
    the Motor client/database used by the repositories. The fake supports the
    query and update operators the repositories issue and rolls collections
    back when a transaction block raises.
"""

from __future__ import annotations

import copy
import sys
from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from bson import ObjectId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

_THIS_FILE = Path(__file__).resolve()
_BACKEND_DIR = _THIS_FILE.parents[1]
_REPO_ROOT = _THIS_FILE.parents[2]

for candidate in (str(_BACKEND_DIR), str(_REPO_ROOT)):
    if candidate not in sys.path:
        sys.path.insert(0, candidate)


def _matches_condition(value: Any, condition: Any) -> bool:
    if isinstance(condition, dict) and condition and all(k.startswith("$") for k in condition):
        for op, operand in condition.items():
            if op == "$gte" and not (value is not None and value >= operand):
                return False
            if op == "$gt" and not (value is not None and value > operand):
                return False
            if op == "$lte" and not (value is not None and value <= operand):
                return False
            if op == "$lt" and not (value is not None and value < operand):
                return False
            if op == "$in" and value not in operand:
                return False
            if op == "$ne" and value == operand:
                return False
        return True
    return value == condition


def _match(doc: dict, query: dict) -> bool:
    return all(_matches_condition(doc.get(key), cond) for key, cond in (query or {}).items())


def _apply_update(doc: dict, update: dict, inserting: bool = False) -> None:
    for key, value in update.get("$set", {}).items():
        doc[key] = value
    for key, value in update.get("$inc", {}).items():
        doc[key] = doc.get(key, 0) + value
    if inserting:
        for key, value in update.get("$setOnInsert", {}).items():
            doc[key] = value


class FakeCursor:
    def __init__(self, docs: list[dict]):
        self._docs = docs
        self._sort: list[tuple[str, int]] = []
        self._skip = 0
        self._limit = None

    def sort(self, key: str, direction: int = 1):
        self._sort.append((key, direction))
        return self

    def skip(self, value: int):
        self._skip = int(value)
        return self

    def limit(self, value: int):
        self._limit = int(value)
        return self

    async def to_list(self, length: int | None = None):
        rows = list(self._docs)
        for key, direction in reversed(self._sort):
            rows.sort(key=lambda d: d.get(key), reverse=direction < 0)
        rows = rows[self._skip:]
        if self._limit:
            rows = rows[: self._limit]
        if length is not None:
            rows = rows[:length]
        return rows


class FakeCollection:
    def __init__(self, name: str):
        self.name = name
        self.docs: list[dict] = []
        # method name -> exception raised on the next call (failure injection)
        self.fail_next: dict[str, Exception] = {}

    def _maybe_fail(self, method: str) -> None:
        exc = self.fail_next.pop(method, None)
        if exc is not None:
            raise exc

    def _find_index(self, query: dict) -> int | None:
        for idx, doc in enumerate(self.docs):
            if _match(doc, query):
                return idx
        return None

    async def find_one(self, query: dict, projection=None, session=None):
        self._maybe_fail("find_one")
        idx = self._find_index(query)
        return copy.deepcopy(self.docs[idx]) if idx is not None else None

    def find(self, query: dict | None = None, projection: dict | None = None, session=None):
        rows = [copy.deepcopy(d) for d in self.docs if _match(d, query or {})]
        if projection:
            rows = [{k: v for k, v in d.items() if k == "_id" or k in projection} for d in rows]
        return FakeCursor(rows)

    async def count_documents(self, query: dict, session=None) -> int:
        return sum(1 for d in self.docs if _match(d, query))

    async def insert_one(self, doc: dict, session=None):
        self._maybe_fail("insert_one")
        doc.setdefault("_id", ObjectId())
        if self._find_index({"_id": doc["_id"]}) is not None:
            raise DuplicateKeyError(f"duplicate _id {doc['_id']!r} in {self.name}")
        self.docs.append(copy.deepcopy(doc))
        return SimpleNamespace(inserted_id=doc["_id"])

    async def insert_many(self, docs: list[dict], session=None):
        self._maybe_fail("insert_many")
        ids = []
        for doc in docs:
            result = await self.insert_one(doc, session=session)
            ids.append(result.inserted_id)
        return SimpleNamespace(inserted_ids=ids)

    async def update_one(self, query: dict, update: dict, upsert: bool = False, session=None):
        self._maybe_fail("update_one")
        idx = self._find_index(query)
        if idx is not None:
            _apply_update(self.docs[idx], update)
            return SimpleNamespace(matched_count=1, modified_count=1, upserted_id=None)
        if upsert:
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            _apply_update(doc, update, inserting=True)
            doc.setdefault("_id", ObjectId())
            self.docs.append(doc)
            return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=doc["_id"])
        return SimpleNamespace(matched_count=0, modified_count=0, upserted_id=None)

    async def find_one_and_update(
        self,
        query: dict,
        update: dict,
        return_document=ReturnDocument.BEFORE,
        upsert: bool = False,
        session=None,
    ):
        self._maybe_fail("find_one_and_update")
        idx = self._find_index(query)
        if idx is None:
            if not upsert:
                return None
            doc = {k: v for k, v in query.items() if not isinstance(v, dict)}
            doc.setdefault("_id", ObjectId())
            self.docs.append(doc)
            _apply_update(doc, update, inserting=True)
            return copy.deepcopy(doc) if return_document == ReturnDocument.AFTER else None
        before = copy.deepcopy(self.docs[idx])
        _apply_update(self.docs[idx], update)
        return copy.deepcopy(self.docs[idx]) if return_document == ReturnDocument.AFTER else before

    async def delete_many(self, query: dict, session=None):
        self._maybe_fail("delete_many")
        keep = [d for d in self.docs if not _match(d, query)]
        deleted = len(self.docs) - len(keep)
        self.docs = keep
        return SimpleNamespace(deleted_count=deleted)


class FakeDatabase:
    def __init__(self):
        self._collections: dict[str, FakeCollection] = {}

    def __getattr__(self, name: str) -> FakeCollection:
        if name.startswith("_"):
            raise AttributeError(name)
        if name not in self._collections:
            self._collections[name] = FakeCollection(name)
        return self._collections[name]

    async def command(self, name: str):
        return {"ok": 1.0}

    def snapshot(self) -> dict[str, list[dict]]:
        return {name: copy.deepcopy(c.docs) for name, c in self._collections.items()}

    def restore(self, snap: dict[str, list[dict]]) -> None:
        for name, coll in self._collections.items():
            coll.docs = copy.deepcopy(snap.get(name, []))


class _FakeTransaction:
    def __init__(self, database: FakeDatabase):
        self._database = database
        self._snapshot = None

    async def __aenter__(self):
        self._snapshot = self._database.snapshot()
        return self

    async def __aexit__(self, exc_type, exc, tb):
        if exc_type is not None:
            self._database.restore(self._snapshot)
        return False


class FakeSession:
    def __init__(self, database: FakeDatabase):
        self._database = database

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc, tb):
        return False

    def start_transaction(self):
        return _FakeTransaction(self._database)


class FakeMotorClient:
    def __init__(self, database: FakeDatabase):
        self._database = database

    async def start_session(self):
        return FakeSession(self._database)

    def close(self):
        pass


@pytest.fixture
def fake_db(monkeypatch):
    """Patch betsim.database with an in-memory database and client."""
    import betsim.database as _db

    database = FakeDatabase()
    monkeypatch.setattr(_db, "db", database, raising=False)
    monkeypatch.setattr(_db, "client", FakeMotorClient(database), raising=False)
    return database
