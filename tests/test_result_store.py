# tests/test_result_store.py
from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import pytest
from pymongo import ASCENDING, DESCENDING

from functions.scoring.result_store import (
    InMemoryResultRepository,
    MongoResultRepository,
    ResultStore,
)
from functions.utils.errors import PersistenceError
from schemas.output_schema import ScoringRecord


@pytest.fixture
def anyio_backend():
    return "asyncio"


# -------------------------
# ResultStore over the in-memory repository
# -------------------------
@pytest.mark.anyio
async def test_upsert_twice_keeps_one_record_with_latest_score() -> None:
    repo = InMemoryResultRepository()
    store = ResultStore(repo)

    first = await store.upsert("a@x.io", "cv.pdf", score=70, raw_reply="ATS Score: 70")
    second = await store.upsert("a@x.io", "cv.pdf", score=90, raw_reply="ATS Score: 90")

    assert len(repo) == 1
    stored = await store.get("a@x.io", "cv.pdf")
    assert stored is not None
    assert stored.score == 90
    assert stored.raw_reply == "ATS Score: 90"
    assert second.checked_at >= first.checked_at


@pytest.mark.anyio
async def test_upsert_distinct_keys_create_distinct_records() -> None:
    repo = InMemoryResultRepository()
    store = ResultStore(repo)

    await store.upsert("a@x.io", "cv.pdf", score=70)
    await store.upsert("a@x.io", "cv_v2.pdf", score=75)
    await store.upsert("b@x.io", "cv.pdf", score=80)

    assert len(repo) == 3


@pytest.mark.anyio
async def test_upsert_overwrites_job_context_and_keeps_first_user_id() -> None:
    store = ResultStore(InMemoryResultRepository())

    await store.upsert("a@x.io", "cv.pdf", score=70, job_title="SRE", user_id="u-1")
    updated = await store.upsert(
        "a@x.io", "cv.pdf", score=85, job_title=None, job_description="Go", user_id="u-2"
    )

    assert updated.user_id == "u-1"
    assert updated.job_title is None
    assert updated.job_description == "Go"
    assert updated.score == 85


@pytest.mark.anyio
async def test_upsert_sets_user_id_when_previously_unset() -> None:
    store = ResultStore(InMemoryResultRepository())

    await store.upsert("a@x.io", "cv.pdf", score=70)
    updated = await store.upsert("a@x.io", "cv.pdf", score=71, user_id="u-9")

    assert updated.user_id == "u-9"


@pytest.mark.anyio
async def test_list_for_user_returns_newest_first() -> None:
    repo = InMemoryResultRepository()
    now = datetime.now(timezone.utc)
    await repo.save(ScoringRecord(user_email="a@x.io", file_name="old.pdf", checked_at=now - timedelta(days=1)))
    await repo.save(ScoringRecord(user_email="a@x.io", file_name="new.pdf", checked_at=now))
    await repo.save(ScoringRecord(user_email="b@x.io", file_name="other.pdf", checked_at=now))

    records = await ResultStore(repo).list_for_user("a@x.io")

    assert [r.file_name for r in records] == ["new.pdf", "old.pdf"]


class FailingRepository:
    def __init__(self, fail_on: str) -> None:
        self.fail_on = fail_on

    async def find(self, user_email: str, file_name: str) -> Optional[ScoringRecord]:
        if self.fail_on == "find":
            raise ConnectionError("db down")
        return None

    async def save(self, record: ScoringRecord) -> ScoringRecord:
        raise ConnectionError("db down")

    async def list_for_user(self, user_email: str) -> List[ScoringRecord]:
        raise ConnectionError("db down")


@pytest.mark.anyio
@pytest.mark.parametrize("fail_on", ["find", "save"])
async def test_repository_failures_become_persistence_errors(fail_on: str) -> None:
    store = ResultStore(FailingRepository(fail_on))

    with pytest.raises(PersistenceError) as exc_info:
        await store.upsert("a@x.io", "cv.pdf", score=70)

    assert exc_info.value.details == {"operation": fail_on}
    assert isinstance(exc_info.value.cause, ConnectionError)


@pytest.mark.anyio
async def test_history_failure_becomes_persistence_error() -> None:
    with pytest.raises(PersistenceError):
        await ResultStore(FailingRepository("list")).list_for_user("a@x.io")


# -------------------------
# MongoResultRepository against a fake motor collection
# -------------------------
class FakeCursor:
    def __init__(self, docs: List[Dict[str, Any]]) -> None:
        self._docs = docs
        self.sort_args: Optional[tuple] = None

    def sort(self, key: str, direction: int) -> "FakeCursor":
        self.sort_args = (key, direction)
        self._docs = sorted(self._docs, key=lambda d: d[key], reverse=direction == DESCENDING)
        return self

    def __aiter__(self):
        self._iter = iter(self._docs)
        return self

    async def __anext__(self) -> Dict[str, Any]:
        try:
            return dict(next(self._iter))
        except StopIteration:
            raise StopAsyncIteration


class FakeCollection:
    def __init__(self) -> None:
        self.docs: List[Dict[str, Any]] = []
        self.replace_calls: List[tuple] = []
        self.index_calls: List[tuple] = []
        self.last_cursor: Optional[FakeCursor] = None

    async def create_index(self, keys, unique: bool = False):
        self.index_calls.append((keys, unique))
        return "user_email_1_file_name_1"

    async def find_one(self, flt: Dict[str, Any]):
        for doc in self.docs:
            if all(doc.get(k) == v for k, v in flt.items()):
                return dict(doc)
        return None

    async def replace_one(self, flt: Dict[str, Any], doc: Dict[str, Any], upsert: bool = False):
        self.replace_calls.append((flt, doc, upsert))
        for i, existing in enumerate(self.docs):
            if all(existing.get(k) == v for k, v in flt.items()):
                self.docs[i] = {"_id": existing["_id"], **doc}
                return
        if upsert:
            self.docs.append({"_id": len(self.docs) + 1, **doc})

    def find(self, flt: Dict[str, Any]) -> FakeCursor:
        matching = [d for d in self.docs if all(d.get(k) == v for k, v in flt.items())]
        self.last_cursor = FakeCursor(matching)
        return self.last_cursor


@pytest.mark.anyio
async def test_mongo_init_indexes_creates_unique_compound_index() -> None:
    coll = FakeCollection()
    await MongoResultRepository(coll).init_indexes()
    assert coll.index_calls == [([("user_email", ASCENDING), ("file_name", ASCENDING)], True)]


@pytest.mark.anyio
async def test_mongo_save_is_single_upserting_replace() -> None:
    coll = FakeCollection()
    store = ResultStore(MongoResultRepository(coll))

    await store.upsert("a@x.io", "cv.pdf", score=70)
    await store.upsert("a@x.io", "cv.pdf", score=90)

    assert len(coll.docs) == 1
    assert coll.docs[0]["score"] == 90
    assert len(coll.replace_calls) == 2
    for flt, doc, upsert in coll.replace_calls:
        assert flt == {"user_email": "a@x.io", "file_name": "cv.pdf"}
        assert upsert is True
        assert "_id" not in doc


@pytest.mark.anyio
async def test_mongo_find_strips_object_id() -> None:
    coll = FakeCollection()
    coll.docs.append({"_id": "abc", "user_email": "a@x.io", "file_name": "cv.pdf", "score": 55})

    record = await MongoResultRepository(coll).find("a@x.io", "cv.pdf")

    assert record is not None
    assert record.score == 55
    assert await MongoResultRepository(coll).find("a@x.io", "missing.pdf") is None


@pytest.mark.anyio
async def test_mongo_list_for_user_sorts_descending() -> None:
    coll = FakeCollection()
    now = datetime.now(timezone.utc)
    coll.docs.extend(
        [
            {"_id": 1, "user_email": "a@x.io", "file_name": "old.pdf", "checked_at": now - timedelta(hours=2)},
            {"_id": 2, "user_email": "a@x.io", "file_name": "new.pdf", "checked_at": now},
            {"_id": 3, "user_email": "b@x.io", "file_name": "x.pdf", "checked_at": now},
        ]
    )

    records = await MongoResultRepository(coll).list_for_user("a@x.io")

    assert [r.file_name for r in records] == ["new.pdf", "old.pdf"]
    assert coll.last_cursor is not None
    assert coll.last_cursor.sort_args == ("checked_at", DESCENDING)
