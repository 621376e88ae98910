"""
functions/scoring/result_store.py

WHAT THIS FILE IS FOR
---------------------
Durable storage of scoring results, one record per (user_email, file_name).

    ResultStore.upsert()
      -> repository.find(user_email, file_name)
      -> found:     overwrite content fields + timestamp in place
         not found: build a new ScoringRecord
      -> repository.save(record)

REPOSITORIES
------------
- MongoResultRepository: motor (async MongoDB). save() is a single
  replace_one(filter=compound key, upsert=True), backed by a unique
  compound index, so a retried or cancelled request can only rewrite
  the record, never duplicate it.
- InMemoryResultRepository: dict keyed by the compound key; used when no
  mongo_url is configured (local runs, tests).

Concurrent upserts of the SAME key are last-write-wins.

Any repository failure is wrapped in PersistenceError; the pipeline
decides how to degrade.
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, Tuple

import structlog
from pymongo import ASCENDING, DESCENDING

from functions.utils.errors import PersistenceError
from schemas.output_schema import ScoringRecord, utc_now

logger = structlog.get_logger(__name__)

RecordKey = Tuple[str, str]


class ResultRepository(Protocol):
    async def find(self, user_email: str, file_name: str) -> Optional[ScoringRecord]: ...

    async def save(self, record: ScoringRecord) -> ScoringRecord: ...

    async def list_for_user(self, user_email: str) -> List[ScoringRecord]: ...


class InMemoryResultRepository:
    def __init__(self) -> None:
        self._records: Dict[RecordKey, ScoringRecord] = {}

    async def find(self, user_email: str, file_name: str) -> Optional[ScoringRecord]:
        record = self._records.get((user_email, file_name))
        return record.model_copy() if record is not None else None

    async def save(self, record: ScoringRecord) -> ScoringRecord:
        self._records[(record.user_email, record.file_name)] = record.model_copy()
        return record

    async def list_for_user(self, user_email: str) -> List[ScoringRecord]:
        records = [r.model_copy() for (email, _), r in self._records.items() if email == user_email]
        return sorted(records, key=lambda r: r.checked_at, reverse=True)

    def __len__(self) -> int:
        return len(self._records)


class MongoResultRepository:
    """
    motor-backed repository.

    `collection` is an AsyncIOMotorCollection (or anything with the same
    find_one / replace_one / find / create_index coroutine API).
    """

    def __init__(self, collection: Any) -> None:
        self._coll = collection

    @staticmethod
    def _key(user_email: str, file_name: str) -> Dict[str, str]:
        return {"user_email": user_email, "file_name": file_name}

    async def init_indexes(self) -> None:
        try:
            await self._coll.create_index(
                [("user_email", ASCENDING), ("file_name", ASCENDING)], unique=True
            )
            logger.debug("result_index_ready", index="user_email_1_file_name_1")
        except Exception as exc:  # noqa: BLE001
            if "already exists" in str(exc).lower():
                logger.debug("result_index_already_exists")
            else:
                logger.warning("result_index_create_failed", error=str(exc))

    async def find(self, user_email: str, file_name: str) -> Optional[ScoringRecord]:
        doc = await self._coll.find_one(self._key(user_email, file_name))
        if not doc:
            return None
        doc.pop("_id", None)
        return ScoringRecord.model_validate(doc)

    async def save(self, record: ScoringRecord) -> ScoringRecord:
        await self._coll.replace_one(
            self._key(record.user_email, record.file_name),
            record.model_dump(),
            upsert=True,
        )
        return record

    async def list_for_user(self, user_email: str) -> List[ScoringRecord]:
        cursor = self._coll.find({"user_email": user_email}).sort("checked_at", DESCENDING)
        records: List[ScoringRecord] = []
        async for doc in cursor:
            doc.pop("_id", None)
            records.append(ScoringRecord.model_validate(doc))
        return records


class ResultStore:
    def __init__(self, repository: ResultRepository) -> None:
        self.repository = repository

    async def upsert(
        self,
        user_email: str,
        file_name: str,
        *,
        score: int,
        raw_reply: str = "",
        extracted_text: str = "",
        job_title: Optional[str] = None,
        job_description: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> ScoringRecord:
        fields: Dict[str, Any] = {
            "job_title": job_title,
            "job_description": job_description,
            "extracted_text": extracted_text,
            "raw_reply": raw_reply,
            "score": score,
        }

        try:
            existing = await self.repository.find(user_email, file_name)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(
                f"Lookup failed for ({user_email!r}, {file_name!r}): {exc}",
                operation="find",
                cause=exc,
            ) from exc

        if existing is not None:
            update: Dict[str, Any] = {**fields, "checked_at": utc_now()}
            if user_id and existing.user_id is None:
                update["user_id"] = user_id
            record = existing.model_copy(update=update)
            logger.info("scoring_record_updated", user_email=user_email, file_name=file_name, score=score)
        else:
            record = ScoringRecord(user_email=user_email, file_name=file_name, user_id=user_id, **fields)
            logger.info("scoring_record_created", user_email=user_email, file_name=file_name, score=score)

        try:
            return await self.repository.save(record)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(
                f"Save failed for ({user_email!r}, {file_name!r}): {exc}",
                operation="save",
                cause=exc,
            ) from exc

    async def get(self, user_email: str, file_name: str) -> Optional[ScoringRecord]:
        try:
            return await self.repository.find(user_email, file_name)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(f"Lookup failed: {exc}", operation="find", cause=exc) from exc

    async def list_for_user(self, user_email: str) -> List[ScoringRecord]:
        try:
            return await self.repository.list_for_user(user_email)
        except Exception as exc:  # noqa: BLE001
            raise PersistenceError(f"History lookup failed: {exc}", operation="list", cause=exc) from exc
