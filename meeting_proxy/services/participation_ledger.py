from __future__ import annotations

import hashlib
import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Iterable, Sequence
from datetime import UTC, datetime
from functools import lru_cache
from typing import Any

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.participation import MeetingListItem, ParticipationRecord

logger = logging.getLogger(__name__)

# Per-batch ceiling of the backing store's bulk write.
MAX_BATCH_SIZE = 500
EMAIL_HASH_PREFIX_LENGTH = 8
QUERY_ALL_OVERFETCH_FACTOR = 10


def build_participation_key(occurrence_id: str, email: str) -> str:
    sanitized_occurrence_id = occurrence_id.replace("/", "_")
    email_hash = hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()
    return f"{sanitized_occurrence_id}_{email_hash[:EMAIL_HASH_PREFIX_LENGTH]}"


def chunked(items: Sequence[Any], size: int) -> Iterable[Sequence[Any]]:
    for start in range(0, len(items), size):
        yield items[start : start + size]


def normalize_record(record: ParticipationRecord) -> ParticipationRecord:
    # Re-validates records built with model_copy(update=...), which bypasses field validators.
    return ParticipationRecord.model_validate(record.model_dump())


class ParticipationLedger(ABC):
    @abstractmethod
    def upsert_batch(self, records: Sequence[ParticipationRecord]) -> int:
        raise NotImplementedError

    @abstractmethod
    def exists(self, occurrence_id: str, email: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def get(self, occurrence_id: str, email: str) -> ParticipationRecord | None:
        raise NotImplementedError

    @abstractmethod
    def find_any_for_occurrence(self, occurrence_id: str) -> ParticipationRecord | None:
        raise NotImplementedError

    @abstractmethod
    def delete(self, occurrence_id: str, email: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def count_for_occurrence(self, occurrence_id: str) -> int:
        raise NotImplementedError

    @abstractmethod
    def query_by_participant(
        self,
        email: str,
        from_time: datetime,
        to_time: datetime,
        limit: int,
    ) -> list[MeetingListItem]:
        raise NotImplementedError

    @abstractmethod
    def query_all(
        self,
        from_time: datetime,
        to_time: datetime,
        limit: int,
    ) -> list[MeetingListItem]:
        raise NotImplementedError

    @abstractmethod
    def delete_older_than(self, cutoff: datetime) -> int:
        raise NotImplementedError

    def is_available(self) -> bool:
        return True


class InMemoryParticipationLedger(ParticipationLedger):
    def __init__(self, batch_size: int = MAX_BATCH_SIZE) -> None:
        self._records: dict[str, ParticipationRecord] = {}
        self._batch_size = batch_size
        self._lock = threading.Lock()

    def upsert_batch(self, records: Sequence[ParticipationRecord]) -> int:
        written = 0
        for chunk in chunked(records, self._batch_size):
            # A chunk is applied whole or not at all.
            staged = {}
            for record in chunk:
                normalized = normalize_record(record)
                staged[build_participation_key(normalized.occurrence_id, normalized.participant_email)] = normalized
            with self._lock:
                self._records.update(staged)
            written += len(chunk)
        return written

    def exists(self, occurrence_id: str, email: str) -> bool:
        with self._lock:
            return build_participation_key(occurrence_id, email) in self._records

    def get(self, occurrence_id: str, email: str) -> ParticipationRecord | None:
        with self._lock:
            record = self._records.get(build_participation_key(occurrence_id, email))
        if record is None:
            return None
        return record.model_copy()

    def find_any_for_occurrence(self, occurrence_id: str) -> ParticipationRecord | None:
        for record in self._snapshot():
            if record.occurrence_id == occurrence_id:
                return record.model_copy()
        return None

    def delete(self, occurrence_id: str, email: str) -> bool:
        with self._lock:
            return self._records.pop(build_participation_key(occurrence_id, email), None) is not None

    def count_for_occurrence(self, occurrence_id: str) -> int:
        return sum(1 for record in self._snapshot() if record.occurrence_id == occurrence_id)

    def query_by_participant(
        self,
        email: str,
        from_time: datetime,
        to_time: datetime,
        limit: int,
    ) -> list[MeetingListItem]:
        normalized_email = email.strip().lower()
        matches = [
            record
            for record in self._snapshot()
            if record.participant_email == normalized_email
            and from_time <= _as_utc(record.start_time) <= to_time
        ]
        return _to_meeting_list(_newest_first(matches), limit)

    def query_all(
        self,
        from_time: datetime,
        to_time: datetime,
        limit: int,
    ) -> list[MeetingListItem]:
        matches = [
            record
            for record in self._snapshot()
            if from_time <= _as_utc(record.start_time) <= to_time
        ]
        candidates = _newest_first(matches)[: limit * QUERY_ALL_OVERFETCH_FACTOR]
        return _to_meeting_list(candidates, limit)

    def delete_older_than(self, cutoff: datetime) -> int:
        total_deleted = 0
        while True:
            with self._lock:
                expired_keys = [
                    key
                    for key, record in self._records.items()
                    if _as_utc(record.start_time) < cutoff
                ][: self._batch_size]
                for key in expired_keys:
                    del self._records[key]
            if not expired_keys:
                break
            total_deleted += len(expired_keys)
            logger.info("Deleted ledger batch size=%s total=%s", len(expired_keys), total_deleted)
            if len(expired_keys) < self._batch_size:
                break
        return total_deleted

    def _snapshot(self) -> list[ParticipationRecord]:
        with self._lock:
            return list(self._records.values())


class MongoParticipationLedger(ParticipationLedger):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
        batch_size: int = MAX_BATCH_SIZE,
        use_transactions: bool = True,
    ) -> None:
        from pymongo import ASCENDING, DESCENDING, MongoClient

        self._desc = DESCENDING
        self._batch_size = batch_size
        self._use_transactions = use_transactions
        if not use_transactions:
            logger.warning("MongoDB transactions disabled; ledger chunks are not written atomically")
        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([("start_time", ASCENDING)])
        self._collection.create_index(
            [("participant_email", ASCENDING), ("start_time", DESCENDING)],
        )
        self._collection.create_index([("occurrence_id", ASCENDING)])

    def upsert_batch(self, records: Sequence[ParticipationRecord]) -> int:
        from pymongo import ReplaceOne

        written = 0
        for chunk in chunked(records, self._batch_size):
            operations = []
            for record in chunk:
                document = _to_document(normalize_record(record))
                operations.append(ReplaceOne({"_id": document["_id"]}, document, upsert=True))
            if self._use_transactions:
                # Transactions need a replica set or sharded cluster.
                with self._client.start_session() as session:
                    with session.start_transaction():
                        self._collection.bulk_write(operations, ordered=True, session=session)
            else:
                self._collection.bulk_write(operations, ordered=True)
            written += len(chunk)
        return written

    def exists(self, occurrence_id: str, email: str) -> bool:
        key = build_participation_key(occurrence_id, email)
        return self._collection.find_one({"_id": key}, projection={"_id": 1}) is not None

    def get(self, occurrence_id: str, email: str) -> ParticipationRecord | None:
        document = self._collection.find_one({"_id": build_participation_key(occurrence_id, email)})
        if not document:
            return None
        return _from_document(document)

    def find_any_for_occurrence(self, occurrence_id: str) -> ParticipationRecord | None:
        document = self._collection.find_one({"occurrence_id": occurrence_id})
        if not document:
            return None
        return _from_document(document)

    def delete(self, occurrence_id: str, email: str) -> bool:
        result = self._collection.delete_one({"_id": build_participation_key(occurrence_id, email)})
        return result.deleted_count > 0

    def count_for_occurrence(self, occurrence_id: str) -> int:
        return int(self._collection.count_documents({"occurrence_id": occurrence_id}))

    def query_by_participant(
        self,
        email: str,
        from_time: datetime,
        to_time: datetime,
        limit: int,
    ) -> list[MeetingListItem]:
        cursor = (
            self._collection.find(
                {
                    "participant_email": email.strip().lower(),
                    "start_time": {"$gte": from_time, "$lte": to_time},
                },
            )
            .sort("start_time", self._desc)
            .limit(limit)
        )
        return _to_meeting_list([_from_document(document) for document in cursor], limit)

    def query_all(
        self,
        from_time: datetime,
        to_time: datetime,
        limit: int,
    ) -> list[MeetingListItem]:
        cursor = (
            self._collection.find({"start_time": {"$gte": from_time, "$lte": to_time}})
            .sort("start_time", self._desc)
            .limit(limit * QUERY_ALL_OVERFETCH_FACTOR)
        )
        return _to_meeting_list([_from_document(document) for document in cursor], limit)

    def delete_older_than(self, cutoff: datetime) -> int:
        total_deleted = 0
        while True:
            expired_ids = [
                document["_id"]
                for document in self._collection.find(
                    {"start_time": {"$lt": cutoff}},
                    projection={"_id": 1},
                ).limit(self._batch_size)
            ]
            if not expired_ids:
                break
            result = self._collection.delete_many({"_id": {"$in": expired_ids}})
            total_deleted += int(result.deleted_count)
            logger.info("Deleted ledger batch size=%s total=%s", result.deleted_count, total_deleted)
            if len(expired_ids) < self._batch_size:
                break
        return total_deleted

    def is_available(self) -> bool:
        from pymongo.errors import PyMongoError

        try:
            self._client.admin.command("ping")
        except PyMongoError as exc:
            logger.warning("MongoDB ping failed error=%s", exc)
            return False
        return True


def create_participation_ledger(settings: Settings) -> ParticipationLedger:
    return _create_participation_ledger_cached(
        store_name=settings.ledger_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_participants_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
        mongodb_use_transactions=settings.mongodb_use_transactions,
    )


@lru_cache
def _create_participation_ledger_cached(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
    mongodb_use_transactions: bool,
) -> ParticipationLedger:
    if store_name == "memory":
        return InMemoryParticipationLedger()

    if store_name == "mongodb":
        return MongoParticipationLedger(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
            use_transactions=mongodb_use_transactions,
        )

    raise ValueError(f"Unsupported ledger store: {store_name}")


def clear_participation_ledger_cache() -> None:
    _create_participation_ledger_cached.cache_clear()


def _to_document(record: ParticipationRecord) -> dict[str, Any]:
    document = record.model_dump(mode="python")
    document["_id"] = build_participation_key(record.occurrence_id, record.participant_email)
    document["source"] = record.source.value
    return document


def _from_document(document: dict[str, Any]) -> ParticipationRecord:
    payload = {key: value for key, value in document.items() if key != "_id"}
    return ParticipationRecord.model_validate(payload)


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


def _newest_first(records: list[ParticipationRecord]) -> list[ParticipationRecord]:
    return sorted(records, key=lambda record: _as_utc(record.start_time), reverse=True)


def _to_meeting_list(records: Iterable[ParticipationRecord], limit: int) -> list[MeetingListItem]:
    meetings: list[MeetingListItem] = []
    seen_occurrences: set[str] = set()
    for record in records:
        if record.occurrence_id in seen_occurrences:
            continue
        seen_occurrences.add(record.occurrence_id)
        meetings.append(
            MeetingListItem(
                occurrence_id=record.occurrence_id,
                meeting_id=record.meeting_id,
                topic=record.topic,
                date=record.start_time,
                duration_minutes=record.duration_minutes,
                host_email=record.host_email,
                has_summary=record.has_summary,
                has_recording=record.has_recording,
            ),
        )
        if len(meetings) >= limit:
            break
    return meetings
