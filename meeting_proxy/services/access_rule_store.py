from __future__ import annotations

import hashlib
from abc import ABC, abstractmethod
from functools import lru_cache
from typing import Any

from meeting_proxy.core.config import Settings
from meeting_proxy.schemas.access import AccessRule


def build_access_rule_key(meeting_id: str, email: str) -> str:
    email_hash = hashlib.sha256(email.strip().lower().encode("utf-8")).hexdigest()
    return f"{meeting_id.strip()}_{email_hash[:8]}"


class AccessRuleStore(ABC):
    @abstractmethod
    def upsert(self, rule: AccessRule) -> AccessRule:
        raise NotImplementedError

    @abstractmethod
    def delete(self, meeting_id: str, email: str) -> bool:
        raise NotImplementedError

    @abstractmethod
    def list_for_meeting(self, meeting_id: str) -> list[AccessRule]:
        raise NotImplementedError

    @abstractmethod
    def list_all(self) -> list[AccessRule]:
        raise NotImplementedError


class InMemoryAccessRuleStore(AccessRuleStore):
    def __init__(self) -> None:
        self._rules: dict[str, AccessRule] = {}

    def upsert(self, rule: AccessRule) -> AccessRule:
        self._rules[build_access_rule_key(rule.meeting_id, rule.participant_email)] = rule
        return rule.model_copy()

    def delete(self, meeting_id: str, email: str) -> bool:
        return self._rules.pop(build_access_rule_key(meeting_id, email), None) is not None

    def list_for_meeting(self, meeting_id: str) -> list[AccessRule]:
        return [rule.model_copy() for rule in self._rules.values() if rule.meeting_id == meeting_id]

    def list_all(self) -> list[AccessRule]:
        return [rule.model_copy() for rule in self._rules.values()]


class MongoAccessRuleStore(AccessRuleStore):
    def __init__(
        self,
        *,
        uri: str,
        db_name: str,
        collection_name: str,
        connect_timeout_ms: int = 2000,
    ) -> None:
        from pymongo import ASCENDING, MongoClient

        self._client = MongoClient(
            uri,
            serverSelectionTimeoutMS=connect_timeout_ms,
            connectTimeoutMS=connect_timeout_ms,
            tz_aware=True,
        )
        self._collection = self._client[db_name][collection_name]
        self._collection.create_index([("meeting_id", ASCENDING)])

    def upsert(self, rule: AccessRule) -> AccessRule:
        document = rule.model_dump(mode="python")
        document["_id"] = build_access_rule_key(rule.meeting_id, rule.participant_email)
        self._collection.replace_one({"_id": document["_id"]}, document, upsert=True)
        return rule

    def delete(self, meeting_id: str, email: str) -> bool:
        result = self._collection.delete_one({"_id": build_access_rule_key(meeting_id, email)})
        return result.deleted_count > 0

    def list_for_meeting(self, meeting_id: str) -> list[AccessRule]:
        return [_from_document(document) for document in self._collection.find({"meeting_id": meeting_id})]

    def list_all(self) -> list[AccessRule]:
        return [_from_document(document) for document in self._collection.find()]


def create_access_rule_store(settings: Settings) -> AccessRuleStore:
    return _create_access_rule_store_cached(
        store_name=settings.ledger_store,
        mongodb_uri=settings.mongodb_uri,
        mongodb_db_name=settings.mongodb_db_name,
        mongodb_collection_name=settings.mongodb_access_rules_collection,
        mongodb_connect_timeout_ms=settings.mongodb_connect_timeout_ms,
    )


@lru_cache
def _create_access_rule_store_cached(
    store_name: str,
    mongodb_uri: str,
    mongodb_db_name: str,
    mongodb_collection_name: str,
    mongodb_connect_timeout_ms: int,
) -> AccessRuleStore:
    if store_name == "memory":
        return InMemoryAccessRuleStore()

    if store_name == "mongodb":
        return MongoAccessRuleStore(
            uri=mongodb_uri,
            db_name=mongodb_db_name,
            collection_name=mongodb_collection_name,
            connect_timeout_ms=mongodb_connect_timeout_ms,
        )

    raise ValueError(f"Unsupported access rule store: {store_name}")


def clear_access_rule_store_cache() -> None:
    _create_access_rule_store_cached.cache_clear()


def _from_document(document: dict[str, Any]) -> AccessRule:
    return AccessRule.model_validate({key: value for key, value in document.items() if key != "_id"})
