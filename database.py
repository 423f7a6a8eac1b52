"""
Persistence for CryptoPet.

MongoDB is used when DATABASE_URL and DATABASE_NAME are set; ``db`` stays None
otherwise and callers fall back to ``MemoryStorage``. Every entity is stored as
one whole document per user, replaced atomically on save.
"""
import copy
import logging
import os
import threading
from abc import ABC, abstractmethod
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from pymongo import ASCENDING, DESCENDING, MongoClient
from pymongo.errors import PyMongoError

from errors import AdapterFailure

logger = logging.getLogger(__name__)

DATABASE_URL = os.getenv("DATABASE_URL")
DATABASE_NAME = os.getenv("DATABASE_NAME")

db = None
if DATABASE_URL and DATABASE_NAME:
    _client = MongoClient(DATABASE_URL, tz_aware=True)
    db = _client[DATABASE_NAME]

KINDS = ("pet", "progress", "games", "daily")


class Storage(ABC):
    """Key-value persistence of whole entities, keyed by (kind, user id)."""

    @abstractmethod
    def load(self, kind: str, user_id: str) -> Optional[Dict[str, Any]]:
        ...

    @abstractmethod
    def save(self, kind: str, user_id: str, document: Dict[str, Any]):
        ...

    @abstractmethod
    def top(self, kind: str, field: str, limit: int) -> List[Dict[str, Any]]:
        """Documents with the highest ``field``, ties broken by user id."""

    @abstractmethod
    def count_above(self, kind: str, field: str, value: Any) -> int:
        ...


def _check_kind(kind: str):
    if kind not in KINDS:
        raise ValueError(f"unknown entity kind: {kind}")


class MongoStorage(Storage):
    def __init__(self, database):
        self.db = database

    def load(self, kind: str, user_id: str) -> Optional[Dict[str, Any]]:
        _check_kind(kind)
        try:
            doc = self.db[kind].find_one({"user_id": user_id})
        except PyMongoError as e:
            raise AdapterFailure(f"load {kind}/{user_id} failed: {e}") from e
        if doc is not None:
            doc.pop("_id", None)
        return doc

    def save(self, kind: str, user_id: str, document: Dict[str, Any]):
        _check_kind(kind)
        data = dict(document)
        data["user_id"] = user_id
        data["updated_at"] = datetime.now(timezone.utc)
        try:
            self.db[kind].replace_one({"user_id": user_id}, data, upsert=True)
        except PyMongoError as e:
            raise AdapterFailure(f"save {kind}/{user_id} failed: {e}") from e

    def top(self, kind: str, field: str, limit: int) -> List[Dict[str, Any]]:
        _check_kind(kind)
        try:
            cursor = self.db[kind].find({field: {"$exists": True}}, {"_id": 0}) \
                .sort([(field, DESCENDING), ("user_id", ASCENDING)]).limit(limit)
            return list(cursor)
        except PyMongoError as e:
            raise AdapterFailure(f"rank {kind}.{field} failed: {e}") from e

    def count_above(self, kind: str, field: str, value: Any) -> int:
        _check_kind(kind)
        try:
            return self.db[kind].count_documents({field: {"$gt": value}})
        except PyMongoError as e:
            raise AdapterFailure(f"rank {kind}.{field} failed: {e}") from e


class MemoryStorage(Storage):
    """Process-local storage for tests and for running without MongoDB."""

    def __init__(self):
        self._data: Dict[str, Dict[str, Dict[str, Any]]] = {kind: {} for kind in KINDS}
        self._lock = threading.Lock()

    def load(self, kind: str, user_id: str) -> Optional[Dict[str, Any]]:
        _check_kind(kind)
        with self._lock:
            doc = self._data[kind].get(user_id)
            return copy.deepcopy(doc) if doc is not None else None

    def save(self, kind: str, user_id: str, document: Dict[str, Any]):
        _check_kind(kind)
        with self._lock:
            self._data[kind][user_id] = copy.deepcopy(document)

    def top(self, kind: str, field: str, limit: int) -> List[Dict[str, Any]]:
        _check_kind(kind)
        with self._lock:
            docs = [copy.deepcopy(doc) for doc in self._data[kind].values() if field in doc]
        docs.sort(key=lambda doc: (-doc[field], doc["user_id"]))
        return docs[:limit]

    def count_above(self, kind: str, field: str, value: Any) -> int:
        _check_kind(kind)
        with self._lock:
            return sum(1 for doc in self._data[kind].values() if field in doc and doc[field] > value)


def default_storage() -> Storage:
    if db is not None:
        return MongoStorage(db)
    logger.warning("DATABASE_URL/DATABASE_NAME not set, using in-memory storage")
    return MemoryStorage()
