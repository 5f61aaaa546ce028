"""
Registration persistence.

`RegistrationRepository` is the capability set the services depend on.
`MongoRegistrationRepository` is the production adapter and
`InMemoryRegistrationRepository` the test/local double; `build_repository`
picks one from DATABASE_BACKEND.

Records leave the repository normalized: `id` instead of `_id`, ISO-8601
strings instead of datetimes, and committees/positions as lists even when
an older write path stored them as JSON strings.
"""
import copy
import json
import logging
from abc import ABC, abstractmethod
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import ASCENDING, DESCENDING
from pymongo.errors import PyMongoError

import config
from database import COLLECTIONS, create_document, get_db, to_object_id, to_str_id
from errors import ConfigurationError, DatabaseError
from schemas import COMMITTEES, POSITIONS, YEARS

logger = logging.getLogger(__name__)

LIST_FIELDS = ("committees", "positions")
RECENT_SUBMISSIONS_LIMIT = 5


def decode_list(value: Any) -> List[str]:
    """Accept a list, a JSON-encoded list or a comma separated string."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    if isinstance(value, str):
        try:
            decoded = json.loads(value)
        except json.JSONDecodeError:
            return [part.strip() for part in value.split(",") if part.strip()]
        if isinstance(decoded, list):
            return [str(v) for v in decoded]
        return [str(decoded)]
    return [str(value)]


def _plain(value: Any) -> Any:
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.isoformat()
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_plain(v) for v in value]
    return value


def normalize_record(doc: Optional[dict]) -> Optional[dict]:
    if not doc:
        return None
    record = {k: _plain(v) for k, v in to_str_id(doc).items()}
    for field in LIST_FIELDS:
        if field in record:
            record[field] = decode_list(record[field])
    return record


def encode_record(data) -> dict:
    if isinstance(data, BaseModel):
        data = data.model_dump()
    doc = dict(data)
    doc.pop("id", None)
    doc.pop("_id", None)
    for field in LIST_FIELDS:
        if field in doc:
            doc[field] = decode_list(doc[field])
    return doc


def is_complete(record: dict) -> bool:
    """True once the required attachment has been stored for the record."""
    files = record.get("files")
    return isinstance(files, dict) and bool(files.get("idCard"))


def _summary(record: dict) -> dict:
    return {
        "id": record.get("id"),
        "name": record.get("name"),
        "email": record.get("email"),
        "committees": record.get("committees", []),
        "positions": record.get("positions", []),
        "submittedAt": record.get("submittedAt"),
    }


class RegistrationRepository(ABC):
    collection = COLLECTIONS["registrations"]

    @abstractmethod
    async def create(self, data) -> str:
        ...

    @abstractmethod
    async def get(self, registration_id: str) -> Optional[dict]:
        ...

    @abstractmethod
    async def list(self, order_by: str = "submittedAt", direction: str = "desc") -> List[dict]:
        ...

    @abstractmethod
    async def update(self, registration_id: str, patch: dict) -> bool:
        ...

    @abstractmethod
    async def delete(self, registration_id: str) -> bool:
        ...

    @abstractmethod
    async def query(self, field: str, value: Any) -> List[dict]:
        """Records whose `field` equals `value` (or contains it, for list fields)."""

    async def stats(self, recent: int = RECENT_SUBMISSIONS_LIMIT) -> dict:
        committee_stats = {c: 0 for c in COMMITTEES}
        position_stats = {p: 0 for p in POSITIONS}
        year_stats = {y: 0 for y in YEARS}
        complete = []

        for record in await self.list("submittedAt", "desc"):
            if not is_complete(record):
                continue
            complete.append(record)
            for committee in record.get("committees", []):
                if committee in committee_stats:
                    committee_stats[committee] += 1
            for position in record.get("positions", []):
                if position in position_stats:
                    position_stats[position] += 1
            year = str(record.get("year", ""))
            if year in year_stats:
                year_stats[year] += 1

        return {
            "total": len(complete),
            "committeeStats": committee_stats,
            "positionStats": position_stats,
            "yearStats": year_stats,
            "recentSubmissions": [_summary(r) for r in complete[:recent]],
        }


def _sort_key(order_by: str):
    def key(record: dict):
        value = record.get(order_by)
        return "" if value is None else str(value)
    return key


def _matches(stored: Any, value: Any) -> bool:
    if isinstance(stored, list):
        return value in stored
    return stored == value


class InMemoryRegistrationRepository(RegistrationRepository):
    """Process-local repository. `documents` seeds raw stored documents by id."""

    def __init__(self, documents: Optional[Dict[str, dict]] = None):
        self._documents: Dict[str, dict] = copy.deepcopy(documents) if documents else {}

    def _read(self, registration_id: str) -> Optional[dict]:
        doc = self._documents.get(registration_id)
        if doc is None:
            return None
        return normalize_record({**copy.deepcopy(doc), "_id": registration_id})

    async def create(self, data) -> str:
        doc = encode_record(data)
        now = datetime.now(timezone.utc)
        doc.setdefault("submittedAt", now)
        doc["createdAt"] = now
        doc["updatedAt"] = now
        registration_id = str(ObjectId())
        self._documents[registration_id] = copy.deepcopy(doc)
        return registration_id

    async def get(self, registration_id: str) -> Optional[dict]:
        return self._read(registration_id)

    async def list(self, order_by: str = "submittedAt", direction: str = "desc") -> List[dict]:
        records = [self._read(registration_id) for registration_id in self._documents]
        return sorted(records, key=_sort_key(order_by), reverse=direction == "desc")

    async def update(self, registration_id: str, patch: dict) -> bool:
        doc = self._documents.get(registration_id)
        if doc is None:
            return False
        doc.update(copy.deepcopy(encode_record(patch)))
        doc["updatedAt"] = datetime.now(timezone.utc)
        return True

    async def delete(self, registration_id: str) -> bool:
        return self._documents.pop(registration_id, None) is not None

    async def query(self, field: str, value: Any) -> List[dict]:
        return [r for r in await self.list() if _matches(r.get(field), value)]


@contextmanager
def _database_errors(action: str):
    try:
        yield
    except PyMongoError as e:
        logger.error(f"MongoDB error while trying to {action}: {e}")
        raise DatabaseError(f"Failed to {action}", detail=str(e))


class MongoRegistrationRepository(RegistrationRepository):
    @property
    def _collection(self):
        return get_db()[self.collection]

    async def create(self, data) -> str:
        doc = encode_record(data)
        doc.setdefault("submittedAt", datetime.now(timezone.utc))
        with _database_errors("save registration"):
            return await create_document(self.collection, doc)

    async def get(self, registration_id: str) -> Optional[dict]:
        oid = to_object_id(registration_id)
        if oid is None:
            return None
        with _database_errors("fetch registration"):
            doc = await self._collection.find_one({"_id": oid})
        return normalize_record(doc)

    async def list(self, order_by: str = "submittedAt", direction: str = "desc") -> List[dict]:
        sort = DESCENDING if direction == "desc" else ASCENDING
        with _database_errors("fetch registrations"):
            docs = await self._collection.find().sort(order_by, sort).to_list(None)
        return [normalize_record(d) for d in docs]

    async def update(self, registration_id: str, patch: dict) -> bool:
        oid = to_object_id(registration_id)
        if oid is None:
            return False
        changes = encode_record(patch)
        changes["updatedAt"] = datetime.now(timezone.utc)
        with _database_errors("update registration"):
            result = await self._collection.update_one({"_id": oid}, {"$set": changes})
        return result.matched_count > 0

    async def delete(self, registration_id: str) -> bool:
        oid = to_object_id(registration_id)
        if oid is None:
            return False
        with _database_errors("delete registration"):
            result = await self._collection.delete_one({"_id": oid})
        return result.deleted_count > 0

    async def query(self, field: str, value: Any) -> List[dict]:
        if field in LIST_FIELDS:
            # legacy records hold the list as a JSON string; decode before matching
            criteria = {"$or": [{field: value}, {field: {"$type": "string"}}]}
        else:
            criteria = {field: value}
        with _database_errors("query registrations"):
            docs = await self._collection.find(criteria).sort("submittedAt", DESCENDING).to_list(None)
        records = [normalize_record(d) for d in docs]
        return [r for r in records if _matches(r.get(field), value)]


def build_repository() -> RegistrationRepository:
    if config.DATABASE_BACKEND == "memory":
        logger.warning("Using the in-memory registration repository; data is not persisted")
        return InMemoryRegistrationRepository()
    if config.DATABASE_BACKEND == "mongo":
        return MongoRegistrationRepository()
    raise ConfigurationError(f"Unknown DATABASE_BACKEND: {config.DATABASE_BACKEND}")
