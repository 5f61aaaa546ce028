"""
MongoDB connection and document helpers.

The client is created lazily on first use so that importing this module
never opens a connection.
"""
from datetime import datetime, timezone
from typing import Optional, Union

from bson.objectid import ObjectId
from pydantic import BaseModel
from pymongo import AsyncMongoClient

import config
from errors import DatabaseError

COLLECTIONS = {
    "registrations": "registrations",
    "admin_users": "admin_users",
}

_client: Optional[AsyncMongoClient] = None


def get_db():
    global _client
    if not config.DATABASE_URL:
        raise DatabaseError("Database not available", detail="DATABASE_URL is not set")
    if _client is None:
        _client = AsyncMongoClient(config.DATABASE_URL, tz_aware=True)
    return _client[config.DATABASE_NAME]


async def close_db():
    global _client
    if _client is not None:
        await _client.close()
        _client = None


def to_object_id(value: str) -> Optional[ObjectId]:
    if not isinstance(value, str) or not ObjectId.is_valid(value):
        return None
    return ObjectId(value)


def to_str_id(doc):
    if not doc:
        return doc
    doc = dict(doc)
    _id = doc.pop("_id", None)
    if _id is not None:
        doc["id"] = str(_id)
    return doc


async def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert a document stamped with createdAt/updatedAt and return its id."""
    if isinstance(data, BaseModel):
        data_dict = data.model_dump()
    else:
        data_dict = dict(data)
    now = datetime.now(timezone.utc)
    data_dict["createdAt"] = now
    data_dict["updatedAt"] = now

    result = await get_db()[collection_name].insert_one(data_dict)
    return str(result.inserted_id)
