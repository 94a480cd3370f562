"""
Database helpers

Thin layer over pymongo. Nothing here holds a process-wide connection:
callers pass the ``Database`` handle they were given (see ``connect``).
"""

from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from fastapi import Request
from pydantic import BaseModel
from pymongo import ASCENDING, MongoClient
from pymongo.database import Database

from errors import InvalidRequest


def connect(url: str, name: str) -> Database:
    # MongoClient connects lazily, so this never blocks on an unreachable server
    client = MongoClient(url, tz_aware=True)
    return client[name]


def get_db(request: Request) -> Database:
    """FastAPI dependency returning the database the app was created with."""
    return request.app.state.db


def ensure_indexes(db: Database) -> None:
    db["user"].create_index([("email", ASCENDING)], unique=True, sparse=True)
    db["cart"].create_index([("user_id", ASCENDING)], unique=True)
    db["order"].create_index([("user_id", ASCENDING), ("created_at", ASCENDING)])


def now() -> datetime:
    return datetime.now(timezone.utc)


def create_document(db: Database, collection_name: str, data: Union[BaseModel, Dict[str, Any]]) -> ObjectId:
    """Insert a document stamped with created_at/updated_at and return its _id."""
    data_dict = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    timestamp = now()
    data_dict["created_at"] = timestamp
    data_dict["updated_at"] = timestamp
    result = db[collection_name].insert_one(data_dict)
    return result.inserted_id


def get_documents(
    db: Database,
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
) -> List[Dict[str, Any]]:
    cursor = db[collection_name].find(filter_dict or {})
    if sort:
        cursor = cursor.sort(sort)
    if limit:
        cursor = cursor.limit(limit)
    return list(cursor)


def to_object_id(value: Any, field: str = "id") -> ObjectId:
    if isinstance(value, ObjectId):
        return value
    try:
        return ObjectId(str(value))
    except (InvalidId, TypeError):
        raise InvalidRequest(f"Invalid {field}")


def serialize(value: Any) -> Any:
    """Make a stored document JSON friendly: ``_id`` becomes ``id`` and ObjectIds become strings."""
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, dict):
        out = {}
        for key, inner in value.items():
            out["id" if key == "_id" else key] = serialize(inner)
        return out
    if isinstance(value, list):
        return [serialize(v) for v in value]
    return value
