"""
MongoDB access shared by the API and the Mongo-backed stores.

`db` is None when DATABASE_URL is not configured; the app then falls back to
the in-memory stores.
"""
import contextlib
from datetime import datetime, timezone
from typing import Any, Dict, Iterator, List, Optional, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import AsyncMongoClient
from pymongo.errors import PyMongoError

from errors import PersistenceError
from settings import get_settings

_settings = get_settings()

client = AsyncMongoClient(_settings.database_url, tz_aware=True) if _settings.database_url else None
db = client[_settings.database_name] if client is not None else None


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def parse_object_id(value: str) -> Optional[ObjectId]:
    """ObjectId for `value`, or None if it is not a valid id."""
    try:
        return ObjectId(value)
    except (InvalidId, TypeError):
        return None


@contextlib.contextmanager
def backend_errors(action: str, error_cls=PersistenceError) -> Iterator[None]:
    """Re-raise driver failures inside the block as `error_cls`."""
    try:
        yield
    except PyMongoError as exc:
        raise error_cls(f"{action} failed: {exc}") from exc


async def create_document(collection_name: str, data: Union[BaseModel, Dict[str, Any]], database=None) -> str:
    """Insert `data` with created/updated timestamps and return the new id."""
    database = database if database is not None else db
    if database is None:
        raise PersistenceError("Database not configured")
    doc = data.model_dump() if isinstance(data, BaseModel) else dict(data)
    now = utcnow()
    doc.setdefault("created_at", now)
    doc["updated_at"] = now
    with backend_errors(f"insert into {collection_name}"):
        result = await database[collection_name].insert_one(doc)
    return str(result.inserted_id)


async def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[tuple]] = None,
    database=None,
) -> List[Dict[str, Any]]:
    database = database if database is not None else db
    if database is None:
        raise PersistenceError("Database not configured")
    with backend_errors(f"query {collection_name}"):
        cursor = database[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return await cursor.to_list(length=None)
