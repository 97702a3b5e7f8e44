"""
MongoDB access helpers

``db`` is the module level database handle (``None`` when DATABASE_URL is
not configured). Every helper looks it up at call time, so tests can swap it
for an in-memory database.
"""

import logging
from typing import Any, Dict, List, Optional, Tuple, Union

from bson import ObjectId
from bson.errors import InvalidId
from pydantic import BaseModel
from pymongo import MongoClient
from pymongo.errors import PyMongoError

import config
from errors import NotFoundError, RemoteWriteError, ValidationError
from schemas import utcnow

logger = logging.getLogger(__name__)

db = None
if config.DATABASE_URL:
    _client = MongoClient(config.DATABASE_URL, tz_aware=True)
    db = _client[config.DATABASE_NAME]


def _database():
    if db is None:
        raise RemoteWriteError("Database is not configured")
    return db


def oid(id_str: str) -> ObjectId:
    try:
        return ObjectId(id_str)
    except (InvalidId, TypeError):
        raise ValidationError(f"Invalid id format: {id_str}")


def _remote(action: str, collection_name: str, exc: PyMongoError) -> RemoteWriteError:
    logger.error("%s on %s failed: %s", action, collection_name, exc)
    return RemoteWriteError(f"{action} on {collection_name} failed")


def from_document(doc: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Turn ``_id`` into a string ``id`` key."""
    if not doc:
        return doc
    out = dict(doc)
    out["id"] = str(out.pop("_id"))
    return out


def create_document(collection_name: str, data: Union[BaseModel, dict]) -> str:
    """Insert one document, stamping createdAt/updatedAt when missing. Returns the new id."""
    if isinstance(data, BaseModel):
        payload = data.model_dump(by_alias=True, exclude={"id"})
    else:
        payload = {k: v for k, v in data.items() if k != "id"}
    now = utcnow()
    payload.setdefault("createdAt", now)
    payload.setdefault("updatedAt", now)
    try:
        result = _database()[collection_name].insert_one(payload)
    except PyMongoError as e:
        raise _remote("insert", collection_name, e)
    return str(result.inserted_id)


def get_documents(
    collection_name: str,
    filter_dict: Optional[Dict[str, Any]] = None,
    limit: Optional[int] = None,
    sort: Optional[List[Tuple[str, int]]] = None,
) -> List[Dict[str, Any]]:
    try:
        cursor = _database()[collection_name].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(sort)
        if limit:
            cursor = cursor.limit(limit)
        return [from_document(d) for d in cursor]
    except PyMongoError as e:
        raise _remote("find", collection_name, e)


def get_document(collection_name: str, id_str: str, kind: str = "Document") -> Dict[str, Any]:
    try:
        doc = _database()[collection_name].find_one({"_id": oid(id_str)})
    except PyMongoError as e:
        raise _remote("find", collection_name, e)
    if not doc:
        raise NotFoundError(kind, id_str)
    return from_document(doc)


def find_document(collection_name: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
    try:
        return from_document(_database()[collection_name].find_one(filter_dict))
    except PyMongoError as e:
        raise _remote("find", collection_name, e)


def replace_document(collection_name: str, id_str: str, data: Dict[str, Any], expected_version: int) -> bool:
    """
    Replace a whole document only if its stored version still equals
    ``expected_version``. Returns False when nothing matched.
    """
    version_filter: Dict[str, Any] = {"version": expected_version}
    if expected_version == 0:
        # documents written before versioning have no version field at all
        version_filter = {"$or": [{"version": 0}, {"version": {"$exists": False}}]}
    query = {"_id": oid(id_str), **version_filter}
    payload = {k: v for k, v in data.items() if k not in ("id", "_id")}
    try:
        result = _database()[collection_name].replace_one(query, payload)
    except PyMongoError as e:
        raise _remote("replace", collection_name, e)
    return result.matched_count == 1


def delete_document(collection_name: str, id_str: str, kind: str = "Document") -> None:
    try:
        result = _database()[collection_name].delete_one({"_id": oid(id_str)})
    except PyMongoError as e:
        raise _remote("delete", collection_name, e)
    if result.deleted_count == 0:
        raise NotFoundError(kind, id_str)


def collection_names() -> List[str]:
    return _database().list_collection_names()
