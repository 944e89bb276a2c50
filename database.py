"""
Entity store for the Book Club API.

Each resource lives in its own MongoDB collection. The store is an explicit
handle built once at startup and handed to the workflows, so nothing in the
application holds an ambient connection.
"""
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Sequence, Tuple

from bson import ObjectId
from fastapi import Request
from pymongo import ASCENDING, MongoClient, ReturnDocument
from pymongo.database import Database

logger = logging.getLogger("bookclub.database")

BOOKS = "books"
USERS = "users"
REVIEWS = "reviews"
MEETINGS = "meetings"

Sort = Sequence[Tuple[str, int]]


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class EntityStore:
    """Thin wrapper over a pymongo database exposing the operations the workflows need."""

    def __init__(self, db: Database):
        self.db = db

    def ensure_indexes(self) -> None:
        self.db[USERS].create_index("email", unique=True, sparse=True)
        self.db[USERS].create_index("githubId", unique=True, sparse=True)
        self.db[BOOKS].create_index("ISBN", unique=True, sparse=True)
        self.db[REVIEWS].create_index("bookId")
        self.db[MEETINGS].create_index("bookId")
        self.db[MEETINGS].create_index("organizerId")
        self.db[MEETINGS].create_index([("startsAt", ASCENDING)])
        logger.info(f"Indexes ensured on {self.db.name}")

    # Probes

    def exists(self, collection: str, doc_id: Any) -> bool:
        return self.db[collection].count_documents({"_id": ObjectId(doc_id)}, limit=1) > 0

    def count_existing(self, collection: str, doc_ids: Sequence[Any]) -> int:
        ids = [ObjectId(d) for d in doc_ids]
        return self.db[collection].count_documents({"_id": {"$in": ids}})

    # Reads

    def find_by_id(self, collection: str, doc_id: Any) -> Optional[Dict[str, Any]]:
        return self.db[collection].find_one({"_id": ObjectId(doc_id)})

    def find_one(self, collection: str, filter_dict: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        return self.db[collection].find_one(filter_dict)

    def find(
        self,
        collection: str,
        filter_dict: Optional[Dict[str, Any]] = None,
        sort: Optional[Sort] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        cursor = self.db[collection].find(filter_dict or {})
        if sort:
            cursor = cursor.sort(list(sort))
        if limit:
            cursor = cursor.limit(int(limit))
        return list(cursor)

    # Writes

    def insert(self, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a document, stamping createdAt/updatedAt, and return it with its new _id."""
        doc = dict(data)
        now = utcnow()
        doc["createdAt"] = now
        doc["updatedAt"] = now
        result = self.db[collection].insert_one(doc)
        doc["_id"] = result.inserted_id
        return doc

    def update_by_id(
        self,
        collection: str,
        doc_id: Any,
        changes: Dict[str, Any],
        unset: Sequence[str] = (),
    ) -> Optional[Dict[str, Any]]:
        update: Dict[str, Any] = {"$set": {**changes, "updatedAt": utcnow()}}
        if unset:
            update["$unset"] = {key: "" for key in unset}
        return self.db[collection].find_one_and_update(
            {"_id": ObjectId(doc_id)},
            update,
            return_document=ReturnDocument.AFTER,
        )

    def delete_by_id(self, collection: str, doc_id: Any) -> Optional[Dict[str, Any]]:
        return self.db[collection].find_one_and_delete({"_id": ObjectId(doc_id)})


def create_store(database_url: str, database_name: str) -> EntityStore:
    client = MongoClient(database_url)
    return EntityStore(client[database_name])


def _public_value(value: Any) -> Any:
    if isinstance(value, ObjectId):
        return str(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")
    if isinstance(value, list):
        return [_public_value(v) for v in value]
    if isinstance(value, dict):
        return {k: _public_value(v) for k, v in value.items()}
    return value


def public(doc: Dict[str, Any]) -> Dict[str, Any]:
    """JSON-ready copy of a stored document: ObjectIds as strings, datetimes as UTC ISO-8601."""
    return _public_value(doc)


def get_store(request: Request) -> EntityStore:
    """FastAPI dependency returning the store the app was built with."""
    return request.app.state.store
