"""Book, user and review workflows. Only reviews reference another record."""
import logging
import re
from typing import Any, Dict, List, Optional

from bson import ObjectId

from database import BOOKS, REVIEWS, USERS, EntityStore, utcnow
from errors import ValidationFailed
from meetings import check_book
from schemas import BookCreate, BookUpdate, Payload, ReviewCreate, UserCreate, UserUpdate

logger = logging.getLogger("bookclub.catalog")

NEWEST_FIRST = [("createdAt", -1)]


def _reject_identity_on_create(payload: Payload) -> None:
    if payload.identity_supplied:
        raise ValidationFailed("_id", "_id is not allowed on create")


def _reject_identity_on_update(payload: Payload) -> None:
    if payload.identity_supplied:
        raise ValidationFailed("_id", "_id cannot be updated")


def _create(store: EntityStore, collection: str, data: Dict[str, Any]) -> Dict[str, Any]:
    doc = store.insert(collection, data)
    logger.info(f"Created {collection} {doc['_id']}")
    return doc


def _update(store: EntityStore, collection: str, doc_id: str, payload: Payload) -> Optional[Dict[str, Any]]:
    _reject_identity_on_update(payload)
    to_set, to_unset = payload.changes()
    doc = store.update_by_id(collection, doc_id, to_set, unset=to_unset)
    if doc is not None:
        logger.info(f"Updated {collection} {doc_id}")
    return doc


def _delete(store: EntityStore, collection: str, doc_id: str) -> Optional[Dict[str, Any]]:
    doc = store.delete_by_id(collection, doc_id)
    if doc is not None:
        logger.info(f"Deleted {collection} {doc_id}")
    return doc


# Books

def list_books(store: EntityStore, search: Optional[str] = None, sort: Optional[str] = None) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if search:
        query["title"] = {"$regex": re.escape(search), "$options": "i"}
    order = [(sort, 1)] if sort else NEWEST_FIRST
    return store.find(BOOKS, query, sort=order)


def get_book(store: EntityStore, book_id: str) -> Optional[Dict[str, Any]]:
    return store.find_by_id(BOOKS, book_id)


def create_book(store: EntityStore, payload: BookCreate) -> Dict[str, Any]:
    _reject_identity_on_create(payload)
    return _create(store, BOOKS, payload.document())


def update_book(store: EntityStore, book_id: str, payload: BookUpdate) -> Optional[Dict[str, Any]]:
    return _update(store, BOOKS, book_id, payload)


def delete_book(store: EntityStore, book_id: str) -> Optional[Dict[str, Any]]:
    return _delete(store, BOOKS, book_id)


# Users

def list_users(store: EntityStore) -> List[Dict[str, Any]]:
    return store.find(USERS, sort=NEWEST_FIRST)


def get_user(store: EntityStore, user_id: str) -> Optional[Dict[str, Any]]:
    return store.find_by_id(USERS, user_id)


def create_user(store: EntityStore, payload: UserCreate) -> Dict[str, Any]:
    _reject_identity_on_create(payload)
    data = payload.document()
    data.setdefault("joinedAt", utcnow())
    return _create(store, USERS, data)


def update_user(store: EntityStore, user_id: str, payload: UserUpdate) -> Optional[Dict[str, Any]]:
    return _update(store, USERS, user_id, payload)


def delete_user(store: EntityStore, user_id: str) -> Optional[Dict[str, Any]]:
    return _delete(store, USERS, user_id)


def find_or_create_github_user(store: EntityStore, profile: Dict[str, Any]) -> Dict[str, Any]:
    """Return the user linked to a GitHub account, creating it on first login.

    ``profile`` carries ``githubId``, ``username``, ``name``, and optionally
    ``email`` and ``avatar``. Missing optional values are left off the record
    so the sparse unique indexes ignore them. A user already registered with
    the same email is linked to the GitHub account instead of duplicated.
    """
    user = store.find_one(USERS, {"githubId": profile["githubId"]})
    if user is not None:
        return user

    email = (profile.get("email") or "").lower() or None
    if email:
        existing = store.find_one(USERS, {"email": email})
        if existing is not None:
            link = {"githubId": profile["githubId"]}
            if profile.get("username"):
                link["username"] = profile["username"]
            logger.info(f"Linked GitHub account {profile['githubId']} to user {existing['_id']}")
            return store.update_by_id(USERS, existing["_id"], link)

    data = {
        "githubId": profile["githubId"],
        "username": profile.get("username"),
        "name": profile.get("name") or profile.get("username") or "GitHub User",
        "email": email,
        "avatar": profile.get("avatar"),
        "role": "member",
        "joinedAt": utcnow(),
    }
    return _create(store, USERS, {k: v for k, v in data.items() if v is not None})


# Reviews

def list_reviews(store: EntityStore, book_id: Optional[str] = None) -> List[Dict[str, Any]]:
    query = {"bookId": ObjectId(book_id)} if book_id else {}
    return store.find(REVIEWS, query, sort=NEWEST_FIRST)


def create_review(store: EntityStore, payload: ReviewCreate) -> Dict[str, Any]:
    _reject_identity_on_create(payload)
    check_book(store, payload.book_id)
    data = payload.document()
    data["bookId"] = ObjectId(data["bookId"])
    return _create(store, REVIEWS, data)


def delete_review(store: EntityStore, review_id: str) -> Optional[Dict[str, Any]]:
    return _delete(store, REVIEWS, review_id)
