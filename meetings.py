"""
Meeting workflow.

Business rules applied after request-shape validation and before anything is
written: the book, organizer and attendees must exist, and an online meeting
needs a URL while an in-person one needs a location, never both. Checks run in the order
bookId, organizerId, online/location, attendees and stop at the first failure
so later checks never hit the store.

Nothing here is transactional: a referenced record deleted between the check
and the write leaves a dangling reference.
"""
import logging
from typing import Any, Dict, List, Optional, Sequence

from bson import ObjectId

from database import BOOKS, MEETINGS, USERS, EntityStore
from errors import ValidationFailed
from schemas import MeetingCreate, MeetingUpdate

logger = logging.getLogger("bookclub.meetings")

VENUE_FIELDS = {"isOnline", "meetingUrl", "location"}


def check_book(store: EntityStore, book_id: str) -> None:
    if not store.exists(BOOKS, book_id):
        raise ValidationFailed("bookId", "bookId does not reference an existing book")


def check_organizer(store: EntityStore, organizer_id: str) -> None:
    if not store.exists(USERS, organizer_id):
        raise ValidationFailed("organizerId", "organizerId does not reference an existing user")


def check_venue(is_online: bool, meeting_url: Optional[str], location: Optional[str]) -> None:
    """Online meetings need a URL and no location, in-person meetings the reverse."""
    if is_online:
        if not meeting_url:
            raise ValidationFailed("meetingUrl", "meetingUrl is required when isOnline is true")
        if location:
            raise ValidationFailed("location", "location is not allowed when isOnline is true")
    else:
        if not location:
            raise ValidationFailed("location", "location is required when isOnline is false")
        if meeting_url:
            raise ValidationFailed("meetingUrl", "meetingUrl is not allowed when isOnline is false")


def check_attendees(store: EntityStore, attendees: Optional[Sequence[str]]) -> None:
    # Duplicated ids count once in the store, so they fail here too.
    if not attendees:
        return
    if store.count_existing(USERS, attendees) < len(attendees):
        raise ValidationFailed("attendees", "One or more attendees do not reference existing users")


def _with_refs(fields: Dict[str, Any]) -> Dict[str, Any]:
    doc = dict(fields)
    for key in ("bookId", "organizerId"):
        if key in doc:
            doc[key] = ObjectId(doc[key])
    if "attendees" in doc:
        doc["attendees"] = [ObjectId(a) for a in doc["attendees"]]
    return doc


def list_meetings(
    store: EntityStore,
    book_id: Optional[str] = None,
    organizer_id: Optional[str] = None,
) -> List[Dict[str, Any]]:
    query: Dict[str, Any] = {}
    if book_id:
        query["bookId"] = ObjectId(book_id)
    if organizer_id:
        query["organizerId"] = ObjectId(organizer_id)
    return store.find(MEETINGS, query, sort=[("startsAt", 1)])


def get_meeting(store: EntityStore, meeting_id: str) -> Optional[Dict[str, Any]]:
    return store.find_by_id(MEETINGS, meeting_id)


def create_meeting(store: EntityStore, payload: MeetingCreate) -> Dict[str, Any]:
    if payload.identity_supplied:
        raise ValidationFailed("_id", "_id is not allowed on create")

    check_book(store, payload.book_id)
    check_organizer(store, payload.organizer_id)
    check_venue(payload.is_online, payload.meeting_url, payload.location)
    check_attendees(store, payload.attendees)

    meeting = store.insert(MEETINGS, _with_refs(payload.document()))
    logger.info(f"Created meeting {meeting['_id']}")
    return meeting


def update_meeting(store: EntityStore, meeting_id: str, patch: MeetingUpdate) -> Optional[Dict[str, Any]]:
    """Apply a partial update, re-checking only what the patch touches.

    The venue rule is evaluated against the stored record merged with the
    patch, so switching a meeting online without a URL on record fails even
    when the patch itself only carries ``isOnline``. A stored URL or location
    that no longer matches ``isOnline`` is removed; one sent in the patch is
    rejected. Returns ``None`` when no meeting has ``meeting_id``.
    """
    if patch.identity_supplied:
        raise ValidationFailed("_id", "_id cannot be updated")

    to_set, to_unset = patch.changes()

    if "bookId" in to_set:
        check_book(store, to_set["bookId"])
    if "organizerId" in to_set:
        check_organizer(store, to_set["organizerId"])

    if VENUE_FIELDS & (set(to_set) | set(to_unset)):
        current = store.find_by_id(MEETINGS, meeting_id)
        if current is None:
            return None
        merged = {**current, **to_set}
        for key in to_unset:
            merged.pop(key, None)
        is_online = bool(merged.get("isOnline", False))
        stale = "location" if is_online else "meetingUrl"
        if stale in merged and stale not in to_set:
            merged.pop(stale)
            to_unset.append(stale)
        check_venue(is_online, merged.get("meetingUrl"), merged.get("location"))

    if "attendees" in to_set:
        check_attendees(store, to_set["attendees"])

    meeting = store.update_by_id(MEETINGS, meeting_id, _with_refs(to_set), unset=to_unset)
    if meeting is not None:
        logger.info(f"Updated meeting {meeting_id}: {', '.join(sorted(to_set)) or 'no fields'}")
    return meeting


def delete_meeting(store: EntityStore, meeting_id: str) -> Optional[Dict[str, Any]]:
    meeting = store.delete_by_id(MEETINGS, meeting_id)
    if meeting is not None:
        logger.info(f"Deleted meeting {meeting_id}")
    return meeting
