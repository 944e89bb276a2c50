"""
Request schemas for the Book Club API.

Each resource has a create model and an update model where every field is
optional. Fields are snake_case in Python and camelCase on the wire. Every
write payload also declares the identity field ``_id`` so that a client
supplying one can be told it is not allowed, rather than having it dropped.
"""
from datetime import datetime
from typing import Annotated, Any, Dict, List, Literal, Optional, Tuple

from bson import ObjectId
from pydantic import (
    AfterValidator,
    BaseModel,
    BeforeValidator,
    ConfigDict,
    Field,
    HttpUrl,
    StringConstraints,
    TypeAdapter,
    ValidationError,
)
from pydantic.alias_generators import to_camel
from pydantic_core import PydanticCustomError

OBJECT_ID_PATTERN = r"^[0-9a-fA-F]{24}$"
_HTTP_URL = TypeAdapter(HttpUrl)


def _check_object_id(value: str) -> str:
    if not ObjectId.is_valid(value):
        raise PydanticCustomError("object_id", "Invalid ID")
    return value


def _check_attendee_list(value: Any) -> Any:
    if not isinstance(value, list):
        raise PydanticCustomError("attendees_type", "attendees must be an array of user IDs")
    return value


def _check_url(value: str) -> str:
    try:
        _HTTP_URL.validate_python(value)
    except ValidationError:
        raise PydanticCustomError("url", "Invalid URL")
    return value


def _reject_null(value: Any) -> Any:
    if value is None:
        raise PydanticCustomError("null_value", "Value cannot be null")
    return value


ObjectIdStr = Annotated[str, AfterValidator(_check_object_id)]
NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]
Url = Annotated[str, AfterValidator(_check_url)]
Email = Annotated[str, StringConstraints(strip_whitespace=True, to_lower=True, pattern=r"^.+@.+\..+$")]
Attendees = Annotated[List[ObjectIdStr], BeforeValidator(_check_attendee_list)]
NotNull = BeforeValidator(_reject_null)

Text200 = Annotated[str, StringConstraints(max_length=200)]
Text500 = Annotated[str, StringConstraints(max_length=500)]
Text1000 = Annotated[str, StringConstraints(max_length=1000)]
MeetingTitle = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1, max_length=200)]

Role = Literal["member", "admin"]
BookSort = Literal["title", "author", "genre", "publishedYear", "createdAt"]


class Payload(BaseModel):
    """Base for write payloads."""

    model_config = ConfigDict(alias_generator=to_camel)

    identity: Optional[Any] = Field(None, alias="_id", description="System-assigned id, never accepted from clients")

    @property
    def identity_supplied(self) -> bool:
        return "identity" in self.model_fields_set

    def document(self) -> Dict[str, Any]:
        """Fields to persist on create, defaults included and absent values left out."""
        return self.model_dump(by_alias=True, exclude={"identity"}, exclude_none=True)

    def changes(self) -> Tuple[Dict[str, Any], List[str]]:
        """Split a partial payload into fields to set and fields explicitly cleared with null."""
        supplied = self.model_dump(by_alias=True, exclude={"identity"}, exclude_unset=True)
        to_set = {k: v for k, v in supplied.items() if v is not None}
        to_unset = [k for k, v in supplied.items() if v is None]
        return to_set, to_unset


# Books

class BookCreate(Payload):
    title: NonEmptyStr = Field(..., description="Book title")
    author: NonEmptyStr = Field(..., description="Author name")
    genre: str = Field("General", description="Primary genre")
    summary: Optional[Text1000] = Field(None, description="Short synopsis")
    published_year: Optional[Annotated[int, Field(ge=0)]] = Field(None, description="Year of publication")
    isbn: Optional[str] = Field(None, alias="ISBN", description="Unique ISBN when present")
    cover_image: Optional[Url] = Field(None, description="Cover image URL")
    tags: List[str] = Field(default_factory=list, description="Freeform tags")


class BookUpdate(Payload):
    title: Annotated[Optional[NonEmptyStr], NotNull] = None
    author: Annotated[Optional[NonEmptyStr], NotNull] = None
    genre: Annotated[Optional[str], NotNull] = None
    summary: Optional[Text1000] = None
    published_year: Optional[Annotated[int, Field(ge=0)]] = None
    isbn: Optional[str] = Field(None, alias="ISBN")
    cover_image: Optional[Url] = None
    tags: Annotated[Optional[List[str]], NotNull] = None


# Users

class UserCreate(Payload):
    name: NonEmptyStr = Field(..., description="Display name")
    email: Email = Field(..., description="Email address, stored lowercased")
    role: Role = Field("member", description="member or admin")
    bio: Optional[Text500] = None
    avatar: Optional[Url] = Field(None, description="Avatar image URL")
    joined_at: Optional[datetime] = Field(None, description="Defaults to creation time")


class UserUpdate(Payload):
    name: Annotated[Optional[NonEmptyStr], NotNull] = None
    email: Annotated[Optional[Email], NotNull] = None
    role: Annotated[Optional[Role], NotNull] = None
    bio: Optional[Text500] = None
    avatar: Optional[Url] = None
    joined_at: Annotated[Optional[datetime], NotNull] = None


# Reviews

class ReviewCreate(Payload):
    book_id: ObjectIdStr = Field(..., description="Reviewed book")
    user_name: NonEmptyStr = Field(..., description="Reviewer's name (free text)")
    rating: Annotated[int, Field(ge=1, le=5)]
    comment: Optional[Text1000] = None


# Meetings

class MeetingCreate(Payload):
    title: MeetingTitle
    book_id: ObjectIdStr = Field(..., description="Book discussed at the meeting")
    organizer_id: ObjectIdStr = Field(..., description="Organizing user")
    starts_at: datetime
    is_online: bool = False
    meeting_url: Optional[Url] = Field(None, description="Required when isOnline is true")
    location: Optional[Text200] = Field(None, description="Required when isOnline is false")
    notes: Optional[Text1000] = None
    attendees: Optional[Attendees] = Field(None, description="Attending user ids")


class MeetingUpdate(Payload):
    title: Annotated[Optional[MeetingTitle], NotNull] = None
    book_id: Annotated[Optional[ObjectIdStr], NotNull] = None
    organizer_id: Annotated[Optional[ObjectIdStr], NotNull] = None
    starts_at: Annotated[Optional[datetime], NotNull] = None
    is_online: Annotated[Optional[bool], NotNull] = None
    meeting_url: Optional[Url] = Field(None, description="null removes the URL")
    location: Optional[Text200] = Field(None, description="null removes the location")
    notes: Optional[Text1000] = None
    attendees: Annotated[Optional[Attendees], NotNull] = None
