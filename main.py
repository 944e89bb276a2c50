import logging
from contextlib import asynccontextmanager
from typing import Annotated, Any, Dict, List, Optional

from fastapi import APIRouter, Depends, FastAPI, HTTPException, Path, Query
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware.sessions import SessionMiddleware

import catalog
import meetings
from auth import IdentityGate, require_principal
from auth import router as auth_router
from config import Settings
from database import EntityStore, create_store, get_store, public
from errors import install_error_handlers
from github_oauth import GitHubOAuthClient
from schemas import (
    OBJECT_ID_PATTERN,
    BookCreate,
    BookSort,
    BookUpdate,
    MeetingCreate,
    MeetingUpdate,
    ReviewCreate,
    UserCreate,
    UserUpdate,
)

logger = logging.getLogger("bookclub.main")

IdPath = Annotated[str, Path(pattern=OBJECT_ID_PATTERN)]
BookIdQuery = Annotated[Optional[str], Query(alias="bookId", pattern=OBJECT_ID_PATTERN)]
OrganizerIdQuery = Annotated[Optional[str], Query(alias="organizerId", pattern=OBJECT_ID_PATTERN)]
Store = Annotated[EntityStore, Depends(get_store)]
Principal = Annotated[Dict[str, Any], Depends(require_principal)]


def found(doc: Optional[Dict[str, Any]], entity: str) -> Dict[str, Any]:
    if doc is None:
        raise HTTPException(status_code=404, detail=f"{entity} not found")
    return public(doc)


def public_list(docs: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [public(d) for d in docs]


@asynccontextmanager
async def lifespan(app: FastAPI):
    app.state.store.ensure_indexes()
    logger.info("Book Club API ready")
    yield
    app.state.github.close()


router = APIRouter()


@router.get("/")
def root():
    return {"message": "Book Club API up"}


# Books
@router.get("/books", tags=["Books"])
def list_books(store: Store, search: Optional[str] = None, sort: Optional[BookSort] = None):
    return public_list(catalog.list_books(store, search=search, sort=sort))


@router.get("/books/{book_id}", tags=["Books"])
def get_book(book_id: IdPath, store: Store):
    return found(catalog.get_book(store, book_id), "Book")


@router.post("/books", status_code=201, tags=["Books"])
def create_book(book: BookCreate, store: Store, principal: Principal):
    return public(catalog.create_book(store, book))


@router.put("/books/{book_id}", tags=["Books"])
def update_book(book_id: IdPath, payload: BookUpdate, store: Store, principal: Principal):
    return found(catalog.update_book(store, book_id, payload), "Book")


@router.delete("/books/{book_id}", tags=["Books"])
def delete_book(book_id: IdPath, store: Store, principal: Principal):
    found(catalog.delete_book(store, book_id), "Book")
    return {"message": "Book deleted"}


# Users
@router.get("/users", tags=["Users"])
def list_users(store: Store):
    return public_list(catalog.list_users(store))


@router.get("/users/{user_id}", tags=["Users"])
def get_user(user_id: IdPath, store: Store):
    return found(catalog.get_user(store, user_id), "User")


@router.post("/users", status_code=201, tags=["Users"])
def create_user(user: UserCreate, store: Store, principal: Principal):
    return public(catalog.create_user(store, user))


@router.put("/users/{user_id}", tags=["Users"])
def update_user(user_id: IdPath, payload: UserUpdate, store: Store, principal: Principal):
    return found(catalog.update_user(store, user_id, payload), "User")


@router.delete("/users/{user_id}", tags=["Users"])
def delete_user(user_id: IdPath, store: Store, principal: Principal):
    found(catalog.delete_user(store, user_id), "User")
    return {"message": "User deleted"}


# Reviews & Ratings
@router.get("/reviews", tags=["Reviews"])
def list_reviews(store: Store, book_id: BookIdQuery = None):
    return public_list(catalog.list_reviews(store, book_id=book_id))


@router.post("/reviews", status_code=201, tags=["Reviews"])
def create_review(review: ReviewCreate, store: Store, principal: Principal):
    return public(catalog.create_review(store, review))


@router.delete("/reviews/{review_id}", tags=["Reviews"])
def delete_review(review_id: IdPath, store: Store, principal: Principal):
    found(catalog.delete_review(store, review_id), "Review")
    return {"message": "Review deleted"}


# Meetings
@router.get("/meetings", tags=["Meetings"])
def list_meetings(store: Store, book_id: BookIdQuery = None, organizer_id: OrganizerIdQuery = None):
    return public_list(meetings.list_meetings(store, book_id=book_id, organizer_id=organizer_id))


@router.get("/meetings/{meeting_id}", tags=["Meetings"])
def get_meeting(meeting_id: IdPath, store: Store):
    return found(meetings.get_meeting(store, meeting_id), "Meeting")


@router.post("/meetings", status_code=201, tags=["Meetings"])
def create_meeting(meeting: MeetingCreate, store: Store, principal: Principal):
    return public(meetings.create_meeting(store, meeting))


@router.put("/meetings/{meeting_id}", tags=["Meetings"])
def update_meeting(meeting_id: IdPath, payload: MeetingUpdate, store: Store, principal: Principal):
    return found(meetings.update_meeting(store, meeting_id, payload), "Meeting")


@router.delete("/meetings/{meeting_id}", tags=["Meetings"])
def delete_meeting(meeting_id: IdPath, store: Store, principal: Principal):
    found(meetings.delete_meeting(store, meeting_id), "Meeting")
    return {"message": "Meeting deleted"}


def create_app(
    settings: Optional[Settings] = None,
    store: Optional[EntityStore] = None,
    github: Optional[GitHubOAuthClient] = None,
) -> FastAPI:
    """Build the API. Collaborators left as ``None`` are created from ``settings``."""
    settings = settings or Settings()
    logging.basicConfig(
        level=settings.log_level,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    app = FastAPI(title="Book Club API", version="1.0.0", lifespan=lifespan)

    app.add_middleware(SessionMiddleware, secret_key=settings.secret_key, https_only=settings.is_production)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    app.state.settings = settings
    app.state.store = store if store is not None else create_store(settings.database_url, settings.database_name)
    app.state.identity_gate = IdentityGate()
    app.state.github = github if github is not None else GitHubOAuthClient(
        settings.github_client_id,
        settings.github_client_secret,
        settings.oauth_callback_url,
    )

    install_error_handlers(app, hide_details=settings.is_production)
    app.include_router(auth_router)
    app.include_router(router)
    return app


app = create_app()


if __name__ == "__main__":
    import uvicorn
    settings = app.state.settings
    uvicorn.run(app, host="0.0.0.0", port=settings.port)
