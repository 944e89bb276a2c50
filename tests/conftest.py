from urllib.parse import parse_qs, urlparse

import httpx
import mongomock
import pytest
from fastapi.testclient import TestClient

from config import Settings
from database import BOOKS, USERS, EntityStore
from github_oauth import GitHubOAuthClient
from main import create_app

GITHUB_ACCOUNT = {
    "id": 4242,
    "login": "reader",
    "name": "Reading Fan",
    "avatar_url": "https://avatars.example.com/u/4242",
}
GITHUB_EMAILS = [
    {"email": "other@example.com", "verified": False},
    {"email": "Reader@Example.com", "verified": True},
]


def github_handler(request: httpx.Request) -> httpx.Response:
    """Stands in for github.com and api.github.com."""
    if request.url.path == "/login/oauth/access_token":
        form = parse_qs(request.content.decode())
        if form.get("code") == ["good-code"]:
            return httpx.Response(200, json={"access_token": "gho_test", "token_type": "bearer"})
        return httpx.Response(200, json={"error": "bad_verification_code"})
    if request.url.path == "/user":
        return httpx.Response(200, json=GITHUB_ACCOUNT)
    if request.url.path == "/user/emails":
        return httpx.Response(200, json=GITHUB_EMAILS)
    return httpx.Response(404)


@pytest.fixture
def settings():
    return Settings(
        secret_key="test-secret",
        app_env="test",
        github_client_id="client-id",
        github_client_secret="client-secret",
        oauth_callback_url="http://testserver/auth/github/callback",
    )


@pytest.fixture
def store():
    return EntityStore(mongomock.MongoClient()["bookclub_test"])


@pytest.fixture
def github(settings):
    return GitHubOAuthClient(
        settings.github_client_id,
        settings.github_client_secret,
        settings.oauth_callback_url,
        transport=httpx.MockTransport(github_handler),
    )


@pytest.fixture
def app(settings, store, github):
    return create_app(settings=settings, store=store, github=github)


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


def login(client: TestClient, code: str = "good-code") -> httpx.Response:
    """Walk the GitHub OAuth redirect dance and return the callback response."""
    start = client.get("/auth/github", follow_redirects=False)
    state = parse_qs(urlparse(start.headers["location"]).query)["state"][0]
    return client.get(
        "/auth/github/callback",
        params={"code": code, "state": state},
        follow_redirects=False,
    )


@pytest.fixture
def session_client(client):
    response = login(client)
    assert response.status_code == 302, response.text
    return client


@pytest.fixture
def book(store):
    return store.insert(BOOKS, {"title": "Dune", "author": "Frank Herbert", "genre": "Sci-Fi", "tags": []})


@pytest.fixture
def organizer(store):
    return store.insert(USERS, {"name": "Olive Organizer", "email": "olive@example.com", "role": "member"})


@pytest.fixture
def attendee(store):
    return store.insert(USERS, {"name": "Andy Attendee", "email": "andy@example.com", "role": "member"})


@pytest.fixture
def meeting_payload(book, organizer):
    return {
        "title": "Club",
        "bookId": str(book["_id"]),
        "organizerId": str(organizer["_id"]),
        "startsAt": "2025-09-01T18:00:00Z",
        "isOnline": True,
        "meetingUrl": "https://x.test/m",
    }
