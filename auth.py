"""
Identity gate for the Book Club API.

The principal for a request is the user whose id is stored in the signed
session cookie. Sessions are started by the GitHub OAuth callback and ended
by ``POST /auth/logout``; nothing else reads or writes the session.
"""
import logging
import secrets
from typing import Any, Dict, Optional

import httpx
from bson import ObjectId
from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import RedirectResponse

from catalog import find_or_create_github_user
from database import USERS, EntityStore, get_store, public
from github_oauth import GitHubError, GitHubOAuthClient

logger = logging.getLogger("bookclub.auth")


class IdentityGate:
    """Session-backed principal lookup."""

    SESSION_KEY = "user_id"
    STATE_KEY = "oauth_state"

    def current_principal(self, request: Request, store: EntityStore) -> Optional[Dict[str, Any]]:
        user_id = request.session.get(self.SESSION_KEY)
        if not user_id or not ObjectId.is_valid(user_id):
            return None
        return store.find_by_id(USERS, user_id)

    def start_session(self, request: Request, user: Dict[str, Any]) -> None:
        request.session.clear()
        request.session[self.SESSION_KEY] = str(user["_id"])

    def end_session(self, request: Request) -> None:
        request.session.clear()

    def issue_state(self, request: Request) -> str:
        state = secrets.token_urlsafe(16)
        request.session[self.STATE_KEY] = state
        return state

    def consume_state(self, request: Request, state: str) -> bool:
        expected = request.session.pop(self.STATE_KEY, None)
        return bool(expected) and secrets.compare_digest(expected.encode(), state.encode())


def get_gate(request: Request) -> IdentityGate:
    return request.app.state.identity_gate


def get_github(request: Request) -> GitHubOAuthClient:
    return request.app.state.github


def current_principal(
    request: Request,
    gate: IdentityGate = Depends(get_gate),
    store: EntityStore = Depends(get_store),
) -> Optional[Dict[str, Any]]:
    return gate.current_principal(request, store)


def require_principal(principal: Optional[Dict[str, Any]] = Depends(current_principal)) -> Dict[str, Any]:
    if principal is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return principal


router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/github")
def github_login(
    request: Request,
    gate: IdentityGate = Depends(get_gate),
    github: GitHubOAuthClient = Depends(get_github),
):
    if not github.configured:
        raise HTTPException(status_code=503, detail="GitHub login is not configured")
    state = gate.issue_state(request)
    return RedirectResponse(github.authorize_url(state), status_code=302)


@router.get("/github/callback")
def github_callback(
    request: Request,
    code: str,
    state: str,
    gate: IdentityGate = Depends(get_gate),
    github: GitHubOAuthClient = Depends(get_github),
    store: EntityStore = Depends(get_store),
):
    if not gate.consume_state(request, state):
        raise HTTPException(status_code=400, detail="Invalid OAuth state")
    try:
        token = github.exchange_code(code)
        profile = github.fetch_profile(token)
    except (GitHubError, httpx.HTTPError) as e:
        logger.warning(f"GitHub login failed: {e}")
        raise HTTPException(status_code=502, detail="GitHub login failed")

    user = find_or_create_github_user(store, profile)
    gate.start_session(request, user)
    logger.info(f"User {user['_id']} logged in via GitHub")
    return RedirectResponse("/docs", status_code=302)


@router.get("/me")
def me(principal: Dict[str, Any] = Depends(require_principal)):
    return public(principal)


@router.post("/logout")
def logout(request: Request, gate: IdentityGate = Depends(get_gate)):
    user_id = request.session.get(IdentityGate.SESSION_KEY)
    gate.end_session(request)
    if user_id:
        logger.info(f"User {user_id} logged out")
    return {"message": "Logged out"}
