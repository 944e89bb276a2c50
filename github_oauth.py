"""HTTP client for GitHub OAuth login."""
import logging
from typing import Any, Dict, List, Optional
from urllib.parse import urlencode

import httpx

logger = logging.getLogger("bookclub.github")


class GitHubError(Exception):
    """GitHub refused the code exchange or returned an unusable response."""


class GitHubOAuthClient:
    """Client for the GitHub OAuth web flow and the profile endpoints it unlocks."""

    AUTHORIZE_URL = "https://github.com/login/oauth/authorize"
    TOKEN_URL = "https://github.com/login/oauth/access_token"
    API_URL = "https://api.github.com"
    SCOPE = "user:email"

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        callback_url: str,
        timeout: int = 10,
        transport: Optional[httpx.BaseTransport] = None,
    ):
        """
        Initialize the GitHub client.

        Args:
            client_id: OAuth app client id
            client_secret: OAuth app client secret
            callback_url: URL GitHub redirects back to after consent
            timeout: Request timeout in seconds
            transport: Optional httpx transport (tests pass a MockTransport)
        """
        self.client_id = client_id
        self.client_secret = client_secret
        self.callback_url = callback_url
        self.client = httpx.Client(timeout=timeout, transport=transport)

    @property
    def configured(self) -> bool:
        return bool(self.client_id and self.client_secret)

    def authorize_url(self, state: str) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.callback_url,
            "scope": self.SCOPE,
            "state": state,
        }
        return f"{self.AUTHORIZE_URL}?{urlencode(params)}"

    def exchange_code(self, code: str) -> str:
        """
        Trade an authorization code for an access token.

        Raises:
            GitHubError: GitHub answered without a token
            httpx.HTTPError: Transport failure or non-2xx status
        """
        response = self.client.post(
            self.TOKEN_URL,
            data={
                "client_id": self.client_id,
                "client_secret": self.client_secret,
                "code": code,
                "redirect_uri": self.callback_url,
            },
            headers={"Accept": "application/json"},
        )
        response.raise_for_status()
        payload = response.json()
        token = payload.get("access_token")
        if not token:
            logger.warning(f"Code exchange rejected: {payload.get('error', 'no token')}")
            raise GitHubError(payload.get("error_description") or "No access token returned")
        return token

    def fetch_profile(self, token: str) -> Dict[str, Any]:
        """
        Fetch the authenticated account and its primary email.

        Returns:
            Dict with githubId, username, name, email and avatar

        Raises:
            GitHubError: The account payload carries no id
            httpx.HTTPError: Transport failure or non-2xx status
        """
        headers = {"Authorization": f"Bearer {token}", "Accept": "application/vnd.github+json"}
        response = self.client.get(f"{self.API_URL}/user", headers=headers)
        response.raise_for_status()
        account = response.json()
        if not isinstance(account, dict) or account.get("id") is None:
            raise GitHubError("GitHub profile has no account id")

        emails_response = self.client.get(f"{self.API_URL}/user/emails", headers=headers)
        emails: List[Dict[str, Any]] = emails_response.json() if emails_response.status_code == 200 else []

        return {
            "githubId": str(account["id"]),
            "username": account.get("login"),
            "name": account.get("name") or account.get("login"),
            "email": self._primary_email(emails) or account.get("email"),
            "avatar": account.get("avatar_url"),
        }

    @staticmethod
    def _primary_email(emails: List[Dict[str, Any]]) -> Optional[str]:
        verified = [e["email"] for e in emails if e.get("verified") and e.get("email")]
        if verified:
            return verified[0]
        return emails[0].get("email") if emails else None

    def close(self):
        """Close the HTTP client."""
        self.client.close()
