"""
Google OAuth 2.0 authorization-code flow.

Only the provider exchange lives here; deciding which user an external
identity maps to is the authentication service's job.
"""
import logging
import secrets
import time
from typing import Callable, Dict, Optional
from urllib.parse import urlencode

import httpx

from ..models.principal import ExternalProfile
from .auth_exceptions import ExternalAuthFailed

logger = logging.getLogger(__name__)

GOOGLE_AUTH_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"


class OAuthStateStore:
    """One-time ``state`` values guarding the redirect round trip"""

    def __init__(self, ttl_seconds: int = 600, clock: Callable[[], float] = time.monotonic):
        self.ttl_seconds = ttl_seconds
        self.clock = clock
        self._states: Dict[str, float] = {}

    def issue(self) -> str:
        self._purge()
        state = secrets.token_urlsafe(32)
        self._states[state] = self.clock() + self.ttl_seconds
        return state

    def consume(self, state: Optional[str]) -> bool:
        if not state:
            return False
        expires_at = self._states.pop(state, None)
        return expires_at is not None and self.clock() < expires_at

    def _purge(self):
        now = self.clock()
        for state, expires_at in list(self._states.items()):
            if expires_at <= now:
                del self._states[state]


class GoogleOAuthClient:
    """Builds the consent URL and exchanges authorization codes for profiles"""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        state_store: Optional[OAuthStateStore] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.state_store = state_store or OAuthStateStore()
        self.transport = transport
        self.timeout = timeout

    def authorization_url(self) -> str:
        params = {
            "client_id": self.client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": "openid email profile",
            "state": self.state_store.issue(),
            "access_type": "online",
            "prompt": "select_account",
        }
        return f"{GOOGLE_AUTH_URL}?{urlencode(params)}"

    async def exchange_code(self, code: str, state: Optional[str]) -> ExternalProfile:
        """Trade an authorization code for the user's Google profile"""
        if not self.state_store.consume(state):
            raise ExternalAuthFailed("OAuth state missing, unknown or expired")

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, follow_redirects=False, transport=self.transport
            ) as client:
                token_response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "client_id": self.client_id,
                        "client_secret": self.client_secret,
                        "code": code,
                        "redirect_uri": self.redirect_uri,
                        "grant_type": "authorization_code",
                    },
                    headers={"Accept": "application/json"},
                )
                token_response.raise_for_status()
                access_token = token_response.json().get("access_token")
                if not access_token:
                    raise ExternalAuthFailed("Google token response had no access_token")

                userinfo_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                userinfo_response.raise_for_status()
                userinfo = userinfo_response.json()
        except httpx.HTTPStatusError as e:
            logger.error(f"Google OAuth exchange returned HTTP {e.response.status_code}")
            raise ExternalAuthFailed(f"Google returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            logger.error(f"Google OAuth exchange failed: {e}")
            raise ExternalAuthFailed(str(e)) from e
        except ValueError as e:
            raise ExternalAuthFailed(f"Unparsable Google response: {e}") from e

        return self.parse_profile(userinfo)

    @staticmethod
    def parse_profile(userinfo: dict) -> ExternalProfile:
        if not isinstance(userinfo, dict) or not userinfo.get("id") or not userinfo.get("email"):
            raise ExternalAuthFailed("Google profile is missing id or email")
        return ExternalProfile(
            external_id=str(userinfo["id"]),
            email=userinfo["email"],
            first_name=userinfo.get("given_name"),
            last_name=userinfo.get("family_name"),
            profile_picture=userinfo.get("picture"),
            email_verified=bool(userinfo.get("verified_email", False)),
        )
