"""
OAuth credential managers for external providers.

Each manager owns one cached bearer token and renews it shortly before the
provider-declared expiry:
- GoogleServiceAccountCredentials: signed JWT (RS256) exchanged for a token
- ZoomCredentials: Server-to-Server OAuth with HTTP Basic client auth

The HTTP client and clock are constructor-injected.
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import httpx
import jwt  # PyJWT

from ..config import TOKEN_SAFETY_MARGIN_SECONDS
from ..exceptions import CredentialError
from .external_timeouts import AUTH_TIMEOUT

logger = logging.getLogger(__name__)

GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_CALENDAR_SCOPE = "https://www.googleapis.com/auth/calendar"
JWT_BEARER_GRANT = "urn:ietf:params:oauth:grant-type:jwt-bearer"

ZOOM_TOKEN_URL = "https://zoom.us/oauth/token"
DEFAULT_EXPIRES_IN = 3600


@dataclass(frozen=True)
class AccessToken:
    value: str
    expires_at: float  # epoch seconds


class CredentialManager(ABC):
    """
    Cached, auto-renewing bearer token for one provider.

    States: no token, or a cached token that is returned while
    now < expires_at - safety_margin. Exchanges are serialized per instance;
    a failed exchange leaves the manager in the no-token state so the next
    call tries again.
    """

    provider = "provider"

    def __init__(
        self,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
        safety_margin: int = TOKEN_SAFETY_MARGIN_SECONDS
    ):
        self.http_client = http_client
        self.clock = clock
        self.safety_margin = safety_margin
        self._token: Optional[AccessToken] = None
        self._lock = asyncio.Lock()

    def _cached_token(self) -> Optional[str]:
        if self._token and self.clock() < self._token.expires_at - self.safety_margin:
            return self._token.value
        return None

    async def get_access_token(self) -> str:
        """
        Return a valid bearer token, exchanging for a new one if needed.

        Raises:
            CredentialError: If the provider rejects the exchange or is unreachable
        """
        token = self._cached_token()
        if token:
            return token

        async with self._lock:
            # Another caller may have refreshed while we waited
            token = self._cached_token()
            if token:
                return token

            self._token = None
            issued_at = self.clock()
            data = await self._exchange(issued_at)

            value = data.get("access_token")
            if not value:
                raise CredentialError(self.provider, "token response has no access_token")

            try:
                expires_in = int(data.get("expires_in") or DEFAULT_EXPIRES_IN)
            except (TypeError, ValueError) as e:
                raise CredentialError(self.provider, "token response has an invalid expires_in") from e
            self._token = AccessToken(value=value, expires_at=issued_at + expires_in)
            logger.info(f"Obtained {self.provider} access token, expires in {expires_in}s")
            return value

    def invalidate(self) -> None:
        """Drop the cached token so the next call performs a fresh exchange."""
        self._token = None

    @abstractmethod
    async def _exchange(self, issued_at: float) -> Dict[str, Any]:
        """POST the provider-specific grant and return the token response."""

    async def _post_token_request(self, url: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self.http_client.post(url, timeout=AUTH_TIMEOUT, **kwargs)
        except httpx.HTTPError as e:
            logger.error(f"{self.provider} token request failed: {type(e).__name__}: {e}")
            raise CredentialError(self.provider, f"token request failed: {type(e).__name__}") from e

        if response.status_code != 200:
            logger.error(f"{self.provider} token exchange failed ({response.status_code}): {response.text}")
            raise CredentialError(
                self.provider,
                f"token exchange failed ({response.status_code}): {response.text}"
            )

        try:
            data = response.json()
        except ValueError as e:
            raise CredentialError(self.provider, "token response is not JSON") from e
        if not isinstance(data, dict):
            raise CredentialError(self.provider, "token response is not a JSON object")
        return data


class GoogleServiceAccountCredentials(CredentialManager):
    """
    Google service-account JWT-bearer flow.

    Args:
        service_account_info: Parsed service-account JSON (client_email, private_key)
        http_client: Shared async HTTP client
        scope: OAuth scope requested for the token
    """

    provider = "google"

    def __init__(
        self,
        service_account_info: Dict[str, Any],
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time,
        scope: str = GOOGLE_CALENDAR_SCOPE
    ):
        super().__init__(http_client, clock)
        self.client_email = service_account_info.get("client_email", "")
        self.private_key = service_account_info.get("private_key", "")
        self.private_key_id = service_account_info.get("private_key_id")
        self.token_uri = service_account_info.get("token_uri") or GOOGLE_TOKEN_URL
        self.scope = scope

    def build_assertion(self, issued_at: float) -> str:
        """Signed RS256 JWT asserting the service account's identity."""
        now = int(issued_at)
        claims = {
            "iss": self.client_email,
            "scope": self.scope,
            "aud": self.token_uri,
            "iat": now,
            "exp": now + 3600,
        }
        headers = {"kid": self.private_key_id} if self.private_key_id else None
        return jwt.encode(claims, self.private_key, algorithm="RS256", headers=headers)

    async def _exchange(self, issued_at: float) -> Dict[str, Any]:
        if not self.client_email or not self.private_key:
            raise CredentialError(self.provider, "Missing GOOGLE_SERVICE_ACCOUNT_JSON credentials")

        try:
            assertion = self.build_assertion(issued_at)
        except (ValueError, TypeError, jwt.PyJWTError) as e:
            raise CredentialError(self.provider, f"could not sign assertion: {e}") from e

        return await self._post_token_request(
            self.token_uri,
            data={"grant_type": JWT_BEARER_GRANT, "assertion": assertion},
        )


class ZoomCredentials(CredentialManager):
    """
    Zoom Server-to-Server OAuth (account credentials grant).

    The app must have the meeting:write:meeting scope.
    """

    provider = "zoom"

    def __init__(
        self,
        account_id: str,
        client_id: str,
        client_secret: str,
        http_client: httpx.AsyncClient,
        clock: Callable[[], float] = time.time
    ):
        super().__init__(http_client, clock)
        self.account_id = account_id
        self.client_id = client_id
        self.client_secret = client_secret

    async def _exchange(self, issued_at: float) -> Dict[str, Any]:
        if not (self.account_id and self.client_id and self.client_secret):
            raise CredentialError(
                self.provider,
                "Missing Zoom credentials. Set ZOOM_ACCOUNT_ID, ZOOM_CLIENT_ID, and ZOOM_CLIENT_SECRET."
            )

        return await self._post_token_request(
            ZOOM_TOKEN_URL,
            params={"grant_type": "account_credentials", "account_id": self.account_id},
            auth=httpx.BasicAuth(self.client_id, self.client_secret),
        )
