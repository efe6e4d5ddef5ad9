"""
OAuth2 client-credentials session shared by the Salesforce and Graph clients.

Each client owns one OAuthSession; the token lives on that instance and is
refreshed lazily behind access_token().
"""

import asyncio
import logging
import time
from typing import Optional

import httpx

logger = logging.getLogger(__name__)

# Refresh this long before the token actually expires.
_EXPIRY_SKEW_SECONDS = 60


class AuthenticationError(Exception):
    def __init__(self, message: str, error_code: str = "auth_failed"):
        super().__init__(message)
        self.error_code = error_code
        self.message = message


class OAuthSession:
    def __init__(
        self,
        http: httpx.AsyncClient,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: Optional[str] = None,
        default_ttl_seconds: int = 3600,
        clock=time.monotonic,
    ):
        self._http = http
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.default_ttl_seconds = default_ttl_seconds
        self._clock = clock
        self._lock = asyncio.Lock()
        self._token: Optional[str] = None
        self._expires_at = 0.0
        self.instance_url: Optional[str] = None

    def _is_valid(self) -> bool:
        return self._token is not None and self._clock() < self._expires_at - _EXPIRY_SKEW_SECONDS

    def invalidate(self) -> None:
        self._token = None
        self._expires_at = 0.0

    async def access_token(self) -> str:
        """Return a valid bearer token, fetching a new one when expired."""
        if self._is_valid():
            return self._token
        async with self._lock:
            if not self._is_valid():
                await self._refresh()
            return self._token

    async def _refresh(self) -> None:
        data = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if self.scope:
            data["scope"] = self.scope

        try:
            response = await self._http.post(self.token_url, data=data)
            response.raise_for_status()
            payload = response.json()
        except httpx.HTTPStatusError as e:
            raise AuthenticationError(
                f"Token request to {self.token_url} failed: HTTP {e.response.status_code} {e.response.text[:200]}"
            )
        except (httpx.HTTPError, ValueError) as e:
            raise AuthenticationError(f"Token request to {self.token_url} failed: {e}")

        token = payload.get("access_token")
        if not token:
            raise AuthenticationError(f"No access_token in response from {self.token_url}")

        ttl = int(payload.get("expires_in") or self.default_ttl_seconds)
        self._token = token
        self._expires_at = self._clock() + ttl
        if payload.get("instance_url"):
            self.instance_url = payload["instance_url"].rstrip("/")
        logger.info(f"Obtained access token from {self.token_url} (ttl {ttl}s)")
