"""Bearer token providers with single-flight refresh."""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from typing import Callable, Dict, Optional, Tuple

import httpx

from ..exceptions import AuthError, TransientNetworkError

logger = logging.getLogger(__name__)


class TokenProvider(ABC):
    """
    Owns a cached bearer token and its refresh.

    Refresh is single-flight: while one refresh is in progress every other
    caller awaits the same task, so a burst of 401 responses from parallel
    requests costs exactly one token request.
    """

    def __init__(
        self,
        refresh_margin: float = 60.0,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the provider.

        Args:
            refresh_margin: Seconds before expiry at which the token is renewed
            clock: Monotonic clock, injectable for tests
        """
        self.refresh_margin = refresh_margin
        self._clock = clock
        self._token: Optional[str] = None
        self._expires_at: Optional[float] = None
        self._refresh_task: Optional[asyncio.Future] = None
        self.refresh_count = 0

    @abstractmethod
    async def _fetch_token(self) -> Tuple[str, Optional[float]]:
        """
        Obtain a fresh token.

        Returns:
            Tuple of (token, lifetime in seconds or None if it never expires)
        """
        pass

    def _is_valid(self) -> bool:
        if not self._token:
            return False
        return self._expires_at is None or self._clock() < self._expires_at

    async def get_token(self) -> str:
        """Return the cached token, refreshing it first if absent or expired."""
        if self._is_valid():
            return self._token
        return await self.refresh()

    async def refresh(self, stale_token: Optional[str] = None) -> str:
        """
        Replace the cached token.

        Args:
            stale_token: The token the caller saw rejected. If it has already
                been replaced, the current token is returned without a new
                request.

        Returns:
            The new token
        """
        if stale_token is not None and self._token is not None and stale_token != self._token:
            return self._token

        if self._refresh_task is None or self._refresh_task.done():
            self._refresh_task = asyncio.ensure_future(self._refresh_once())
        return await asyncio.shield(self._refresh_task)

    async def _refresh_once(self) -> str:
        self.refresh_count += 1
        token, lifetime = await self._fetch_token()
        self._token = token
        if lifetime is None:
            self._expires_at = None
        else:
            self._expires_at = self._clock() + max(0.0, lifetime - self.refresh_margin)
        logger.info(f"Refreshed access token ({type(self).__name__}, refresh #{self.refresh_count})")
        return token

    async def auth_headers(self) -> Dict[str, str]:
        """Authorization header for the current token."""
        token = await self.get_token()
        return {"Authorization": f"Bearer {token}"}


class StaticTokenProvider(TokenProvider):
    """A fixed API key. Refreshing hands back the same value."""

    def __init__(self, token: str, **kwargs):
        super().__init__(**kwargs)
        if not token:
            raise AuthError("Static token is empty")
        self._static_token = token

    async def _fetch_token(self) -> Tuple[str, Optional[float]]:
        return self._static_token, None


class ClientCredentialsTokenProvider(TokenProvider):
    """
    OAuth2 client-credentials grant.

    Supports both the query-string GET style some marketing APIs use and
    the standard form-encoded POST.
    """

    def __init__(
        self,
        token_url: str,
        client_id: str,
        client_secret: str,
        scope: Optional[str] = None,
        method: str = "GET",
        client: Optional[httpx.AsyncClient] = None,
        timeout: float = 30.0,
        **kwargs
    ):
        """
        Initialize the provider.

        Args:
            token_url: Token endpoint URL
            client_id: OAuth client id
            client_secret: OAuth client secret
            scope: Optional scope
            method: GET (params in query string) or POST (form body)
            client: Shared httpx client
            timeout: Request timeout in seconds
        """
        super().__init__(**kwargs)
        self.token_url = token_url
        self.client_id = client_id
        self.client_secret = client_secret
        self.scope = scope
        self.method = method.upper()
        self._client = client or httpx.AsyncClient(timeout=timeout)

    async def _fetch_token(self) -> Tuple[str, Optional[float]]:
        params = {
            "grant_type": "client_credentials",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
        }
        if self.scope:
            params["scope"] = self.scope

        try:
            if self.method == "GET":
                response = await self._client.get(self.token_url, params=params)
            else:
                response = await self._client.post(self.token_url, data=params)
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Token request failed: {e}") from e

        if response.status_code >= 400:
            raise AuthError(
                f"Token endpoint returned {response.status_code}",
                details={"status_code": response.status_code, "body": response.text[:500]},
            )

        data = response.json()
        token = data.get("access_token")
        if not token:
            raise AuthError("Failed to obtain access token: invalid response")

        expires_in = data.get("expires_in")
        return token, float(expires_in) if expires_in is not None else None

    async def aclose(self) -> None:
        await self._client.aclose()
