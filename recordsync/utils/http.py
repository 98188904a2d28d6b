"""Async HTTP client with rate limiting, bounded retry and 401 refresh."""

import asyncio
import logging
from typing import Any, Dict, Optional

import httpx

from ..exceptions import AuthError, TargetError, TransientNetworkError
from ..services.auth import ClientCredentialsTokenProvider, TokenProvider
from ..services.scheduler import RateLimiter

logger = logging.getLogger(__name__)

RETRYABLE_STATUS = frozenset({429, 500, 502, 503, 504})


class APIClient:
    """
    Thin wrapper over ``httpx.AsyncClient`` shared by the HTTP connectors.

    Retry strategy:
    - 429: honour Retry-After if present, else exponential backoff.
    - 5xx and transport errors: exponential backoff.
    - 401: refresh the token once and resend (if ``refresh_on_auth``),
      otherwise raise AuthError so the caller can decide.
    - Other statuses are returned to the caller untouched.
    """

    def __init__(
        self,
        base_url: str,
        token_provider: Optional[TokenProvider] = None,
        rate_limiter: Optional[RateLimiter] = None,
        max_retries: int = 3,
        backoff_factor: float = 0.8,
        max_backoff: float = 20.0,
        timeout: float = 30.0,
        client: Optional[httpx.AsyncClient] = None,
        sleep=asyncio.sleep,
    ):
        """
        Initialize the client.

        Args:
            base_url: Base URL for all requests
            token_provider: Source of bearer tokens (None for no auth)
            rate_limiter: Shared limiter for this API
            max_retries: Retries for 429/5xx/transport failures
            backoff_factor: Base delay in seconds for exponential backoff
            max_backoff: Ceiling for a single backoff delay
            timeout: Request timeout in seconds
            client: Custom httpx client (tests pass one with a MockTransport)
            sleep: Sleep coroutine, injectable for tests
        """
        self.base_url = base_url.rstrip("/")
        self.token_provider = token_provider
        self.rate_limiter = rate_limiter or RateLimiter()
        self.max_retries = max_retries
        self.backoff_factor = backoff_factor
        self.max_backoff = max_backoff
        self._client = client or httpx.AsyncClient(
            timeout=timeout,
            headers={"Content-Type": "application/json"},
        )
        self._sleep = sleep

    def _url(self, path: str) -> str:
        if path.startswith("http://") or path.startswith("https://"):
            return path
        return f"{self.base_url}/{path.lstrip('/')}"

    def _backoff(self, attempt: int, response: Optional[httpx.Response] = None) -> float:
        if response is not None:
            retry_after = response.headers.get("Retry-After")
            if retry_after:
                try:
                    return min(self.max_backoff, float(retry_after))
                except ValueError:
                    pass
        return min(self.max_backoff, self.backoff_factor * (2 ** attempt))

    async def request(
        self,
        method: str,
        path: str,
        params: Optional[Dict[str, Any]] = None,
        json: Optional[Any] = None,
        headers: Optional[Dict[str, str]] = None,
        refresh_on_auth: bool = True,
    ) -> httpx.Response:
        """
        Send a request.

        Raises:
            AuthError: On 401 after the single refresh (or immediately if
                ``refresh_on_auth`` is False)
            TransientNetworkError: When retries are exhausted
        """
        url = self._url(path)
        attempt = 0
        refreshed = False

        while True:
            await self.rate_limiter.wait()

            request_headers = dict(headers or {})
            token = None
            if self.token_provider is not None:
                token = await self.token_provider.get_token()
                request_headers["Authorization"] = f"Bearer {token}"

            try:
                response = await self._client.request(
                    method, url, params=params, json=json, headers=request_headers
                )
            except httpx.TransportError as e:
                if attempt >= self.max_retries:
                    raise TransientNetworkError(
                        f"{method} {url} failed after {attempt} retries: {e}",
                        details={"url": url},
                    ) from e
                delay = self._backoff(attempt)
                logger.warning(f"{method} {url} transport error ({e}), retrying in {delay:.1f}s")
                await self._sleep(delay)
                attempt += 1
                continue

            if response.status_code == 401:
                if refresh_on_auth and not refreshed and self.token_provider is not None:
                    logger.warning(f"{method} {url} returned 401, refreshing token")
                    await self.token_provider.refresh(token)
                    refreshed = True
                    continue
                raise AuthError(
                    f"{method} {url} rejected credentials",
                    details={"url": url, "status_code": 401},
                )

            if response.status_code in RETRYABLE_STATUS:
                if attempt >= self.max_retries:
                    raise TransientNetworkError(
                        f"{method} {url} returned {response.status_code} after {attempt} retries",
                        details={"url": url, "status_code": response.status_code},
                    )
                delay = self._backoff(attempt, response)
                logger.warning(f"{method} {url} returned {response.status_code}, retrying in {delay:.1f}s")
                await self._sleep(delay)
                attempt += 1
                continue

            return response

    async def request_json(self, method: str, path: str, **kwargs) -> Any:
        """Send a request and decode the JSON body, raising on non-2xx."""
        response = await self.request(method, path, **kwargs)
        raise_for_status(response)
        if not response.content:
            return {}
        return response.json()

    async def aclose(self) -> None:
        await self._client.aclose()
        if isinstance(self.token_provider, ClientCredentialsTokenProvider):
            await self.token_provider.aclose()


def raise_for_status(response: httpx.Response) -> None:
    """Raise TargetError for any non-2xx response."""
    if 200 <= response.status_code < 300:
        return

    message = response.text[:500]
    try:
        error_data = response.json()
        if isinstance(error_data, dict):
            message = error_data.get("message") or error_data.get("error") or str(error_data)
    except ValueError:
        pass

    raise TargetError(
        f"{response.request.method} {response.request.url} failed: {message}",
        status_code=response.status_code,
    )
