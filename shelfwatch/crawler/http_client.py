"""HTML fetch collaborator with status-aware error classification.

Fetches are single-shot: a failure raises and the crawl job decides
whether to retry.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import httpx

from shelfwatch.config import settings

logger = logging.getLogger(__name__)

# Transport errors that are worth retrying at the job level
RETRYABLE_EXC = (
    httpx.ReadTimeout,
    httpx.ConnectTimeout,
    httpx.ConnectError,
    httpx.RemoteProtocolError,
    httpx.PoolTimeout,
)


class FetchError(RuntimeError):
    """Base class for page fetch failures."""


class BlockedError(FetchError):
    """Raised when access is blocked (403, 401, or /blocked redirect)."""


class PermanentURLError(FetchError):
    """Raised when URL is permanently invalid (404, 410)."""


class TransientFetchError(FetchError):
    """Raised for 5xx responses, timeouts and other transport failures."""


class RateLimitedError(FetchError):
    """Raised when rate limited (429)."""

    def __init__(self, url: str, retry_after: Optional[int] = None):
        super().__init__(f"Rate limited fetching {url}")
        self.retry_after = retry_after


def default_headers() -> dict[str, str]:
    """Get default browser-like headers."""
    return {
        "User-Agent": settings.user_agent,
        "Accept": "text/html, application/xhtml+xml, application/xml; q=0.9, */*; q=0.8",
        "Accept-Language": "en-GB, en; q=0.9",
        "Accept-Encoding": "gzip, deflate",
        "Connection": "keep-alive",
        "Cache-Control": "no-cache",
        "Upgrade-Insecure-Requests": "1",
    }


class HttpFetcher:
    """
    httpx-backed ``fetch_html`` collaborator.

    Remembers the status code and headers of the last response so callers
    can log them after a crawl.
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        timeout: Optional[float] = None,
    ):
        self._client = client
        self._owns_client = client is None
        self.timeout = timeout or settings.request_timeout_seconds
        self.last_status_code: Optional[int] = None
        self.last_headers: dict[str, str] = {}

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout, follow_redirects=True)
        return self._client

    async def close(self):
        """Close HTTP client."""
        if self._client and self._owns_client:
            await self._client.aclose()
            self._client = None

    def get_last_status_code(self) -> Optional[int]:
        return self.last_status_code

    def get_last_headers(self) -> dict[str, str]:
        return dict(self.last_headers)

    async def fetch_html(self, url: str, options: Optional[dict[str, Any]] = None) -> str:
        """
        Fetch a page and return its HTML.

        Args:
            url: URL to fetch
            options: ``headers`` merged over the defaults, optional
                ``timeout`` in seconds

        Returns:
            Response body as text

        Raises:
            BlockedError: If access is blocked (403, 401, or /blocked redirect)
            PermanentURLError: If the URL no longer exists (404, 410)
            RateLimitedError: If rate limited (429)
            TransientFetchError: On 5xx, unexpected statuses or transport errors
        """
        options = options or {}
        headers = default_headers()
        headers.update(options.get("headers") or {})
        client = await self._get_client()

        try:
            resp = await client.get(
                url,
                headers=headers,
                timeout=options.get("timeout", self.timeout),
                follow_redirects=True,
            )
        except RETRYABLE_EXC as e:
            self.last_status_code = None
            raise TransientFetchError(f"Transport error ({type(e).__name__}) fetching {url}") from e
        except httpx.HTTPError as e:
            self.last_status_code = None
            raise TransientFetchError(f"HTTP error fetching {url}: {e}") from e

        self.last_status_code = resp.status_code
        self.last_headers = dict(resp.headers)
        sc = resp.status_code

        if "/blocked" in str(resp.url).lower():
            raise BlockedError(f"Blocked redirect for {url}: {resp.url}")

        if sc in (401, 403):
            raise BlockedError(f"{sc} for {url}")

        if sc in (404, 410):
            raise PermanentURLError(f"{sc} for {url}")

        if sc == 429:
            retry_after = resp.headers.get("Retry-After")
            try:
                retry_seconds = int(retry_after) if retry_after else None
            except ValueError:
                retry_seconds = None
            raise RateLimitedError(url, retry_after=retry_seconds)

        if not 200 <= sc < 300:
            raise TransientFetchError(f"Unexpected status {sc} for {url}")

        logger.debug(f"Fetched {url}: status={sc}, bytes={len(resp.content)}")
        return resp.text
