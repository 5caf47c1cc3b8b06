"""HTTP client for downloading calendar feeds - calfeed_lite."""

import asyncio
import logging
import random
from typing import Any, Optional, Protocol
from urllib.parse import urlparse

import httpx

from .lite_models import CalendarSource, FetchResponse

logger = logging.getLogger(__name__)

# Backoff calculation constants
MAX_BACKOFF_SECONDS = 30.0
JITTER_MIN_FACTOR = 0.1
JITTER_MAX_FACTOR = 0.3

DEFAULT_HEADERS = {
    "User-Agent": "calfeed/0.1 (+https://github.com/calfeed/calfeed)",
    "Accept": "text/calendar, text/plain;q=0.9, */*;q=0.8",
}


class LiteICSFetchError(Exception):
    """Base exception for feed fetch errors."""


class LiteICSAuthError(LiteICSFetchError):
    """Authentication error during feed fetch."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class LiteICSNetworkError(LiteICSFetchError):
    """Network error during feed fetch."""


class FeedTransport(Protocol):
    """Transport collaborator: returns raw feed text or raises LiteICSFetchError."""

    async def fetch_text(self, source: CalendarSource) -> str: ...


class LiteICSFetcher:
    """Async HTTP client for downloading calendar feeds."""

    def __init__(self, settings: Any = None, client: Optional[httpx.AsyncClient] = None) -> None:
        """Initialize feed fetcher.

        Args:
            settings: Application settings (request_timeout, max_retries, retry_backoff_factor)
            client: Optional externally owned HTTP client; it is never closed here
        """
        self.settings = settings
        self.client: Optional[httpx.AsyncClient] = client
        self._owns_client = client is None

        logger.debug("Lite feed fetcher initialized (external client: %s)", not self._owns_client)

    async def __aenter__(self) -> "LiteICSFetcher":
        """Async context manager entry."""
        self._ensure_client()
        return self

    async def __aexit__(self, _exc_type: Any, _exc_val: Any, _exc_tb: Any) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the HTTP client if this fetcher created it."""
        if self.client is not None and self._owns_client:
            if not self.client.is_closed:
                await self.client.aclose()
                logger.debug("Closed HTTP client")
            self.client = None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self.client is None or self.client.is_closed:
            request_timeout = float(getattr(self.settings, "request_timeout", 30))
            self.client = httpx.AsyncClient(
                timeout=httpx.Timeout(connect=10.0, read=request_timeout, write=10.0, pool=30.0),
                limits=httpx.Limits(max_connections=10, max_keepalive_connections=5),
                follow_redirects=True,
                headers=DEFAULT_HEADERS,
            )
            self._owns_client = True
        return self.client

    @staticmethod
    def _validate_url(url: str) -> bool:
        """Accept only absolute http(s) URLs with a hostname."""
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https"):
            logger.debug("Blocked non-HTTP(S) URL: %s", url)
            return False
        if not parsed.hostname:
            logger.debug("Blocked URL with missing hostname: %s", url)
            return False
        return True

    async def fetch_ics(self, source: CalendarSource) -> FetchResponse:
        """Download feed text for ``source``.

        Timeouts, non-auth HTTP errors and empty bodies come back as an
        unsuccessful FetchResponse.

        Raises:
            LiteICSAuthError: HTTP 401/403
            LiteICSNetworkError: Connection failures after all retries
            LiteICSFetchError: Unexpected client failures
        """
        url = source.http_url
        if not self._validate_url(url):
            logger.error("Refusing to fetch invalid feed URL for source %s: %s", source.id, url)
            return FetchResponse(success=False, error_message="Invalid feed URL")

        client = self._ensure_client()
        headers = dict(source.custom_headers)

        try:
            logger.debug("Fetching feed %s from %s", source.id, url)
            response = await self._make_request_with_retry(client, url, headers, source.timeout)
            return self._create_response(response)

        except httpx.TimeoutException:
            logger.exception("Timeout fetching feed from %s", url)
            return FetchResponse(
                success=False, error_message=f"Request timeout after {source.timeout}s"
            )

        except httpx.HTTPStatusError as e:
            status = e.response.status_code
            logger.exception("HTTP error fetching feed from %s: %s", url, status)
            if status == 401:
                raise LiteICSAuthError("Authentication failed - check credentials", status) from e
            if status == 403:
                raise LiteICSAuthError("Access forbidden - insufficient permissions", status) from e
            return FetchResponse(
                success=False,
                status_code=status,
                error_message=f"HTTP {status}: {e.response.reason_phrase}",
                headers=dict(e.response.headers),
            )

        except httpx.NetworkError as e:
            logger.exception("Network error fetching feed from %s", url)
            raise LiteICSNetworkError(f"Network error: {e}") from e

        except httpx.HTTPError as e:
            logger.exception("Unexpected HTTP client error fetching feed from %s", url)
            raise LiteICSFetchError(f"Unexpected error: {e}") from e

    async def fetch_text(self, source: CalendarSource) -> str:
        """Return feed text or raise LiteICSFetchError describing the failure."""
        response = await self.fetch_ics(source)
        if not response.success or response.content is None:
            raise LiteICSFetchError(
                f"{source.name or source.id}: {response.error_message or 'fetch failed'}"
            )
        return response.content

    def _calculate_backoff(self, attempt: int, backoff_factor: float) -> float:
        """Exponential backoff with jitter, capped at MAX_BACKOFF_SECONDS."""
        base_backoff = min(backoff_factor**attempt, MAX_BACKOFF_SECONDS)
        jitter = random.uniform(JITTER_MIN_FACTOR, JITTER_MAX_FACTOR) * base_backoff  # nosec B311
        return base_backoff + jitter

    async def _make_request_with_retry(
        self, client: httpx.AsyncClient, url: str, headers: dict[str, str], timeout: int
    ) -> httpx.Response:
        """GET ``url``, retrying timeouts and network errors but never HTTP status errors."""
        max_retries = int(getattr(self.settings, "max_retries", 2))
        backoff_factor = float(getattr(self.settings, "retry_backoff_factor", 1.5))

        attempt = 0
        while True:
            try:
                response = await client.get(url, headers=headers, timeout=timeout)
                response.raise_for_status()
                logger.debug(
                    "Fetched %s (attempt %d) - %d bytes", url, attempt + 1, len(response.content)
                )
                return response

            except (httpx.TimeoutException, httpx.NetworkError) as e:
                if attempt >= max_retries:
                    logger.warning("All %d attempts failed for %s", attempt + 1, url)
                    raise
                backoff_time = self._calculate_backoff(attempt, backoff_factor)
                logger.warning(
                    "Request failed (attempt %s/%s), retrying in %.1fs: %s",
                    attempt + 1,
                    max_retries + 1,
                    backoff_time,
                    e,
                )
                await asyncio.sleep(backoff_time)
                attempt += 1

    def _create_response(self, http_response: httpx.Response) -> FetchResponse:
        headers = dict(http_response.headers)
        content = http_response.text

        content_type = headers.get("content-type", "").lower()
        if content_type and not any(ct in content_type for ct in ("text/calendar", "text/plain")):
            logger.warning("Unexpected content type: %s", content_type)

        if not content or not content.strip():
            logger.error("Empty feed content received")
            return FetchResponse(
                success=False,
                status_code=http_response.status_code,
                error_message="Empty content received",
                headers=headers,
            )

        if "BEGIN:VCALENDAR" not in content:
            logger.warning("Content does not appear to be valid iCalendar")

        return FetchResponse(
            success=True,
            content=content,
            status_code=http_response.status_code,
            headers=headers,
        )
