"""
Unit tests for calfeed_lite.lite_fetcher.LiteICSFetcher

Covers:
- backoff calculation behavior
- basic URL validation and webcal rewriting
- HTTP status handling (auth errors, server errors, empty bodies)
- retrying timeouts and network errors
"""

import random
from types import SimpleNamespace

import httpx
import pytest

from calfeed_lite.lite_fetcher import (
    JITTER_MAX_FACTOR,
    MAX_BACKOFF_SECONDS,
    LiteICSAuthError,
    LiteICSFetcher,
    LiteICSFetchError,
    LiteICSNetworkError,
)
from calfeed_lite.lite_models import CalendarSource

pytestmark = [pytest.mark.unit, pytest.mark.fast]

FEED = "BEGIN:VCALENDAR\r\nEND:VCALENDAR\r\n"


class DummySettings:
    max_retries = 2
    retry_backoff_factor = 2.0
    request_timeout = 5


@pytest.fixture(autouse=True)
def seeded_random(monkeypatch):
    """Seed random.uniform to deterministic value for jitter in tests."""
    monkeypatch.setattr(random, "uniform", lambda a, b: (a + b) / 2)


@pytest.fixture
def no_backoff(monkeypatch):
    monkeypatch.setattr(LiteICSFetcher, "_calculate_backoff", lambda self, attempt, factor: 0.0)


def _fetcher(handler, settings=None) -> LiteICSFetcher:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return LiteICSFetcher(settings or DummySettings(), client=client)


def _source(url: str = "https://example.com/cal.ics", **kwargs) -> CalendarSource:
    return CalendarSource(id="work", name="Work", url=url, **kwargs)


def test_calculate_backoff_when_attempts_increase_then_backoff_increases() -> None:
    fetcher = LiteICSFetcher(DummySettings())

    b0 = fetcher._calculate_backoff(0, 2.0)
    b1 = fetcher._calculate_backoff(1, 2.0)
    b2 = fetcher._calculate_backoff(2, 2.0)

    assert b0 == pytest.approx(1.2)
    assert b0 < b1 < b2


def test_calculate_backoff_when_attempt_large_then_capped() -> None:
    backoff = LiteICSFetcher(DummySettings())._calculate_backoff(20, 2.0)

    assert backoff <= MAX_BACKOFF_SECONDS * (1.0 + JITTER_MAX_FACTOR)


@pytest.mark.parametrize(
    ("url", "expected"),
    [
        ("https://example.com/cal.ics", True),
        ("http://example.com/cal.ics", True),
        ("ftp://example.com/cal.ics", False),
        ("file:///etc/passwd", False),
        ("https:///no-host", False),
    ],
)
def test_validate_url(url: str, expected: bool) -> None:
    assert LiteICSFetcher._validate_url(url) is expected


def test_calendar_source_http_url_rewrites_webcal() -> None:
    assert _source("webcal://example.com/cal.ics").http_url == "https://example.com/cal.ics"
    assert _source("WEBCAL://example.com/a").http_url == "https://example.com/a"
    assert _source("http://example.com/a").http_url == "http://example.com/a"


@pytest.mark.asyncio
async def test_fetch_ics_when_webcal_then_requests_https_with_custom_headers() -> None:
    seen: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(200, text=FEED, headers={"content-type": "text/calendar"})

    fetcher = _fetcher(handler)
    response = await fetcher.fetch_ics(
        _source("webcal://example.com/cal.ics", custom_headers={"Authorization": "Bearer t"})
    )

    assert response.success
    assert response.content == FEED
    assert response.content_length == len(FEED)
    assert str(seen[0].url) == "https://example.com/cal.ics"
    assert seen[0].headers["Authorization"] == "Bearer t"


@pytest.mark.asyncio
async def test_fetch_ics_when_invalid_url_then_failure_without_request() -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise AssertionError("no request expected")

    response = await _fetcher(handler).fetch_ics(_source("ftp://example.com/cal.ics"))

    assert not response.success
    assert response.error_message == "Invalid feed URL"


@pytest.mark.parametrize("status", [401, 403])
@pytest.mark.asyncio
async def test_fetch_ics_when_auth_status_then_raises(status: int) -> None:
    fetcher = _fetcher(lambda request: httpx.Response(status))

    with pytest.raises(LiteICSAuthError) as excinfo:
        await fetcher.fetch_ics(_source())

    assert excinfo.value.status_code == status


@pytest.mark.asyncio
async def test_fetch_ics_when_server_error_then_failure_response() -> None:
    calls = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal calls
        calls += 1
        return httpx.Response(500)

    response = await _fetcher(handler).fetch_ics(_source())

    assert not response.success
    assert response.status_code == 500
    assert response.error_message == "HTTP 500: Internal Server Error"
    # Status errors are never retried
    assert calls == 1


@pytest.mark.asyncio
async def test_fetch_ics_when_empty_body_then_failure_response() -> None:
    response = await _fetcher(lambda request: httpx.Response(200, text="  \n")).fetch_ics(_source())

    assert not response.success
    assert response.error_message == "Empty content received"


@pytest.mark.asyncio
async def test_fetch_ics_when_network_error_then_retried_until_success(no_backoff) -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        if attempts < 3:
            raise httpx.ConnectError("connection refused", request=request)
        return httpx.Response(200, text=FEED)

    response = await _fetcher(handler).fetch_ics(_source())

    assert response.success
    assert attempts == 3


@pytest.mark.asyncio
async def test_fetch_ics_when_network_error_persists_then_raises(no_backoff) -> None:
    attempts = 0

    def handler(request: httpx.Request) -> httpx.Response:
        nonlocal attempts
        attempts += 1
        raise httpx.ConnectError("connection refused", request=request)

    settings = SimpleNamespace(max_retries=1, retry_backoff_factor=1.5, request_timeout=5)
    with pytest.raises(LiteICSNetworkError):
        await _fetcher(handler, settings).fetch_ics(_source())

    assert attempts == 2


@pytest.mark.asyncio
async def test_fetch_ics_when_timeout_then_failure_response(no_backoff) -> None:
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ReadTimeout("too slow", request=request)

    settings = SimpleNamespace(max_retries=0, retry_backoff_factor=1.5, request_timeout=5)
    response = await _fetcher(handler, settings).fetch_ics(_source(timeout=7))

    assert not response.success
    assert response.error_message == "Request timeout after 7s"


@pytest.mark.asyncio
async def test_fetch_text_when_failure_then_raises_fetch_error() -> None:
    fetcher = _fetcher(lambda request: httpx.Response(404))

    with pytest.raises(LiteICSFetchError, match="Work: HTTP 404"):
        await fetcher.fetch_text(_source())


@pytest.mark.asyncio
async def test_fetch_text_when_success_then_returns_content() -> None:
    assert await _fetcher(lambda request: httpx.Response(200, text=FEED)).fetch_text(_source()) == FEED


@pytest.mark.asyncio
async def test_close_when_client_external_then_left_open() -> None:
    client = httpx.AsyncClient(transport=httpx.MockTransport(lambda request: httpx.Response(200)))
    fetcher = LiteICSFetcher(DummySettings(), client=client)

    await fetcher.close()

    assert not client.is_closed
    await client.aclose()


@pytest.mark.asyncio
async def test_context_manager_when_owned_client_then_closed_on_exit() -> None:
    async with LiteICSFetcher(DummySettings()) as fetcher:
        client = fetcher.client
        assert client is not None

    assert client.is_closed
    assert fetcher.client is None
