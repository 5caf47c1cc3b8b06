from collections.abc import Generator
from datetime import datetime, tzinfo
from types import SimpleNamespace
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

import pytest

from calfeed_lite.lite_models import ParsedEvent

STANDUP_FEED = "\r\n".join(
    [
        "BEGIN:VCALENDAR",
        "VERSION:2.0",
        "BEGIN:VEVENT",
        "UID:standup-1",
        "DTSTART:20240105T090000",
        "DTEND:20240105T100000",
        "SUMMARY:Standup",
        "END:VEVENT",
        "END:VCALENDAR",
        "",
    ]
)


@pytest.fixture
def simple_settings() -> SimpleNamespace:
    """Lightweight settings object used across lite tests.

    Fields mirror config_loader.Config but stay small and deterministic.
    """
    return SimpleNamespace(
        timezone="America/Los_Angeles",
        first_weekday=1,
        fetch_concurrency=3,
        request_timeout=30,
        max_retries=2,
        retry_backoff_factor=1.5,
        max_occurrences_per_rule=1000,
        upcoming_days=14,
    )


@pytest.fixture
def test_timezone() -> str:
    """Return a deterministic timezone identifier for tests.

    Using a fixed timezone string avoids host-local timezone differences
    which can make datetime-sensitive tests flaky.
    """
    return "America/Los_Angeles"


@pytest.fixture
def local_tz(test_timezone: str) -> tzinfo:
    return ZoneInfo(test_timezone)


@pytest.fixture
def standup_feed() -> str:
    return STANDUP_FEED


@pytest.fixture
def make_event(local_tz: tzinfo) -> Callable[..., ParsedEvent]:
    """Factory for ParsedEvent values with local wall-clock times."""

    def _make(
        event_id: str,
        start: datetime,
        end: Optional[datetime] = None,
        title: str = "Event",
        source_id: str = "src",
    ) -> ParsedEvent:
        return ParsedEvent(
            id=event_id,
            calendar_source_id=source_id,
            title=title,
            start=start.replace(tzinfo=local_tz),
            end=end.replace(tzinfo=local_tz) if end is not None else None,
        )

    return _make


@pytest.fixture(autouse=True)
def clean_test_environment(monkeypatch: Any) -> Generator[None, Any, None]:
    """Ensure CALFEED_* environment variables never leak into or between tests."""
    for name in (
        "CALFEED_TEST_TIME",
        "CALFEED_TIMEZONE",
        "CALFEED_DEBUG",
        "CALFEED_LOG_LEVEL",
        "CALFEED_CONFIG",
    ):
        monkeypatch.delenv(name, raising=False)
    yield
