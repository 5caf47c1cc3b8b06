"""Data models for calendar feed processing - calfeed_lite."""

from datetime import datetime, timedelta
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_serializer

DEFAULT_EVENT_TITLE = "Untitled Event"


class CalendarSource(BaseModel):
    """Configuration for a calendar feed source."""

    id: str = Field(..., description="Stable identifier used to namespace event ids")
    name: str = Field(default="", description="Human-readable name for this calendar source")
    url: str = Field(..., description="Feed URL (http, https or webcal)")

    timeout: int = Field(default=30, description="HTTP timeout in seconds")
    custom_headers: dict[str, str] = Field(default_factory=dict, description="Custom HTTP headers")

    @property
    def http_url(self) -> str:
        """Feed URL with the webcal scheme rewritten to https."""
        if self.url.lower().startswith("webcal://"):
            return "https://" + self.url[len("webcal://") :]
        return self.url


class FetchResponse(BaseModel):
    """Response from a feed fetch operation."""

    success: bool
    content: Optional[str] = None
    status_code: Optional[int] = None
    headers: dict[str, str] = Field(default_factory=dict)
    error_message: Optional[str] = None

    @property
    def content_length(self) -> Optional[int]:
        """Length of buffered content in bytes, if any."""
        if self.content is None:
            return None
        return len(self.content.encode("utf-8"))


class ParsedEvent(BaseModel):
    """One event from a feed, either a base event or an expanded occurrence.

    Instances are never mutated after creation. ``end`` is expected to be at or
    after ``start`` but malformed feeds may violate that.
    """

    id: str = Field(..., description="Event id: '<source>-<uid>' or '<base>-<YYYY-MM-DD>'")
    calendar_source_id: str = Field(..., description="Id of the CalendarSource")
    title: str = Field(default=DEFAULT_EVENT_TITLE, description="Event title (SUMMARY)")
    start: datetime = Field(..., description="Start moment in the local zone")
    end: Optional[datetime] = Field(default=None, description="End moment in the local zone")
    description: Optional[str] = Field(default=None, description="Normalized DESCRIPTION")
    location: Optional[str] = Field(default=None, description="Normalized LOCATION")

    model_config = ConfigDict(frozen=True)

    @property
    def duration(self) -> Optional[timedelta]:
        """End minus start, or None for point-in-time events."""
        if self.end is None:
            return None
        return self.end - self.start

    @property
    def is_ranged(self) -> bool:
        """True if the event spans a positive length of time."""
        return self.end is not None and self.end > self.start

    @field_serializer("start")
    def serialize_start(self, dt: datetime) -> str:
        """Serialize start to ISO format."""
        return dt.isoformat()

    @field_serializer("end", when_used="unless-none")
    def serialize_end(self, dt: datetime) -> str:
        """Serialize end to ISO format."""
        return dt.isoformat()


class Frequency(str, Enum):
    """Recurrence frequencies understood by the expansion engine."""

    DAILY = "DAILY"
    WEEKLY = "WEEKLY"
    MONTHLY = "MONTHLY"
    YEARLY = "YEARLY"
    NONE = "NONE"


class OrdinalWeekday(BaseModel):
    """A BYDAY entry: weekday (Sunday=1..Saturday=7) with an optional signed ordinal."""

    weekday: int = Field(..., ge=1, le=7)
    ordinal: Optional[int] = None

    model_config = ConfigDict(frozen=True)


class RecurrenceRule(BaseModel):
    """Structured form of an RRULE value."""

    frequency: Frequency = Frequency.NONE
    interval: int = Field(default=1, ge=1)
    by_weekdays: set[int] = Field(default_factory=set, description="Plain weekday numbers")
    by_ordinal_weekdays: list[OrdinalWeekday] = Field(default_factory=list)
    by_month_days: list[int] = Field(default_factory=list, description="Signed days of month")
    by_months: list[int] = Field(default_factory=list, description="Months 1..12")
    count: Optional[int] = Field(default=None, ge=1)
    until: Optional[datetime] = None

    @property
    def has_ordinals(self) -> bool:
        """True if any BYDAY entry carries an ordinal."""
        return any(entry.ordinal is not None for entry in self.by_ordinal_weekdays)


class ParseResult(BaseModel):
    """Result of parsing one feed."""

    success: bool = True
    calendar_source_id: str
    events: list[ParsedEvent] = Field(default_factory=list)

    # Parse statistics
    block_count: int = 0
    event_count: int = 0
    recurring_event_count: int = 0
    dropped_block_count: int = 0

    warnings: list[str] = Field(default_factory=list)


class MonthCache(BaseModel):
    """Per-day event buckets for one month; the unit of persistence."""

    month_key: str = Field(..., description="YYYY-MM of the cached month")
    events_by_day: dict[str, list[ParsedEvent]] = Field(default_factory=dict)
