"""Day-view projection: which events show on a day, how they are timed and ordered."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from datetime import date, datetime, time, tzinfo

from .lite_datetime_utils import date_key, local_date, to_local
from .lite_models import ParsedEvent

logger = logging.getLogger(__name__)

ALL_DAY_LABEL = "All Day"
TIME_FORMAT = "%H:%M"
DATE_RANGE_FORMAT = "%d %b %Y %H:%M"


def is_all_day_on(event: ParsedEvent, day: date, local_tz: tzinfo) -> bool:
    """Whether ``event`` is displayed date-only on ``day``.

    Events starting at local midnight are all-day everywhere; ranged events are
    also all-day on days strictly between their start day and end day.
    """
    start = to_local(event.start, local_tz)
    if start.hour == 0 and start.minute == 0:
        return True
    if event.end is None:
        return False
    return start.date() < day < local_date(event.end, local_tz)


def display_moment(event: ParsedEvent, day: date, local_tz: tzinfo) -> datetime:
    """Moment whose time is shown for ``event`` on ``day``.

    The start on the start day, the end on the end day, otherwise the start.
    """
    start = to_local(event.start, local_tz)
    if start.date() == day:
        return start
    if event.end is not None:
        end = to_local(event.end, local_tz)
        if end.date() == day:
            return end
    return start


def display_time(event: ParsedEvent, day: date, local_tz: tzinfo) -> str:
    """``"All Day"`` or the ``HH:MM`` shown for ``event`` on ``day``."""
    if is_all_day_on(event, day, local_tz):
        return ALL_DAY_LABEL
    return display_moment(event, day, local_tz).strftime(TIME_FORMAT)


def day_sort_key(event: ParsedEvent, day: date, local_tz: tzinfo) -> tuple[int, time, str]:
    """All-day first, then displayed time, then case-insensitive title."""
    all_day = is_all_day_on(event, day, local_tz)
    shown = display_moment(event, day, local_tz).time()
    return (0 if all_day else 1, shown, event.title.casefold())


def sort_for_day(events: Iterable[ParsedEvent], day: date, local_tz: tzinfo) -> list[ParsedEvent]:
    """Order ``events`` for display on ``day``."""
    return sorted(events, key=lambda event: day_sort_key(event, day, local_tz))


def occurs_on_day(event: ParsedEvent, day: date, local_tz: tzinfo) -> bool:
    """Coarse day test used when no cached bucket exists.

    Ranged events count on every day from start day to end day inclusive,
    without the midnight exclusion the day cache applies.
    """
    start_day = local_date(event.start, local_tz)
    if event.end is None or event.end <= event.start:
        return start_day == day
    return start_day <= day <= local_date(event.end, local_tz)


def events_for_day(
    day: date,
    events_by_day: Mapping[str, Sequence[ParsedEvent]] | None,
    all_events: Iterable[ParsedEvent],
    local_tz: tzinfo,
    cached_month: str | None = None,
) -> list[ParsedEvent]:
    """Events to show on ``day``: the cached bucket, else a filtered and sorted scan.

    When ``cached_month`` (``YYYY-MM``) is the month of ``day``, the buckets
    are complete for that month and a missing bucket means an empty day.
    """
    if events_by_day is not None:
        bucket = events_by_day.get(date_key(day))
        if bucket is not None:
            return list(bucket)
        if cached_month is not None and cached_month == day.strftime("%Y-%m"):
            return []

    logger.debug("No cached bucket for %s; scanning all events", day)
    return sort_for_day(
        (event for event in all_events if occurs_on_day(event, day, local_tz)), day, local_tz
    )


def format_date_range(event: ParsedEvent, local_tz: tzinfo) -> str:
    """``"<start> - <end>"`` (or just the start) for detail displays."""
    start = to_local(event.start, local_tz).strftime(DATE_RANGE_FORMAT)
    if event.end is None:
        return start
    return f"{start} - {to_local(event.end, local_tz).strftime(DATE_RANGE_FORMAT)}"
