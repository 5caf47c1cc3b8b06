"""Per-day grouping of events and the persisted month cache."""

from __future__ import annotations

import logging
from collections.abc import Iterable
from datetime import date, datetime, timedelta, tzinfo

from pydantic import ValidationError

from .day_view import sort_for_day
from .kv_store import KeyValueStore
from .lite_datetime_utils import date_key, is_local_midnight, local_date
from .lite_models import MonthCache, ParsedEvent

logger = logging.getLogger(__name__)

MONTH_CACHE_KEY = "calfeed.month_cache"


def covered_days(event: ParsedEvent, local_tz: tzinfo) -> list[date]:
    """Local calendar days an event covers.

    Point-in-time events cover their start day. Ranged events cover every day
    from start day through end day, except that an end exactly at local
    midnight excludes that midnight's day.
    """
    start_day = local_date(event.start, local_tz)
    if event.end is None or event.end <= event.start:
        return [start_day]

    last_day = local_date(event.end, local_tz)
    if is_local_midnight(event.end, local_tz):
        last_day -= timedelta(days=1)
    if last_day < start_day:
        return [start_day]

    return [start_day + timedelta(days=n) for n in range((last_day - start_day).days + 1)]


def overlaps_window(event: ParsedEvent, window_start: datetime, window_end: datetime) -> bool:
    """Whether ``event`` falls in ``[window_start, window_end)``."""
    if event.end is not None and event.end > event.start:
        return event.start < window_end and event.end > window_start
    return window_start <= event.start < window_end


def filter_window(
    events: Iterable[ParsedEvent], window_start: datetime, window_end: datetime
) -> list[ParsedEvent]:
    """Events overlapping the window, sorted by start."""
    selected = [event for event in events if overlaps_window(event, window_start, window_end)]
    selected.sort(key=lambda event: event.start)
    return selected


def build_day_cache(events: Iterable[ParsedEvent], local_tz: tzinfo) -> dict[str, list[ParsedEvent]]:
    """Group events into per-day buckets, each sorted for its own day."""
    buckets: dict[date, list[ParsedEvent]] = {}
    for event in events:
        for day in covered_days(event, local_tz):
            buckets.setdefault(day, []).append(event)

    return {date_key(day): sort_for_day(bucket, day, local_tz) for day, bucket in sorted(buckets.items())}


def build_month_cache(
    month_key: str, events: Iterable[ParsedEvent], local_tz: tzinfo
) -> MonthCache:
    """Build the persistable cache for ``month_key``."""
    return MonthCache(month_key=month_key, events_by_day=build_day_cache(events, local_tz))


class MonthCacheStore:
    """Serializes a MonthCache as JSON under one fixed key."""

    def __init__(self, store: KeyValueStore, key: str = MONTH_CACHE_KEY) -> None:
        self.store = store
        self.key = key

    def save(self, cache: MonthCache) -> None:
        """Persist ``cache``, replacing whatever was stored."""
        self.store.set(self.key, cache.model_dump_json().encode("utf-8"))
        logger.debug(
            "Saved month cache %s (%d days)", cache.month_key, len(cache.events_by_day)
        )

    def load(self, current_month_key: str) -> MonthCache | None:
        """Load the stored cache if it belongs to ``current_month_key``.

        Missing, undecodable and stale caches all read as a miss.
        """
        try:
            raw = self.store.get(self.key)
        except Exception:
            logger.exception("Month cache read failed")
            return None
        if raw is None:
            return None

        try:
            cache = MonthCache.model_validate_json(raw)
        except ValidationError as exc:
            logger.warning("Discarding undecodable month cache: %s", exc.error_count())
            return None

        if cache.month_key != current_month_key:
            logger.debug(
                "Ignoring month cache for %s (current month %s)", cache.month_key, current_month_key
            )
            return None
        return cache
