"""Consumer-facing calendar service for calfeed_lite.

CalendarService is the single owner of the published calendar state (events,
month cache, loading flag, error). Only the task completing a fetch's merge
step writes it; every write replaces the whole immutable CalendarState under
one lock, so readers never see events and cache out of step. Observers
subscribe with a callback.
"""

from __future__ import annotations

import asyncio
import logging
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass, replace
from datetime import date, datetime, timedelta, tzinfo
from functools import partial
from typing import Any

from .day_view import display_time, events_for_day
from .fetch_orchestrator import FetchOrchestrator
from .kv_store import KeyValueStore
from .lite_datetime_utils import (
    get_local_timezone,
    local_date,
    local_midnight,
    month_key,
    month_window,
    now_local,
)
from .lite_day_cache import MonthCacheStore, build_month_cache, filter_window
from .lite_fetcher import FeedTransport
from .lite_models import CalendarSource, MonthCache, ParsedEvent
from .lite_parser import LiteICSParser

logger = logging.getLogger(__name__)

NO_EVENTS_MESSAGE = "No events could be loaded"


@dataclass(frozen=True)
class CalendarState:
    """Snapshot of everything the service publishes."""

    events: tuple[ParsedEvent, ...] = ()
    month_cache: MonthCache | None = None
    is_loading: bool = False
    error: str | None = None


StateListener = Callable[[CalendarState], None]


class CalendarService:
    """Fetches all sources for a month and answers day-view queries."""

    def __init__(
        self,
        sources: Sequence[CalendarSource],
        transport: FeedTransport,
        settings: Any = None,
        store: KeyValueStore | None = None,
        local_tz: tzinfo | None = None,
    ) -> None:
        """Initialize the service.

        Args:
            sources: Calendar sources fetched on every cycle
            transport: Feed transport (e.g. LiteICSFetcher)
            settings: Application settings (see config_loader.Config)
            store: Optional persistence for the month cache
            local_tz: Local wall-clock zone; resolved from settings/env when omitted
        """
        self.sources = list(sources)
        self.transport = transport
        self.settings = settings
        self.local_tz = local_tz or get_local_timezone(getattr(settings, "timezone", None))
        self.parser = LiteICSParser(settings, self.local_tz)
        self.cache_store = MonthCacheStore(store) if store is not None else None
        self.fetch_concurrency = int(getattr(settings, "fetch_concurrency", 3))

        self._state_lock = threading.Lock()
        self._state = CalendarState()
        self._listeners: list[StateListener] = []
        self._in_flight = False
        self._viewed_month_key: str | None = None

    # ----- publishing -------------------------------------------------

    @property
    def state(self) -> CalendarState:
        """Current published snapshot."""
        with self._state_lock:
            return self._state

    def subscribe(self, listener: StateListener) -> Callable[[], None]:
        """Register ``listener`` for state changes; returns an unsubscribe callable."""
        with self._state_lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._state_lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def _publish(self, **changes: Any) -> CalendarState:
        with self._state_lock:
            self._state = replace(self._state, **changes)
            snapshot = self._state
            listeners = list(self._listeners)
        for listener in listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("State listener %r failed", listener)
        return snapshot

    # ----- fetching ---------------------------------------------------

    def load_cached(self, now: datetime | None = None) -> bool:
        """Publish the persisted month cache if it belongs to the current month."""
        if self.cache_store is None:
            return False
        current = now or now_local(self.local_tz)
        key = month_key(current, self.local_tz)
        cache = self.cache_store.load(key)
        if cache is None:
            return False

        self._viewed_month_key = key
        self._publish(month_cache=cache, events=_events_from_cache(cache))
        logger.info("Loaded cached events for %s", key)
        return True

    async def fetch(self, for_month_containing: datetime) -> None:
        """Fetch every source, merge, cache and publish events for one month.

        A request arriving while a fetch is in flight is dropped. Source
        failures are isolated; the aggregate error is published only when no
        events resulted at all.
        """
        if self._in_flight:
            logger.debug("Fetch already in flight; dropping request")
            return
        self._in_flight = True
        try:
            await self._fetch_month(for_month_containing)
        except Exception:
            logger.exception("Fetch cycle failed")
            self._publish(is_loading=False, error=NO_EVENTS_MESSAGE)
        finally:
            self._in_flight = False

    async def _fetch_month(self, for_month_containing: datetime) -> None:
        target_key = month_key(for_month_containing, self.local_tz)
        window_start, window_end = month_window(for_month_containing, self.local_tz)
        self._viewed_month_key = target_key
        self._publish(is_loading=True, error=None)

        orchestrator = FetchOrchestrator(
            partial(self._fetch_and_parse, window_start=window_start, window_end=window_end),
            self.fetch_concurrency,
        )
        merged = await orchestrator.fetch_all_sources(self.sources)
        events = filter_window(merged.events, window_start, window_end)

        error = None
        if not events and merged.errors:
            error = "; ".join(merged.errors)

        if merged.results and not any(result.ok for result in merged.results):
            # A failed cycle never counts as a fresh cache, so the next refresh retries
            logger.warning(
                "All %d sources failed - keeping %d cached events",
                len(merged.results),
                len(self.state.events),
            )
            self._publish(is_loading=False, error=error)
            return

        cache = build_month_cache(target_key, events, self.local_tz)
        self._persist(cache)
        self._publish(events=tuple(events), month_cache=cache, is_loading=False, error=error)
        logger.info(
            "Loaded %d events for %s from %d sources (%d failed)",
            len(events),
            target_key,
            len(merged.results),
            len(merged.errors),
        )

    async def _fetch_and_parse(
        self, source: CalendarSource, *, window_start: datetime, window_end: datetime
    ) -> list[ParsedEvent]:
        content = await self.transport.fetch_text(source)
        # Parsing is pure and CPU-bound; keep the event loop responsive
        result = await asyncio.to_thread(
            self.parser.parse_ics_content, content, source.id, window_start, window_end
        )
        return result.events

    def _persist(self, cache: MonthCache) -> None:
        if self.cache_store is None:
            return
        try:
            self.cache_store.save(cache)
        except Exception:
            logger.exception("Failed to persist month cache %s", cache.month_key)

    async def refresh_if_needed(self, for_month_containing: datetime) -> bool:
        """Fetch only when the cached month differs from the target month.

        Returns:
            True if a fetch was started
        """
        target_key = month_key(for_month_containing, self.local_tz)
        self._viewed_month_key = target_key
        cache = self.state.month_cache
        if cache is not None and cache.month_key == target_key:
            logger.debug("Month cache for %s is current", target_key)
            return False
        await self.fetch(for_month_containing)
        return True

    # ----- queries ----------------------------------------------------

    def _as_day(self, value: date | datetime) -> date:
        if isinstance(value, datetime):
            return local_date(value, self.local_tz)
        return value

    def events_for_day(self, day: date | datetime) -> list[ParsedEvent]:
        """Ordered events shown on ``day``."""
        state = self.state
        buckets = None
        cached_month = None
        if state.month_cache is not None and state.month_cache.month_key == self._viewed_month_key:
            buckets = state.month_cache.events_by_day
            cached_month = state.month_cache.month_key
        return events_for_day(self._as_day(day), buckets, state.events, self.local_tz, cached_month)

    def display_time(self, event: ParsedEvent, on_day: date | datetime) -> str:
        """``"All Day"`` or ``HH:MM`` for ``event`` on ``on_day``."""
        return display_time(event, self._as_day(on_day), self.local_tz)

    def upcoming_events(self, days: int | None = None, now: datetime | None = None) -> list[ParsedEvent]:
        """Events starting between the start of today and ``days`` days later."""
        span = days if days is not None else int(getattr(self.settings, "upcoming_days", 14))
        today = local_midnight(local_date(now or now_local(self.local_tz), self.local_tz), self.local_tz)
        horizon = today + timedelta(days=span)
        upcoming = [event for event in self.state.events if today <= event.start <= horizon]
        upcoming.sort(key=lambda event: event.start)
        return upcoming


def _events_from_cache(cache: MonthCache) -> tuple[ParsedEvent, ...]:
    """Distinct events across all buckets, ordered by start."""
    seen: dict[str, ParsedEvent] = {}
    for key in sorted(cache.events_by_day):
        for event in cache.events_by_day[key]:
            seen.setdefault(event.id, event)
    return tuple(sorted(seen.values(), key=lambda event: event.start))

