"""Fan-out / fan-in fetching of all calendar sources for calfeed_lite."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field

from .lite_models import CalendarSource, ParsedEvent

logger = logging.getLogger(__name__)

# Fetches one source and returns its parsed (and expanded) events
SourceTask = Callable[[CalendarSource], Awaitable[list[ParsedEvent]]]


@dataclass
class SourceFetchResult:
    """Outcome of one source task: events, or the error that stopped it."""

    source: CalendarSource
    events: list[ParsedEvent] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class MergedFetch:
    """All source outcomes joined at the barrier."""

    results: list[SourceFetchResult]

    @property
    def events(self) -> list[ParsedEvent]:
        merged: list[ParsedEvent] = []
        for result in self.results:
            merged.extend(result.events)
        return merged

    @property
    def errors(self) -> list[str]:
        return [result.error for result in self.results if result.error is not None]


class FetchOrchestrator:
    """Runs one fetch-and-parse task per source with bounded concurrency.

    A failing task never aborts its siblings; its exception is recorded on its
    SourceFetchResult. Callers get nothing until every task has finished.
    """

    def __init__(self, fetch_and_parse_source: SourceTask, fetch_concurrency: int = 3):
        """Initialize fetch orchestrator.

        Args:
            fetch_and_parse_source: Coroutine function fetching and parsing one source
            fetch_concurrency: Maximum number of sources fetched at once
        """
        self.fetch_and_parse_source = fetch_and_parse_source
        self.fetch_concurrency = max(1, fetch_concurrency)

    async def _run_one(
        self, semaphore: asyncio.Semaphore, source: CalendarSource
    ) -> SourceFetchResult:
        async with semaphore:
            try:
                events = await self.fetch_and_parse_source(source)
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.warning("Source %s failed: %s", source.id, exc)
                return SourceFetchResult(source=source, error=f"{source.name or source.id}: {exc}")
        logger.debug("Source %s returned %d events", source.id, len(events))
        return SourceFetchResult(source=source, events=list(events))

    async def fetch_all_sources(self, sources: Sequence[CalendarSource]) -> MergedFetch:
        """Fetch and parse all sources, returning once every task has completed.

        Args:
            sources: Calendar sources to fetch

        Returns:
            MergedFetch with one result per source, in source order
        """
        if not sources:
            logger.error("No sources configured, skipping fetch")
            return MergedFetch(results=[])

        semaphore = asyncio.Semaphore(self.fetch_concurrency)
        tasks = [asyncio.create_task(self._run_one(semaphore, source)) for source in sources]
        results = await asyncio.gather(*tasks)

        merged = MergedFetch(results=list(results))
        logger.debug(
            "Fetched %d sources: %d events, %d failures",
            len(sources),
            len(merged.events),
            len(merged.errors),
        )
        return merged
