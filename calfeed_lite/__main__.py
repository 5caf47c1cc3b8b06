"""Command-line entry for calfeed_lite.

Fetches the configured calendar feeds for the month containing a day and
prints that day's events (or the upcoming list).
"""

from __future__ import annotations

import argparse
import asyncio
import sys
from datetime import date

from . import _init_logging
from .calendar_service import CalendarService
from .config_loader import Config, load_config
from .day_view import display_time
from .kv_store import JsonFileKeyValueStore, KeyValueStore
from .lite_datetime_utils import get_local_timezone, local_midnight, now_local
from .lite_fetcher import LiteICSFetcher
from .lite_logging import configure_lite_logging


def _create_parser() -> argparse.ArgumentParser:
    """Create argument parser for the calfeed_lite CLI.

    Returns:
        Configured argument parser
    """
    parser = argparse.ArgumentParser(
        prog="calfeed_lite",
        description="calfeed - calendar feed day view",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python -m calfeed_lite --config calfeed.yaml                 # Today's events
  python -m calfeed_lite --config calfeed.yaml --day 2024-01-05
  python -m calfeed_lite --config calfeed.yaml --upcoming 14
        """,
    )
    parser.add_argument("--config", metavar="PATH", help="YAML or JSON config file")
    parser.add_argument(
        "--day", type=date.fromisoformat, metavar="YYYY-MM-DD", help="Day to show (default: today)"
    )
    parser.add_argument(
        "--upcoming", type=int, metavar="DAYS", help="List events starting in the next DAYS days"
    )
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    return parser


def _format_line(when: str, title: str, location: str | None) -> str:
    line = f"{when:>7}  {title}"
    if location:
        line += f"  @ {location.splitlines()[0]}"
    return line


async def _run(cfg: Config, day: date | None, upcoming: int | None) -> int:
    local_tz = get_local_timezone(cfg.timezone)
    store: KeyValueStore | None = JsonFileKeyValueStore(cfg.cache_dir) if cfg.cache_dir else None
    target = local_midnight(day, local_tz) if day else now_local(local_tz)

    async with LiteICSFetcher(cfg) as fetcher:
        service = CalendarService(cfg.sources, fetcher, cfg, store, local_tz)
        service.load_cached()
        await service.refresh_if_needed(target)

    state = service.state
    if state.error:
        print(f"Error: {state.error}", file=sys.stderr)

    if upcoming is not None:
        for event in service.upcoming_events(upcoming, now=target):
            when = event.start.strftime("%Y-%m-%d %H:%M")
            print(f"{when}  {event.title}")
        return 0

    shown_day = target.date()
    events = service.events_for_day(shown_day)
    print(shown_day.strftime("%A %d %B %Y"))
    if not events:
        print("  No events")
    for event in events:
        print(_format_line(display_time(event, shown_day, local_tz), event.title, event.location))
    return 0


def main() -> None:
    """Run the calfeed_lite CLI."""
    args = _create_parser().parse_args()

    cfg = load_config(args.config)
    _init_logging("DEBUG" if args.debug else cfg.log_level)
    configure_lite_logging(debug_mode=args.debug)

    if not cfg.sources:
        print("No calendar sources configured.", file=sys.stderr)
        sys.exit(2)

    sys.exit(asyncio.run(_run(cfg, args.day, args.upcoming)))


if __name__ == "__main__":
    main()
