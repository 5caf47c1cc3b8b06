"""
Unit tests for calfeed_lite.__main__

Covers:
- argument parsing
- exit code when no sources are configured
- day listing end to end with a stubbed fetcher
"""

import sys
from datetime import date

import pytest

from calfeed_lite import __main__ as cli
from calfeed_lite.config_loader import Config
from calfeed_lite.lite_models import CalendarSource

pytestmark = [pytest.mark.unit, pytest.mark.fast]


class StubFetcher:
    """Stands in for LiteICSFetcher: serves one feed for every source."""

    feed = ""

    def __init__(self, settings=None, client=None):
        self.settings = settings

    async def __aenter__(self):
        return self

    async def __aexit__(self, *exc):
        return None

    async def fetch_text(self, source: CalendarSource) -> str:
        return self.feed


def test_create_parser_parses_day_and_upcoming() -> None:
    args = cli._create_parser().parse_args(["--config", "x.yaml", "--day", "2024-01-05", "--upcoming", "7"])

    assert args.config == "x.yaml"
    assert args.day == date(2024, 1, 5)
    assert args.upcoming == 7
    assert args.debug is False


def test_create_parser_when_day_invalid_then_exits() -> None:
    with pytest.raises(SystemExit):
        cli._create_parser().parse_args(["--day", "05/01/2024"])


def test_main_when_no_sources_then_exit_code_two(monkeypatch, tmp_path) -> None:
    config = tmp_path / "calfeed.yaml"
    config.write_text("sources: []\n", encoding="utf-8")
    monkeypatch.setattr(sys, "argv", ["calfeed", "--config", str(config)])

    with pytest.raises(SystemExit) as excinfo:
        cli.main()

    assert excinfo.value.code == 2


@pytest.mark.asyncio
async def test_run_prints_events_for_requested_day(monkeypatch, capsys, standup_feed) -> None:
    StubFetcher.feed = standup_feed
    monkeypatch.setattr(cli, "LiteICSFetcher", StubFetcher)
    cfg = Config(
        sources=[CalendarSource(id="work", url="https://example.com/w.ics")],
        timezone="America/Los_Angeles",
    )

    code = await cli._run(cfg, date(2024, 1, 5), None)

    out = capsys.readouterr().out
    assert code == 0
    assert "Friday 05 January 2024" in out
    assert "  09:00  Standup" in out


@pytest.mark.asyncio
async def test_run_when_day_empty_then_says_so(monkeypatch, capsys, standup_feed) -> None:
    StubFetcher.feed = standup_feed
    monkeypatch.setattr(cli, "LiteICSFetcher", StubFetcher)
    cfg = Config(
        sources=[CalendarSource(id="work", url="https://example.com/w.ics")],
        timezone="America/Los_Angeles",
    )

    await cli._run(cfg, date(2024, 1, 8), None)

    assert "No events" in capsys.readouterr().out


@pytest.mark.asyncio
async def test_run_upcoming_lists_dated_lines(monkeypatch, capsys, standup_feed) -> None:
    StubFetcher.feed = standup_feed
    monkeypatch.setattr(cli, "LiteICSFetcher", StubFetcher)
    cfg = Config(
        sources=[CalendarSource(id="work", url="https://example.com/w.ics")],
        timezone="America/Los_Angeles",
    )

    await cli._run(cfg, date(2024, 1, 1), 14)

    assert "2024-01-05 09:00  Standup" in capsys.readouterr().out
