"""
Unit tests for calfeed_lite.lite_logging and the package logging bootstrap

Covers:
- debug forcing and environment overrides
- third-party logger suppression
"""

import logging

import pytest

from calfeed_lite import _init_logging
from calfeed_lite.lite_logging import configure_lite_logging, get_logging_status

pytestmark = [pytest.mark.unit, pytest.mark.fast]


@pytest.fixture(autouse=True)
def restore_levels():
    names = ["", "calfeed_lite", "calfeed_lite.lite_parser", "httpx", "httpcore", "asyncio"]
    saved = {name: logging.getLogger(name).level for name in names}
    yield
    for name, level in saved.items():
        logging.getLogger(name).setLevel(level)


def test_configure_lite_logging_when_force_debug_then_package_debug() -> None:
    configure_lite_logging(force_debug=True)

    assert logging.getLogger("calfeed_lite").level == logging.DEBUG
    assert logging.getLogger("calfeed_lite.lite_parser").level == logging.DEBUG
    assert logging.getLogger("httpx").level == logging.WARNING


def test_configure_lite_logging_when_env_debug_then_debug(monkeypatch) -> None:
    monkeypatch.setenv("CALFEED_DEBUG", "yes")

    configure_lite_logging()

    assert logging.getLogger("calfeed_lite").level == logging.DEBUG


def test_configure_lite_logging_when_env_level_then_root_level(monkeypatch) -> None:
    monkeypatch.setenv("CALFEED_LOG_LEVEL", "warning")

    configure_lite_logging(debug_mode=False)

    status = get_logging_status()
    assert status["root"] == "WARNING"
    assert status["calfeed_lite"] == "INFO"
    assert status["httpx"] == "WARNING"


def test_init_logging_when_level_name_unknown_then_info() -> None:
    _init_logging("LOUD")

    assert logging.getLogger().level == logging.INFO


def test_init_logging_when_debug_env_then_debug(monkeypatch) -> None:
    monkeypatch.setenv("CALFEED_DEBUG", "1")

    _init_logging("ERROR")

    assert logging.getLogger().level == logging.DEBUG
