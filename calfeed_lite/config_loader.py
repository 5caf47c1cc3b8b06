"""calfeed_lite.config_loader

Config loader for calfeed_lite.

- Reads YAML (PyYAML) or JSON, chosen by file suffix.
- Exposes a typed dataclass `Config` and a `load_config()` helper that accepts
  an optional path override (falling back to the CALFEED_CONFIG env var).
"""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from .lite_models import CalendarSource

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path("calfeed.yaml")


@dataclass
class Config:
    """Typed configuration for calfeed_lite.

    Fields:
        sources: calendar feed sources
        timezone: IANA name of the local wall-clock zone (host zone when None)
        first_weekday: first day of the week, Sunday=1 .. Saturday=7
        fetch_concurrency: maximum sources fetched at once (1..8)
        request_timeout: HTTP read timeout in seconds
        max_retries: retries for timeouts and network errors
        retry_backoff_factor: base of the exponential retry backoff
        max_occurrences_per_rule: cap on occurrences produced per recurring event
        cache_dir: directory for the persisted month cache (memory only when None)
        upcoming_days: length of the upcoming-events list
        log_level: logging level name
    """

    sources: list[CalendarSource] = field(default_factory=list)
    timezone: str | None = None
    first_weekday: int = 1
    fetch_concurrency: int = 3
    request_timeout: int = 30
    max_retries: int = 2
    retry_backoff_factor: float = 1.5
    max_occurrences_per_rule: int = 1000
    cache_dir: str | None = None
    upcoming_days: int = 14
    log_level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> Config:
        """Create Config from a plain mapping, applying defaults and validation.

        Numeric values are coerced to int, out-of-range values are clamped and
        malformed sources are skipped, each with a logged warning.
        """
        if data is None:
            data = {}

        sources: list[CalendarSource] = []
        raw_sources = data.get("sources") or []
        if not isinstance(raw_sources, (list, tuple)):
            logger.warning("Config `sources` is not a list; ignoring it")
            raw_sources = []
        for index, raw in enumerate(raw_sources):
            if isinstance(raw, str):
                raw = {"id": f"calendar{index + 1}", "url": raw}
            try:
                sources.append(CalendarSource.model_validate(raw))
            except ValidationError as exc:
                logger.warning("Skipping invalid source #%d: %s", index + 1, exc)

        def _coerce_int(key: str, default: int, low: int, high: int) -> int:
            raw_value = data.get(key, default)
            try:
                value = int(raw_value)
            except (TypeError, ValueError):
                logger.warning("Config %s=%r is not an int; using default %d", key, raw_value, default)
                return default
            if value < low or value > high:
                clamped = min(max(value, low), high)
                logger.warning("Config %s=%d out of range; coercing to %d", key, value, clamped)
                return clamped
            return value

        try:
            backoff = float(data.get("retry_backoff_factor", 1.5))
        except (TypeError, ValueError):
            logger.warning("Config retry_backoff_factor is not a number; using 1.5")
            backoff = 1.5

        timezone = data.get("timezone")
        cache_dir = data.get("cache_dir")
        log_level = data.get("log_level", "INFO")

        return cls(
            sources=sources,
            timezone=str(timezone) if timezone else None,
            first_weekday=_coerce_int("first_weekday", 1, 1, 7),
            fetch_concurrency=_coerce_int("fetch_concurrency", 3, 1, 8),
            request_timeout=_coerce_int("request_timeout", 30, 1, 300),
            max_retries=_coerce_int("max_retries", 2, 0, 10),
            retry_backoff_factor=backoff,
            max_occurrences_per_rule=_coerce_int("max_occurrences_per_rule", 1000, 1, 100000),
            cache_dir=str(cache_dir) if cache_dir else None,
            upcoming_days=_coerce_int("upcoming_days", 14, 1, 366),
            log_level=str(log_level).upper() if log_level else "INFO",
        )


def _load_yaml_or_json(path: Path) -> Any:
    """Load a mapping from a JSON (``.json``) or YAML (anything else) file."""
    text = path.read_text(encoding="utf-8")
    if path.suffix.lower() == ".json":
        return json.loads(text)
    loaded = yaml.safe_load(text)
    # safe_load returns None for empty files
    return {} if loaded is None else loaded


def load_config(path: str | os.PathLike[str] | None = None) -> Config:
    """Load configuration from a YAML/JSON file and return a Config instance.

    Args:
        path: Optional path to the config file. Defaults to CALFEED_CONFIG, then
              ./calfeed.yaml.

    Returns:
        Config dataclass instance with values from file (or defaults).

    Raises:
        ValueError: If the file's top level is not a mapping
    """
    env_path = os.environ.get("CALFEED_CONFIG")
    p = Path(path) if path else Path(env_path) if env_path else DEFAULT_CONFIG_PATH
    logger.debug("Attempting to load config from %s", p)
    if not p.exists():
        logger.info("Config file %s not found; using defaults", p)
        return Config()

    raw = _load_yaml_or_json(p)
    if not isinstance(raw, dict):
        logger.warning("Config file %s parsed but top-level is not a mapping: %r", p, raw)
        raise ValueError("Config file must contain a mapping at top level")
    cfg = Config.from_dict(raw)
    logger.info("Loaded configuration from %s (%d sources)", p, len(cfg.sources))
    return cfg
