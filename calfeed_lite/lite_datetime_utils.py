"""DateTime parsing utilities for calendar feed processing - calfeed_lite.

Every moment handled by the package is a timezone-aware datetime in the local
wall-clock zone. Feed values are interpreted in that zone even when they carry
a UTC marker; arithmetic is wall-clock arithmetic in that zone.
"""

import logging
import os
from datetime import date, datetime, time, timedelta, tzinfo
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil import parser as date_parser
from dateutil import tz as dateutil_tz

logger = logging.getLogger(__name__)

DATE_FORMAT = "%Y%m%d"
DATETIME_FORMAT = "%Y%m%d%H%M%S"


def get_local_timezone(name: Optional[str] = None) -> tzinfo:
    """Resolve the local wall-clock zone.

    Resolution order: explicit ``name``, the CALFEED_TIMEZONE environment
    variable, then the host's local zone.

    Args:
        name: Optional IANA zone name (e.g. "Pacific/Auckland")

    Returns:
        tzinfo for the local zone
    """
    candidate = name or os.environ.get("CALFEED_TIMEZONE")
    if candidate:
        try:
            return ZoneInfo(candidate)
        except (ZoneInfoNotFoundError, ValueError):
            logger.warning("Unknown timezone %r; using host local timezone", candidate)
    return dateutil_tz.tzlocal()


def now_local(local_tz: tzinfo) -> datetime:
    """Return the current moment in the local zone.

    Can be overridden for testing via the CALFEED_TEST_TIME environment variable
    (ISO 8601, e.g. "2024-01-05T09:00:00"). A naive override is taken as local
    wall-clock time.
    """
    test_time = os.environ.get("CALFEED_TEST_TIME")
    if test_time:
        try:
            dt = date_parser.isoparse(test_time)
            if dt.tzinfo is None:
                return dt.replace(tzinfo=local_tz)
            return dt.astimezone(local_tz)
        except (ValueError, OverflowError) as e:
            logger.warning("Failed to parse CALFEED_TEST_TIME=%r: %s", test_time, e)
    return datetime.now(local_tz)


def parse_ics_datetime(
    value: str, local_tz: tzinfo, now: Optional[datetime] = None
) -> datetime:
    """Parse a DTSTART/DTEND/UNTIL value into a local wall-clock moment.

    Date-time values (``YYYYMMDDTHHMMSS[Z]``) drop their separator and zone
    marker and are read as local time. Date-only values (``YYYYMMDD``) become
    local midnight. Anything else falls back to the current moment.

    Args:
        value: Raw property value, parameters already removed
        local_tz: Local wall-clock zone
        now: Fallback moment (defaults to now_local)

    Returns:
        Timezone-aware datetime in ``local_tz``
    """
    raw = value.strip()

    if "T" in raw:
        cleaned = raw.replace("T", "").replace("Z", "")[:14]
        try:
            parsed = datetime.strptime(cleaned, DATETIME_FORMAT)
            return parsed.replace(tzinfo=local_tz)
        except ValueError:
            logger.debug("Value %r is not a date-time; trying date-only", raw)

    try:
        parsed_date = datetime.strptime(raw[:8], DATE_FORMAT).date()
        return local_midnight(parsed_date, local_tz)
    except ValueError:
        pass

    fallback = now if now is not None else now_local(local_tz)
    logger.warning("Unparseable date value %r; falling back to %s", value, fallback.isoformat())
    return fallback


def local_midnight(day: date, local_tz: tzinfo) -> datetime:
    """Return local midnight at the start of ``day``."""
    return datetime.combine(day, time(0, 0), tzinfo=local_tz)


def local_date(moment: datetime, local_tz: tzinfo) -> date:
    """Calendar day of ``moment`` in the local zone."""
    return to_local(moment, local_tz).date()


def to_local(moment: datetime, local_tz: tzinfo) -> datetime:
    """Express ``moment`` in the local zone (naive values are taken as local)."""
    if moment.tzinfo is None:
        return moment.replace(tzinfo=local_tz)
    if moment.tzinfo is local_tz:
        return moment
    return moment.astimezone(local_tz)


def is_local_midnight(moment: datetime, local_tz: tzinfo) -> bool:
    """True if ``moment`` falls exactly on a local day boundary."""
    local = to_local(moment, local_tz)
    return local.hour == 0 and local.minute == 0 and local.second == 0 and local.microsecond == 0


def day_key(moment: datetime, local_tz: tzinfo) -> str:
    """Canonical ``YYYY-MM-DD`` key of the local day containing ``moment``."""
    return local_date(moment, local_tz).isoformat()


def date_key(day: date) -> str:
    """Canonical ``YYYY-MM-DD`` key of a calendar day."""
    return day.isoformat()


def month_key(moment: datetime, local_tz: tzinfo) -> str:
    """Canonical ``YYYY-MM`` key of the local month containing ``moment``."""
    return local_date(moment, local_tz).strftime("%Y-%m")


def month_window(moment: datetime, local_tz: tzinfo) -> tuple[datetime, datetime]:
    """Half-open ``[first day 00:00, first day of next month 00:00)`` around ``moment``."""
    day = local_date(moment, local_tz)
    start = day.replace(day=1)
    year, month = add_months(start.year, start.month, 1)
    return local_midnight(start, local_tz), local_midnight(date(year, month, 1), local_tz)


def add_months(year: int, month: int, months: int) -> tuple[int, int]:
    """Add a number of months to a (year, month) pair."""
    index = year * 12 + (month - 1) + months
    return index // 12, index % 12 + 1


def weekday_number(day: date) -> int:
    """Weekday number of ``day`` with Sunday=1 .. Saturday=7."""
    return day.isoweekday() % 7 + 1


def start_of_week(day: date, first_weekday: int = 1) -> date:
    """First day of the week containing ``day``.

    Args:
        day: Any calendar day
        first_weekday: Locally configured first day of the week (Sunday=1)
    """
    return day - timedelta(days=(weekday_number(day) - first_weekday) % 7)
