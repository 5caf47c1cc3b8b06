"""RRULE parsing and occurrence expansion for calfeed_lite.

Only the subset of RRULE used by consumer calendar feeds is supported: FREQ,
INTERVAL, BYDAY (plain and ordinal), BYMONTHDAY, BYMONTH, COUNT and UNTIL.
Candidate dates come from dateutil.rrule anchored on the base start; the
window, COUNT budget and occurrence cap are applied on top in the local
wall-clock zone.
"""

import logging
from collections.abc import Iterator
from dataclasses import dataclass
from datetime import datetime, tzinfo
from typing import Any, Optional

from dateutil.rrule import DAILY, FR, MO, MONTHLY, SA, SU, TH, TU, WE, WEEKLY, YEARLY, rrule

from .lite_datetime_utils import (
    day_key,
    local_midnight,
    parse_ics_datetime,
    start_of_week,
    to_local,
)
from .lite_models import Frequency, OrdinalWeekday, ParsedEvent, RecurrenceRule

logger = logging.getLogger(__name__)

WEEKDAY_CODES: dict[str, int] = {
    "SU": 1,
    "MO": 2,
    "TU": 3,
    "WE": 4,
    "TH": 5,
    "FR": 6,
    "SA": 7,
}

_DATEUTIL_FREQUENCIES = {
    Frequency.DAILY: DAILY,
    Frequency.WEEKLY: WEEKLY,
    Frequency.MONTHLY: MONTHLY,
    Frequency.YEARLY: YEARLY,
}


# Indexed by Sunday=1..Saturday=7
_DATEUTIL_WEEKDAYS = (None, SU, MO, TU, WE, TH, FR, SA)


class LiteRRuleExpansionError(Exception):
    """Base exception for recurrence handling."""


class LiteRRuleParseError(LiteRRuleExpansionError):
    """Raised when an RRULE value cannot be read at all."""


@dataclass
class RRuleExpanderConfig:
    """Configuration for RRULE expansion with explicit defaults."""

    first_weekday: int = 1
    max_occurrences_per_rule: int = 1000

    @classmethod
    def from_settings(cls, settings: Any) -> "RRuleExpanderConfig":
        """Extract RRULE configuration from a settings object.

        Args:
            settings: Object with optional first_weekday / max_occurrences_per_rule

        Returns:
            RRuleExpanderConfig with values from settings or defaults
        """
        first_weekday = int(getattr(settings, "first_weekday", 1) or 1)
        if not 1 <= first_weekday <= 7:
            logger.warning("first_weekday %d out of range; using Sunday", first_weekday)
            first_weekday = 1
        return cls(
            first_weekday=first_weekday,
            max_occurrences_per_rule=int(getattr(settings, "max_occurrences_per_rule", 1000)),
        )


def _parse_int(key: str, raw: str) -> Optional[int]:
    try:
        return int(raw.strip())
    except ValueError:
        logger.debug("Ignoring non-integer %s value %r", key, raw)
        return None


def _parse_byday(raw: str, rule: RecurrenceRule) -> None:
    for token in raw.split(","):
        token = token.strip().upper()
        code = token[-2:]
        weekday = WEEKDAY_CODES.get(code)
        if weekday is None:
            logger.debug("Ignoring BYDAY token %r", token)
            continue
        prefix = token[:-2]
        if not prefix:
            rule.by_weekdays.add(weekday)
            rule.by_ordinal_weekdays.append(OrdinalWeekday(weekday=weekday))
            continue
        ordinal = _parse_int("BYDAY", prefix)
        if ordinal is None or ordinal == 0:
            continue
        rule.by_ordinal_weekdays.append(OrdinalWeekday(weekday=weekday, ordinal=ordinal))


def parse_rrule(value: str, local_tz: tzinfo) -> RecurrenceRule:
    """Tokenize an RRULE value into a RecurrenceRule.

    Unknown keys and malformed tokens are ignored one by one; an unrecognized
    FREQ leaves the rule at Frequency.NONE.

    Args:
        value: ``;``-delimited ``KEY=VALUE`` pairs, e.g. "FREQ=WEEKLY;BYDAY=MO,WE"
        local_tz: Zone used to read UNTIL

    Returns:
        RecurrenceRule

    Raises:
        LiteRRuleParseError: If the value is empty
    """
    if not value or not value.strip():
        raise LiteRRuleParseError("Empty RRULE string")

    rule = RecurrenceRule()
    for part in value.strip().split(";"):
        if "=" not in part:
            continue
        key, raw = part.split("=", 1)
        key = key.strip().upper()

        if key == "FREQ":
            try:
                rule.frequency = Frequency(raw.strip().upper())
            except ValueError:
                logger.debug("Unsupported FREQ %r", raw)
                rule.frequency = Frequency.NONE
        elif key == "INTERVAL":
            interval = _parse_int(key, raw)
            if interval is not None and interval >= 1:
                rule.interval = interval
        elif key == "BYDAY":
            _parse_byday(raw, rule)
        elif key == "BYMONTHDAY":
            for token in raw.split(","):
                day = _parse_int(key, token)
                if day is not None and day != 0 and -31 <= day <= 31:
                    rule.by_month_days.append(day)
        elif key == "BYMONTH":
            for token in raw.split(","):
                month = _parse_int(key, token)
                if month is not None and 1 <= month <= 12:
                    rule.by_months.append(month)
        elif key == "COUNT":
            count = _parse_int(key, raw)
            if count is not None and count >= 1:
                rule.count = count
        elif key == "UNTIL":
            rule.until = parse_ics_datetime(raw, local_tz)
        else:
            logger.debug("Ignoring unsupported RRULE key %s", key)

    return rule


class LiteRRuleExpander:
    """Expands recurring base events into concrete occurrences within a window.

    Expansion is pure: it reads the base event and rule and returns new
    ParsedEvent values without touching shared state.
    """

    def __init__(self, settings: Any = None, local_tz: Optional[tzinfo] = None):
        """Initialize expander with settings.

        Args:
            settings: Object with RRULE expansion settings (see RRuleExpanderConfig)
            local_tz: Local wall-clock zone; defaults to the base event's zone
        """
        config = RRuleExpanderConfig.from_settings(settings)
        self.first_weekday = config.first_weekday
        self.max_occurrences = config.max_occurrences_per_rule
        self.local_tz = local_tz

        logger.debug(
            "LiteRRuleExpander initialized: first_weekday=%d, max_occurrences=%d",
            self.first_weekday,
            self.max_occurrences,
        )

    def parse_rrule_string(self, rrule_string: str, local_tz: Optional[tzinfo] = None) -> RecurrenceRule:
        """Parse an RRULE value using this expander's zone."""
        zone = local_tz or self.local_tz
        if zone is None:
            raise LiteRRuleParseError("No local timezone available to read UNTIL")
        return parse_rrule(rrule_string, zone)

    def expand_event(
        self,
        base_event: ParsedEvent,
        rule: RecurrenceRule,
        window_start: datetime,
        window_end: datetime,
    ) -> list[ParsedEvent]:
        """Expand ``base_event`` under ``rule`` for ``[window_start, window_end)``.

        Returns the base event unmodified when the frequency is unsupported or
        nothing overlaps the window.
        """
        if rule.frequency == Frequency.NONE:
            logger.debug("No supported frequency for %s; keeping base event", base_event.id)
            return [base_event]

        zone = self.local_tz or base_event.start.tzinfo
        window_start = to_local(window_start, zone)
        window_end = to_local(window_end, zone)
        occurrences: list[ParsedEvent] = []
        remaining = rule.count
        duration = base_event.duration

        for occ_start in self._candidates(base_event.start, rule, window_start, window_end):
            if remaining is not None and remaining <= 0:
                break
            if len(occurrences) >= self.max_occurrences:
                logger.warning(
                    "Expansion of %s capped at %d occurrences", base_event.id, self.max_occurrences
                )
                break
            if occ_start < base_event.start:
                continue
            if rule.until is not None and occ_start > rule.until:
                continue

            occ_end = occ_start + duration if duration is not None else None
            if not _overlaps(occ_start, occ_end, window_start, window_end):
                continue

            occurrences.append(
                base_event.model_copy(
                    update={
                        "id": f"{base_event.id}-{day_key(occ_start, zone)}",
                        "start": occ_start,
                        "end": occ_end,
                    }
                )
            )
            if remaining is not None:
                remaining -= 1

        if not occurrences:
            logger.debug("Expansion of %s produced no occurrences; keeping base", base_event.id)
            return [base_event]

        logger.debug(
            "Expanded %s (%s) into %d occurrences",
            base_event.id,
            rule.frequency.value,
            len(occurrences),
        )
        return occurrences

    def expand_rrule(
        self,
        base_event: ParsedEvent,
        rrule_string: str,
        window_start: datetime,
        window_end: datetime,
    ) -> list[ParsedEvent]:
        """Parse ``rrule_string`` and expand; an empty rule keeps the base event."""
        try:
            rule = self.parse_rrule_string(rrule_string, base_event.start.tzinfo)
        except LiteRRuleParseError:
            logger.debug("Empty RRULE on %s; keeping base event", base_event.id)
            return [base_event]
        return self.expand_event(base_event, rule, window_start, window_end)

    def _build_rrule(self, base_start: datetime, rule: RecurrenceRule, until: datetime) -> rrule:
        """Translate ``rule`` into a dateutil rrule anchored on ``base_start``.

        COUNT is left out: the occurrence budget is spent per window in
        expand_event. ``until`` bounds iteration so selectors that never match
        stop at the window end. Only the highest-priority day selector is passed.
        """
        frequency = _DATEUTIL_FREQUENCIES[rule.frequency]
        kwargs: dict[str, Any] = {
            "dtstart": base_start,
            "interval": rule.interval,
            "wkst": _DATEUTIL_WEEKDAYS[self.first_weekday],
            "until": until,
        }

        if rule.frequency == Frequency.WEEKLY:
            if rule.by_weekdays:
                kwargs["byweekday"] = [_DATEUTIL_WEEKDAYS[wd] for wd in sorted(rule.by_weekdays)]
        elif rule.frequency in (Frequency.MONTHLY, Frequency.YEARLY):
            if rule.by_month_days:
                kwargs["bymonthday"] = rule.by_month_days
            elif rule.has_ordinals:
                kwargs["byweekday"] = [
                    _DATEUTIL_WEEKDAYS[entry.weekday](entry.ordinal)
                    if entry.ordinal is not None
                    else _DATEUTIL_WEEKDAYS[entry.weekday]
                    for entry in rule.by_ordinal_weekdays
                ]
            elif rule.by_weekdays:
                kwargs["byweekday"] = [_DATEUTIL_WEEKDAYS[wd] for wd in sorted(rule.by_weekdays)]

            if rule.frequency == Frequency.YEARLY:
                # Ordinals count within each month, never across the year
                kwargs["bymonth"] = sorted(set(rule.by_months)) or [base_start.month]
            elif rule.by_months:
                kwargs["bymonth"] = sorted(set(rule.by_months))

        return rrule(frequency, **kwargs)

    def _period_floor(self, rule: RecurrenceRule, window_start: datetime) -> datetime:
        """Start of the rule period (day, week, month or year) containing ``window_start``."""
        zone = window_start.tzinfo
        day = window_start.date()
        if rule.frequency == Frequency.WEEKLY:
            day = start_of_week(day, self.first_weekday)
        elif rule.frequency == Frequency.MONTHLY:
            day = day.replace(day=1)
        elif rule.frequency == Frequency.YEARLY:
            day = day.replace(month=1, day=1)
        return local_midnight(day, zone)

    def _candidates(
        self,
        base_start: datetime,
        rule: RecurrenceRule,
        window_start: datetime,
        window_end: datetime,
    ) -> Iterator[datetime]:
        """Yield rule starts from the period containing the window start until the window ends."""
        until = window_end if rule.until is None else min(rule.until, window_end)
        try:
            recurrence = self._build_rrule(base_start, rule, until)
        except ValueError as e:
            logger.warning("Cannot build recurrence for rule %s: %s", rule.frequency.value, e)
            return
        for candidate in recurrence.xafter(self._period_floor(rule, window_start), inc=True):
            if candidate >= window_end:
                return
            yield candidate


def _overlaps(
    occ_start: datetime, occ_end: Optional[datetime], window_start: datetime, window_end: datetime
) -> bool:
    """Window test: ranged occurrences intersect, instants fall inside."""
    if occ_end is not None and occ_end > occ_start:
        return occ_start < window_end and occ_end > window_start
    return window_start <= occ_start < window_end
