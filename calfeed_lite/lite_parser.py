"""Calendar feed parser - calfeed_lite.

A deliberately small reader for the VEVENT subset of iCalendar. Physical lines
are unfolded, then a two-state scanner (outside / inside a VEVENT block)
collects one PropertyBag per block and turns it into a base event, expanding
it when the block carries an RRULE.
"""

import logging
import re
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, tzinfo
from typing import Any, Optional

from .lite_datetime_utils import get_local_timezone, now_local, parse_ics_datetime
from .lite_models import DEFAULT_EVENT_TITLE, ParsedEvent, ParseResult
from .lite_rrule_expander import LiteRRuleExpander, LiteRRuleParseError
from .lite_text import normalize_ical_text

logger = logging.getLogger(__name__)

BEGIN_EVENT = "BEGIN:VEVENT"
END_EVENT = "END:VEVENT"

FREE_TEXT_PROPERTY = "DESCRIPTION"

# Component names are VXXX or X- extensions, always upper case in the wild
NESTED_BEGIN_RE = re.compile(r"^BEGIN:(V[A-Z]+|X-[A-Z0-9-]+)$")
NESTED_END_RE = re.compile(r"^END:(V[A-Z]+|X-[A-Z0-9-]+)$")

# Property name -> PropertyBag attribute
RECOGNIZED_PROPERTIES: dict[str, str] = {
    "DTSTART": "dtstart",
    "DTEND": "dtend",
    "UID": "uid",
    "SUMMARY": "summary",
    "DESCRIPTION": "description",
    "LOCATION": "location",
    "RRULE": "rrule",
}


def unfold_lines(lines: Iterable[str]) -> list[str]:
    """Join folded continuation lines into logical lines.

    A physical line starting with a single space or tab continues the previous
    logical line; that one whitespace character is dropped.

    Args:
        lines: Physical lines, line terminators already removed

    Returns:
        Logical lines in input order
    """
    logical: list[str] = []
    for line in lines:
        line = line.rstrip("\r\n")
        if line[:1] in (" ", "\t"):
            if logical:
                logical[-1] += line[1:]
            else:
                logical.append(line[1:])
            continue
        logical.append(line)
    return logical


@dataclass
class PropertyBag:
    """Last-seen values of the properties of one VEVENT block."""

    dtstart: Optional[str] = None
    dtend: Optional[str] = None
    uid: Optional[str] = None
    summary: Optional[str] = None
    description: Optional[str] = None
    location: Optional[str] = None
    rrule: Optional[str] = None
    extras: dict[str, str] = field(default_factory=dict)

    def set(self, name: str, value: str) -> None:
        """Store ``value`` under property ``name``, overwriting any previous value."""
        attr = RECOGNIZED_PROPERTIES.get(name)
        if attr is None:
            self.extras[name] = value
        else:
            setattr(self, attr, value)

    def get(self, name: str) -> Optional[str]:
        """Return the stored value of property ``name``."""
        attr = RECOGNIZED_PROPERTIES.get(name)
        if attr is None:
            return self.extras.get(name)
        value: Optional[str] = getattr(self, attr)
        return value

    def append_free_text(self, text: str) -> None:
        """Continue the free-text field on a new line."""
        if self.description is None:
            self.description = text
        else:
            self.description = f"{self.description}\n{text}"


def split_property(line: str) -> Optional[tuple[str, str]]:
    """Split ``NAME;PARAMS:VALUE`` into (NAME, VALUE); parameters are discarded."""
    if ":" not in line:
        return None
    name_part, value = line.split(":", 1)
    name = name_part.split(";", 1)[0].strip().upper()
    return name, value


class LiteICSParser:
    """Two-state VEVENT scanner producing base events and their occurrences."""

    def __init__(self, settings: Any = None, local_tz: Optional[tzinfo] = None) -> None:
        """Initialize feed parser.

        Args:
            settings: Application settings (timezone, first_weekday, ...)
            local_tz: Local wall-clock zone; resolved from settings/env when omitted
        """
        self.settings = settings
        self.local_tz = local_tz or get_local_timezone(getattr(settings, "timezone", None))
        self.rrule_expander = LiteRRuleExpander(settings, self.local_tz)
        logger.debug("Lite feed parser initialized (tz=%s)", self.local_tz)

    def parse_ics_content(
        self,
        content: str,
        calendar_source_id: str,
        window_start: datetime,
        window_end: datetime,
    ) -> ParseResult:
        """Parse feed text into events, expanding recurrences for the window.

        Args:
            content: Raw feed text
            calendar_source_id: Id of the source the text came from
            window_start: Inclusive start of the expansion window
            window_end: Exclusive end of the expansion window

        Returns:
            ParseResult with base events and occurrences in feed order
        """
        result = ParseResult(calendar_source_id=calendar_source_id)
        # One "now" per pass so every malformed date in a feed lands on the same moment
        parse_now = now_local(self.local_tz)

        in_event = False
        nested_depth = 0
        bag = PropertyBag()
        last_property: Optional[str] = None

        for line in unfold_lines(content.splitlines()):
            stripped = line.strip()

            if stripped == BEGIN_EVENT:
                in_event = True
                nested_depth = 0
                bag = PropertyBag()
                last_property = None
                continue

            if stripped == END_EVENT:
                if in_event:
                    result.block_count += 1
                    self._emit(bag, result, window_start, window_end, parse_now)
                in_event = False
                continue

            if not in_event or not stripped:
                continue

            # Nested components (VALARM, ...) are skipped wholesale. Only a real
            # component name opens one, so "Begin: 9am" stays description text.
            if NESTED_BEGIN_RE.match(stripped):
                nested_depth += 1
                last_property = None
                continue
            if nested_depth > 0 and NESTED_END_RE.match(stripped):
                nested_depth -= 1
                continue
            if nested_depth > 0:
                continue

            parsed = split_property(stripped)
            if parsed is None:
                if last_property == FREE_TEXT_PROPERTY:
                    bag.append_free_text(stripped)
                continue

            name, value = parsed
            if last_property == FREE_TEXT_PROPERTY and name not in RECOGNIZED_PROPERTIES:
                # Unescaped colon inside a broken DESCRIPTION line
                bag.append_free_text(stripped)
                continue

            bag.set(name, value)
            last_property = name

        result.event_count = len(result.events)
        logger.debug(
            "Parsed source %s: %d blocks -> %d events (%d recurring, %d dropped)",
            calendar_source_id,
            result.block_count,
            result.event_count,
            result.recurring_event_count,
            result.dropped_block_count,
        )
        return result

    def _emit(
        self,
        bag: PropertyBag,
        result: ParseResult,
        window_start: datetime,
        window_end: datetime,
        parse_now: datetime,
    ) -> None:
        base = self.create_event(bag, result.calendar_source_id, parse_now)
        if base is None:
            result.dropped_block_count += 1
            return

        if not bag.rrule:
            result.events.append(base)
            return

        result.recurring_event_count += 1
        try:
            rule = self.rrule_expander.parse_rrule_string(bag.rrule)
        except LiteRRuleParseError:
            result.warnings.append(f"Empty RRULE on {base.id}")
            result.events.append(base)
            return
        result.events.extend(
            self.rrule_expander.expand_event(base, rule, window_start, window_end)
        )

    def create_event(
        self, bag: PropertyBag, calendar_source_id: str, now: Optional[datetime] = None
    ) -> Optional[ParsedEvent]:
        """Build the base event of a block; blocks without DTSTART yield None."""
        if bag.dtstart is None:
            logger.debug("Dropping VEVENT without DTSTART (uid=%r)", bag.uid)
            return None

        uid = bag.uid or bag.dtstart
        start = parse_ics_datetime(bag.dtstart, self.local_tz, now)
        end = parse_ics_datetime(bag.dtend, self.local_tz, now) if bag.dtend is not None else None

        return ParsedEvent(
            id=f"{calendar_source_id}-{uid}",
            calendar_source_id=calendar_source_id,
            title=bag.summary or DEFAULT_EVENT_TITLE,
            start=start,
            end=end,
            description=normalize_ical_text(bag.description) if bag.description is not None else None,
            location=normalize_ical_text(bag.location) if bag.location is not None else None,
        )


def parse_ics(
    content: str,
    calendar_source_id: str,
    window_start: datetime,
    window_end: datetime,
    settings: Any = None,
    local_tz: Optional[tzinfo] = None,
) -> list[ParsedEvent]:
    """Convenience wrapper returning only the events of one feed."""
    parser = LiteICSParser(settings, local_tz)
    return parser.parse_ics_content(content, calendar_source_id, window_start, window_end).events
