"""Free-text handling for feed fields: unescaping and route extraction."""

import logging
import re
from dataclasses import dataclass
from typing import Optional

logger = logging.getLogger(__name__)

MAX_UNESCAPE_PASSES = 2

_ESCAPES = {
    "n": "\n",
    "N": "\n",
    ",": ",",
    ";": ";",
    "\\": "\\",
}

# Literal sweep applied after the unescape passes
_LITERAL_REPLACEMENTS = (
    ("\\n", "\n"),
    ("\\N", "\n"),
    ("\\,", ","),
    ("\\;", ";"),
    ("\\\\", "\\"),
)

_RETURN_GLYPHS = ("↩", "↵", "⏎")

_ADDRESS_SEPARATORS = ("，", "﹐", "､", "،")
_MARKER_RE = re.compile(r"from:|to:", re.IGNORECASE)


def unescape_ical_text(text: str) -> str:
    """Run one backslash-unescape pass over ``text``.

    ``\\n``/``\\N`` become newlines, ``\\,`` ``\\;`` ``\\\\`` become their
    literal character, any other escaped character becomes itself. A trailing
    lone backslash is kept as-is.
    """
    result: list[str] = []
    chars = iter(text)
    for char in chars:
        if char != "\\":
            result.append(char)
            continue
        nxt = next(chars, None)
        if nxt is None:
            result.append(char)
            break
        result.append(_ESCAPES.get(nxt, nxt))
    return "".join(result)


def normalize_ical_text(text: str) -> str:
    """Unescape a DESCRIPTION or LOCATION value.

    Up to two unescape passes run, stopping early once a pass changes nothing,
    followed by a literal replacement sweep for any residue. Escapes nested
    deeper than the sweep reaches are collapsed until nothing is left for a
    later pass to remove, so normalizing the result again is a no-op.
    """
    normalized = text
    for _ in range(MAX_UNESCAPE_PASSES):
        unescaped = unescape_ical_text(normalized)
        if unescaped == normalized:
            break
        normalized = unescaped

    for needle, replacement in _LITERAL_REPLACEMENTS:
        normalized = normalized.replace(needle, replacement)

    # Every changing pass shortens the text, so this terminates
    residue = unescape_ical_text(normalized)
    while residue != normalized:
        normalized = residue
        residue = unescape_ical_text(normalized)

    for glyph in _RETURN_GLYPHS:
        normalized = normalized.replace(glyph, "\n")
    return normalized


@dataclass(frozen=True)
class RouteAddresses:
    """Origin and destination found in an event's notes."""

    from_address: str
    to_address: str


def extract_route(notes: Optional[str]) -> Optional[RouteAddresses]:
    """Find ``From:`` / ``To:`` addresses in free text.

    Markers match case-insensitively in any order. Each value runs until the
    next marker; a blank line ends it unless the next non-empty line contains a
    digit or a comma (an address continuing after a gap).

    Returns:
        RouteAddresses, or None unless both values are present
    """
    if not notes:
        return None

    text = normalize_ical_text(notes)
    markers = [(m.group(0).lower(), m.start(), m.end()) for m in _MARKER_RE.finditer(text)]

    values: dict[str, Optional[str]] = {}
    for index, (field, _, value_start) in enumerate(markers):
        if field in values:
            continue
        value_end = markers[index + 1][1] if index + 1 < len(markers) else len(text)
        values[field] = _extract_value(text[value_start:value_end])

    from_value = values.get("from:")
    to_value = values.get("to:")
    if not from_value or not to_value:
        return None
    return RouteAddresses(from_address=from_value, to_address=to_value)


def _extract_value(raw: str) -> Optional[str]:
    lines = raw.strip().splitlines()
    collected: list[str] = []
    index = 0
    while index < len(lines):
        stripped = lines[index].strip()
        if not stripped:
            following = next((line.strip() for line in lines[index + 1 :] if line.strip()), None)
            if following is not None and (
                any(ch.isdigit() for ch in following) or "," in following
            ):
                index += 1
                continue
            break
        collected.append(stripped)
        index += 1
    if not collected:
        return None
    return "\n".join(collected)


def format_address_lines(address: str) -> list[str]:
    """Split an address into display lines on commas and newlines."""
    normalized = address.replace("\r\n", "\n").replace("\r", "\n")
    for separator in _ADDRESS_SEPARATORS:
        normalized = normalized.replace(separator, ",")
    normalized = normalized.replace(",", "\n")
    return [line.strip() for line in normalized.split("\n") if line.strip()]
