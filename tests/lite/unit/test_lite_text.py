"""
Unit tests for calfeed_lite.lite_text

Covers:
- single-pass backslash unescaping
- normalization of double-escaped text and its idempotence
- From:/To: route extraction and address line splitting
"""

import pytest

from calfeed_lite.lite_text import (
    RouteAddresses,
    extract_route,
    format_address_lines,
    normalize_ical_text,
    unescape_ical_text,
)

pytestmark = [pytest.mark.unit, pytest.mark.fast]


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        (r"one\ntwo", "one\ntwo"),
        (r"one\Ntwo", "one\ntwo"),
        (r"Room 1\, Building A", "Room 1, Building A"),
        (r"a\;b", "a;b"),
        (r"C:\\temp", "C:\\temp"),
        (r"\x", "x"),
    ],
)
def test_unescape_ical_text_when_escape_present_then_mapped(raw: str, expected: str) -> None:
    assert unescape_ical_text(raw) == expected


def test_unescape_ical_text_when_trailing_backslash_then_kept() -> None:
    assert unescape_ical_text("abc\\") == "abc\\"


def test_normalize_ical_text_when_double_escaped_then_fully_unescaped() -> None:
    # Exporters that escape twice produce "\\n" for a newline
    assert normalize_ical_text(r"Line\\nTwo") == "Line\nTwo"
    assert normalize_ical_text(r"Oak Ave\\, Springfield") == "Oak Ave, Springfield"


def test_normalize_ical_text_when_escaped_three_deep_then_no_backslash_left() -> None:
    assert normalize_ical_text(r"\\\\\\\n") == "\n"


def test_normalize_ical_text_when_return_glyphs_then_newlines() -> None:
    assert normalize_ical_text("Line↩Next↵Last⏎") == "Line\nNext\nLast\n"


def test_normalize_ical_text_when_plain_then_unchanged() -> None:
    assert normalize_ical_text("Nothing to see here") == "Nothing to see here"


@pytest.mark.parametrize(
    "text",
    [
        r"a\,b\;c",
        r"x\\ny",
        r"multi\nline\Ntext",
        r"path\\to\\file",
        r"\\\\\\\n",
        r"deep\\\\\\\\,escape",
        "trailing\\",
        "plain text",
        "",
    ],
)
def test_normalize_ical_text_is_idempotent(text: str) -> None:
    once = normalize_ical_text(text)
    assert normalize_ical_text(once) == once


def test_extract_route_when_both_markers_then_addresses_returned() -> None:
    notes = "Pickup\nFrom: 1 Main St\nSpringfield\n\nTo: 22 Oak Ave, Shelbyville"

    route = extract_route(notes)

    assert route == RouteAddresses(
        from_address="1 Main St\nSpringfield", to_address="22 Oak Ave, Shelbyville"
    )


def test_extract_route_when_markers_reversed_and_mixed_case_then_found() -> None:
    route = extract_route("TO: Airport\nfrom: Home")

    assert route is not None
    assert route.from_address == "Home"
    assert route.to_address == "Airport"


def test_extract_route_when_blank_line_followed_by_prose_then_value_ends() -> None:
    route = extract_route("From: Home\n\nSee you there\nTo: Work")

    assert route is not None
    assert route.from_address == "Home"


def test_extract_route_when_blank_line_followed_by_address_then_value_continues() -> None:
    route = extract_route("From: 10 High St\n\nApt 4\nTo: Work")

    assert route is not None
    assert route.from_address == "10 High St\nApt 4"


def test_extract_route_when_escaped_notes_then_normalized_first() -> None:
    route = extract_route(r"From: 1 Main St\nTo: 2 Side Rd")

    assert route == RouteAddresses(from_address="1 Main St", to_address="2 Side Rd")


@pytest.mark.parametrize("notes", [None, "", "From: Home", "To: Work", "No route here"])
def test_extract_route_when_incomplete_then_none(notes) -> None:
    assert extract_route(notes) is None


def test_format_address_lines_splits_on_commas_and_newlines() -> None:
    lines = format_address_lines("22 Oak Ave, Shelbyville\r\nUSA，Earth")

    assert lines == ["22 Oak Ave", "Shelbyville", "USA", "Earth"]
