from __future__ import annotations

from datetime import UTC, datetime

import pytest
from common.utils import (
    escape_html,
    is_valid_email,
    now_utc_iso,
    page_count,
    parse_iso_datetime,
    start_of_utc_day,
    strip_unsafe_chars,
)

pytestmark = pytest.mark.unit


def test_now_utc_iso_returns_parseable_utc_timestamp() -> None:
    parsed = datetime.fromisoformat(now_utc_iso())
    assert parsed.tzinfo is not None
    assert parsed.utcoffset() is not None
    assert parsed.utcoffset().total_seconds() == 0


def test_parse_iso_datetime_accepts_zulu_and_naive_values() -> None:
    zulu = parse_iso_datetime("2026-03-01T10:15:00Z")
    naive = parse_iso_datetime("2026-03-01T10:15:00")

    assert zulu == datetime(2026, 3, 1, 10, 15, tzinfo=UTC)
    assert naive == zulu
    assert parse_iso_datetime("not-a-date") is None
    assert parse_iso_datetime(None) is None


def test_start_of_utc_day_truncates_time() -> None:
    moment = datetime(2026, 3, 1, 22, 45, 12, tzinfo=UTC)
    assert start_of_utc_day(moment) == datetime(2026, 3, 1, tzinfo=UTC)


def test_escape_html_escapes_markup_characters() -> None:
    assert escape_html("<b>\"hi\" & 'bye'</b>") == (
        "&lt;b&gt;&quot;hi&quot; &amp; &#x27;bye&#x27;&lt;&#x2F;b&gt;"
    )


def test_strip_unsafe_chars_trims_and_removes_markup() -> None:
    assert strip_unsafe_chars("  <Acme & Sons>  ") == "Acme  Sons"


@pytest.mark.parametrize(
    ("value", "expected"),
    [
        ("payouts@example.com", True),
        ("missing-at.example.com", False),
        ("spaces in@example.com", False),
        ("", False),
    ],
)
def test_is_valid_email(value: str, expected: bool) -> None:
    assert is_valid_email(value) is expected


def test_page_count_rounds_up() -> None:
    assert page_count(0, 10) == 0
    assert page_count(21, 10) == 3
    assert page_count(5, 0) == 0
