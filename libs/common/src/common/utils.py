from __future__ import annotations

import math
import re
from datetime import UTC, datetime, timedelta

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
HTML_ESCAPES = {
    "&": "&amp;",
    "<": "&lt;",
    ">": "&gt;",
    '"': "&quot;",
    "'": "&#x27;",
    "/": "&#x2F;",
}
UNSAFE_CHARS = re.compile(r"[<>\"'&]")


def now_utc_iso() -> str:
    return datetime.now(UTC).isoformat()


def parse_iso_datetime(value: str | None) -> datetime | None:
    if not value:
        return None
    try:
        normalized = value.replace("Z", "+00:00")
        parsed = datetime.fromisoformat(normalized)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def start_of_utc_day(moment: datetime | None = None) -> datetime:
    current = moment or datetime.now(UTC)
    return current.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)


def utc_iso_days_ago(days: int, *, moment: datetime | None = None) -> str:
    current = moment or datetime.now(UTC)
    return (current - timedelta(days=days)).isoformat()


def escape_html(text: str) -> str:
    return "".join(HTML_ESCAPES.get(char, char) for char in text)


def strip_unsafe_chars(text: str) -> str:
    return UNSAFE_CHARS.sub("", text.strip())


def is_valid_email(value: str | None) -> bool:
    if not value:
        return False
    return EMAIL_PATTERN.match(value.strip()) is not None


def page_count(total: int, limit: int) -> int:
    if limit <= 0:
        return 0
    return math.ceil(total / limit)
