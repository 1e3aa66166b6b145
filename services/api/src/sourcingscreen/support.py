from __future__ import annotations

import re
from datetime import UTC, datetime, timedelta
from typing import Any

from common.utils import escape_html, is_valid_email, parse_iso_datetime, start_of_utc_day

from sourcingscreen.models import SupportTicket

TICKET_CATEGORIES = (
    "Technical Issue",
    "Account Issue",
    "Feature Request",
    "Bug Report",
    "General Inquiry",
)
TICKET_PRIORITIES = ("Low", "Medium", "High", "Critical")
STATUS_OPEN = "Open"
STATUS_IN_PROGRESS = "In Progress"
STATUS_RESOLVED = "Resolved"
STATUS_CLOSED = "Closed"
TICKET_STATUSES = (STATUS_OPEN, STATUS_IN_PROGRESS, STATUS_RESOLVED, STATUS_CLOSED)

MAX_SUBJECT_LENGTH = 200
MAX_MESSAGE_LENGTH = 10000
MAX_RESPONSE_LENGTH = 5000

TICKET_RATE_LIMIT = 5
TICKET_RATE_WINDOW = timedelta(minutes=15)
RESPONSE_RATE_LIMIT = 10
RESPONSE_RATE_WINDOW = timedelta(hours=1)

OVERDUE_THRESHOLD_DAYS = {"Critical": 1, "High": 3, "Medium": 7, "Low": 14}

SUPPORT_EMAIL = "support_email"
SUPPORT_AUTO_RESPONSE = "support_auto_response"
SUPPORT_EMAIL_TEMPLATE = "support_email_template"
SUPPORT_NOTIFICATION_ENABLED = "support_notification_enabled"
DEFAULT_SUPPORT_TEMPLATE = (
    "Hello {{userName}},\n\n"
    "Thank you for contacting SourcingScreen support. Your ticket {{ticketNumber}} "
    "has been received.\n\n"
    "Subject: {{subject}}\n"
    "Priority: {{priority}}\n"
    "Category: {{category}}\n\n"
    "Our team will get back to you as soon as possible.\n\n"
    "SourcingScreen Support"
)
SUPPORT_SETTING_DEFAULTS: dict[str, Any] = {
    SUPPORT_EMAIL: "support@sourcingscreen.com",
    SUPPORT_AUTO_RESPONSE: True,
    SUPPORT_EMAIL_TEMPLATE: DEFAULT_SUPPORT_TEMPLATE,
    SUPPORT_NOTIFICATION_ENABLED: True,
}
SUPPORT_SETTING_DESCRIPTIONS = {
    SUPPORT_EMAIL: "Address that receives new support ticket notifications",
    SUPPORT_AUTO_RESPONSE: "Send an acknowledgement email to the ticket submitter",
    SUPPORT_EMAIL_TEMPLATE: "Body of the acknowledgement email",
    SUPPORT_NOTIFICATION_ENABLED: "Notify the support address when a ticket is created",
}
PLACEHOLDER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")


def format_ticket_number(year: int, last_sequence: int) -> str:
    return f"ST-{year}-{last_sequence + 1:03d}"


def validate_ticket_fields(
    *,
    subject: str,
    message: str,
    category: str,
    priority: str,
) -> tuple[str, str]:
    cleaned_subject = subject.strip()
    cleaned_message = message.strip()
    if not cleaned_subject:
        raise ValueError("Subject is required")
    if len(cleaned_subject) > MAX_SUBJECT_LENGTH:
        raise ValueError(f"Subject must be less than {MAX_SUBJECT_LENGTH} characters")
    if not cleaned_message:
        raise ValueError("Message is required")
    if len(cleaned_message) > MAX_MESSAGE_LENGTH:
        raise ValueError(f"Message must be less than {MAX_MESSAGE_LENGTH} characters")
    if category not in TICKET_CATEGORIES:
        raise ValueError("Invalid category")
    if priority not in TICKET_PRIORITIES:
        raise ValueError("Invalid priority")
    return escape_html(cleaned_subject), escape_html(cleaned_message)


def validate_response_message(message: str) -> str:
    cleaned = message.strip()
    if not cleaned:
        raise ValueError("Message is required")
    if len(cleaned) > MAX_RESPONSE_LENGTH:
        raise ValueError(f"Message must be less than {MAX_RESPONSE_LENGTH} characters")
    return escape_html(cleaned)


def is_ticket_overdue(ticket: SupportTicket, *, now: datetime | None = None) -> bool:
    if ticket.status in (STATUS_RESOLVED, STATUS_CLOSED):
        return False
    created = parse_iso_datetime(ticket.created_at)
    if created is None:
        return False
    age = (now or datetime.now(UTC)) - created
    threshold = OVERDUE_THRESHOLD_DAYS.get(ticket.priority, OVERDUE_THRESHOLD_DAYS["Low"])
    return age > timedelta(days=threshold)


def retry_after_seconds(oldest_in_window: str | None, window: timedelta) -> int:
    started = parse_iso_datetime(oldest_in_window)
    if started is None:
        return int(window.total_seconds())
    remaining = started + window - datetime.now(UTC)
    return max(int(remaining.total_seconds()), 1)


def compute_ticket_stats(
    tickets: list[SupportTicket],
    first_response_at: dict[str, str],
    *,
    now: datetime | None = None,
) -> dict[str, Any]:
    current = now or datetime.now(UTC)
    today = start_of_utc_day(current)
    week_start = today - timedelta(days=today.weekday())
    month_start = today.replace(day=1)

    by_status = {status: 0 for status in TICKET_STATUSES}
    by_priority = {priority: 0 for priority in TICKET_PRIORITIES}
    by_category = {category: 0 for category in TICKET_CATEGORIES}
    time_based = {"today": 0, "this_week": 0, "this_month": 0}
    response_hours: list[float] = []
    overdue = 0

    for ticket in tickets:
        by_status[ticket.status] = by_status.get(ticket.status, 0) + 1
        by_priority[ticket.priority] = by_priority.get(ticket.priority, 0) + 1
        by_category[ticket.category] = by_category.get(ticket.category, 0) + 1
        if is_ticket_overdue(ticket, now=current):
            overdue += 1
        created = parse_iso_datetime(ticket.created_at)
        if created is None:
            continue
        if created >= today:
            time_based["today"] += 1
        if created >= week_start:
            time_based["this_week"] += 1
        if created >= month_start:
            time_based["this_month"] += 1
        responded = parse_iso_datetime(first_response_at.get(ticket.ticket_id))
        if responded is not None:
            response_hours.append((responded - created).total_seconds() / 3600)

    total = len(tickets)
    resolved = by_status[STATUS_RESOLVED]
    closed = by_status[STATUS_CLOSED]
    resolution_rate = round((resolved + closed) / total * 100, 2) if total else 0.0
    avg_response = round(sum(response_hours) / len(response_hours), 2) if response_hours else 0.0
    return {
        "total": total,
        "open": by_status[STATUS_OPEN],
        "in_progress": by_status[STATUS_IN_PROGRESS],
        "resolved": resolved,
        "closed": closed,
        "overdue": overdue,
        "by_priority": by_priority,
        "by_category": by_category,
        "resolution_rate": resolution_rate,
        "time_based_counts": time_based,
        "performance": {
            "avg_response_time_hours": avg_response,
            "total_resolved": resolved + closed,
        },
    }


def resolve_support_settings(stored: dict[str, Any]) -> dict[str, Any]:
    return {key: stored.get(key, default) for key, default in SUPPORT_SETTING_DEFAULTS.items()}


def validate_support_settings(updates: dict[str, Any]) -> None:
    if SUPPORT_EMAIL in updates and not is_valid_email(updates[SUPPORT_EMAIL]):
        raise ValueError("Invalid support email address")
    template = updates.get(SUPPORT_EMAIL_TEMPLATE)
    if template is not None and not template.strip():
        raise ValueError("Email template cannot be empty")


def render_support_template(template: str, values: dict[str, str]) -> str:
    return PLACEHOLDER_PATTERN.sub(lambda match: values.get(match.group(1), match.group(0)), template)
