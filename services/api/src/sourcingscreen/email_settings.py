from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

from sourcingscreen.models import EMAIL_TYPE_JOB_BATCH, EmailNotificationRecord

JOB_NOTIFICATION_FREQUENCY = "job_notification_frequency"
END_OF_DAY_NOTIFICATIONS = "end_of_day_notifications"
END_OF_DAY_TIME = "end_of_day_time"
EMAIL_NOTIFICATIONS_ENABLED = "email_notifications_enabled"
RECENT_JOBS_AUTO_1D = "recent_jobs_auto_1d"
RECENT_JOBS_AUTO_3D = "recent_jobs_auto_3d"

EMAIL_SETTING_DEFAULTS: dict[str, Any] = {
    JOB_NOTIFICATION_FREQUENCY: 5,
    END_OF_DAY_NOTIFICATIONS: True,
    END_OF_DAY_TIME: "18:00",
    EMAIL_NOTIFICATIONS_ENABLED: True,
}
EMAIL_SETTING_DESCRIPTIONS = {
    JOB_NOTIFICATION_FREQUENCY: "Number of jobs posted before a batch email goes out to recruiters",
    END_OF_DAY_NOTIFICATIONS: "Send a summary email of all jobs posted today",
    END_OF_DAY_TIME: "Time of day (HH:MM) the end-of-day summary is sent",
    EMAIL_NOTIFICATIONS_ENABLED: "Master switch for recruiter job notification emails",
}
RECENT_JOBS_FLAGS = {1: RECENT_JOBS_AUTO_1D, 3: RECENT_JOBS_AUTO_3D}
TIME_OF_DAY_PATTERN = re.compile(r"^([01]?[0-9]|2[0-3]):[0-5][0-9]$")

MAX_EMAIL_RETRIES = 5
RETRY_DELAYS_MINUTES = (5, 15, 30, 60, 120)
RECENT_FAILURE_LIMIT = 10
MAX_ANALYTICS_DAYS = 365


def validate_email_setting(key: str, value: Any) -> str | None:
    if key not in EMAIL_SETTING_DEFAULTS:
        raise ValueError("Invalid setting key")
    if key == JOB_NOTIFICATION_FREQUENCY:
        if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 50:
            return "Frequency must be an integer between 1 and 50"
    elif key in (END_OF_DAY_NOTIFICATIONS, EMAIL_NOTIFICATIONS_ENABLED):
        if not isinstance(value, bool):
            return "Boolean value expected"
    elif key == END_OF_DAY_TIME:
        if not isinstance(value, str) or not TIME_OF_DAY_PATTERN.match(value):
            return "Time must be in HH:MM format"
    return None


def validate_email_settings(settings: dict[str, Any]) -> dict[str, str]:
    errors: dict[str, str] = {}
    for key, value in settings.items():
        try:
            error = validate_email_setting(key, value)
        except ValueError as exc:
            errors[key] = str(exc)
            continue
        if error:
            errors[key] = error
    return errors


def resolve_email_settings(stored: dict[str, Any]) -> dict[str, Any]:
    return {key: stored.get(key, default) for key, default in EMAIL_SETTING_DEFAULTS.items()}


def should_send_job_batch(
    settings: dict[str, Any],
    *,
    jobs_today: int,
    already_sent_for_count: bool,
) -> bool:
    if not settings.get(EMAIL_NOTIFICATIONS_ENABLED, True):
        return False
    frequency = int(settings.get(JOB_NOTIFICATION_FREQUENCY, 5)) or 5
    if jobs_today <= 0 or jobs_today % frequency != 0:
        return False
    return not already_sent_for_count


@dataclass
class EndOfDayDecision:
    send: bool
    message: str


def decide_end_of_day(
    settings: dict[str, Any],
    *,
    jobs_today: int,
    summary_sent_today: bool,
    batch_activity_today: bool,
) -> EndOfDayDecision:
    if not settings.get(END_OF_DAY_NOTIFICATIONS, True) or not settings.get(
        EMAIL_NOTIFICATIONS_ENABLED, True
    ):
        return EndOfDayDecision(False, "End-of-day notifications are disabled")
    if jobs_today == 0:
        return EndOfDayDecision(False, "No jobs posted today")
    if summary_sent_today:
        return EndOfDayDecision(False, "End-of-day summary already sent today")
    if batch_activity_today:
        return EndOfDayDecision(
            False,
            "Job batch emails already sent today, skipping end-of-day summary",
        )
    return EndOfDayDecision(True, "End-of-day summary sent")


def next_retry_at(retry_count: int, *, now: datetime) -> datetime:
    index = min(max(retry_count - 1, 0), len(RETRY_DELAYS_MINUTES) - 1)
    return now + timedelta(minutes=RETRY_DELAYS_MINUTES[index])


def analytics_window_start(days: int, *, now: datetime) -> datetime:
    start = now - timedelta(days=days)
    return start.replace(hour=0, minute=0, second=0, microsecond=0)


def _empty_bucket() -> dict[str, int]:
    return {"sent": 0, "failed": 0, "pending": 0, "recipients": 0}


def build_email_analytics(
    records: list[EmailNotificationRecord],
    *,
    start: datetime,
    end: datetime,
    days: int,
) -> dict[str, Any]:
    """Roll email notification records up by day and type.

    Job batch emails count against the sending limit; everything else is
    reported as end-of-day traffic.
    """
    daily: dict[str, dict[str, dict[str, int]]] = {}
    breakdown: dict[tuple[str, str], dict[str, Any]] = {}
    by_type: dict[str, dict[str, int]] = {}
    overall = {
        "total_emails": 0,
        "total_recipients": 0,
        "sent": 0,
        "failed": 0,
        "pending": 0,
        "usage_limit_emails": 0,
        "eod_emails": 0,
    }
    for record in records:
        day = record.created_at[:10]
        bucket_name = "usage_limit" if record.type == EMAIL_TYPE_JOB_BATCH else "eod"
        buckets = daily.setdefault(
            day,
            {"usage_limit": _empty_bucket(), "eod": _empty_bucket(), "total": _empty_bucket()},
        )
        for name in (bucket_name, "total"):
            buckets[name][record.status] += 1
            buckets[name]["recipients"] += record.recipient_count

        overall["total_emails"] += 1
        overall["total_recipients"] += record.recipient_count
        overall[record.status] += 1
        overall[f"{bucket_name}_emails"] += 1

        entry = breakdown.setdefault(
            (day, record.type),
            {"date": day, "type": record.type, "count": 0, "recipients": 0},
        )
        entry["count"] += 1
        entry["recipients"] += record.recipient_count

        counts = by_type.setdefault(record.type, {"total": 0, "sent": 0, "failed": 0, "pending": 0})
        counts["total"] += 1
        counts[record.status] += 1

    success_rates = [
        {
            "type": email_type,
            "total": counts["total"],
            "successful": counts["sent"],
            "failed": counts["failed"],
            "pending": counts["pending"],
            "success_rate": round(counts["sent"] / counts["total"] * 100, 2),
        }
        for email_type, counts in sorted(by_type.items())
    ]
    failures = [record for record in records if record.status == "failed"]
    failures.sort(key=lambda record: record.created_at, reverse=True)
    return {
        "daily_stats": [{"date": day, **daily[day]} for day in sorted(daily, reverse=True)],
        "overall_stats": overall,
        "email_type_breakdown": sorted(
            breakdown.values(),
            key=lambda entry: (entry["date"], entry["type"]),
            reverse=True,
        ),
        "success_rate_by_type": success_rates,
        "recent_failures": [
            {
                "notification_id": record.notification_id,
                "type": record.type,
                "error_message": record.error_message,
                "retry_count": record.retry_count,
                "recipient_count": record.recipient_count,
                "created_at": record.created_at,
            }
            for record in failures[:RECENT_FAILURE_LIMIT]
        ],
        "date_range": {"start": start.isoformat(), "end": end.isoformat(), "days": days},
    }
