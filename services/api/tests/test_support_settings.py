from __future__ import annotations

from datetime import UTC, datetime, timedelta

import pytest
from fastapi.testclient import TestClient
from sourcingscreen.models import SupportTicket
from sourcingscreen.support import (
    DEFAULT_SUPPORT_TEMPLATE,
    SUPPORT_SETTING_DESCRIPTIONS,
    compute_ticket_stats,
    format_ticket_number,
    is_ticket_overdue,
    render_support_template,
    validate_support_settings,
    validate_ticket_fields,
)

ADMIN = {"x-api-key": "admin-key"}
NOW = datetime(2026, 3, 18, 12, 0, tzinfo=UTC)


def _ticket(ticket_id: str, *, priority: str = "Medium", status: str = "Open", age: timedelta) -> SupportTicket:
    created = (NOW - age).isoformat()
    return SupportTicket(
        ticket_id=ticket_id,
        ticket_number=f"ST-2026-{ticket_id}",
        subject="Subject",
        message="Message",
        category="General Inquiry",
        priority=priority,
        status=status,
        submitted_by="user-1",
        created_at=created,
        updated_at=created,
    )


@pytest.mark.unit
def test_ticket_numbers_are_zero_padded() -> None:
    assert format_ticket_number(2026, 0) == "ST-2026-001"
    assert format_ticket_number(2026, 41) == "ST-2026-042"
    assert format_ticket_number(2027, 999) == "ST-2027-1000"


@pytest.mark.unit
def test_ticket_fields_are_trimmed_and_escaped() -> None:
    subject, message = validate_ticket_fields(
        subject="  Login & SSO ",
        message="<script>x</script>",
        category="Account Issue",
        priority="Low",
    )

    assert subject == "Login &amp; SSO"
    assert message == "&lt;script&gt;x&lt;&#x2F;script&gt;"
    with pytest.raises(ValueError, match="Message must be less than 10000 characters"):
        validate_ticket_fields(subject="s", message="m" * 10001, category="Bug Report", priority="Low")


@pytest.mark.unit
def test_overdue_thresholds_follow_priority() -> None:
    assert is_ticket_overdue(_ticket("1", priority="Critical", age=timedelta(days=2)), now=NOW)
    assert not is_ticket_overdue(_ticket("2", priority="High", age=timedelta(days=2)), now=NOW)
    assert is_ticket_overdue(_ticket("3", priority="Medium", age=timedelta(days=8)), now=NOW)
    assert not is_ticket_overdue(_ticket("4", priority="Low", age=timedelta(days=13)), now=NOW)
    assert not is_ticket_overdue(
        _ticket("5", priority="Critical", status="Resolved", age=timedelta(days=30)),
        now=NOW,
    )


@pytest.mark.unit
def test_stats_summarise_tickets() -> None:
    tickets = [
        _ticket("1", priority="Critical", age=timedelta(days=3)),
        _ticket("2", status="Resolved", age=timedelta(hours=5)),
        _ticket("3", status="In Progress", age=timedelta(days=40)),
        _ticket("4", status="Closed", age=timedelta(hours=1)),
    ]
    first_responses = {"2": (NOW - timedelta(hours=3)).isoformat()}

    stats = compute_ticket_stats(tickets, first_responses, now=NOW)

    assert stats["total"] == 4
    assert stats["open"] == 1
    assert stats["in_progress"] == 1
    assert stats["resolved"] == 1
    assert stats["closed"] == 1
    assert stats["overdue"] == 2
    assert stats["resolution_rate"] == 50.0
    assert stats["time_based_counts"] == {"today": 2, "this_week": 2, "this_month": 3}
    assert stats["performance"] == {"avg_response_time_hours": 2.0, "total_resolved": 2}
    assert compute_ticket_stats([], {}, now=NOW)["resolution_rate"] == 0.0


@pytest.mark.unit
def test_template_placeholders() -> None:
    rendered = render_support_template(
        "Hi {{userName}}, ticket {{ ticketNumber }} {{unknown}}",
        {"userName": "Sam", "ticketNumber": "ST-2026-001"},
    )

    assert rendered == "Hi Sam, ticket ST-2026-001 {{unknown}}"


@pytest.mark.unit
def test_support_settings_validation() -> None:
    validate_support_settings({"support_email": "help@example.com"})
    with pytest.raises(ValueError, match="Invalid support email address"):
        validate_support_settings({"support_email": "help"})
    with pytest.raises(ValueError, match="Email template cannot be empty"):
        validate_support_settings({"support_email_template": "  "})


@pytest.mark.integration
def test_support_settings_endpoints(client: TestClient, make_user, dispatcher) -> None:
    _, internal_headers = make_user("INTERNAL")

    defaults = client.get("/admin/support/settings", headers=ADMIN)
    assert defaults.status_code == 200
    assert defaults.json() == {
        "support_email": "support@sourcingscreen.com",
        "support_auto_response": True,
        "support_email_template": DEFAULT_SUPPORT_TEMPLATE,
        "support_notification_enabled": True,
    }
    assert client.get("/admin/support/settings", headers=internal_headers).status_code == 403

    updated = client.put(
        "/admin/support/settings",
        headers=ADMIN,
        json={"support_email": " help@example.com ", "support_email_template": "Ticket {{ticketNumber}}"},
    )
    assert updated.status_code == 200
    assert updated.json()["settings"]["support_email"] == "help@example.com"
    stored = client.get("/admin/settings", headers=ADMIN).json()["settings"]
    assert stored["support_email"]["description"] == SUPPORT_SETTING_DESCRIPTIONS["support_email"]

    invalid = client.put("/admin/support/settings", headers=ADMIN, json={"support_email": "nope"})
    assert invalid.status_code == 400

    tested = client.post("/admin/support/settings/test-email", headers=ADMIN)
    assert tested.status_code == 200
    assert tested.json()["success"] is True
    sent = dispatcher.messages[-1]
    assert sent.to == "help@example.com"
    assert sent.body.startswith("Ticket ST-")

    dispatcher.fail = True
    assert client.post("/admin/support/settings/test-email", headers=ADMIN).status_code == 502


@pytest.mark.integration
def test_disabled_support_emails_are_not_sent(client: TestClient, make_user, dispatcher) -> None:
    _, headers = make_user("RECRUITER")
    client.put(
        "/admin/support/settings",
        headers=ADMIN,
        json={"support_auto_response": False, "support_notification_enabled": False},
    )

    created = client.post(
        "/support/tickets",
        headers=headers,
        json={"subject": "Hello", "message": "World"},
    )

    assert created.status_code == 201
    assert created.json()["ticket"]["category"] == "General Inquiry"
    assert dispatcher.batches == []
