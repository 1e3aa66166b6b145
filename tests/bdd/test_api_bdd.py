from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from pytest_bdd import given, parsers, scenario, then, when
from sourcingscreen.mailer import OutboundEmail
from sourcingscreen.main import create_app

pytestmark = pytest.mark.bdd

ADMIN = {"x-api-key": "admin-key"}


class RecordingDispatcher:
    def __init__(self) -> None:
        self.messages: list[OutboundEmail] = []

    async def send(self, messages: list[OutboundEmail]) -> int:
        self.messages.extend(messages)
        return len(messages)

    async def status(self) -> dict[str, Any]:
        return {"queued": 0, "sent": len(self.messages), "failed": 0, "smtp_configured": False}


@scenario("features/jobs.feature", "A blocked recruiter cannot see a job")
def test_blocked_recruiter_cannot_see_job() -> None:
    pass


@scenario("features/support.feature", "Staff reply moves an open ticket into progress")
def test_staff_reply_moves_ticket_into_progress() -> None:
    pass


@pytest.fixture
def context() -> dict[str, Any]:
    return {"dispatcher": RecordingDispatcher()}


@pytest.fixture
def client(tmp_path: Path, context: dict[str, Any]):
    app = create_app(
        database_path=str(tmp_path / "bdd.sqlite3"),
        api_key="admin-key",
        email_dispatcher=context["dispatcher"],
    )
    with TestClient(app) as test_client:
        yield test_client


def _user(client: TestClient, role: str, email: str, **fields: Any) -> tuple[dict, dict[str, str]]:
    payload = {"name": email.split("@")[0].title(), "email": email, "phone": "+15550009999", "role": role}
    payload.update(fields)
    user = client.post("/admin/users", headers=ADMIN, json=payload).json()
    token = client.post("/auth/tokens", headers=ADMIN, json={"user_id": user["user_id"], "name": role.lower()})
    return user, {"x-api-key": token.json()["token"]}


@given("a company job and two recruiters")
def given_company_job(client: TestClient, context: dict[str, Any]) -> None:
    _, company_headers = _user(client, "COMPANY", "company@example.com", company_name="Acme")
    context["first"] = _user(client, "RECRUITER", "first@example.com")
    context["second"] = _user(client, "RECRUITER", "second@example.com")
    context["job"] = client.post(
        "/jobs",
        headers=company_headers,
        json={
            "title": "Backend Engineer",
            "country": "USA",
            "location": "Remote",
            "salary": {"min": 100000, "max": 150000},
            "commission": {"type": "percentage", "original_percentage": 20},
            "description": "APIs",
        },
    ).json()


@when("an admin blocks the first recruiter from the job")
def when_admin_blocks_recruiter(client: TestClient, context: dict[str, Any]) -> None:
    first_user, _ = context["first"]
    response = client.put(
        f"/jobs/{context['job']['job_id']}/access",
        headers=ADMIN,
        json={"visibility": "ALL", "blocked_recruiters": [first_user["user_id"]]},
    )
    assert response.status_code == 200


@then("the first recruiter does not see the job")
def then_first_recruiter_is_blocked(client: TestClient, context: dict[str, Any]) -> None:
    _, headers = context["first"]
    assert client.get("/jobs", headers=headers).json() == []
    assert client.get(f"/jobs/{context['job']['job_id']}", headers=headers).status_code == 403


@then("the second recruiter sees the job with the recruiter commission")
def then_second_recruiter_sees_job(client: TestClient, context: dict[str, Any]) -> None:
    _, headers = context["second"]
    jobs = client.get("/jobs", headers=headers).json()
    assert [job["job_id"] for job in jobs] == [context["job"]["job_id"]]
    assert jobs[0]["commission"]["recruiter_percentage"] == 10
    assert jobs[0]["commission"]["original_percentage"] == 0
    assert jobs[0]["blocked_recruiters"] == []


@given("a recruiter with an open support ticket")
def given_open_ticket(client: TestClient, context: dict[str, Any]) -> None:
    context["recruiter"] = _user(client, "RECRUITER", "riley@example.com")
    _, headers = context["recruiter"]
    context["ticket"] = client.post(
        "/support/tickets",
        headers=headers,
        json={"subject": "Payout missing", "message": "My March payout has not arrived."},
    ).json()["ticket"]


@when("an internal user replies to the ticket")
def when_internal_user_replies(client: TestClient, context: dict[str, Any]) -> None:
    _, headers = _user(client, "INTERNAL", "ops@example.com")
    response = client.post(
        f"/support/tickets/{context['ticket']['ticket_id']}/responses",
        headers=headers,
        json={"message": "We are looking into it."},
    )
    assert response.status_code == 201


@then(parsers.parse('the ticket status is "{status}"'))
def then_ticket_status_is(client: TestClient, context: dict[str, Any], status: str) -> None:
    _, headers = context["recruiter"]
    ticket = client.get(f"/support/tickets/{context['ticket']['ticket_id']}", headers=headers).json()["ticket"]
    assert ticket["status"] == status


@then("the recruiter receives the reply by email")
def then_recruiter_receives_reply(context: dict[str, Any]) -> None:
    recruiter, _ = context["recruiter"]
    reply = context["dispatcher"].messages[-1]
    assert reply.to == recruiter["email"]
    assert "We are looking into it." in reply.body
