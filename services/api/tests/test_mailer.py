from __future__ import annotations

from typing import Any

import httpx
import pytest
import sourcingscreen.mailer as mailer
from sourcingscreen.models import SupportTicket, UserRecord

pytestmark = pytest.mark.unit


class StubResponse:
    def __init__(self, status_code: int, payload: dict[str, Any]) -> None:
        self.status_code = status_code
        self._payload = payload

    def json(self) -> dict[str, Any]:
        return self._payload


class StubAsyncClient:
    def __init__(self, response: StubResponse, capture: dict[str, Any]) -> None:
        self.response = response
        self.capture = capture

    async def __aenter__(self) -> StubAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def request(self, method: str, url: str, json: dict[str, Any] | None = None) -> StubResponse:
        self.capture["method"] = method
        self.capture["url"] = url
        self.capture["json"] = json
        return self.response


class ErroringAsyncClient:
    async def __aenter__(self) -> ErroringAsyncClient:
        return self

    async def __aexit__(self, *_: object) -> bool:
        return False

    async def request(self, method: str, url: str, json: dict[str, Any] | None = None) -> StubResponse:
        del json
        raise httpx.ConnectError("connection refused", request=httpx.Request(method, url))


def _user(**overrides: Any) -> UserRecord:
    fields: dict[str, Any] = {
        "user_id": "user-1",
        "name": "Riley",
        "email": "riley@example.com",
        "role": "RECRUITER",
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    fields.update(overrides)
    return UserRecord(**fields)


def _ticket() -> SupportTicket:
    return SupportTicket(
        ticket_id="ticket-1",
        ticket_number="ST-2026-007",
        subject="Upload fails",
        message="Spinner never stops",
        category="Bug Report",
        priority="High",
        status="In Progress",
        submitted_by="user-1",
        created_at="2026-01-01T00:00:00+00:00",
        updated_at="2026-01-01T00:00:00+00:00",
    )


@pytest.mark.asyncio
async def test_send_posts_messages_to_emailer(monkeypatch: pytest.MonkeyPatch) -> None:
    capture: dict[str, Any] = {}
    response = StubResponse(200, {"status": "queued", "queued_jobs": 2})
    monkeypatch.setattr(
        mailer.httpx,
        "AsyncClient",
        lambda *_, **__: StubAsyncClient(response=response, capture=capture),
    )
    dispatcher = mailer.EmailDispatcher("http://emailer:8002/")

    queued = await dispatcher.send(
        [
            mailer.OutboundEmail(to="a@example.com", subject="Hi", body="Body"),
            mailer.OutboundEmail(to="b@example.com", subject="Hi", body="Body", category="job_batch"),
        ]
    )

    assert queued == 2
    assert capture["method"] == "POST"
    assert capture["url"] == "http://emailer:8002/send"
    assert capture["json"]["messages"][1] == {
        "to": "b@example.com",
        "subject": "Hi",
        "body": "Body",
        "category": "job_batch",
    }


@pytest.mark.asyncio
async def test_send_skips_empty_batches(monkeypatch: pytest.MonkeyPatch) -> None:
    capture: dict[str, Any] = {}
    monkeypatch.setattr(
        mailer.httpx,
        "AsyncClient",
        lambda *_, **__: StubAsyncClient(response=StubResponse(200, {}), capture=capture),
    )

    assert await mailer.EmailDispatcher("http://emailer").send([]) == 0
    assert capture == {}


@pytest.mark.asyncio
async def test_upstream_errors_raise_dispatch_error(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(
        mailer.httpx,
        "AsyncClient",
        lambda *_, **__: StubAsyncClient(response=StubResponse(503, {}), capture={}),
    )
    dispatcher = mailer.EmailDispatcher("http://emailer")

    with pytest.raises(mailer.EmailDispatchError, match="returned 503"):
        await dispatcher.status()

    monkeypatch.setattr(mailer.httpx, "AsyncClient", lambda *_, **__: ErroringAsyncClient())
    with pytest.raises(mailer.EmailDispatchError, match="Emailer service unavailable"):
        await dispatcher.send([mailer.OutboundEmail(to="a@example.com", subject="s", body="b")])


def test_ticket_emails_carry_ticket_context() -> None:
    ticket = _ticket()
    submitter = _user()

    alert = mailer.compose_ticket_alert(ticket, submitter, "support@example.com")
    reply = mailer.compose_ticket_reply(ticket, submitter, "Fixed in the latest release.")

    assert alert.to == "support@example.com"
    assert alert.subject == "[High] New support ticket ST-2026-007"
    assert "From: Riley <riley@example.com> (RECRUITER)" in alert.body
    assert reply.to == "riley@example.com"
    assert reply.subject == "Re: Upload fails [ST-2026-007]"
    assert "Current status: In Progress" in reply.body
