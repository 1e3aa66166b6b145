from __future__ import annotations

import itertools
from pathlib import Path
from typing import Any

import pytest
from fastapi.testclient import TestClient
from sourcingscreen.mailer import EmailDispatchError, OutboundEmail
from sourcingscreen.main import create_app

ADMIN_HEADERS = {"x-api-key": "admin-key"}


class FakeDispatcher:
    def __init__(self) -> None:
        self.batches: list[list[OutboundEmail]] = []
        self.fail = False

    @property
    def messages(self) -> list[OutboundEmail]:
        return [message for batch in self.batches for message in batch]

    async def send(self, messages: list[OutboundEmail]) -> int:
        if self.fail:
            raise EmailDispatchError("Emailer service unavailable: connection refused")
        self.batches.append(list(messages))
        return len(messages)

    async def status(self) -> dict[str, Any]:
        if self.fail:
            raise EmailDispatchError("Emailer service unavailable: connection refused")
        return {"queued": 0, "sent": len(self.messages), "failed": 0, "smtp_configured": False}


@pytest.fixture
def dispatcher() -> FakeDispatcher:
    return FakeDispatcher()


@pytest.fixture
def client(tmp_path: Path, dispatcher: FakeDispatcher):
    db_path = tmp_path / "sourcingscreen.sqlite3"
    app = create_app(
        database_path=str(db_path),
        api_key="admin-key",
        email_dispatcher=dispatcher,
        cron_secret="cron-secret",
        app_base_url="https://app.example.com",
    )
    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def make_user(client: TestClient):
    counter = itertools.count(1)

    def _make_user(role: str, **fields: Any) -> tuple[dict[str, Any], dict[str, str]]:
        index = next(counter)
        payload = {
            "name": f"{role.title()} User {index}",
            "email": f"{role.lower()}{index}@example.com",
            "phone": f"+1555000{index:04d}",
            "role": role,
        }
        if role == "COMPANY":
            payload["company_name"] = f"Acme {index}"
        payload.update(fields)
        created = client.post("/admin/users", headers=ADMIN_HEADERS, json=payload)
        assert created.status_code == 201, created.text
        user = created.json()

        token = client.post(
            "/auth/tokens",
            headers=ADMIN_HEADERS,
            json={"user_id": user["user_id"], "name": f"{role.lower()}-{index}"},
        )
        assert token.status_code == 200, token.text
        return user, {"x-api-key": token.json()["token"]}

    return _make_user


def job_payload(**overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "title": "Senior Backend Engineer",
        "country": "USA",
        "location": "Remote",
        "salary": {"min": 100000, "max": 150000, "currency": "USD"},
        "commission": {"type": "percentage", "original_percentage": 20},
        "description": "Build Python services.",
    }
    payload.update(overrides)
    return payload


def resume_payload(job_id: str, **overrides: Any) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "job_id": job_id,
        "candidate_name": "Jane Candidate",
        "email": "jane@example.com",
        "phone": "+15550101010",
        "country": "USA",
        "location": "Austin",
        "current_company": "Initech",
        "current_designation": "Engineer",
        "total_experience": "6 years",
        "relevant_experience": "4 years",
        "current_ctc": "120000",
        "expected_ctc": "140000",
        "notice_period": "30 days",
        "qualification": "BSc Computer Science",
        "resume_file": "resumes/jane.pdf",
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def payloads():
    class Payloads:
        job = staticmethod(job_payload)
        resume = staticmethod(resume_payload)

    return Payloads
