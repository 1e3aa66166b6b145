from __future__ import annotations

import asyncio

import emailer.main as emailer_main
import pytest
from fastapi.testclient import TestClient
from pytest_bdd import given, scenario, then, when

pytestmark = pytest.mark.bdd


class FakeWorker:
    def __init__(self) -> None:
        self.jobs: list[emailer_main.EmailJob] = []

    async def run(self) -> None:
        await asyncio.Event().wait()

    async def enqueue(self, job: emailer_main.EmailJob) -> int:
        self.jobs.append(job)
        return len(self.jobs)


@scenario("features/emailer.feature", "Queue one delivery job per message")
def test_queue_one_delivery_job_per_message() -> None:
    pass


@pytest.fixture
def context() -> dict[str, object]:
    return {}


@given("two outbound messages")
def given_outbound_messages(context: dict[str, object], monkeypatch: pytest.MonkeyPatch) -> None:
    fake_worker = FakeWorker()
    monkeypatch.setattr(emailer_main, "worker", fake_worker)
    context["worker"] = fake_worker
    context["payload"] = {
        "messages": [
            {"to": "one@example.com", "subject": "New jobs", "body": "Backend Engineer"},
            {"to": "two@example.com", "subject": "New jobs", "body": "Platform Engineer"},
        ]
    }


@when("the send endpoint is called", target_fixture="response")
def when_send_is_called(context: dict[str, object]):
    with TestClient(emailer_main.app) as client:
        return client.post("/send", json=context["payload"])


@then("the send endpoint responds with queued status")
def then_send_endpoint_reports_success(response) -> None:
    assert response.status_code == 200
    assert response.json()["status"] == "queued"
    assert response.json()["queued_jobs"] == 2


@then("two delivery jobs are queued")
def then_two_delivery_jobs_are_queued(context: dict[str, object]) -> None:
    fake_worker = context["worker"]
    recipients = [job.to for job in fake_worker.jobs]
    assert recipients == ["one@example.com", "two@example.com"]
