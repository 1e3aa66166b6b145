from __future__ import annotations

import asyncio

import emailer.main as emailer_main
import pytest
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration


class FakeWorker:
    def __init__(self) -> None:
        self.jobs: list[emailer_main.EmailJob] = []
        self.queue: asyncio.Queue = asyncio.Queue()
        self.sent = 3
        self.failed = 1
        self.smtp_configured = False

    async def run(self) -> None:
        await asyncio.Event().wait()

    async def enqueue(self, job: emailer_main.EmailJob) -> int:
        self.jobs.append(job)
        return len(self.jobs)


def test_health() -> None:
    with TestClient(emailer_main.app) as client:
        response = client.get("/health")

    assert response.status_code == 200
    assert response.json() == {"status": "ok", "service": "emailer"}


def test_send_queues_one_job_per_message(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_worker = FakeWorker()
    monkeypatch.setattr(emailer_main, "worker", fake_worker)

    with TestClient(emailer_main.app) as client:
        response = client.post(
            "/send",
            json={
                "messages": [
                    {
                        "to": "one@example.com",
                        "subject": "5 new jobs on SourcingScreen",
                        "body": "Hello",
                        "category": "job_batch",
                    },
                    {"to": "two@example.com", "subject": "Ticket update", "body": "Hi"},
                ]
            },
        )

    body = response.json()
    assert response.status_code == 200
    assert body["status"] == "queued"
    assert body["queued_jobs"] == 2
    assert "scheduled_at" in body
    assert [job.to for job in fake_worker.jobs] == ["one@example.com", "two@example.com"]
    assert [job.category for job in fake_worker.jobs] == ["job_batch", "general"]


def test_send_rejects_invalid_recipient(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_worker = FakeWorker()
    monkeypatch.setattr(emailer_main, "worker", fake_worker)

    with TestClient(emailer_main.app) as client:
        response = client.post(
            "/send",
            json={"messages": [{"to": "not-an-email", "subject": "Hi", "body": "x"}]},
        )

    assert response.status_code == 422
    assert fake_worker.jobs == []


def test_status_reports_worker_counters(monkeypatch: pytest.MonkeyPatch) -> None:
    fake_worker = FakeWorker()
    monkeypatch.setattr(emailer_main, "worker", fake_worker)

    with TestClient(emailer_main.app) as client:
        response = client.get("/status")

    assert response.status_code == 200
    assert response.json() == {
        "queued": 0,
        "sent": 3,
        "failed": 1,
        "smtp_configured": False,
    }
