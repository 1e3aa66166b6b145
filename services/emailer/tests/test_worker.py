from __future__ import annotations

import asyncio
import contextlib

import aiosmtplib
import pytest
from emailer.worker import DeliveryWorker, EmailJob, SmtpSettings

pytestmark = pytest.mark.unit


def _job(to: str = "one@example.com") -> EmailJob:
    return EmailJob(to=to, subject="New jobs", body="Hello", category="job_batch")


@pytest.mark.asyncio
async def test_enqueue_returns_incrementing_queue_size() -> None:
    worker = DeliveryWorker()

    size_1 = await worker.enqueue(_job("one@example.com"))
    size_2 = await worker.enqueue(_job("two@example.com"))

    assert size_1 == 1
    assert size_2 == 2


@pytest.mark.asyncio
async def test_run_logs_delivery_without_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    worker = DeliveryWorker()

    async def no_sleep(_: float) -> None:
        return None

    monkeypatch.setattr("emailer.worker.asyncio.sleep", no_sleep)
    task = asyncio.create_task(worker.run())

    await worker.enqueue(_job())
    await worker.enqueue(_job("two@example.com"))
    await asyncio.wait_for(worker.queue.join(), timeout=1.0)

    assert worker.queue.qsize() == 0
    assert worker.sent == 2
    assert worker.failed == 0
    assert worker.smtp_configured is False

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_smtp_failure_is_counted_and_worker_keeps_running(
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    worker = DeliveryWorker(smtp=SmtpSettings(host="smtp.invalid"))
    attempts: list[str] = []

    async def failing_send(smtp: SmtpSettings, job: EmailJob) -> None:
        attempts.append(job.to)
        if job.to == "bad@example.com":
            raise aiosmtplib.SMTPConnectError("connection refused")

    async def no_sleep(_: float) -> None:
        return None

    monkeypatch.setattr(worker, "_send_smtp", failing_send)
    monkeypatch.setattr("emailer.worker.asyncio.sleep", no_sleep)
    task = asyncio.create_task(worker.run())

    await worker.enqueue(_job("bad@example.com"))
    await worker.enqueue(_job("good@example.com"))
    await asyncio.wait_for(worker.queue.join(), timeout=1.0)

    assert attempts == ["bad@example.com", "good@example.com"]
    assert worker.failed == 1
    assert worker.sent == 1
    assert not task.done()

    task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await task


@pytest.mark.asyncio
async def test_deliver_sends_through_configured_smtp(monkeypatch: pytest.MonkeyPatch) -> None:
    calls: dict[str, object] = {}

    class StubSMTP:
        def __init__(self, **kwargs) -> None:
            calls["connect"] = kwargs

        async def __aenter__(self) -> StubSMTP:
            return self

        async def __aexit__(self, *_: object) -> None:
            return None

        async def login(self, username: str, password: str) -> None:
            calls["login"] = (username, password)

        async def send_message(self, message) -> None:
            calls["message"] = message

    monkeypatch.setattr("emailer.worker.aiosmtplib.SMTP", StubSMTP)
    settings = SmtpSettings(host="smtp.example.com", port=2525, username="mailer", password="secret", sender="jobs@example.com")
    worker = DeliveryWorker(smtp=settings)

    delivered = await worker.deliver(_job("casey@example.com"))

    assert delivered is True
    assert worker.sent == 1
    assert calls["connect"] == {"hostname": "smtp.example.com", "port": 2525, "start_tls": True, "timeout": 30}
    assert calls["login"] == ("mailer", "secret")
    assert calls["message"]["To"] == "casey@example.com"
    assert calls["message"]["From"] == "jobs@example.com"


def test_smtp_settings_from_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("SMTP_HOST", raising=False)
    assert SmtpSettings.from_env() is None

    monkeypatch.setenv("SMTP_HOST", "smtp.example.com")
    monkeypatch.setenv("SMTP_PORT", "2525")
    monkeypatch.setenv("SMTP_USE_TLS", "false")
    settings = SmtpSettings.from_env()

    assert settings is not None
    assert settings.host == "smtp.example.com"
    assert settings.port == 2525
    assert settings.use_tls is False
