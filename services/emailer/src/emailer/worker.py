from __future__ import annotations

import asyncio
import json
import logging
import os
from dataclasses import dataclass
from email.message import EmailMessage

import aiosmtplib
from common.utils import now_utc_iso

LOGGER = logging.getLogger("sourcingscreen.emailer")


@dataclass
class EmailJob:
    to: str
    subject: str
    body: str
    category: str = "general"


@dataclass
class SmtpSettings:
    host: str
    port: int = 587
    username: str | None = None
    password: str | None = None
    sender: str = "no-reply@sourcingscreen.com"
    use_tls: bool = True

    @classmethod
    def from_env(cls) -> SmtpSettings | None:
        host = os.getenv("SMTP_HOST", "").strip()
        if not host:
            return None
        return cls(
            host=host,
            port=int(os.getenv("SMTP_PORT", "587")),
            username=os.getenv("SMTP_USERNAME") or None,
            password=os.getenv("SMTP_PASSWORD") or None,
            sender=os.getenv("SMTP_FROM", "no-reply@sourcingscreen.com"),
            use_tls=os.getenv("SMTP_USE_TLS", "true").lower() not in ("0", "false", "no"),
        )


class DeliveryWorker:
    """Drains queued emails, one at a time, in the background."""

    def __init__(self, smtp: SmtpSettings | None = None) -> None:
        self.queue: asyncio.Queue[EmailJob] = asyncio.Queue()
        self.smtp = smtp
        self.sent = 0
        self.failed = 0

    @property
    def smtp_configured(self) -> bool:
        return self.smtp is not None

    async def enqueue(self, job: EmailJob) -> int:
        await self.queue.put(job)
        return self.queue.qsize()

    async def _send_smtp(self, smtp: SmtpSettings, job: EmailJob) -> None:
        message = EmailMessage()
        message["From"] = smtp.sender
        message["To"] = job.to
        message["Subject"] = job.subject
        message.set_content(job.body)
        async with aiosmtplib.SMTP(
            hostname=smtp.host,
            port=smtp.port,
            start_tls=smtp.use_tls,
            timeout=30,
        ) as client:
            if smtp.username and smtp.password:
                await client.login(smtp.username, smtp.password)
            await client.send_message(message)

    async def deliver(self, job: EmailJob) -> bool:
        try:
            if self.smtp is not None:
                await self._send_smtp(self.smtp, job)
            else:
                LOGGER.info(
                    json.dumps(
                        {
                            "event": "email_logged",
                            "to": job.to,
                            "subject": job.subject,
                            "category": job.category,
                            "logged_at": now_utc_iso(),
                        }
                    )
                )
        except (aiosmtplib.SMTPException, OSError) as exc:
            self.failed += 1
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "email_failed",
                        "to": job.to,
                        "category": job.category,
                        "error": str(exc),
                    }
                )
            )
            return False
        self.sent += 1
        return True

    async def run(self) -> None:
        while True:
            job = await self.queue.get()
            try:
                await self.deliver(job)
                await asyncio.sleep(0.05)
            finally:
                self.queue.task_done()
