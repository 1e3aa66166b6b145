from __future__ import annotations

import asyncio
import contextlib

from common.utils import now_utc_iso
from fastapi import FastAPI
from pydantic import BaseModel, EmailStr, Field

from emailer.worker import DeliveryWorker, EmailJob, SmtpSettings

app = FastAPI(title="SourcingScreen Emailer", version="1.0.0")
worker = DeliveryWorker(smtp=SmtpSettings.from_env())
worker_task: asyncio.Task | None = None


class OutboundMessage(BaseModel):
    to: EmailStr
    subject: str = Field(..., min_length=1, max_length=300)
    body: str
    category: str = "general"


class SendRequest(BaseModel):
    messages: list[OutboundMessage] = Field(default_factory=list)


@app.on_event("startup")
async def startup() -> None:
    global worker_task
    worker_task = asyncio.create_task(worker.run())


@app.on_event("shutdown")
async def shutdown() -> None:
    if worker_task:
        worker_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await worker_task


@app.get("/health")
async def health() -> dict[str, str]:
    return {"status": "ok", "service": "emailer"}


@app.get("/status")
async def status() -> dict[str, int | bool]:
    return {
        "queued": worker.queue.qsize(),
        "sent": worker.sent,
        "failed": worker.failed,
        "smtp_configured": worker.smtp_configured,
    }


@app.post("/send")
async def send(payload: SendRequest) -> dict[str, str | int]:
    queued = 0
    for message in payload.messages:
        queued = await worker.enqueue(
            EmailJob(
                to=str(message.to),
                subject=message.subject,
                body=message.body,
                category=message.category,
            )
        )

    return {
        "status": "queued",
        "queued_jobs": queued,
        "scheduled_at": now_utc_iso(),
    }
