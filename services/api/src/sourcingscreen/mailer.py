from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any

import httpx

from sourcingscreen.jobs import format_commission_text
from sourcingscreen.models import Job, SupportTicket, UserRecord


class EmailDispatchError(RuntimeError):
    pass


@dataclass
class OutboundEmail:
    to: str
    subject: str
    body: str
    category: str = "general"


class EmailDispatcher:
    """Hands outbound email batches to the emailer service."""

    def __init__(self, base_url: str, *, timeout: float = 15) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout

    async def _request(
        self,
        method: str,
        path: str,
        payload: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        request_kwargs: dict[str, Any] = {}
        if payload is not None:
            request_kwargs["json"] = payload
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.request(
                    method=method,
                    url=f"{self.base_url}{path}",
                    **request_kwargs,
                )
        except httpx.RequestError as exc:
            raise EmailDispatchError(f"Emailer service unavailable: {exc}") from exc

        if response.status_code >= 400:
            raise EmailDispatchError(f"Emailer service returned {response.status_code}")
        return response.json()

    async def send(self, messages: list[OutboundEmail]) -> int:
        if not messages:
            return 0
        body = await self._request(
            "POST",
            "/send",
            {"messages": [asdict(message) for message in messages]},
        )
        return int(body.get("queued_jobs", len(messages)))

    async def status(self) -> dict[str, Any]:
        return await self._request("GET", "/status")


def _job_lines(jobs: list[Job], app_base_url: str) -> list[str]:
    lines = []
    for job in jobs:
        lines.append(
            f"- {job.title} ({job.job_code}) at {job.company_name}, {job.location}, {job.country}\n"
            f"  Commission: {format_commission_text(job)}\n"
            f"  {app_base_url}/jobs/{job.job_id}"
        )
    return lines


def compose_job_digest(
    recruiter: UserRecord,
    jobs: list[Job],
    *,
    subject: str,
    heading: str,
    category: str,
    app_base_url: str,
) -> OutboundEmail:
    body = "\n".join(
        [
            f"Hello {recruiter.name},",
            "",
            heading,
            "",
            *_job_lines(jobs, app_base_url),
            "",
            "Log in to SourcingScreen to start submitting candidates.",
        ]
    )
    return OutboundEmail(to=recruiter.email, subject=subject, body=body, category=category)


def compose_ticket_alert(ticket: SupportTicket, submitter: UserRecord, support_email: str) -> OutboundEmail:
    body = "\n".join(
        [
            f"New support ticket {ticket.ticket_number}",
            f"From: {submitter.name} <{submitter.email}> ({submitter.role})",
            f"Category: {ticket.category}",
            f"Priority: {ticket.priority}",
            f"Subject: {ticket.subject}",
            "",
            ticket.message,
        ]
    )
    return OutboundEmail(
        to=support_email,
        subject=f"[{ticket.priority}] New support ticket {ticket.ticket_number}",
        body=body,
        category="support_ticket",
    )


def compose_ticket_reply(ticket: SupportTicket, recipient: UserRecord, message: str) -> OutboundEmail:
    body = "\n".join(
        [
            f"Hello {recipient.name},",
            "",
            f"There is a new response on your support ticket {ticket.ticket_number}:",
            "",
            message,
            "",
            f"Current status: {ticket.status}",
        ]
    )
    return OutboundEmail(
        to=recipient.email,
        subject=f"Re: {ticket.subject} [{ticket.ticket_number}]",
        body=body,
        category="support_response",
    )
