from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import threading
import time
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any

from common.utils import (
    is_valid_email,
    now_utc_iso,
    page_count,
    start_of_utc_day,
    utc_iso_days_ago,
)
from fastapi import Body, FastAPI, HTTPException, Query, Request, Response
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import JSONResponse

from sourcingscreen.email_settings import (
    EMAIL_NOTIFICATIONS_ENABLED,
    EMAIL_SETTING_DEFAULTS,
    EMAIL_SETTING_DESCRIPTIONS,
    END_OF_DAY_NOTIFICATIONS,
    END_OF_DAY_TIME,
    MAX_ANALYTICS_DAYS,
    RECENT_JOBS_FLAGS,
    analytics_window_start,
    build_email_analytics,
    decide_end_of_day,
    resolve_email_settings,
    should_send_job_batch,
    validate_email_settings,
)
from sourcingscreen.jobs import (
    ACCESSIBLE_JOB_STATUSES,
    apply_question_update,
    build_commission,
    build_screening_question,
    has_job_access,
    normalize_access_update,
    preview_text,
    resolve_reduction,
    transform_job_for_user,
    validate_job_update_post,
    validate_salary,
)
from sourcingscreen.mailer import (
    EmailDispatcher,
    EmailDispatchError,
    OutboundEmail,
    compose_job_digest,
    compose_ticket_alert,
    compose_ticket_reply,
)
from sourcingscreen.models import (
    EMAIL_TYPE_END_OF_DAY,
    EMAIL_TYPE_JOB_BATCH,
    EMAIL_TYPE_RECENT_JOBS,
    JOB_STATUSES,
    NOTIFICATION_CANDIDATE_STATUS_CHANGE,
    NOTIFICATION_JOB_MODIFICATION,
    NOTIFICATION_NEW_NOTE_COMMENT,
    NOTIFICATION_TYPES,
    RESUME_STATUSES,
    ROLE_ADMIN,
    ROLE_COMPANY,
    ROLE_INTERNAL,
    ROLE_RECRUITER,
    STAFF_ROLES,
    ApiTokenCreateRequest,
    ApiTokenCreateResponse,
    ApiTokenMetadata,
    AuditEvent,
    CandidateValidationRequest,
    CandidateValidationResult,
    CommissionInput,
    EmailDiagnosticsTestRequest,
    EmailSettingsUpdateRequest,
    Faq,
    FaqCreateRequest,
    FaqUpdateRequest,
    Job,
    JobAccessResponse,
    JobAccessUpdateRequest,
    JobCreateRequest,
    JobRecruiter,
    JobStatusUpdateRequest,
    JobUpdatePostRequest,
    JobUpdateRequest,
    MetricsSnapshot,
    NotificationCreateRequest,
    NotificationDeleteRequest,
    NotificationListResponse,
    NotificationMarkReadRequest,
    NotificationPagination,
    PayoutSettingsRequest,
    RecruiterSummary,
    Resume,
    ResumeCreateRequest,
    ResumeNoteCreateRequest,
    ResumePage,
    ResumeStatusUpdateRequest,
    ResumeStatusUpdateResponse,
    ResumeUpdateRequest,
    SavedJobEntry,
    SavedJobRequest,
    SavedJobsResponse,
    ScreeningQuestionCreateRequest,
    ScreeningQuestionUpdateRequest,
    SettingUpdateRequest,
    SupportSettings,
    SupportSettingsUpdateRequest,
    SupportTicket,
    TeamMemberCreateRequest,
    TicketCreateRequest,
    TicketListResponse,
    TicketPagination,
    TicketResponseCreateRequest,
    TicketUpdateRequest,
    TokenAuthContext,
    UserCreateRequest,
    UserListPagination,
    UserRecord,
    UserUpdateRequest,
)
from sourcingscreen.repository import DuplicateRecordError, SourcingRepository
from sourcingscreen.support import (
    RESPONSE_RATE_LIMIT,
    RESPONSE_RATE_WINDOW,
    STATUS_CLOSED,
    STATUS_IN_PROGRESS,
    STATUS_OPEN,
    STATUS_RESOLVED,
    SUPPORT_AUTO_RESPONSE,
    SUPPORT_EMAIL,
    SUPPORT_EMAIL_TEMPLATE,
    SUPPORT_NOTIFICATION_ENABLED,
    SUPPORT_SETTING_DEFAULTS,
    SUPPORT_SETTING_DESCRIPTIONS,
    TICKET_CATEGORIES,
    TICKET_PRIORITIES,
    TICKET_RATE_LIMIT,
    TICKET_RATE_WINDOW,
    TICKET_STATUSES,
    compute_ticket_stats,
    format_ticket_number,
    is_ticket_overdue,
    render_support_template,
    resolve_support_settings,
    retry_after_seconds,
    validate_response_message,
    validate_support_settings,
    validate_ticket_fields,
)

DEFAULT_DB_PATH = os.path.join(tempfile.gettempdir(), "sourcingscreen", "api.sqlite3")
DEFAULT_ADMIN_EMAIL = "admin@sourcingscreen.com"
DEFAULT_EMAILER_BASE_URL = "http://localhost:8002"
DEFAULT_APP_BASE_URL = "http://localhost:3000"
FAQ_INTERNAL_EDIT_ENABLED = "faq_internal_edit_enabled"
LOGGER = logging.getLogger("sourcingscreen.api")

STAFF = (ROLE_ADMIN, ROLE_INTERNAL)
JOB_POSTERS = (ROLE_COMPANY, ROLE_ADMIN, ROLE_INTERNAL)
RESUME_SUBMITTERS = (ROLE_RECRUITER, ROLE_ADMIN, ROLE_INTERNAL)
RESUME_REVIEWERS = (ROLE_COMPANY, ROLE_ADMIN, ROLE_INTERNAL)

DIGEST_COPY = {
    EMAIL_TYPE_JOB_BATCH: (
        "{count} new jobs on SourcingScreen",
        "New jobs have just been posted on SourcingScreen:",
    ),
    EMAIL_TYPE_END_OF_DAY: (
        "Daily summary: {count} jobs posted today",
        "Here are the jobs posted on SourcingScreen today:",
    ),
    EMAIL_TYPE_RECENT_JOBS: (
        "{count} recent jobs on SourcingScreen",
        "Here are the jobs posted on SourcingScreen recently:",
    ),
}


def parse_api_tokens(raw: str) -> dict[str, str]:
    parsed = json.loads(raw)
    if not isinstance(parsed, dict):
        raise ValueError("SOURCINGSCREEN_API_TOKENS_JSON must be a JSON object.")

    token_map: dict[str, str] = {}
    for token, user_id in parsed.items():
        if not isinstance(token, str) or not token.strip():
            raise ValueError("Token keys must be non-empty strings.")
        if not isinstance(user_id, str) or not user_id.strip():
            raise ValueError("Token values must be user id strings.")
        token_map[token] = user_id.strip()
    return token_map


def build_auth_subject(token: str) -> str:
    token_digest = hashlib.sha1(token.encode()).hexdigest()[:12]
    return f"token:{token_digest}"


class MetricsStore:
    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._totals = {"requests": 0, "errors": 0}
        self._endpoints: dict[str, dict[str, float | int]] = {}

    def observe(self, *, method: str, path: str, status_code: int, duration_ms: float) -> None:
        key = f"{method} {path}"
        bucket = f"{status_code // 100}xx"
        with self._lock:
            self._totals["requests"] += 1
            if status_code >= 400:
                self._totals["errors"] += 1
            endpoint = self._endpoints.setdefault(
                key,
                {
                    "count": 0,
                    "2xx": 0,
                    "4xx": 0,
                    "5xx": 0,
                    "latency_ms_sum": 0.0,
                    "latency_ms_avg": 0.0,
                },
            )
            endpoint["count"] = int(endpoint["count"]) + 1
            if bucket in ("2xx", "4xx", "5xx"):
                endpoint[bucket] = int(endpoint[bucket]) + 1
            endpoint["latency_ms_sum"] = float(endpoint["latency_ms_sum"]) + duration_ms
            endpoint["latency_ms_avg"] = (
                float(endpoint["latency_ms_sum"]) / int(endpoint["count"])
            )

    def snapshot(self) -> MetricsSnapshot:
        with self._lock:
            return MetricsSnapshot(
                generated_at=now_utc_iso(),
                totals=dict(self._totals),
                endpoints={key: dict(value) for key, value in self._endpoints.items()},
            )


@dataclass
class Caller:
    user: UserRecord
    auth_subject: str

    @property
    def user_id(self) -> str:
        return self.user.user_id

    @property
    def role(self) -> str:
        return self.user.role

    @property
    def is_staff(self) -> bool:
        return self.user.role in STAFF_ROLES


def create_app(
    *,
    database_path: str | None = None,
    api_key: str | None = None,
    api_tokens: dict[str, str] | None = None,
    email_dispatcher: Any | None = None,
    cron_secret: str | None = None,
    app_base_url: str | None = None,
) -> FastAPI:
    resolved_path = database_path or os.getenv("SOURCINGSCREEN_DB_PATH", DEFAULT_DB_PATH)
    resolved_api_key = (api_key or os.getenv("SOURCINGSCREEN_API_KEY", "")).strip() or None
    resolved_admin_email = os.getenv("SOURCINGSCREEN_ADMIN_EMAIL", DEFAULT_ADMIN_EMAIL).strip()
    resolved_token_map: dict[str, str] = {}
    if api_tokens is not None:
        resolved_token_map = {
            token: user_id.strip()
            for token, user_id in api_tokens.items()
            if token.strip() and user_id.strip()
        }
    else:
        raw_tokens = os.getenv("SOURCINGSCREEN_API_TOKENS_JSON", "").strip()
        if raw_tokens:
            resolved_token_map = parse_api_tokens(raw_tokens)
    resolved_cron_secret = (cron_secret or os.getenv("CRON_SECRET", "")).strip() or None
    resolved_base_url = (
        app_base_url or os.getenv("APP_BASE_URL", DEFAULT_APP_BASE_URL)
    ).rstrip("/")
    dispatcher = email_dispatcher or EmailDispatcher(
        os.getenv("EMAILER_BASE_URL", DEFAULT_EMAILER_BASE_URL)
    )

    repository = SourcingRepository(database_path=resolved_path)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        await run_in_threadpool(repository.connect)
        token_map = dict(resolved_token_map)
        if resolved_api_key:
            admin = await run_in_threadpool(
                repository.ensure_admin_user,
                email=resolved_admin_email,
                name="Administrator",
            )
            token_map[resolved_api_key] = admin.user_id
        app.state.repository = repository
        app.state.auth_token_users = token_map
        app.state.email_dispatcher = dispatcher
        app.state.metrics = MetricsStore()
        try:
            yield
        finally:
            await run_in_threadpool(repository.close)

    app = FastAPI(title="SourcingScreen API", version="1.0.0", lifespan=lifespan)

    async def write_audit_event(
        request: Request,
        *,
        action: str,
        status: str,
        message: str | None = None,
        auth_subject: str | None = None,
    ) -> int:
        request_id = getattr(request.state, "request_id", None)
        source_ip = request.client.host if request.client else None
        user_agent = request.headers.get("user-agent")
        return await run_in_threadpool(
            request.app.state.repository.record_audit_event,
            request_id=request_id,
            method=request.method,
            path=request.url.path,
            action=action,
            source_ip=source_ip,
            user_agent=user_agent,
            auth_subject=auth_subject,
            status=status,
            message=message,
        )

    async def audit_ok(
        request: Request,
        response: Response,
        caller: Caller,
        *,
        action: str,
        message: str | None = None,
    ) -> None:
        event_id = await write_audit_event(
            request,
            action=action,
            status="ok",
            message=message,
            auth_subject=caller.auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)

    async def reject(
        request: Request,
        caller: Caller,
        *,
        action: str,
        status_code: int,
        detail: Any,
        message: str | None = None,
    ) -> HTTPException:
        audit_status = {404: "not_found", 403: "forbidden", 409: "conflict"}.get(
            status_code, "invalid"
        )
        event_id = await write_audit_event(
            request,
            action=action,
            status=audit_status,
            message=message or (detail if isinstance(detail, str) else None),
            auth_subject=caller.auth_subject,
        )
        return HTTPException(
            status_code=status_code,
            detail=detail,
            headers={"x-audit-event-id": str(event_id)},
        )

    @app.middleware("http")
    async def observability_middleware(request: Request, call_next):
        request_id = request.headers.get("x-request-id") or str(uuid.uuid4())
        request.state.request_id = request_id
        started = time.perf_counter()

        try:
            response = await call_next(request)
        except Exception as exc:
            duration_ms = (time.perf_counter() - started) * 1000
            request.app.state.metrics.observe(
                method=request.method,
                path=request.url.path,
                status_code=500,
                duration_ms=duration_ms,
            )
            LOGGER.exception(
                json.dumps(
                    {
                        "event": "request_complete",
                        "request_id": request_id,
                        "method": request.method,
                        "path": request.url.path,
                        "status_code": 500,
                        "duration_ms": round(duration_ms, 3),
                        "error": str(exc),
                    }
                )
            )
            return JSONResponse(
                status_code=500,
                content={"detail": "Internal Server Error", "request_id": request_id},
                headers={"x-request-id": request_id},
            )

        duration_ms = (time.perf_counter() - started) * 1000
        request.app.state.metrics.observe(
            method=request.method,
            path=request.url.path,
            status_code=response.status_code,
            duration_ms=duration_ms,
        )
        response.headers["x-request-id"] = request_id
        LOGGER.info(
            json.dumps(
                {
                    "event": "request_complete",
                    "request_id": request_id,
                    "method": request.method,
                    "path": request.url.path,
                    "status_code": response.status_code,
                    "duration_ms": round(duration_ms, 3),
                    "source_ip": request.client.host if request.client else None,
                }
            )
        )
        return response

    async def require_user(
        request: Request,
        *,
        action: str,
        roles: tuple[str, ...] | None = None,
    ) -> Caller:
        repo: SourcingRepository = request.app.state.repository
        provided = request.headers.get("x-api-key", "")
        if not provided:
            await write_audit_event(
                request,
                action=action,
                status="unauthorized",
                message="missing api key",
            )
            raise HTTPException(status_code=401, detail="Unauthorized")

        token_context: TokenAuthContext | None = None
        env_user_id = request.app.state.auth_token_users.get(provided)
        if env_user_id is not None:
            token_context = TokenAuthContext(
                user_id=env_user_id,
                auth_subject=build_auth_subject(provided),
            )
        else:
            token_context = await run_in_threadpool(repo.resolve_db_token, provided)

        if token_context is None:
            await write_audit_event(
                request,
                action=action,
                status="unauthorized",
                message="invalid, expired, or revoked api key",
            )
            raise HTTPException(status_code=401, detail="Unauthorized")

        if token_context.token_id:
            await run_in_threadpool(
                repo.touch_api_token_usage,
                token_context.token_id,
                source_ip=request.client.host if request.client else None,
                user_agent=request.headers.get("user-agent"),
            )

        user = await run_in_threadpool(repo.get_user, token_context.user_id)
        if user is None or not user.is_active:
            await write_audit_event(
                request,
                action=action,
                status="unauthorized",
                message="unknown or inactive user",
                auth_subject=token_context.auth_subject,
            )
            raise HTTPException(status_code=401, detail="Unauthorized")

        if roles is not None and user.role not in roles:
            await write_audit_event(
                request,
                action=action,
                status="forbidden",
                message=f"role {user.role} not allowed",
                auth_subject=token_context.auth_subject,
            )
            raise HTTPException(status_code=403, detail="Forbidden")
        return Caller(user=user, auth_subject=token_context.auth_subject)

    async def require_cron(request: Request, *, action: str) -> tuple[str, bool]:
        provided = request.headers.get("x-cron-secret", "")
        if resolved_cron_secret and provided == resolved_cron_secret:
            return "cron", True
        caller = await require_user(request, action=action, roles=(ROLE_ADMIN,))
        return caller.auth_subject, False

    # Scoping helpers

    async def team_ids_for(caller: Caller) -> list[str]:
        if caller.role == ROLE_COMPANY and caller.user.is_primary:
            return await run_in_threadpool(repository.list_team_user_ids, caller.user_id)
        return [caller.user_id]

    async def can_manage_job(caller: Caller, job: Job) -> bool:
        if caller.is_staff:
            return True
        if caller.role != ROLE_COMPANY:
            return False
        return job.posted_by in await team_ids_for(caller)

    async def can_view_job(caller: Caller, job: Job) -> bool:
        if caller.role == ROLE_RECRUITER:
            return has_job_access(job, caller.user_id)
        return await can_manage_job(caller, job)

    async def visible_jobs(caller: Caller, status: str | None = None) -> list[Job]:
        statuses = (status,) if status else None
        if caller.is_staff:
            return await run_in_threadpool(repository.list_jobs, statuses=statuses)
        if caller.role == ROLE_COMPANY:
            return await run_in_threadpool(
                repository.list_jobs,
                posted_by=await team_ids_for(caller),
                statuses=statuses,
            )
        jobs = await run_in_threadpool(
            repository.list_jobs,
            statuses=statuses or ACCESSIBLE_JOB_STATUSES,
        )
        return [job for job in jobs if has_job_access(job, caller.user_id)]

    async def present_jobs(caller: Caller, jobs: list[Job]) -> list[Job]:
        if caller.is_staff and jobs:
            posters = await run_in_threadpool(
                repository.list_users_by_ids,
                [job.posted_by for job in jobs],
            )
            jobs = [
                job.model_copy(
                    update={
                        "posted_by_name": posters[job.posted_by].name
                        if job.posted_by in posters
                        else None,
                        "posted_by_company": posters[job.posted_by].company_name
                        if job.posted_by in posters
                        else None,
                    }
                )
                for job in jobs
            ]
        return [transform_job_for_user(job, caller.role) for job in jobs]

    async def load_job(job_id: str) -> Job:
        job = await run_in_threadpool(repository.get_job, job_id)
        if job is None:
            raise HTTPException(status_code=404, detail="Job not found")
        return job

    async def load_resume_for(caller: Caller, resume_id: str) -> tuple[Resume, Job | None]:
        resume = await run_in_threadpool(repository.get_resume, resume_id)
        if resume is None:
            raise HTTPException(status_code=404, detail="Resume not found")
        job = await run_in_threadpool(repository.get_job, resume.job_id)
        if caller.is_staff or resume.submitted_by == caller.user_id:
            return resume, job
        if caller.role == ROLE_COMPANY and job is not None and await can_manage_job(caller, job):
            return resume, job
        raise HTTPException(status_code=403, detail="You do not have access to this resume")

    async def load_ticket_for(caller: Caller, ticket_id: str) -> SupportTicket:
        ticket = await run_in_threadpool(repository.get_ticket, ticket_id)
        if ticket is None:
            raise HTTPException(status_code=404, detail="Ticket not found")
        if not caller.is_staff and ticket.submitted_by != caller.user_id:
            raise HTTPException(status_code=403, detail="You do not have access to this ticket")
        return ticket

    # Email helpers

    async def dispatch(messages: list[OutboundEmail]) -> int:
        return await app.state.email_dispatcher.send(messages)

    async def deliver_digest(email_type: str, record_id: str, jobs: list[Job]) -> bool:
        recruiters = await run_in_threadpool(repository.list_active_users, (ROLE_RECRUITER,))
        subject_template, heading = DIGEST_COPY[email_type]
        messages = []
        for recruiter in recruiters:
            accessible = [job for job in jobs if has_job_access(job, recruiter.user_id)]
            if not accessible:
                continue
            messages.append(
                compose_job_digest(
                    recruiter,
                    accessible,
                    subject=subject_template.format(count=len(accessible)),
                    heading=heading,
                    category=email_type,
                    app_base_url=resolved_base_url,
                )
            )
        try:
            await dispatch(messages)
        except EmailDispatchError as exc:
            LOGGER.warning(
                json.dumps(
                    {
                        "event": "email_dispatch_failed",
                        "email_type": email_type,
                        "notification_id": record_id,
                        "error": str(exc),
                    }
                )
            )
            await run_in_threadpool(repository.mark_email_notification_failed, record_id, str(exc))
            return False
        await run_in_threadpool(repository.mark_email_notification_sent, record_id)
        LOGGER.info(
            json.dumps(
                {
                    "event": "email_dispatched",
                    "email_type": email_type,
                    "notification_id": record_id,
                    "recipients": len(messages),
                    "job_count": len(jobs),
                }
            )
        )
        return True

    async def send_digest(email_type: str, jobs: list[Job]) -> tuple[int, bool]:
        recruiters = await run_in_threadpool(repository.list_active_users, (ROLE_RECRUITER,))
        record = await run_in_threadpool(
            repository.create_email_notification,
            type=email_type,
            job_ids=[job.job_id for job in jobs],
            recipient_count=len(recruiters),
        )
        sent = await deliver_digest(email_type, record.notification_id, jobs)
        return len(recruiters), sent

    async def load_email_settings() -> dict[str, Any]:
        stored = await run_in_threadpool(
            repository.get_setting_values,
            list(EMAIL_SETTING_DEFAULTS),
        )
        return resolve_email_settings(stored)

    async def check_job_batch() -> None:
        settings = await load_email_settings()
        since = start_of_utc_day().isoformat()
        jobs_today = await run_in_threadpool(repository.count_jobs_created_since, since)
        already_sent = await run_in_threadpool(
            repository.has_email_notification,
            type=EMAIL_TYPE_JOB_BATCH,
            since=since,
            statuses=("sent",),
            job_count=jobs_today,
        )
        if not should_send_job_batch(
            settings,
            jobs_today=jobs_today,
            already_sent_for_count=already_sent,
        ):
            return
        jobs = await run_in_threadpool(
            repository.list_jobs,
            statuses=("ACTIVE",),
            created_after=since,
        )
        await send_digest(EMAIL_TYPE_JOB_BATCH, jobs)

    async def load_support_settings() -> dict[str, Any]:
        stored = await run_in_threadpool(
            repository.get_setting_values,
            list(SUPPORT_SETTING_DEFAULTS),
        )
        return resolve_support_settings(stored)

    async def send_best_effort(messages: list[OutboundEmail], *, context: str) -> bool:
        try:
            await dispatch(messages)
        except EmailDispatchError as exc:
            LOGGER.warning(
                json.dumps({"event": "email_dispatch_failed", "context": context, "error": str(exc)})
            )
            return False
        return True

    def log_ticket_audit(action: str, caller: Caller, ticket_id: str, **details: Any) -> None:
        LOGGER.info(
            json.dumps(
                {
                    "event": "AUDIT_TRAIL",
                    "action": action,
                    "ticket_id": ticket_id,
                    "user_id": caller.user_id,
                    "user_role": caller.role,
                    "timestamp": now_utc_iso(),
                    **details,
                }
            )
        )

    async def notify(
        *,
        recipient_id: str,
        type: str,
        title: str,
        message: str,
        **extra: Any,
    ) -> None:
        await run_in_threadpool(
            lambda: repository.create_notification(
                recipient_id=recipient_id,
                type=type,
                title=title,
                message=message,
                **extra,
            )
        )

    # Service endpoints

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok", "service": "sourcingscreen-api"}

    @app.get("/metrics", response_model=MetricsSnapshot)
    async def metrics(request: Request) -> MetricsSnapshot:
        return request.app.state.metrics.snapshot()

    @app.post("/auth/tokens", response_model=ApiTokenCreateResponse)
    async def create_token(
        payload: ApiTokenCreateRequest,
        request: Request,
        response: Response,
    ) -> ApiTokenCreateResponse:
        caller = await require_user(request, action="token_create", roles=(ROLE_ADMIN,))
        try:
            token = await run_in_threadpool(repository.create_api_token, payload)
        except KeyError:
            raise await reject(
                request,
                caller,
                action="token_create",
                status_code=404,
                detail="User not found",
                message=f"user_id={payload.user_id}",
            ) from None
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="token_create",
                status_code=400,
                detail=str(exc),
            ) from exc
        await audit_ok(
            request,
            response,
            caller,
            action="token_create",
            message=f"token_id={token.metadata.token_id}; user_id={payload.user_id}",
        )
        return token

    @app.get("/auth/tokens", response_model=list[ApiTokenMetadata])
    async def list_tokens(
        request: Request,
        include_revoked: bool = Query(default=False),
        user_id: str | None = None,
    ) -> list[ApiTokenMetadata]:
        await require_user(request, action="token_list", roles=(ROLE_ADMIN,))
        return await run_in_threadpool(
            lambda: repository.list_api_tokens(include_revoked=include_revoked, user_id=user_id)
        )

    @app.post("/auth/tokens/{token_id}/revoke")
    async def revoke_token(
        token_id: str,
        request: Request,
        response: Response,
    ) -> dict[str, bool]:
        caller = await require_user(request, action="token_revoke", roles=(ROLE_ADMIN,))
        revoked = await run_in_threadpool(repository.revoke_api_token, token_id)
        if not revoked:
            raise await reject(
                request,
                caller,
                action="token_revoke",
                status_code=404,
                detail="Unknown token_id",
                message=f"token_id={token_id}",
            )
        await audit_ok(request, response, caller, action="token_revoke", message=f"token_id={token_id}")
        return {"revoked": True}

    @app.get("/audit-events", response_model=list[AuditEvent])
    async def list_audit_events(
        request: Request,
        limit: int = Query(default=100, ge=1, le=500),
        action: str | None = None,
        status: str | None = None,
    ) -> list[AuditEvent]:
        await require_user(request, action="audit_events_list", roles=(ROLE_ADMIN,))
        return await run_in_threadpool(
            lambda: repository.list_audit_events(limit=limit, action=action, status=status)
        )

    # Users

    @app.get("/users/me", response_model=UserRecord)
    async def current_user(request: Request) -> UserRecord:
        caller = await require_user(request, action="user_me")
        return caller.user

    @app.post("/users/team", response_model=UserRecord, status_code=201)
    async def create_team_member(
        payload: TeamMemberCreateRequest,
        request: Request,
        response: Response,
    ) -> UserRecord:
        caller = await require_user(request, action="team_member_create", roles=(ROLE_COMPANY,))
        if not caller.user.is_primary:
            raise await reject(
                request,
                caller,
                action="team_member_create",
                status_code=403,
                detail="Only primary company users can add team members",
            )
        try:
            member = await run_in_threadpool(
                repository.create_user,
                UserCreateRequest(
                    name=payload.name,
                    email=payload.email,
                    phone=payload.phone,
                    role=ROLE_COMPANY,
                    company_name=caller.user.company_name,
                    designation=payload.designation,
                    is_primary=False,
                    parent_id=caller.user_id,
                ),
            )
        except DuplicateRecordError as exc:
            raise await reject(
                request,
                caller,
                action="team_member_create",
                status_code=409,
                detail=str(exc),
            ) from exc
        await audit_ok(
            request,
            response,
            caller,
            action="team_member_create",
            message=f"user_id={member.user_id}",
        )
        return member

    @app.get("/users/team")
    async def list_team(request: Request) -> dict[str, list[UserRecord]]:
        caller = await require_user(request, action="team_list", roles=(ROLE_COMPANY,))
        owner_id = caller.user_id if caller.user.is_primary else caller.user.parent_id
        if owner_id is None:
            return {"users": []}
        members = await run_in_threadpool(repository.list_team_members, owner_id)
        return {"users": members}

    @app.get("/admin/users")
    async def admin_list_users(
        request: Request,
        role: str | None = None,
        is_primary: bool | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
        export: bool = False,
    ) -> dict[str, Any]:
        await require_user(request, action="admin_users_list", roles=(ROLE_ADMIN,))
        users, total = await run_in_threadpool(
            lambda: repository.list_users(
                role=role,
                is_primary=is_primary,
                is_active=is_active,
                search=search,
                page=page,
                limit=limit,
                export=export,
            )
        )
        if export:
            return {"users": users, "total": total}
        return {
            "users": users,
            "pagination": UserListPagination(
                total=total,
                page=page,
                limit=limit,
                pages=page_count(total, limit),
            ),
        }

    @app.post("/admin/users", response_model=UserRecord, status_code=201)
    async def admin_create_user(
        payload: UserCreateRequest,
        request: Request,
        response: Response,
    ) -> UserRecord:
        caller = await require_user(request, action="admin_user_create", roles=(ROLE_ADMIN,))
        try:
            user = await run_in_threadpool(repository.create_user, payload)
        except DuplicateRecordError as exc:
            raise await reject(
                request,
                caller,
                action="admin_user_create",
                status_code=409,
                detail=str(exc),
            ) from exc
        await audit_ok(request, response, caller, action="admin_user_create", message=f"user_id={user.user_id}")
        return user

    @app.get("/admin/users/{user_id}", response_model=UserRecord)
    async def admin_get_user(user_id: str, request: Request) -> UserRecord:
        await require_user(request, action="admin_user_get", roles=(ROLE_ADMIN,))
        user = await run_in_threadpool(repository.get_user, user_id)
        if user is None:
            raise HTTPException(status_code=404, detail="User not found")
        return user

    @app.put("/admin/users/{user_id}", response_model=UserRecord)
    async def admin_update_user(
        user_id: str,
        payload: UserUpdateRequest,
        request: Request,
        response: Response,
    ) -> UserRecord:
        caller = await require_user(request, action="admin_user_update", roles=(ROLE_ADMIN,))
        try:
            user = await run_in_threadpool(
                repository.update_user,
                user_id,
                payload.model_dump(exclude_unset=True),
            )
        except KeyError:
            raise await reject(
                request,
                caller,
                action="admin_user_update",
                status_code=404,
                detail="User not found",
                message=f"user_id={user_id}",
            ) from None
        await audit_ok(request, response, caller, action="admin_user_update", message=f"user_id={user_id}")
        return user

    @app.delete("/admin/users/{user_id}")
    async def admin_delete_user(
        user_id: str,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="admin_user_delete", roles=(ROLE_ADMIN,))
        user = await run_in_threadpool(repository.get_user, user_id)
        if user is None:
            raise await reject(
                request,
                caller,
                action="admin_user_delete",
                status_code=404,
                detail="User not found",
                message=f"user_id={user_id}",
            )
        if user.role == ROLE_ADMIN:
            raise await reject(
                request,
                caller,
                action="admin_user_delete",
                status_code=403,
                detail="Admin users cannot be deleted",
            )
        deleted = await run_in_threadpool(repository.delete_user, user_id)
        await audit_ok(
            request,
            response,
            caller,
            action="admin_user_delete",
            message=f"user_id={user_id}; deleted={deleted}",
        )
        return {"message": "User deleted successfully", "deleted_count": deleted}

    @app.get("/admin/stats")
    async def admin_stats(request: Request) -> dict[str, Any]:
        await require_user(request, action="admin_stats", roles=STAFF)
        users = await run_in_threadpool(repository.user_stats)
        jobs_by_status = await run_in_threadpool(repository.count_jobs_by_status)
        resumes_total = await run_in_threadpool(repository.count_resumes)
        return {
            "users": {
                "total": users["total"],
                "by_role": users["by_role"],
                "by_type": users["by_type"],
            },
            "jobs": {"total": sum(jobs_by_status.values()), "by_status": jobs_by_status},
            "resumes": {"total": resumes_total},
            "recent_users": users["recent_users"],
        }

    # Jobs

    @app.post("/jobs", response_model=Job, status_code=201)
    async def create_job(
        payload: JobCreateRequest,
        request: Request,
        response: Response,
    ) -> Job:
        caller = await require_user(request, action="job_create", roles=JOB_POSTERS)
        company_name = (payload.company_name or "").strip()
        if not company_name and caller.role == ROLE_COMPANY:
            company_name = (caller.user.company_name or "").strip()
        if not company_name:
            raise await reject(
                request,
                caller,
                action="job_create",
                status_code=400,
                detail="Company name is required",
            )
        try:
            validate_salary(payload.salary)
            reduction = resolve_reduction(payload.commission, role=caller.role)
            commission = build_commission(payload.commission, payload.salary, reduction=reduction)
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="job_create",
                status_code=400,
                detail=str(exc),
            ) from exc

        job = await run_in_threadpool(
            lambda: repository.create_job(
                payload,
                posted_by=caller.user_id,
                company_name=company_name,
                commission=commission,
            )
        )
        await audit_ok(
            request,
            response,
            caller,
            action="job_create",
            message=f"job_id={job.job_id}; job_code={job.job_code}",
        )
        await check_job_batch()
        return transform_job_for_user(job, caller.role)

    @app.get("/jobs", response_model=list[Job])
    async def list_jobs(request: Request, status: str | None = None) -> list[Job]:
        caller = await require_user(request, action="job_list")
        jobs = await visible_jobs(caller, status)
        return await present_jobs(caller, jobs)

    @app.get("/jobs/resume-counts")
    async def job_resume_counts(request: Request) -> dict[str, int]:
        caller = await require_user(request, action="job_resume_counts")
        jobs = await visible_jobs(caller)
        return await run_in_threadpool(
            repository.count_resumes_by_job,
            [job.job_id for job in jobs],
        )

    @app.get("/jobs/{job_id}", response_model=Job)
    async def get_job(job_id: str, request: Request) -> Job:
        caller = await require_user(request, action="job_get")
        job = await load_job(job_id)
        if not await can_view_job(caller, job):
            raise HTTPException(status_code=403, detail="You do not have access to this job")
        presented = await present_jobs(caller, [job])
        return presented[0]

    @app.put("/jobs/{job_id}", response_model=Job)
    async def update_job(
        job_id: str,
        payload: JobUpdateRequest,
        request: Request,
        response: Response,
    ) -> Job:
        caller = await require_user(request, action="job_update", roles=JOB_POSTERS)
        job = await load_job(job_id)
        if not await can_manage_job(caller, job):
            raise await reject(
                request,
                caller,
                action="job_update",
                status_code=403,
                detail="You can only update your own jobs",
            )

        updates: dict[str, Any] = {
            field_name: getattr(payload, field_name)
            for field_name in payload.model_fields_set
            if getattr(payload, field_name) is not None
        }
        if "company_name" in updates and not updates["company_name"].strip():
            del updates["company_name"]
        if "salary" in updates or "commission" in updates:
            salary = updates.get("salary", job.salary)
            commission_input = updates.pop("commission", None) or CommissionInput(
                type=job.commission.type,
                original_percentage=job.commission.original_percentage,
                fixed_amount=job.commission.fixed_amount,
                hourly_rate=job.commission.hourly_rate,
            )
            try:
                validate_salary(salary)
                reduction = resolve_reduction(
                    commission_input,
                    role=caller.role,
                    current=job.commission.reduction_percentage,
                )
                updates["commission"] = build_commission(
                    commission_input,
                    salary,
                    reduction=reduction,
                )
            except ValueError as exc:
                raise await reject(
                    request,
                    caller,
                    action="job_update",
                    status_code=400,
                    detail=str(exc),
                ) from exc

        modified_fields = sorted(
            field_name for field_name, value in updates.items() if getattr(job, field_name) != value
        )
        updated = await run_in_threadpool(repository.update_job, job_id, updates)
        await audit_ok(
            request,
            response,
            caller,
            action="job_update",
            message=f"job_id={job_id}; fields={','.join(modified_fields)}",
        )
        if modified_fields:
            followers = await run_in_threadpool(repository.list_job_followers, job_id)
            for recruiter_id in followers:
                await notify(
                    recipient_id=recruiter_id,
                    type=NOTIFICATION_JOB_MODIFICATION,
                    title="Job updated",
                    message=f"The job '{updated.title}' was updated: {', '.join(modified_fields)}",
                    job_id=job_id,
                    job_title=updated.title,
                    metadata={"modified_fields": modified_fields},
                )
        return transform_job_for_user(updated, caller.role)

    @app.patch("/jobs/{job_id}/status", response_model=Job)
    async def update_job_status(
        job_id: str,
        payload: JobStatusUpdateRequest,
        request: Request,
        response: Response,
    ) -> Job:
        caller = await require_user(request, action="job_status_update", roles=JOB_POSTERS)
        if payload.status not in JOB_STATUSES:
            raise await reject(
                request,
                caller,
                action="job_status_update",
                status_code=400,
                detail="Invalid status",
            )
        job = await load_job(job_id)
        if not await can_manage_job(caller, job):
            raise await reject(
                request,
                caller,
                action="job_status_update",
                status_code=403,
                detail="You can only update your own jobs",
            )
        updated = await run_in_threadpool(repository.update_job, job_id, {"status": payload.status})
        await audit_ok(
            request,
            response,
            caller,
            action="job_status_update",
            message=f"job_id={job_id}; status={job.status}->{payload.status}",
        )
        return transform_job_for_user(updated, caller.role)

    @app.delete("/jobs/{job_id}")
    async def delete_job(job_id: str, request: Request, response: Response) -> dict[str, str]:
        caller = await require_user(request, action="job_delete", roles=JOB_POSTERS)
        job = await load_job(job_id)
        if not caller.is_staff and job.posted_by != caller.user_id:
            raise await reject(
                request,
                caller,
                action="job_delete",
                status_code=403,
                detail="You can only delete your own jobs",
            )
        await run_in_threadpool(repository.delete_job, job_id)
        await audit_ok(request, response, caller, action="job_delete", message=f"job_id={job_id}")
        return {"message": "Job deleted successfully"}

    # Job visibility

    async def access_response(job: Job, message: str | None = None) -> JobAccessResponse:
        users = await run_in_threadpool(
            repository.list_users_by_ids,
            [*job.allowed_recruiters, *job.blocked_recruiters],
        )

        def summarize(ids: list[str]) -> list[RecruiterSummary]:
            return [
                RecruiterSummary(
                    id=users[user_id].user_id,
                    name=users[user_id].name,
                    email=users[user_id].email,
                    company_name=users[user_id].recruitment_firm_name
                    or users[user_id].company_name,
                )
                for user_id in ids
                if user_id in users
            ]

        return JobAccessResponse(
            job_id=job.job_id,
            visibility=job.visibility,
            allowed_recruiters=summarize(job.allowed_recruiters),
            blocked_recruiters=summarize(job.blocked_recruiters),
            message=message,
        )

    @app.get("/jobs/{job_id}/access", response_model=JobAccessResponse, response_model_exclude_none=True)
    async def get_job_access(job_id: str, request: Request) -> JobAccessResponse:
        await require_user(request, action="job_access_get", roles=STAFF)
        return await access_response(await load_job(job_id))

    @app.put("/jobs/{job_id}/access", response_model=JobAccessResponse)
    async def update_job_access(
        job_id: str,
        payload: JobAccessUpdateRequest,
        request: Request,
        response: Response,
    ) -> JobAccessResponse:
        caller = await require_user(request, action="job_access_update", roles=STAFF)
        await load_job(job_id)
        try:
            visibility, allowed, blocked = normalize_access_update(
                payload.visibility,
                payload.allowed_recruiters,
                payload.blocked_recruiters,
            )
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="job_access_update",
                status_code=400,
                detail=str(exc),
            ) from exc
        job = await run_in_threadpool(
            lambda: repository.update_job_access(
                job_id,
                visibility=visibility,
                allowed_recruiters=allowed,
                blocked_recruiters=blocked,
            )
        )
        await audit_ok(
            request,
            response,
            caller,
            action="job_access_update",
            message=f"job_id={job_id}; visibility={visibility}",
        )
        return await access_response(job, "Job access updated")

    @app.get("/jobs/{job_id}/recruiters")
    async def list_job_recruiters(job_id: str, request: Request) -> dict[str, Any]:
        await require_user(request, action="job_recruiters_list", roles=STAFF)
        await load_job(job_id)
        savers = await run_in_threadpool(repository.list_job_savers, job_id)
        recruiters = [
            JobRecruiter(
                id=user.user_id,
                name=user.name,
                email=user.email,
                phone=user.phone or "N/A",
                type=user.role,
                company_name=user.recruitment_firm_name or user.company_name or "N/A",
                saved_at=saved_at,
            )
            for user, saved_at in savers
        ]
        return {"success": True, "recruiters": recruiters}

    # Screening questions

    async def load_managed_job(request: Request, caller: Caller, job_id: str, *, action: str) -> Job:
        job = await load_job(job_id)
        if not await can_manage_job(caller, job):
            raise await reject(
                request,
                caller,
                action=action,
                status_code=403,
                detail="You do not have permission to modify questions for this job",
            )
        return job

    @app.get("/jobs/{job_id}/questions")
    async def list_job_questions(job_id: str, request: Request) -> dict[str, Any]:
        caller = await require_user(request, action="job_questions_list")
        job = await load_job(job_id)
        if not await can_view_job(caller, job):
            raise HTTPException(status_code=403, detail="You do not have access to this job")
        return {"success": True, "questions": job.screening_questions}

    @app.post("/jobs/{job_id}/questions", status_code=201)
    async def add_job_question(
        job_id: str,
        payload: ScreeningQuestionCreateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="job_question_create", roles=JOB_POSTERS)
        job = await load_managed_job(request, caller, job_id, action="job_question_create")
        try:
            question = build_screening_question(
                payload.question,
                payload.question_type,
                required=payload.required,
                options=payload.options,
            )
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="job_question_create",
                status_code=400,
                detail=str(exc),
            ) from exc
        await run_in_threadpool(
            repository.update_job,
            job_id,
            {"screening_questions": [*job.screening_questions, question]},
        )
        await audit_ok(
            request,
            response,
            caller,
            action="job_question_create",
            message=f"job_id={job_id}; question_id={question.id}",
        )
        return {"success": True, "question": question}

    @app.put("/jobs/{job_id}/questions")
    async def update_job_question(
        job_id: str,
        payload: ScreeningQuestionUpdateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="job_question_update", roles=JOB_POSTERS)
        job = await load_managed_job(request, caller, job_id, action="job_question_update")
        index = next(
            (i for i, item in enumerate(job.screening_questions) if item.id == payload.question_id),
            None,
        )
        if index is None:
            raise await reject(
                request,
                caller,
                action="job_question_update",
                status_code=404,
                detail="Question not found for this job",
            )
        try:
            question = apply_question_update(job.screening_questions[index], payload)
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="job_question_update",
                status_code=400,
                detail=str(exc),
            ) from exc
        questions = list(job.screening_questions)
        questions[index] = question
        await run_in_threadpool(repository.update_job, job_id, {"screening_questions": questions})
        await audit_ok(
            request,
            response,
            caller,
            action="job_question_update",
            message=f"job_id={job_id}; question_id={question.id}",
        )
        return {"success": True, "question": question}

    @app.delete("/jobs/{job_id}/questions")
    async def delete_job_question(
        job_id: str,
        request: Request,
        response: Response,
        question_id: str = Query(..., min_length=1),
    ) -> dict[str, Any]:
        caller = await require_user(request, action="job_question_delete", roles=JOB_POSTERS)
        job = await load_managed_job(request, caller, job_id, action="job_question_delete")
        remaining = [item for item in job.screening_questions if item.id != question_id]
        if len(remaining) == len(job.screening_questions):
            raise await reject(
                request,
                caller,
                action="job_question_delete",
                status_code=404,
                detail="Question not found for this job",
            )
        await run_in_threadpool(repository.update_job, job_id, {"screening_questions": remaining})
        await audit_ok(
            request,
            response,
            caller,
            action="job_question_delete",
            message=f"job_id={job_id}; question_id={question_id}",
        )
        return {"success": True, "message": "Question deleted successfully"}

    # Job update posts

    @app.get("/jobs/{job_id}/updates")
    async def list_job_update_posts(job_id: str, request: Request) -> dict[str, Any]:
        caller = await require_user(request, action="job_updates_list")
        job = await load_job(job_id)
        if not await can_view_job(caller, job):
            raise HTTPException(status_code=403, detail="You do not have access to this job")
        updates = await run_in_threadpool(repository.list_job_updates, job_id)
        return {"success": True, "data": updates}

    @app.post("/jobs/{job_id}/updates", status_code=201)
    async def post_job_update(
        job_id: str,
        payload: JobUpdatePostRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="job_update_post")
        if caller.role not in JOB_POSTERS:
            raise await reject(
                request,
                caller,
                action="job_update_post",
                status_code=403,
                detail="You don't have permission to post job updates",
            )
        job = await load_job(job_id)
        if not await can_manage_job(caller, job):
            raise await reject(
                request,
                caller,
                action="job_update_post",
                status_code=403,
                detail="You do not have access to this job",
            )
        try:
            title, content = validate_job_update_post(payload.title, payload.content)
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="job_update_post",
                status_code=400,
                detail=str(exc),
            ) from exc
        update = await run_in_threadpool(
            lambda: repository.create_job_update(job_id, title=title, content=content, posted_by=caller.user)
        )
        await audit_ok(
            request,
            response,
            caller,
            action="job_update_post",
            message=f"job_id={job_id}; update_id={update.update_id}",
        )
        preview = preview_text(content)
        savers = await run_in_threadpool(repository.list_job_savers, job_id)
        for recruiter, _ in savers:
            await notify(
                recipient_id=recruiter.user_id,
                type=NOTIFICATION_JOB_MODIFICATION,
                title=f"Job Update: {title}",
                message=f'New update posted for "{job.title}" by {caller.user.name}: {preview}',
                job_id=job_id,
                job_title=job.title,
                metadata={
                    "update_id": update.update_id,
                    "update_title": title,
                    "update_content": preview,
                    "full_update_content": content,
                    "posted_by_name": caller.user.name,
                },
            )
        LOGGER.info(
            json.dumps(
                {
                    "event": "job_update_posted",
                    "job_id": job_id,
                    "update_id": update.update_id,
                    "notified": len(savers),
                }
            )
        )
        return {"success": True, "message": "Job update posted successfully", "data": update}

    # Recruiter saved jobs

    @app.get("/recruiter-jobs", response_model=SavedJobsResponse)
    async def list_saved_jobs(request: Request) -> SavedJobsResponse:
        caller = await require_user(request, action="saved_jobs_list", roles=(ROLE_RECRUITER,))
        saved = await run_in_threadpool(repository.list_saved_jobs, caller.user_id)
        jobs = await run_in_threadpool(
            lambda: repository.list_jobs(job_ids=[entry.job_id for entry in saved])
        )
        jobs_by_id = {job.job_id: job for job in jobs}
        entries = [
            SavedJobEntry(
                job=transform_job_for_user(jobs_by_id[entry.job_id], ROLE_RECRUITER),
                added_at=entry.added_at,
            )
            for entry in saved
            if entry.job_id in jobs_by_id and has_job_access(jobs_by_id[entry.job_id], caller.user_id)
        ]
        return SavedJobsResponse(saved_jobs=entries)

    @app.post("/recruiter-jobs")
    async def save_job(
        payload: SavedJobRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="saved_job_add", roles=(ROLE_RECRUITER,))
        if not payload.job_id:
            raise await reject(
                request,
                caller,
                action="saved_job_add",
                status_code=400,
                detail="Job ID is required",
            )
        job = await run_in_threadpool(repository.get_job, payload.job_id)
        if job is None:
            raise await reject(
                request,
                caller,
                action="saved_job_add",
                status_code=404,
                detail="Job not found",
            )
        if not has_job_access(job, caller.user_id):
            raise await reject(
                request,
                caller,
                action="saved_job_add",
                status_code=403,
                detail="You do not have access to this job",
            )
        saved, outcome = await run_in_threadpool(repository.save_job, caller.user_id, job.job_id)
        if outcome == "created":
            response.status_code = 201
        message = {
            "created": "Job added to saved jobs",
            "reactivated": "Job added to saved jobs",
            "already_saved": "Job is already in saved jobs",
        }[outcome]
        await audit_ok(
            request,
            response,
            caller,
            action="saved_job_add",
            message=f"job_id={job.job_id}; outcome={outcome}",
        )
        return {"message": message, "saved_job": saved}

    @app.delete("/recruiter-jobs")
    async def remove_saved_job(
        request: Request,
        response: Response,
        job_id: str | None = None,
    ) -> dict[str, str]:
        caller = await require_user(request, action="saved_job_remove", roles=(ROLE_RECRUITER,))
        if not job_id:
            raise await reject(
                request,
                caller,
                action="saved_job_remove",
                status_code=400,
                detail="Job ID is required",
            )
        removed = await run_in_threadpool(repository.remove_saved_job, caller.user_id, job_id)
        if not removed:
            raise await reject(
                request,
                caller,
                action="saved_job_remove",
                status_code=404,
                detail="Saved job not found",
            )
        await audit_ok(request, response, caller, action="saved_job_remove", message=f"job_id={job_id}")
        return {"message": "Job removed from saved jobs"}

    # Candidate pre-checks

    @app.post("/validation/candidate", response_model=CandidateValidationResult)
    async def validate_candidate(
        payload: CandidateValidationRequest,
        request: Request,
    ) -> CandidateValidationResult:
        caller = await require_user(request, action="candidate_validate", roles=RESUME_SUBMITTERS)
        email = payload.email.strip().lower()
        phone = payload.phone.strip()
        job_id = payload.job_id.strip()
        if not email or not phone or not job_id:
            raise await reject(
                request,
                caller,
                action="candidate_validate",
                status_code=400,
                detail="Email, phone, and jobId are required",
            )
        await load_job(job_id)
        result = CandidateValidationResult(is_valid=True)

        by_email = await run_in_threadpool(
            lambda: repository.find_candidate_resume(job_id, field="email", value=email)
        )
        if by_email is not None:
            result.errors.append(
                {
                    "field": "email",
                    "message": "This is a Duplicate application for this job position, please do not submit again",
                    "details": {
                        "candidate_name": by_email.candidate_name,
                        "submitted_at": by_email.created_at,
                    },
                }
            )
        else:
            elsewhere = await run_in_threadpool(
                lambda: repository.count_candidate_applications_elsewhere(job_id, field="email", value=email)
            )
            if elsewhere:
                result.warnings.append(
                    {
                        "field": "email",
                        "message": f"This candidate has applied to {elsewhere} other job position(s)",
                        "count": elsewhere,
                    }
                )

        by_phone = await run_in_threadpool(
            lambda: repository.find_candidate_resume(job_id, field="phone", value=phone)
        )
        if by_phone is not None:
            result.errors.append(
                {
                    "field": "phone",
                    "message": "This phone number has already been used to apply for this job position",
                    "details": {
                        "candidate_name": by_phone.candidate_name,
                        "submitted_at": by_phone.created_at,
                    },
                }
            )
        else:
            elsewhere = await run_in_threadpool(
                lambda: repository.count_candidate_applications_elsewhere(job_id, field="phone", value=phone)
            )
            if elsewhere:
                result.warnings.append(
                    {
                        "field": "phone",
                        "message": f"This phone number is associated with {elsewhere} other job application(s)",
                        "count": elsewhere,
                    }
                )

        result.is_valid = not result.errors
        return result

    # Resumes

    @app.post("/resumes", response_model=Resume, status_code=201)
    async def submit_resume(
        payload: ResumeCreateRequest,
        request: Request,
        response: Response,
    ) -> Resume:
        caller = await require_user(request, action="resume_submit", roles=RESUME_SUBMITTERS)
        job = await run_in_threadpool(repository.get_job, payload.job_id)
        if job is None:
            raise await reject(
                request,
                caller,
                action="resume_submit",
                status_code=404,
                detail="Job not found",
            )
        if caller.role == ROLE_RECRUITER and not has_job_access(job, caller.user_id):
            raise await reject(
                request,
                caller,
                action="resume_submit",
                status_code=403,
                detail="You do not have access to this job",
            )
        answered = {
            answer.question_id for answer in payload.screening_answers if answer.answer.strip()
        }
        if any(
            question.required and question.id not in answered
            for question in job.screening_questions
        ):
            raise await reject(
                request,
                caller,
                action="resume_submit",
                status_code=400,
                detail="All required screening questions must be answered",
            )
        try:
            resume = await run_in_threadpool(
                lambda: repository.create_resume(payload, submitted_by=caller.user_id)
            )
        except DuplicateRecordError as exc:
            raise await reject(
                request,
                caller,
                action="resume_submit",
                status_code=409,
                detail=str(exc),
            ) from exc
        if caller.role == ROLE_RECRUITER:
            await run_in_threadpool(repository.save_job, caller.user_id, job.job_id)
        await audit_ok(
            request,
            response,
            caller,
            action="resume_submit",
            message=f"resume_id={resume.resume_id}; job_id={job.job_id}",
        )
        return resume

    @app.get("/resumes/my-submissions")
    async def my_submissions(
        request: Request,
        job_id: str | None = None,
        status: str | None = None,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="resume_my_submissions", roles=(ROLE_RECRUITER,))
        resumes, total = await run_in_threadpool(
            lambda: repository.list_resumes(
                job_ids=[job_id] if job_id else None,
                submitted_by=caller.user_id,
                status=status,
            )
        )
        return {"resumes": resumes, "total": total}

    @app.get("/resumes/all-submissions", response_model=ResumePage)
    async def all_submissions(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        status: str | None = None,
    ) -> ResumePage:
        await require_user(request, action="resume_all_submissions", roles=STAFF)
        resumes, total = await run_in_threadpool(
            lambda: repository.list_resumes(status=status, page=page, limit=limit)
        )
        return ResumePage(
            resumes=resumes,
            total=total,
            page=page,
            limit=limit,
            pages=page_count(total, limit),
        )

    @app.get("/resumes/job/{job_id}")
    async def resumes_for_job(job_id: str, request: Request) -> dict[str, Any]:
        caller = await require_user(request, action="resume_job_list")
        job = await load_job(job_id)
        submitted_by: str | None = None
        if caller.role == ROLE_RECRUITER:
            submitted_by = caller.user_id
        elif not await can_manage_job(caller, job):
            raise HTTPException(status_code=403, detail="You do not have access to this job")
        resumes, total = await run_in_threadpool(
            lambda: repository.list_resumes(job_ids=[job_id], submitted_by=submitted_by)
        )
        return {"resumes": resumes, "total": total}

    @app.get("/resumes/{resume_id}", response_model=Resume)
    async def get_resume(resume_id: str, request: Request) -> Resume:
        caller = await require_user(request, action="resume_get")
        resume, _ = await load_resume_for(caller, resume_id)
        return resume

    @app.put("/resumes/{resume_id}", response_model=Resume)
    async def update_resume(
        resume_id: str,
        payload: ResumeUpdateRequest,
        request: Request,
        response: Response,
    ) -> Resume:
        caller = await require_user(request, action="resume_update")
        resume = await run_in_threadpool(repository.get_resume, resume_id)
        if resume is None:
            raise await reject(
                request,
                caller,
                action="resume_update",
                status_code=404,
                detail="Resume not found",
            )
        if not caller.is_staff and resume.submitted_by != caller.user_id:
            raise await reject(
                request,
                caller,
                action="resume_update",
                status_code=403,
                detail="You can only edit resumes you submitted",
            )
        updates = {
            field_name: getattr(payload, field_name)
            for field_name in payload.model_fields_set
            if getattr(payload, field_name) is not None
        }
        try:
            updated = await run_in_threadpool(repository.update_resume, resume_id, updates)
        except DuplicateRecordError as exc:
            raise await reject(
                request,
                caller,
                action="resume_update",
                status_code=409,
                detail=str(exc),
            ) from exc
        await audit_ok(request, response, caller, action="resume_update", message=f"resume_id={resume_id}")
        return updated

    @app.put("/resumes/{resume_id}/status", response_model=ResumeStatusUpdateResponse)
    async def update_resume_status(
        resume_id: str,
        payload: ResumeStatusUpdateRequest,
        request: Request,
        response: Response,
    ) -> ResumeStatusUpdateResponse:
        caller = await require_user(request, action="resume_status_update", roles=RESUME_REVIEWERS)
        resume = await run_in_threadpool(repository.get_resume, resume_id)
        if resume is None:
            raise await reject(
                request,
                caller,
                action="resume_status_update",
                status_code=404,
                detail="Resume not found",
            )
        job = await run_in_threadpool(repository.get_job, resume.job_id)
        if caller.role == ROLE_COMPANY and (job is None or not await can_manage_job(caller, job)):
            raise await reject(
                request,
                caller,
                action="resume_status_update",
                status_code=403,
                detail="You can only update resumes for your own jobs",
            )
        if payload.status not in RESUME_STATUSES:
            raise await reject(
                request,
                caller,
                action="resume_status_update",
                status_code=400,
                detail={"message": "Invalid status", "valid_statuses": list(RESUME_STATUSES)},
                message=f"status={payload.status}",
            )
        updated, previous = await run_in_threadpool(
            repository.update_resume_status,
            resume_id,
            payload.status,
        )
        await audit_ok(
            request,
            response,
            caller,
            action="resume_status_update",
            message=f"resume_id={resume_id}; status={previous}->{payload.status}",
        )
        if previous != payload.status and updated.submitted_by != caller.user_id:
            await notify(
                recipient_id=updated.submitted_by,
                type=NOTIFICATION_CANDIDATE_STATUS_CHANGE,
                title="Candidate status updated",
                message=(
                    f"{updated.candidate_name} for {updated.job_title or 'a job'} "
                    f"moved from {previous} to {payload.status}"
                ),
                job_id=updated.job_id,
                resume_id=resume_id,
                candidate_name=updated.candidate_name,
                job_title=updated.job_title,
                metadata={"previous_status": previous, "new_status": payload.status},
            )
        return ResumeStatusUpdateResponse(
            success=True,
            resume=updated,
            message=f"Resume status updated from {previous} to {payload.status}",
        )

    @app.post("/resumes/{resume_id}/notes", response_model=Resume, status_code=201)
    async def add_resume_note(
        resume_id: str,
        payload: ResumeNoteCreateRequest,
        request: Request,
        response: Response,
    ) -> Resume:
        caller = await require_user(request, action="resume_note_add")
        resume, _ = await load_resume_for(caller, resume_id)
        note = payload.note.strip()
        if not note:
            raise await reject(
                request,
                caller,
                action="resume_note_add",
                status_code=400,
                detail="Note is required",
            )
        updated = await run_in_threadpool(
            lambda: repository.add_resume_note(resume_id, user=caller.user, note=note)
        )
        await audit_ok(request, response, caller, action="resume_note_add", message=f"resume_id={resume_id}")
        if caller.role != ROLE_RECRUITER and resume.submitted_by != caller.user_id:
            await notify(
                recipient_id=resume.submitted_by,
                type=NOTIFICATION_NEW_NOTE_COMMENT,
                title="New note on candidate",
                message=f"{caller.user.name} added a note on {resume.candidate_name}",
                job_id=resume.job_id,
                resume_id=resume_id,
                candidate_name=resume.candidate_name,
                job_title=resume.job_title,
                metadata={"note": note},
            )
        return updated

    # In-app notifications

    @app.get("/notifications", response_model=NotificationListResponse)
    async def list_notifications(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=20, ge=1, le=100),
        unread_only: bool = False,
        type: str | None = None,
    ) -> NotificationListResponse:
        caller = await require_user(request, action="notification_list", roles=(ROLE_RECRUITER,))
        notifications, total = await run_in_threadpool(
            lambda: repository.list_notifications(
                caller.user_id,
                unread_only=unread_only,
                type=type,
                page=page,
                limit=limit,
            )
        )
        unread = await run_in_threadpool(repository.count_unread_notifications, caller.user_id)
        total_pages = page_count(total, limit)
        return NotificationListResponse(
            notifications=notifications,
            pagination=NotificationPagination(
                current_page=page,
                total_pages=total_pages,
                total_count=total,
                has_next_page=page < total_pages,
                has_prev_page=page > 1,
            ),
            unread_count=unread,
        )

    @app.get("/notifications/unread-count")
    async def unread_notification_count(request: Request) -> dict[str, int]:
        caller = await require_user(request, action="notification_unread_count")
        count = await run_in_threadpool(repository.count_unread_notifications, caller.user_id)
        return {"unread_count": count}

    @app.post("/notifications", status_code=201)
    async def create_notification(
        payload: NotificationCreateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="notification_create", roles=STAFF)
        if payload.type not in NOTIFICATION_TYPES:
            raise await reject(
                request,
                caller,
                action="notification_create",
                status_code=400,
                detail="Invalid notification type",
            )
        recipient = await run_in_threadpool(repository.get_user, payload.recipient_id)
        if recipient is None:
            raise await reject(
                request,
                caller,
                action="notification_create",
                status_code=404,
                detail="Recipient not found",
            )
        notification = await run_in_threadpool(
            lambda: repository.create_notification(**payload.model_dump())
        )
        await audit_ok(
            request,
            response,
            caller,
            action="notification_create",
            message=f"notification_id={notification.notification_id}",
        )
        return {"message": "Notification created", "notification": notification}

    @app.put("/notifications")
    async def mark_notifications_read(
        payload: NotificationMarkReadRequest,
        request: Request,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="notification_mark_read", roles=(ROLE_RECRUITER,))
        if not payload.mark_all and not payload.notification_ids:
            raise HTTPException(status_code=400, detail="notification_ids or mark_all is required")
        updated = await run_in_threadpool(
            repository.mark_notifications_read,
            caller.user_id,
            None if payload.mark_all else payload.notification_ids,
        )
        return {"message": "Notifications marked as read", "updated_count": updated}

    @app.delete("/notifications")
    async def delete_notifications(
        request: Request,
        payload: NotificationDeleteRequest = Body(...),
    ) -> dict[str, Any]:
        caller = await require_user(request, action="notification_delete")
        deleted = await run_in_threadpool(
            repository.delete_notifications,
            caller.user_id,
            payload.notification_ids,
        )
        return {"message": "Notifications deleted", "deleted_count": deleted}

    @app.post("/admin/notifications/cleanup")
    async def cleanup_notifications(
        request: Request,
        response: Response,
        days_old: int = Query(default=30, ge=1, le=3650),
    ) -> dict[str, Any]:
        caller = await require_user(request, action="notification_cleanup", roles=(ROLE_ADMIN,))
        deleted = await run_in_threadpool(
            repository.cleanup_notifications,
            utc_iso_days_ago(days_old),
        )
        await audit_ok(
            request,
            response,
            caller,
            action="notification_cleanup",
            message=f"days_old={days_old}; deleted={deleted}",
        )
        return {"message": f"Deleted {deleted} old notifications", "deleted_count": deleted}

    # FAQs

    @app.get("/faqs")
    async def list_faqs(
        request: Request,
        admin: bool = False,
        category: str | None = None,
    ) -> dict[str, list[Faq]]:
        if admin:
            await require_user(request, action="faq_admin_list", roles=STAFF)
        faqs = await run_in_threadpool(
            lambda: repository.list_faqs(include_inactive=admin, category=category)
        )
        return {"faqs": faqs}

    @app.post("/faqs", status_code=201)
    async def create_faq(
        payload: FaqCreateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Faq]:
        caller = await require_user(request, action="faq_create", roles=STAFF)
        question = payload.question.strip()
        answer = payload.answer.strip()
        if not question or not answer:
            raise await reject(
                request,
                caller,
                action="faq_create",
                status_code=400,
                detail="Question and answer are required",
            )
        faq = await run_in_threadpool(
            lambda: repository.create_faq(
                payload,
                question=question,
                answer=answer,
                created_by=caller.user_id,
            )
        )
        await audit_ok(request, response, caller, action="faq_create", message=f"faq_id={faq.faq_id}")
        return {"faq": faq}

    @app.get("/faqs/{faq_id}")
    async def get_faq(faq_id: str) -> dict[str, Faq]:
        faq = await run_in_threadpool(repository.get_faq, faq_id)
        if faq is None:
            raise HTTPException(status_code=404, detail="FAQ not found")
        return {"faq": faq}

    @app.put("/faqs/{faq_id}")
    async def update_faq(
        faq_id: str,
        payload: FaqUpdateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Faq]:
        caller = await require_user(request, action="faq_update")
        allowed = caller.role == ROLE_ADMIN
        if caller.role == ROLE_INTERNAL:
            flags = await run_in_threadpool(
                repository.get_setting_values,
                [FAQ_INTERNAL_EDIT_ENABLED],
            )
            allowed = bool(flags.get(FAQ_INTERNAL_EDIT_ENABLED, False))
        if not allowed:
            raise await reject(
                request,
                caller,
                action="faq_update",
                status_code=403,
                detail="You do not have permission to edit FAQs",
            )
        updates = payload.model_dump(exclude_none=True)
        for field_name in ("question", "answer"):
            if field_name in updates:
                updates[field_name] = updates[field_name].strip()
                if not updates[field_name]:
                    raise await reject(
                        request,
                        caller,
                        action="faq_update",
                        status_code=400,
                        detail="Question and answer are required",
                    )
        try:
            faq = await run_in_threadpool(
                lambda: repository.update_faq(faq_id, updates, updated_by=caller.user_id)
            )
        except KeyError:
            raise await reject(
                request,
                caller,
                action="faq_update",
                status_code=404,
                detail="FAQ not found",
            ) from None
        await audit_ok(request, response, caller, action="faq_update", message=f"faq_id={faq_id}")
        return {"faq": faq}

    @app.delete("/faqs/{faq_id}")
    async def delete_faq(faq_id: str, request: Request, response: Response) -> dict[str, str]:
        caller = await require_user(request, action="faq_delete", roles=STAFF)
        deleted = await run_in_threadpool(repository.delete_faq, faq_id)
        if not deleted:
            raise await reject(
                request,
                caller,
                action="faq_delete",
                status_code=404,
                detail="FAQ not found",
            )
        await audit_ok(request, response, caller, action="faq_delete", message=f"faq_id={faq_id}")
        return {"message": "FAQ deleted successfully"}

    # Settings

    @app.get("/admin/settings")
    async def list_settings(request: Request) -> dict[str, Any]:
        await require_user(request, action="settings_list", roles=(ROLE_ADMIN,))
        entries = await run_in_threadpool(repository.list_settings)
        return {
            "settings": {
                key: entry.model_dump(exclude={"key"}) for key, entry in entries.items()
            }
        }

    @app.put("/admin/settings")
    async def upsert_setting(
        payload: SettingUpdateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="setting_update", roles=(ROLE_ADMIN,))
        key = payload.key.strip()
        if not key or payload.value is None:
            raise await reject(
                request,
                caller,
                action="setting_update",
                status_code=400,
                detail="Key and value are required",
            )
        entry = await run_in_threadpool(
            lambda: repository.upsert_setting(
                key,
                payload.value,
                description=payload.description,
                updated_by=caller.user_id,
            )
        )
        await audit_ok(request, response, caller, action="setting_update", message=f"key={key}")
        return {"message": "Setting updated successfully", "setting": entry}

    # Email notification settings

    @app.get("/admin/email-settings")
    async def get_email_settings(request: Request) -> dict[str, Any]:
        caller = await require_user(request, action="email_settings_get", roles=(ROLE_ADMIN,))
        await run_in_threadpool(
            lambda: repository.initialize_settings(
                EMAIL_SETTING_DEFAULTS,
                EMAIL_SETTING_DESCRIPTIONS,
                updated_by=caller.user_id,
            )
        )
        return {"settings": await load_email_settings()}

    @app.put("/admin/email-settings")
    async def update_email_settings(
        payload: EmailSettingsUpdateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="email_settings_update", roles=(ROLE_ADMIN,))
        if not payload.settings:
            raise await reject(
                request,
                caller,
                action="email_settings_update",
                status_code=400,
                detail="Settings object is required",
            )
        errors = validate_email_settings(payload.settings)
        if errors:
            raise await reject(
                request,
                caller,
                action="email_settings_update",
                status_code=400,
                detail={"message": "Invalid email settings", "errors": errors},
                message=f"invalid={','.join(sorted(errors))}",
            )
        for key, value in payload.settings.items():
            await run_in_threadpool(
                lambda key=key, value=value: repository.upsert_setting(
                    key,
                    value,
                    description=EMAIL_SETTING_DESCRIPTIONS[key],
                    updated_by=caller.user_id,
                )
            )
        await audit_ok(
            request,
            response,
            caller,
            action="email_settings_update",
            message=f"keys={','.join(sorted(payload.settings))}",
        )
        return {
            "settings": await load_email_settings(),
            "message": "Email settings updated successfully",
        }

    # Email notifications

    async def end_of_day_state() -> tuple[dict[str, Any], int, bool, bool]:
        settings = await load_email_settings()
        since = start_of_utc_day().isoformat()
        jobs_today = await run_in_threadpool(repository.count_jobs_created_since, since)
        summary_sent = await run_in_threadpool(
            lambda: repository.has_email_notification(
                type=EMAIL_TYPE_END_OF_DAY,
                since=since,
                statuses=("sent",),
            )
        )
        batch_activity = await run_in_threadpool(
            lambda: repository.has_email_notification(
                type=EMAIL_TYPE_JOB_BATCH,
                since=since,
                statuses=("sent", "pending"),
            )
        )
        return settings, jobs_today, summary_sent, batch_activity

    @app.post("/cron/end-of-day-emails")
    async def run_end_of_day_emails(request: Request, response: Response) -> dict[str, Any]:
        auth_subject, _ = await require_cron(request, action="end_of_day_emails")
        settings, jobs_today, summary_sent, batch_activity = await end_of_day_state()
        decision = decide_end_of_day(
            settings,
            jobs_today=jobs_today,
            summary_sent_today=summary_sent,
            batch_activity_today=batch_activity,
        )
        recipient_count = 0
        sent = False
        message = decision.message
        if decision.send:
            jobs = await run_in_threadpool(
                lambda: repository.list_jobs(
                    statuses=("ACTIVE",),
                    created_after=start_of_utc_day().isoformat(),
                )
            )
            recipient_count, sent = await send_digest(EMAIL_TYPE_END_OF_DAY, jobs)
            if not sent:
                message = "End-of-day summary failed and will be retried"
        event_id = await write_audit_event(
            request,
            action="end_of_day_emails",
            status="ok",
            message=f"sent={sent}; jobs={jobs_today}",
            auth_subject=auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return {
            "message": message,
            "job_count": jobs_today,
            "recipient_count": recipient_count,
            "sent": sent,
            "email_type": EMAIL_TYPE_END_OF_DAY,
        }

    @app.get("/cron/end-of-day-emails")
    async def end_of_day_status(request: Request) -> dict[str, Any]:
        await require_cron(request, action="end_of_day_status")
        settings, jobs_today, summary_sent, batch_activity = await end_of_day_state()
        return {
            "enabled": bool(settings[END_OF_DAY_NOTIFICATIONS])
            and bool(settings[EMAIL_NOTIFICATIONS_ENABLED]),
            "end_of_day_time": settings[END_OF_DAY_TIME],
            "jobs_today": jobs_today,
            "summary_sent_today": summary_sent,
            "batch_activity_today": batch_activity,
            "timestamp": now_utc_iso(),
        }

    @app.post("/cron/recent-jobs-emails")
    async def run_recent_jobs_emails(
        request: Request,
        response: Response,
        days: int = Query(default=1),
    ) -> dict[str, Any]:
        auth_subject, is_cron = await require_cron(request, action="recent_jobs_emails")
        if days not in RECENT_JOBS_FLAGS:
            raise HTTPException(status_code=400, detail="days must be 1 or 3")
        if is_cron:
            flags = await run_in_threadpool(
                repository.get_setting_values,
                [RECENT_JOBS_FLAGS[days]],
            )
            if not flags.get(RECENT_JOBS_FLAGS[days], False):
                return {
                    "message": f"Automatic recent jobs email for {days} day(s) is disabled",
                    "job_count": 0,
                    "recipient_count": 0,
                    "sent": False,
                    "email_type": EMAIL_TYPE_RECENT_JOBS,
                }
        jobs = await run_in_threadpool(
            lambda: repository.list_jobs(
                statuses=ACCESSIBLE_JOB_STATUSES,
                created_after=utc_iso_days_ago(days),
            )
        )
        if not jobs:
            return {
                "message": f"No jobs posted in the last {days} day(s)",
                "job_count": 0,
                "recipient_count": 0,
                "sent": False,
                "email_type": EMAIL_TYPE_RECENT_JOBS,
            }
        recipient_count, sent = await send_digest(EMAIL_TYPE_RECENT_JOBS, jobs)
        event_id = await write_audit_event(
            request,
            action="recent_jobs_emails",
            status="ok",
            message=f"days={days}; sent={sent}; jobs={len(jobs)}",
            auth_subject=auth_subject,
        )
        response.headers["x-audit-event-id"] = str(event_id)
        return {
            "message": "Recent jobs email sent" if sent else "Recent jobs email failed and will be retried",
            "job_count": len(jobs),
            "recipient_count": recipient_count,
            "sent": sent,
            "email_type": EMAIL_TYPE_RECENT_JOBS,
        }

    @app.post("/admin/email-notifications/retry")
    async def retry_email_notifications(request: Request, response: Response) -> dict[str, Any]:
        caller = await require_user(request, action="email_retry", roles=(ROLE_ADMIN,))
        due = await run_in_threadpool(repository.list_due_email_notifications, now_utc_iso())
        succeeded = 0
        for record in due:
            jobs = await run_in_threadpool(lambda record=record: repository.list_jobs(job_ids=record.job_ids))
            if await deliver_digest(record.type, record.notification_id, jobs):
                succeeded += 1
        await audit_ok(
            request,
            response,
            caller,
            action="email_retry",
            message=f"processed={len(due)}; succeeded={succeeded}",
        )
        return {
            "message": f"Processed {len(due)} pending email notifications",
            "processed": len(due),
            "succeeded": succeeded,
            "failed": len(due) - succeeded,
        }

    @app.get("/admin/email-notifications")
    async def list_email_notifications(
        request: Request,
        limit: int = Query(default=50, ge=1, le=500),
    ) -> dict[str, Any]:
        await require_user(request, action="email_notifications_list", roles=(ROLE_ADMIN,))
        records = await run_in_threadpool(repository.list_email_notifications, limit)
        counts = await run_in_threadpool(repository.count_email_notifications_by_status)
        return {"notifications": records, "counts": counts}

    @app.get("/admin/email-analytics")
    async def email_analytics(
        request: Request,
        days: int = Query(default=30, ge=1, le=MAX_ANALYTICS_DAYS),
    ) -> dict[str, Any]:
        await require_user(request, action="email_analytics", roles=(ROLE_ADMIN,))
        now = datetime.now(UTC)
        start = analytics_window_start(days, now=now)
        records = await run_in_threadpool(repository.list_email_notifications_since, start.isoformat())
        return build_email_analytics(records, start=start, end=now, days=days)

    # Email diagnostics

    @app.get("/admin/email-diagnostics")
    async def email_diagnostics(request: Request) -> dict[str, Any]:
        await require_user(request, action="email_diagnostics", roles=(ROLE_ADMIN,))
        try:
            emailer = {"reachable": True, **await app.state.email_dispatcher.status()}
        except EmailDispatchError as exc:
            emailer = {"reachable": False, "error": str(exc)}
        counts = await run_in_threadpool(repository.count_email_notifications_by_status)
        recent = await run_in_threadpool(repository.list_email_notifications, 10)
        return {
            "emailer": emailer,
            "settings": await load_email_settings(),
            "counts": {**counts, "total": sum(counts.values())},
            "recent_notifications": recent,
            "timestamp": now_utc_iso(),
        }

    @app.post("/admin/email-diagnostics")
    async def send_test_email(
        payload: EmailDiagnosticsTestRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="email_test", roles=(ROLE_ADMIN,))
        test_email = payload.test_email.strip()
        if not is_valid_email(test_email):
            raise await reject(
                request,
                caller,
                action="email_test",
                status_code=400,
                detail="Valid test email is required",
            )
        timestamp = now_utc_iso()
        success = await send_best_effort(
            [
                OutboundEmail(
                    to=test_email,
                    subject="SourcingScreen email diagnostics",
                    body=f"This is a test email sent by {caller.user.name} at {timestamp}.",
                    category="diagnostics",
                )
            ],
            context="email_diagnostics",
        )
        await audit_ok(
            request,
            response,
            caller,
            action="email_test",
            message=f"to={test_email}; success={success}",
        )
        return {
            "success": success,
            "message": "Test email queued" if success else "Emailer service unavailable",
            "test_email": test_email,
            "timestamp": timestamp,
        }

    # Support tickets

    @app.post("/support/tickets", status_code=201)
    async def create_ticket(
        payload: TicketCreateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="ticket_create")
        try:
            subject, message = validate_ticket_fields(
                subject=payload.subject,
                message=payload.message,
                category=payload.category,
                priority=payload.priority,
            )
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="ticket_create",
                status_code=400,
                detail=str(exc),
            ) from exc
        window_start = (datetime.now(UTC) - TICKET_RATE_WINDOW).isoformat()
        recent_count, oldest = await run_in_threadpool(
            repository.count_tickets_since,
            caller.user_id,
            window_start,
        )
        if recent_count >= TICKET_RATE_LIMIT:
            raise HTTPException(
                status_code=429,
                detail="Too many tickets created. Please try again later.",
                headers={"Retry-After": str(retry_after_seconds(oldest, TICKET_RATE_WINDOW))},
            )
        ticket = await run_in_threadpool(
            lambda: repository.create_ticket(
                submitted_by=caller.user_id,
                subject=subject,
                message=message,
                category=payload.category,
                priority=payload.priority,
                ticket_number_for=format_ticket_number,
            )
        )
        log_ticket_audit(
            "ticket_created",
            caller,
            ticket.ticket_id,
            ticket_number=ticket.ticket_number,
            priority=ticket.priority,
        )
        await audit_ok(
            request,
            response,
            caller,
            action="ticket_create",
            message=f"ticket_id={ticket.ticket_id}; ticket_number={ticket.ticket_number}",
        )

        settings = await load_support_settings()
        outgoing: list[OutboundEmail] = []
        if settings[SUPPORT_NOTIFICATION_ENABLED]:
            outgoing.append(compose_ticket_alert(ticket, caller.user, settings[SUPPORT_EMAIL]))
        if settings[SUPPORT_AUTO_RESPONSE]:
            outgoing.append(
                OutboundEmail(
                    to=caller.user.email,
                    subject=f"We received your support ticket {ticket.ticket_number}",
                    body=render_support_template(
                        settings[SUPPORT_EMAIL_TEMPLATE],
                        {
                            "userName": caller.user.name,
                            "ticketNumber": ticket.ticket_number,
                            "subject": ticket.subject,
                            "priority": ticket.priority,
                            "category": ticket.category,
                        },
                    ),
                    category="support_auto_response",
                )
            )
        if outgoing:
            await send_best_effort(outgoing, context="ticket_create")
        return {"ticket": ticket, "message": "Support ticket created successfully"}

    @app.get("/support/tickets", response_model=TicketListResponse)
    async def list_tickets(
        request: Request,
        status: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        assigned_to: str | None = None,
        search: str | None = None,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=50),
    ) -> TicketListResponse:
        caller = await require_user(request, action="ticket_list")
        tickets, total = await run_in_threadpool(
            lambda: repository.list_tickets(
                submitted_by=None if caller.is_staff else caller.user_id,
                status=status,
                priority=priority,
                category=category,
                assigned_to=assigned_to,
                search=search,
                page=page,
                limit=limit,
            )
        )
        pages = page_count(total, limit)
        return TicketListResponse(
            tickets=[
                ticket.model_copy(update={"is_overdue": is_ticket_overdue(ticket)})
                for ticket in tickets
            ],
            pagination=TicketPagination(
                total=total,
                page=page,
                limit=limit,
                pages=pages,
                has_next=page < pages,
                has_prev=page > 1,
            ),
        )

    @app.get("/support/tickets/stats")
    async def ticket_stats(request: Request) -> dict[str, Any]:
        await require_user(request, action="ticket_stats", roles=STAFF)
        tickets, _ = await run_in_threadpool(repository.list_tickets)
        first_responses = await run_in_threadpool(repository.first_response_times)
        return compute_ticket_stats(tickets, first_responses)

    @app.get("/support/tickets/assignable-users")
    async def assignable_users(request: Request) -> dict[str, Any]:
        await require_user(request, action="ticket_assignable_users", roles=STAFF)
        users = await run_in_threadpool(repository.list_active_users, STAFF)
        return {
            "users": [
                {"id": user.user_id, "name": user.name, "email": user.email, "role": user.role}
                for user in users
            ]
        }

    @app.get("/support/tickets/{ticket_id}")
    async def get_ticket(ticket_id: str, request: Request) -> dict[str, Any]:
        caller = await require_user(request, action="ticket_get")
        ticket = await load_ticket_for(caller, ticket_id)
        responses = await run_in_threadpool(
            lambda: repository.list_ticket_responses(ticket_id, include_internal=caller.is_staff)
        )
        return {
            "ticket": ticket.model_copy(update={"is_overdue": is_ticket_overdue(ticket)}),
            "responses": responses,
        }

    @app.put("/support/tickets/{ticket_id}")
    async def update_ticket(
        ticket_id: str,
        payload: TicketUpdateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="ticket_update", roles=STAFF)
        ticket = await load_ticket_for(caller, ticket_id)
        allowed_values = {
            "status": TICKET_STATUSES,
            "priority": TICKET_PRIORITIES,
            "category": TICKET_CATEGORIES,
        }
        changes: dict[str, dict[str, Any]] = {}
        for field_name, choices in allowed_values.items():
            value = getattr(payload, field_name)
            if value is None:
                continue
            if value not in choices:
                raise await reject(
                    request,
                    caller,
                    action="ticket_update",
                    status_code=400,
                    detail=f"Invalid {field_name}",
                )
            if value != getattr(ticket, field_name):
                changes[field_name] = {"from": getattr(ticket, field_name), "to": value}
        if "assigned_to" in payload.model_fields_set and payload.assigned_to != ticket.assigned_to:
            if payload.assigned_to is not None:
                assignee = await run_in_threadpool(repository.get_user, payload.assigned_to)
                if assignee is None or assignee.role not in STAFF_ROLES or not assignee.is_active:
                    raise await reject(
                        request,
                        caller,
                        action="ticket_update",
                        status_code=400,
                        detail="Invalid assignee",
                    )
            changes["assigned_to"] = {"from": ticket.assigned_to, "to": payload.assigned_to}
        if not changes:
            return {"message": "No changes detected", "ticket": ticket}

        updates = {field_name: change["to"] for field_name, change in changes.items()}
        if "status" in changes:
            now = now_utc_iso()
            if updates["status"] == STATUS_RESOLVED:
                updates["resolved_at"] = now
            elif updates["status"] == STATUS_CLOSED:
                updates["closed_at"] = now
        updated = await run_in_threadpool(repository.update_ticket, ticket_id, updates)
        log_ticket_audit("ticket_updated", caller, ticket_id, changes=changes)
        await audit_ok(
            request,
            response,
            caller,
            action="ticket_update",
            message=f"ticket_id={ticket_id}; fields={','.join(sorted(changes))}",
        )
        return {"message": "Ticket updated successfully", "ticket": updated, "changes": changes}

    @app.delete("/support/tickets/{ticket_id}")
    async def delete_ticket(ticket_id: str, request: Request, response: Response) -> dict[str, str]:
        caller = await require_user(request, action="ticket_delete", roles=(ROLE_ADMIN,))
        deleted = await run_in_threadpool(repository.delete_ticket, ticket_id)
        if not deleted:
            raise await reject(
                request,
                caller,
                action="ticket_delete",
                status_code=404,
                detail="Ticket not found",
            )
        log_ticket_audit("ticket_deleted", caller, ticket_id)
        await audit_ok(request, response, caller, action="ticket_delete", message=f"ticket_id={ticket_id}")
        return {"message": "Ticket deleted successfully"}

    @app.get("/support/tickets/{ticket_id}/responses")
    async def list_ticket_responses(ticket_id: str, request: Request) -> dict[str, Any]:
        caller = await require_user(request, action="ticket_responses_list")
        ticket = await load_ticket_for(caller, ticket_id)
        responses = await run_in_threadpool(
            lambda: repository.list_ticket_responses(ticket_id, include_internal=caller.is_staff)
        )
        return {
            "responses": responses,
            "ticket_info": {
                "ticket_id": ticket.ticket_id,
                "ticket_number": ticket.ticket_number,
                "subject": ticket.subject,
                "status": ticket.status,
            },
        }

    @app.post("/support/tickets/{ticket_id}/responses", status_code=201)
    async def add_ticket_response(
        ticket_id: str,
        payload: TicketResponseCreateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="ticket_response_add", roles=STAFF)
        ticket = await load_ticket_for(caller, ticket_id)
        try:
            message = validate_response_message(payload.message)
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="ticket_response_add",
                status_code=400,
                detail=str(exc),
            ) from exc
        window_start = (datetime.now(UTC) - RESPONSE_RATE_WINDOW).isoformat()
        recent_count, oldest = await run_in_threadpool(
            repository.count_responses_since,
            caller.user_id,
            window_start,
        )
        if recent_count >= RESPONSE_RATE_LIMIT:
            raise HTTPException(
                status_code=429,
                detail="Too many responses. Please try again later.",
                headers={"Retry-After": str(retry_after_seconds(oldest, RESPONSE_RATE_WINDOW))},
            )
        ticket_response = await run_in_threadpool(
            lambda: repository.add_ticket_response(
                ticket_id,
                responded_by=caller.user_id,
                message=message,
                is_internal=payload.is_internal,
            )
        )
        if ticket.status == STATUS_OPEN and not payload.is_internal:
            ticket = await run_in_threadpool(
                repository.update_ticket,
                ticket_id,
                {"status": STATUS_IN_PROGRESS},
            )
        log_ticket_audit(
            "ticket_response_added",
            caller,
            ticket_id,
            response_id=ticket_response.response_id,
            is_internal=payload.is_internal,
        )
        await audit_ok(
            request,
            response,
            caller,
            action="ticket_response_add",
            message=f"ticket_id={ticket_id}; response_id={ticket_response.response_id}",
        )
        if payload.notify_user and not payload.is_internal:
            submitter = await run_in_threadpool(repository.get_user, ticket.submitted_by)
            if submitter is not None:
                await send_best_effort(
                    [compose_ticket_reply(ticket, submitter, message)],
                    context="ticket_response",
                )
        return {"response": ticket_response, "message": "Response added successfully"}

    # Support settings

    @app.get("/admin/support/settings", response_model=SupportSettings)
    async def get_support_settings(request: Request) -> SupportSettings:
        await require_user(request, action="support_settings_get", roles=(ROLE_ADMIN,))
        return SupportSettings(**await load_support_settings())

    @app.put("/admin/support/settings")
    async def update_support_settings(
        payload: SupportSettingsUpdateRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="support_settings_update", roles=(ROLE_ADMIN,))
        updates = payload.model_dump(exclude_none=True)
        try:
            validate_support_settings(updates)
        except ValueError as exc:
            raise await reject(
                request,
                caller,
                action="support_settings_update",
                status_code=400,
                detail=str(exc),
            ) from exc
        for key, value in updates.items():
            await run_in_threadpool(
                lambda key=key, value=value: repository.upsert_setting(
                    key,
                    value.strip() if isinstance(value, str) else value,
                    description=SUPPORT_SETTING_DESCRIPTIONS[key],
                    updated_by=caller.user_id,
                )
            )
        await audit_ok(
            request,
            response,
            caller,
            action="support_settings_update",
            message=f"keys={','.join(sorted(updates))}",
        )
        return {
            "settings": SupportSettings(**await load_support_settings()),
            "message": "Support settings updated successfully",
        }

    @app.post("/admin/support/settings/test-email")
    async def send_support_test_email(request: Request, response: Response) -> dict[str, Any]:
        caller = await require_user(request, action="support_test_email", roles=(ROLE_ADMIN,))
        settings = await load_support_settings()
        body = render_support_template(
            settings[SUPPORT_EMAIL_TEMPLATE],
            {
                "userName": caller.user.name,
                "ticketNumber": format_ticket_number(datetime.now(UTC).year, 0),
                "subject": "Test support ticket",
                "priority": "Medium",
                "category": "General Inquiry",
            },
        )
        success = await send_best_effort(
            [
                OutboundEmail(
                    to=settings[SUPPORT_EMAIL],
                    subject="SourcingScreen support email test",
                    body=body,
                    category="support_test",
                )
            ],
            context="support_test_email",
        )
        await audit_ok(
            request,
            response,
            caller,
            action="support_test_email",
            message=f"to={settings[SUPPORT_EMAIL]}; success={success}",
        )
        if not success:
            raise HTTPException(status_code=502, detail="Emailer service unavailable")
        return {"success": True, "message": f"Test email sent to {settings[SUPPORT_EMAIL]}"}

    # Payout settings

    @app.get("/recruiter/payout-settings")
    async def get_own_payout_settings(request: Request) -> dict[str, Any]:
        caller = await require_user(request, action="payout_settings_get", roles=(ROLE_RECRUITER,))
        settings = await run_in_threadpool(repository.get_payout_settings, caller.user_id)
        return {"payout_settings": settings}

    @app.post("/recruiter/payout-settings")
    async def save_payout_settings(
        payload: PayoutSettingsRequest,
        request: Request,
        response: Response,
    ) -> dict[str, Any]:
        caller = await require_user(request, action="payout_settings_save", roles=(ROLE_RECRUITER,))
        settings = await run_in_threadpool(
            lambda: repository.upsert_payout_settings(
                caller.user_id,
                preferred_payment_method=payload.preferred_payment_method,
                details=payload.details_payload(),
                updated_by=caller.user_id,
            )
        )
        await audit_ok(
            request,
            response,
            caller,
            action="payout_settings_save",
            message=f"method={payload.preferred_payment_method}",
        )
        return {"message": "Payout settings saved successfully", "payout_settings": settings}

    @app.get("/admin/payout-settings")
    async def admin_list_payout_settings(
        request: Request,
        page: int = Query(default=1, ge=1),
        limit: int = Query(default=10, ge=1, le=100),
    ) -> dict[str, Any]:
        await require_user(request, action="admin_payout_settings_list", roles=(ROLE_ADMIN,))
        settings, total = await run_in_threadpool(
            lambda: repository.list_payout_settings(page=page, limit=limit)
        )
        return {
            "payout_settings": settings,
            "pagination": {
                "total": total,
                "page": page,
                "limit": limit,
                "pages": page_count(total, limit),
            },
        }

    @app.get("/admin/payout-settings/{recruiter_id}")
    async def admin_get_payout_settings(recruiter_id: str, request: Request) -> dict[str, Any]:
        await require_user(request, action="admin_payout_settings_get", roles=(ROLE_ADMIN,))
        settings = await run_in_threadpool(repository.get_payout_settings, recruiter_id)
        if settings is None:
            raise HTTPException(status_code=404, detail="Payout settings not found")
        return {"payout_settings": settings}

    return app


app = create_app()
