from __future__ import annotations

import hashlib
import json
import secrets
import sqlite3
import threading
import uuid
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

from common.utils import now_utc_iso, parse_iso_datetime

from sourcingscreen.email_settings import MAX_EMAIL_RETRIES, next_retry_at
from sourcingscreen.jobs import generate_job_code, legacy_commission, legacy_commission_fields
from sourcingscreen.models import (
    ApiTokenCreateRequest,
    ApiTokenCreateResponse,
    ApiTokenMetadata,
    AuditEvent,
    Commission,
    EmailNotificationRecord,
    ExperienceRange,
    Faq,
    FaqCreateRequest,
    Job,
    JobCreateRequest,
    JobUpdatePost,
    Notification,
    PayoutSettings,
    Resume,
    ResumeCreateRequest,
    ResumeNote,
    SalaryRange,
    SavedJob,
    ScreeningAnswer,
    ScreeningQuestion,
    SettingEntry,
    SupportTicket,
    TicketResponse,
    TokenAuthContext,
    UserCreateRequest,
    UserRecord,
    status_timestamp_field,
)


class DuplicateRecordError(ValueError):
    pass


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode()).hexdigest()


USER_COLUMNS = (
    "name",
    "phone",
    "role",
    "company_name",
    "designation",
    "company_size",
    "recruitment_firm_name",
    "is_primary",
    "is_active",
    "email_verified",
)
JOB_COLUMNS = (
    "title",
    "company_name",
    "status",
    "job_type",
    "country",
    "location",
    "compensation_type",
    "positions",
    "commission_percentage",
    "commission_amount",
    "payment_terms",
    "compensation_details",
    "replacement_terms",
    "description",
    "company_description",
    "sourcing_guidelines",
)
JOB_JSON_COLUMNS = {
    "salary": "salary_json",
    "experience_level": "experience_json",
    "commission": "commission_json",
    "screening_questions": "screening_questions_json",
}
RESUME_COLUMNS = (
    "candidate_name",
    "email",
    "phone",
    "alternative_phone",
    "country",
    "location",
    "current_company",
    "current_designation",
    "total_experience",
    "relevant_experience",
    "current_ctc",
    "expected_ctc",
    "notice_period",
    "qualification",
    "resume_file",
    "remarks",
)
TICKET_COLUMNS = (
    "status",
    "priority",
    "category",
    "assigned_to",
    "resolved_at",
    "closed_at",
    "last_response_at",
)


def _to_json(value: Any) -> str:
    if hasattr(value, "model_dump"):
        return json.dumps(value.model_dump())
    if isinstance(value, list):
        return json.dumps(
            [item.model_dump() if hasattr(item, "model_dump") else item for item in value]
        )
    return json.dumps(value)


class SourcingRepository:
    def __init__(self, database_path: str) -> None:
        self.database_path = Path(database_path)
        self._connection: sqlite3.Connection | None = None
        self._lock = threading.RLock()

    @property
    def connection(self) -> sqlite3.Connection:
        if self._connection is None:
            raise RuntimeError("Database connection is not initialized")
        return self._connection

    def connect(self) -> None:
        with self._lock:
            self.database_path.parent.mkdir(parents=True, exist_ok=True)
            self._connection = sqlite3.connect(self.database_path, check_same_thread=False)
            self._connection.row_factory = sqlite3.Row
            self._connection.execute("PRAGMA foreign_keys=ON")
            self._connection.executescript(
                """
                CREATE TABLE IF NOT EXISTS users (
                    user_id TEXT PRIMARY KEY,
                    name TEXT NOT NULL,
                    email TEXT NOT NULL UNIQUE,
                    phone TEXT,
                    role TEXT NOT NULL,
                    company_name TEXT,
                    designation TEXT,
                    company_size TEXT,
                    recruitment_firm_name TEXT,
                    is_primary INTEGER NOT NULL DEFAULT 1,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    parent_id TEXT,
                    email_verified INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS api_tokens (
                    token_id TEXT PRIMARY KEY,
                    token_hash TEXT NOT NULL UNIQUE,
                    user_id TEXT NOT NULL,
                    name TEXT NOT NULL,
                    notes TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    expires_at TEXT,
                    revoked_at TEXT,
                    last_used_at TEXT,
                    last_used_ip TEXT,
                    last_used_user_agent TEXT
                );

                CREATE TABLE IF NOT EXISTS audit_events (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    occurred_at TEXT NOT NULL,
                    request_id TEXT,
                    method TEXT NOT NULL,
                    path TEXT NOT NULL,
                    action TEXT NOT NULL,
                    source_ip TEXT,
                    user_agent TEXT,
                    auth_subject TEXT,
                    status TEXT NOT NULL,
                    message TEXT
                );

                CREATE TABLE IF NOT EXISTS jobs (
                    job_id TEXT PRIMARY KEY,
                    job_code TEXT NOT NULL UNIQUE,
                    title TEXT NOT NULL,
                    company_name TEXT NOT NULL,
                    posted_by TEXT NOT NULL,
                    status TEXT NOT NULL,
                    job_type TEXT NOT NULL,
                    country TEXT NOT NULL,
                    location TEXT NOT NULL,
                    salary_json TEXT NOT NULL,
                    compensation_type TEXT NOT NULL DEFAULT 'ANNUALLY',
                    positions INTEGER NOT NULL DEFAULT 1,
                    experience_json TEXT NOT NULL DEFAULT '{}',
                    commission_json TEXT NOT NULL DEFAULT '',
                    commission_percentage REAL NOT NULL DEFAULT 0,
                    commission_amount REAL NOT NULL DEFAULT 0,
                    payment_terms TEXT,
                    compensation_details TEXT,
                    replacement_terms TEXT,
                    description TEXT NOT NULL,
                    company_description TEXT,
                    sourcing_guidelines TEXT,
                    screening_questions_json TEXT NOT NULL DEFAULT '[]',
                    visibility TEXT NOT NULL DEFAULT 'ALL',
                    allowed_recruiters_json TEXT NOT NULL DEFAULT '[]',
                    blocked_recruiters_json TEXT NOT NULL DEFAULT '[]',
                    applicant_count INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS saved_jobs (
                    recruiter_id TEXT NOT NULL,
                    job_id TEXT NOT NULL REFERENCES jobs(job_id) ON DELETE CASCADE,
                    is_active INTEGER NOT NULL DEFAULT 1,
                    added_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    PRIMARY KEY (recruiter_id, job_id)
                );

                CREATE TABLE IF NOT EXISTS job_updates (
                    update_id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL REFERENCES jobs(job_id) ON DELETE CASCADE,
                    title TEXT NOT NULL,
                    content TEXT NOT NULL,
                    posted_by TEXT NOT NULL,
                    posted_by_name TEXT NOT NULL,
                    posted_by_role TEXT NOT NULL,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS resumes (
                    resume_id TEXT PRIMARY KEY,
                    job_id TEXT NOT NULL REFERENCES jobs(job_id) ON DELETE CASCADE,
                    submitted_by TEXT NOT NULL,
                    candidate_name TEXT NOT NULL,
                    email TEXT NOT NULL,
                    phone TEXT NOT NULL,
                    alternative_phone TEXT,
                    country TEXT NOT NULL,
                    location TEXT NOT NULL,
                    current_company TEXT NOT NULL,
                    current_designation TEXT NOT NULL,
                    total_experience TEXT NOT NULL,
                    relevant_experience TEXT NOT NULL,
                    current_ctc TEXT NOT NULL,
                    expected_ctc TEXT NOT NULL,
                    notice_period TEXT NOT NULL,
                    qualification TEXT NOT NULL,
                    resume_file TEXT NOT NULL,
                    remarks TEXT,
                    status TEXT NOT NULL,
                    status_timestamps_json TEXT NOT NULL DEFAULT '{}',
                    screening_answers_json TEXT NOT NULL DEFAULT '[]',
                    notes_json TEXT NOT NULL DEFAULT '[]',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    UNIQUE (job_id, email),
                    UNIQUE (job_id, phone)
                );

                CREATE TABLE IF NOT EXISTS notifications (
                    notification_id TEXT PRIMARY KEY,
                    recipient_id TEXT NOT NULL,
                    type TEXT NOT NULL,
                    title TEXT NOT NULL,
                    message TEXT NOT NULL,
                    is_read INTEGER NOT NULL DEFAULT 0,
                    job_id TEXT,
                    resume_id TEXT,
                    candidate_name TEXT,
                    job_title TEXT,
                    metadata_json TEXT NOT NULL DEFAULT '{}',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE INDEX IF NOT EXISTS idx_notifications_recipient
                    ON notifications (recipient_id, created_at);

                CREATE TABLE IF NOT EXISTS faqs (
                    faq_id TEXT PRIMARY KEY,
                    question TEXT NOT NULL,
                    answer TEXT NOT NULL,
                    category TEXT NOT NULL DEFAULT 'General',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    sort_order INTEGER NOT NULL DEFAULT 0,
                    created_by TEXT,
                    updated_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS settings (
                    key TEXT PRIMARY KEY,
                    value_json TEXT NOT NULL,
                    description TEXT,
                    updated_by TEXT,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS email_notifications (
                    notification_id TEXT PRIMARY KEY,
                    recruiter_id TEXT,
                    type TEXT NOT NULL,
                    sent_date TEXT,
                    job_count INTEGER NOT NULL DEFAULT 0,
                    job_ids_json TEXT NOT NULL DEFAULT '[]',
                    email_sent INTEGER NOT NULL DEFAULT 0,
                    status TEXT NOT NULL DEFAULT 'pending',
                    recipient_count INTEGER NOT NULL DEFAULT 0,
                    error_message TEXT,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    next_retry_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS support_tickets (
                    ticket_id TEXT PRIMARY KEY,
                    ticket_number TEXT NOT NULL UNIQUE,
                    subject TEXT NOT NULL,
                    message TEXT NOT NULL,
                    category TEXT NOT NULL,
                    priority TEXT NOT NULL,
                    status TEXT NOT NULL,
                    submitted_by TEXT NOT NULL,
                    assigned_to TEXT,
                    resolved_at TEXT,
                    closed_at TEXT,
                    last_response_at TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS ticket_responses (
                    response_id TEXT PRIMARY KEY,
                    ticket_id TEXT NOT NULL REFERENCES support_tickets(ticket_id) ON DELETE CASCADE,
                    message TEXT NOT NULL,
                    responded_by TEXT NOT NULL,
                    is_internal INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL
                );

                CREATE TABLE IF NOT EXISTS payout_settings (
                    user_id TEXT PRIMARY KEY,
                    preferred_payment_method TEXT NOT NULL,
                    details_json TEXT NOT NULL DEFAULT '{}',
                    is_active INTEGER NOT NULL DEFAULT 1,
                    last_updated_by TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                );
                """
            )
            self._ensure_jobs_columns()
            self._connection.commit()

    def _ensure_jobs_columns(self) -> None:
        column_rows = self.connection.execute("PRAGMA table_info(jobs)").fetchall()
        existing = {row["name"] for row in column_rows}
        required_definitions = {
            "commission_json": "TEXT NOT NULL DEFAULT ''",
            "screening_questions_json": "TEXT NOT NULL DEFAULT '[]'",
            "visibility": "TEXT NOT NULL DEFAULT 'ALL'",
            "allowed_recruiters_json": "TEXT NOT NULL DEFAULT '[]'",
            "blocked_recruiters_json": "TEXT NOT NULL DEFAULT '[]'",
            "applicant_count": "INTEGER NOT NULL DEFAULT 0",
        }
        for column_name, definition in required_definitions.items():
            if column_name in existing:
                continue
            self.connection.execute(f"ALTER TABLE jobs ADD COLUMN {column_name} {definition}")

    def close(self) -> None:
        with self._lock:
            if self._connection is None:
                return
            self._connection.close()
            self._connection = None

    def _update_columns(
        self,
        table: str,
        key_column: str,
        key: str,
        columns: dict[str, Any],
    ) -> int:
        assignments = ", ".join(f"{column} = ?" for column in columns)
        cursor = self.connection.execute(
            f"UPDATE {table} SET {assignments} WHERE {key_column} = ?",
            (*columns.values(), key),
        )
        return cursor.rowcount

    # Users

    def create_user(self, payload: UserCreateRequest) -> UserRecord:
        with self._lock:
            now = now_utc_iso()
            user_id = str(uuid.uuid4())
            try:
                self.connection.execute(
                    """
                    INSERT INTO users (
                        user_id,
                        name,
                        email,
                        phone,
                        role,
                        company_name,
                        designation,
                        company_size,
                        recruitment_firm_name,
                        is_primary,
                        is_active,
                        parent_id,
                        email_verified,
                        created_at,
                        updated_at
                    )
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (
                        user_id,
                        payload.name.strip(),
                        str(payload.email).lower(),
                        payload.phone,
                        payload.role,
                        payload.company_name,
                        payload.designation,
                        payload.company_size,
                        payload.recruitment_firm_name,
                        int(payload.is_primary),
                        int(payload.is_active),
                        payload.parent_id,
                        int(payload.email_verified),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateRecordError("User already exists") from exc
            self.connection.commit()
            return self.get_user_or_raise(user_id)

    def ensure_admin_user(self, *, email: str, name: str) -> UserRecord:
        with self._lock:
            existing = self.get_user_by_email(email)
            if existing is not None:
                return existing
            return self.create_user(
                UserCreateRequest(
                    name=name,
                    email=email,
                    phone="0000000000",
                    role="ADMIN",
                    email_verified=True,
                )
            )

    def get_user_or_raise(self, user_id: str) -> UserRecord:
        user = self.get_user(user_id)
        if user is None:
            raise KeyError(f"Unknown user_id: {user_id}")
        return user

    def get_user(self, user_id: str) -> UserRecord | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM users WHERE user_id = ?",
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_user(row)

    def get_user_by_email(self, email: str) -> UserRecord | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM users WHERE email = ?",
                (email.strip().lower(),),
            ).fetchone()
            if row is None:
                return None
            return self._to_user(row)

    def update_user(self, user_id: str, updates: dict[str, Any]) -> UserRecord:
        with self._lock:
            columns = {
                column: int(value) if isinstance(value, bool) else value
                for column, value in updates.items()
                if column in USER_COLUMNS
            }
            if columns:
                columns["updated_at"] = now_utc_iso()
                if self._update_columns("users", "user_id", user_id, columns) == 0:
                    raise KeyError(f"Unknown user_id: {user_id}")
                self.connection.commit()
            return self.get_user_or_raise(user_id)

    def delete_user(self, user_id: str) -> int:
        with self._lock:
            self.connection.execute(
                """
                DELETE FROM api_tokens
                WHERE user_id IN (SELECT user_id FROM users WHERE user_id = ? OR parent_id = ?)
                """,
                (user_id, user_id),
            )
            cursor = self.connection.execute(
                "DELETE FROM users WHERE user_id = ? OR parent_id = ?",
                (user_id, user_id),
            )
            self.connection.commit()
            return cursor.rowcount

    def list_users(
        self,
        *,
        role: str | None = None,
        is_primary: bool | None = None,
        is_active: bool | None = None,
        search: str | None = None,
        page: int = 1,
        limit: int = 10,
        export: bool = False,
    ) -> tuple[list[UserRecord], int]:
        with self._lock:
            filters: list[str] = []
            params: list[Any] = []
            if role:
                filters.append("role = ?")
                params.append(role)
            if is_primary is not None:
                filters.append("is_primary = ?")
                params.append(int(is_primary))
            if is_active is not None:
                filters.append("is_active = ?")
                params.append(int(is_active))
            if search:
                pattern = f"%{search.strip().lower()}%"
                filters.append("(LOWER(name) LIKE ? OR LOWER(email) LIKE ? OR LOWER(phone) LIKE ?)")
                params.extend([pattern, pattern, pattern])
            where = f" WHERE {' AND '.join(filters)}" if filters else ""
            total = int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c FROM users{where}",
                    tuple(params),
                ).fetchone()["c"]
            )
            query = f"SELECT * FROM users{where} ORDER BY created_at DESC"
            if not export:
                query += " LIMIT ? OFFSET ?"
                params.extend([limit, (page - 1) * limit])
            rows = self.connection.execute(query, tuple(params)).fetchall()
            return [self._to_user(row) for row in rows], total

    def list_team_members(self, parent_id: str) -> list[UserRecord]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT * FROM users WHERE parent_id = ? ORDER BY created_at DESC",
                (parent_id,),
            ).fetchall()
            return [self._to_user(row) for row in rows]

    def list_team_user_ids(self, owner_id: str) -> list[str]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT user_id FROM users WHERE parent_id = ?",
                (owner_id,),
            ).fetchall()
            return [owner_id, *(row["user_id"] for row in rows)]

    def list_users_by_ids(self, user_ids: list[str]) -> dict[str, UserRecord]:
        if not user_ids:
            return {}
        with self._lock:
            unique_ids = sorted(set(user_ids))
            placeholders = ", ".join("?" for _ in unique_ids)
            rows = self.connection.execute(
                f"SELECT * FROM users WHERE user_id IN ({placeholders})",
                tuple(unique_ids),
            ).fetchall()
            return {row["user_id"]: self._to_user(row) for row in rows}

    def list_active_users(self, roles: tuple[str, ...]) -> list[UserRecord]:
        with self._lock:
            placeholders = ", ".join("?" for _ in roles)
            rows = self.connection.execute(
                f"""
                SELECT * FROM users
                WHERE is_active = 1 AND role IN ({placeholders})
                ORDER BY name ASC
                """,
                roles,
            ).fetchall()
            return [self._to_user(row) for row in rows]

    def user_stats(self) -> dict[str, Any]:
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT role, is_primary, COUNT(1) AS c
                FROM users
                GROUP BY role, is_primary
                """
            ).fetchall()
            by_role = {"company": 0, "company_primary": 0, "recruiter": 0, "internal": 0, "admin": 0}
            by_type = {"primary": 0, "team_members": 0}
            total = 0
            for row in rows:
                count = int(row["c"])
                total += count
                by_role[row["role"].lower()] = by_role.get(row["role"].lower(), 0) + count
                if row["is_primary"]:
                    by_type["primary"] += count
                    if row["role"] == "COMPANY":
                        by_role["company_primary"] += count
                else:
                    by_type["team_members"] += count
            recent = self.connection.execute(
                "SELECT * FROM users ORDER BY created_at DESC LIMIT 5"
            ).fetchall()
            return {
                "total": total,
                "by_role": by_role,
                "by_type": by_type,
                "recent_users": [self._to_user(row) for row in recent],
            }

    # API tokens

    def create_api_token(self, payload: ApiTokenCreateRequest) -> ApiTokenCreateResponse:
        with self._lock:
            self.get_user_or_raise(payload.user_id)
            now = now_utc_iso()
            token_id = str(uuid.uuid4())
            raw_token = f"ssk_{secrets.token_urlsafe(32)}"
            expires_at: str | None = None
            if payload.expires_at:
                parsed = parse_iso_datetime(payload.expires_at)
                if parsed is None:
                    raise ValueError("expires_at must be a valid ISO-8601 datetime.")
                expires_at = parsed.astimezone(UTC).isoformat()
            elif payload.expires_in_days:
                expires = datetime.now(UTC) + timedelta(days=payload.expires_in_days)
                expires_at = expires.isoformat()

            self.connection.execute(
                """
                INSERT INTO api_tokens (
                    token_id,
                    token_hash,
                    user_id,
                    name,
                    notes,
                    created_at,
                    updated_at,
                    expires_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    token_id,
                    hash_token(raw_token),
                    payload.user_id,
                    payload.name,
                    payload.notes,
                    now,
                    now,
                    expires_at,
                ),
            )
            self.connection.commit()
            metadata = self.get_api_token_or_raise(token_id)
            return ApiTokenCreateResponse(token=raw_token, metadata=metadata)

    def get_api_token_or_raise(self, token_id: str) -> ApiTokenMetadata:
        token = self.get_api_token(token_id)
        if token is None:
            raise KeyError(f"Unknown token_id: {token_id}")
        return token

    def get_api_token(self, token_id: str) -> ApiTokenMetadata | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM api_tokens WHERE token_id = ?",
                (token_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_api_token_metadata(row)

    def list_api_tokens(
        self,
        *,
        include_revoked: bool,
        user_id: str | None = None,
    ) -> list[ApiTokenMetadata]:
        with self._lock:
            query = "SELECT * FROM api_tokens"
            filters: list[str] = []
            params: list[Any] = []
            if not include_revoked:
                filters.append("revoked_at IS NULL")
            if user_id:
                filters.append("user_id = ?")
                params.append(user_id)
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY created_at DESC"
            cursor = self.connection.execute(query, tuple(params))
            return [self._to_api_token_metadata(row) for row in cursor.fetchall()]

    def revoke_api_token(self, token_id: str) -> bool:
        with self._lock:
            now = now_utc_iso()
            cursor = self.connection.execute(
                """
                UPDATE api_tokens
                SET revoked_at = ?, updated_at = ?
                WHERE token_id = ? AND revoked_at IS NULL
                """,
                (now, now, token_id),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def resolve_db_token(self, token_value: str) -> TokenAuthContext | None:
        with self._lock:
            now = now_utc_iso()
            row = self.connection.execute(
                """
                SELECT token_id, user_id
                FROM api_tokens
                WHERE token_hash = ?
                  AND revoked_at IS NULL
                  AND (expires_at IS NULL OR expires_at > ?)
                """,
                (hash_token(token_value), now),
            ).fetchone()
            if row is None:
                return None
            return TokenAuthContext(
                user_id=row["user_id"],
                auth_subject=f"db-token:{row['token_id']}",
                token_id=row["token_id"],
            )

    def touch_api_token_usage(
        self,
        token_id: str,
        *,
        source_ip: str | None,
        user_agent: str | None,
    ) -> None:
        with self._lock:
            now = now_utc_iso()
            self.connection.execute(
                """
                UPDATE api_tokens
                SET
                    last_used_at = ?,
                    last_used_ip = ?,
                    last_used_user_agent = ?,
                    updated_at = ?
                WHERE token_id = ?
                """,
                (now, source_ip, user_agent, now, token_id),
            )
            self.connection.commit()

    # Audit trail

    def record_audit_event(
        self,
        *,
        request_id: str | None,
        method: str,
        path: str,
        action: str,
        source_ip: str | None,
        user_agent: str | None,
        auth_subject: str | None,
        status: str,
        message: str | None,
    ) -> int:
        with self._lock:
            cursor = self.connection.execute(
                """
                INSERT INTO audit_events (
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    source_ip,
                    user_agent,
                    auth_subject,
                    status,
                    message
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    now_utc_iso(),
                    request_id,
                    method,
                    path,
                    action,
                    source_ip,
                    user_agent,
                    auth_subject,
                    status,
                    message,
                ),
            )
            self.connection.commit()
            return int(cursor.lastrowid)

    def list_audit_events(
        self,
        *,
        limit: int,
        action: str | None,
        status: str | None,
    ) -> list[AuditEvent]:
        with self._lock:
            query = """
                SELECT
                    id AS event_id,
                    occurred_at,
                    request_id,
                    method,
                    path,
                    action,
                    source_ip,
                    user_agent,
                    auth_subject,
                    status,
                    message
                FROM audit_events
            """
            params: list[Any] = []
            filters: list[str] = []
            if action:
                filters.append("action = ?")
                params.append(action)
            if status:
                filters.append("status = ?")
                params.append(status)
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY id DESC LIMIT ?"
            params.append(limit)
            cursor = self.connection.execute(query, tuple(params))
            return [AuditEvent(**dict(row)) for row in cursor.fetchall()]

    # Jobs

    def create_job(
        self,
        payload: JobCreateRequest,
        *,
        posted_by: str,
        company_name: str,
        commission: Commission,
    ) -> Job:
        with self._lock:
            now = now_utc_iso()
            job_id = str(uuid.uuid4())
            commission_percentage, commission_amount = legacy_commission_fields(commission)
            for attempt in range(5):
                try:
                    self.connection.execute(
                        """
                        INSERT INTO jobs (
                            job_id,
                            job_code,
                            title,
                            company_name,
                            posted_by,
                            status,
                            job_type,
                            country,
                            location,
                            salary_json,
                            compensation_type,
                            positions,
                            experience_json,
                            commission_json,
                            commission_percentage,
                            commission_amount,
                            payment_terms,
                            compensation_details,
                            replacement_terms,
                            description,
                            company_description,
                            sourcing_guidelines,
                            screening_questions_json,
                            created_at,
                            updated_at
                        )
                        VALUES (
                            ?, ?, ?, ?, ?, 'ACTIVE', ?, ?, ?, ?, ?, ?, ?,
                            ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?
                        )
                        """,
                        (
                            job_id,
                            generate_job_code(),
                            payload.title.strip(),
                            company_name,
                            posted_by,
                            payload.job_type,
                            payload.country,
                            payload.location,
                            _to_json(payload.salary),
                            payload.compensation_type,
                            payload.positions,
                            _to_json(payload.experience_level),
                            _to_json(commission),
                            commission_percentage,
                            commission_amount,
                            payload.payment_terms,
                            payload.compensation_details,
                            payload.replacement_terms,
                            payload.description,
                            payload.company_description,
                            payload.sourcing_guidelines,
                            _to_json(payload.screening_questions),
                            now,
                            now,
                        ),
                    )
                    break
                except sqlite3.IntegrityError:
                    if attempt == 4:
                        raise
            self.connection.commit()
            return self.get_job_or_raise(job_id)

    def get_job_or_raise(self, job_id: str) -> Job:
        job = self.get_job(job_id)
        if job is None:
            raise KeyError(f"Unknown job_id: {job_id}")
        return job

    def get_job(self, job_id: str) -> Job | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM jobs WHERE job_id = ?",
                (job_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_job(row)

    def list_jobs(
        self,
        *,
        posted_by: list[str] | None = None,
        statuses: tuple[str, ...] | None = None,
        created_after: str | None = None,
        job_ids: list[str] | None = None,
    ) -> list[Job]:
        with self._lock:
            filters: list[str] = []
            params: list[Any] = []
            for column, values in (
                ("posted_by", posted_by),
                ("status", statuses),
                ("job_id", job_ids),
            ):
                if values is None:
                    continue
                if not values:
                    return []
                filters.append(f"{column} IN ({', '.join('?' for _ in values)})")
                params.extend(values)
            if created_after:
                filters.append("created_at >= ?")
                params.append(created_after)
            query = "SELECT * FROM jobs"
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY created_at DESC"
            rows = self.connection.execute(query, tuple(params)).fetchall()
            return [self._to_job(row) for row in rows]

    def update_job(self, job_id: str, updates: dict[str, Any]) -> Job:
        with self._lock:
            columns: dict[str, Any] = {}
            for field_name, value in updates.items():
                if field_name in JOB_JSON_COLUMNS:
                    columns[JOB_JSON_COLUMNS[field_name]] = _to_json(value)
                elif field_name in JOB_COLUMNS:
                    columns[field_name] = value
            if "commission" in updates:
                percentage, amount = legacy_commission_fields(updates["commission"])
                columns["commission_percentage"] = percentage
                columns["commission_amount"] = amount
            if columns:
                columns["updated_at"] = now_utc_iso()
                if self._update_columns("jobs", "job_id", job_id, columns) == 0:
                    raise KeyError(f"Unknown job_id: {job_id}")
                self.connection.commit()
            return self.get_job_or_raise(job_id)

    def update_job_access(
        self,
        job_id: str,
        *,
        visibility: str,
        allowed_recruiters: list[str],
        blocked_recruiters: list[str],
    ) -> Job:
        with self._lock:
            updated = self._update_columns(
                "jobs",
                "job_id",
                job_id,
                {
                    "visibility": visibility,
                    "allowed_recruiters_json": json.dumps(allowed_recruiters),
                    "blocked_recruiters_json": json.dumps(blocked_recruiters),
                    "updated_at": now_utc_iso(),
                },
            )
            if updated == 0:
                raise KeyError(f"Unknown job_id: {job_id}")
            self.connection.commit()
            return self.get_job_or_raise(job_id)

    def delete_job(self, job_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute("DELETE FROM jobs WHERE job_id = ?", (job_id,))
            self.connection.commit()
            return cursor.rowcount > 0

    def count_jobs_created_since(self, since: str, *, status: str = "ACTIVE") -> int:
        with self._lock:
            return int(
                self.connection.execute(
                    "SELECT COUNT(1) AS c FROM jobs WHERE created_at >= ? AND status = ?",
                    (since, status),
                ).fetchone()["c"]
            )

    def count_jobs_by_status(self) -> dict[str, int]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT status, COUNT(1) AS c FROM jobs GROUP BY status"
            ).fetchall()
            return {row["status"]: int(row["c"]) for row in rows}

    # Saved jobs

    def get_saved_job(self, recruiter_id: str, job_id: str) -> SavedJob | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM saved_jobs WHERE recruiter_id = ? AND job_id = ?",
                (recruiter_id, job_id),
            ).fetchone()
            if row is None:
                return None
            return self._to_saved_job(row)

    def save_job(self, recruiter_id: str, job_id: str) -> tuple[SavedJob, str]:
        with self._lock:
            now = now_utc_iso()
            existing = self.get_saved_job(recruiter_id, job_id)
            if existing is not None and existing.is_active:
                return existing, "already_saved"
            if existing is not None:
                self.connection.execute(
                    """
                    UPDATE saved_jobs
                    SET is_active = 1, added_at = ?, updated_at = ?
                    WHERE recruiter_id = ? AND job_id = ?
                    """,
                    (now, now, recruiter_id, job_id),
                )
                outcome = "reactivated"
            else:
                self.connection.execute(
                    """
                    INSERT INTO saved_jobs (recruiter_id, job_id, is_active, added_at, updated_at)
                    VALUES (?, ?, 1, ?, ?)
                    """,
                    (recruiter_id, job_id, now, now),
                )
                outcome = "created"
            self.connection.commit()
            saved = self.get_saved_job(recruiter_id, job_id)
            if saved is None:
                raise RuntimeError("Saved job row missing after write")
            return saved, outcome

    def remove_saved_job(self, recruiter_id: str, job_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute(
                """
                UPDATE saved_jobs
                SET is_active = 0, updated_at = ?
                WHERE recruiter_id = ? AND job_id = ? AND is_active = 1
                """,
                (now_utc_iso(), recruiter_id, job_id),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def list_saved_jobs(self, recruiter_id: str) -> list[SavedJob]:
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT * FROM saved_jobs
                WHERE recruiter_id = ? AND is_active = 1
                ORDER BY added_at DESC
                """,
                (recruiter_id,),
            ).fetchall()
            return [self._to_saved_job(row) for row in rows]

    def list_job_followers(self, job_id: str) -> list[str]:
        """Recruiters who saved the job or submitted a candidate to it."""
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT recruiter_id AS user_id FROM saved_jobs
                WHERE job_id = ? AND is_active = 1
                UNION
                SELECT submitted_by AS user_id FROM resumes WHERE job_id = ?
                """,
                (job_id, job_id),
            ).fetchall()
            return sorted(row["user_id"] for row in rows)

    def list_job_savers(self, job_id: str) -> list[tuple[UserRecord, str]]:
        """Active recruiters with a live save on the job, newest save first."""
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT u.*, s.added_at AS saved_at
                FROM saved_jobs s
                JOIN users u ON u.user_id = s.recruiter_id
                WHERE s.job_id = ? AND s.is_active = 1 AND u.role = 'RECRUITER'
                ORDER BY s.added_at DESC
                """,
                (job_id,),
            ).fetchall()
            savers = []
            for row in rows:
                payload = dict(row)
                saved_at = payload.pop("saved_at")
                savers.append((self._to_user(payload), saved_at))
            return savers

    # Job updates

    def create_job_update(
        self,
        job_id: str,
        *,
        title: str,
        content: str,
        posted_by: UserRecord,
    ) -> JobUpdatePost:
        with self._lock:
            update = JobUpdatePost(
                update_id=str(uuid.uuid4()),
                job_id=job_id,
                title=title,
                content=content,
                posted_by=posted_by.user_id,
                posted_by_name=posted_by.name,
                posted_by_role=posted_by.role,
                created_at=now_utc_iso(),
            )
            self.connection.execute(
                """
                INSERT INTO job_updates (
                    update_id, job_id, title, content,
                    posted_by, posted_by_name, posted_by_role, created_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    update.update_id,
                    update.job_id,
                    update.title,
                    update.content,
                    update.posted_by,
                    update.posted_by_name,
                    update.posted_by_role,
                    update.created_at,
                ),
            )
            self.connection.commit()
            return update

    def list_job_updates(self, job_id: str) -> list[JobUpdatePost]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT * FROM job_updates WHERE job_id = ? ORDER BY created_at DESC, rowid DESC",
                (job_id,),
            ).fetchall()
            return [JobUpdatePost(**dict(row)) for row in rows]

    # Resumes

    def create_resume(self, payload: ResumeCreateRequest, *, submitted_by: str) -> Resume:
        with self._lock:
            now = now_utc_iso()
            resume_id = str(uuid.uuid4())
            try:
                self.connection.execute(
                    """
                    INSERT INTO resumes (
                        resume_id,
                        job_id,
                        submitted_by,
                        candidate_name,
                        email,
                        phone,
                        alternative_phone,
                        country,
                        location,
                        current_company,
                        current_designation,
                        total_experience,
                        relevant_experience,
                        current_ctc,
                        expected_ctc,
                        notice_period,
                        qualification,
                        resume_file,
                        remarks,
                        status,
                        status_timestamps_json,
                        screening_answers_json,
                        notes_json,
                        created_at,
                        updated_at
                    )
                    VALUES (
                        ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?,
                        'SUBMITTED', ?, ?, '[]', ?, ?
                    )
                    """,
                    (
                        resume_id,
                        payload.job_id,
                        submitted_by,
                        payload.candidate_name.strip(),
                        str(payload.email).lower(),
                        payload.phone.strip(),
                        payload.alternative_phone,
                        payload.country,
                        payload.location,
                        payload.current_company,
                        payload.current_designation,
                        payload.total_experience,
                        payload.relevant_experience,
                        payload.current_ctc,
                        payload.expected_ctc,
                        payload.notice_period,
                        payload.qualification,
                        payload.resume_file,
                        payload.remarks,
                        json.dumps({status_timestamp_field("SUBMITTED"): now}),
                        _to_json(payload.screening_answers),
                        now,
                        now,
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise self._resume_conflict(exc) from exc
            self.connection.execute(
                "UPDATE jobs SET applicant_count = applicant_count + 1 WHERE job_id = ?",
                (payload.job_id,),
            )
            self.connection.commit()
            return self.get_resume_or_raise(resume_id)

    @staticmethod
    def _resume_conflict(exc: sqlite3.IntegrityError) -> DuplicateRecordError:
        if "email" in str(exc):
            return DuplicateRecordError(
                "A candidate with this email has already been submitted for this job"
            )
        if "phone" in str(exc):
            return DuplicateRecordError(
                "A candidate with this phone number has already been submitted for this job"
            )
        return DuplicateRecordError("Duplicate resume submission")

    def get_resume_or_raise(self, resume_id: str) -> Resume:
        resume = self.get_resume(resume_id)
        if resume is None:
            raise KeyError(f"Unknown resume_id: {resume_id}")
        return resume

    def get_resume(self, resume_id: str) -> Resume | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT r.*, j.title AS job_title
                FROM resumes r
                LEFT JOIN jobs j ON j.job_id = r.job_id
                WHERE r.resume_id = ?
                """,
                (resume_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_resume(row)

    def list_resumes(
        self,
        *,
        job_ids: list[str] | None = None,
        submitted_by: str | None = None,
        status: str | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[Resume], int]:
        with self._lock:
            filters: list[str] = []
            params: list[Any] = []
            if job_ids is not None:
                if not job_ids:
                    return [], 0
                filters.append(f"r.job_id IN ({', '.join('?' for _ in job_ids)})")
                params.extend(job_ids)
            if submitted_by:
                filters.append("r.submitted_by = ?")
                params.append(submitted_by)
            if status:
                filters.append("r.status = ?")
                params.append(status)
            where = f" WHERE {' AND '.join(filters)}" if filters else ""
            total = int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c FROM resumes r{where}",
                    tuple(params),
                ).fetchone()["c"]
            )
            query = (
                "SELECT r.*, j.title AS job_title FROM resumes r "
                f"LEFT JOIN jobs j ON j.job_id = r.job_id{where} "
                "ORDER BY r.created_at DESC"
            )
            if page is not None and limit is not None:
                query += " LIMIT ? OFFSET ?"
                params.extend([limit, (page - 1) * limit])
            rows = self.connection.execute(query, tuple(params)).fetchall()
            return [self._to_resume(row) for row in rows], total

    def update_resume(self, resume_id: str, updates: dict[str, Any]) -> Resume:
        with self._lock:
            columns: dict[str, Any] = {
                column: value for column, value in updates.items() if column in RESUME_COLUMNS
            }
            if "email" in columns:
                columns["email"] = str(columns["email"]).lower()
            if "screening_answers" in updates:
                columns["screening_answers_json"] = _to_json(updates["screening_answers"])
            if columns:
                columns["updated_at"] = now_utc_iso()
                try:
                    updated = self._update_columns("resumes", "resume_id", resume_id, columns)
                except sqlite3.IntegrityError as exc:
                    raise self._resume_conflict(exc) from exc
                if updated == 0:
                    raise KeyError(f"Unknown resume_id: {resume_id}")
                self.connection.commit()
            return self.get_resume_or_raise(resume_id)

    def update_resume_status(self, resume_id: str, status: str) -> tuple[Resume, str]:
        with self._lock:
            current = self.get_resume_or_raise(resume_id)
            now = now_utc_iso()
            timestamps = dict(current.status_timestamps)
            timestamps[status_timestamp_field(status)] = now
            self._update_columns(
                "resumes",
                "resume_id",
                resume_id,
                {
                    "status": status,
                    "status_timestamps_json": json.dumps(timestamps),
                    "updated_at": now,
                },
            )
            self.connection.commit()
            return self.get_resume_or_raise(resume_id), current.status

    def add_resume_note(self, resume_id: str, *, user: UserRecord, note: str) -> Resume:
        with self._lock:
            current = self.get_resume_or_raise(resume_id)
            now = now_utc_iso()
            notes = [*current.notes, ResumeNote(
                note_id=str(uuid.uuid4()),
                user_id=user.user_id,
                user_name=user.name,
                note=note,
                created_at=now,
            )]
            self._update_columns(
                "resumes",
                "resume_id",
                resume_id,
                {"notes_json": _to_json(notes), "updated_at": now},
            )
            self.connection.commit()
            return self.get_resume_or_raise(resume_id)

    def count_resumes_by_job(self, job_ids: list[str]) -> dict[str, int]:
        if not job_ids:
            return {}
        with self._lock:
            placeholders = ", ".join("?" for _ in job_ids)
            rows = self.connection.execute(
                f"""
                SELECT job_id, COUNT(1) AS c
                FROM resumes
                WHERE job_id IN ({placeholders})
                GROUP BY job_id
                """,
                tuple(job_ids),
            ).fetchall()
            counts = {job_id: 0 for job_id in job_ids}
            counts.update({row["job_id"]: int(row["c"]) for row in rows})
            return counts

    def count_resumes(self) -> int:
        with self._lock:
            return int(self.connection.execute("SELECT COUNT(1) AS c FROM resumes").fetchone()["c"])

    def find_candidate_resume(self, job_id: str, *, field: str, value: str) -> Resume | None:
        if field not in ("email", "phone"):
            raise ValueError(f"Unsupported candidate field: {field}")
        with self._lock:
            row = self.connection.execute(
                f"""
                SELECT r.*, j.title AS job_title
                FROM resumes r
                LEFT JOIN jobs j ON j.job_id = r.job_id
                WHERE r.job_id = ? AND r.{field} = ?
                """,
                (job_id, value),
            ).fetchone()
            if row is None:
                return None
            return self._to_resume(row)

    def count_candidate_applications_elsewhere(self, job_id: str, *, field: str, value: str) -> int:
        if field not in ("email", "phone"):
            raise ValueError(f"Unsupported candidate field: {field}")
        with self._lock:
            return int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c FROM resumes WHERE job_id != ? AND {field} = ?",
                    (job_id, value),
                ).fetchone()["c"]
            )

    # In-app notifications

    def create_notification(
        self,
        *,
        recipient_id: str,
        type: str,
        title: str,
        message: str,
        job_id: str | None = None,
        resume_id: str | None = None,
        candidate_name: str | None = None,
        job_title: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Notification:
        with self._lock:
            now = now_utc_iso()
            notification_id = str(uuid.uuid4())
            self.connection.execute(
                """
                INSERT INTO notifications (
                    notification_id,
                    recipient_id,
                    type,
                    title,
                    message,
                    job_id,
                    resume_id,
                    candidate_name,
                    job_title,
                    metadata_json,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification_id,
                    recipient_id,
                    type,
                    title,
                    message,
                    job_id,
                    resume_id,
                    candidate_name,
                    job_title,
                    json.dumps(metadata or {}),
                    now,
                    now,
                ),
            )
            self.connection.commit()
            row = self.connection.execute(
                "SELECT * FROM notifications WHERE notification_id = ?",
                (notification_id,),
            ).fetchone()
            return self._to_notification(row)

    def list_notifications(
        self,
        recipient_id: str,
        *,
        unread_only: bool,
        type: str | None,
        page: int,
        limit: int,
    ) -> tuple[list[Notification], int]:
        with self._lock:
            filters = ["recipient_id = ?"]
            params: list[Any] = [recipient_id]
            if unread_only:
                filters.append("is_read = 0")
            if type:
                filters.append("type = ?")
                params.append(type)
            where = " AND ".join(filters)
            total = int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c FROM notifications WHERE {where}",
                    tuple(params),
                ).fetchone()["c"]
            )
            rows = self.connection.execute(
                f"""
                SELECT * FROM notifications
                WHERE {where}
                ORDER BY created_at DESC
                LIMIT ? OFFSET ?
                """,
                (*params, limit, (page - 1) * limit),
            ).fetchall()
            return [self._to_notification(row) for row in rows], total

    def count_unread_notifications(self, recipient_id: str) -> int:
        with self._lock:
            return int(
                self.connection.execute(
                    "SELECT COUNT(1) AS c FROM notifications WHERE recipient_id = ? AND is_read = 0",
                    (recipient_id,),
                ).fetchone()["c"]
            )

    def mark_notifications_read(self, recipient_id: str, notification_ids: list[str] | None) -> int:
        with self._lock:
            query = """
                UPDATE notifications
                SET is_read = 1, updated_at = ?
                WHERE recipient_id = ? AND is_read = 0
            """
            params: list[Any] = [now_utc_iso(), recipient_id]
            if notification_ids is not None:
                if not notification_ids:
                    return 0
                query += f" AND notification_id IN ({', '.join('?' for _ in notification_ids)})"
                params.extend(notification_ids)
            cursor = self.connection.execute(query, tuple(params))
            self.connection.commit()
            return cursor.rowcount

    def delete_notifications(self, recipient_id: str, notification_ids: list[str]) -> int:
        with self._lock:
            placeholders = ", ".join("?" for _ in notification_ids)
            cursor = self.connection.execute(
                f"""
                DELETE FROM notifications
                WHERE recipient_id = ? AND notification_id IN ({placeholders})
                """,
                (recipient_id, *notification_ids),
            )
            self.connection.commit()
            return cursor.rowcount

    def cleanup_notifications(self, older_than: str) -> int:
        with self._lock:
            cursor = self.connection.execute(
                "DELETE FROM notifications WHERE is_read = 1 AND created_at < ?",
                (older_than,),
            )
            self.connection.commit()
            return cursor.rowcount

    # FAQs

    def create_faq(
        self,
        payload: FaqCreateRequest,
        *,
        question: str,
        answer: str,
        created_by: str,
    ) -> Faq:
        with self._lock:
            now = now_utc_iso()
            faq_id = str(uuid.uuid4())
            self.connection.execute(
                """
                INSERT INTO faqs (
                    faq_id,
                    question,
                    answer,
                    category,
                    is_active,
                    sort_order,
                    created_by,
                    updated_by,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    faq_id,
                    question,
                    answer,
                    payload.category.strip() or "General",
                    int(payload.is_active),
                    payload.order,
                    created_by,
                    created_by,
                    now,
                    now,
                ),
            )
            self.connection.commit()
            return self.get_faq_or_raise(faq_id)

    def get_faq_or_raise(self, faq_id: str) -> Faq:
        faq = self.get_faq(faq_id)
        if faq is None:
            raise KeyError(f"Unknown faq_id: {faq_id}")
        return faq

    def get_faq(self, faq_id: str) -> Faq | None:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM faqs WHERE faq_id = ?",
                (faq_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_faq(row)

    def list_faqs(self, *, include_inactive: bool, category: str | None) -> list[Faq]:
        with self._lock:
            filters: list[str] = []
            params: list[Any] = []
            if not include_inactive:
                filters.append("is_active = 1")
            if category:
                filters.append("category = ?")
                params.append(category)
            query = "SELECT * FROM faqs"
            if filters:
                query += " WHERE " + " AND ".join(filters)
            query += " ORDER BY category ASC, sort_order ASC, created_at DESC"
            rows = self.connection.execute(query, tuple(params)).fetchall()
            return [self._to_faq(row) for row in rows]

    def update_faq(self, faq_id: str, updates: dict[str, Any], *, updated_by: str) -> Faq:
        with self._lock:
            columns: dict[str, Any] = {}
            for field_name, value in updates.items():
                if field_name in ("question", "answer", "category"):
                    columns[field_name] = value
                elif field_name == "is_active":
                    columns["is_active"] = int(value)
                elif field_name == "order":
                    columns["sort_order"] = value
            columns["updated_by"] = updated_by
            columns["updated_at"] = now_utc_iso()
            if self._update_columns("faqs", "faq_id", faq_id, columns) == 0:
                raise KeyError(f"Unknown faq_id: {faq_id}")
            self.connection.commit()
            return self.get_faq_or_raise(faq_id)

    def delete_faq(self, faq_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute("DELETE FROM faqs WHERE faq_id = ?", (faq_id,))
            self.connection.commit()
            return cursor.rowcount > 0

    # Settings

    def list_settings(self, keys: list[str] | None = None) -> dict[str, SettingEntry]:
        with self._lock:
            if keys is None:
                rows = self.connection.execute("SELECT * FROM settings ORDER BY key").fetchall()
            elif not keys:
                return {}
            else:
                placeholders = ", ".join("?" for _ in keys)
                rows = self.connection.execute(
                    f"SELECT * FROM settings WHERE key IN ({placeholders}) ORDER BY key",
                    tuple(keys),
                ).fetchall()
            return {row["key"]: self._to_setting(row) for row in rows}

    def get_setting_values(self, keys: list[str]) -> dict[str, Any]:
        return {key: entry.value for key, entry in self.list_settings(keys).items()}

    def upsert_setting(
        self,
        key: str,
        value: Any,
        *,
        description: str | None = None,
        updated_by: str | None = None,
    ) -> SettingEntry:
        with self._lock:
            self.connection.execute(
                """
                INSERT INTO settings (key, value_json, description, updated_by, updated_at)
                VALUES (?, ?, ?, ?, ?)
                ON CONFLICT(key) DO UPDATE SET
                    value_json = excluded.value_json,
                    description = COALESCE(excluded.description, settings.description),
                    updated_by = excluded.updated_by,
                    updated_at = excluded.updated_at
                """,
                (key, json.dumps(value), description, updated_by, now_utc_iso()),
            )
            self.connection.commit()
            return self.list_settings([key])[key]

    def initialize_settings(
        self,
        defaults: dict[str, Any],
        descriptions: dict[str, str],
        *,
        updated_by: str | None,
    ) -> int:
        with self._lock:
            now = now_utc_iso()
            inserted = 0
            for key, value in defaults.items():
                cursor = self.connection.execute(
                    """
                    INSERT OR IGNORE INTO settings (key, value_json, description, updated_by, updated_at)
                    VALUES (?, ?, ?, ?, ?)
                    """,
                    (key, json.dumps(value), descriptions.get(key), updated_by, now),
                )
                inserted += cursor.rowcount
            self.connection.commit()
            return inserted

    # Email notifications

    def create_email_notification(
        self,
        *,
        type: str,
        job_ids: list[str],
        recipient_count: int,
        recruiter_id: str | None = None,
    ) -> EmailNotificationRecord:
        with self._lock:
            now = now_utc_iso()
            notification_id = str(uuid.uuid4())
            self.connection.execute(
                """
                INSERT INTO email_notifications (
                    notification_id,
                    recruiter_id,
                    type,
                    job_count,
                    job_ids_json,
                    recipient_count,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    notification_id,
                    recruiter_id,
                    type,
                    len(job_ids),
                    json.dumps(job_ids),
                    recipient_count,
                    now,
                    now,
                ),
            )
            self.connection.commit()
            return self.get_email_notification_or_raise(notification_id)

    def get_email_notification_or_raise(self, notification_id: str) -> EmailNotificationRecord:
        with self._lock:
            row = self.connection.execute(
                "SELECT * FROM email_notifications WHERE notification_id = ?",
                (notification_id,),
            ).fetchone()
            if row is None:
                raise KeyError(f"Unknown email notification: {notification_id}")
            return self._to_email_notification(row)

    def mark_email_notification_sent(self, notification_id: str) -> EmailNotificationRecord:
        with self._lock:
            now = now_utc_iso()
            self._update_columns(
                "email_notifications",
                "notification_id",
                notification_id,
                {
                    "status": "sent",
                    "email_sent": 1,
                    "sent_date": now,
                    "error_message": None,
                    "next_retry_at": None,
                    "updated_at": now,
                },
            )
            self.connection.commit()
            return self.get_email_notification_or_raise(notification_id)

    def mark_email_notification_failed(
        self,
        notification_id: str,
        error_message: str,
    ) -> EmailNotificationRecord:
        with self._lock:
            current = self.get_email_notification_or_raise(notification_id)
            now = datetime.now(UTC)
            retry_count = current.retry_count + 1
            self._update_columns(
                "email_notifications",
                "notification_id",
                notification_id,
                {
                    "status": "failed",
                    "retry_count": retry_count,
                    "error_message": error_message,
                    "next_retry_at": next_retry_at(retry_count, now=now).isoformat(),
                    "updated_at": now.isoformat(),
                },
            )
            self.connection.commit()
            return self.get_email_notification_or_raise(notification_id)

    def has_email_notification(
        self,
        *,
        type: str,
        since: str,
        statuses: tuple[str, ...],
        job_count: int | None = None,
    ) -> bool:
        with self._lock:
            placeholders = ", ".join("?" for _ in statuses)
            query = f"""
                SELECT COUNT(1) AS c FROM email_notifications
                WHERE type = ? AND created_at >= ? AND status IN ({placeholders})
            """
            params: list[Any] = [type, since, *statuses]
            if job_count is not None:
                query += " AND job_count = ?"
                params.append(job_count)
            return int(self.connection.execute(query, tuple(params)).fetchone()["c"]) > 0

    def list_due_email_notifications(self, now: str) -> list[EmailNotificationRecord]:
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT * FROM email_notifications
                WHERE email_sent = 0
                  AND retry_count < ?
                  AND (next_retry_at IS NULL OR next_retry_at <= ?)
                ORDER BY created_at ASC
                """,
                (MAX_EMAIL_RETRIES, now),
            ).fetchall()
            return [self._to_email_notification(row) for row in rows]

    def list_email_notifications(self, limit: int) -> list[EmailNotificationRecord]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT * FROM email_notifications ORDER BY created_at DESC LIMIT ?",
                (limit,),
            ).fetchall()
            return [self._to_email_notification(row) for row in rows]

    def list_email_notifications_since(self, since: str) -> list[EmailNotificationRecord]:
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT * FROM email_notifications
                WHERE created_at >= ?
                ORDER BY created_at DESC
                """,
                (since,),
            ).fetchall()
            return [self._to_email_notification(row) for row in rows]

    def count_email_notifications_by_status(self) -> dict[str, int]:
        with self._lock:
            rows = self.connection.execute(
                "SELECT status, COUNT(1) AS c FROM email_notifications GROUP BY status"
            ).fetchall()
            counts = {"pending": 0, "sent": 0, "failed": 0}
            counts.update({row["status"]: int(row["c"]) for row in rows})
            return counts

    # Support tickets

    def create_ticket(
        self,
        *,
        submitted_by: str,
        subject: str,
        message: str,
        category: str,
        priority: str,
        ticket_number_for: Any,
    ) -> SupportTicket:
        with self._lock:
            now = datetime.now(UTC)
            year = now.year
            prefix = f"ST-{year}-"
            # numbers are never reused, deletions leave gaps
            last_sequence = int(
                self.connection.execute(
                    """
                    SELECT COALESCE(MAX(CAST(SUBSTR(ticket_number, ?) AS INTEGER)), 0) AS last
                    FROM support_tickets
                    WHERE ticket_number LIKE ?
                    """,
                    (len(prefix) + 1, f"{prefix}%"),
                ).fetchone()["last"]
            )
            ticket_id = str(uuid.uuid4())
            timestamp = now.isoformat()
            self.connection.execute(
                """
                INSERT INTO support_tickets (
                    ticket_id,
                    ticket_number,
                    subject,
                    message,
                    category,
                    priority,
                    status,
                    submitted_by,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, ?, ?, ?, 'Open', ?, ?, ?)
                """,
                (
                    ticket_id,
                    ticket_number_for(year, last_sequence),
                    subject,
                    message,
                    category,
                    priority,
                    submitted_by,
                    timestamp,
                    timestamp,
                ),
            )
            self.connection.commit()
            return self.get_ticket_or_raise(ticket_id)

    def get_ticket_or_raise(self, ticket_id: str) -> SupportTicket:
        ticket = self.get_ticket(ticket_id)
        if ticket is None:
            raise KeyError(f"Unknown ticket_id: {ticket_id}")
        return ticket

    def get_ticket(self, ticket_id: str) -> SupportTicket | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT
                    t.*,
                    u.name AS submitted_by_name,
                    u.email AS submitted_by_email,
                    (SELECT COUNT(1) FROM ticket_responses r WHERE r.ticket_id = t.ticket_id)
                        AS response_count
                FROM support_tickets t
                LEFT JOIN users u ON u.user_id = t.submitted_by
                WHERE t.ticket_id = ?
                """,
                (ticket_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_ticket(row)

    def list_tickets(
        self,
        *,
        submitted_by: str | None = None,
        status: str | None = None,
        priority: str | None = None,
        category: str | None = None,
        assigned_to: str | None = None,
        search: str | None = None,
        page: int | None = None,
        limit: int | None = None,
    ) -> tuple[list[SupportTicket], int]:
        with self._lock:
            filters: list[str] = []
            params: list[Any] = []
            for column, value in (
                ("t.submitted_by", submitted_by),
                ("t.status", status),
                ("t.priority", priority),
                ("t.category", category),
                ("t.assigned_to", assigned_to),
            ):
                if value:
                    filters.append(f"{column} = ?")
                    params.append(value)
            if search:
                pattern = f"%{search.strip().lower()}%"
                filters.append(
                    "(LOWER(t.subject) LIKE ? OR LOWER(t.message) LIKE ? "
                    "OR LOWER(t.ticket_number) LIKE ?)"
                )
                params.extend([pattern, pattern, pattern])
            where = f" WHERE {' AND '.join(filters)}" if filters else ""
            total = int(
                self.connection.execute(
                    f"SELECT COUNT(1) AS c FROM support_tickets t{where}",
                    tuple(params),
                ).fetchone()["c"]
            )
            query = f"""
                SELECT
                    t.*,
                    u.name AS submitted_by_name,
                    u.email AS submitted_by_email,
                    (SELECT COUNT(1) FROM ticket_responses r WHERE r.ticket_id = t.ticket_id)
                        AS response_count
                FROM support_tickets t
                LEFT JOIN users u ON u.user_id = t.submitted_by
                {where}
                ORDER BY t.created_at DESC
            """
            if page is not None and limit is not None:
                query += " LIMIT ? OFFSET ?"
                params.extend([limit, (page - 1) * limit])
            rows = self.connection.execute(query, tuple(params)).fetchall()
            return [self._to_ticket(row) for row in rows], total

    def update_ticket(self, ticket_id: str, updates: dict[str, Any]) -> SupportTicket:
        with self._lock:
            columns = {column: value for column, value in updates.items() if column in TICKET_COLUMNS}
            columns["updated_at"] = now_utc_iso()
            if self._update_columns("support_tickets", "ticket_id", ticket_id, columns) == 0:
                raise KeyError(f"Unknown ticket_id: {ticket_id}")
            self.connection.commit()
            return self.get_ticket_or_raise(ticket_id)

    def delete_ticket(self, ticket_id: str) -> bool:
        with self._lock:
            cursor = self.connection.execute(
                "DELETE FROM support_tickets WHERE ticket_id = ?",
                (ticket_id,),
            )
            self.connection.commit()
            return cursor.rowcount > 0

    def count_tickets_since(self, submitted_by: str, since: str) -> tuple[int, str | None]:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT COUNT(1) AS c, MIN(created_at) AS oldest
                FROM support_tickets
                WHERE submitted_by = ? AND created_at >= ?
                """,
                (submitted_by, since),
            ).fetchone()
            return int(row["c"]), row["oldest"]

    def add_ticket_response(
        self,
        ticket_id: str,
        *,
        responded_by: str,
        message: str,
        is_internal: bool,
    ) -> TicketResponse:
        with self._lock:
            now = now_utc_iso()
            response_id = str(uuid.uuid4())
            self.connection.execute(
                """
                INSERT INTO ticket_responses (
                    response_id,
                    ticket_id,
                    message,
                    responded_by,
                    is_internal,
                    created_at
                )
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (response_id, ticket_id, message, responded_by, int(is_internal), now),
            )
            self._update_columns(
                "support_tickets",
                "ticket_id",
                ticket_id,
                {"last_response_at": now, "updated_at": now},
            )
            self.connection.commit()
            responses = self.list_ticket_responses(ticket_id, include_internal=True)
            return next(response for response in responses if response.response_id == response_id)

    def list_ticket_responses(self, ticket_id: str, *, include_internal: bool) -> list[TicketResponse]:
        with self._lock:
            query = """
                SELECT r.*, u.name AS responder_name, u.role AS responder_role
                FROM ticket_responses r
                LEFT JOIN users u ON u.user_id = r.responded_by
                WHERE r.ticket_id = ?
            """
            if not include_internal:
                query += " AND r.is_internal = 0"
            query += " ORDER BY r.created_at ASC"
            rows = self.connection.execute(query, (ticket_id,)).fetchall()
            return [self._to_ticket_response(row) for row in rows]

    def count_responses_since(self, responded_by: str, since: str) -> tuple[int, str | None]:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT COUNT(1) AS c, MIN(created_at) AS oldest
                FROM ticket_responses
                WHERE responded_by = ? AND created_at >= ?
                """,
                (responded_by, since),
            ).fetchone()
            return int(row["c"]), row["oldest"]

    def first_response_times(self) -> dict[str, str]:
        with self._lock:
            rows = self.connection.execute(
                """
                SELECT ticket_id, MIN(created_at) AS first_response_at
                FROM ticket_responses
                WHERE is_internal = 0
                GROUP BY ticket_id
                """
            ).fetchall()
            return {row["ticket_id"]: row["first_response_at"] for row in rows}

    # Payout settings

    def upsert_payout_settings(
        self,
        user_id: str,
        *,
        preferred_payment_method: str,
        details: dict[str, dict[str, str]],
        updated_by: str,
    ) -> PayoutSettings:
        with self._lock:
            now = now_utc_iso()
            self.connection.execute(
                """
                INSERT INTO payout_settings (
                    user_id,
                    preferred_payment_method,
                    details_json,
                    is_active,
                    last_updated_by,
                    created_at,
                    updated_at
                )
                VALUES (?, ?, ?, 1, ?, ?, ?)
                ON CONFLICT(user_id) DO UPDATE SET
                    preferred_payment_method = excluded.preferred_payment_method,
                    details_json = excluded.details_json,
                    is_active = 1,
                    last_updated_by = excluded.last_updated_by,
                    updated_at = excluded.updated_at
                """,
                (user_id, preferred_payment_method, json.dumps(details), updated_by, now, now),
            )
            self.connection.commit()
            settings = self.get_payout_settings(user_id)
            if settings is None:
                raise RuntimeError("Payout settings row missing after write")
            return settings

    def get_payout_settings(self, user_id: str) -> PayoutSettings | None:
        with self._lock:
            row = self.connection.execute(
                """
                SELECT p.*, u.name AS recruiter_name, u.email AS recruiter_email
                FROM payout_settings p
                LEFT JOIN users u ON u.user_id = p.user_id
                WHERE p.user_id = ?
                """,
                (user_id,),
            ).fetchone()
            if row is None:
                return None
            return self._to_payout_settings(row)

    def list_payout_settings(self, *, page: int, limit: int) -> tuple[list[PayoutSettings], int]:
        with self._lock:
            total = int(
                self.connection.execute(
                    """
                    SELECT COUNT(1) AS c
                    FROM payout_settings p
                    JOIN users u ON u.user_id = p.user_id
                    WHERE u.role = 'RECRUITER'
                    """
                ).fetchone()["c"]
            )
            rows = self.connection.execute(
                """
                SELECT p.*, u.name AS recruiter_name, u.email AS recruiter_email
                FROM payout_settings p
                JOIN users u ON u.user_id = p.user_id
                WHERE u.role = 'RECRUITER'
                ORDER BY p.updated_at DESC
                LIMIT ? OFFSET ?
                """,
                (limit, (page - 1) * limit),
            ).fetchall()
            return [self._to_payout_settings(row) for row in rows], total

    # Row mappers

    def _to_user(self, row: sqlite3.Row) -> UserRecord:
        payload = dict(row)
        for flag in ("is_primary", "is_active", "email_verified"):
            payload[flag] = bool(payload[flag])
        return UserRecord(**payload)

    def _to_api_token_metadata(self, row: sqlite3.Row) -> ApiTokenMetadata:
        now = now_utc_iso()
        expires_at = row["expires_at"]
        revoked_at = row["revoked_at"]
        active = revoked_at is None and (expires_at is None or expires_at > now)
        return ApiTokenMetadata(
            token_id=row["token_id"],
            user_id=row["user_id"],
            name=row["name"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            expires_at=expires_at,
            revoked_at=revoked_at,
            last_used_at=row["last_used_at"],
            last_used_ip=row["last_used_ip"],
            last_used_user_agent=row["last_used_user_agent"],
            notes=row["notes"],
            active=active,
        )

    def _to_job(self, row: sqlite3.Row) -> Job:
        salary = SalaryRange(**json.loads(row["salary_json"]))
        if row["commission_json"]:
            commission = Commission(**json.loads(row["commission_json"]))
        else:
            commission = legacy_commission(
                float(row["commission_percentage"]),
                float(row["commission_amount"]),
                salary,
            )
        return Job(
            job_id=row["job_id"],
            job_code=row["job_code"],
            title=row["title"],
            company_name=row["company_name"],
            posted_by=row["posted_by"],
            status=row["status"],
            job_type=row["job_type"],
            country=row["country"],
            location=row["location"],
            salary=salary,
            compensation_type=row["compensation_type"],
            positions=int(row["positions"]),
            experience_level=ExperienceRange(**json.loads(row["experience_json"] or "{}")),
            commission=commission,
            commission_percentage=float(row["commission_percentage"]),
            commission_amount=float(row["commission_amount"]),
            payment_terms=row["payment_terms"],
            compensation_details=row["compensation_details"],
            replacement_terms=row["replacement_terms"],
            description=row["description"],
            company_description=row["company_description"],
            sourcing_guidelines=row["sourcing_guidelines"],
            screening_questions=[
                ScreeningQuestion(**item)
                for item in json.loads(row["screening_questions_json"] or "[]")
            ],
            visibility=row["visibility"],
            allowed_recruiters=json.loads(row["allowed_recruiters_json"] or "[]"),
            blocked_recruiters=json.loads(row["blocked_recruiters_json"] or "[]"),
            applicant_count=int(row["applicant_count"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def _to_saved_job(self, row: sqlite3.Row) -> SavedJob:
        return SavedJob(
            recruiter_id=row["recruiter_id"],
            job_id=row["job_id"],
            is_active=bool(row["is_active"]),
            added_at=row["added_at"],
            updated_at=row["updated_at"],
        )

    def _to_resume(self, row: sqlite3.Row) -> Resume:
        payload = {
            key: row[key]
            for key in row.keys()
            if not key.endswith("_json")
        }
        payload["status_timestamps"] = json.loads(row["status_timestamps_json"] or "{}")
        payload["screening_answers"] = [
            ScreeningAnswer(**item) for item in json.loads(row["screening_answers_json"] or "[]")
        ]
        payload["notes"] = [ResumeNote(**item) for item in json.loads(row["notes_json"] or "[]")]
        return Resume(**payload)

    def _to_notification(self, row: sqlite3.Row) -> Notification:
        payload = dict(row)
        payload["is_read"] = bool(payload["is_read"])
        payload["metadata"] = json.loads(payload.pop("metadata_json") or "{}")
        return Notification(**payload)

    def _to_faq(self, row: sqlite3.Row) -> Faq:
        payload = dict(row)
        payload["is_active"] = bool(payload["is_active"])
        payload["order"] = payload.pop("sort_order")
        return Faq(**payload)

    def _to_setting(self, row: sqlite3.Row) -> SettingEntry:
        return SettingEntry(
            key=row["key"],
            value=json.loads(row["value_json"]),
            description=row["description"],
            updated_by=row["updated_by"],
            updated_at=row["updated_at"],
        )

    def _to_email_notification(self, row: sqlite3.Row) -> EmailNotificationRecord:
        payload = dict(row)
        payload["email_sent"] = bool(payload["email_sent"])
        payload["job_ids"] = json.loads(payload.pop("job_ids_json") or "[]")
        return EmailNotificationRecord(**payload)

    def _to_ticket(self, row: sqlite3.Row) -> SupportTicket:
        return SupportTicket(**dict(row))

    def _to_ticket_response(self, row: sqlite3.Row) -> TicketResponse:
        payload = dict(row)
        payload["is_internal"] = bool(payload["is_internal"])
        return TicketResponse(**payload)

    def _to_payout_settings(self, row: sqlite3.Row) -> PayoutSettings:
        details = json.loads(row["details_json"] or "{}")
        return PayoutSettings(
            user_id=row["user_id"],
            preferred_payment_method=row["preferred_payment_method"],
            is_active=bool(row["is_active"]),
            last_updated_by=row["last_updated_by"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
            recruiter_name=row["recruiter_name"],
            recruiter_email=row["recruiter_email"],
            **details,
        )
