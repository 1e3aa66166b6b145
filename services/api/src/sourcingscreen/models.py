from __future__ import annotations

import uuid
from typing import Any, Literal

from common.utils import is_valid_email, parse_iso_datetime, strip_unsafe_chars
from pydantic import BaseModel, EmailStr, Field, StrictBool, field_validator, model_validator

ROLE_COMPANY = "COMPANY"
ROLE_RECRUITER = "RECRUITER"
ROLE_ADMIN = "ADMIN"
ROLE_INTERNAL = "INTERNAL"
USER_ROLES = (ROLE_COMPANY, ROLE_RECRUITER, ROLE_ADMIN, ROLE_INTERNAL)
STAFF_ROLES = frozenset({ROLE_ADMIN, ROLE_INTERNAL})

UserRole = Literal["COMPANY", "RECRUITER", "ADMIN", "INTERNAL"]

JOB_STATUSES = ("DRAFT", "ACTIVE", "PAUSED", "CLOSED")
JOB_TYPES = ("FULL_TIME", "PART_TIME", "CONTRACT", "FREELANCE", "INTERNSHIP")
JobStatus = Literal["DRAFT", "ACTIVE", "PAUSED", "CLOSED"]
JobType = Literal["FULL_TIME", "PART_TIME", "CONTRACT", "FREELANCE", "INTERNSHIP"]
CompensationType = Literal["HOURLY", "MONTHLY", "ANNUALLY"]
CommissionType = Literal["percentage", "fixed", "hourly"]
VISIBILITY_ALL = "ALL"
VISIBILITY_SELECTED = "SELECTED"
VISIBILITY_OPTIONS = (VISIBILITY_ALL, VISIBILITY_SELECTED)
QUESTION_TYPES = ("TEXT", "NUMERIC", "YES_NO", "MCQ", "MULTI_SELECT")
QuestionType = Literal["TEXT", "NUMERIC", "YES_NO", "MCQ", "MULTI_SELECT"]
CHOICE_QUESTION_TYPES = frozenset({"MCQ", "MULTI_SELECT"})

RESUME_STATUSES = (
    "SUBMITTED",
    "REVIEWED",
    "SHORTLISTED",
    "ONHOLD",
    "INTERVIEW_IN_PROCESS",
    "INTERVIEWED",
    "SELECTED_IN_FINAL_INTERVIEW",
    "OFFERED",
    "OFFER_DECLINED",
    "HIRED",
    "REJECTED",
    "DUPLICATE",
)

NOTIFICATION_CANDIDATE_STATUS_CHANGE = "CANDIDATE_STATUS_CHANGE"
NOTIFICATION_JOB_MODIFICATION = "JOB_MODIFICATION"
NOTIFICATION_NEW_NOTE_COMMENT = "NEW_NOTE_COMMENT"
NOTIFICATION_TYPES = (
    NOTIFICATION_CANDIDATE_STATUS_CHANGE,
    NOTIFICATION_JOB_MODIFICATION,
    NOTIFICATION_NEW_NOTE_COMMENT,
)

EMAIL_TYPE_JOB_BATCH = "job_batch"
EMAIL_TYPE_END_OF_DAY = "end_of_day_summary"
EMAIL_TYPE_RECENT_JOBS = "recent_jobs"
EmailNotificationType = Literal["job_batch", "end_of_day_summary", "recent_jobs"]
EmailNotificationStatus = Literal["pending", "sent", "failed"]

PAYMENT_METHODS = ("BANK_TRANSFER", "PAYPAL", "WISE", "VEEM")


def status_timestamp_field(status: str) -> str:
    return f"{status.lower()}_at"


class UserRecord(BaseModel):
    user_id: str
    name: str
    email: str
    phone: str | None = None
    role: UserRole
    company_name: str | None = None
    designation: str | None = None
    company_size: str | None = None
    recruitment_firm_name: str | None = None
    is_primary: bool = True
    is_active: bool = True
    parent_id: str | None = None
    email_verified: bool = False
    created_at: str
    updated_at: str


class UserCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: str = Field(..., min_length=5, max_length=32)
    role: UserRole
    company_name: str | None = Field(default=None, max_length=200)
    designation: str | None = Field(default=None, max_length=120)
    company_size: str | None = Field(default=None, max_length=40)
    recruitment_firm_name: str | None = Field(default=None, max_length=200)
    is_primary: bool = True
    is_active: bool = True
    parent_id: str | None = None
    email_verified: bool = False


class UserUpdateRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=120)
    phone: str | None = Field(default=None, min_length=5, max_length=32)
    role: UserRole | None = None
    company_name: str | None = Field(default=None, max_length=200)
    designation: str | None = Field(default=None, max_length=120)
    company_size: str | None = Field(default=None, max_length=40)
    recruitment_firm_name: str | None = Field(default=None, max_length=200)
    is_primary: bool | None = None
    is_active: bool | None = None
    email_verified: bool | None = None


class TeamMemberCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=120)
    email: EmailStr
    phone: str = Field(..., min_length=5, max_length=32)
    designation: str | None = Field(default=None, max_length=120)


class UserListPagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int


class AuditEvent(BaseModel):
    event_id: int
    request_id: str | None = None
    occurred_at: str
    method: str
    path: str
    action: str
    source_ip: str | None = None
    user_agent: str | None = None
    auth_subject: str | None = None
    status: str
    message: str | None = None


class ApiTokenCreateRequest(BaseModel):
    user_id: str = Field(..., min_length=1)
    name: str = Field(..., min_length=1, max_length=120)
    expires_in_days: int | None = Field(default=None, ge=1, le=3650)
    expires_at: str | None = None
    notes: str | None = Field(default=None, max_length=500)

    @model_validator(mode="after")
    def validate_expiry(self) -> ApiTokenCreateRequest:
        if self.expires_at and parse_iso_datetime(self.expires_at) is None:
            raise ValueError("expires_at must be an ISO-8601 datetime string.")
        return self


class ApiTokenMetadata(BaseModel):
    token_id: str
    user_id: str
    name: str
    created_at: str
    updated_at: str
    expires_at: str | None
    revoked_at: str | None
    last_used_at: str | None
    last_used_ip: str | None
    last_used_user_agent: str | None
    notes: str | None
    active: bool


class ApiTokenCreateResponse(BaseModel):
    token: str
    metadata: ApiTokenMetadata


class TokenAuthContext(BaseModel):
    user_id: str
    auth_subject: str
    token_id: str | None = None


class MetricsSnapshot(BaseModel):
    generated_at: str
    totals: dict[str, int]
    endpoints: dict[str, dict[str, float | int]]


class SalaryRange(BaseModel):
    min: float
    max: float
    currency: str = Field(default="USD", min_length=3, max_length=3)


class ExperienceRange(BaseModel):
    min: float = Field(default=0, ge=0)
    max: float = Field(default=0, ge=0)


class ScreeningQuestion(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid.uuid4()))
    question: str = Field(..., min_length=1, max_length=500)
    question_type: QuestionType = "TEXT"
    required: bool = False
    options: list[str] = Field(default_factory=list)


class ScreeningQuestionCreateRequest(BaseModel):
    question: str = ""
    question_type: str = ""
    required: bool = True
    options: list[str] | None = None


class ScreeningQuestionUpdateRequest(BaseModel):
    question_id: str = Field(..., min_length=1)
    question: str | None = None
    question_type: str | None = None
    required: bool | None = None
    options: list[str] | None = None


class JobUpdatePost(BaseModel):
    update_id: str
    job_id: str
    title: str
    content: str
    posted_by: str
    posted_by_name: str
    posted_by_role: str
    created_at: str


class JobUpdatePostRequest(BaseModel):
    title: str | None = None
    content: str = ""


class JobRecruiter(BaseModel):
    id: str
    name: str
    email: str
    phone: str
    type: str
    company_name: str
    saved_at: str


class CandidateValidationRequest(BaseModel):
    email: str = ""
    phone: str = ""
    job_id: str = ""


class CandidateValidationResult(BaseModel):
    is_valid: bool
    errors: list[dict[str, Any]] = Field(default_factory=list)
    warnings: list[dict[str, Any]] = Field(default_factory=list)


class CommissionInput(BaseModel):
    type: str = "percentage"
    original_percentage: float = 0
    fixed_amount: float = 0
    hourly_rate: float = 0
    reduction_percentage: float | None = None


class Commission(BaseModel):
    type: CommissionType
    original_percentage: float = 0
    fixed_amount: float = 0
    hourly_rate: float = 0
    recruiter_percentage: float = 0
    platform_fee_percentage: float = 0
    reduction_percentage: float = 0
    original_amount: float = 0
    recruiter_amount: float = 0


class JobCreateRequest(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    company_name: str | None = Field(default=None, max_length=200)
    job_type: JobType = "FULL_TIME"
    country: str = Field(..., min_length=1, max_length=80)
    location: str = Field(..., min_length=1, max_length=200)
    salary: SalaryRange
    compensation_type: CompensationType = "ANNUALLY"
    positions: int = Field(default=1, ge=1, le=1000)
    experience_level: ExperienceRange = Field(default_factory=ExperienceRange)
    commission: CommissionInput
    payment_terms: str | None = None
    compensation_details: str | None = None
    replacement_terms: str | None = None
    description: str = Field(..., min_length=1)
    company_description: str | None = None
    sourcing_guidelines: str | None = None
    screening_questions: list[ScreeningQuestion] = Field(default_factory=list)


class JobUpdateRequest(BaseModel):
    title: str | None = Field(default=None, min_length=1, max_length=200)
    company_name: str | None = Field(default=None, max_length=200)
    job_type: JobType | None = None
    country: str | None = Field(default=None, min_length=1, max_length=80)
    location: str | None = Field(default=None, min_length=1, max_length=200)
    salary: SalaryRange | None = None
    compensation_type: CompensationType | None = None
    positions: int | None = Field(default=None, ge=1, le=1000)
    experience_level: ExperienceRange | None = None
    commission: CommissionInput | None = None
    payment_terms: str | None = None
    compensation_details: str | None = None
    replacement_terms: str | None = None
    description: str | None = Field(default=None, min_length=1)
    company_description: str | None = None
    sourcing_guidelines: str | None = None
    screening_questions: list[ScreeningQuestion] | None = None


class JobStatusUpdateRequest(BaseModel):
    status: str


class Job(BaseModel):
    job_id: str
    job_code: str
    title: str
    company_name: str
    posted_by: str
    status: JobStatus
    job_type: JobType
    country: str
    location: str
    salary: SalaryRange
    compensation_type: CompensationType
    positions: int
    experience_level: ExperienceRange
    commission: Commission
    commission_percentage: float = 0
    commission_amount: float = 0
    fixed_commission_amount: float = 0
    payment_terms: str | None = None
    compensation_details: str | None = None
    replacement_terms: str | None = None
    description: str
    company_description: str | None = None
    sourcing_guidelines: str | None = None
    screening_questions: list[ScreeningQuestion] = Field(default_factory=list)
    visibility: Literal["ALL", "SELECTED"] = "ALL"
    allowed_recruiters: list[str] = Field(default_factory=list)
    blocked_recruiters: list[str] = Field(default_factory=list)
    applicant_count: int = 0
    created_at: str
    updated_at: str
    posted_by_name: str | None = None
    posted_by_company: str | None = None


class JobAccessUpdateRequest(BaseModel):
    visibility: str
    allowed_recruiters: list[str] = Field(default_factory=list)
    blocked_recruiters: list[str] = Field(default_factory=list)


class RecruiterSummary(BaseModel):
    id: str
    name: str
    email: str
    company_name: str | None = None


class JobAccessResponse(BaseModel):
    job_id: str
    visibility: str
    allowed_recruiters: list[RecruiterSummary]
    blocked_recruiters: list[RecruiterSummary]
    message: str | None = None


class SavedJobRequest(BaseModel):
    job_id: str | None = None


class SavedJob(BaseModel):
    recruiter_id: str
    job_id: str
    is_active: bool
    added_at: str
    updated_at: str


class SavedJobEntry(BaseModel):
    job: Job
    added_at: str


class SavedJobsResponse(BaseModel):
    saved_jobs: list[SavedJobEntry]


class ScreeningAnswer(BaseModel):
    question_id: str = Field(..., min_length=1)
    answer: str


class ResumeNote(BaseModel):
    note_id: str
    user_id: str
    user_name: str | None = None
    note: str
    created_at: str


class ResumeCreateRequest(BaseModel):
    job_id: str = Field(..., min_length=1)
    candidate_name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    phone: str = Field(..., min_length=5, max_length=32)
    alternative_phone: str | None = Field(default=None, max_length=32)
    country: str = Field(..., min_length=1, max_length=80)
    location: str = Field(..., min_length=1, max_length=200)
    current_company: str = Field(..., min_length=1, max_length=200)
    current_designation: str = Field(..., min_length=1, max_length=200)
    total_experience: str = Field(..., min_length=1, max_length=40)
    relevant_experience: str = Field(..., min_length=1, max_length=40)
    current_ctc: str = Field(..., min_length=1, max_length=60)
    expected_ctc: str = Field(..., min_length=1, max_length=60)
    notice_period: str = Field(..., min_length=1, max_length=60)
    qualification: str = Field(..., min_length=1, max_length=200)
    resume_file: str = Field(..., min_length=1, max_length=500)
    remarks: str | None = None
    screening_answers: list[ScreeningAnswer] = Field(default_factory=list)


class ResumeUpdateRequest(BaseModel):
    candidate_name: str | None = Field(default=None, min_length=1, max_length=200)
    email: EmailStr | None = None
    phone: str | None = Field(default=None, min_length=5, max_length=32)
    alternative_phone: str | None = Field(default=None, max_length=32)
    country: str | None = Field(default=None, min_length=1, max_length=80)
    location: str | None = Field(default=None, min_length=1, max_length=200)
    current_company: str | None = Field(default=None, min_length=1, max_length=200)
    current_designation: str | None = Field(default=None, min_length=1, max_length=200)
    total_experience: str | None = Field(default=None, min_length=1, max_length=40)
    relevant_experience: str | None = Field(default=None, min_length=1, max_length=40)
    current_ctc: str | None = Field(default=None, min_length=1, max_length=60)
    expected_ctc: str | None = Field(default=None, min_length=1, max_length=60)
    notice_period: str | None = Field(default=None, min_length=1, max_length=60)
    qualification: str | None = Field(default=None, min_length=1, max_length=200)
    resume_file: str | None = Field(default=None, min_length=1, max_length=500)
    remarks: str | None = None
    screening_answers: list[ScreeningAnswer] | None = None


class ResumeStatusUpdateRequest(BaseModel):
    status: str


class ResumeNoteCreateRequest(BaseModel):
    note: str = ""


class Resume(BaseModel):
    resume_id: str
    job_id: str
    job_title: str | None = None
    submitted_by: str
    candidate_name: str
    email: str
    phone: str
    alternative_phone: str | None = None
    country: str
    location: str
    current_company: str
    current_designation: str
    total_experience: str
    relevant_experience: str
    current_ctc: str
    expected_ctc: str
    notice_period: str
    qualification: str
    resume_file: str
    remarks: str | None = None
    status: str
    status_timestamps: dict[str, str] = Field(default_factory=dict)
    screening_answers: list[ScreeningAnswer] = Field(default_factory=list)
    notes: list[ResumeNote] = Field(default_factory=list)
    created_at: str
    updated_at: str


class ResumeStatusUpdateResponse(BaseModel):
    success: bool
    resume: Resume
    message: str


class ResumePage(BaseModel):
    resumes: list[Resume]
    total: int
    page: int
    limit: int
    pages: int


class Notification(BaseModel):
    notification_id: str
    recipient_id: str
    type: str
    title: str
    message: str
    is_read: bool = False
    job_id: str | None = None
    resume_id: str | None = None
    candidate_name: str | None = None
    job_title: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
    created_at: str
    updated_at: str


class NotificationCreateRequest(BaseModel):
    recipient_id: str = Field(..., min_length=1)
    type: str
    title: str = Field(..., min_length=1, max_length=200)
    message: str = Field(..., min_length=1, max_length=2000)
    job_id: str | None = None
    resume_id: str | None = None
    candidate_name: str | None = None
    job_title: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)


class NotificationMarkReadRequest(BaseModel):
    notification_ids: list[str] = Field(default_factory=list)
    mark_all: bool = False


class NotificationDeleteRequest(BaseModel):
    notification_ids: list[str] = Field(..., min_length=1)


class NotificationPagination(BaseModel):
    current_page: int
    total_pages: int
    total_count: int
    has_next_page: bool
    has_prev_page: bool


class NotificationListResponse(BaseModel):
    notifications: list[Notification]
    pagination: NotificationPagination
    unread_count: int


class Faq(BaseModel):
    faq_id: str
    question: str
    answer: str
    category: str = "General"
    is_active: bool = True
    order: int = 0
    created_by: str | None = None
    updated_by: str | None = None
    created_at: str
    updated_at: str


class FaqCreateRequest(BaseModel):
    question: str = ""
    answer: str = ""
    category: str = Field(default="General", max_length=80)
    is_active: bool = True
    order: int = 0


class FaqUpdateRequest(BaseModel):
    question: str | None = None
    answer: str | None = None
    category: str | None = Field(default=None, max_length=80)
    is_active: bool | None = None
    order: int | None = None


class SettingEntry(BaseModel):
    key: str
    value: Any = None
    description: str | None = None
    updated_by: str | None = None
    updated_at: str | None = None


class SettingUpdateRequest(BaseModel):
    key: str = ""
    value: Any = None
    description: str | None = None


class EmailSettingsUpdateRequest(BaseModel):
    settings: dict[str, Any] | None = None


class EmailNotificationRecord(BaseModel):
    notification_id: str
    recruiter_id: str | None = None
    type: EmailNotificationType
    sent_date: str | None = None
    job_count: int = 0
    job_ids: list[str] = Field(default_factory=list)
    email_sent: bool = False
    status: EmailNotificationStatus = "pending"
    recipient_count: int = 0
    error_message: str | None = None
    retry_count: int = 0
    next_retry_at: str | None = None
    created_at: str
    updated_at: str


class EmailDiagnosticsTestRequest(BaseModel):
    test_email: str = ""


class SupportTicket(BaseModel):
    ticket_id: str
    ticket_number: str
    subject: str
    message: str
    category: str
    priority: str
    status: str
    submitted_by: str
    submitted_by_name: str | None = None
    submitted_by_email: str | None = None
    assigned_to: str | None = None
    resolved_at: str | None = None
    closed_at: str | None = None
    last_response_at: str | None = None
    created_at: str
    updated_at: str
    is_overdue: bool = False
    response_count: int = 0


class TicketCreateRequest(BaseModel):
    subject: str = ""
    message: str = ""
    category: str = "General Inquiry"
    priority: str = "Medium"


class TicketUpdateRequest(BaseModel):
    status: str | None = None
    priority: str | None = None
    category: str | None = None
    assigned_to: str | None = None


class TicketResponse(BaseModel):
    response_id: str
    ticket_id: str
    message: str
    responded_by: str
    responder_name: str | None = None
    responder_role: str | None = None
    is_internal: bool = False
    created_at: str


class TicketResponseCreateRequest(BaseModel):
    message: str = ""
    is_internal: StrictBool = False
    notify_user: StrictBool = True


class TicketPagination(BaseModel):
    total: int
    page: int
    limit: int
    pages: int
    has_next: bool
    has_prev: bool


class TicketListResponse(BaseModel):
    tickets: list[SupportTicket]
    pagination: TicketPagination


class SupportSettings(BaseModel):
    support_email: str
    support_auto_response: bool
    support_email_template: str
    support_notification_enabled: bool


class SupportSettingsUpdateRequest(BaseModel):
    support_email: str | None = None
    support_auto_response: StrictBool | None = None
    support_email_template: str | None = Field(default=None, max_length=10000)
    support_notification_enabled: StrictBool | None = None


class PayoutDetails(BaseModel):
    @field_validator("*", mode="before")
    @classmethod
    def strip_unsafe(cls, value: Any) -> Any:
        if isinstance(value, str):
            return strip_unsafe_chars(value)
        return value


class BankTransferDetails(PayoutDetails):
    account_holder_name: str = Field(..., min_length=1, max_length=200)
    bank_name: str = Field(..., min_length=1, max_length=200)
    branch_ifsc_sort_code: str = Field(..., min_length=1, max_length=60)
    account_number_iban: str = Field(..., min_length=1, max_length=60)
    swift_bic_code: str | None = Field(default=None, max_length=20)
    internal_transfer_id_reference: str | None = Field(default=None, max_length=120)


class PaypalDetails(PayoutDetails):
    paypal_email: str


class WiseDetails(PayoutDetails):
    registered_email_or_account_id: str = Field(..., min_length=1, max_length=200)


class VeemDetails(PayoutDetails):
    veem_account_email_or_business_id: str = Field(..., min_length=1, max_length=200)


class PayoutSettingsRequest(BaseModel):
    preferred_payment_method: Literal["BANK_TRANSFER", "PAYPAL", "WISE", "VEEM"]
    bank_transfer_details: BankTransferDetails | None = None
    paypal_details: PaypalDetails | None = None
    wise_details: WiseDetails | None = None
    veem_details: VeemDetails | None = None

    @model_validator(mode="after")
    def validate_method_details(self) -> PayoutSettingsRequest:
        method = self.preferred_payment_method
        if method == "BANK_TRANSFER" and self.bank_transfer_details is None:
            raise ValueError("Complete bank transfer details are required")
        if method == "PAYPAL":
            if self.paypal_details is None or not is_valid_email(self.paypal_details.paypal_email):
                raise ValueError("Valid PayPal email is required")
        if method == "WISE":
            if self.wise_details is None:
                raise ValueError("Wise email or account ID is required")
            account = self.wise_details.registered_email_or_account_id
            if "@" in account and not is_valid_email(account):
                raise ValueError("Valid Wise email is required")
        if method == "VEEM":
            if self.veem_details is None:
                raise ValueError("Veem email or business ID is required")
            account = self.veem_details.veem_account_email_or_business_id
            if "@" in account and not is_valid_email(account):
                raise ValueError("Valid Veem email is required")
        return self

    def details_payload(self) -> dict[str, dict[str, str]]:
        details: dict[str, dict[str, str]] = {}
        for field_name in (
            "bank_transfer_details",
            "paypal_details",
            "wise_details",
            "veem_details",
        ):
            value = getattr(self, field_name)
            if value is None:
                continue
            details[field_name] = value.model_dump(exclude_none=True)
        return details


class PayoutSettings(BaseModel):
    user_id: str
    preferred_payment_method: str
    bank_transfer_details: BankTransferDetails | None = None
    paypal_details: PaypalDetails | None = None
    wise_details: WiseDetails | None = None
    veem_details: VeemDetails | None = None
    is_active: bool = True
    last_updated_by: str | None = None
    created_at: str
    updated_at: str
    recruiter_name: str | None = None
    recruiter_email: str | None = None
