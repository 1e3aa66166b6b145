from __future__ import annotations

import random
from datetime import UTC, datetime

from sourcingscreen.models import (
    CHOICE_QUESTION_TYPES,
    QUESTION_TYPES,
    ROLE_RECRUITER,
    STAFF_ROLES,
    VISIBILITY_ALL,
    VISIBILITY_OPTIONS,
    VISIBILITY_SELECTED,
    Commission,
    CommissionInput,
    Job,
    SalaryRange,
    ScreeningQuestion,
    ScreeningQuestionUpdateRequest,
)

DEFAULT_REDUCTION = 50.0
LEGACY_REDUCTION = 40.0
MIN_REDUCTION = 0.0
MAX_REDUCTION = 80.0
MIN_COMMISSION_PERCENTAGE = 1.0
MAX_COMMISSION_PERCENTAGE = 50.0
MIN_FIXED_AMOUNT = 100.0
MIN_HOURLY_RATE = 10.0
MIN_RECRUITER_PERCENTAGE = 1.0

ACCESSIBLE_JOB_STATUSES = ("ACTIVE", "PAUSED")

MAX_QUESTION_LENGTH = 500
MIN_CHOICE_OPTIONS = 2
DEFAULT_UPDATE_TITLE = "Job Update"
MAX_UPDATE_TITLE_LENGTH = 200
MAX_UPDATE_CONTENT_LENGTH = 2000
UPDATE_PREVIEW_LENGTH = 100


def generate_job_code(now: datetime | None = None, *, rng: random.Random | None = None) -> str:
    moment = now or datetime.now(UTC)
    suffix = (rng or random).randint(1000, 9999)
    return f"JOB-{moment.strftime('%Y%m%d')}-{suffix}"


def validate_salary(salary: SalaryRange) -> None:
    if salary.min <= 0 or salary.max <= 0:
        raise ValueError("Salary min and max must be greater than 0")
    if salary.min > salary.max:
        raise ValueError("Minimum salary cannot be greater than maximum salary")


def calculate_recruiter_percentage(original_percentage: float, reduction: float) -> float:
    if original_percentage <= 0:
        return 0.0
    reduced = original_percentage - (original_percentage * reduction / 100)
    return round(max(reduced, MIN_RECRUITER_PERCENTAGE), 2)


def resolve_reduction(payload: CommissionInput, *, role: str, current: float | None = None) -> float:
    if payload.reduction_percentage is None:
        return DEFAULT_REDUCTION if current is None else current
    if role not in STAFF_ROLES:
        raise ValueError("Only admin or internal users can set the commission reduction")
    reduction = float(payload.reduction_percentage)
    if reduction < MIN_REDUCTION or reduction > MAX_REDUCTION:
        raise ValueError(
            f"Reduction percentage must be between {MIN_REDUCTION:g} and {MAX_REDUCTION:g}"
        )
    return reduction


def build_commission(
    payload: CommissionInput,
    salary: SalaryRange,
    *,
    reduction: float,
) -> Commission:
    if payload.type == "percentage":
        original = float(payload.original_percentage)
        if original < MIN_COMMISSION_PERCENTAGE or original > MAX_COMMISSION_PERCENTAGE:
            raise ValueError(
                "Commission percentage must be between "
                f"{MIN_COMMISSION_PERCENTAGE:g} and {MAX_COMMISSION_PERCENTAGE:g}"
            )
        recruiter_percentage = calculate_recruiter_percentage(original, reduction)
        return Commission(
            type="percentage",
            original_percentage=original,
            recruiter_percentage=recruiter_percentage,
            platform_fee_percentage=round(original - recruiter_percentage, 2),
            reduction_percentage=reduction,
            original_amount=round(salary.max * original / 100, 2),
            recruiter_amount=round(salary.max * recruiter_percentage / 100, 2),
        )
    if payload.type == "fixed":
        amount = float(payload.fixed_amount)
        if amount < MIN_FIXED_AMOUNT:
            raise ValueError(f"Fixed commission amount must be at least {MIN_FIXED_AMOUNT:g}")
        platform_fee = round(amount * reduction / 100, 2)
        return Commission(
            type="fixed",
            fixed_amount=amount,
            reduction_percentage=reduction,
            original_amount=amount,
            recruiter_amount=round(max(amount - platform_fee, 0), 2),
        )
    if payload.type == "hourly":
        rate = float(payload.hourly_rate)
        if rate < MIN_HOURLY_RATE:
            raise ValueError(f"Hourly rate must be at least {MIN_HOURLY_RATE:g}")
        platform_fee = round(rate * reduction / 100, 2)
        return Commission(
            type="hourly",
            hourly_rate=rate,
            reduction_percentage=reduction,
            original_amount=rate,
            recruiter_amount=round(max(rate - platform_fee, 0), 2),
        )
    raise ValueError("Commission type must be one of: percentage, fixed, hourly")


def legacy_commission(percentage: float, amount: float, salary: SalaryRange) -> Commission:
    recruiter_percentage = calculate_recruiter_percentage(percentage, LEGACY_REDUCTION)
    return Commission(
        type="percentage",
        original_percentage=percentage,
        recruiter_percentage=recruiter_percentage,
        platform_fee_percentage=round(percentage - recruiter_percentage, 2),
        reduction_percentage=LEGACY_REDUCTION,
        original_amount=amount or round(salary.max * percentage / 100, 2),
        recruiter_amount=round(salary.max * recruiter_percentage / 100, 2),
    )


def legacy_commission_fields(commission: Commission) -> tuple[float, float]:
    if commission.type == "percentage":
        return commission.original_percentage, commission.original_amount
    return 0.0, commission.original_amount


def transform_job_for_user(job: Job, role: str) -> Job:
    commission = job.commission
    if role != ROLE_RECRUITER:
        fixed_amount = commission.fixed_amount if commission.type == "fixed" else 0.0
        return job.model_copy(update={"fixed_commission_amount": fixed_amount})

    hidden = {
        "original_percentage": 0.0,
        "platform_fee_percentage": 0.0,
        "reduction_percentage": 0.0,
        "original_amount": 0.0,
    }
    update: dict[str, object] = {
        "allowed_recruiters": [],
        "blocked_recruiters": [],
    }
    if commission.fixed_amount > 0:
        update.update(
            fixed_commission_amount=commission.recruiter_amount,
            commission_percentage=0.0,
            commission_amount=0.0,
            commission=commission.model_copy(
                update={**hidden, "type": "fixed", "fixed_amount": commission.recruiter_amount}
            ),
        )
    elif commission.type == "hourly":
        update.update(
            fixed_commission_amount=0.0,
            commission_percentage=0.0,
            commission_amount=0.0,
            commission=commission.model_copy(
                update={**hidden, "hourly_rate": commission.recruiter_amount}
            ),
        )
    else:
        percentage = calculate_recruiter_percentage(
            commission.original_percentage,
            commission.reduction_percentage,
        )
        update.update(
            fixed_commission_amount=0.0,
            commission_percentage=percentage,
            commission_amount=round(job.salary.max * percentage / 100, 2),
            commission=commission.model_copy(
                update={**hidden, "recruiter_percentage": percentage}
            ),
        )
    return job.model_copy(update=update)


def format_commission_text(job: Job) -> str:
    """Recruiter-facing commission summary used in email bodies."""
    view = transform_job_for_user(job, ROLE_RECRUITER)
    currency = job.salary.currency
    if view.fixed_commission_amount > 0:
        return f"{currency} {view.fixed_commission_amount:,.2f} fixed"
    if view.commission.type == "hourly":
        return f"{currency} {view.commission.hourly_rate:,.2f}/hr"
    return f"{view.commission_percentage:g}% ({currency} {view.commission_amount:,.2f})"


def has_job_access(job: Job, recruiter_id: str) -> bool:
    if job.status not in ACCESSIBLE_JOB_STATUSES:
        return False
    if job.visibility == VISIBILITY_SELECTED:
        return recruiter_id in job.allowed_recruiters
    return recruiter_id not in job.blocked_recruiters


def _dedupe(values: list[str]) -> list[str]:
    seen: dict[str, None] = {}
    for value in values:
        cleaned = value.strip()
        if cleaned:
            seen.setdefault(cleaned, None)
    return list(seen)


def normalize_access_update(
    visibility: str,
    allowed: list[str],
    blocked: list[str],
) -> tuple[str, list[str], list[str]]:
    if visibility not in VISIBILITY_OPTIONS:
        raise ValueError("Visibility must be either ALL or SELECTED")
    allowed_ids = _dedupe(allowed)
    blocked_ids = _dedupe(blocked)
    if visibility == VISIBILITY_SELECTED and not allowed_ids:
        raise ValueError("At least one recruiter must be selected when visibility is SELECTED")
    if visibility == VISIBILITY_ALL:
        return visibility, [], blocked_ids
    return visibility, allowed_ids, []


def build_screening_question(
    question: str,
    question_type: str,
    *,
    required: bool,
    options: list[str] | None,
    question_id: str | None = None,
) -> ScreeningQuestion:
    text = question.strip()
    if not text or not question_type:
        raise ValueError("Question and question type are required")
    if question_type not in QUESTION_TYPES:
        raise ValueError(f"Question type must be one of: {', '.join(QUESTION_TYPES)}")
    if len(text) > MAX_QUESTION_LENGTH:
        raise ValueError(f"Question must be {MAX_QUESTION_LENGTH} characters or fewer")
    choices = _dedupe(options or []) if question_type in CHOICE_QUESTION_TYPES else []
    if question_type in CHOICE_QUESTION_TYPES and len(choices) < MIN_CHOICE_OPTIONS:
        raise ValueError(f"{question_type} questions need at least {MIN_CHOICE_OPTIONS} options")
    fields: dict[str, object] = {
        "question": text,
        "question_type": question_type,
        "required": required,
        "options": choices,
    }
    if question_id:
        fields["id"] = question_id
    return ScreeningQuestion(**fields)


def apply_question_update(current: ScreeningQuestion, payload: ScreeningQuestionUpdateRequest) -> ScreeningQuestion:
    return build_screening_question(
        current.question if payload.question is None else payload.question,
        payload.question_type or current.question_type,
        required=current.required if payload.required is None else payload.required,
        options=current.options if payload.options is None else payload.options,
        question_id=current.id,
    )


def validate_job_update_post(title: str | None, content: str) -> tuple[str, str]:
    cleaned_title = (title or "").strip() or DEFAULT_UPDATE_TITLE
    cleaned_content = content.strip()
    if not cleaned_content:
        raise ValueError("Update content is required")
    if len(cleaned_title) > MAX_UPDATE_TITLE_LENGTH:
        raise ValueError(f"Title must be {MAX_UPDATE_TITLE_LENGTH} characters or fewer")
    if len(cleaned_content) > MAX_UPDATE_CONTENT_LENGTH:
        raise ValueError(f"Content must be {MAX_UPDATE_CONTENT_LENGTH} characters or fewer")
    return cleaned_title, cleaned_content


def preview_text(content: str, limit: int = UPDATE_PREVIEW_LENGTH) -> str:
    if len(content) <= limit:
        return content
    return f"{content[:limit]}..."
