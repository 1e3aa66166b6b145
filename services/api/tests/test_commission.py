from __future__ import annotations

import random
from datetime import UTC, datetime

import pytest
from sourcingscreen.jobs import (
    build_commission,
    calculate_recruiter_percentage,
    format_commission_text,
    generate_job_code,
    has_job_access,
    legacy_commission,
    normalize_access_update,
    resolve_reduction,
    transform_job_for_user,
    validate_salary,
)
from sourcingscreen.models import CommissionInput, Job, SalaryRange

pytestmark = pytest.mark.unit

SALARY = SalaryRange(min=100000, max=150000)


def _job(commission_input: CommissionInput, **overrides) -> Job:
    fields = {
        "job_id": "job-1",
        "job_code": "JOB-20260101-1234",
        "title": "Backend Engineer",
        "company_name": "Acme",
        "posted_by": "company-1",
        "status": "ACTIVE",
        "job_type": "FULL_TIME",
        "country": "USA",
        "location": "Remote",
        "salary": SALARY,
        "compensation_type": "ANNUALLY",
        "positions": 1,
        "experience_level": {"min": 2, "max": 5},
        "commission": build_commission(commission_input, SALARY, reduction=50),
        "description": "Build things",
        "created_at": "2026-01-01T00:00:00+00:00",
        "updated_at": "2026-01-01T00:00:00+00:00",
    }
    fields.update(overrides)
    return Job(**fields)


def test_job_code_format() -> None:
    code = generate_job_code(datetime(2026, 3, 9, tzinfo=UTC), rng=random.Random(7))
    prefix, date_part, suffix = code.split("-")
    assert prefix == "JOB"
    assert date_part == "20260309"
    assert 1000 <= int(suffix) <= 9999


def test_recruiter_percentage_has_floor() -> None:
    assert calculate_recruiter_percentage(20, 50) == 10
    assert calculate_recruiter_percentage(1.5, 80) == 1
    assert calculate_recruiter_percentage(0, 50) == 0


def test_percentage_commission_breakdown() -> None:
    commission = build_commission(
        CommissionInput(type="percentage", original_percentage=20),
        SALARY,
        reduction=50,
    )

    assert commission.recruiter_percentage == 10
    assert commission.platform_fee_percentage == 10
    assert commission.original_amount == 30000
    assert commission.recruiter_amount == 15000


def test_fixed_and_hourly_commission_breakdown() -> None:
    fixed = build_commission(CommissionInput(type="fixed", fixed_amount=5000), SALARY, reduction=30)
    hourly = build_commission(CommissionInput(type="hourly", hourly_rate=40), SALARY, reduction=25)

    assert fixed.recruiter_amount == 3500
    assert fixed.original_amount == 5000
    assert hourly.recruiter_amount == 30
    assert hourly.hourly_rate == 40


@pytest.mark.parametrize(
    ("commission_input", "message"),
    [
        (CommissionInput(type="percentage", original_percentage=0.5), "between 1 and 50"),
        (CommissionInput(type="percentage", original_percentage=51), "between 1 and 50"),
        (CommissionInput(type="fixed", fixed_amount=99), "at least 100"),
        (CommissionInput(type="hourly", hourly_rate=9), "at least 10"),
        (CommissionInput(type="equity"), "must be one of"),
    ],
)
def test_commission_validation(commission_input: CommissionInput, message: str) -> None:
    with pytest.raises(ValueError, match=message):
        build_commission(commission_input, SALARY, reduction=50)


def test_salary_validation() -> None:
    with pytest.raises(ValueError):
        validate_salary(SalaryRange(min=0, max=100))
    with pytest.raises(ValueError):
        validate_salary(SalaryRange(min=200, max=100))
    validate_salary(SalaryRange(min=100, max=100))


def test_reduction_rules() -> None:
    assert resolve_reduction(CommissionInput(), role="COMPANY") == 50
    assert resolve_reduction(CommissionInput(), role="COMPANY", current=35) == 35
    assert resolve_reduction(CommissionInput(reduction_percentage=20), role="ADMIN") == 20
    with pytest.raises(ValueError, match="Only admin or internal"):
        resolve_reduction(CommissionInput(reduction_percentage=20), role="COMPANY")
    with pytest.raises(ValueError, match="between 0 and 80"):
        resolve_reduction(CommissionInput(reduction_percentage=81), role="INTERNAL")


def test_legacy_commission_uses_forty_percent_reduction() -> None:
    commission = legacy_commission(10, 0, SALARY)

    assert commission.reduction_percentage == 40
    assert commission.recruiter_percentage == 6
    assert commission.original_amount == 15000


def test_recruiter_view_hides_platform_numbers() -> None:
    job = _job(CommissionInput(type="percentage", original_percentage=20))

    view = transform_job_for_user(job, "RECRUITER")

    assert view.commission_percentage == 10
    assert view.commission_amount == 15000
    assert view.fixed_commission_amount == 0
    assert view.commission.original_percentage == 0
    assert view.commission.platform_fee_percentage == 0
    assert view.commission.reduction_percentage == 0
    assert format_commission_text(job) == "10% (USD 15,000.00)"


def test_recruiter_view_of_fixed_and_hourly_commission() -> None:
    fixed_view = transform_job_for_user(
        _job(CommissionInput(type="fixed", fixed_amount=4000)),
        "RECRUITER",
    )
    hourly_view = transform_job_for_user(
        _job(CommissionInput(type="hourly", hourly_rate=60)),
        "RECRUITER",
    )

    assert fixed_view.fixed_commission_amount == 2000
    assert fixed_view.commission_percentage == 0
    assert fixed_view.commission.type == "fixed"
    assert hourly_view.commission.hourly_rate == 30
    assert hourly_view.commission_percentage == 0


def test_company_view_is_unchanged() -> None:
    job = _job(CommissionInput(type="fixed", fixed_amount=4000))

    view = transform_job_for_user(job, "COMPANY")

    assert view.commission == job.commission
    assert view.fixed_commission_amount == 4000


def test_access_rules() -> None:
    job = _job(CommissionInput(type="percentage", original_percentage=10))

    assert has_job_access(job, "r-1")
    assert not has_job_access(job.model_copy(update={"blocked_recruiters": ["r-1"]}), "r-1")
    selected = job.model_copy(update={"visibility": "SELECTED", "allowed_recruiters": ["r-2"]})
    assert not has_job_access(selected, "r-1")
    assert has_job_access(selected, "r-2")
    assert not has_job_access(job.model_copy(update={"status": "CLOSED"}), "r-1")
    assert has_job_access(job.model_copy(update={"status": "PAUSED"}), "r-1")


def test_normalize_access_update() -> None:
    assert normalize_access_update("ALL", ["a"], ["b", "b", " "]) == ("ALL", [], ["b"])
    assert normalize_access_update("SELECTED", ["a", "a"], ["b"]) == ("SELECTED", ["a"], [])
    with pytest.raises(ValueError):
        normalize_access_update("SELECTED", [], [])
    with pytest.raises(ValueError):
        normalize_access_update("SOME", ["a"], [])
