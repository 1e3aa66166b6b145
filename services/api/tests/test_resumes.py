from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration

ADMIN = {"x-api-key": "admin-key"}


@pytest.fixture
def setup(client: TestClient, make_user, payloads) -> dict:
    company, company_headers = make_user("COMPANY")
    recruiter, recruiter_headers = make_user("RECRUITER")
    job = client.post(
        "/jobs",
        headers=company_headers,
        json=payloads.job(
            screening_questions=[
                {"id": "q-visa", "question": "Needs visa sponsorship?", "required": True},
                {"id": "q-notes", "question": "Anything else?", "required": False},
            ]
        ),
    ).json()
    return {
        "company": company,
        "company_headers": company_headers,
        "recruiter": recruiter,
        "recruiter_headers": recruiter_headers,
        "job": job,
    }


def _submit(client: TestClient, payloads, setup: dict, **overrides):
    body = payloads.resume(
        setup["job"]["job_id"],
        screening_answers=[{"question_id": "q-visa", "answer": "No"}],
    )
    body.update(overrides)
    return client.post("/resumes", headers=setup["recruiter_headers"], json=body)


def test_submission_autosaves_job_and_counts_applicants(client: TestClient, payloads, setup) -> None:
    response = _submit(client, payloads, setup, email="Jane@Example.com")

    assert response.status_code == 201
    assert response.headers.get("x-audit-event-id")
    resume = response.json()
    assert resume["status"] == "SUBMITTED"
    assert resume["email"] == "jane@example.com"
    assert resume["status_timestamps"]["submitted_at"]
    assert resume["job_title"] == "Senior Backend Engineer"

    saved = client.get("/recruiter-jobs", headers=setup["recruiter_headers"]).json()
    assert [entry["job"]["job_id"] for entry in saved["saved_jobs"]] == [setup["job"]["job_id"]]
    job = client.get(f"/jobs/{setup['job']['job_id']}", headers=setup["company_headers"]).json()
    assert job["applicant_count"] == 1


def test_required_screening_questions_must_be_answered(client: TestClient, payloads, setup) -> None:
    response = _submit(client, payloads, setup, screening_answers=[{"question_id": "q-notes", "answer": "hi"}])

    assert response.status_code == 400
    assert response.json()["detail"] == "All required screening questions must be answered"


def test_duplicate_email_or_phone_conflicts(client: TestClient, payloads, setup) -> None:
    assert _submit(client, payloads, setup).status_code == 201

    same_email = _submit(client, payloads, setup, phone="+15559999999")
    same_phone = _submit(client, payloads, setup, email="other@example.com")

    assert same_email.status_code == 409
    assert "email" in same_email.json()["detail"]
    assert same_phone.status_code == 409
    assert "phone" in same_phone.json()["detail"]


def test_submission_requires_job_access(client: TestClient, payloads, setup) -> None:
    client.put(
        f"/jobs/{setup['job']['job_id']}/access",
        headers=ADMIN,
        json={"visibility": "ALL", "blocked_recruiters": [setup["recruiter"]["user_id"]]},
    )

    assert _submit(client, payloads, setup).status_code == 403
    missing = client.post(
        "/resumes",
        headers=setup["recruiter_headers"],
        json=payloads.resume("missing-job"),
    )
    assert missing.status_code == 404


def test_listing_endpoints_are_scoped(client: TestClient, make_user, payloads, setup) -> None:
    _submit(client, payloads, setup)
    _, other_recruiter_headers = make_user("RECRUITER")
    _, outsider_headers = make_user("COMPANY")
    job_id = setup["job"]["job_id"]

    mine = client.get("/resumes/my-submissions", headers=setup["recruiter_headers"]).json()
    assert mine["total"] == 1
    assert client.get(f"/resumes/job/{job_id}", headers=setup["company_headers"]).json()["total"] == 1
    assert client.get(f"/resumes/job/{job_id}", headers=other_recruiter_headers).json()["total"] == 0
    assert client.get(f"/resumes/job/{job_id}", headers=outsider_headers).status_code == 403

    page = client.get("/resumes/all-submissions?limit=10&status=SUBMITTED", headers=ADMIN)
    assert page.status_code == 200
    assert page.json()["total"] == 1
    assert page.json()["pages"] == 1
    assert client.get("/resumes/all-submissions", headers=setup["company_headers"]).status_code == 403


def test_status_update_notifies_recruiter(client: TestClient, payloads, setup) -> None:
    resume = _submit(client, payloads, setup).json()

    invalid = client.put(
        f"/resumes/{resume['resume_id']}/status",
        headers=setup["company_headers"],
        json={"status": "MAYBE"},
    )
    assert invalid.status_code == 400
    assert "SHORTLISTED" in invalid.json()["detail"]["valid_statuses"]

    updated = client.put(
        f"/resumes/{resume['resume_id']}/status",
        headers=setup["company_headers"],
        json={"status": "SHORTLISTED"},
    )
    assert updated.status_code == 200
    body = updated.json()
    assert body["success"] is True
    assert body["message"] == "Resume status updated from SUBMITTED to SHORTLISTED"
    assert body["resume"]["status_timestamps"]["shortlisted_at"]

    notifications = client.get("/notifications", headers=setup["recruiter_headers"]).json()
    assert notifications["notifications"][0]["type"] == "CANDIDATE_STATUS_CHANGE"
    assert notifications["notifications"][0]["metadata"]["new_status"] == "SHORTLISTED"


def test_status_update_requires_job_ownership(client: TestClient, make_user, payloads, setup) -> None:
    resume = _submit(client, payloads, setup).json()
    _, outsider_headers = make_user("COMPANY")

    outsider = client.put(
        f"/resumes/{resume['resume_id']}/status",
        headers=outsider_headers,
        json={"status": "REJECTED"},
    )
    recruiter = client.put(
        f"/resumes/{resume['resume_id']}/status",
        headers=setup["recruiter_headers"],
        json={"status": "REJECTED"},
    )

    assert outsider.status_code == 403
    assert recruiter.status_code == 403


def test_notes_and_edits(client: TestClient, payloads, setup) -> None:
    resume = _submit(client, payloads, setup).json()
    resume_id = resume["resume_id"]

    empty = client.post(f"/resumes/{resume_id}/notes", headers=setup["company_headers"], json={"note": "  "})
    assert empty.status_code == 400
    assert empty.json()["detail"] == "Note is required"

    noted = client.post(
        f"/resumes/{resume_id}/notes",
        headers=setup["company_headers"],
        json={"note": "Strong systems background"},
    )
    assert noted.status_code == 201
    assert noted.json()["notes"][0]["note"] == "Strong systems background"
    assert noted.json()["notes"][0]["user_name"] == setup["company"]["name"]

    notifications = client.get("/notifications", headers=setup["recruiter_headers"]).json()
    assert [item["type"] for item in notifications["notifications"]] == ["NEW_NOTE_COMMENT"]

    edited = client.put(
        f"/resumes/{resume_id}",
        headers=setup["recruiter_headers"],
        json={"expected_ctc": "150000"},
    )
    assert edited.status_code == 200
    assert edited.json()["expected_ctc"] == "150000"
    assert client.put(
        f"/resumes/{resume_id}",
        headers=setup["company_headers"],
        json={"expected_ctc": "1"},
    ).status_code == 403
    assert client.get(f"/resumes/{resume_id}", headers=setup["company_headers"]).status_code == 200
    assert client.get("/resumes/missing", headers=ADMIN).status_code == 404
