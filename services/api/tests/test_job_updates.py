from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sourcingscreen.jobs import preview_text, validate_job_update_post

ADMIN = {"x-api-key": "admin-key"}


@pytest.mark.unit
def test_update_post_defaults_and_limits() -> None:
    assert validate_job_update_post(None, " Interviews start Monday ") == ("Job Update", "Interviews start Monday")
    assert validate_job_update_post("  ", "Body")[0] == "Job Update"
    with pytest.raises(ValueError, match="Update content is required"):
        validate_job_update_post("Title", "   ")
    with pytest.raises(ValueError, match="Title must be 200 characters or fewer"):
        validate_job_update_post("t" * 201, "Body")
    with pytest.raises(ValueError, match="Content must be 2000 characters or fewer"):
        validate_job_update_post(None, "c" * 2001)

    assert preview_text("short") == "short"
    assert preview_text("x" * 150) == "x" * 100 + "..."


@pytest.mark.integration
def test_company_posts_update_and_savers_are_notified(client: TestClient, make_user, payloads) -> None:
    company, company_headers = make_user("COMPANY")
    _, saver_headers = make_user("RECRUITER")
    _, bystander_headers = make_user("RECRUITER")
    job = client.post("/jobs", headers=company_headers, json=payloads.job()).json()
    client.post("/recruiter-jobs", headers=saver_headers, json={"job_id": job["job_id"]})
    url = f"/jobs/{job['job_id']}/updates"
    content = "Hiring manager prefers candidates in CST. " * 5

    posted = client.post(url, headers=company_headers, json={"title": "Timezone", "content": content})

    assert posted.status_code == 201
    assert posted.headers.get("x-audit-event-id")
    body = posted.json()
    assert body["message"] == "Job update posted successfully"
    assert body["data"]["posted_by_name"] == company["name"]
    assert body["data"]["posted_by_role"] == "COMPANY"

    inbox = client.get("/notifications", headers=saver_headers).json()["notifications"]
    assert len(inbox) == 1
    assert inbox[0]["type"] == "JOB_MODIFICATION"
    assert inbox[0]["title"] == "Job Update: Timezone"
    assert inbox[0]["message"].startswith(f'New update posted for "{job["title"]}" by {company["name"]}: ')
    assert inbox[0]["message"].endswith("...")
    assert inbox[0]["metadata"]["full_update_content"] == content.strip()
    assert client.get("/notifications", headers=bystander_headers).json()["notifications"] == []


@pytest.mark.integration
def test_updates_are_listed_newest_first(client: TestClient, make_user, payloads) -> None:
    _, company_headers = make_user("COMPANY")
    _, recruiter_headers = make_user("RECRUITER")
    job = client.post("/jobs", headers=company_headers, json=payloads.job()).json()
    url = f"/jobs/{job['job_id']}/updates"
    client.post(url, headers=company_headers, json={"content": "First"})
    client.post(url, headers=ADMIN, json={"title": "Second", "content": "Second"})

    listed = client.get(url, headers=recruiter_headers).json()

    assert listed["success"] is True
    assert [item["content"] for item in listed["data"]] == ["Second", "First"]
    assert listed["data"][1]["title"] == "Job Update"


@pytest.mark.integration
def test_only_job_posters_with_access_post_updates(client: TestClient, make_user, payloads) -> None:
    _, company_headers = make_user("COMPANY")
    _, other_company_headers = make_user("COMPANY")
    _, recruiter_headers = make_user("RECRUITER")
    job = client.post("/jobs", headers=company_headers, json=payloads.job()).json()
    url = f"/jobs/{job['job_id']}/updates"

    recruiter_post = client.post(url, headers=recruiter_headers, json={"content": "Hi"})
    assert recruiter_post.status_code == 403
    assert recruiter_post.json()["detail"] == "You don't have permission to post job updates"
    assert client.post(url, headers=other_company_headers, json={"content": "Hi"}).status_code == 403
    assert client.post(url, headers=company_headers, json={"content": " "}).status_code == 400
    assert client.post("/jobs/missing/updates", headers=ADMIN, json={"content": "Hi"}).status_code == 404
    assert client.get(url, headers=other_company_headers).status_code == 403
