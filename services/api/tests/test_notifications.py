from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

pytestmark = pytest.mark.integration

ADMIN = {"x-api-key": "admin-key"}


def _notify(client: TestClient, recipient_id: str, **overrides) -> dict:
    body = {
        "recipient_id": recipient_id,
        "type": "JOB_MODIFICATION",
        "title": "Job updated",
        "message": "The salary changed",
    }
    body.update(overrides)
    response = client.post("/notifications", headers=ADMIN, json=body)
    assert response.status_code == 201, response.text
    return response.json()["notification"]


def test_list_paginates_and_counts_unread(client: TestClient, make_user) -> None:
    recruiter, headers = make_user("RECRUITER")
    for index in range(3):
        _notify(client, recruiter["user_id"], title=f"Update {index}")
    _notify(client, recruiter["user_id"], type="NEW_NOTE_COMMENT")

    first_page = client.get("/notifications?limit=3", headers=headers).json()
    assert len(first_page["notifications"]) == 3
    assert first_page["unread_count"] == 4
    assert first_page["pagination"] == {
        "current_page": 1,
        "total_pages": 2,
        "total_count": 4,
        "has_next_page": True,
        "has_prev_page": False,
    }

    notes_only = client.get("/notifications?type=NEW_NOTE_COMMENT", headers=headers).json()
    assert [item["type"] for item in notes_only["notifications"]] == ["NEW_NOTE_COMMENT"]

    assert client.get("/notifications/unread-count", headers=headers).json() == {"unread_count": 4}


def test_mark_read_and_delete(client: TestClient, make_user) -> None:
    recruiter, headers = make_user("RECRUITER")
    first = _notify(client, recruiter["user_id"])
    second = _notify(client, recruiter["user_id"])

    marked = client.put("/notifications", headers=headers, json={"notification_ids": [first["notification_id"]]})
    assert marked.status_code == 200
    assert marked.json()["updated_count"] == 1
    unread = client.get("/notifications?unread_only=true", headers=headers).json()
    assert [item["notification_id"] for item in unread["notifications"]] == [second["notification_id"]]

    client.put("/notifications", headers=headers, json={"mark_all": True})
    assert client.get("/notifications/unread-count", headers=headers).json() == {"unread_count": 0}
    assert client.put("/notifications", headers=headers, json={}).status_code == 400

    deleted = client.request(
        "DELETE",
        "/notifications",
        headers=headers,
        json={"notification_ids": [first["notification_id"]]},
    )
    assert deleted.status_code == 200
    assert deleted.json()["deleted_count"] == 1


def test_users_cannot_touch_other_users_notifications(client: TestClient, make_user) -> None:
    owner, _ = make_user("RECRUITER")
    _, intruder_headers = make_user("RECRUITER")
    notification = _notify(client, owner["user_id"])

    deleted = client.request(
        "DELETE",
        "/notifications",
        headers=intruder_headers,
        json={"notification_ids": [notification["notification_id"]]},
    )
    marked = client.put(
        "/notifications",
        headers=intruder_headers,
        json={"notification_ids": [notification["notification_id"]]},
    )

    assert deleted.json()["deleted_count"] == 0
    assert marked.json()["updated_count"] == 0


def test_create_validates_type_recipient_and_role(client: TestClient, make_user) -> None:
    recruiter, recruiter_headers = make_user("RECRUITER")
    base = {"recipient_id": recruiter["user_id"], "title": "t", "message": "m"}

    assert client.post("/notifications", headers=ADMIN, json={**base, "type": "PING"}).status_code == 400
    assert (
        client.post(
            "/notifications",
            headers=ADMIN,
            json={**base, "type": "JOB_MODIFICATION", "recipient_id": "missing"},
        ).status_code
        == 404
    )
    assert (
        client.post(
            "/notifications",
            headers=recruiter_headers,
            json={**base, "type": "JOB_MODIFICATION"},
        ).status_code
        == 403
    )


def test_cleanup_removes_only_old_read_notifications(client: TestClient, make_user) -> None:
    recruiter, headers = make_user("RECRUITER")
    _notify(client, recruiter["user_id"])
    client.put("/notifications", headers=headers, json={"mark_all": True})

    kept = client.post("/admin/notifications/cleanup?days_old=30", headers=ADMIN)
    assert kept.status_code == 200
    assert kept.json()["deleted_count"] == 0
    assert client.post("/admin/notifications/cleanup", headers=headers).status_code == 403
