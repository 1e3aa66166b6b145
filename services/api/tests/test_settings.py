from __future__ import annotations

import pytest
from fastapi.testclient import TestClient
from sourcingscreen.email_settings import (
    EMAIL_SETTING_DEFAULTS,
    resolve_email_settings,
    validate_email_setting,
    validate_email_settings,
)

ADMIN = {"x-api-key": "admin-key"}


@pytest.mark.integration
def test_generic_settings_upsert_and_list(client: TestClient, make_user) -> None:
    _, internal_headers = make_user("INTERNAL")

    created = client.put(
        "/admin/settings",
        headers=ADMIN,
        json={"key": "welcome_banner", "value": {"text": "Hi"}, "description": "Banner copy"},
    )
    assert created.status_code == 200
    assert created.json()["setting"]["value"] == {"text": "Hi"}

    client.put("/admin/settings", headers=ADMIN, json={"key": "welcome_banner", "value": {"text": "Hello"}})
    listed = client.get("/admin/settings", headers=ADMIN).json()["settings"]
    assert listed["welcome_banner"]["value"] == {"text": "Hello"}
    assert listed["welcome_banner"]["description"] == "Banner copy"
    assert listed["welcome_banner"]["updated_by"]

    assert client.put("/admin/settings", headers=ADMIN, json={"key": "", "value": 1}).status_code == 400
    assert client.put("/admin/settings", headers=ADMIN, json={"key": "x"}).status_code == 400
    assert client.get("/admin/settings", headers=internal_headers).status_code == 403


@pytest.mark.integration
def test_email_settings_defaults_and_update(client: TestClient) -> None:
    defaults = client.get("/admin/email-settings", headers=ADMIN)
    assert defaults.status_code == 200
    assert defaults.json()["settings"] == EMAIL_SETTING_DEFAULTS
    stored = client.get("/admin/settings", headers=ADMIN).json()["settings"]
    assert set(EMAIL_SETTING_DEFAULTS) <= set(stored)

    updated = client.put(
        "/admin/email-settings",
        headers=ADMIN,
        json={"settings": {"job_notification_frequency": 3, "end_of_day_time": "17:30"}},
    )
    assert updated.status_code == 200
    assert updated.json()["settings"]["job_notification_frequency"] == 3
    assert updated.json()["settings"]["end_of_day_time"] == "17:30"


@pytest.mark.integration
def test_email_settings_update_reports_errors(client: TestClient) -> None:
    response = client.put(
        "/admin/email-settings",
        headers=ADMIN,
        json={"settings": {"job_notification_frequency": 99, "end_of_day_time": "25:00", "bogus": 1}},
    )

    assert response.status_code == 400
    errors = response.json()["detail"]["errors"]
    assert set(errors) == {"job_notification_frequency", "end_of_day_time", "bogus"}
    assert errors["bogus"] == "Invalid setting key"
    assert client.put("/admin/email-settings", headers=ADMIN, json={}).status_code == 400


@pytest.mark.unit
def test_email_setting_rules() -> None:
    assert validate_email_setting("job_notification_frequency", 1) is None
    assert validate_email_setting("job_notification_frequency", 51) is not None
    assert validate_email_setting("job_notification_frequency", True) is not None
    assert validate_email_setting("end_of_day_notifications", "yes") is not None
    assert validate_email_setting("end_of_day_time", "9:05") is None
    assert validate_email_setting("end_of_day_time", "09:60") is not None
    assert validate_email_settings({"email_notifications_enabled": False}) == {}
    assert resolve_email_settings({"end_of_day_time": "20:00"})["end_of_day_time"] == "20:00"
    assert resolve_email_settings({})["job_notification_frequency"] == 5
