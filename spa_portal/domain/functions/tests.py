import pytest

from ...conftest import FakeBaas
from .router import admin_rate_limit, get_function_service, log_error_rate_limit
from .schemas import ErrorReport
from .service import FunctionService

ADMIN_TOKEN = "admin-access-token"
THERAPIST_TOKEN = "therapist-access-token"


class AlertRecorder:
    def __init__(self):
        self.sent = []

    async def __call__(self, **kwargs):
        self.sent.append(kwargs)
        return {"id": "email-1"}


@pytest.fixture
def alerts():
    return AlertRecorder()


@pytest.fixture
def functions_client(client, fake_db, alerts):
    from ...main import app

    fake_db.users.update(
        {
            ADMIN_TOKEN: {"id": "u-admin", "email": "admin@example.com"},
            THERAPIST_TOKEN: {"id": "u-therapist", "email": "maria@example.com"},
        }
    )
    fake_db.auth_users["u-therapist"] = {"id": "u-therapist", "email": "maria@example.com", "password": "old-pass"}
    app.dependency_overrides[admin_rate_limit] = lambda: None
    app.dependency_overrides[log_error_rate_limit] = lambda: None
    app.dependency_overrides[get_function_service] = lambda: FunctionService(fake_db, send_alert=alerts)
    return client


def bearer(token):
    return {"Authorization": f"Bearer {token}"}


# ============================================================================
# UPDATE THERAPIST PASSWORD
# ============================================================================


def test_admin_resets_password_by_therapist_id(functions_client, fake_db):
    resp = functions_client.post(
        "/functions/update-therapist-password",
        json={"therapist_id": "t-1", "new_password": "new-secret"},
        headers=bearer(ADMIN_TOKEN),
    )
    assert resp.status_code == 200
    assert resp.json() == {"message": "Password updated successfully", "userId": "u-therapist"}
    assert fake_db.auth_users["u-therapist"]["password"] == "new-secret"


def test_password_reset_needs_admin(functions_client):
    resp = functions_client.post(
        "/functions/update-therapist-password",
        json={"therapist_id": "t-1", "new_password": "new-secret"},
        headers=bearer(THERAPIST_TOKEN),
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Unauthorized: Only admins can reset specialist passwords"}


def test_password_reset_needs_a_session(functions_client):
    resp = functions_client.post(
        "/functions/update-therapist-password",
        json={"therapist_id": "t-1", "new_password": "new-secret"},
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Missing Authorization header"}

    resp = functions_client.post(
        "/functions/update-therapist-password",
        json={"therapist_id": "t-1", "new_password": "new-secret"},
        headers=bearer("stale"),
    )
    assert resp.json() == {"error": "Invalid or expired session"}


def test_password_reset_for_therapist_without_login(functions_client):
    resp = functions_client.post(
        "/functions/update-therapist-password",
        json={"therapist_id": "t-2", "new_password": "new-secret"},
        headers=bearer(ADMIN_TOKEN),
    )
    assert resp.status_code == 400
    assert resp.json() == {"error": "Could not find User ID associated with this therapist"}


def test_password_reset_rejects_short_passwords(functions_client):
    resp = functions_client.post(
        "/functions/update-therapist-password",
        json={"user_id": "u-therapist", "new_password": "123"},
        headers=bearer(ADMIN_TOKEN),
    )
    assert resp.status_code == 400
    assert "at least 6 characters" in resp.json()["error"]


# ============================================================================
# CREATE THERAPIST
# ============================================================================


def test_create_new_therapist(functions_client, fake_db):
    resp = functions_client.post(
        "/functions/create-therapist",
        json={"email": "Lea@Example.com", "password": "welcome1", "name": "Lea Cruz", "specialty": "Reflexology"},
        headers=bearer(ADMIN_TOKEN),
    )
    assert resp.status_code == 200
    user_id = resp.json()["userId"]

    auth_user = fake_db.auth_users[user_id]
    assert auth_user["email"] == "lea@example.com"
    assert auth_user["user_metadata"] == {"full_name": "Lea Cruz", "role": "therapist"}

    profile = next(p for p in fake_db.tables["profiles"] if p["id"] == user_id)
    assert profile["role"] == "therapist"

    therapist = next(t for t in fake_db.tables["therapists"] if t["user_id"] == user_id)
    assert therapist["name"] == "Lea Cruz"
    assert therapist["active"] is True


def test_create_links_existing_therapist(functions_client, fake_db):
    resp = functions_client.post(
        "/functions/create-therapist",
        json={
            "email": "ana@example.com",
            "password": "welcome1",
            "name": "Ana Reyes",
            "existing_therapist_id": "t-2",
        },
        headers=bearer(ADMIN_TOKEN),
    )
    assert resp.status_code == 200
    t2 = next(t for t in fake_db.tables["therapists"] if t["id"] == "t-2")
    assert t2["user_id"] == resp.json()["userId"]
    assert len(fake_db.tables["therapists"]) == 2


def test_create_reports_auth_errors(functions_client):
    body = {"email": "maria2@example.com", "password": "welcome1", "name": "Maria"}
    assert functions_client.post("/functions/create-therapist", json=body, headers=bearer(ADMIN_TOKEN)).status_code == 200

    resp = functions_client.post("/functions/create-therapist", json=body, headers=bearer(ADMIN_TOKEN))
    assert resp.status_code == 400
    assert "already been registered" in resp.json()["error"]


# ============================================================================
# LOG ERROR
# ============================================================================


def test_first_error_alerts_and_repeat_is_silenced(functions_client, fake_db, alerts):
    report = {"message": "TypeError: x is undefined", "url": "/therapist", "severity": "error"}

    first = functions_client.post("/functions/log-error", json=report)
    second = functions_client.post("/functions/log-error", json=report)

    assert first.json() == {"success": True, "alerted": True}
    assert second.json() == {"success": True, "alerted": False}
    assert len(alerts.sent) == 1
    assert alerts.sent[0]["message"] == "TypeError: x is undefined"
    logged = fake_db.tables["error_logs"]
    assert len(logged) == 2
    assert logged[0]["status"] == "open"
    assert logged[0]["user_id"] is None


def test_log_error_rejects_empty_body(functions_client):
    resp = functions_client.post("/functions/log-error", json={"url": "/"})
    assert resp.status_code == 400
    assert "message" in resp.json()["error"]


@pytest.mark.anyio
async def test_insert_failure_still_alerts(alerts):
    db = FakeBaas({"error_logs": []})
    db.fail_next("insert", "error_logs")

    result = await FunctionService(db, send_alert=alerts).log_error(ErrorReport(message="boom", user_id=""))

    assert result.alerted is True
    assert alerts.sent[0]["user_id"] is None
    assert db.tables["error_logs"] == []
