import pytest
from fastapi import HTTPException

from ...auth import identity_from_token, verify_access_token
from ...conftest import FakeBaas, make_token
from .roles import Role, resolve_role
from .schemas import Identity
from .service import SessionService


def identity(user_id, claims=None):
    return Identity(id=user_id, email=None, claims=claims or {"sub": user_id}, access_token="tok")


def no_sleep_recorder():
    waits = []

    async def sleep(seconds):
        waits.append(seconds)

    return waits, sleep


# ============================================================================
# ROLE RESOLUTION
# ============================================================================


def test_app_metadata_role_wins_over_profile():
    claims = {"app_metadata": {"role": "admin"}}
    assert resolve_role(claims, "therapist") == Role.ADMIN


def test_profile_role_used_without_claim():
    assert resolve_role({"app_metadata": {}}, "therapist") == Role.THERAPIST


def test_user_metadata_cannot_grant_a_role():
    claims = {"user_metadata": {"role": "admin"}}
    assert resolve_role(claims, None) == Role.USER


def test_unknown_roles_fall_back_to_user():
    assert resolve_role({"app_metadata": {"role": "superuser"}}, "owner") == Role.USER


# ============================================================================
# SESSION SERVICE
# ============================================================================


@pytest.mark.anyio
async def test_missing_profile_is_default_role_without_retry():
    db = FakeBaas({"profiles": []})
    waits, sleep = no_sleep_recorder()

    state = await SessionService(db, sleep=sleep).resolve(identity("u-new"))

    assert state.role == Role.USER
    assert state.profile is None
    assert state.profile_resolved is True
    assert waits == []
    assert db.calls.count(("select_one", "profiles")) == 1


@pytest.mark.anyio
async def test_profile_fetch_retries_then_succeeds():
    db = FakeBaas({"profiles": [{"id": "u-1", "role": "therapist"}]})
    db.fail_next("select_one", "profiles", times=2)
    waits, sleep = no_sleep_recorder()

    state = await SessionService(db, retries=2, delay=1.0, sleep=sleep).resolve(identity("u-1"))

    assert state.role == Role.THERAPIST
    assert state.dashboard_path == "/therapist"
    assert waits == [1.0, 1.0]


@pytest.mark.anyio
async def test_profile_fetch_gives_up_with_minimal_role():
    db = FakeBaas({"profiles": [{"id": "u-1", "role": "admin"}]})
    db.fail_next("select_one", "profiles", times=5)
    waits, sleep = no_sleep_recorder()

    state = await SessionService(db, retries=2, delay=1.0, sleep=sleep).resolve(identity("u-1"))

    assert state.role == Role.USER
    assert state.profile_resolved is False
    assert db.calls.count(("select_one", "profiles")) == 3


# ============================================================================
# TOKENS
# ============================================================================


def test_token_round_trip(jwt_secret):
    token = make_token("u-1", email="a@example.com", app_role="therapist")
    ident = identity_from_token(token)
    assert ident.id == "u-1"
    assert ident.email == "a@example.com"
    assert ident.claims["app_metadata"]["role"] == "therapist"


def test_expired_token_is_rejected(jwt_secret):
    token = make_token("u-1", expires_in=-60)
    with pytest.raises(HTTPException) as exc:
        verify_access_token(token)
    assert exc.value.status_code == 401
    assert exc.value.headers == {"X-Token-Expired": "true"}


def test_garbage_token_is_rejected(jwt_secret):
    with pytest.raises(HTTPException) as exc:
        verify_access_token("not-a-jwt")
    assert exc.value.status_code == 401


# ============================================================================
# ROUTES
# ============================================================================


def test_session_endpoint_reports_role_and_dashboard(client):
    token = make_token("u-admin")
    resp = client.get("/auth/session", headers={"Authorization": f"Bearer {token}"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["role"] == "admin"
    assert data["dashboard_path"] == "/admin"
    assert data["full_name"] == "Front Desk"


def test_session_endpoint_requires_a_token(client):
    resp = client.get("/auth/session")
    assert resp.status_code in (401, 403)
