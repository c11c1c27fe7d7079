import copy
import time
import uuid
from datetime import date, datetime, timedelta, timezone

import pytest
from fastapi.testclient import TestClient
from jose import jwt

from .baas import BaasError, NotFoundError, _encode_value
from .realtime import ChangeEvent

JWT_SECRET = "test-jwt-secret-with-enough-length-for-hs256"


class FakeBaas:
    """In-memory stand-in for BaasClient with the same call signatures"""

    def __init__(self, tables=None, users=None):
        self.tables: dict[str, list[dict]] = {k: [dict(r) for r in v] for k, v in (tables or {}).items()}
        # access token -> GoTrue user
        self.users: dict[str, dict] = dict(users or {})
        self.auth_users: dict[str, dict] = {}
        self.fail: dict[tuple[str, str], int] = {}
        self.calls: list[tuple] = []

    def fail_next(self, method: str, table: str, times: int = 1):
        self.fail[(method, table)] = times

    def _maybe_fail(self, method: str, table: str):
        self.calls.append((method, table))
        remaining = self.fail.get((method, table), 0)
        if remaining:
            self.fail[(method, table)] = remaining - 1
            raise BaasError(f"{method} {table} unavailable", status_code=503)

    @staticmethod
    def _matches(row, eq=None, neq=None, gte=None, lte=None, is_=None):
        for col, value in (eq or {}).items():
            if _encode_value(row.get(col)) != _encode_value(value):
                return False
        for col, value in (neq or {}).items():
            if _encode_value(row.get(col)) == _encode_value(value):
                return False
        for col, value in (gte or {}).items():
            if row.get(col) is None or _encode_value(row.get(col)) < _encode_value(value):
                return False
        for col, value in (lte or {}).items():
            if row.get(col) is None or _encode_value(row.get(col)) > _encode_value(value):
                return False
        for col, value in (is_ or {}).items():
            if row.get(col) is not value:
                return False
        return True

    async def close(self):
        pass

    async def select(self, table, columns="*", *, eq=None, neq=None, gte=None, lte=None, is_=None,
                     order=None, desc=False, limit=None):
        self._maybe_fail("select", table)
        rows = [
            copy.deepcopy(r)
            for r in self.tables.get(table, [])
            if self._matches(r, eq, neq, gte, lte, is_)
        ]
        if order:
            rows.sort(key=lambda r: _encode_value(r.get(order)), reverse=desc)
        if limit is not None:
            rows = rows[:limit]
        return rows

    async def select_one(self, table, columns="*", *, eq=None):
        self._maybe_fail("select_one", table)
        rows = [copy.deepcopy(r) for r in self.tables.get(table, []) if self._matches(r, eq)]
        if not rows:
            raise NotFoundError("no rows", status_code=406, code="PGRST116")
        if len(rows) > 1:
            raise BaasError("multiple rows", status_code=406, code="PGRST116")
        return rows[0]

    async def insert(self, table, rows):
        self._maybe_fail("insert", table)
        rows = rows if isinstance(rows, list) else [rows]
        inserted = []
        for row in rows:
            row = dict(row)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", datetime.now(timezone.utc).isoformat())
            self.tables.setdefault(table, []).append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    async def upsert(self, table, rows):
        self._maybe_fail("upsert", table)
        rows = rows if isinstance(rows, list) else [rows]
        stored = self.tables.setdefault(table, [])
        for row in rows:
            existing = next((r for r in stored if r.get("id") == row.get("id")), None)
            if existing is not None:
                existing.update(row)
            else:
                stored.append(dict(row))
        return copy.deepcopy(rows)

    async def update(self, table, patch, *, eq):
        if not eq:
            raise ValueError("update requires at least one equality predicate")
        self._maybe_fail("update", table)
        updated = []
        for row in self.tables.get(table, []):
            if self._matches(row, eq):
                row.update(copy.deepcopy(patch))
                updated.append(copy.deepcopy(row))
        return updated

    async def get_user(self, access_token):
        self._maybe_fail("get_user", "auth")
        user = self.users.get(access_token)
        if user is None:
            raise BaasError("invalid JWT", status_code=401, code="bad_jwt")
        return user

    async def admin_create_user(self, *, email, password, email_confirm=True, user_metadata=None):
        self._maybe_fail("admin_create_user", "auth")
        if any(u["email"] == email for u in self.auth_users.values()):
            raise BaasError("A user with this email address has already been registered", status_code=422)
        user = {
            "id": str(uuid.uuid4()),
            "email": email,
            "password": password,
            "email_confirmed": email_confirm,
            "user_metadata": user_metadata or {},
        }
        self.auth_users[user["id"]] = user
        return {"id": user["id"], "email": email, "user_metadata": user["user_metadata"]}

    async def admin_update_user(self, user_id, attributes):
        self._maybe_fail("admin_update_user", "auth")
        user = self.auth_users.get(user_id)
        if user is None:
            raise BaasError("User not found", status_code=404, code="user_not_found")
        user.update(attributes)
        return {"id": user_id}


class FakeSubscription:
    def __init__(self, events, error=None):
        self.events = list(events)
        self.error = error
        self.entered = False
        self.exited = False

    async def __aenter__(self):
        self.entered = True
        return self

    async def __aexit__(self, exc_type, exc, tb):
        self.exited = True

    async def __aiter__(self):
        for event in self.events:
            yield event
        if self.error is not None:
            raise self.error


class FakeRealtime:
    def __init__(self, events=(), error=None):
        self.events = list(events)
        self.error = error
        self.subscriptions: list[tuple[str, dict, FakeSubscription]] = []

    def subscribe(self, topic, **kwargs):
        subscription = FakeSubscription(self.events, self.error)
        self.subscriptions.append((topic, kwargs, subscription))
        return subscription


def status_change(booking_id: str, old: str, new: str, therapist_id: str = "t-1") -> ChangeEvent:
    return ChangeEvent(
        event_type="UPDATE",
        table="bookings",
        new={"id": booking_id, "status": new, "therapist_id": therapist_id},
        old={"id": booking_id, "status": old, "therapist_id": therapist_id},
    )


def make_token(user_id: str, *, email: str = "someone@example.com", app_role=None, expires_in: int = 3600) -> str:
    claims = {
        "sub": user_id,
        "email": email,
        "aud": "authenticated",
        "role": "authenticated",
        "exp": int(time.time()) + expires_in,
    }
    if app_role:
        claims["app_metadata"] = {"role": app_role}
    return jwt.encode(claims, JWT_SECRET, algorithm="HS256")


def booking_row(booking_id: str, day: date, status: str, *, time_="10:00", therapist_id="t-1", **extra) -> dict:
    row = {
        "id": booking_id,
        "service_id": "svc-1",
        "therapist_id": therapist_id,
        "booking_date": day.isoformat(),
        "booking_time": time_,
        "status": status,
        "guest_name": "Walk-in Guest",
        "services": {"title": "Swedish Massage", "duration": 60, "price": "1200.00"},
        "profiles": None,
    }
    row.update(extra)
    return row


@pytest.fixture
def anyio_backend():
    return "asyncio"


@pytest.fixture
def jwt_secret(monkeypatch):
    monkeypatch.setattr("spa_portal.auth.SUPABASE_JWT_SECRET", JWT_SECRET)
    return JWT_SECRET


@pytest.fixture
def today():
    from .shared.dates import spa_today

    return spa_today()


@pytest.fixture
def spa_data(today):
    """A linked therapist, a client, an admin and a few bookings around today"""
    return {
        "profiles": [
            {"id": "u-therapist", "role": "therapist", "full_name": "Maria Santos", "email": "maria@example.com"},
            {"id": "u-client", "role": "user", "full_name": "Client One", "email": "client@example.com"},
            {"id": "u-admin", "role": "admin", "full_name": "Front Desk", "email": "admin@example.com"},
            {"id": "u-unlinked", "role": "therapist", "full_name": "New Hire", "email": "new@example.com"},
        ],
        "therapists": [
            {
                "id": "t-1",
                "name": "Maria Santos",
                "specialty": "Shiatsu",
                "active": True,
                "user_id": "u-therapist",
                "unavailable_blockouts": [(today + timedelta(days=2)).isoformat()],
            },
            {
                "id": "t-2",
                "name": "Ana Reyes",
                "specialty": "Hot Stone",
                "active": True,
                "user_id": None,
                "unavailable_blockouts": None,
            },
        ],
        "bookings": [
            booking_row("b-today", today, "confirmed", time_="09:00"),
            booking_row("b-later", today + timedelta(days=3), "pending", time_="14:00"),
            booking_row(
                "b-done",
                today - timedelta(days=1),
                "completed",
                commission_amount="300.00",
                tip_amount="100.00",
                tip_recipient="therapist",
            ),
        ],
        "therapist_feedback": [
            {"id": "r-1", "therapist_id": "t-1", "rating": 5, "created_at": "2025-01-02T10:00:00+00:00"},
            {"id": "r-2", "therapist_id": "t-1", "rating": 4, "created_at": "2025-01-03T10:00:00+00:00"},
        ],
        "commission_payouts": [],
    }


@pytest.fixture
def fake_db(spa_data):
    return FakeBaas(spa_data)


@pytest.fixture
def client(fake_db, jwt_secret):
    from .main import app

    app.state.baas = fake_db
    app.state.realtime = FakeRealtime()
    yield TestClient(app)
    app.dependency_overrides.clear()
