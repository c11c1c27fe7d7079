import json
from datetime import date, datetime, timezone
from types import SimpleNamespace

import aiohttp
import httpx
import pytest

from .baas import BaasClient, BaasError, NotFoundError, build_filters
from .rate_limiter import RateLimiter
from .realtime import ChangeEvent, RealtimeError, RealtimeSubscription, parse_change, websocket_url
from .shared.dates import parse_calendar_date, spa_today
from .shared.retry import retry_async

BASE_URL = "https://project.supabase.co"


def baas_with(handler) -> BaasClient:
    return BaasClient(url=BASE_URL, api_key="service-key", anon_key="anon-key", transport=httpx.MockTransport(handler))


# ============================================================================
# STORE CLIENT
# ============================================================================


def test_filters_encode_postgrest_operators():
    params = build_filters(
        eq={"therapist_id": "t-1", "active": True},
        gte={"created_at": datetime(2025, 3, 1, tzinfo=timezone.utc)},
        is_={"user_id": None},
    )
    assert params == [
        ("therapist_id", "eq.t-1"),
        ("active", "eq.true"),
        ("created_at", "gte.2025-03-01T00:00:00+00:00"),
        ("user_id", "is.null"),
    ]


@pytest.mark.anyio
async def test_select_sends_filters_order_and_keys():
    seen = {}

    def handler(request: httpx.Request):
        seen["path"] = request.url.path
        seen["params"] = list(request.url.params.multi_items())
        seen["apikey"] = request.headers["apikey"]
        return httpx.Response(200, json=[{"id": "b-1"}])

    db = baas_with(handler)
    rows = await db.select("bookings", "*, services(title)", eq={"therapist_id": "t-1"}, order="booking_date")
    await db.close()

    assert rows == [{"id": "b-1"}]
    assert seen["path"] == "/rest/v1/bookings"
    assert seen["params"] == [
        ("select", "*, services(title)"),
        ("therapist_id", "eq.t-1"),
        ("order", "booking_date.asc"),
    ]
    assert seen["apikey"] == "service-key"


@pytest.mark.anyio
async def test_single_row_miss_is_not_found():
    def handler(request: httpx.Request):
        assert request.headers["Accept"] == "application/vnd.pgrst.object+json"
        return httpx.Response(406, json={"code": "PGRST116", "message": "JSON object requested, multiple (or no) rows returned"})

    db = baas_with(handler)
    with pytest.raises(NotFoundError):
        await db.select_one("profiles", eq={"id": "u-1"})
    await db.close()


@pytest.mark.anyio
async def test_server_errors_become_baas_errors():
    def handler(request: httpx.Request):
        return httpx.Response(500, json={"code": "XX000", "message": "boom"})

    db = baas_with(handler)
    with pytest.raises(BaasError) as exc:
        await db.select("therapists")
    await db.close()
    assert not isinstance(exc.value, NotFoundError)
    assert exc.value.status_code == 500
    assert exc.value.code == "XX000"


@pytest.mark.anyio
async def test_update_patches_matching_rows_only():
    seen = {}

    def handler(request: httpx.Request):
        seen["method"] = request.method
        seen["params"] = list(request.url.params.multi_items())
        seen["body"] = json.loads(request.content)
        seen["prefer"] = request.headers["Prefer"]
        return httpx.Response(200, json=[{"id": "t-1"}])

    db = baas_with(handler)
    await db.update("therapists", {"unavailable_blockouts": ["2025-03-20"]}, eq={"id": "t-1"})
    with pytest.raises(ValueError):
        await db.update("therapists", {"active": False}, eq={})
    await db.close()

    assert seen["method"] == "PATCH"
    assert seen["params"] == [("id", "eq.t-1")]
    assert seen["body"] == {"unavailable_blockouts": ["2025-03-20"]}
    assert seen["prefer"] == "return=representation"


@pytest.mark.anyio
async def test_get_user_uses_the_callers_token():
    def handler(request: httpx.Request):
        assert request.url.path == "/auth/v1/user"
        assert request.headers["Authorization"] == "Bearer user-token"
        assert request.headers["apikey"] == "anon-key"
        return httpx.Response(200, json={"id": "u-1"})

    db = baas_with(handler)
    assert await db.get_user("user-token") == {"id": "u-1"}
    await db.close()


# ============================================================================
# CHANGE FEED
# ============================================================================


def test_parse_change_reads_postgres_changes_payload():
    message = {
        "topic": "realtime:therapist_status_changes:t-1",
        "event": "postgres_changes",
        "payload": {
            "data": {
                "type": "UPDATE",
                "table": "bookings",
                "record": {"id": "b-1", "status": "completed"},
                "old_record": {"id": "b-1", "status": "confirmed"},
            }
        },
    }
    change = parse_change(message)
    assert change.event_type == "UPDATE"
    assert change.changed("status")
    assert parse_change({"event": "phx_reply", "payload": {}}) is None


def test_change_needs_both_versions_to_count():
    assert not ChangeEvent("UPDATE", "bookings", new={"status": "completed"}, old={}).changed("status")
    assert not ChangeEvent("UPDATE", "bookings", new={"status": "x"}, old={"status": "x"}).changed("status")


def test_subscription_join_payload():
    sub = RealtimeSubscription(
        url=BASE_URL,
        api_key="anon",
        topic="therapist_status_changes:t-1",
        table="bookings",
        filter="therapist_id=eq.t-1",
        access_token="user-token",
    )
    assert sub.topic == "realtime:therapist_status_changes:t-1"
    assert sub.join_payload() == {
        "config": {
            "postgres_changes": [
                {"event": "UPDATE", "schema": "public", "table": "bookings", "filter": "therapist_id=eq.t-1"}
            ]
        },
        "access_token": "user-token",
    }
    assert websocket_url(BASE_URL, "anon") == "wss://project.supabase.co/realtime/v1/websocket?apikey=anon&vsn=1.0.0"


class ClosingSocket:
    """Delivers its messages, then stops like a socket the server closed"""

    closed = False

    def __init__(self, messages):
        self.messages = messages

    async def __aiter__(self):
        for message in self.messages:
            yield message


@pytest.mark.anyio
async def test_feed_closed_by_server_is_an_error():
    sub = RealtimeSubscription(url=BASE_URL, api_key="anon", topic="therapist_status_changes:t-1", table="bookings")
    change = {
        "topic": "realtime:therapist_status_changes:t-1",
        "event": "postgres_changes",
        "payload": {
            "data": {
                "type": "UPDATE",
                "table": "bookings",
                "record": {"status": "completed"},
                "old_record": {"status": "confirmed"},
            }
        },
    }
    sub._ws = ClosingSocket([SimpleNamespace(type=aiohttp.WSMsgType.TEXT, data=json.dumps(change))])

    received = []
    with pytest.raises(RealtimeError):
        async for event in sub:
            received.append(event)

    assert [e.new["status"] for e in received] == ["completed"]


# ============================================================================
# SHARED
# ============================================================================


def test_calendar_dates():
    assert parse_calendar_date("2025-03-15") == date(2025, 3, 15)
    assert parse_calendar_date(date(2025, 3, 15)) == date(2025, 3, 15)
    assert parse_calendar_date("2025-03-14T16:30:00+00:00") == date(2025, 3, 15)
    assert spa_today(datetime(2025, 3, 14, 16, 30, tzinfo=timezone.utc)) == date(2025, 3, 15)
    with pytest.raises(ValueError):
        parse_calendar_date(20250315)


@pytest.mark.anyio
async def test_retry_fixed_delay_then_give_up():
    attempts = []
    waits = []

    async def flaky():
        attempts.append(1)
        raise BaasError("down")

    async def sleep(seconds):
        waits.append(seconds)

    with pytest.raises(BaasError):
        await retry_async(flaky, retries=2, delay=1.0, retry_on=(BaasError,), sleep=sleep)
    assert len(attempts) == 3
    assert waits == [1.0, 1.0]


class FakeRedis:
    def __init__(self):
        self.values = {}

    def get(self, key):
        return self.values.get(key)

    def ttl(self, key):
        return 30 if key in self.values else -2

    def set(self, key, value, ex=None):
        self.values[key] = str(value)


def test_rate_limiter_counts_per_key():
    limiter = RateLimiter(limit=2, window_seconds=60, key_prefix="test")
    redis_client = FakeRedis()

    assert limiter.hit("test:1.2.3.4", redis_client)[0] is True
    assert limiter.hit("test:1.2.3.4", redis_client)[0] is True
    allowed, count, ttl = limiter.hit("test:1.2.3.4", redis_client)
    assert allowed is False
    assert count == 2
    assert 0 < ttl <= 60
    assert limiter.hit("test:5.6.7.8", redis_client)[0] is True
