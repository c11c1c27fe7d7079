import asyncio
import logging
from datetime import date, timedelta
from decimal import Decimal

import pytest
from fastapi import WebSocketDisconnect

from ...conftest import FakeBaas, FakeRealtime, booking_row, make_token, status_change
from ...realtime import ChangeEvent, RealtimeError
from . import views
from .availability import AvailabilityEditor, AvailabilityError, AvailabilitySaveError, EditorState, SaveInProgressError
from .blockouts import parse_blockouts, serialize_blockouts
from .dashboard import DashboardLoadError, DashboardStatus, TherapistDashboard
from .router import LiveDashboardSession
from .schemas import Booking, EarningsFilter, RangeMode, Review
from .service import NOT_LINKED_DETAIL

TODAY = date(2025, 3, 15)


def bookings(*rows):
    return [Booking.model_validate(r) for r in rows]


def review(review_id, rating):
    return Review.model_validate(
        {"id": review_id, "therapist_id": "t-1", "rating": rating, "created_at": "2025-03-01T08:00:00+00:00"}
    )


def auth(user_id):
    return {"Authorization": f"Bearer {make_token(user_id)}"}


# ============================================================================
# DERIVED VIEWS
# ============================================================================


def test_upcoming_is_active_and_not_before_today():
    rows = bookings(
        booking_row("past", TODAY - timedelta(days=1), "confirmed"),
        booking_row("today", TODAY, "pending"),
        booking_row("future", TODAY + timedelta(days=4), "confirmed"),
        booking_row("cancelled", TODAY + timedelta(days=1), "cancelled"),
        booking_row("completed", TODAY, "completed"),
    )
    assert [b.id for b in views.upcoming_bookings(rows, TODAY)] == ["today", "future"]
    assert [b.id for b in views.todays_bookings(rows, TODAY)] == ["today"]
    assert [b.id for b in views.completed_bookings(rows)] == ["completed"]


def test_average_rating_rounds_half_up_to_one_decimal():
    assert views.average_rating([]) == Decimal("0")
    assert views.average_rating([review("a", 5), review("b", 4)]) == Decimal("4.5")
    assert views.average_rating([review("a", 5), review("b", 4), review("c", 4)]) == Decimal("4.3")
    assert str(views.average_rating([review("a", 4), review("b", 4)])) == "4.0"


def test_month_filter_keeps_completed_bookings_in_that_month():
    rows = bookings(
        booking_row("feb", date(2025, 2, 28), "completed"),
        booking_row("mar", date(2025, 3, 1), "completed"),
        booking_row("mar-pending", date(2025, 3, 20), "pending"),
        booking_row("mar-prev-year", date(2024, 3, 10), "completed"),
    )
    flt = EarningsFilter(mode=RangeMode.MONTH, month=3, year=2025)
    assert [b.id for b in views.filter_earnings(rows, flt, TODAY)] == ["mar"]


def test_relative_windows_count_calendar_days():
    rows = bookings(
        booking_row("edge", TODAY - timedelta(days=7), "completed"),
        booking_row("outside", TODAY - timedelta(days=8), "completed"),
        booking_row("month-edge", TODAY - timedelta(days=30), "completed"),
    )
    week = views.filter_earnings(rows, EarningsFilter(mode=RangeMode.LAST_7_DAYS), TODAY)
    month = views.filter_earnings(rows, EarningsFilter(mode=RangeMode.LAST_30_DAYS), TODAY)
    assert [b.id for b in week] == ["edge"]
    assert {b.id for b in month} == {"edge", "outside", "month-edge"}


def test_date_filter_requires_a_date():
    with pytest.raises(ValueError):
        EarningsFilter(mode=RangeMode.DATE)


def test_totals_are_exact_and_ignore_management_tips():
    rows = bookings(
        booking_row("a", TODAY, "completed", commission_amount="0.10", tip_amount="0.20", tip_recipient="therapist"),
        booking_row("b", TODAY, "completed", commission_amount="0.20", tip_amount="50", tip_recipient="management"),
        booking_row("c", TODAY, "completed", commission_amount=None, tip_amount="0.10", tip_recipient="therapist"),
    )
    assert views.total_commission(rows) == Decimal("0.30")
    assert views.total_tips(rows) == Decimal("0.30")
    assert views.total_tips(list(reversed(rows))) == views.total_tips(rows)


def test_last_30_days_commission_ignores_older_sessions():
    rows = bookings(
        booking_row("recent", TODAY, "completed", commission_amount="500"),
        booking_row("old", TODAY - timedelta(days=40), "completed", commission_amount="300"),
    )
    earnings = views.filter_earnings(rows, EarningsFilter(mode=RangeMode.LAST_30_DAYS), TODAY)
    assert views.total_commission(earnings) == Decimal("500")
    assert str(views.average_rating([review("a", 5), review("b", 3)])) == "4.0"


def test_stats_overview_counts():
    rows = bookings(
        booking_row("today", TODAY, "confirmed"),
        booking_row("later", TODAY + timedelta(days=1), "pending"),
        booking_row("done", TODAY - timedelta(days=2), "completed", commission_amount="250"),
    )
    stats = views.stats_overview(rows, EarningsFilter(), TODAY)
    assert stats.today_count == 1
    assert stats.upcoming_count == 2
    assert stats.completed_count == 1
    assert stats.session_count == 1
    assert stats.total_commission == Decimal("250")


def test_today_timeline_groups_by_time_of_day():
    rows = bookings(
        booking_row("evening", TODAY, "confirmed", time_="17:30"),
        booking_row("late-morning", TODAY, "confirmed", time_="11:59"),
        booking_row("noon", TODAY, "pending", time_="12:00"),
        booking_row("early", TODAY, "confirmed", time_="08:00"),
    )
    buckets = views.today_timeline(rows, TODAY)
    assert [(b.title, [x.id for x in b.bookings]) for b in buckets] == [
        ("Morning Rituals", ["early", "late-morning"]),
        ("Afternoon Glow", ["noon"]),
        ("Evening Serenity", ["evening"]),
    ]


def test_open_dates_skip_blocked_days():
    blocked = [TODAY + timedelta(days=1), TODAY - timedelta(days=3)]
    dates = views.open_dates(blocked, TODAY, days=3)
    assert dates == [TODAY, TODAY + timedelta(days=2)]


# ============================================================================
# BLOCKOUT COLUMN
# ============================================================================


def test_blockouts_read_array_and_json_text():
    assert parse_blockouts(["2025-03-20", "2025-03-18", "2025-03-20"]) == [date(2025, 3, 18), date(2025, 3, 20)]
    assert parse_blockouts('["2025-03-18"]') == [date(2025, 3, 18)]
    assert parse_blockouts(None) == []
    assert parse_blockouts("") == []


def test_legacy_utc_instants_read_as_local_days():
    # Local midnight in Manila stored as a UTC instant
    assert parse_blockouts(["2025-03-14T16:00:00.000Z"]) == [date(2025, 3, 15)]


def test_unreadable_blockouts_are_logged_and_empty(caplog):
    with caplog.at_level(logging.ERROR):
        assert parse_blockouts("not json", therapist_id="t-9") == []
        assert parse_blockouts('{"2025-03-18": true}', therapist_id="t-9") == []
        assert parse_blockouts(["2025-03-18", "soon"], therapist_id="t-9") == []
    assert "t-9" in caplog.text


def test_blockouts_serialize_as_sorted_iso_days():
    assert serialize_blockouts({date(2025, 3, 20), date(2025, 3, 2)}) == ["2025-03-02", "2025-03-20"]


# ============================================================================
# AVAILABILITY EDITOR
# ============================================================================


class BlockingBaas(FakeBaas):
    """Holds every update until released"""

    def __init__(self, *args, **kwargs):
        super().__init__(*args, **kwargs)
        self.release = asyncio.Event()

    async def update(self, table, patch, *, eq):
        await self.release.wait()
        return await super().update(table, patch, eq=eq)


def therapist_table(blockouts=None):
    return {"therapists": [{"id": "t-1", "name": "Maria", "unavailable_blockouts": blockouts}]}


def test_toggle_rules():
    past = TODAY - timedelta(days=1)
    future = TODAY + timedelta(days=1)
    editor = AvailabilityEditor("t-1", [past], lambda: TODAY)

    assert editor.toggle(TODAY - timedelta(days=2)) is False
    assert editor.state == EditorState.VIEWING

    assert editor.toggle(past) is True
    assert editor.dates == []
    assert editor.state == EditorState.DIRTY

    assert editor.toggle(future) is True
    assert editor.toggle(TODAY) is True
    assert editor.dates == [TODAY, future]


def test_toggle_leaves_other_days_alone():
    june_10 = date(2025, 6, 10)
    editor = AvailabilityEditor("t-1", [date(2025, 6, 1), date(2025, 6, 2)], lambda: june_10)

    editor.toggle(date(2025, 6, 1))
    assert editor.dates == [date(2025, 6, 2)]

    assert editor.toggle(date(2025, 5, 1)) is False
    assert editor.dates == [date(2025, 6, 2)]


def test_replace_refuses_new_past_days_but_keeps_old_ones():
    old_past = TODAY - timedelta(days=5)
    editor = AvailabilityEditor("t-1", [old_past], lambda: TODAY)

    editor.replace([old_past, TODAY + timedelta(days=1)])
    assert editor.dates == [old_past, TODAY + timedelta(days=1)]

    with pytest.raises(AvailabilityError):
        editor.replace([TODAY - timedelta(days=1)])


@pytest.mark.anyio
async def test_save_writes_full_set_and_returns_to_viewing():
    db = FakeBaas(therapist_table(["2025-03-10"]))
    editor = AvailabilityEditor("t-1", [date(2025, 3, 10)], lambda: TODAY)
    editor.toggle(date(2025, 3, 18))

    saved = await editor.save(db)

    assert saved == [date(2025, 3, 10), date(2025, 3, 18)]
    assert editor.state == EditorState.VIEWING
    assert editor.baseline == {date(2025, 3, 10), date(2025, 3, 18)}
    assert db.tables["therapists"][0]["unavailable_blockouts"] == ["2025-03-10", "2025-03-18"]


@pytest.mark.anyio
async def test_failed_save_keeps_edits_and_says_so():
    db = FakeBaas(therapist_table())
    db.fail_next("update", "therapists")
    editor = AvailabilityEditor("t-1", [], lambda: TODAY)
    editor.toggle(date(2025, 3, 18))

    with pytest.raises(AvailabilitySaveError):
        await editor.save(db)

    assert editor.state == EditorState.DIRTY
    assert editor.dates == [date(2025, 3, 18)]
    assert editor.baseline == set()
    assert editor.message == "Failed to save availability"
    assert db.tables["therapists"][0]["unavailable_blockouts"] is None


@pytest.mark.anyio
async def test_second_save_while_saving_is_refused():
    db = BlockingBaas(therapist_table())
    editor = AvailabilityEditor("t-1", [], lambda: TODAY)
    editor.toggle(date(2025, 3, 18))

    first = asyncio.create_task(editor.save(db))
    while not editor.is_saving:
        await asyncio.sleep(0)

    with pytest.raises(SaveInProgressError):
        await editor.save(db)

    # An edit made mid-save is not part of the write and leaves the editor dirty
    editor.toggle(date(2025, 3, 19))
    db.release.set()
    await first

    assert db.tables["therapists"][0]["unavailable_blockouts"] == ["2025-03-18"]
    assert editor.state == EditorState.DIRTY
    assert editor.dates == [date(2025, 3, 18), date(2025, 3, 19)]


@pytest.mark.anyio
async def test_save_to_missing_therapist_is_a_failure():
    db = FakeBaas({"therapists": []})
    editor = AvailabilityEditor("t-1", [], lambda: TODAY)
    editor.toggle(date(2025, 3, 20))

    with pytest.raises(AvailabilitySaveError):
        await editor.save(db)

    assert editor.state == EditorState.DIRTY
    assert editor.baseline == set()
    assert editor.message == "Failed to save availability"
    assert db.tables["therapists"] == []


def test_editor_follows_the_clock_past_midnight():
    clock = {"today": TODAY}
    editor = AvailabilityEditor("t-1", [], lambda: clock["today"])
    assert editor.toggle(TODAY) is True
    assert editor.toggle(TODAY) is True

    clock["today"] = TODAY + timedelta(days=1)
    assert editor.toggle(TODAY) is False
    with pytest.raises(AvailabilityError):
        editor.replace([TODAY])


# ============================================================================
# DASHBOARD
# ============================================================================


def dashboard_db():
    return FakeBaas(
        {
            "therapists": [
                {"id": "t-1", "name": "Maria", "user_id": "u-1", "unavailable_blockouts": '["2025-03-20"]'},
            ],
            "bookings": [
                booking_row("b-1", TODAY, "confirmed"),
                booking_row("b-2", TODAY - timedelta(days=1), "completed", commission_amount="300"),
                {"id": "broken", "booking_date": "someday", "status": "confirmed", "therapist_id": "t-1"},
            ],
            "therapist_feedback": [
                {"id": "r-1", "therapist_id": "t-1", "rating": 5, "created_at": "2025-03-01T08:00:00+00:00"},
            ],
            "commission_payouts": [
                {
                    "id": "p-1",
                    "therapist_id": "t-1",
                    "amount": "300",
                    "period_start": "2025-03-01",
                    "period_end": "2025-03-14",
                    "status": "processed",
                },
            ],
        }
    )


@pytest.mark.anyio
async def test_unlinked_user_is_not_linked_rather_than_loading():
    dashboard = TherapistDashboard(FakeBaas({"therapists": []}), "u-x", today=lambda: TODAY)
    assert await dashboard.load() == DashboardStatus.NOT_LINKED
    assert dashboard.therapist is None


@pytest.mark.anyio
async def test_load_builds_snapshot_and_skips_malformed_rows():
    db = dashboard_db()
    db.tables["bookings"][1]["payout_id"] = "p-1"
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)

    assert await dashboard.load() == DashboardStatus.READY
    snap = dashboard.snapshot()

    assert [b.id for b in dashboard.bookings] == ["b-2", "b-1"]
    assert snap.stats.today_count == 1
    assert snap.stats.total_commission == Decimal("300")
    assert snap.reviews.average_rating == Decimal("5.0")
    assert snap.blockouts == [date(2025, 3, 20)]
    assert snap.payouts[0].session_count == 1
    assert snap.availability_state == "viewing"


@pytest.mark.anyio
async def test_failed_refetch_keeps_previous_state():
    db = dashboard_db()
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)
    await dashboard.load()
    before = list(dashboard.bookings)

    db.tables["bookings"].append(booking_row("b-3", TODAY, "pending"))
    db.fail_next("select", "therapist_feedback")
    with pytest.raises(DashboardLoadError):
        await dashboard.load()

    assert dashboard.bookings == before
    assert dashboard.status == DashboardStatus.READY


@pytest.mark.anyio
async def test_bad_blockout_column_does_not_abort_load():
    db = dashboard_db()
    db.tables["therapists"][0]["unavailable_blockouts"] = "{oops"
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)

    assert await dashboard.load() == DashboardStatus.READY
    assert dashboard.blockouts == []
    assert len(dashboard.bookings) == 2


@pytest.mark.anyio
async def test_only_status_changes_trigger_refetch():
    db = dashboard_db()
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)
    await dashboard.load()
    loads = db.calls.count(("select", "bookings"))

    tip_only = ChangeEvent("UPDATE", "bookings", new={"id": "b-1", "tip_amount": 50}, old={"id": "b-1"})
    assert await dashboard.refresh_on(tip_only) is False
    assert db.calls.count(("select", "bookings")) == loads

    assert await dashboard.refresh_on(status_change("b-1", "confirmed", "completed")) is True
    assert db.calls.count(("select", "bookings")) == loads + 1


@pytest.mark.anyio
async def test_watch_subscribes_to_this_therapist_and_releases_the_feed():
    db = dashboard_db()
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)
    await dashboard.load()
    realtime = FakeRealtime(
        [
            ChangeEvent("UPDATE", "bookings", new={"id": "b-1", "status": "confirmed"}, old={"id": "b-1"}),
            status_change("b-1", "confirmed", "completed"),
        ]
    )
    pushed = []

    async def on_refresh():
        pushed.append(dashboard.snapshot())

    await dashboard.watch(realtime, "token", on_refresh=on_refresh)

    topic, options, subscription = realtime.subscriptions[0]
    assert topic == "therapist_status_changes:t-1"
    assert options["table"] == "bookings"
    assert options["event"] == "UPDATE"
    assert options["filter"] == "therapist_id=eq.t-1"
    assert subscription.exited
    assert len(pushed) == 1


@pytest.mark.anyio
async def test_results_after_close_are_discarded():
    dashboard = TherapistDashboard(dashboard_db(), "u-1", today=lambda: TODAY)
    dashboard.close()
    assert await dashboard.load() == DashboardStatus.LOADING
    assert dashboard.bookings == []


@pytest.mark.anyio
async def test_reload_keeps_unsaved_editor_changes():
    db = dashboard_db()
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)
    await dashboard.load()
    dashboard.editor.toggle(date(2025, 3, 25))

    await dashboard.load()

    assert dashboard.editor.state == EditorState.DIRTY
    assert dashboard.editor.dates == [date(2025, 3, 20), date(2025, 3, 25)]


@pytest.mark.anyio
async def test_unreadable_therapist_record_is_a_load_failure():
    db = dashboard_db()
    db.tables["therapists"][0]["name"] = None
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)

    with pytest.raises(DashboardLoadError):
        await dashboard.load()
    assert dashboard.status == DashboardStatus.LOADING


@pytest.mark.anyio
async def test_refetch_after_unlink_reports_not_linked():
    db = dashboard_db()
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)
    await dashboard.load()

    db.tables["therapists"][0]["user_id"] = None
    assert await dashboard.refresh_on(status_change("b-1", "confirmed", "completed")) is True

    assert dashboard.status == DashboardStatus.NOT_LINKED
    assert dashboard.editor is None
    assert dashboard.bookings == []


# ============================================================================
# ROUTES
# ============================================================================


def test_dashboard_endpoint(client, today):
    resp = client.get("/therapist/dashboard", headers=auth("u-therapist"))
    assert resp.status_code == 200
    data = resp.json()
    assert data["therapist"]["name"] == "Maria Santos"
    assert data["stats"]["today_count"] == 1
    assert data["stats"]["upcoming_count"] == 2
    assert Decimal(data["stats"]["total_tips"]) == Decimal("100")
    assert data["reviews"]["count"] == 2
    assert Decimal(data["reviews"]["average_rating"]) == Decimal("4.5")
    assert data["blockouts"] == [(today + timedelta(days=2)).isoformat()]


def test_dashboard_filter_by_date(client, today):
    yesterday = (today - timedelta(days=1)).isoformat()
    resp = client.get(f"/therapist/dashboard?mode=date&date={yesterday}", headers=auth("u-therapist"))
    assert resp.status_code == 200
    assert resp.json()["stats"]["session_count"] == 1

    resp = client.get("/therapist/dashboard?mode=date", headers=auth("u-therapist"))
    assert resp.status_code == 422


def test_dashboard_rejects_other_roles(client):
    resp = client.get("/therapist/dashboard", headers=auth("u-client"))
    assert resp.status_code == 403


def test_dashboard_not_linked(client):
    resp = client.get("/therapist/dashboard", headers=auth("u-unlinked"))
    assert resp.status_code == 404
    assert resp.json()["detail"] == "No therapist profile is linked to this account"


def test_dashboard_load_failure_is_terse(client, fake_db):
    fake_db.fail_next("select", "bookings")
    resp = client.get("/therapist/dashboard", headers=auth("u-therapist"))
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Could not load your schedule"


def test_unreadable_therapist_record_is_502(client, fake_db):
    for row in fake_db.tables["therapists"]:
        row["name"] = None

    assert client.get("/therapist/dashboard", headers=auth("u-therapist")).status_code == 502
    resp = client.get("/therapist/blockouts", headers=auth("u-therapist"))
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Could not load your schedule"
    assert client.get("/therapists/t-2/open-dates").status_code == 502


def test_replace_blockouts(client, fake_db, today):
    wanted = [(today + timedelta(days=5)).isoformat(), (today + timedelta(days=1)).isoformat()]
    resp = client.put("/therapist/blockouts", json={"dates": wanted}, headers=auth("u-therapist"))
    assert resp.status_code == 200
    assert resp.json()["dates"] == sorted(wanted)
    assert resp.json()["state"] == "viewing"
    assert fake_db.tables["therapists"][0]["unavailable_blockouts"] == sorted(wanted)


def test_replace_blockouts_refuses_past_days(client, today):
    past = (today - timedelta(days=3)).isoformat()
    resp = client.put("/therapist/blockouts", json={"dates": [past]}, headers=auth("u-therapist"))
    assert resp.status_code == 400


def test_toggle_blockout_and_save_failure(client, fake_db, today):
    blocked = (today + timedelta(days=2)).isoformat()
    resp = client.post("/therapist/blockouts/toggle", json={"date": blocked}, headers=auth("u-therapist"))
    assert resp.status_code == 200
    assert resp.json()["dates"] == []

    fake_db.fail_next("update", "therapists")
    resp = client.post("/therapist/blockouts/toggle", json={"date": blocked}, headers=auth("u-therapist"))
    assert resp.status_code == 502
    assert resp.json()["detail"] == "Failed to save availability"


def test_public_availability(client, today):
    blocked_day = (today + timedelta(days=2)).isoformat()
    resp = client.get(f"/therapists/availability?date={blocked_day}")
    assert resp.status_code == 200
    assert [t["id"] for t in resp.json()] == ["t-2"]

    resp = client.get(f"/therapists/availability?date={today.isoformat()}")
    assert {t["id"] for t in resp.json()} == {"t-1", "t-2"}


def test_open_dates(client, today):
    resp = client.get("/therapists/t-1/open-dates")
    assert resp.status_code == 200
    dates = resp.json()["dates"]
    assert len(dates) == 13
    assert (today + timedelta(days=2)).isoformat() not in dates

    assert client.get("/therapists/missing/open-dates").status_code == 404


# ============================================================================
# LIVE SESSION
# ============================================================================


def test_live_rejects_bad_token(client):
    with client.websocket_connect("/therapist/dashboard/live?token=nope") as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4401


def test_live_rejects_non_therapists(client):
    token = make_token("u-client")
    with client.websocket_connect(f"/therapist/dashboard/live?token={token}") as ws:
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4403


def test_live_not_linked(client):
    token = make_token("u-unlinked")
    with client.websocket_connect(f"/therapist/dashboard/live?token={token}") as ws:
        assert ws.receive_json()["type"] == "error"
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4404


def test_live_session_edits_and_saves(client, fake_db, today):
    token = make_token("u-therapist")
    new_day = (today + timedelta(days=6)).isoformat()
    with client.websocket_connect(f"/therapist/dashboard/live?token={token}") as ws:
        first = ws.receive_json()
        assert first["type"] == "snapshot"
        assert first["data"]["stats"]["today_count"] == 1

        ws.send_json({"type": "toggle", "date": new_day})
        edited = ws.receive_json()
        assert edited["type"] == "blockouts"
        assert edited["data"]["state"] == "dirty"
        assert new_day in edited["data"]["dates"]

        ws.send_json({"type": "save"})
        saved = ws.receive_json()
        assert saved["type"] == "blockouts"
        assert saved["data"]["state"] == "viewing"

        ws.send_json({"type": "filter", "filter": {"mode": "today"}})
        filtered = ws.receive_json()
        assert filtered["type"] == "snapshot"
        assert filtered["data"]["stats"]["session_count"] == 0

    assert new_day in fake_db.tables["therapists"][0]["unavailable_blockouts"]


def test_live_refresh_after_unlink_closes_the_session(client, fake_db):
    token = make_token("u-therapist")
    with client.websocket_connect(f"/therapist/dashboard/live?token={token}") as ws:
        assert ws.receive_json()["type"] == "snapshot"

        fake_db.tables["therapists"][0]["user_id"] = None
        ws.send_json({"type": "refresh"})

        assert ws.receive_json() == {"type": "error", "detail": NOT_LINKED_DETAIL}
        with pytest.raises(WebSocketDisconnect) as exc:
            ws.receive_json()
    assert exc.value.code == 4404


def test_live_session_survives_bad_json(client):
    token = make_token("u-therapist")
    with client.websocket_connect(f"/therapist/dashboard/live?token={token}") as ws:
        assert ws.receive_json()["type"] == "snapshot"

        ws.send_text("{not json")
        assert ws.receive_json() == {"type": "error", "detail": "Messages must be JSON objects"}

        ws.send_json({"type": "filter", "filter": {"mode": "all"}})
        assert ws.receive_json()["type"] == "snapshot"


def test_live_session_reports_dropped_feed(client):
    from ...main import app

    app.state.realtime = FakeRealtime(error=RealtimeError("Change feed dropped"))
    token = make_token("u-therapist")
    with client.websocket_connect(f"/therapist/dashboard/live?token={token}") as ws:
        assert ws.receive_json()["type"] == "snapshot"
        assert ws.receive_json() == {"type": "notice", "detail": "Live updates are unavailable"}


class RecordingSocket:
    def __init__(self):
        self.sent = []
        self.close_code = None

    async def send_json(self, data):
        self.sent.append(data)

    async def close(self, code=1000):
        self.close_code = code


@pytest.mark.anyio
async def test_live_watcher_closes_when_account_is_unlinked():
    db = dashboard_db()
    dashboard = TherapistDashboard(db, "u-1", today=lambda: TODAY)
    await dashboard.load()
    db.tables["therapists"][0]["user_id"] = None
    socket = RecordingSocket()
    live = LiveDashboardSession(socket, dashboard, db)

    await live.watch(FakeRealtime([status_change("b-1", "confirmed", "completed")]), "token")

    assert socket.sent == [{"type": "error", "detail": NOT_LINKED_DETAIL}]
    assert socket.close_code == 4404

    # Later messages find no editor and do nothing
    await live.handle({"type": "toggle", "date": "2025-03-20"})
    await live.handle({"type": "save"})
    assert socket.sent == [{"type": "error", "detail": NOT_LINKED_DETAIL}]
