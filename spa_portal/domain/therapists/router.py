"""Therapist router - dashboard, availability editor and public availability endpoints"""

import asyncio
import json
import logging
from datetime import date
from typing import Optional

import aiohttp
from fastapi import APIRouter, Depends, HTTPException, Query, WebSocket, WebSocketDisconnect
from pydantic import ValidationError

from ...auth import identity_from_token, require_role
from ...baas import BaasClient
from ...database import get_db, get_db_ws, get_realtime
from ...realtime import RealtimeClient, RealtimeError
from ..identity.roles import Role
from ..identity.schemas import SessionState
from ..identity.service import SessionService
from .availability import AvailabilityEditor, AvailabilitySaveError
from .dashboard import DashboardLoadError, DashboardStatus, TherapistDashboard
from .schemas import (
    AvailableTherapist,
    BlockoutsResponse,
    BlockoutsUpdate,
    BlockoutToggle,
    DashboardSnapshot,
    EarningsFilter,
    OpenDatesResponse,
    RangeMode,
)
from .service import LOAD_FAILED_DETAIL, NOT_LINKED_DETAIL, TherapistService, blockouts_response

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/therapist", tags=["Therapist"])
public_router = APIRouter(prefix="/therapists", tags=["Therapists"])

require_therapist = require_role(Role.THERAPIST)


def get_therapist_service(db: BaasClient = Depends(get_db)) -> TherapistService:
    """Dependency injection for TherapistService"""
    return TherapistService(db)


def earnings_filter(
    mode: RangeMode = Query(RangeMode.ALL),
    on_date: Optional[date] = Query(None, alias="date"),
    month: Optional[int] = Query(None, ge=1, le=12),
    year: Optional[int] = Query(None, ge=2000, le=2100),
) -> EarningsFilter:
    try:
        return EarningsFilter(mode=mode, on_date=on_date, month=month, year=year)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.errors(include_url=False, include_context=False)) from e


# ============================================================================
# DASHBOARD
# ============================================================================


@router.get("/dashboard", response_model=DashboardSnapshot)
async def get_dashboard(
    flt: EarningsFilter = Depends(earnings_filter),
    session: SessionState = Depends(require_therapist),
    service: TherapistService = Depends(get_therapist_service),
):
    """Schedule, earnings, reviews, payouts and blockouts for the signed-in therapist"""
    return await service.get_dashboard(session.user_id, flt)


# ============================================================================
# AVAILABILITY
# ============================================================================


@router.get("/blockouts", response_model=BlockoutsResponse)
async def get_blockouts(
    session: SessionState = Depends(require_therapist),
    service: TherapistService = Depends(get_therapist_service),
):
    return await service.get_blockouts(session.user_id)


@router.put("/blockouts", response_model=BlockoutsResponse)
async def replace_blockouts(
    data: BlockoutsUpdate,
    session: SessionState = Depends(require_therapist),
    service: TherapistService = Depends(get_therapist_service),
):
    """Replace the whole set of blocked-out days"""
    return await service.replace_blockouts(session.user_id, data.dates)


@router.post("/blockouts/toggle", response_model=BlockoutsResponse)
async def toggle_blockout(
    data: BlockoutToggle,
    session: SessionState = Depends(require_therapist),
    service: TherapistService = Depends(get_therapist_service),
):
    """Block a free day or free a blocked one"""
    return await service.toggle_blockout(session.user_id, data.day)


# ============================================================================
# PUBLIC
# ============================================================================


@public_router.get("/availability", response_model=list[AvailableTherapist])
async def therapists_available_on(
    on_date: date = Query(..., alias="date"),
    service: TherapistService = Depends(get_therapist_service),
):
    """Active therapists who are not blocked out on a date"""
    return await service.available_on(on_date)


@public_router.get("/{therapist_id}/open-dates", response_model=OpenDatesResponse)
async def therapist_open_dates(
    therapist_id: str,
    days: int = Query(14, ge=1, le=90),
    service: TherapistService = Depends(get_therapist_service),
):
    return await service.open_dates(therapist_id, days)


# ============================================================================
# LIVE SESSION
# ============================================================================


class LiveDashboardSession:
    """
    One websocket client bound to one TherapistDashboard.

    Client messages:
        {"type": "filter", "filter": {"mode": "month", "month": 3, "year": 2025}}
        {"type": "toggle", "date": "2025-03-14"}
        {"type": "save"}
        {"type": "refresh"}
    Server messages: snapshot, blockouts, notice and error.
    """

    def __init__(self, websocket: WebSocket, dashboard: TherapistDashboard, db: BaasClient):
        self.websocket = websocket
        self.dashboard = dashboard
        self.db = db
        self.filter = EarningsFilter()
        self._send_lock = asyncio.Lock()
        self._tasks: set[asyncio.Task] = set()

    async def send(self, message_type: str, **payload):
        if self.dashboard.closed:
            return
        async with self._send_lock:
            await self.websocket.send_json({"type": message_type, **payload})

    async def end_not_linked(self):
        """The account lost its therapist link on a reload; close like a failed connect"""
        if self.dashboard.closed:
            return
        logger.info(f"🔌 User {self.dashboard.user_id} is no longer linked to a therapist, closing live dashboard")
        await self.send("error", detail=NOT_LINKED_DETAIL)
        self.dashboard.close()
        async with self._send_lock:
            await self.websocket.close(code=4404)

    async def push_snapshot(self):
        if self.dashboard.status == DashboardStatus.NOT_LINKED:
            await self.end_not_linked()
            return
        snapshot = self.dashboard.snapshot(self.filter)
        await self.send("snapshot", data=snapshot.model_dump(mode="json"))

    async def push_blockouts(self):
        editor = self.dashboard.editor
        if editor is None:
            return
        await self.send("blockouts", data=blockouts_response(editor).model_dump(mode="json"))

    def spawn(self, coro) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    async def watch(self, realtime: RealtimeClient, access_token: str):
        try:
            await self.dashboard.watch(realtime, access_token, on_refresh=self.push_snapshot)
        except (RealtimeError, aiohttp.ClientError) as e:
            logger.warning(f"⚠️ Live updates stopped for therapist {self.dashboard.therapist_id}: {e}")
            await self.send("notice", detail="Live updates are unavailable")

    async def save(self, editor: AvailabilityEditor):
        try:
            await editor.save(self.db)
        except AvailabilitySaveError as e:
            await self.send("error", detail=str(e))
        await self.push_blockouts()

    async def handle(self, message: dict):
        kind = message.get("type")
        editor = self.dashboard.editor
        if editor is None:
            await self.end_not_linked()
            return

        if kind == "filter":
            try:
                self.filter = EarningsFilter.model_validate(message.get("filter") or {})
            except ValidationError:
                await self.send("error", detail="Invalid filter")
                return
            await self.push_snapshot()

        elif kind == "toggle":
            try:
                day = date.fromisoformat(str(message.get("date")))
            except ValueError:
                await self.send("error", detail="Invalid date")
                return
            if not editor.toggle(day):
                await self.send("notice", detail="Past dates cannot be blocked out")
            await self.push_blockouts()

        elif kind == "save":
            if editor.is_saving:
                await self.send("error", detail="A save is already in progress")
                return
            self.spawn(self.save(editor))

        elif kind == "refresh":
            try:
                await self.dashboard.load()
            except DashboardLoadError:
                await self.send("error", detail=LOAD_FAILED_DETAIL)
                return
            await self.push_snapshot()

        else:
            await self.send("error", detail=f"Unknown message type: {kind}")

    async def run(self):
        while not self.dashboard.closed:
            try:
                message = await self.websocket.receive_json()
            except json.JSONDecodeError:
                await self.send("error", detail="Messages must be JSON objects")
                continue
            if isinstance(message, dict):
                await self.handle(message)
            else:
                await self.send("error", detail="Messages must be JSON objects")

    async def close(self):
        self.dashboard.close()
        for task in list(self._tasks):
            task.cancel()
        if self._tasks:
            await asyncio.gather(*self._tasks, return_exceptions=True)


@router.websocket("/dashboard/live")
async def dashboard_live(
    websocket: WebSocket,
    token: str = Query(""),
    db: BaasClient = Depends(get_db_ws),
    realtime: RealtimeClient = Depends(get_realtime),
):
    """Dashboard that refreshes itself when a booking status changes"""
    await websocket.accept()

    try:
        identity = identity_from_token(token)
    except HTTPException:
        await websocket.close(code=4401)
        return

    state = await SessionService(db).resolve(identity)
    if state.role != Role.THERAPIST:
        await websocket.close(code=4403)
        return

    dashboard = TherapistDashboard(db, identity.id)
    try:
        status = await dashboard.load()
    except DashboardLoadError:
        await websocket.send_json({"type": "error", "detail": LOAD_FAILED_DETAIL})
        await websocket.close(code=1011)
        return
    if status == DashboardStatus.NOT_LINKED:
        await websocket.send_json({"type": "error", "detail": NOT_LINKED_DETAIL})
        await websocket.close(code=4404)
        return

    live = LiveDashboardSession(websocket, dashboard, db)
    logger.info(f"🔌 Live dashboard opened for therapist {dashboard.therapist_id}")
    try:
        await live.push_snapshot()
        live.spawn(live.watch(realtime, token))
        await live.run()
    except WebSocketDisconnect:
        logger.info(f"🔌 Live dashboard closed for therapist {dashboard.therapist_id}")
    finally:
        await live.close()
