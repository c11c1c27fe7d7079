"""Therapist service - dashboard, availability and public lookups"""

import logging
from collections.abc import Callable
from datetime import date

from fastapi import HTTPException
from pydantic import ValidationError

from ...baas import BaasClient, BaasError
from ...shared.dates import spa_today
from . import views
from .availability import (
    AvailabilityEditor,
    AvailabilityError,
    AvailabilitySaveError,
    SaveInProgressError,
)
from .blockouts import is_blocked, parse_blockouts
from .dashboard import DashboardLoadError, DashboardStatus, TherapistDashboard
from .repository import TherapistRepository
from .schemas import (
    AvailableTherapist,
    BlockoutsResponse,
    DashboardSnapshot,
    EarningsFilter,
    OpenDatesResponse,
    Therapist,
    parse_rows,
)

logger = logging.getLogger(__name__)

NOT_LINKED_DETAIL = "No therapist profile is linked to this account"
LOAD_FAILED_DETAIL = "Could not load your schedule"
SAVE_FAILED_DETAIL = "Failed to save availability"


def blockouts_response(editor: AvailabilityEditor) -> BlockoutsResponse:
    return BlockoutsResponse(
        therapist_id=editor.therapist_id,
        dates=editor.dates,
        state=editor.state.value,
        message=editor.message,
    )


class TherapistService:
    """Service layer for therapist business logic"""

    def __init__(self, db: BaasClient, today: Callable[[], date] = spa_today):
        self.db = db
        self.today = today
        self.repo = TherapistRepository()

    # ------------------------------------------------------------------
    # Dashboard
    # ------------------------------------------------------------------

    async def open_dashboard(self, user_id: str) -> TherapistDashboard:
        """Load a dashboard for the signed-in therapist"""
        dashboard = TherapistDashboard(self.db, user_id, today=self.today)
        try:
            status = await dashboard.load()
        except DashboardLoadError as e:
            raise HTTPException(status_code=502, detail=LOAD_FAILED_DETAIL) from e
        if status == DashboardStatus.NOT_LINKED:
            raise HTTPException(status_code=404, detail=NOT_LINKED_DETAIL)
        return dashboard

    async def get_dashboard(self, user_id: str, flt: EarningsFilter) -> DashboardSnapshot:
        dashboard = await self.open_dashboard(user_id)
        return dashboard.snapshot(flt)

    # ------------------------------------------------------------------
    # Availability
    # ------------------------------------------------------------------

    async def _load_therapist(self, user_id: str) -> Therapist:
        try:
            row = await self.repo.get_by_user_id(self.db, user_id)
        except BaasError as e:
            logger.error(f"❌ Failed to load therapist for user {user_id}: {e}")
            raise HTTPException(status_code=502, detail=LOAD_FAILED_DETAIL) from e
        if row is None:
            raise HTTPException(status_code=404, detail=NOT_LINKED_DETAIL)
        return self._parse_therapist(row, LOAD_FAILED_DETAIL)

    @staticmethod
    def _parse_therapist(row: dict, detail: str) -> Therapist:
        try:
            return Therapist.model_validate(row)
        except ValidationError as e:
            logger.error(f"❌ Unreadable therapist record {row.get('id')}: {e.error_count()} errors")
            raise HTTPException(status_code=502, detail=detail) from e

    async def open_editor(self, user_id: str) -> AvailabilityEditor:
        therapist = await self._load_therapist(user_id)
        baseline = parse_blockouts(therapist.unavailable_blockouts, therapist_id=therapist.id)
        return AvailabilityEditor(therapist.id, baseline, self.today)

    async def get_blockouts(self, user_id: str) -> BlockoutsResponse:
        editor = await self.open_editor(user_id)
        return blockouts_response(editor)

    async def save_editor(self, editor: AvailabilityEditor) -> BlockoutsResponse:
        try:
            await editor.save(self.db)
        except SaveInProgressError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
        except AvailabilitySaveError as e:
            raise HTTPException(status_code=502, detail=SAVE_FAILED_DETAIL) from e
        return blockouts_response(editor)

    async def replace_blockouts(self, user_id: str, days: list[date]) -> BlockoutsResponse:
        """Replace the therapist's whole blockout set"""
        editor = await self.open_editor(user_id)
        try:
            editor.replace(days)
        except AvailabilityError as e:
            raise HTTPException(status_code=400, detail=str(e)) from e
        if not editor.is_dirty:
            return blockouts_response(editor)
        logger.info(f"📅 Replacing blockouts for therapist {editor.therapist_id} ({len(editor.dates)} dates)")
        return await self.save_editor(editor)

    async def toggle_blockout(self, user_id: str, day: date) -> BlockoutsResponse:
        editor = await self.open_editor(user_id)
        if not editor.toggle(day):
            raise HTTPException(status_code=400, detail="Cannot block out past dates")
        logger.info(f"📅 Toggled blockout {day} for therapist {editor.therapist_id}")
        return await self.save_editor(editor)

    # ------------------------------------------------------------------
    # Public lookups
    # ------------------------------------------------------------------

    async def available_on(self, day: date) -> list[AvailableTherapist]:
        """Active therapists who have not blocked out the given day"""
        try:
            rows = await self.repo.list_active(self.db)
        except BaasError as e:
            logger.error(f"❌ Failed to list therapists: {e}")
            raise HTTPException(status_code=502, detail="Could not load therapists") from e

        available = []
        for therapist in parse_rows(Therapist, rows, "therapist"):
            blocked = parse_blockouts(therapist.unavailable_blockouts, therapist_id=therapist.id)
            if not is_blocked(blocked, day):
                available.append(AvailableTherapist.model_validate(therapist.model_dump()))
        return available

    async def open_dates(self, therapist_id: str, days: int = 14) -> OpenDatesResponse:
        try:
            row = await self.repo.get_by_id(self.db, therapist_id)
        except BaasError as e:
            logger.error(f"❌ Failed to load therapist {therapist_id}: {e}")
            raise HTTPException(status_code=502, detail="Could not load therapist") from e
        if row is None or not row.get("active", True):
            raise HTTPException(status_code=404, detail="Therapist not found")

        therapist = self._parse_therapist(row, "Could not load therapist")
        blocked = parse_blockouts(therapist.unavailable_blockouts, therapist_id=therapist.id)
        return OpenDatesResponse(
            therapist_id=therapist.id,
            dates=views.open_dates(blocked, self.today(), days),
        )
