"""
Therapist dashboard state.

One TherapistDashboard backs one signed-in session. It holds the last
successfully loaded rows, the availability editor, and (for live sessions)
the change-feed watcher that triggers a refetch when a booking status moves.
"""

import asyncio
import logging
from collections.abc import Awaitable, Callable
from datetime import date
from enum import Enum
from typing import Optional

from pydantic import ValidationError

from ...baas import BaasClient, BaasError
from ...realtime import ChangeEvent, RealtimeClient
from ...shared.dates import spa_today
from . import views
from .availability import AvailabilityEditor
from .blockouts import parse_blockouts
from .repository import TherapistRepository
from .schemas import (
    Booking,
    DashboardSnapshot,
    EarningsFilter,
    Payout,
    Review,
    ReviewsPanel,
    Therapist,
    TherapistProfile,
    parse_rows,
)

logger = logging.getLogger(__name__)


class DashboardStatus(str, Enum):
    LOADING = "loading"
    NOT_LINKED = "not_linked"
    READY = "ready"


class DashboardLoadError(Exception):
    """A fetch failed; whatever was loaded before is still in place"""


class TherapistNotLinkedError(Exception):
    """The signed-in account has no therapist record"""


class TherapistDashboard:
    def __init__(
        self,
        db: BaasClient,
        user_id: str,
        *,
        today: Callable[[], date] = spa_today,
    ):
        self.db = db
        self.user_id = user_id
        self._today = today
        self.status = DashboardStatus.LOADING
        self.therapist: Optional[Therapist] = None
        self.bookings: list[Booking] = []
        self.reviews: list[Review] = []
        self.payouts: list[Payout] = []
        self.blockouts: list[date] = []
        self.editor: Optional[AvailabilityEditor] = None
        self.closed = False
        self._lock = asyncio.Lock()

    @property
    def therapist_id(self) -> Optional[str]:
        return self.therapist.id if self.therapist else None

    def today(self) -> date:
        return self._today()

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    async def load(self) -> DashboardStatus:
        """
        Fetch everything and swap it in at once. Loads never overlap; a load
        that finishes after close() is thrown away.
        """
        async with self._lock:
            try:
                row = await TherapistRepository.get_by_user_id(self.db, self.user_id)
                if row is None:
                    if not self.closed:
                        logger.info(f"ℹ️ User {self.user_id} has no linked therapist record")
                        self._assign(DashboardStatus.NOT_LINKED, None, [], [], [], [])
                    return self.status

                therapist = Therapist.model_validate(row)
                booking_rows, review_rows, payout_rows = await asyncio.gather(
                    TherapistRepository.list_bookings(self.db, therapist.id),
                    TherapistRepository.list_reviews(self.db, therapist.id),
                    TherapistRepository.list_payouts(self.db, therapist.id),
                )
            except BaasError as e:
                logger.error(f"❌ Failed to load dashboard for user {self.user_id}: {e}")
                raise DashboardLoadError(str(e)) from e
            except ValidationError as e:
                logger.error(f"❌ Unreadable therapist record for user {self.user_id}: {e.error_count()} errors")
                raise DashboardLoadError("Unreadable therapist record") from e

            if self.closed:
                logger.debug(f"Discarding dashboard load for closed session {self.user_id}")
                return self.status

            self._assign(
                DashboardStatus.READY,
                therapist,
                parse_rows(Booking, booking_rows, "booking"),
                parse_rows(Review, review_rows, "review"),
                parse_rows(Payout, payout_rows, "payout"),
                parse_blockouts(therapist.unavailable_blockouts, therapist_id=therapist.id),
            )
            logger.debug(
                f"✅ Loaded dashboard for therapist {therapist.id}: "
                f"{len(self.bookings)} bookings, {len(self.reviews)} reviews, {len(self.payouts)} payouts"
            )
            return self.status

    def _assign(self, status, therapist, bookings, reviews, payouts, blockouts):
        self.status = status
        self.therapist = therapist
        self.bookings = bookings
        self.reviews = reviews
        self.payouts = payouts
        self.blockouts = blockouts
        if therapist is None:
            self.editor = None
        elif self.editor is None or self.editor.therapist_id != therapist.id:
            self.editor = AvailabilityEditor(therapist.id, blockouts, self._today)
        else:
            self.editor.rebase(blockouts)

    async def refresh_on(self, event: ChangeEvent) -> bool:
        """Refetch when a booking's status moved. Returns True if a refetch ran"""
        if not event.changed("status"):
            return False
        logger.info(
            f"🔄 Booking {event.new.get('id')} status {event.old.get('status')} -> "
            f"{event.new.get('status')}, refreshing dashboard"
        )
        try:
            await self.load()
        except DashboardLoadError:
            return False
        return True

    async def watch(
        self,
        realtime: RealtimeClient,
        access_token: Optional[str] = None,
        on_refresh: Optional[Callable[[], Awaitable[None]]] = None,
    ):
        """Follow status changes on this therapist's bookings until cancelled"""
        if self.therapist_id is None:
            raise TherapistNotLinkedError(self.user_id)

        therapist_id = self.therapist_id
        subscription = realtime.subscribe(
            f"therapist_status_changes:{therapist_id}",
            table="bookings",
            event="UPDATE",
            filter=f"therapist_id=eq.{therapist_id}",
            access_token=access_token,
        )
        async with subscription:
            async for event in subscription:
                if self.closed:
                    break
                if await self.refresh_on(event) and on_refresh and not self.closed:
                    await on_refresh()

    def close(self):
        self.closed = True

    # ------------------------------------------------------------------
    # Views
    # ------------------------------------------------------------------

    def snapshot(self, flt: Optional[EarningsFilter] = None) -> DashboardSnapshot:
        if self.status == DashboardStatus.NOT_LINKED:
            raise TherapistNotLinkedError(self.user_id)
        if self.therapist is None or self.editor is None:
            raise DashboardLoadError("Dashboard not loaded")

        flt = flt or EarningsFilter()
        today = self.today()
        return DashboardSnapshot(
            therapist=TherapistProfile.model_validate(self.therapist.model_dump()),
            filter=flt,
            today=today,
            stats=views.stats_overview(self.bookings, flt, today),
            today_timeline=views.today_timeline(self.bookings, today),
            upcoming=views.upcoming_bookings(self.bookings, today),
            history=views.filter_earnings(self.bookings, flt, today),
            reviews=ReviewsPanel(
                average_rating=views.average_rating(self.reviews),
                count=len(self.reviews),
                reviews=self.reviews,
            ),
            payouts=views.payout_entries(self.payouts, self.bookings),
            blockouts=self.editor.dates,
            availability_state=self.editor.state.value,
        )
