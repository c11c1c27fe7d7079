"""Therapist domain schemas - typed rows parsed at the store boundary"""

import logging
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional, TypeVar

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator, model_validator

from ...shared.dates import parse_calendar_date

logger = logging.getLogger(__name__)


class BookingStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class TipRecipient(str, Enum):
    THERAPIST = "therapist"
    MANAGEMENT = "management"


class PayoutStatus(str, Enum):
    PENDING = "pending"
    PROCESSED = "processed"
    CANCELLED = "cancelled"


class RangeMode(str, Enum):
    ALL = "all"
    TODAY = "today"
    LAST_7_DAYS = "7d"
    LAST_30_DAYS = "30d"
    MONTH = "month"
    DATE = "date"


class Row(BaseModel):
    model_config = ConfigDict(extra="ignore")


# ============================================================================
# STORE ROWS
# ============================================================================


class Therapist(Row):
    id: str
    name: str
    bio: Optional[str] = None
    specialty: Optional[str] = None
    image_url: Optional[str] = None
    active: bool = True
    user_id: Optional[str] = None
    # Raw column - decoded by blockouts.parse_blockouts
    unavailable_blockouts: Any = None


class ServiceSummary(Row):
    title: Optional[str] = None
    duration: Optional[int] = None
    price: Optional[Decimal] = None


class ClientSummary(Row):
    full_name: Optional[str] = None
    email: Optional[str] = None


class Booking(Row):
    id: str
    service_id: str
    therapist_id: Optional[str] = None
    booking_date: date
    booking_time: str = "00:00"
    status: BookingStatus
    guest_name: Optional[str] = None
    guest_email: Optional[str] = None
    guest_phone: Optional[str] = None
    user_id: Optional[str] = None
    user_email: Optional[str] = None
    commission_amount: Optional[Decimal] = None
    tip_amount: Optional[Decimal] = None
    tip_recipient: Optional[TipRecipient] = None
    payout_id: Optional[str] = None
    created_at: Optional[datetime] = None
    services: Optional[ServiceSummary] = None
    profiles: Optional[ClientSummary] = None

    @field_validator("booking_date", mode="before")
    @classmethod
    def calendar_day(cls, v):
        return parse_calendar_date(v)

    @property
    def start_hour(self) -> int:
        try:
            return int(self.booking_time.split(":")[0])
        except (ValueError, AttributeError):
            return 0

    @property
    def client_name(self) -> Optional[str]:
        if self.profiles and self.profiles.full_name:
            return self.profiles.full_name
        return self.guest_name


class Review(Row):
    id: str
    booking_id: Optional[str] = None
    therapist_id: str
    rating: int = Field(ge=1, le=5)
    comment: Optional[str] = None
    created_at: datetime
    previous_rating: Optional[int] = None
    previous_comment: Optional[str] = None
    edit_count: int = 0
    edited_at: Optional[datetime] = None

    @field_validator("edit_count", mode="before")
    @classmethod
    def default_edit_count(cls, v):
        return v or 0


class Payout(Row):
    id: str
    therapist_id: str
    amount: Decimal
    period_start: date
    period_end: date
    status: PayoutStatus
    paid_at: Optional[datetime] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("period_start", "period_end", mode="before")
    @classmethod
    def calendar_day(cls, v):
        return parse_calendar_date(v)


M = TypeVar("M", bound=BaseModel)


def parse_rows(model: type[M], rows: list[dict], label: str) -> list[M]:
    """Validate rows; rows that do not fit the model are logged and skipped"""
    parsed: list[M] = []
    for row in rows:
        try:
            parsed.append(model.model_validate(row))
        except ValidationError as e:
            logger.error(f"❌ Skipping malformed {label} row {row.get('id', '?')}: {e}")
    return parsed


# ============================================================================
# REQUESTS
# ============================================================================


class EarningsFilter(BaseModel):
    """Date window applied to completed bookings"""

    mode: RangeMode = RangeMode.ALL
    on_date: Optional[date] = None
    month: Optional[int] = Field(default=None, ge=1, le=12)
    year: Optional[int] = Field(default=None, ge=2000, le=2100)

    @model_validator(mode="after")
    def check_parameters(self):
        if self.mode == RangeMode.DATE and self.on_date is None:
            raise ValueError("on_date is required for the date range")
        return self


class BlockoutsUpdate(BaseModel):
    dates: list[date]


class BlockoutToggle(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    day: date = Field(alias="date")


# ============================================================================
# RESPONSES
# ============================================================================


class TherapistProfile(BaseModel):
    id: str
    name: str
    bio: Optional[str] = None
    specialty: Optional[str] = None
    image_url: Optional[str] = None
    active: bool = True


class StatsOverview(BaseModel):
    total_commission: Decimal
    total_tips: Decimal
    session_count: int
    today_count: int
    upcoming_count: int
    completed_count: int


class TimeBucket(BaseModel):
    title: str
    start_hour: int
    end_hour: int
    bookings: list[Booking]


class ReviewsPanel(BaseModel):
    average_rating: Decimal
    count: int
    reviews: list[Review]


class PayoutEntry(BaseModel):
    payout: Payout
    session_count: int
    bookings: list[Booking]


class BlockoutsResponse(BaseModel):
    therapist_id: str
    dates: list[date]
    state: str
    message: Optional[str] = None


class DashboardSnapshot(BaseModel):
    therapist: TherapistProfile
    filter: EarningsFilter
    today: date
    stats: StatsOverview
    today_timeline: list[TimeBucket]
    upcoming: list[Booking]
    history: list[Booking]
    reviews: ReviewsPanel
    payouts: list[PayoutEntry]
    blockouts: list[date]
    availability_state: str


class AvailableTherapist(BaseModel):
    id: str
    name: str
    specialty: Optional[str] = None
    image_url: Optional[str] = None


class OpenDatesResponse(BaseModel):
    therapist_id: str
    dates: list[date]
