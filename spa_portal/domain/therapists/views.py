"""
Derived views over loaded rows.

Every function here is pure: the same rows, filter and `today` always give
the same result, whatever order the rows arrive in. Money is summed as
Decimal so totals are exact.
"""

from collections.abc import Iterable
from datetime import date, timedelta
from decimal import ROUND_HALF_UP, Decimal

from .schemas import (
    Booking,
    BookingStatus,
    EarningsFilter,
    Payout,
    PayoutEntry,
    RangeMode,
    Review,
    StatsOverview,
    TimeBucket,
    TipRecipient,
)

ACTIVE_STATUSES = {BookingStatus.PENDING, BookingStatus.CONFIRMED}

# (title, start hour inclusive, end hour exclusive)
DAY_PARTS = (
    ("Morning Rituals", 0, 12),
    ("Afternoon Glow", 12, 17),
    ("Evening Serenity", 17, 24),
)

ZERO = Decimal("0")


def upcoming_bookings(bookings: Iterable[Booking], today: date) -> list[Booking]:
    """Pending or confirmed, on or after today"""
    return [b for b in bookings if b.status in ACTIVE_STATUSES and b.booking_date >= today]


def completed_bookings(bookings: Iterable[Booking]) -> list[Booking]:
    return [b for b in bookings if b.status == BookingStatus.COMPLETED]


def todays_bookings(bookings: Iterable[Booking], today: date) -> list[Booking]:
    return [b for b in upcoming_bookings(bookings, today) if b.booking_date == today]


def average_rating(reviews: Iterable[Review]) -> Decimal:
    """Mean rating to one decimal place; 0 with no reviews"""
    ratings = [r.rating for r in reviews]
    if not ratings:
        return ZERO
    mean = Decimal(sum(ratings)) / Decimal(len(ratings))
    return mean.quantize(Decimal("0.1"), rounding=ROUND_HALF_UP)


def in_window(day: date, flt: EarningsFilter, today: date) -> bool:
    """Does a booking day fall inside the filter's calendar window"""
    if flt.mode == RangeMode.ALL:
        return True
    if flt.mode == RangeMode.TODAY:
        return day == today
    if flt.mode == RangeMode.LAST_7_DAYS:
        return day >= today - timedelta(days=7)
    if flt.mode == RangeMode.LAST_30_DAYS:
        return day >= today - timedelta(days=30)
    if flt.mode == RangeMode.DATE:
        return day == flt.on_date
    if flt.mode == RangeMode.MONTH:
        month = flt.month or today.month
        year = flt.year or today.year
        return day.month == month and day.year == year
    raise ValueError(f"Unknown range mode: {flt.mode}")


def filter_earnings(bookings: Iterable[Booking], flt: EarningsFilter, today: date) -> list[Booking]:
    """Completed bookings whose date is inside the selected window"""
    return [b for b in completed_bookings(bookings) if in_window(b.booking_date, flt, today)]


def total_tips(bookings: Iterable[Booking]) -> Decimal:
    """Tips assigned to the therapist; tips kept by management are excluded"""
    return sum(
        (b.tip_amount or ZERO for b in bookings if b.tip_recipient == TipRecipient.THERAPIST),
        ZERO,
    )


def total_commission(bookings: Iterable[Booking]) -> Decimal:
    return sum((b.commission_amount or ZERO for b in bookings), ZERO)


def stats_overview(bookings: list[Booking], flt: EarningsFilter, today: date) -> StatsOverview:
    earnings = filter_earnings(bookings, flt, today)
    return StatsOverview(
        total_commission=total_commission(earnings),
        total_tips=total_tips(earnings),
        session_count=len(earnings),
        today_count=len(todays_bookings(bookings, today)),
        upcoming_count=len(upcoming_bookings(bookings, today)),
        completed_count=len(completed_bookings(bookings)),
    )


def today_timeline(bookings: Iterable[Booking], today: date) -> list[TimeBucket]:
    """Today's sessions by time of day; empty parts are left out"""
    ordered = sorted(todays_bookings(bookings, today), key=lambda b: (b.booking_time, b.id))
    buckets = []
    for title, start, end in DAY_PARTS:
        members = [b for b in ordered if start <= b.start_hour < end]
        if members:
            buckets.append(TimeBucket(title=title, start_hour=start, end_hour=end, bookings=members))
    return buckets


def payout_entries(payouts: Iterable[Payout], bookings: list[Booking]) -> list[PayoutEntry]:
    entries = []
    for payout in payouts:
        included = [b for b in bookings if b.payout_id == payout.id]
        entries.append(PayoutEntry(payout=payout, session_count=len(included), bookings=included))
    return entries


def open_dates(blocked: Iterable[date], today: date, days: int = 14) -> list[date]:
    """The next `days` calendar days (from today) that are not blocked"""
    blocked_set = set(blocked)
    window = (today + timedelta(days=offset) for offset in range(days))
    return [day for day in window if day not in blocked_set]
