"""Therapist repository - row access for therapists, bookings, feedback and payouts"""

from datetime import date
from typing import Optional

from ...baas import BaasClient, NotFoundError
from .blockouts import serialize_blockouts

BOOKING_COLUMNS = "*, services(title, duration, price), profiles(full_name, email)"


class TherapistRepository:
    """Repository for therapist table operations"""

    @staticmethod
    async def get_by_user_id(db: BaasClient, user_id: str) -> Optional[dict]:
        """Therapist row linked to a login account"""
        try:
            return await db.select_one("therapists", eq={"user_id": user_id})
        except NotFoundError:
            return None

    @staticmethod
    async def get_by_id(db: BaasClient, therapist_id: str) -> Optional[dict]:
        try:
            return await db.select_one("therapists", eq={"id": therapist_id})
        except NotFoundError:
            return None

    @staticmethod
    async def list_active(db: BaasClient) -> list[dict]:
        return await db.select("therapists", eq={"active": True}, order="name")

    @staticmethod
    async def list_bookings(db: BaasClient, therapist_id: str) -> list[dict]:
        """Every booking assigned to the therapist, oldest date first"""
        return await db.select(
            "bookings",
            BOOKING_COLUMNS,
            eq={"therapist_id": therapist_id},
            order="booking_date",
        )

    @staticmethod
    async def list_reviews(db: BaasClient, therapist_id: str) -> list[dict]:
        return await db.select(
            "therapist_feedback",
            eq={"therapist_id": therapist_id},
            order="created_at",
            desc=True,
        )

    @staticmethod
    async def list_payouts(db: BaasClient, therapist_id: str) -> list[dict]:
        return await db.select(
            "commission_payouts",
            eq={"therapist_id": therapist_id},
            order="created_at",
            desc=True,
        )

    @staticmethod
    async def replace_blockouts(db: BaasClient, therapist_id: str, days: list[date]) -> list[dict]:
        """Overwrite the whole blockout set with the given days"""
        rows = await db.update(
            "therapists",
            {"unavailable_blockouts": serialize_blockouts(days)},
            eq={"id": therapist_id},
        )
        if not rows:
            raise NotFoundError(f"Therapist {therapist_id} not found")
        return rows

    @staticmethod
    async def update_therapist(db: BaasClient, therapist_id: str, **updates) -> list[dict]:
        return await db.update("therapists", updates, eq={"id": therapist_id})

    @staticmethod
    async def insert_therapist(db: BaasClient, **therapist) -> dict:
        rows = await db.insert("therapists", therapist)
        return rows[0] if rows else therapist
