"""Profile repository - reads from the profiles table"""

from ...baas import BaasClient


class ProfileRepository:
    """Repository for profile rows"""

    @staticmethod
    async def get_profile(db: BaasClient, user_id: str) -> dict:
        """Get a profile by auth user id (NotFoundError when absent)"""
        return await db.select_one("profiles", eq={"id": user_id})

    @staticmethod
    async def upsert_profile(db: BaasClient, **profile) -> list[dict]:
        return await db.upsert("profiles", profile)
