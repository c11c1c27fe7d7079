"""Function repository - error log rows"""

from datetime import datetime

from ...baas import BaasClient


class ErrorLogRepository:
    """Repository for the error_logs table"""

    @staticmethod
    async def insert(db: BaasClient, **row) -> list[dict]:
        return await db.insert("error_logs", row)

    @staticmethod
    async def recent_with_message(db: BaasClient, message: str, since: datetime, limit: int = 2) -> list[dict]:
        """Rows with this exact message created at or after `since`"""
        return await db.select(
            "error_logs",
            "id",
            eq={"message": message},
            gte={"created_at": since},
            limit=limit,
        )
