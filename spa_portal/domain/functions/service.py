"""Function service - admin account management and client error reporting"""

import logging
from collections.abc import Awaitable, Callable
from datetime import datetime, timedelta, timezone
from typing import Optional

from ...baas import BaasClient, BaasError
from ...config import ERROR_ALERT_DEDUP_SECONDS
from ...email_service import EmailError, send_error_alert
from ..identity.repository import ProfileRepository
from ..identity.roles import Role
from ..therapists.repository import TherapistRepository
from .repository import ErrorLogRepository
from .schemas import (
    CreateTherapistRequest,
    CreateTherapistResponse,
    ErrorReport,
    ErrorReportResponse,
    UpdatePasswordRequest,
    UpdatePasswordResponse,
)

logger = logging.getLogger(__name__)


class FunctionError(Exception):
    """A function call failed; the message is returned to the caller"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class FunctionService:
    def __init__(
        self,
        db: BaasClient,
        *,
        send_alert: Callable[..., Awaitable[dict]] = send_error_alert,
        now: Callable[[], datetime] = _utcnow,
    ):
        self.db = db
        self.send_alert = send_alert
        self.now = now

    # ------------------------------------------------------------------
    # Admin
    # ------------------------------------------------------------------

    async def require_admin(self, access_token: Optional[str], action: str) -> dict:
        """Resolve the caller through the auth server and insist on the admin profile role"""
        if not access_token:
            raise FunctionError("Missing Authorization header")

        try:
            user = await self.db.get_user(access_token)
        except BaasError as e:
            logger.error(f"❌ Auth error: {e}")
            raise FunctionError("Invalid or expired session") from e
        if not user or not user.get("id"):
            raise FunctionError("Invalid or expired session")

        try:
            profile = await ProfileRepository.get_profile(self.db, user["id"])
        except BaasError as e:
            raise FunctionError(f"Unauthorized: Only admins can {action}") from e
        if profile.get("role") != Role.ADMIN.value:
            logger.warning(f"⚠️ Non-admin {user['id']} tried to {action}")
            raise FunctionError(f"Unauthorized: Only admins can {action}")
        return user

    async def update_therapist_password(self, data: UpdatePasswordRequest) -> UpdatePasswordResponse:
        target_user_id = data.user_id

        if not target_user_id and data.therapist_id:
            try:
                therapist = await self.db.select_one("therapists", "user_id", eq={"id": data.therapist_id})
            except BaasError as e:
                logger.error(f"❌ Error fetching therapist {data.therapist_id}: {e}")
                raise FunctionError(f"Therapist not found: {e.message}") from e
            target_user_id = therapist.get("user_id")

        if not target_user_id:
            raise FunctionError("Could not find User ID associated with this therapist")

        try:
            await self.db.admin_update_user(target_user_id, {"password": data.new_password})
        except BaasError as e:
            logger.error(f"❌ Update user error for {target_user_id}: {e}")
            raise FunctionError(e.message) from e

        logger.info(f"🔑 Password updated for user {target_user_id}")
        return UpdatePasswordResponse(message="Password updated successfully", userId=target_user_id)

    async def create_therapist(self, data: CreateTherapistRequest) -> CreateTherapistResponse:
        """Create the login, give it the therapist role, and link or create the therapist row"""
        logger.info(f"📥 Creating/linking therapist: {data.name} ({data.email})")

        try:
            created = await self.db.admin_create_user(
                email=data.email,
                password=data.password,
                email_confirm=True,
                user_metadata={"full_name": data.name, "role": Role.THERAPIST.value},
            )
        except BaasError as e:
            logger.error(f"❌ Create user error: {e}")
            raise FunctionError(e.message) from e

        # GoTrue returns the user object itself; older deployments wrap it
        user_id = (created.get("user") or created).get("id")
        if not user_id:
            raise FunctionError("Auth server did not return a user id")

        try:
            await ProfileRepository.upsert_profile(
                self.db,
                id=user_id,
                full_name=data.name,
                email=data.email,
                role=Role.THERAPIST.value,
            )
        except BaasError as e:
            # The login exists at this point, carry on and link the therapist row
            logger.error(f"❌ Profile upsert error for {user_id}: {e}")

        details = {
            "user_id": user_id,
            "name": data.name,
            "bio": data.bio,
            "specialty": data.specialty,
            "image_url": data.image_url,
        }
        try:
            if data.existing_therapist_id:
                logger.info(f"🔗 Linking existing therapist {data.existing_therapist_id} to user {user_id}")
                await TherapistRepository.update_therapist(self.db, data.existing_therapist_id, **details)
            else:
                await TherapistRepository.insert_therapist(self.db, **details, active=True)
        except BaasError as e:
            logger.error(f"❌ Therapist record error for {user_id}: {e}")
            raise FunctionError(e.message) from e

        logger.info(f"✅ Therapist {data.name} ready with user {user_id}")
        return CreateTherapistResponse(message="Therapist created successfully", userId=user_id)

    # ------------------------------------------------------------------
    # Error reporting
    # ------------------------------------------------------------------

    async def log_error(self, report: ErrorReport) -> ErrorReportResponse:
        """
        Store a client error and alert staff the first time a message shows
        up inside the dedup window.
        """
        try:
            await ErrorLogRepository.insert(
                self.db,
                message=report.message,
                stack=report.stack,
                component_stack=report.component_stack,
                url=report.url,
                user_agent=report.user_agent,
                user_id=report.user_id,
                severity=report.severity.value,
                status="open",
            )
        except BaasError as e:
            logger.error(f"❌ Error log insert failed: {e}")

        since = self.now() - timedelta(seconds=ERROR_ALERT_DEDUP_SECONDS)
        try:
            recent = await ErrorLogRepository.recent_with_message(self.db, report.message, since)
        except BaasError as e:
            logger.warning(f"⚠️ Duplicate check failed, alerting anyway: {e}")
            recent = []

        # The row just inserted is counted, so one match means first occurrence
        if len(recent) > 1:
            logger.info(f"🔕 Alert silenced for duplicate error: {report.message[:80]}")
            return ErrorReportResponse(success=True, alerted=False)

        try:
            await self.send_alert(
                message=report.message,
                severity=report.severity.value,
                url=report.url,
                user_id=report.user_id,
                stack=report.stack,
                component_stack=report.component_stack,
            )
        except EmailError as e:
            logger.error(f"❌ Error alert email failed: {e}")
            return ErrorReportResponse(success=True, alerted=False)
        return ErrorReportResponse(success=True, alerted=True)
