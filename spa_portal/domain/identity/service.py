"""Session service - resolves the caller's profile and role"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional

from pydantic import ValidationError

from ...baas import BaasClient, BaasError, NotFoundError
from ...config import PROFILE_FETCH_RETRIES, PROFILE_RETRY_DELAY
from ...shared.retry import retry_async
from .repository import ProfileRepository
from .roles import resolve_role
from .schemas import Identity, Profile, SessionState

logger = logging.getLogger(__name__)


class SessionService:
    """Builds the SessionState for an authenticated identity"""

    def __init__(
        self,
        db: BaasClient,
        *,
        retries: int = PROFILE_FETCH_RETRIES,
        delay: float = PROFILE_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.db = db
        self.repo = ProfileRepository()
        self.retries = retries
        self.delay = delay
        self.sleep = sleep

    async def _fetch_profile_once(self, user_id: str) -> Optional[Profile]:
        try:
            row = await self.repo.get_profile(self.db, user_id)
        except NotFoundError:
            # New accounts have no profile row yet
            logger.info(f"ℹ️ No profile for user {user_id}, using default role")
            return None
        try:
            return Profile.model_validate(row)
        except ValidationError as e:
            logger.error(f"❌ Malformed profile row for user {user_id}: {e}")
            return None

    async def fetch_profile(self, user_id: str) -> tuple[Optional[Profile], bool]:
        """
        Fetch the profile with a fixed-delay retry.

        Returns (profile, resolved); resolved is False when every attempt
        failed and the caller falls back to the default role.
        """
        try:
            profile = await retry_async(
                lambda: self._fetch_profile_once(user_id),
                retries=self.retries,
                delay=self.delay,
                retry_on=(BaasError,),
                sleep=self.sleep,
                label=f"Profile fetch for {user_id}",
            )
            return profile, True
        except BaasError as e:
            logger.error(f"❌ Profile fetch gave up for user {user_id}: {e}")
            return None, False

    async def resolve(self, identity: Identity) -> SessionState:
        profile, resolved = await self.fetch_profile(identity.id)
        role = resolve_role(identity.claims, profile.role if profile else None)
        logger.debug(f"✅ Session for {identity.id} resolved with role {role.value}")
        return SessionState(identity=identity, role=role, profile=profile, profile_resolved=resolved)
