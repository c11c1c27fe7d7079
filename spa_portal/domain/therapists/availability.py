"""
Availability editor - the working copy of a therapist's blocked-out days.

    VIEWING --toggle/replace--> DIRTY --save--> SAVING --ok--> VIEWING
                                                       --fail--> DIRTY

Saving writes the whole set (full replace). There is no conflict detection
between two sessions editing the same therapist: the later save wins.
"""

import asyncio
import logging
from collections.abc import Callable, Iterable
from datetime import date
from enum import Enum
from typing import Optional

from ...baas import BaasClient, BaasError
from ...shared.dates import spa_today
from .repository import TherapistRepository

logger = logging.getLogger(__name__)

SAVE_FAILED_MESSAGE = "Failed to save availability"


class EditorState(str, Enum):
    VIEWING = "viewing"
    DIRTY = "dirty"
    SAVING = "saving"


class AvailabilityError(ValueError):
    """An edit the editor refuses"""


class SaveInProgressError(AvailabilityError):
    pass


class AvailabilitySaveError(Exception):
    """Persisting the set failed; the edits are still held by the editor"""


class AvailabilityEditor:
    def __init__(self, therapist_id: str, baseline: Iterable[date], today: Callable[[], date] = spa_today):
        self.therapist_id = therapist_id
        self._today = today
        self.baseline: set[date] = set(baseline)
        self.working: set[date] = set(self.baseline)
        self.state = EditorState.VIEWING
        self.message: Optional[str] = None
        self._edited_while_saving = False

    @property
    def today(self) -> date:
        return self._today()

    @property
    def dates(self) -> list[date]:
        return sorted(self.working)

    @property
    def is_dirty(self) -> bool:
        return self.state == EditorState.DIRTY

    @property
    def is_saving(self) -> bool:
        return self.state == EditorState.SAVING

    def _mark_edited(self):
        if self.state == EditorState.SAVING:
            self._edited_while_saving = True
        else:
            self.state = EditorState.DIRTY

    def toggle(self, day: date) -> bool:
        """
        Flip one day. Blocked days are always removable; new blocks are only
        accepted for today or later. Returns False when nothing changed.
        """
        if day in self.working:
            self.working.discard(day)
        elif day < self.today:
            logger.debug(f"Ignoring past blockout {day} for therapist {self.therapist_id}")
            return False
        else:
            self.working.add(day)
        self._mark_edited()
        return True

    def replace(self, days: Iterable[date]):
        """Adopt a whole desired set; newly added past days are refused"""
        desired = set(days)
        today = self.today
        past = sorted(d for d in desired - self.working if d < today)
        if past:
            raise AvailabilityError(f"Cannot block out past dates: {', '.join(d.isoformat() for d in past)}")
        if desired != self.working:
            self.working = desired
            self._mark_edited()

    def rebase(self, baseline: Iterable[date]):
        """Take a freshly loaded baseline; pending local edits are kept"""
        self.baseline = set(baseline)
        if self.state == EditorState.VIEWING:
            self.working = set(self.baseline)

    async def save(self, db: BaasClient) -> list[date]:
        if self.state == EditorState.SAVING:
            raise SaveInProgressError("A save is already in progress")

        snapshot = sorted(self.working)
        self.state = EditorState.SAVING
        self.message = None
        self._edited_while_saving = False
        try:
            await TherapistRepository.replace_blockouts(db, self.therapist_id, snapshot)
        except BaasError as e:
            logger.error(f"❌ Failed to save blockouts for therapist {self.therapist_id}: {e}")
            self.state = EditorState.DIRTY
            self.message = SAVE_FAILED_MESSAGE
            raise AvailabilitySaveError(SAVE_FAILED_MESSAGE) from e
        except asyncio.CancelledError:
            self.state = EditorState.DIRTY
            raise

        self.baseline = set(snapshot)
        if self._edited_while_saving and self.working != self.baseline:
            self.state = EditorState.DIRTY
        else:
            self.state = EditorState.VIEWING
        logger.info(f"✅ Saved {len(snapshot)} blockout dates for therapist {self.therapist_id}")
        return snapshot
