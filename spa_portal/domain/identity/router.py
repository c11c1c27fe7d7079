"""Session router - tells the frontend who is signed in and where they belong"""

from fastapi import APIRouter, Depends

from ...auth import get_session_state
from .schemas import SessionResponse, SessionState

router = APIRouter(prefix="/auth", tags=["Auth"])


@router.get("/session", response_model=SessionResponse)
async def get_session(session: SessionState = Depends(get_session_state)):
    """Resolved role and dashboard for the current access token"""
    return SessionResponse(
        user_id=session.user_id,
        email=session.identity.email,
        role=session.role,
        full_name=session.profile.full_name if session.profile else None,
        dashboard_path=session.dashboard_path,
        profile_resolved=session.profile_resolved,
    )
