import logging

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import ExpiredSignatureError, JWTError, jwt

from .baas import BaasClient
from .config import SUPABASE_JWT_AUDIENCE, SUPABASE_JWT_SECRET
from .database import get_db
from .domain.identity.roles import Role
from .domain.identity.schemas import Identity, SessionState
from .domain.identity.service import SessionService

logger = logging.getLogger(__name__)

security = HTTPBearer()


def verify_access_token(token: str) -> dict:
    """
    Verify a Supabase access token (HS256, signed with the project JWT secret)
    and return its claims.
    """
    if not SUPABASE_JWT_SECRET:
        logger.error("❌ SUPABASE_JWT_SECRET not configured")
        raise HTTPException(status_code=500, detail="Authentication not configured")

    if len(token.split(".")) != 3:
        logger.warning(f"⚠️ Malformed token received, length: {len(token)}")
        raise HTTPException(
            status_code=401, detail="Invalid token format. Expected a valid JWT token."
        )

    try:
        claims = jwt.decode(
            token,
            SUPABASE_JWT_SECRET,
            algorithms=["HS256"],
            audience=SUPABASE_JWT_AUDIENCE,
        )
    except ExpiredSignatureError as e:
        raise HTTPException(
            status_code=401,
            detail="Token has expired. Please refresh your session.",
            headers={"X-Token-Expired": "true"},
        ) from e
    except JWTError as e:
        logger.warning(f"⚠️ Token verification failed: {e}")
        raise HTTPException(status_code=401, detail="Token verification failed") from e

    if not claims.get("sub"):
        logger.error(f"❌ Token missing sub claim. Available claims: {list(claims.keys())}")
        raise HTTPException(status_code=401, detail="Invalid token claims")

    return claims


def identity_from_token(token: str) -> Identity:
    claims = verify_access_token(token)
    return Identity(
        id=claims["sub"],
        email=claims.get("email"),
        claims=claims,
        access_token=token,
    )


async def get_current_identity(
    credentials: HTTPAuthorizationCredentials = Depends(security),
) -> Identity:
    """Verified identity behind the Bearer token"""
    if not credentials:
        raise HTTPException(
            status_code=401,
            detail="Not authenticated. Please provide a valid Bearer token in the Authorization header.",
        )
    return identity_from_token(credentials.credentials)


async def get_session_state(
    identity: Identity = Depends(get_current_identity),
    db: BaasClient = Depends(get_db),
) -> SessionState:
    """Identity plus resolved profile and role"""
    return await SessionService(db).resolve(identity)


def require_role(*roles: Role):
    """
    Dependency factory that admits only the given roles.

    Example:
        @router.get("/admin/thing")
        async def thing(session: SessionState = Depends(require_role(Role.ADMIN))):
            ...
    """
    allowed = set(roles)

    async def checker(session: SessionState = Depends(get_session_state)) -> SessionState:
        if session.role not in allowed:
            logger.warning(
                f"⚠️ User {session.user_id} with role {session.role.value} denied "
                f"(needs {', '.join(sorted(r.value for r in allowed))})"
            )
            raise HTTPException(status_code=403, detail="Access denied")
        return session

    return checker
