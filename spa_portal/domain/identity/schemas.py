"""Identity domain schemas"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict

from .roles import DASHBOARD_PATHS, Role


class Profile(BaseModel):
    """Row of the profiles table"""

    model_config = ConfigDict(extra="ignore")

    id: str
    role: Optional[str] = None
    full_name: Optional[str] = None
    email: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass
class Identity:
    """A verified access token"""

    id: str
    email: Optional[str]
    claims: dict
    access_token: str


@dataclass
class SessionState:
    """Who is calling and with which role - passed explicitly to services"""

    identity: Identity
    role: Role
    profile: Optional[Profile] = None
    profile_resolved: bool = field(default=True)

    @property
    def user_id(self) -> str:
        return self.identity.id

    @property
    def dashboard_path(self) -> str:
        return DASHBOARD_PATHS[self.role]


class SessionResponse(BaseModel):
    user_id: str
    email: Optional[str] = None
    role: Role
    full_name: Optional[str] = None
    dashboard_path: str
    profile_resolved: bool
