"""Request and response bodies for the serverless function endpoints"""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field, field_validator

from ...shared.validators import validate_email, validate_password


class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class UpdatePasswordRequest(BaseModel):
    therapist_id: Optional[str] = None
    user_id: Optional[str] = None
    new_password: str

    @field_validator("new_password")
    @classmethod
    def check_password(cls, v):
        return validate_password(v)


class UpdatePasswordResponse(BaseModel):
    message: str
    userId: str


class CreateTherapistRequest(BaseModel):
    email: str
    password: str
    name: str = Field(min_length=1, max_length=120)
    bio: Optional[str] = None
    specialty: Optional[str] = None
    image_url: Optional[str] = None
    existing_therapist_id: Optional[str] = None

    @field_validator("email")
    @classmethod
    def check_email(cls, v):
        return validate_email(v)

    @field_validator("password")
    @classmethod
    def check_password(cls, v):
        return validate_password(v)


class CreateTherapistResponse(BaseModel):
    message: str
    userId: str


class ErrorReport(BaseModel):
    message: str = Field(min_length=1, max_length=5000)
    stack: Optional[str] = None
    component_stack: Optional[str] = None
    url: Optional[str] = None
    user_agent: Optional[str] = None
    user_id: Optional[str] = None
    severity: Severity = Severity.ERROR

    @field_validator("user_id", mode="before")
    @classmethod
    def blank_user_is_none(cls, v):
        return v or None


class ErrorReportResponse(BaseModel):
    success: bool
    alerted: bool = False
