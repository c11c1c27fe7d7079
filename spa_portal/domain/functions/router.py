"""Function router - admin account tools and the public error reporter"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, ValidationError

from ...baas import BaasClient
from ...database import get_db
from ...rate_limiter import RateLimiter
from .schemas import (
    CreateTherapistRequest,
    CreateTherapistResponse,
    ErrorReport,
    ErrorReportResponse,
    UpdatePasswordRequest,
    UpdatePasswordResponse,
)
from .service import FunctionError, FunctionService

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/functions", tags=["Functions"])

admin_rate_limit = RateLimiter(limit=20, window_seconds=300, key_prefix="admin_functions")
log_error_rate_limit = RateLimiter(limit=30, window_seconds=60, key_prefix="log_error")


def get_function_service(db: BaasClient = Depends(get_db)) -> FunctionService:
    """Dependency injection for FunctionService"""
    return FunctionService(db)


def bearer_token(request: Request) -> Optional[str]:
    header = request.headers.get("Authorization")
    if not header:
        return None
    return header.removeprefix("Bearer ").strip() or None


async def read_body(request: Request, model: type[BaseModel]):
    try:
        payload = await request.json()
    except ValueError as e:
        raise FunctionError("Invalid JSON body") from e
    try:
        return model.model_validate(payload)
    except ValidationError as e:
        first = e.errors()[0]
        field = ".".join(str(part) for part in first["loc"]) or "body"
        raise FunctionError(f"{field}: {first['msg']}") from e


def error_response(e: FunctionError, status_code: int = 400) -> JSONResponse:
    logger.error(f"Function error: {e.message}")
    return JSONResponse(status_code=status_code, content={"error": e.message})


@router.post(
    "/update-therapist-password",
    response_model=UpdatePasswordResponse,
    dependencies=[Depends(admin_rate_limit)],
)
async def update_therapist_password(
    request: Request,
    service: FunctionService = Depends(get_function_service),
):
    """Admin-only password reset for a therapist login"""
    try:
        await service.require_admin(bearer_token(request), "reset specialist passwords")
        data = await read_body(request, UpdatePasswordRequest)
        return await service.update_therapist_password(data)
    except FunctionError as e:
        return error_response(e)


@router.post(
    "/create-therapist",
    response_model=CreateTherapistResponse,
    dependencies=[Depends(admin_rate_limit)],
)
async def create_therapist(
    request: Request,
    service: FunctionService = Depends(get_function_service),
):
    """Admin-only: create a therapist login and link it to a therapist record"""
    try:
        await service.require_admin(bearer_token(request), "create/link specialist accounts")
        data = await read_body(request, CreateTherapistRequest)
        return await service.create_therapist(data)
    except FunctionError as e:
        return error_response(e)


@router.post(
    "/log-error",
    response_model=ErrorReportResponse,
    dependencies=[Depends(log_error_rate_limit)],
)
async def log_error(
    request: Request,
    service: FunctionService = Depends(get_function_service),
):
    """Public endpoint the frontend error boundary reports to"""
    try:
        report = await read_body(request, ErrorReport)
    except FunctionError as e:
        return error_response(e)
    return await service.log_error(report)
