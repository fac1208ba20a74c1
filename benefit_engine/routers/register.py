"""
Bike Benefit Engine - Registration Router

POST /register: passwordless sign-in for invited employees.

Flow:
1. Caller posts their email
2. The email must match an invite (case-insensitive, any company)
3. Supabase Auth emails a one-time code / magic link
4. The client verifies the code directly with Supabase Auth
"""

import logging
from typing import Optional

from fastapi import APIRouter, Depends
from pydantic import BaseModel

from ..core.errors import (
    ERROR_EMAIL_REQUIRED,
    ERROR_NOT_INVITED,
    ERROR_OTP_FAILED,
    ERROR_STORE_FAILED,
    BadRequestError,
    ForbiddenError,
    UpstreamError,
)
from ..services import StoreError, SupabaseServices, get_services

logger = logging.getLogger(__name__)

router = APIRouter(tags=["Registration"])


class RegisterRequest(BaseModel):
    email: Optional[str] = None


class RegisterResponse(BaseModel):
    success: bool
    message: str
    email: str


@router.post("/register", response_model=RegisterResponse, summary="Request a sign-in code")
async def register(
    payload: RegisterRequest,
    services: SupabaseServices = Depends(get_services),
) -> RegisterResponse:
    email = (payload.email or "").strip()
    if not email:
        raise BadRequestError(ERROR_EMAIL_REQUIRED)

    try:
        invites = await services.invites.find_by_email(email)
    except StoreError as e:
        logger.error(f"Invite lookup failed during registration: {e}")
        raise UpstreamError(ERROR_STORE_FAILED) from e

    if not invites:
        raise ForbiddenError(ERROR_NOT_INVITED, reason=None)

    try:
        await services.identity.send_otp(email, create_user=True)
    except StoreError as e:
        logger.warning(f"OTP send failed: {e}", extra={"status": e.status_code})
        raise UpstreamError(ERROR_OTP_FAILED, details=e.body) from e

    logger.info("OTP sent to invited employee")
    return RegisterResponse(success=True, message="OTP sent to email", email=email)
