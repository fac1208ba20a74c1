"""
Bike Benefit Engine - Security Layer

Authentication and role-based authorization for API endpoints.

Bearer tokens are Supabase JWTs. They are decoded WITHOUT signature
verification: the token was issued and verified by Supabase Auth, and the
embedded role claim is always re-checked against the user_roles table,
which is the authoritative source.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Sequence

import jwt
from fastapi import Depends, Header
from loguru import logger

from ..services import StoreError, SupabaseServices, get_services
from ..services.stores import ProfileStore, RoleStore
from ..workflow.statuses import UserRole
from .errors import (
    ERROR_PROFILE_FETCH_FAILED,
    ForbiddenError,
    InvalidCredentialError,
    NoCompanyAssignedError,
    ProfileNotFoundError,
    RoleLookupFailedError,
    UpstreamError,
)

ROLE_CLAIM = "user_role"


@dataclass
class Principal:
    """
    Authenticated caller.

    Attributes:
        subject: Supabase auth user id (JWT `sub`)
        role: Role claim embedded in the token, if any
        claims: The full decoded payload
    """

    subject: str
    role: str | None = None
    claims: dict[str, Any] = field(default_factory=dict)

    @property
    def user_role(self) -> UserRole | None:
        try:
            return UserRole(self.role) if self.role else None
        except ValueError:
            return None


def decode_jwt(authorization: str | None) -> dict[str, Any] | None:
    """
    Decode the payload of a bearer JWT without verifying its signature.

    Accepts the raw header value ("Bearer <token>", any case) or a bare token.
    Returns None for anything that is not a three-part JWT with a JSON object
    payload.
    """
    if not authorization:
        return None

    token = authorization.strip()
    if token[:7].lower() == "bearer ":
        token = token[7:].strip()
    if token.count(".") != 2:
        return None

    try:
        payload = jwt.decode(token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.warning(f"Undecodable bearer token: {type(e).__name__}")
        return None

    return payload if isinstance(payload, dict) else None


def authenticate(authorization: str | None) -> Principal:
    """
    Turn an Authorization header into a Principal or raise 401.

    The token must carry both a subject and a string role claim.
    """
    payload = decode_jwt(authorization)
    subject = payload.get("sub") if payload else None
    if not subject or not isinstance(subject, str):
        raise InvalidCredentialError()

    role = payload.get(ROLE_CLAIM)
    if not role or not isinstance(role, str):
        logger.info(f"Token for {subject} has no usable {ROLE_CLAIM} claim")
        raise InvalidCredentialError()
    return Principal(subject=subject, role=role, claims=payload)


async def authorize(principal: Principal, allowed_roles: Sequence[str], roles: RoleStore) -> Principal:
    """
    Require the caller to hold one of `allowed_roles`.

    Checked twice: the embedded claim first (cheap, may be stale), then the
    user_roles table (authoritative). Either failing rejects the request.
    """
    allowed = [r.lower() for r in allowed_roles]
    if (principal.role or "").lower() not in allowed:
        logger.info(f"Role claim {principal.role!r} not in {allowed} for {principal.subject}")
        raise ForbiddenError()

    try:
        matches = await roles.find_roles(principal.subject, allowed)
    except StoreError as e:
        if e.status_code is None:
            logger.error(f"Role store unreachable for {principal.subject}: {e}")
            raise RoleLookupFailedError() from e
        logger.warning(f"Role store returned {e.status_code} for {principal.subject}")
        raise ForbiddenError() from e

    if not matches:
        logger.info(f"No user_roles row for {principal.subject} in {allowed}")
        raise ForbiddenError()

    # The table is authoritative when the claim and the rows disagree
    held = [m.role for m in matches]
    if principal.role not in held:
        principal.role = held[0]
    return principal


async def resolve_company(principal: Principal, profiles: ProfileStore) -> str:
    """
    The caller's company (tenant) id, read from their profile.

    Raises 403 profile_not_found / no_company_assigned, or 500
    profile_fetch_failed when the profile store cannot be read.
    """
    try:
        profile = await profiles.get_profile(principal.subject)
    except StoreError as e:
        logger.error(f"Profile lookup failed for {principal.subject}: {e}")
        raise UpstreamError(ERROR_PROFILE_FETCH_FAILED) from e

    if profile is None:
        raise ProfileNotFoundError()
    if not profile.company_id:
        raise NoCompanyAssignedError()
    return profile.company_id


# =============================================================================
# FastAPI dependencies
# =============================================================================


async def get_principal(authorization: str | None = Header(default=None)) -> Principal:
    """FastAPI dependency: any authenticated caller."""
    return authenticate(authorization)


def require_role(
    allowed_roles: Sequence[str] | None = None,
) -> Callable[..., Awaitable[Principal]]:
    """
    Build a dependency that authenticates and authorizes the caller.

    With no explicit roles, the configured bulk-ingestion allow-list is used.

    Usage:
        @router.post("/bulk-create")
        async def bulk_create(principal: Principal = Depends(require_role())):
            ...
    """

    async def dependency(
        principal: Principal = Depends(get_principal),
        services: SupabaseServices = Depends(get_services),
    ) -> Principal:
        roles = allowed_roles if allowed_roles is not None else services.config.allowed_roles
        return await authorize(principal, roles, services.roles)

    return dependency


def require_any_role() -> Callable[..., Awaitable[Principal]]:
    """Any known role (employee, hr, admin), still verified against user_roles."""
    return require_role([role.value for role in UserRole])
