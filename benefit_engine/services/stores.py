"""
Typed stores over the Supabase tables the engine touches.

Each store issues exactly one PostgREST call per method and validates the
response into pydantic models, so shape drift in the database surfaces as a
StoreError at the boundary instead of a KeyError deep in the pipeline.

Tables / views:
    user_roles                    RoleStore
    profiles                      ProfileStore
    profile_invites               InviteStore
    bike_benefits                 BenefitStore (reads + guarded PATCH)
    profile_invites_with_details  BenefitStore.list_for_company
"""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any, Iterable, Optional, Sequence, TypeVar

from pydantic import BaseModel, ConfigDict, TypeAdapter, ValidationError

from ..workflow.derivation import BenefitRecord
from ..workflow.statuses import ProfileStatus
from ..workflow.transitions import PlannedWrite
from .postgrest import PostgrestClient, StoreError

logger = logging.getLogger(__name__)

M = TypeVar("M", bound=BaseModel)


# =============================================================================
# Row models
# =============================================================================


class UserRoleRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    role: str


class ProfileRow(BaseModel):
    model_config = ConfigDict(extra="ignore")

    user_id: str
    email: Optional[str] = None
    status: Optional[ProfileStatus] = None
    company_id: Optional[str] = None


class InviteCreate(BaseModel):
    """Payload for POST /profile_invites."""

    email: str
    company_id: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    description: Optional[str] = None
    department: Optional[str] = None
    hire_date: Optional[date] = None

    def to_payload(self) -> dict[str, Any]:
        return self.model_dump(mode="json", exclude_none=True)


class InviteRecord(BaseModel):
    model_config = ConfigDict(extra="allow")

    id: Optional[str] = None
    email: str
    company_id: Optional[str] = None
    status: Optional[ProfileStatus] = None
    created_at: Optional[datetime] = None


def _parse_rows(model: type[M], rows: list[dict[str, Any]], source: str) -> list[M]:
    try:
        return TypeAdapter(list[model]).validate_python(rows)  # type: ignore[valid-type]
    except ValidationError as exc:
        logger.error("Malformed %s rows: %s", source, exc.error_count())
        raise StoreError(f"malformed {source} response", body=rows) from exc


# =============================================================================
# Stores
# =============================================================================


class RoleStore:
    def __init__(self, client: PostgrestClient):
        self._client = client

    async def find_roles(self, user_id: str, roles: Sequence[str]) -> list[UserRoleRow]:
        """Rows of user_roles for `user_id` whose role is one of `roles`."""
        rows = await self._client.select(
            "user_roles",
            {"user_id": f"eq.{user_id}", "role": f"in.({','.join(roles)})", "select": "user_id,role"},
        )
        return _parse_rows(UserRoleRow, rows, "user_roles")


class ProfileStore:
    def __init__(self, client: PostgrestClient):
        self._client = client

    async def get_profile(self, user_id: str) -> ProfileRow | None:
        rows = await self._client.select(
            "profiles", {"user_id": f"eq.{user_id}", "select": "user_id,email,status,company_id"}
        )
        profiles = _parse_rows(ProfileRow, rows, "profiles")
        return profiles[0] if profiles else None


class InviteStore:
    def __init__(self, client: PostgrestClient):
        self._client = client

    async def find_by_email(self, email: str) -> list[InviteRecord]:
        """
        Case-insensitive exact lookup across every company.

        ilike treats % and _ as wildcards, so the candidates are filtered
        again on the casefolded address.
        """
        rows = await self._client.select("profile_invites", {"email": f"ilike.{email}"})
        wanted = email.casefold()
        return [
            invite
            for invite in _parse_rows(InviteRecord, rows, "profile_invites")
            if invite.email.casefold() == wanted
        ]

    async def create(self, invite: InviteCreate) -> InviteRecord:
        rows = await self._client.insert("profile_invites", invite.to_payload())
        created = _parse_rows(InviteRecord, rows, "profile_invites")
        if not created:
            raise StoreError("insert returned no representation", body=rows)
        return created[0]


class BenefitStore:
    def __init__(self, client: PostgrestClient):
        self._client = client

    async def get(self, benefit_id: str) -> BenefitRecord | None:
        rows = await self._client.select("bike_benefits", {"id": f"eq.{benefit_id}"})
        records = _parse_rows(BenefitRecord, rows, "bike_benefits")
        return records[0] if records else None

    async def list_for_company(self, company_id: str) -> list[BenefitRecord]:
        """Benefits of every employee in a company, read through the details view."""
        rows = await self._client.select(
            "profile_invites_with_details",
            {"company_id": f"eq.{company_id}", "bike_benefit_id": "not.is.null"},
        )
        return _parse_rows(BenefitRecord, list(_details_to_benefits(rows)), "profile_invites_with_details")

    async def apply(self, benefit_id: str, write: PlannedWrite) -> BenefitRecord | None:
        """
        Apply a planned write atomically.

        Returns the updated record, or None when the guard no longer matched
        (another writer got there first).
        """
        params = {"id": f"eq.{benefit_id}", **write.guard}
        rows = await self._client.update("bike_benefits", params, write.values)
        records = _parse_rows(BenefitRecord, rows, "bike_benefits")
        return records[0] if records else None


def _details_to_benefits(rows: Iterable[dict[str, Any]]) -> Iterable[dict[str, Any]]:
    for row in rows:
        mapped = dict(row)
        mapped["id"] = row.get("bike_benefit_id")
        mapped["step"] = row.get("current_step")
        mapped["contract_status"] = row.get("contract_status") or "not_started"
        yield mapped
