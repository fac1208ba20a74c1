"""
Tests for bearer decoding and the two-step role check.
"""

from __future__ import annotations

import base64
import json

import pytest

from benefit_engine.core.errors import ForbiddenError, InvalidCredentialError, RoleLookupFailedError
from benefit_engine.core.security import Principal, authenticate, authorize, decode_jwt
from benefit_engine.services import SupabaseServices
from tests.helpers import HR_USER, FakeSupabase, make_token


def _b64(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode()


class TestDecodeJwt:
    def test_decodes_without_verifying_signature(self) -> None:
        token = make_token("user-1", "hr")
        forged = token.rsplit(".", 1)[0] + ".not-a-real-signature"
        assert decode_jwt(f"Bearer {forged}") == {"sub": "user-1", "user_role": "hr"}

    def test_bearer_prefix_is_case_insensitive(self) -> None:
        assert decode_jwt(f"bearer {make_token('user-1')}")["sub"] == "user-1"

    def test_bare_token(self) -> None:
        assert decode_jwt(make_token("user-1"))["sub"] == "user-1"

    @pytest.mark.parametrize(
        "value",
        [None, "", "Bearer", "Bearer abc", "Bearer a.b", "Bearer !!.@@.##"],
    )
    def test_malformed_returns_none(self, value) -> None:
        assert decode_jwt(value) is None

    def test_non_object_payload_returns_none(self) -> None:
        header = _b64(json.dumps({"alg": "HS256", "typ": "JWT"}).encode())
        payload = _b64(json.dumps(["not", "an", "object"]).encode())
        assert decode_jwt(f"{header}.{payload}.sig") is None


class TestAuthenticate:
    def test_principal_from_claims(self) -> None:
        principal = authenticate(f"Bearer {make_token('user-1', 'admin')}")
        assert principal.subject == "user-1"
        assert principal.role == "admin"

    def test_missing_sub_is_invalid(self) -> None:
        with pytest.raises(InvalidCredentialError) as exc_info:
            authenticate(f"Bearer {make_token(sub=None)}")
        assert exc_info.value.status_code == 401
        assert exc_info.value.to_body() == {"error": "invalid_jwt"}

    def test_missing_role_claim_is_invalid(self) -> None:
        with pytest.raises(InvalidCredentialError) as exc_info:
            authenticate(f"Bearer {make_token('user-1', role=None)}")
        assert exc_info.value.status_code == 401

    def test_non_string_role_claim_is_invalid(self) -> None:
        with pytest.raises(InvalidCredentialError):
            authenticate(f"Bearer {make_token('user-1', role=None, user_role=['hr'])}")

    def test_missing_header_is_invalid(self) -> None:
        with pytest.raises(InvalidCredentialError):
            authenticate(None)


class TestAuthorize:
    @pytest.mark.asyncio
    async def test_claim_and_role_row_pass(
        self, fake: FakeSupabase, services: SupabaseServices
    ) -> None:
        principal = Principal(subject=HR_USER, role="hr")
        assert await authorize(principal, ["hr", "admin"], services.roles) is principal
        params = fake.calls_to("GET", "user_roles")[0]
        assert params["user_id"] == f"eq.{HR_USER}"
        assert params["role"] == "in.(hr,admin)"

    @pytest.mark.asyncio
    async def test_claim_outside_allow_list_skips_lookup(
        self, fake: FakeSupabase, services: SupabaseServices
    ) -> None:
        with pytest.raises(ForbiddenError) as exc_info:
            await authorize(Principal(subject="u", role="employee"), ["hr", "admin"], services.roles)
        assert exc_info.value.to_body() == {
            "error": "forbidden",
            "reason": "no_permission_to_access_this_data",
        }
        assert fake.calls_to("GET", "user_roles") == []

    @pytest.mark.asyncio
    async def test_stale_claim_without_role_row(
        self, fake: FakeSupabase, services: SupabaseServices
    ) -> None:
        # Token still says hr but the role was revoked
        with pytest.raises(ForbiddenError):
            await authorize(Principal(subject="revoked", role="hr"), ["hr", "admin"], services.roles)

    @pytest.mark.asyncio
    async def test_role_store_error_status_is_forbidden(
        self, fake: FakeSupabase, services: SupabaseServices
    ) -> None:
        fake.fail("GET", "user_roles", status=503)
        with pytest.raises(ForbiddenError):
            await authorize(Principal(subject=HR_USER, role="hr"), ["hr"], services.roles)

    @pytest.mark.asyncio
    async def test_role_store_unreachable_is_lookup_failure(
        self, fake: FakeSupabase, services: SupabaseServices
    ) -> None:
        fake.fail("GET", "user_roles", status=None)
        with pytest.raises(RoleLookupFailedError) as exc_info:
            await authorize(Principal(subject=HR_USER, role="hr"), ["hr"], services.roles)
        assert exc_info.value.status_code == 500

    @pytest.mark.asyncio
    async def test_table_role_replaces_disagreeing_claim(
        self, fake: FakeSupabase, services: SupabaseServices
    ) -> None:
        principal = Principal(subject=HR_USER, role="admin")
        await authorize(principal, ["hr", "admin"], services.roles)
        assert principal.role == "hr"
