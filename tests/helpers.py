"""
tests/helpers.py

In-memory Supabase stand-in for tests.

FakeSupabase answers the PostgREST and GoTrue requests the engine makes,
served through httpx.MockTransport so the real clients, stores and
pipelines run unmodified against it.

Supported PostgREST filters: eq., is.null, not.is.null, in.(...), ilike.
"""

from __future__ import annotations

import copy
import json
import re
import uuid
from datetime import datetime, timezone
from typing import Any, Optional

import httpx
import jwt

from benefit_engine.config import PipelineConfig
from benefit_engine.services import SupabaseServices

SUPABASE_URL = "https://test-project.supabase.co"
SERVICE_KEY = "service-role-key-for-tests"
JWT_SECRET = "test-secret-that-is-at-least-32-bytes-long"

HR_USER = "hr-user-1"
ADMIN_USER = "admin-user-1"
EMPLOYEE_USER = "employee-user-1"
COMPANY_A = "company-a"
COMPANY_B = "company-b"


def make_token(sub: Optional[str] = HR_USER, role: Optional[str] = "hr", **claims: Any) -> str:
    """A Supabase-style access token. The engine never checks the signature."""
    payload: dict[str, Any] = dict(claims)
    if sub is not None:
        payload["sub"] = sub
    if role is not None:
        payload["user_role"] = role
    return jwt.encode(payload, JWT_SECRET, algorithm="HS256")


def auth_header(sub: Optional[str] = HR_USER, role: Optional[str] = "hr") -> dict[str, str]:
    return {"Authorization": f"Bearer {make_token(sub, role)}"}


def _matches(row: dict[str, Any], column: str, expr: str) -> bool:
    value = row.get(column)
    if expr == "is.null":
        return value is None
    if expr == "not.is.null":
        return value is not None
    if expr.startswith("eq."):
        return value is not None and str(value) == expr[3:]
    if expr.startswith("in.(") and expr.endswith(")"):
        return value is not None and str(value) in expr[4:-1].split(",")
    if expr.startswith("ilike."):
        pattern = re.escape(expr[6:]).replace("%", ".*").replace("_", ".")
        return value is not None and re.fullmatch(pattern, str(value), re.IGNORECASE) is not None
    raise AssertionError(f"unsupported filter {column}={expr}")


class FakeSupabase:
    """
    Tables are plain lists of dicts; tests seed and inspect them directly.

    fail(method, table, status) makes the next matching calls fail with that
    status (or a transport error when status is None).
    """

    def __init__(self, unique_emails: bool = True) -> None:
        self.tables: dict[str, list[dict[str, Any]]] = {
            "user_roles": [],
            "profiles": [],
            "profile_invites": [],
            "bike_benefits": [],
            "profile_invites_with_details": [],
        }
        self.unique_emails = unique_emails
        self.calls: list[tuple[str, str, dict[str, str]]] = []
        self.otp_requests: list[dict[str, Any]] = []
        self.otp_failure: Optional[tuple[int, Any]] = None
        self._failures: dict[tuple[str, str], tuple[Optional[int], Any]] = {}

    # -- seeding -------------------------------------------------------------

    def add_role(self, user_id: str, role: str) -> None:
        self.tables["user_roles"].append({"user_id": user_id, "role": role})

    def add_profile(self, user_id: str, company_id: Optional[str], email: str | None = None) -> None:
        self.tables["profiles"].append(
            {"user_id": user_id, "company_id": company_id, "email": email, "status": "active"}
        )

    def add_invite(self, email: str, company_id: str = COMPANY_A) -> None:
        self.tables["profile_invites"].append(
            {"id": str(uuid.uuid4()), "email": email, "company_id": company_id, "status": "inactive"}
        )

    def add_benefit(self, **fields: Any) -> dict[str, Any]:
        row = {"id": str(uuid.uuid4()), "contract_status": "not_started", **fields}
        self.tables["bike_benefits"].append(row)
        return row

    def fail(self, method: str, table: str, status: Optional[int] = 500, body: Any = None) -> None:
        self._failures[(method, table)] = (status, body if body is not None else {"message": "boom"})

    def calls_to(self, method: str, table: str) -> list[dict[str, str]]:
        return [params for m, t, params in self.calls if m == method and t == table]

    # -- transport -----------------------------------------------------------

    def handler(self, request: httpx.Request) -> httpx.Response:
        path = request.url.path
        if path == "/auth/v1/otp":
            return self._otp(request)

        assert path.startswith("/rest/v1/"), path
        table = path[len("/rest/v1/"):]
        params = dict(request.url.params)
        self.calls.append((request.method, table, params))

        failure = self._failures.get((request.method, table))
        if failure is not None:
            status, body = failure
            if status is None:
                raise httpx.ConnectError("connection refused", request=request)
            return httpx.Response(status, json=body)

        rows = self.tables.setdefault(table, [])
        filters = {k: v for k, v in params.items() if k != "select"}
        matched = [r for r in rows if all(_matches(r, k, v) for k, v in filters.items())]

        if request.method == "GET":
            return httpx.Response(200, json=copy.deepcopy(matched))
        if request.method == "POST":
            return self._insert(table, json.loads(request.content))
        if request.method == "PATCH":
            values = json.loads(request.content)
            for row in matched:
                row.update(values)
            return httpx.Response(200, json=copy.deepcopy(matched))
        raise AssertionError(f"unexpected {request.method} {path}")

    def _insert(self, table: str, payload: dict[str, Any]) -> httpx.Response:
        rows = self.tables[table]
        if table == "profile_invites" and self.unique_emails:
            wanted = payload["email"].casefold()
            if any(r["email"].casefold() == wanted for r in rows):
                return httpx.Response(
                    409,
                    json={
                        "code": "23505",
                        "message": "duplicate key value violates unique constraint",
                    },
                )
        row = {
            "id": str(uuid.uuid4()),
            "status": "inactive",
            "created_at": datetime.now(timezone.utc).isoformat(),
            **payload,
        }
        rows.append(row)
        return httpx.Response(201, json=[copy.deepcopy(row)])

    def _otp(self, request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        self.otp_requests.append(body)
        if self.otp_failure is not None:
            status, error = self.otp_failure
            return httpx.Response(status, json=error)
        return httpx.Response(200, json={})


def make_config(**overrides: Any) -> PipelineConfig:
    values: dict[str, Any] = {"supabase_url": SUPABASE_URL, "service_key": SERVICE_KEY}
    values.update(overrides)
    return PipelineConfig(**values)


def make_services(fake: FakeSupabase, **config_overrides: Any) -> SupabaseServices:
    client = httpx.AsyncClient(transport=httpx.MockTransport(fake.handler))
    return SupabaseServices.from_config(make_config(**config_overrides), client)
