"""
tests/conftest.py

Pytest configuration and shared fixtures.

No test talks to a real Supabase project: every store call is answered by
the in-memory FakeSupabase in tests/helpers.py.
"""

from __future__ import annotations

from typing import Iterator

import pytest
from fastapi.testclient import TestClient

from benefit_engine.config import Settings, reset_settings
from benefit_engine.services import SupabaseServices
from tests.helpers import (
    ADMIN_USER,
    COMPANY_A,
    EMPLOYEE_USER,
    HR_USER,
    SERVICE_KEY,
    SUPABASE_URL,
    FakeSupabase,
    make_services,
)

# =============================================================================
# GLOBAL TEST CONFIGURATION
# =============================================================================


def pytest_configure(config: pytest.Config) -> None:
    """Register custom markers."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as requiring a live Supabase project",
    )


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    """Every test sees the same minimal environment and fresh settings."""
    monkeypatch.setenv("SUPABASE_URL", SUPABASE_URL)
    monkeypatch.setenv("SUPABASE_SERVICE_ROLE_KEY", SERVICE_KEY)
    monkeypatch.setenv("ENVIRONMENT", "dev")
    monkeypatch.delenv("BULK_CREATE_ALLOWED_ROLES", raising=False)
    monkeypatch.delenv("INVITE_EMAIL_UNIQUE_CONSTRAINT", raising=False)
    reset_settings()
    yield
    reset_settings()


# =============================================================================
# FAKE SUPABASE
# =============================================================================


@pytest.fixture
def fake() -> FakeSupabase:
    """A Supabase project with one HR user, one admin and one employee in company A."""
    supabase = FakeSupabase()
    supabase.add_role(HR_USER, "hr")
    supabase.add_role(ADMIN_USER, "admin")
    supabase.add_role(EMPLOYEE_USER, "employee")
    supabase.add_profile(HR_USER, COMPANY_A, "hr@a.com")
    supabase.add_profile(ADMIN_USER, COMPANY_A, "admin@a.com")
    supabase.add_profile(EMPLOYEE_USER, COMPANY_A, "employee@a.com")
    return supabase


@pytest.fixture
def services(fake: FakeSupabase) -> SupabaseServices:
    return make_services(fake)


@pytest.fixture
def client(services: SupabaseServices) -> TestClient:
    """TestClient over the app wired to the fake Supabase."""
    from benefit_engine.main import create_app

    app = create_app(settings=Settings(), services=services)
    return TestClient(app, raise_server_exceptions=False)
