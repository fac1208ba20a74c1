"""
Test the HTTP contract of the service.

Verifies:
1. POST /bulk-create accepts raw CSV and multipart uploads
2. Every error is {"error": ..., "reason"?: ...} with the right status
3. POST /register only sends codes to invited addresses
4. Benefit reads and workflow writes honor roles and company scoping
5. Unknown paths return {"error": "not_found", "path": ...}
"""

from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from tests.helpers import (
    COMPANY_A,
    COMPANY_B,
    EMPLOYEE_USER,
    HR_USER,
    FakeSupabase,
    auth_header,
)

EXAMPLE_CSV = (
    "email,firstName,lastName,hireDate\n"
    "a@x.com,Jane,Doe,2024-01-15\n"
    "bad-email,John,Smith,\n"
    "a@x.com,Jane,Doe,\n"
)


def employee_header() -> dict[str, str]:
    return auth_header(EMPLOYEE_USER, "employee")


# =============================================================================
# Health / routing
# =============================================================================


class TestHealthAndRouting:
    def test_health(self, client: TestClient) -> None:
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["environment"] == "dev"

    def test_request_id_is_echoed(self, client: TestClient) -> None:
        response = client.get("/health", headers={"X-Request-ID": "req-42"})
        assert response.headers["X-Request-ID"] == "req-42"

    def test_unknown_path(self, client: TestClient) -> None:
        response = client.get("/does-not-exist")

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "path": "/does-not-exist"}


# =============================================================================
# Bulk create
# =============================================================================


class TestBulkCreate:
    def test_raw_csv_body(self, client: TestClient, fake: FakeSupabase) -> None:
        response = client.post(
            "/bulk-create",
            content=EXAMPLE_CSV,
            headers={**auth_header(), "Content-Type": "text/csv"},
        )

        assert response.status_code == 200
        body = response.json()
        assert body["created"] == 3
        assert [r["invited"] for r in body["results"]] == [True, False, False]
        assert body["results"][1] == {"email": "bad-email", "invited": False, "error": "invalid_email"}
        assert body["results"][2] == {
            "email": "a@x.com",
            "invited": False,
            "status": "already_exists",
        }
        assert fake.tables["profile_invites"][0]["company_id"] == COMPANY_A

    def test_multipart_first_file(self, client: TestClient, fake: FakeSupabase) -> None:
        response = client.post(
            "/bulk-create",
            files={"file": ("invites.csv", EXAMPLE_CSV, "text/csv")},
            headers=auth_header(),
        )

        assert response.status_code == 200
        assert response.json()["created"] == 3
        assert len(fake.tables["profile_invites"]) == 1

    def test_multipart_without_boundary(self, client: TestClient) -> None:
        response = client.post(
            "/bulk-create",
            content=EXAMPLE_CSV,
            headers={**auth_header(), "Content-Type": "multipart/form-data"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "missing_boundary"}

    def test_multipart_without_file(self, client: TestClient) -> None:
        body = (
            "--XyZ\r\n"
            'Content-Disposition: form-data; name="note"\r\n\r\n'
            "hello\r\n"
            "--XyZ--\r\n"
        )
        response = client.post(
            "/bulk-create",
            content=body,
            headers={**auth_header(), "Content-Type": "multipart/form-data; boundary=XyZ"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "no_file"}

    def test_empty_body(self, client: TestClient) -> None:
        response = client.post(
            "/bulk-create", content="  \n", headers={**auth_header(), "Content-Type": "text/csv"}
        )

        assert response.status_code == 400
        assert response.json() == {"error": "empty_csv"}

    def test_missing_email_header(self, client: TestClient) -> None:
        response = client.post(
            "/bulk-create",
            content="firstName\nJane\n",
            headers={**auth_header(), "Content-Type": "text/csv"},
        )

        assert response.status_code == 400
        assert response.json() == {"error": "missing_header", "missing": "email"}

    def test_no_rows(self, client: TestClient) -> None:
        response = client.post(
            "/bulk-create", content="email\n", headers={**auth_header(), "Content-Type": "text/csv"}
        )
        assert response.json() == {"error": "no_rows"}

    def test_missing_token(self, client: TestClient) -> None:
        response = client.post("/bulk-create", content=EXAMPLE_CSV)

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_jwt"}

    def test_token_without_role_claim(self, client: TestClient, fake: FakeSupabase) -> None:
        response = client.post("/bulk-create", content=EXAMPLE_CSV, headers=auth_header(role=None))

        assert response.status_code == 401
        assert response.json() == {"error": "invalid_jwt"}
        assert fake.calls_to("GET", "user_roles") == []

    def test_employee_forbidden(self, client: TestClient, fake: FakeSupabase) -> None:
        response = client.post("/bulk-create", content=EXAMPLE_CSV, headers=employee_header())

        assert response.status_code == 403
        assert response.json() == {
            "error": "forbidden",
            "reason": "no_permission_to_access_this_data",
        }
        assert fake.tables["profile_invites"] == []

    def test_role_store_unreachable(self, client: TestClient, fake: FakeSupabase) -> None:
        fake.fail("GET", "user_roles", status=None)

        response = client.post("/bulk-create", content=EXAMPLE_CSV, headers=auth_header())

        assert response.status_code == 500
        assert response.json() == {"error": "role_lookup_failed"}

    def test_caller_without_company(self, client: TestClient, fake: FakeSupabase) -> None:
        fake.add_role("drifter", "hr")
        fake.add_profile("drifter", None)

        response = client.post(
            "/bulk-create", content=EXAMPLE_CSV, headers=auth_header("drifter", "hr")
        )

        assert response.status_code == 403
        assert response.json() == {"error": "no_company_assigned"}

    def test_authorization_checked_before_body(self, client: TestClient) -> None:
        response = client.post(
            "/bulk-create",
            content="",
            headers={**employee_header(), "Content-Type": "text/csv"},
        )
        assert response.status_code == 403


# =============================================================================
# Register
# =============================================================================


class TestRegister:
    def test_email_required(self, client: TestClient) -> None:
        response = client.post("/register", json={})

        assert response.status_code == 400
        assert response.json() == {"error": "email_required"}

    def test_not_invited(self, client: TestClient, fake: FakeSupabase) -> None:
        response = client.post("/register", json={"email": "stranger@x.com"})

        assert response.status_code == 403
        assert response.json() == {"error": "not_invited"}
        assert fake.otp_requests == []

    def test_invited_case_insensitive(self, client: TestClient, fake: FakeSupabase) -> None:
        fake.add_invite("Jane@X.com")

        response = client.post("/register", json={"email": "jane@x.com"})

        assert response.status_code == 200
        assert response.json() == {
            "success": True,
            "message": "OTP sent to email",
            "email": "jane@x.com",
        }
        assert fake.otp_requests == [{"email": "jane@x.com", "create_user": True}]

    def test_otp_failure(self, client: TestClient, fake: FakeSupabase) -> None:
        fake.add_invite("jane@x.com")
        fake.otp_failure = (429, {"msg": "rate limited"})

        response = client.post("/register", json={"email": "jane@x.com"})

        assert response.status_code == 500
        assert response.json() == {"error": "otp_send_failed", "details": {"msg": "rate limited"}}


# =============================================================================
# Benefits
# =============================================================================


@pytest.fixture
def benefit(fake: FakeSupabase) -> dict:
    return fake.add_benefit(user_id=EMPLOYEE_USER, step="choose_bike")


class TestBenefitReads:
    def test_employee_reads_own_benefit(self, client: TestClient, benefit: dict) -> None:
        response = client.get(f"/benefits/{benefit['id']}", headers=employee_header())

        assert response.status_code == 200
        data = response.json()
        assert data["benefit_status"] == "searching"
        assert data["benefit_status_label"] == "Searching"
        assert data["contract_status"] == "not_started"
        assert data["next_contract_status"] == "viewed_by_employee"
        assert data["frozen"] is False
        assert data["record"]["id"] == benefit["id"]

    def test_employee_cannot_read_someone_else(self, client: TestClient, fake: FakeSupabase) -> None:
        fake.add_role("employee-2", "employee")
        other = fake.add_benefit(user_id="employee-2")

        response = client.get(f"/benefits/{other['id']}", headers=employee_header())

        assert response.status_code == 403

    def test_hr_reads_within_company(self, client: TestClient, benefit: dict) -> None:
        response = client.get(f"/benefits/{benefit['id']}", headers=auth_header())
        assert response.status_code == 200

    def test_hr_of_other_company_is_forbidden(
        self, client: TestClient, fake: FakeSupabase, benefit: dict
    ) -> None:
        fake.add_role("hr-b", "hr")
        fake.add_profile("hr-b", COMPANY_B)

        response = client.get(f"/benefits/{benefit['id']}", headers=auth_header("hr-b", "hr"))

        assert response.status_code == 403

    def test_unknown_benefit(self, client: TestClient) -> None:
        response = client.get("/benefits/missing", headers=auth_header())

        assert response.status_code == 404
        assert response.json() == {"error": "not_found", "path": "/benefits/missing"}

    def test_summary_for_hr(self, client: TestClient, fake: FakeSupabase) -> None:
        fake.tables["profile_invites_with_details"] = [
            {"company_id": COMPANY_A, "bike_benefit_id": "b-1", "current_step": "choose_bike"},
            {
                "company_id": COMPANY_A,
                "bike_benefit_id": "b-2",
                "current_step": "pickup_delivery",
                "delivered_at": "2024-05-01T00:00:00+00:00",
            },
            {"company_id": COMPANY_A, "bike_benefit_id": None, "current_step": None},
            {"company_id": COMPANY_B, "bike_benefit_id": "b-3", "current_step": "choose_bike"},
        ]

        response = client.get("/benefits/summary", headers=auth_header())

        assert response.status_code == 200
        data = response.json()
        counts = {entry["status"]: entry["count"] for entry in data["benefits"]}
        assert data["total"] == 2
        assert counts["searching"] == 1
        assert counts["active"] == 1

    def test_summary_forbidden_for_employee(self, client: TestClient) -> None:
        response = client.get("/benefits/summary", headers=employee_header())
        assert response.status_code == 403


class TestBenefitWrites:
    def test_employee_advances_step(
        self, client: TestClient, fake: FakeSupabase, benefit: dict
    ) -> None:
        response = client.post(
            f"/benefits/{benefit['id']}/step",
            json={"step": "book_live_test"},
            headers=employee_header(),
        )

        assert response.status_code == 200
        assert response.json()["record"]["step"] == "book_live_test"
        assert benefit["step"] == "book_live_test"
        assert benefit["benefit_status"] == "searching"

    def test_backward_step(self, client: TestClient, benefit: dict) -> None:
        benefit["step"] = "sign_contract"

        response = client.post(
            f"/benefits/{benefit['id']}/step",
            json={"step": "choose_bike"},
            headers=employee_header(),
        )

        assert response.status_code == 409
        data = response.json()
        assert data["error"] == "invalid_transition"
        assert data["reason"] == "step_not_forward"

    def test_unknown_step_value(self, client: TestClient, benefit: dict) -> None:
        response = client.post(
            f"/benefits/{benefit['id']}/step",
            json={"step": "teleport"},
            headers=employee_header(),
        )

        assert response.status_code == 400
        assert response.json()["error"] == "bad_request"

    def test_insurance_claim_freezes_steps(
        self, client: TestClient, fake: FakeSupabase, benefit: dict
    ) -> None:
        flagged = client.post(f"/benefits/{benefit['id']}/insurance-claim", headers=auth_header())
        assert flagged.status_code == 200
        assert flagged.json()["benefit_status"] == "insurance_claim"
        assert flagged.json()["frozen"] is True

        response = client.post(
            f"/benefits/{benefit['id']}/step",
            json={"step": "book_live_test"},
            headers=employee_header(),
        )

        assert response.status_code == 409
        assert response.json() == {"error": "benefit_frozen", "reason": "benefit_insurance_claim"}

    def test_employee_cannot_terminate(self, client: TestClient, benefit: dict) -> None:
        response = client.post(f"/benefits/{benefit['id']}/terminate", headers=employee_header())
        assert response.status_code == 403

    def test_hr_terminates(self, client: TestClient, benefit: dict) -> None:
        response = client.post(f"/benefits/{benefit['id']}/terminate", headers=auth_header())

        assert response.status_code == 200
        assert response.json()["benefit_status"] == "terminated"
        assert benefit["benefit_terminated_at"] is not None

    def test_contract_signing_order(self, client: TestClient, benefit: dict) -> None:
        viewed = client.post(
            f"/benefits/{benefit['id']}/contract",
            json={"status": "viewed_by_employee"},
            headers=employee_header(),
        )
        assert viewed.status_code == 200
        assert viewed.json()["contract_status"] == "viewed_by_employee"

        employer_first = client.post(
            f"/benefits/{benefit['id']}/contract",
            json={"status": "signed_by_employer"},
            headers=auth_header(),
        )
        assert employer_first.status_code == 409
        assert employer_first.json()["reason"] == "out_of_order"

    def test_hr_records_delivery(self, client: TestClient, benefit: dict) -> None:
        benefit["step"] = "pickup_delivery"

        response = client.post(f"/benefits/{benefit['id']}/facts/delivered", headers=auth_header())

        assert response.status_code == 200
        assert response.json()["benefit_status"] == "active"
