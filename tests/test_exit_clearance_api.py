from decimal import Decimal

from fastapi.testclient import TestClient

from pgdesk.api.dependencies import get_db
from pgdesk.auth.jwt import create_access_token, get_owner_context
from pgdesk.main import app
from pgdesk.services.store import OwnerContext


def _override_get_db(session):
    def _generator():
        try:
            yield session
        finally:
            pass

    return _generator


def _override_owner(owner):
    def _provider():
        return OwnerContext(owner_id=owner.id, actor="frontdesk@sunrise")

    return _provider


def test_clearance_lifecycle_over_http(db_session, owner, create_tenant, create_charge):
    tenant = create_tenant()
    create_charge(tenant, amount="8000", status="pending")
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_owner_context] = _override_owner(owner)
    client = TestClient(app)

    try:
        response = client.post(
            "/exit-clearances",
            json={"tenant_id": tenant.id, "expected_exit_date": "2024-03-31", "notice_given_date": "2024-03-01"},
        )
        assert response.status_code == 201
        body = response.json()
        clearance_id = body["id"]
        assert body["settlement_status"] == "initiated"
        assert body["tenant_name"] == "Asha Rao"
        assert body["room_number"] == "101"
        assert Decimal(body["final_amount"]) == Decimal("-8000")
        assert body["settlement"]["refund_due"] is True
        assert body["can_complete"] is False

        response = client.post(f"/exit-clearances/{clearance_id}/deductions", json={"reason": "  "})
        assert response.status_code == 400
        assert response.json()["field"] == "reason"

        response = client.post(
            f"/exit-clearances/{clearance_id}/deductions", json={"reason": "Broken chair", "amount": "1200"}
        )
        assert response.status_code == 200
        assert Decimal(response.json()["final_amount"]) == Decimal("-6800")

        assert client.delete(f"/exit-clearances/{clearance_id}/deductions/5").status_code == 400

        response = client.post(f"/exit-clearances/{clearance_id}/complete")
        assert response.status_code == 400

        response = client.patch(
            f"/exit-clearances/{clearance_id}", json={"room_inspection_done": True, "key_returned": True}
        )
        assert response.status_code == 200
        assert response.json()["can_complete"] is True

        response = client.patch(f"/exit-clearances/{clearance_id}", json={"key_returned": None})
        assert response.status_code == 400
        assert response.json()["field"] == "key_returned"

        response = client.post(f"/exit-clearances/{clearance_id}/complete", json={"settlement_mode": "barter"})
        assert response.status_code == 400
        assert response.json()["field"] == "settlement_mode"

        response = client.post(
            f"/exit-clearances/{clearance_id}/complete",
            json={"actual_exit_date": "2024-03-30", "settlement_mode": "bank_transfer", "settlement_reference": "NEFT-0091"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["settlement_status"] == "cleared"
        assert body["actual_exit_date"] == "2024-03-30"
        assert body["settlement_mode"] == "bank_transfer"
        assert body["settlement_reference"] == "NEFT-0091"
        assert body["completed_by"] == "frontdesk@sunrise"

        response = client.patch(f"/exit-clearances/{clearance_id}", json={"room_condition_notes": "after the fact"})
        assert response.status_code == 409
        assert response.json()["error"] == "clearance_locked"

        listed = client.get("/exit-clearances", params={"status": "cleared"})
        assert [row["id"] for row in listed.json()] == [clearance_id]

        assert client.post(f"/exit-clearances/{clearance_id}/reconcile").json() == {
            "clearance_id": clearance_id,
            "applied_steps": [],
        }
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_settlement_statement_downloads_as_pdf(db_session, owner, create_tenant):
    tenant = create_tenant()
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_owner_context] = _override_owner(owner)
    client = TestClient(app)

    try:
        created = client.post("/exit-clearances", json={"tenant_id": tenant.id, "expected_exit_date": "2024-03-31"})
        clearance_id = created.json()["id"]
        response = client.get(f"/exit-clearances/{clearance_id}/statement")
        assert response.status_code == 200
        assert response.headers["content-type"] == "application/pdf"
        assert response.content.startswith(b"%PDF")
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_missing_clearance_is_404(db_session, owner):
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_owner_context] = _override_owner(owner)
    client = TestClient(app)

    try:
        response = client.get("/exit-clearances/999")
        assert response.status_code == 404
        assert response.json()["error"] == "not_found"
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_requests_without_token_are_rejected(db_session):
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    client = TestClient(app)

    try:
        response = client.get("/exit-clearances")
        assert response.status_code == 401
        response = client.get("/exit-clearances", headers={"Authorization": "Bearer not-a-token"})
        assert response.status_code == 401
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_bearer_token_scopes_requests_to_owner(db_session, owner, create_tenant):
    create_tenant()
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    client = TestClient(app)

    try:
        token = create_access_token(owner.id, actor="manager@sunrise")
        response = client.get("/exit-clearances", headers={"Authorization": f"Bearer {token}"})
        assert response.status_code == 200
        assert response.json() == []
    finally:
        client.close()
        app.dependency_overrides.clear()
