from datetime import date, datetime
from decimal import Decimal

from fastapi.testclient import TestClient

from pgdesk.api.dependencies import get_db
from pgdesk.auth.jwt import get_owner_context
from pgdesk.main import app
from pgdesk.models.models import AuditLog, Complaint, Payment, Visitor
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


def _seed_history(db_session, owner, create_tenant, create_charge):
    tenant = create_tenant()
    paid = create_charge(tenant, due_date=date(2024, 2, 5), status="paid", paid_amount="8000", for_period="2024-02")
    create_charge(tenant, due_date=date(2024, 3, 5), status="overdue", for_period="2024-03")
    db_session.add_all(
        [
            Payment(
                owner_id=owner.id,
                tenant_id=tenant.id,
                charge_id=paid.id,
                amount=Decimal("8000"),
                payment_date=date(2024, 2, 4),
                payment_method="upi",
            ),
            Complaint(
                owner_id=owner.id,
                tenant_id=tenant.id,
                title="Geyser not working",
                status="open",
                created_at=datetime(2024, 3, 10, 9, 0),
            ),
            Visitor(
                owner_id=owner.id,
                property_id=tenant.property_id,
                visitor_name="Asha Rao",
                visitor_phone="09876543210",
                check_in_time=datetime(2023, 12, 15, 17, 0),
            ),
        ]
    )
    db_session.commit()
    return tenant


def test_journey_endpoint_returns_timeline_and_scores(db_session, owner, create_tenant, create_charge):
    tenant = _seed_history(db_session, owner, create_tenant, create_charge)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_owner_context] = _override_owner(owner)
    client = TestClient(app)

    try:
        response = client.get(f"/tenants/{tenant.id}/journey", params={"as_of": "2024-04-01"})
        assert response.status_code == 200
        body = response.json()
        assert body["tenant_name"] == "Asha Rao"
        assert body["total_events"] == len(body["events"])
        stamps = [event["timestamp"] for event in body["events"]]
        assert stamps == sorted(stamps, reverse=True)
        assert body["events"][0]["type"] == "complaint_raised"
        assert body["events"][-1]["type"] == "pre_tenant_visit"
        assert body["category_counts"]["financial"] == 3
        assert body["scores"]["charge_outcomes"] == {"on_time": 1, "late": 0, "overdue": 1, "not_due": 0}
        assert body["financial"]["total_overdue"] == "8000.00"
        assert body["pre_tenant_visits"][0]["days_before_joining"] == 17

        filtered = client.get(
            f"/tenants/{tenant.id}/journey",
            params={"as_of": "2024-04-01", "categories": ["financial"], "limit": 2},
        ).json()
        assert [event["category"] for event in filtered["events"]] == ["financial", "financial"]
        assert filtered["has_more"] is True
        assert filtered["scores"] == body["scores"]

        bad = client.get(f"/tenants/{tenant.id}/journey", params={"categories": ["parties"]})
        assert bad.status_code == 400

        counts = client.get(f"/tenants/{tenant.id}/journey/category-counts").json()
        assert counts["complaint"] == 1
        assert counts["exit"] == 0
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_journey_for_unknown_tenant_is_404(db_session, owner):
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_owner_context] = _override_owner(owner)
    client = TestClient(app)

    try:
        assert client.get("/tenants/404/journey").status_code == 404
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_reports_export_csv_and_audit_access(db_session, owner, create_tenant, create_charge):
    tenant = _seed_history(db_session, owner, create_tenant, create_charge)
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_owner_context] = _override_owner(owner)
    client = TestClient(app)

    try:
        client.post("/exit-clearances", json={"tenant_id": tenant.id, "expected_exit_date": "2024-04-30"})

        response = client.get("/reports/exit-clearances", params={"as_of": "2024-04-01"})
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/csv")
        assert 'filename="exit-clearances-2024-04-01.csv"' in response.headers["content-disposition"]
        lines = response.text.strip().splitlines()
        assert lines[0].startswith("Clearance ID,Tenant,Property,Room,Status")
        assert "Asha Rao" in lines[1]
        assert lines[1].endswith("8000.00,16000.00,0.00,-8000.00")

        response = client.get(f"/reports/tenants/{tenant.id}/journey", params={"as_of": "2024-04-01"})
        assert response.status_code == 200
        assert f"tenant-{tenant.id}-journey-2024-04-01.csv" in response.headers["content-disposition"]
        rows = response.text.strip().splitlines()
        assert rows[0] == "timestamp,category,type,title,description,amount,amount_type,status"
        assert len(rows) > 1

        actions = {
            row.action
            for row in db_session.query(AuditLog).filter(AuditLog.target_entity_type == "Report")
        }
        assert actions == {"reports.exit_clearances", "reports.tenant_journey"}
    finally:
        client.close()
        app.dependency_overrides.clear()


def test_pre_tenant_visit_found_through_secondary_number(db_session, owner, create_tenant):
    tenant = create_tenant(phone=None)
    tenant.phone_numbers = [{"number": "+91 90000 00000", "label": "home"}]
    db_session.add(
        Visitor(
            owner_id=owner.id,
            property_id=tenant.property_id,
            visitor_name="Asha Rao",
            visitor_phone="9000000000",
            check_in_time=datetime(2023, 12, 1, 11, 0),
        )
    )
    db_session.commit()
    app.dependency_overrides[get_db] = _override_get_db(db_session)
    app.dependency_overrides[get_owner_context] = _override_owner(owner)
    client = TestClient(app)

    try:
        body = client.get(f"/tenants/{tenant.id}/journey", params={"as_of": "2024-04-01"}).json()
        assert [visit["days_before_joining"] for visit in body["pre_tenant_visits"]] == [31]
    finally:
        client.close()
        app.dependency_overrides.clear()
