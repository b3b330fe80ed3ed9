from datetime import date, datetime, time
from typing import Any, Mapping, Optional

from .journey import match_pre_tenant_visits
from .scoring import ScoringContext
from .store import RowStore
from .timeline import JourneySources


def load_journey_sources(store: RowStore, tenant_id: int) -> JourneySources:
    tenant = store.get("tenants", tenant_id)
    person_id = tenant.get("person_id")
    person = store.get("people", person_id) if person_id else None

    by_tenant = {"tenant_id": tenant_id}
    visitor_contact = None
    staff = []
    if person_id:
        visitor_contact = store.find_one("visitor_contacts", {"person_id": person_id})
        staff = store.fetch("staff_members", {"person_id": person_id}, order="created_at")

    pre_tenant_visits = []
    if (tenant.get("phone") or tenant.get("phone_numbers")) and tenant.get("check_in_date"):
        candidates = store.fetch(
            "visitors",
            {"check_in_time__lt": datetime.combine(tenant["check_in_date"], time.min)},
            order="-check_in_time",
            limit=100,
            relations=("tenant", "property"),
        )
        pre_tenant_visits = match_pre_tenant_visits(tenant, candidates)

    return JourneySources(
        tenant=tenant,
        person=person,
        stays=store.fetch("tenant_stays", by_tenant, order="stay_number", relations=("property", "room")),
        charges=store.fetch("charges", by_tenant, order="due_date"),
        payments=store.fetch("payments", by_tenant, order="payment_date"),
        refunds=store.fetch("refunds", by_tenant, order="created_at"),
        complaints=store.fetch("complaints", by_tenant, order="created_at"),
        transfers=store.fetch("room_transfers", by_tenant, order="transfer_date", relations=("from_room", "to_room")),
        clearances=store.fetch("exit_clearances", by_tenant, order="created_at"),
        visitors=store.fetch("visitors", by_tenant, order="-check_in_time", limit=50),
        visitor_contact=visitor_contact,
        pre_tenant_visits=pre_tenant_visits,
        staff=staff,
    )


def build_scoring_context(tenant: Mapping[str, Any], as_of: Optional[date] = None) -> ScoringContext:
    return ScoringContext(
        as_of=as_of or date.today(),
        tenant_status=tenant.get("status"),
        notice_given_date=tenant.get("notice_date"),
        expected_exit_date=tenant.get("expected_exit_date"),
        agreement_end_date=tenant.get("agreement_end_date"),
    )
