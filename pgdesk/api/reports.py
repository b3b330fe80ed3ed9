from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Response

from ..api.dependencies import get_store
from ..services.audit import audit_log
from ..services.journey_loader import load_journey_sources
from ..services.reports import generate_exit_clearance_register, generate_journey_timeline_report
from ..services.store import RowStore
from ..services.timeline import build_timeline

router = APIRouter(prefix="/reports", tags=["reports"])


def _csv_response(filename: str, content: str) -> Response:
    headers = {
        "Content-Disposition": f'attachment; filename="{filename}"',
        "Cache-Control": "no-store",
    }
    return Response(content=content, media_type="text/csv", headers=headers)


def _audit_report_access(store: RowStore, action: str, target: str) -> None:
    audit_log(
        db_session=store.session,
        owner_id=store.context.owner_id,
        actor=store.context.actor,
        action=action,
        target_entity_type="Report",
        target_entity_id=target,
    )


@router.get("/exit-clearances")
def export_exit_clearances(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    as_of: Optional[date] = None,
    store: RowStore = Depends(get_store),
) -> Response:
    report = generate_exit_clearance_register(store, status_filter, as_of)
    _audit_report_access(store, "reports.exit_clearances", "exit_clearances")
    return _csv_response(report.filename, report.content)


@router.get("/tenants/{tenant_id}/journey")
def export_tenant_journey(
    tenant_id: int,
    as_of: Optional[date] = None,
    store: RowStore = Depends(get_store),
) -> Response:
    events = build_timeline(load_journey_sources(store, tenant_id))
    report = generate_journey_timeline_report(tenant_id, events, as_of)
    _audit_report_access(store, "reports.tenant_journey", str(tenant_id))
    return _csv_response(report.filename, report.content)
