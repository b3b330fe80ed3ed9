from typing import List, Optional

from fastapi import APIRouter, Depends, Query, status
from fastapi.responses import FileResponse

from ..api.dependencies import get_store
from ..schemas.schemas import (
    DeductionCreate,
    ExitClearanceComplete,
    ExitClearanceCreate,
    ExitClearanceRead,
    ExitClearanceUpdate,
    ReconcileRead,
    SettlementSummaryRead,
)
from ..services.exit_clearance import (
    add_clearance_deduction,
    clearance_detail,
    complete_clearance,
    get_clearance,
    initiate_clearance,
    list_clearances,
    mark_pending_payment,
    reconcile_clearance,
    remove_clearance_deduction,
    update_clearance,
)
from ..services.store import RowStore
from ..utils.pdf_utils import generate_settlement_statement_pdf

router = APIRouter(prefix="/exit-clearances", tags=["exit-clearances"])


def _serialize_clearance(row: dict) -> ExitClearanceRead:
    detail = clearance_detail(row)
    return ExitClearanceRead.model_validate(
        {
            **detail.clearance,
            "tenant_name": detail.tenant_name,
            "property_name": detail.property_name,
            "room_number": detail.room_number,
            "settlement": SettlementSummaryRead.model_validate(detail.settlement),
            "can_complete": detail.can_complete,
            "days_stayed": detail.days_stayed,
        }
    )


@router.get("", response_model=List[ExitClearanceRead])
def list_exit_clearances(
    status_filter: Optional[str] = Query(default=None, alias="status"),
    store: RowStore = Depends(get_store),
) -> List[ExitClearanceRead]:
    return [_serialize_clearance(row) for row in list_clearances(store, status_filter)]


@router.post("", response_model=ExitClearanceRead, status_code=status.HTTP_201_CREATED)
def create_exit_clearance(
    payload: ExitClearanceCreate,
    store: RowStore = Depends(get_store),
) -> ExitClearanceRead:
    row = initiate_clearance(store, payload.tenant_id, payload.expected_exit_date, payload.notice_given_date)
    return _serialize_clearance(row)


@router.get("/{clearance_id}", response_model=ExitClearanceRead)
def get_exit_clearance(clearance_id: int, store: RowStore = Depends(get_store)) -> ExitClearanceRead:
    return _serialize_clearance(get_clearance(store, clearance_id))


@router.patch("/{clearance_id}", response_model=ExitClearanceRead)
def update_exit_clearance(
    clearance_id: int,
    payload: ExitClearanceUpdate,
    store: RowStore = Depends(get_store),
) -> ExitClearanceRead:
    changes = payload.model_dump(exclude_unset=True)
    return _serialize_clearance(update_clearance(store, clearance_id, changes))


@router.post("/{clearance_id}/deductions", response_model=ExitClearanceRead)
def add_exit_clearance_deduction(
    clearance_id: int,
    payload: DeductionCreate,
    store: RowStore = Depends(get_store),
) -> ExitClearanceRead:
    return _serialize_clearance(add_clearance_deduction(store, clearance_id, payload.reason, payload.amount))


@router.delete("/{clearance_id}/deductions/{index}", response_model=ExitClearanceRead)
def delete_exit_clearance_deduction(
    clearance_id: int,
    index: int,
    store: RowStore = Depends(get_store),
) -> ExitClearanceRead:
    return _serialize_clearance(remove_clearance_deduction(store, clearance_id, index))


@router.post("/{clearance_id}/mark-pending", response_model=ExitClearanceRead)
def mark_exit_clearance_pending(clearance_id: int, store: RowStore = Depends(get_store)) -> ExitClearanceRead:
    return _serialize_clearance(mark_pending_payment(store, clearance_id))


@router.post("/{clearance_id}/complete", response_model=ExitClearanceRead)
def complete_exit_clearance(
    clearance_id: int,
    payload: Optional[ExitClearanceComplete] = None,
    store: RowStore = Depends(get_store),
) -> ExitClearanceRead:
    payload = payload or ExitClearanceComplete()
    row = complete_clearance(
        store,
        clearance_id,
        payload.actual_exit_date,
        settlement_mode=payload.settlement_mode,
        settlement_reference=payload.settlement_reference,
        final_notes=payload.final_notes,
    )
    return _serialize_clearance(row)


@router.post("/{clearance_id}/reconcile", response_model=ReconcileRead)
def reconcile_exit_clearance(clearance_id: int, store: RowStore = Depends(get_store)) -> ReconcileRead:
    return ReconcileRead.model_validate(reconcile_clearance(store, clearance_id))


@router.get("/{clearance_id}/statement")
def download_settlement_statement(clearance_id: int, store: RowStore = Depends(get_store)) -> FileResponse:
    detail = clearance_detail(get_clearance(store, clearance_id))
    pdf_path = generate_settlement_statement_pdf(detail)
    filename = f"settlement-{clearance_id}.pdf"
    return FileResponse(path=pdf_path, media_type="application/pdf", filename=filename)
