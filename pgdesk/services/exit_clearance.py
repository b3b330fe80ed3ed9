"""Exit clearance workflow: initiate, edit the settlement, complete and reconcile.

Completion touches three records in order: the clearance, then the tenant and their
active stay, then the room. ``settings.atomic_clearance_completion`` decides whether
those steps share one transaction or commit one by one.
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from typing import Any, Callable, Dict, Iterator, List, Mapping, Optional, Sequence, Tuple

from sqlalchemy.exc import SQLAlchemyError

from ..config import settings
from ..constants import (
    OUTSTANDING_CHARGE_STATUSES,
    ROOM_AVAILABLE,
    SETTLEMENT_CLEARED,
    SETTLEMENT_INITIATED,
    SETTLEMENT_MODES,
    SETTLEMENT_PENDING_PAYMENT,
    STAY_ACTIVE,
    STAY_COMPLETED,
    TENANT_CHECKED_OUT,
    TENANT_NOTICE_PERIOD,
)
from ..core.errors import DomainError, PartialWriteError, PersistenceError, ValidationError
from ..models.models import utcnow
from .audit import audit_log
from .settlement import (
    SettlementSummary,
    add_deduction,
    can_complete,
    compute_final_amount,
    deductions_to_rows,
    days_stayed,
    ensure_editable,
    ensure_transition,
    outstanding_dues,
    remove_deduction,
    summarize_settlement,
    validate_deduction,
)
from .store import RowStore

logger = logging.getLogger(__name__)

CLEARANCE_RELATIONS = ("tenant", "property", "room")
EDITABLE_FIELDS = {
    "notice_given_date",
    "expected_exit_date",
    "actual_exit_date",
    "room_inspection_done",
    "room_condition_notes",
    "key_returned",
    "deductions",
}
REQUIRED_FIELDS = ("expected_exit_date", "room_inspection_done", "key_returned")

STEP_CLEARANCE = "clearance"
STEP_TENANT = "tenant"
STEP_ROOM = "room"


@dataclass(frozen=True)
class ClearanceDetail:
    clearance: Dict[str, Any]
    settlement: SettlementSummary
    can_complete: bool
    days_stayed: Optional[int]
    tenant_name: Optional[str]
    property_name: Optional[str]
    room_number: Optional[str]


@dataclass(frozen=True)
class ReconcileResult:
    clearance_id: int
    applied_steps: List[str]


def _snapshot(row: Mapping[str, Any]) -> Dict[str, Any]:
    keys = (
        "settlement_status",
        "total_dues",
        "total_refundable",
        "deductions",
        "final_amount",
        "room_inspection_done",
        "key_returned",
        "actual_exit_date",
        "settlement_mode",
        "settlement_reference",
        "completed_by",
    )
    return {key: row.get(key) for key in keys}


def _audit(
    store: RowStore,
    action: str,
    clearance_id: int,
    before: Any = None,
    after: Any = None,
    commit: bool = True,
) -> None:
    audit_log(
        db_session=store.session,
        owner_id=store.context.owner_id,
        actor=store.context.actor,
        action=action,
        target_entity_type="ExitClearance",
        target_entity_id=str(clearance_id),
        before=before,
        after=after,
        commit=commit,
    )


@contextmanager
def _writing(store: RowStore, action: str) -> Iterator[None]:
    try:
        yield
        store.commit()
    except DomainError:
        store.rollback()
        raise
    except SQLAlchemyError as exc:
        store.rollback()
        logger.error("%s failed and was rolled back: %s", action, exc)
        raise PersistenceError(f"Could not save {action}.") from exc


def get_clearance(store: RowStore, clearance_id: int) -> Dict[str, Any]:
    return store.get("exit_clearances", clearance_id, relations=CLEARANCE_RELATIONS)


def list_clearances(store: RowStore, status: Optional[str] = None) -> List[Dict[str, Any]]:
    filters = {"settlement_status": status} if status else None
    return store.fetch("exit_clearances", filters, order=["-created_at", "-id"], relations=CLEARANCE_RELATIONS)


def initiate_clearance(
    store: RowStore,
    tenant_id: int,
    expected_exit_date: date,
    notice_given_date: Optional[date] = None,
) -> Dict[str, Any]:
    tenant = store.get("tenants", tenant_id)
    if tenant["status"] == TENANT_CHECKED_OUT:
        raise ValidationError("Tenant has already checked out.", tenant_id=tenant_id)
    open_clearance = store.find_one(
        "exit_clearances", {"tenant_id": tenant_id, "settlement_status__ne": SETTLEMENT_CLEARED}
    )
    if open_clearance:
        raise ValidationError(
            "An exit clearance is already in progress for this tenant.",
            tenant_id=tenant_id,
            clearance_id=open_clearance["id"],
        )

    charges = store.fetch("charges", {"tenant_id": tenant_id, "status": sorted(OUTSTANDING_CHARGE_STATUSES)})
    total_dues = outstanding_dues(charges)
    total_refundable = tenant["security_deposit"] or 0
    notice_date = notice_given_date or date.today()

    with _writing(store, "exit clearance"):
        row = store.insert(
            "exit_clearances",
            {
                "tenant_id": tenant_id,
                "property_id": tenant["property_id"],
                "room_id": tenant["room_id"],
                "notice_given_date": notice_date,
                "expected_exit_date": expected_exit_date,
                "total_dues": total_dues,
                "total_refundable": total_refundable,
                "deductions": [],
                "final_amount": compute_final_amount(total_dues, total_refundable, []),
                "settlement_status": SETTLEMENT_INITIATED,
            },
        )
        store.mutate(
            "tenants",
            tenant_id,
            {
                "status": TENANT_NOTICE_PERIOD,
                "notice_date": notice_date,
                "expected_exit_date": expected_exit_date,
            },
        )

    logger.info("Exit clearance %s initiated for tenant %s", row["id"], tenant_id)
    _audit(store, "exit_clearance.initiate", row["id"], after=_snapshot(row))
    return get_clearance(store, row["id"])


def _recomputed(clearance: Mapping[str, Any], deductions: Sequence[Any]) -> Dict[str, Any]:
    return {
        "deductions": deductions_to_rows(deductions),
        "final_amount": compute_final_amount(clearance["total_dues"], clearance["total_refundable"], deductions),
    }


def update_clearance(store: RowStore, clearance_id: int, changes: Mapping[str, Any]) -> Dict[str, Any]:
    clearance = store.get("exit_clearances", clearance_id)
    ensure_editable(clearance)
    unknown = sorted(set(changes) - EDITABLE_FIELDS)
    if unknown:
        raise ValidationError(f"Fields cannot be edited here: {', '.join(unknown)}.", fields=unknown)
    for field in REQUIRED_FIELDS:
        if field in changes and changes[field] is None:
            raise ValidationError(f"{field} cannot be empty.", field=field)

    patch = {key: value for key, value in changes.items() if key != "deductions"}
    if "deductions" in changes:
        deductions = [validate_deduction(_item(d, "reason"), _item(d, "amount")) for d in changes["deductions"] or []]
    else:
        deductions = clearance["deductions"] or []
    patch.update(_recomputed(clearance, deductions))

    with _writing(store, "exit clearance"):
        updated = store.mutate("exit_clearances", clearance_id, patch)

    _audit(store, "exit_clearance.update", clearance_id, before=_snapshot(clearance), after=_snapshot(updated))
    return get_clearance(store, clearance_id)


def _item(value: Any, key: str) -> Any:
    return value.get(key) if isinstance(value, Mapping) else getattr(value, key, None)


def add_clearance_deduction(store: RowStore, clearance_id: int, reason: Any, amount: Any) -> Dict[str, Any]:
    clearance = store.get("exit_clearances", clearance_id)
    ensure_editable(clearance)
    deductions = add_deduction(clearance["deductions"] or [], reason, amount)
    with _writing(store, "deduction"):
        updated = store.mutate("exit_clearances", clearance_id, _recomputed(clearance, deductions))
    _audit(store, "exit_clearance.deduction_added", clearance_id, before=_snapshot(clearance), after=_snapshot(updated))
    return get_clearance(store, clearance_id)


def remove_clearance_deduction(store: RowStore, clearance_id: int, index: int) -> Dict[str, Any]:
    clearance = store.get("exit_clearances", clearance_id)
    ensure_editable(clearance)
    deductions = remove_deduction(clearance["deductions"] or [], index)
    with _writing(store, "deduction"):
        updated = store.mutate("exit_clearances", clearance_id, _recomputed(clearance, deductions))
    _audit(store, "exit_clearance.deduction_removed", clearance_id, before=_snapshot(clearance), after=_snapshot(updated))
    return get_clearance(store, clearance_id)


def mark_pending_payment(store: RowStore, clearance_id: int) -> Dict[str, Any]:
    clearance = store.get("exit_clearances", clearance_id)
    ensure_transition(clearance, SETTLEMENT_PENDING_PAYMENT)
    with _writing(store, "settlement status"):
        store.mutate("exit_clearances", clearance_id, {"settlement_status": SETTLEMENT_PENDING_PAYMENT})
    _audit(
        store,
        "exit_clearance.pending_payment",
        clearance_id,
        before={"settlement_status": clearance["settlement_status"]},
        after={"settlement_status": SETTLEMENT_PENDING_PAYMENT},
    )
    return get_clearance(store, clearance_id)


# --- completion steps ---


def _other_occupants(store: RowStore, room_id: int, tenant_id: int) -> List[Dict[str, Any]]:
    return store.fetch(
        "tenants",
        {"room_id": room_id, "id__ne": tenant_id, "status__ne": TENANT_CHECKED_OUT},
    )


def _close_stays(store: RowStore, stays: Sequence[Mapping[str, Any]], exit_date: date) -> None:
    for stay in stays:
        store.mutate(
            "tenant_stays",
            stay["id"],
            {"status": STAY_COMPLETED, "exit_date": exit_date, "exit_reason": stay["exit_reason"] or "Exit clearance completed"},
        )


def _check_out_tenant(store: RowStore, tenant_id: int, exit_date: date) -> None:
    store.mutate("tenants", tenant_id, {"status": TENANT_CHECKED_OUT, "check_out_date": exit_date})
    _close_stays(store, store.fetch("tenant_stays", {"tenant_id": tenant_id, "status": STAY_ACTIVE}), exit_date)


def _release_room(store: RowStore, room_id: Optional[int], tenant_id: int) -> None:
    if room_id is None or _other_occupants(store, room_id, tenant_id):
        return
    store.mutate("rooms", room_id, {"status": ROOM_AVAILABLE})


def _completion_details(
    settlement_mode: Optional[str],
    settlement_reference: Optional[str],
    final_notes: Optional[str],
) -> Dict[str, Optional[str]]:
    if settlement_mode is not None and settlement_mode not in SETTLEMENT_MODES:
        raise ValidationError(
            f"Settlement mode must be one of: {', '.join(SETTLEMENT_MODES)}.",
            field="settlement_mode",
        )
    return {
        "settlement_mode": settlement_mode,
        "settlement_reference": (settlement_reference or "").strip() or None,
        "final_notes": (final_notes or "").strip() or None,
    }


def complete_clearance(
    store: RowStore,
    clearance_id: int,
    actual_exit_date: Optional[date] = None,
    atomic: Optional[bool] = None,
    settlement_mode: Optional[str] = None,
    settlement_reference: Optional[str] = None,
    final_notes: Optional[str] = None,
) -> Dict[str, Any]:
    atomic = settings.atomic_clearance_completion if atomic is None else atomic
    clearance = store.get("exit_clearances", clearance_id)
    ensure_transition(clearance, SETTLEMENT_CLEARED)
    details = _completion_details(settlement_mode, settlement_reference, final_notes)

    tenant_id = clearance["tenant_id"]
    exit_date = actual_exit_date or clearance["actual_exit_date"] or date.today()
    steps: List[Tuple[str, Callable[[], Any]]] = [
        (
            STEP_CLEARANCE,
            lambda: store.mutate(
                "exit_clearances",
                clearance_id,
                {
                    "settlement_status": SETTLEMENT_CLEARED,
                    "actual_exit_date": exit_date,
                    "completed_at": utcnow(),
                    "completed_by": store.context.actor,
                    **details,
                },
            ),
        ),
        (STEP_TENANT, lambda: _check_out_tenant(store, tenant_id, exit_date)),
        (STEP_ROOM, lambda: _release_room(store, clearance["room_id"], tenant_id)),
    ]

    completed: List[str] = []
    for name, apply in steps:
        try:
            apply()
            if not atomic:
                store.commit()
        except (SQLAlchemyError, DomainError) as exc:
            store.rollback()
            if atomic or not completed:
                logger.error("Exit clearance %s completion rolled back at %s step: %s", clearance_id, name, exc)
                raise PersistenceError(
                    "Could not complete exit clearance; no changes were saved.",
                    clearance_id=clearance_id,
                    failed_step=name,
                ) from exc
            logger.error(
                "Exit clearance %s partially completed: %s failed after %s",
                clearance_id,
                name,
                ", ".join(completed),
            )
            _audit_partial(store, clearance, name, completed, exit_date)
            raise PartialWriteError(
                f"Exit clearance {clearance_id} was cleared but the {name} update failed. Run reconcile to retry.",
                failed_step=name,
                completed_steps=completed,
                clearance_id=clearance_id,
            ) from exc
        completed.append(name)

    after = {"settlement_status": SETTLEMENT_CLEARED, "actual_exit_date": exit_date, "steps": completed, **details}
    # the audit row shares the completion transaction when atomic
    _audit(store, "exit_clearance.complete", clearance_id, before=_snapshot(clearance), after=after, commit=not atomic)
    if atomic:
        store.commit()

    logger.info("Exit clearance %s completed for tenant %s", clearance_id, tenant_id)
    return get_clearance(store, clearance_id)


def _audit_partial(
    store: RowStore,
    clearance: Mapping[str, Any],
    failed_step: str,
    completed: Sequence[str],
    exit_date: date,
) -> None:
    try:
        _audit(
            store,
            "exit_clearance.complete_partial",
            clearance["id"],
            before=_snapshot(clearance),
            after={"completed_steps": list(completed), "failed_step": failed_step, "actual_exit_date": exit_date},
        )
    except SQLAlchemyError:
        store.rollback()
        logger.exception("Could not audit partial completion of exit clearance %s", clearance["id"])


def reconcile_clearance(store: RowStore, clearance_id: int) -> ReconcileResult:
    """Re-apply the tenant and room steps of a cleared clearance that did not stick.

    A tenant who rejoined after the exit date keeps their new stay, status and room;
    only stays that began on or before the exit date are closed.
    """
    clearance = store.get("exit_clearances", clearance_id)
    if clearance["settlement_status"] != SETTLEMENT_CLEARED:
        raise ValidationError("Only cleared exit clearances can be reconciled.", clearance_id=clearance_id)

    tenant_id = clearance["tenant_id"]
    room_id = clearance["room_id"]
    exit_date = clearance["actual_exit_date"] or date.today()
    tenant = store.get("tenants", tenant_id)
    later_stays = store.fetch("tenant_stays", {"tenant_id": tenant_id, "join_date__gt": exit_date})
    rejoined = bool(later_stays) or tenant["check_in_date"] > exit_date
    stale_stays = store.fetch(
        "tenant_stays", {"tenant_id": tenant_id, "status": STAY_ACTIVE, "join_date__lte": exit_date}
    )
    reopen_tenant = not rejoined and tenant["status"] != TENANT_CHECKED_OUT
    applied: List[str] = []

    with _writing(store, "reconciliation"):
        if reopen_tenant or stale_stays:
            if reopen_tenant:
                store.mutate("tenants", tenant_id, {"status": TENANT_CHECKED_OUT, "check_out_date": exit_date})
            _close_stays(store, stale_stays, exit_date)
            applied.append(STEP_TENANT)
        back_in_room = rejoined and tenant["room_id"] == room_id
        if room_id is not None and not back_in_room:
            room = store.get("rooms", room_id)
            if room["status"] != ROOM_AVAILABLE and not _other_occupants(store, room_id, tenant_id):
                _release_room(store, room_id, tenant_id)
                applied.append(STEP_ROOM)
        if applied:
            _audit(store, "exit_clearance.reconcile", clearance_id, after={"applied_steps": applied}, commit=False)

    if applied:
        logger.info("Exit clearance %s reconciled: %s", clearance_id, ", ".join(applied))
    return ReconcileResult(clearance_id=clearance_id, applied_steps=applied)


def clearance_detail(row: Mapping[str, Any]) -> ClearanceDetail:
    tenant = row.get("tenant") or {}
    property_row = row.get("property") or {}
    room = row.get("room") or {}
    check_in = tenant.get("check_in_date")
    exit_or_expected = row.get("actual_exit_date") or row.get("expected_exit_date")
    return ClearanceDetail(
        clearance=dict(row),
        settlement=summarize_settlement(row["total_dues"], row["total_refundable"], row.get("deductions") or []),
        can_complete=can_complete(row),
        days_stayed=days_stayed(check_in, exit_or_expected) if check_in and exit_or_expected else None,
        tenant_name=tenant.get("name"),
        property_name=property_row.get("name"),
        room_number=room.get("room_number"),
    )
