"""Exit clearance settlement arithmetic and state-machine rules.

Everything here is pure: callers pass already-fetched values (ORM objects or row
mappings) and persist whatever comes back.
"""
from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Iterable, List, Mapping, Sequence, Union

from ..constants import (
    OUTSTANDING_CHARGE_STATUSES,
    SETTLEMENT_CLEARED,
    SETTLEMENT_STATES,
    SETTLEMENT_TRANSITIONS,
    TWO_PLACES,
)
from ..core.errors import ClearanceLockedError, ValidationError


@dataclass(frozen=True)
class Deduction:
    reason: str
    amount: Decimal

    def as_row(self) -> dict:
        return {"reason": self.reason, "amount": f"{self.amount:.2f}"}


DeductionLike = Union[Deduction, Mapping[str, Any]]


@dataclass(frozen=True)
class SettlementSummary:
    total_dues: Decimal
    total_refundable: Decimal
    total_deductions: Decimal
    final_amount: Decimal
    refund_due: bool
    refund_amount: Decimal
    amount_payable: Decimal


def _as_decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def _quantize(value: Decimal) -> Decimal:
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


def _field(record: Any, name: str, default: Any = None) -> Any:
    if isinstance(record, Mapping):
        return record.get(name, default)
    return getattr(record, name, default)


def _deduction_amount(deduction: DeductionLike) -> Decimal:
    return _as_decimal(_field(deduction, "amount"))


def total_deductions(deductions: Iterable[DeductionLike]) -> Decimal:
    return sum((_deduction_amount(d) for d in deductions), Decimal("0"))


def compute_final_amount(
    total_dues: Any,
    total_refundable: Any,
    deductions: Iterable[DeductionLike],
) -> Decimal:
    """Net settlement: positive means the tenant owes money, negative means a refund is due.

    Deduction semantics are not validated here; see ``validate_deduction``.
    """
    result = _as_decimal(total_dues) - _as_decimal(total_refundable) + total_deductions(deductions)
    return _quantize(result)


def is_refund_due(final_amount: Any) -> bool:
    return _as_decimal(final_amount) < 0


def summarize_settlement(
    total_dues: Any,
    total_refundable: Any,
    deductions: Sequence[DeductionLike],
) -> SettlementSummary:
    final_amount = compute_final_amount(total_dues, total_refundable, deductions)
    refund_due = is_refund_due(final_amount)
    return SettlementSummary(
        total_dues=_quantize(_as_decimal(total_dues)),
        total_refundable=_quantize(_as_decimal(total_refundable)),
        total_deductions=_quantize(total_deductions(deductions)),
        final_amount=final_amount,
        refund_due=refund_due,
        refund_amount=-final_amount if refund_due else Decimal("0.00"),
        amount_payable=Decimal("0.00") if refund_due else final_amount,
    )


def outstanding_dues(charges: Iterable[Any]) -> Decimal:
    """Sum of unpaid balances across pending, partial and overdue charges."""
    total = Decimal("0")
    for charge in charges:
        if _field(charge, "status") not in OUTSTANDING_CHARGE_STATUSES:
            continue
        balance = _as_decimal(_field(charge, "amount")) - _as_decimal(_field(charge, "paid_amount"))
        if balance > 0:
            total += balance
    return _quantize(total)


def validate_deduction(reason: Any, amount: Any) -> Deduction:
    cleaned_reason = (reason or "").strip() if isinstance(reason, str) or reason is None else str(reason).strip()
    if not cleaned_reason:
        raise ValidationError("A deduction needs a reason.", field="reason")
    if amount is None or (isinstance(amount, str) and not amount.strip()):
        raise ValidationError("A deduction needs an amount.", field="amount")
    try:
        parsed = _as_decimal(amount)
    except (InvalidOperation, ValueError):
        raise ValidationError("Deduction amount must be a number.", field="amount")
    if not parsed.is_finite() or parsed <= 0:
        raise ValidationError("Deduction amount must be greater than zero.", field="amount")
    return Deduction(reason=cleaned_reason, amount=_quantize(parsed))


def add_deduction(deductions: Sequence[DeductionLike], reason: Any, amount: Any) -> List[Deduction]:
    deduction = validate_deduction(reason, amount)
    return [_coerce_deduction(d) for d in deductions] + [deduction]


def remove_deduction(deductions: Sequence[DeductionLike], index: int) -> List[Deduction]:
    if index < 0 or index >= len(deductions):
        raise ValidationError(f"No deduction at position {index}.", field="index")
    return [_coerce_deduction(d) for position, d in enumerate(deductions) if position != index]


def _coerce_deduction(deduction: DeductionLike) -> Deduction:
    if isinstance(deduction, Deduction):
        return deduction
    return Deduction(reason=str(_field(deduction, "reason") or ""), amount=_quantize(_deduction_amount(deduction)))


def deductions_to_rows(deductions: Iterable[DeductionLike]) -> List[dict]:
    return [_coerce_deduction(d).as_row() for d in deductions]


def can_complete(clearance: Any) -> bool:
    return (
        bool(_field(clearance, "room_inspection_done"))
        and bool(_field(clearance, "key_returned"))
        and _field(clearance, "settlement_status") != SETTLEMENT_CLEARED
    )


def ensure_transition(clearance: Any, target: str) -> str:
    current = _field(clearance, "settlement_status")
    if current == SETTLEMENT_CLEARED:
        raise ClearanceLockedError("Exit clearance is already cleared.", current=current, target=target)
    if target not in SETTLEMENT_STATES:
        raise ValidationError(f"Unknown settlement status {target}.", target=target)
    if target not in SETTLEMENT_TRANSITIONS.get(current, set()):
        raise ValidationError(f"Cannot move settlement from {current} to {target}.", current=current, target=target)
    if target == SETTLEMENT_CLEARED and not can_complete(clearance):
        if not _field(clearance, "room_inspection_done"):
            raise ValidationError("Please complete room inspection first.", field="room_inspection_done")
        raise ValidationError("Please confirm key has been returned.", field="key_returned")
    return target


def ensure_editable(clearance: Any) -> None:
    if _field(clearance, "settlement_status") == SETTLEMENT_CLEARED:
        raise ClearanceLockedError("Exit clearance is cleared and can no longer be modified.")


def _as_date(value: Any) -> date:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if isinstance(value, str):
        return datetime.fromisoformat(value.replace("Z", "+00:00")).date() if "T" in value else date.fromisoformat(value)
    raise ValidationError(f"Not a date: {value!r}")


def days_stayed(check_in_date: Any, exit_or_expected_date: Any) -> int:
    return (_as_date(exit_or_expected_date) - _as_date(check_in_date)).days
