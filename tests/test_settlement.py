from datetime import date, datetime
from decimal import Decimal

import pytest

from pgdesk.core.errors import ClearanceLockedError, ValidationError
from pgdesk.services.settlement import (
    Deduction,
    add_deduction,
    can_complete,
    compute_final_amount,
    days_stayed,
    ensure_transition,
    outstanding_dues,
    remove_deduction,
    summarize_settlement,
    validate_deduction,
)


def _clearance(**overrides):
    clearance = {
        "settlement_status": "initiated",
        "room_inspection_done": False,
        "key_returned": False,
    }
    clearance.update(overrides)
    return clearance


def test_final_amount_is_refund_when_deposit_exceeds_dues():
    assert compute_final_amount(Decimal("1000"), Decimal("1200"), []) == Decimal("-200.00")


def test_final_amount_adds_deductions():
    deductions = [Deduction(reason="damage", amount=Decimal("500"))]
    assert compute_final_amount(Decimal("1000"), Decimal("1200"), deductions) == Decimal("300.00")


def test_final_amount_accepts_stored_deduction_rows():
    rows = [{"reason": "cleaning", "amount": "250.00"}, {"reason": "key", "amount": "150.50"}]
    assert compute_final_amount("0", "1000", rows) == Decimal("-599.50")


def test_final_amount_is_linear_in_each_input():
    base = compute_final_amount(Decimal("700"), Decimal("900"), [])
    assert compute_final_amount(Decimal("800"), Decimal("900"), []) - base == Decimal("100")
    assert compute_final_amount(Decimal("700"), Decimal("1000"), []) - base == Decimal("-100")
    with_deduction = compute_final_amount(Decimal("700"), Decimal("900"), [{"reason": "x", "amount": "42.10"}])
    assert with_deduction - base == Decimal("42.10")


def test_summary_splits_refund_and_payable():
    refund = summarize_settlement("1000", "1200", [])
    assert refund.refund_due is True
    assert refund.refund_amount == Decimal("200.00")
    assert refund.amount_payable == Decimal("0.00")

    payable = summarize_settlement("1000", "1200", [{"reason": "damage", "amount": "500"}])
    assert payable.refund_due is False
    assert payable.amount_payable == Decimal("300.00")
    assert payable.total_deductions == Decimal("500.00")


@pytest.mark.parametrize(
    "reason, amount, field",
    [
        ("", "100", "reason"),
        ("   ", "100", "reason"),
        (None, "100", "reason"),
        ("damage", None, "amount"),
        ("damage", "", "amount"),
        ("damage", "abc", "amount"),
        ("damage", "0", "amount"),
        ("damage", "-5", "amount"),
    ],
)
def test_incomplete_deductions_are_rejected(reason, amount, field):
    with pytest.raises(ValidationError) as excinfo:
        validate_deduction(reason, amount)
    assert excinfo.value.details["field"] == field


def test_add_and_remove_deduction_return_new_lists():
    original = [{"reason": "cleaning", "amount": "250.00"}]
    added = add_deduction(original, "  broken chair ", "1200")
    assert original == [{"reason": "cleaning", "amount": "250.00"}]
    assert [d.reason for d in added] == ["cleaning", "broken chair"]
    assert added[1].amount == Decimal("1200.00")

    removed = remove_deduction(added, 0)
    assert [d.reason for d in removed] == ["broken chair"]
    assert len(added) == 2


def test_remove_deduction_rejects_bad_index():
    with pytest.raises(ValidationError):
        remove_deduction([{"reason": "cleaning", "amount": "250"}], 3)
    with pytest.raises(ValidationError):
        remove_deduction([], 0)


@pytest.mark.parametrize(
    "inspection, key, status, expected",
    [
        (False, False, "initiated", False),
        (True, False, "initiated", False),
        (False, True, "pending_payment", False),
        (True, True, "initiated", True),
        (True, True, "pending_payment", True),
        (True, True, "cleared", False),
    ],
)
def test_can_complete_requires_inspection_and_key(inspection, key, status, expected):
    clearance = _clearance(room_inspection_done=inspection, key_returned=key, settlement_status=status)
    assert can_complete(clearance) is expected


def test_transitions_follow_the_settlement_flow():
    assert ensure_transition(_clearance(), "pending_payment") == "pending_payment"
    ready = _clearance(settlement_status="pending_payment", room_inspection_done=True, key_returned=True)
    assert ensure_transition(ready, "cleared") == "cleared"

    with pytest.raises(ValidationError):
        ensure_transition(_clearance(settlement_status="pending_payment"), "initiated")
    with pytest.raises(ValidationError) as excinfo:
        ensure_transition(_clearance(key_returned=True), "cleared")
    assert excinfo.value.details["field"] == "room_inspection_done"
    with pytest.raises(ValidationError) as excinfo:
        ensure_transition(_clearance(room_inspection_done=True), "cleared")
    assert excinfo.value.details["field"] == "key_returned"


@pytest.mark.parametrize("target", ["initiated", "pending_payment", "cleared"])
def test_cleared_is_absorbing(target):
    cleared = _clearance(settlement_status="cleared", room_inspection_done=True, key_returned=True)
    with pytest.raises(ClearanceLockedError):
        ensure_transition(cleared, target)


def test_days_stayed_uses_calendar_days():
    assert days_stayed(date(2024, 1, 1), date(2024, 3, 1)) == 60
    assert days_stayed(datetime(2024, 1, 1, 23, 0), "2024-01-02") == 1


def test_outstanding_dues_ignores_paid_charges():
    charges = [
        {"status": "pending", "amount": Decimal("8000"), "paid_amount": Decimal("0")},
        {"status": "partial", "amount": Decimal("8000"), "paid_amount": Decimal("3000")},
        {"status": "overdue", "amount": Decimal("500"), "paid_amount": None},
        {"status": "paid", "amount": Decimal("8000"), "paid_amount": Decimal("8000")},
    ]
    assert outstanding_dues(charges) == Decimal("13500.00")
