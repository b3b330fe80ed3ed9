from decimal import Decimal
from typing import Dict, Set

TWO_PLACES = Decimal("0.01")

# --- Exit clearance ---
SETTLEMENT_INITIATED = "initiated"
SETTLEMENT_PENDING_PAYMENT = "pending_payment"
SETTLEMENT_CLEARED = "cleared"

SETTLEMENT_STATES = [
    SETTLEMENT_INITIATED,
    SETTLEMENT_PENDING_PAYMENT,
    SETTLEMENT_CLEARED,
]

SETTLEMENT_TRANSITIONS: Dict[str, Set[str]] = {
    SETTLEMENT_INITIATED: {SETTLEMENT_PENDING_PAYMENT, SETTLEMENT_CLEARED},
    SETTLEMENT_PENDING_PAYMENT: {SETTLEMENT_CLEARED},
    SETTLEMENT_CLEARED: set(),
}

SETTLEMENT_MODES = ["cash", "bank_transfer", "upi", "adjustment"]

SETTLEMENT_MODE_LABELS = {
    "cash": "Cash",
    "bank_transfer": "Bank Transfer",
    "upi": "UPI",
    "adjustment": "Adjusted against dues",
}

# --- Charges ---
CHARGE_STATUSES = ["pending", "partial", "overdue", "paid"]
OUTSTANDING_CHARGE_STATUSES = {"pending", "partial", "overdue"}

# Overdue bills can still be settled, paid is terminal.
CHARGE_TRANSITIONS: Dict[str, Set[str]] = {
    "pending": {"partial", "overdue", "paid"},
    "partial": {"overdue", "paid"},
    "overdue": {"partial", "paid"},
    "paid": set(),
}

PAYMENT_METHODS = ["cash", "upi", "bank_transfer", "cheque", "card"]

PAYMENT_METHOD_LABELS = {
    "cash": "Cash",
    "upi": "UPI",
    "bank_transfer": "Bank Transfer",
    "cheque": "Cheque",
    "card": "Card",
}

# --- Tenants, stays, rooms ---
TENANT_ACTIVE = "active"
TENANT_NOTICE_PERIOD = "notice_period"
TENANT_CHECKED_OUT = "checked_out"

STAY_ACTIVE = "active"
STAY_TRANSFERRED = "transferred"
STAY_COMPLETED = "completed"

ROOM_AVAILABLE = "available"
ROOM_OCCUPIED = "occupied"

# --- Complaints ---
RESOLVED_COMPLAINT_STATUSES = {"resolved", "closed"}

# --- Refunds ---
COMPLETED_REFUND_STATUSES = {"completed"}
PENDING_REFUND_STATUSES = {"pending", "processing"}

# --- Score bands (lower bound inclusive, checked top-down) ---
RELIABILITY_BANDS = [
    (90, "excellent"),
    (70, "good"),
    (50, "fair"),
    (0, "poor"),
]

# Upper bound inclusive, checked bottom-up.
CHURN_BANDS = [
    (30, "low"),
    (60, "medium"),
    (100, "high"),
]
