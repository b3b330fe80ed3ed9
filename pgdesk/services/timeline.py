"""Normalizes per-tenant records into one ordered journey timeline.

Each source collection has one normalizer reading a single fixed timestamp field.
All timestamps are coerced to aware UTC datetimes so sorting never mixes naive and
aware values.
"""
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Sequence

from ..constants import PAYMENT_METHOD_LABELS, RESOLVED_COMPLAINT_STATUSES, SETTLEMENT_CLEARED
from ..core.errors import ValidationError
from ..utils.formatting import format_currency, format_date, isoformat


class EventCategory(str, Enum):
    ONBOARDING = "onboarding"
    FINANCIAL = "financial"
    ACCOMMODATION = "accommodation"
    COMPLAINT = "complaint"
    EXIT = "exit"
    VISITOR = "visitor"
    SYSTEM = "system"


class AmountType(str, Enum):
    CREDIT = "credit"
    DEBIT = "debit"
    NEUTRAL = "neutral"


class EventType(str, Enum):
    CHECK_IN = "check_in"
    REJOINED = "rejoined"
    CHECKOUT_COMPLETED = "checkout_completed"
    BILL_GENERATED = "bill_generated"
    LATE_FEE_APPLIED = "late_fee_applied"
    PAYMENT_RECEIVED = "payment_received"
    REFUND_PROCESSED = "refund_processed"
    COMPLAINT_RAISED = "complaint_raised"
    COMPLAINT_RESOLVED = "complaint_resolved"
    ROOM_TRANSFER = "room_transfer"
    EXIT_INITIATED = "exit_initiated"
    VISITOR_LOGGED = "visitor_logged"
    PRE_TENANT_VISIT = "pre_tenant_visit"
    IDENTITY_VERIFIED = "identity_verified"
    ACCOUNT_BLOCKED = "account_blocked"
    STAFF_ADDED = "staff_added"


@dataclass(frozen=True)
class JourneyEvent:
    id: str
    category: EventCategory
    type: EventType
    timestamp: datetime
    title: str
    description: str = ""
    amount: Optional[Decimal] = None
    amount_type: Optional[AmountType] = None
    status: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)
    action_url: Optional[str] = None
    source_table: Optional[str] = None
    source_id: Optional[int] = None


@dataclass
class JourneySources:
    """Everything fetched for one tenant before aggregation."""

    tenant: Dict[str, Any]
    person: Optional[Dict[str, Any]] = None
    stays: List[Dict[str, Any]] = field(default_factory=list)
    charges: List[Dict[str, Any]] = field(default_factory=list)
    payments: List[Dict[str, Any]] = field(default_factory=list)
    refunds: List[Dict[str, Any]] = field(default_factory=list)
    complaints: List[Dict[str, Any]] = field(default_factory=list)
    transfers: List[Dict[str, Any]] = field(default_factory=list)
    clearances: List[Dict[str, Any]] = field(default_factory=list)
    visitors: List[Dict[str, Any]] = field(default_factory=list)
    visitor_contact: Optional[Dict[str, Any]] = None
    pre_tenant_visits: List[Dict[str, Any]] = field(default_factory=list)
    staff: List[Dict[str, Any]] = field(default_factory=list)


@dataclass(frozen=True)
class TimelinePage:
    events: List[JourneyEvent]
    total: int
    offset: int
    limit: Optional[int]
    has_more: bool


def _get(row: Any, name: str, default: Any = None) -> Any:
    if row is None:
        return default
    if isinstance(row, Mapping):
        value = row.get(name, default)
    else:
        value = getattr(row, name, default)
    return default if value is None else value


def _decimal(value: Any) -> Decimal:
    if value is None:
        return Decimal("0")
    return value if isinstance(value, Decimal) else Decimal(str(value))


def as_timestamp(value: Any, end_of_day: bool = False) -> Optional[datetime]:
    """Coerce a date, datetime or ISO string to an aware UTC datetime."""
    if value is None or value == "":
        return None
    if isinstance(value, str):
        text = value.strip().replace("Z", "+00:00")
        value = datetime.fromisoformat(text) if ("T" in text or " " in text or len(text) > 10) else date.fromisoformat(text)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if isinstance(value, date):
        moment = time(23, 59, 59) if end_of_day else time(0, 0)
        return datetime.combine(value, moment, tzinfo=timezone.utc)
    raise TypeError(f"Cannot interpret {value!r} as a timestamp")


def _event_id(source_table: str, event_type: EventType, source_id: Any) -> str:
    return f"{source_table}:{event_type.value}:{source_id}"


def _room_label(room: Optional[Mapping[str, Any]]) -> str:
    return f"Room {_get(room, 'room_number')}" if _get(room, "room_number") else "Room"


# --- per-source normalizers ---


def stay_events(stays: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events: List[JourneyEvent] = []
    for stay in stays:
        stay_number = _get(stay, "stay_number", 1)
        metadata = {
            "stay_number": stay_number,
            "join_date": isoformat(_get(stay, "join_date")),
            "exit_date": isoformat(_get(stay, "exit_date")),
            "status": _get(stay, "status"),
            "monthly_rent": _decimal(_get(stay, "monthly_rent")),
            "room_id": _get(stay, "room_id"),
            "property_id": _get(stay, "property_id"),
        }
        room = _get(stay, "room")
        property_name = _get(_get(stay, "property"), "name", "Property")
        event_type = EventType.REJOINED if stay_number > 1 else EventType.CHECK_IN
        events.append(
            JourneyEvent(
                id=_event_id("tenant_stays", event_type, stay["id"]),
                category=EventCategory.ONBOARDING,
                type=event_type,
                timestamp=as_timestamp(_get(stay, "join_date")),
                title=f"Rejoined (Stay #{stay_number})" if stay_number > 1 else "Checked In",
                description=(
                    f"{_room_label(room)} at {property_name} • "
                    f"Rent: {format_currency(_get(stay, 'monthly_rent', 0))}"
                ),
                amount_type=AmountType.NEUTRAL,
                status=_get(stay, "status"),
                metadata=metadata,
                action_url=f"/tenants/{_get(stay, 'tenant_id')}",
                source_table="tenant_stays",
                source_id=stay["id"],
            )
        )
        if _get(stay, "exit_date"):
            events.append(
                JourneyEvent(
                    id=_event_id("tenant_stays", EventType.CHECKOUT_COMPLETED, stay["id"]),
                    category=EventCategory.EXIT,
                    type=EventType.CHECKOUT_COMPLETED,
                    timestamp=as_timestamp(_get(stay, "exit_date"), end_of_day=True),
                    title="Checked Out",
                    description=(
                        f"Exit from {_room_label(room)} • "
                        f"Reason: {_get(stay, 'exit_reason', 'Not specified')}"
                    ),
                    amount_type=AmountType.NEUTRAL,
                    status=_get(stay, "status"),
                    metadata=metadata,
                    source_table="tenant_stays",
                    source_id=stay["id"],
                )
            )
    return events


def charge_events(charges: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events: List[JourneyEvent] = []
    for charge in charges:
        amount = _decimal(_get(charge, "amount"))
        paid_amount = _decimal(_get(charge, "paid_amount"))
        balance = amount - paid_amount
        for_period = _get(charge, "for_period")
        description = f"{format_currency(amount)} for {for_period or 'this period'}"
        description += f" • Due: {format_currency(balance)}" if balance > 0 else " • Paid"
        events.append(
            JourneyEvent(
                id=_event_id("charges", EventType.BILL_GENERATED, charge["id"]),
                category=EventCategory.FINANCIAL,
                type=EventType.BILL_GENERATED,
                timestamp=as_timestamp(_get(charge, "created_at") or _get(charge, "due_date")),
                title=f"Bill Generated - {for_period}" if for_period else "Bill Generated",
                description=description,
                amount=amount,
                amount_type=AmountType.DEBIT,
                status=_get(charge, "status"),
                metadata={
                    "charge_id": charge["id"],
                    "due_date": isoformat(_get(charge, "due_date")),
                    "status": _get(charge, "status"),
                    "for_period": for_period,
                    "paid_amount": paid_amount,
                    "charge_type": _get(charge, "charge_type"),
                },
                action_url=f"/charges/{charge['id']}",
                source_table="charges",
                source_id=charge["id"],
            )
        )
        late_fee = _decimal(_get(charge, "late_fee_applied"))
        if late_fee > 0:
            events.append(
                JourneyEvent(
                    id=_event_id("charges", EventType.LATE_FEE_APPLIED, charge["id"]),
                    category=EventCategory.FINANCIAL,
                    type=EventType.LATE_FEE_APPLIED,
                    timestamp=as_timestamp(_get(charge, "due_date"), end_of_day=True),
                    title="Late Fee Applied",
                    description=f"{format_currency(late_fee)} late fee for {_get(charge, 'charge_type', 'charge')}",
                    amount=late_fee,
                    amount_type=AmountType.DEBIT,
                    status=_get(charge, "status"),
                    metadata={"charge_id": charge["id"], "due_date": isoformat(_get(charge, "due_date"))},
                    action_url=f"/charges/{charge['id']}",
                    source_table="charges",
                    source_id=charge["id"],
                )
            )
    return events


def payment_events(payments: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events = []
    for payment in payments:
        method = _get(payment, "payment_method", "cash")
        for_period = _get(payment, "for_period")
        description = f"{format_currency(_get(payment, 'amount'))} via {PAYMENT_METHOD_LABELS.get(method, method)}"
        if for_period:
            description += f" for {for_period}"
        events.append(
            JourneyEvent(
                id=_event_id("payments", EventType.PAYMENT_RECEIVED, payment["id"]),
                category=EventCategory.FINANCIAL,
                type=EventType.PAYMENT_RECEIVED,
                timestamp=as_timestamp(_get(payment, "payment_date")),
                title="Payment Received",
                description=description,
                amount=_decimal(_get(payment, "amount")),
                amount_type=AmountType.CREDIT,
                status="completed",
                metadata={
                    "payment_date": isoformat(_get(payment, "payment_date")),
                    "for_period": for_period,
                    "charge_id": _get(payment, "charge_id"),
                    "payment_method": method,
                    "receipt_number": _get(payment, "receipt_number"),
                },
                action_url=f"/payments/{payment['id']}",
                source_table="payments",
                source_id=payment["id"],
            )
        )
    return events


def refund_events(refunds: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    titles = {"completed": "Refund Processed", "pending": "Refund Pending"}
    events = []
    for refund in refunds:
        status = _get(refund, "status", "pending")
        mode = _get(refund, "payment_mode", "cash")
        description = f"{format_currency(_get(refund, 'amount'))} via {PAYMENT_METHOD_LABELS.get(mode, mode)}"
        if _get(refund, "refund_type"):
            description += f" • {refund['refund_type'].replace('_', ' ')}"
        events.append(
            JourneyEvent(
                id=_event_id("refunds", EventType.REFUND_PROCESSED, refund["id"]),
                category=EventCategory.FINANCIAL,
                type=EventType.REFUND_PROCESSED,
                timestamp=as_timestamp(_get(refund, "created_at")),
                title=titles.get(status, "Refund Initiated"),
                description=description,
                amount=_decimal(_get(refund, "amount")),
                amount_type=AmountType.CREDIT,
                status=status,
                metadata={
                    "exit_clearance_id": _get(refund, "exit_clearance_id"),
                    "processed_at": isoformat(_get(refund, "processed_at")),
                },
                action_url=f"/refunds/{refund['id']}",
                source_table="refunds",
                source_id=refund["id"],
            )
        )
    return events


def complaint_events(complaints: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events: List[JourneyEvent] = []
    for complaint in complaints:
        status = _get(complaint, "status", "open")
        events.append(
            JourneyEvent(
                id=_event_id("complaints", EventType.COMPLAINT_RAISED, complaint["id"]),
                category=EventCategory.COMPLAINT,
                type=EventType.COMPLAINT_RAISED,
                timestamp=as_timestamp(_get(complaint, "created_at")),
                title=f"Complaint: {_get(complaint, 'title')}",
                description=f"{_get(complaint, 'category', 'general')} • Priority: {_get(complaint, 'priority', 'medium')}",
                status=status,
                metadata={
                    "priority": _get(complaint, "priority"),
                    "category": _get(complaint, "category"),
                    "description": _get(complaint, "description"),
                },
                action_url=f"/complaints/{complaint['id']}",
                source_table="complaints",
                source_id=complaint["id"],
            )
        )
        if status in RESOLVED_COMPLAINT_STATUSES and _get(complaint, "resolved_at"):
            events.append(
                JourneyEvent(
                    id=_event_id("complaints", EventType.COMPLAINT_RESOLVED, complaint["id"]),
                    category=EventCategory.COMPLAINT,
                    type=EventType.COMPLAINT_RESOLVED,
                    timestamp=as_timestamp(_get(complaint, "resolved_at")),
                    title=f"Complaint Resolved: {_get(complaint, 'title')}",
                    description=_get(complaint, "resolution_notes", "Issue resolved"),
                    status=status,
                    metadata={"raised_at": isoformat(_get(complaint, "created_at"))},
                    action_url=f"/complaints/{complaint['id']}",
                    source_table="complaints",
                    source_id=complaint["id"],
                )
            )
    return events


def transfer_events(transfers: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events = []
    for transfer in transfers:
        old_rent = _decimal(_get(transfer, "old_rent"))
        new_rent = _decimal(_get(transfer, "new_rent"))
        delta = new_rent - old_rent
        if delta > 0:
            amount_type = AmountType.DEBIT
        elif delta < 0:
            amount_type = AmountType.CREDIT
        else:
            amount_type = AmountType.NEUTRAL
        from_room = _get(_get(transfer, "from_room"), "room_number", "?")
        to_room = _get(_get(transfer, "to_room"), "room_number", "?")
        events.append(
            JourneyEvent(
                id=_event_id("room_transfers", EventType.ROOM_TRANSFER, transfer["id"]),
                category=EventCategory.ACCOMMODATION,
                type=EventType.ROOM_TRANSFER,
                timestamp=as_timestamp(_get(transfer, "transfer_date")),
                title="Room Transfer",
                description=f"{from_room} → {to_room} • {_get(transfer, 'reason', 'No reason specified')}",
                amount=abs(delta) if delta else None,
                amount_type=amount_type,
                metadata={
                    "old_rent": old_rent,
                    "new_rent": new_rent,
                    "from_room_id": _get(transfer, "from_room_id"),
                    "to_room_id": _get(transfer, "to_room_id"),
                },
                source_table="room_transfers",
                source_id=transfer["id"],
            )
        )
    return events


def clearance_events(clearances: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events: List[JourneyEvent] = []
    for clearance in clearances:
        status = _get(clearance, "settlement_status")
        events.append(
            JourneyEvent(
                id=_event_id("exit_clearances", EventType.EXIT_INITIATED, clearance["id"]),
                category=EventCategory.EXIT,
                type=EventType.EXIT_INITIATED,
                timestamp=as_timestamp(_get(clearance, "created_at")),
                title="Exit Process Initiated",
                description=(
                    f"Expected exit: {format_date(_get(clearance, 'expected_exit_date'))} • "
                    f"Settlement: {status}"
                ),
                status=status,
                metadata={
                    "notice_given_date": isoformat(_get(clearance, "notice_given_date")),
                    "expected_exit_date": isoformat(_get(clearance, "expected_exit_date")),
                    "total_dues": _decimal(_get(clearance, "total_dues")),
                    "total_refundable": _decimal(_get(clearance, "total_refundable")),
                },
                action_url=f"/exit-clearances/{clearance['id']}",
                source_table="exit_clearances",
                source_id=clearance["id"],
            )
        )
        if status == SETTLEMENT_CLEARED and _get(clearance, "completed_at"):
            final_amount = _decimal(_get(clearance, "final_amount"))
            events.append(
                JourneyEvent(
                    id=_event_id("exit_clearances", EventType.CHECKOUT_COMPLETED, clearance["id"]),
                    category=EventCategory.EXIT,
                    type=EventType.CHECKOUT_COMPLETED,
                    timestamp=as_timestamp(_get(clearance, "completed_at")),
                    title="Exit Completed",
                    description=(
                        f"Final settlement: {format_currency(final_amount)} • "
                        f"Keys returned: {'Yes' if _get(clearance, 'key_returned') else 'No'}"
                    ),
                    amount=abs(final_amount),
                    amount_type=AmountType.DEBIT if final_amount > 0 else AmountType.CREDIT,
                    status=status,
                    metadata={"actual_exit_date": isoformat(_get(clearance, "actual_exit_date"))},
                    action_url=f"/exit-clearances/{clearance['id']}",
                    source_table="exit_clearances",
                    source_id=clearance["id"],
                )
            )
    return events


def visitor_events(visitors: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events = []
    for visitor in visitors:
        description = f"{_get(visitor, 'relation', 'Visitor')} • {_get(visitor, 'purpose', 'Visit')}"
        if _get(visitor, "is_overnight"):
            description += " • Overnight"
        events.append(
            JourneyEvent(
                id=_event_id("visitors", EventType.VISITOR_LOGGED, visitor["id"]),
                category=EventCategory.VISITOR,
                type=EventType.VISITOR_LOGGED,
                timestamp=as_timestamp(_get(visitor, "check_in_time")),
                title=f"Visitor: {_get(visitor, 'visitor_name')}",
                description=description,
                metadata={
                    "visitor_phone": _get(visitor, "visitor_phone"),
                    "check_out_time": isoformat(_get(visitor, "check_out_time")),
                    "is_overnight": bool(_get(visitor, "is_overnight", False)),
                },
                source_table="visitors",
                source_id=visitor["id"],
            )
        )
    return events


def pre_tenant_visit_events(visits: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    events = []
    for visit in visits:
        visited = _get(_get(visit, "tenant"), "name", "a tenant")
        property_name = _get(_get(visit, "property"), "name")
        description = f"Visited {visited}"
        if property_name:
            description += f" at {property_name}"
        events.append(
            JourneyEvent(
                id=_event_id("visitors", EventType.PRE_TENANT_VISIT, visit["id"]),
                category=EventCategory.VISITOR,
                type=EventType.PRE_TENANT_VISIT,
                timestamp=as_timestamp(_get(visit, "check_in_time")),
                title="Visited Before Joining",
                description=description,
                metadata={"visited_tenant_id": _get(visit, "tenant_id"), "property_id": _get(visit, "property_id")},
                source_table="visitors",
                source_id=visit["id"],
            )
        )
    return events


def person_events(person: Optional[Mapping[str, Any]]) -> List[JourneyEvent]:
    if not person:
        return []
    events = []
    if _get(person, "verified_at"):
        events.append(
            JourneyEvent(
                id=_event_id("people", EventType.IDENTITY_VERIFIED, person["id"]),
                category=EventCategory.SYSTEM,
                type=EventType.IDENTITY_VERIFIED,
                timestamp=as_timestamp(person["verified_at"]),
                title="Identity Verified",
                description=f"{_get(person, 'name')} was verified",
                status="verified",
                source_table="people",
                source_id=person["id"],
            )
        )
    if _get(person, "blocked_at"):
        events.append(
            JourneyEvent(
                id=_event_id("people", EventType.ACCOUNT_BLOCKED, person["id"]),
                category=EventCategory.SYSTEM,
                type=EventType.ACCOUNT_BLOCKED,
                timestamp=as_timestamp(person["blocked_at"]),
                title="Account Blocked",
                description=_get(person, "blocked_reason", "No reason recorded"),
                status="blocked" if _get(person, "is_blocked") else "unblocked",
                source_table="people",
                source_id=person["id"],
            )
        )
    return events


def staff_events(staff: Iterable[Mapping[str, Any]]) -> List[JourneyEvent]:
    return [
        JourneyEvent(
            id=_event_id("staff_members", EventType.STAFF_ADDED, member["id"]),
            category=EventCategory.SYSTEM,
            type=EventType.STAFF_ADDED,
            timestamp=as_timestamp(_get(member, "created_at")),
            title="Added as Staff",
            description=_get(member, "role", "Staff member"),
            status="active" if _get(member, "is_active") else "inactive",
            source_table="staff_members",
            source_id=member["id"],
        )
        for member in staff
    ]


# --- merge and views ---


def merge_timeline(*event_groups: Iterable[JourneyEvent]) -> List[JourneyEvent]:
    """Newest first, ties ordered by event id, duplicates collapsed."""
    unique: Dict[str, JourneyEvent] = {}
    for group in event_groups:
        for event in group:
            if event.timestamp is None:
                continue
            unique.setdefault(event.id, event)
    ordered = sorted(unique.values(), key=lambda event: event.id)
    # sort is stable, so the id order survives among equal timestamps
    return sorted(ordered, key=lambda event: event.timestamp, reverse=True)


def build_timeline(sources: JourneySources) -> List[JourneyEvent]:
    return merge_timeline(
        stay_events(sources.stays),
        charge_events(sources.charges),
        payment_events(sources.payments),
        refund_events(sources.refunds),
        complaint_events(sources.complaints),
        transfer_events(sources.transfers),
        clearance_events(sources.clearances),
        visitor_events(sources.visitors),
        pre_tenant_visit_events(sources.pre_tenant_visits),
        person_events(sources.person),
        staff_events(sources.staff),
    )


def filter_events(
    events: Sequence[JourneyEvent],
    categories: Optional[Iterable[str]] = None,
    date_from: Any = None,
    date_to: Any = None,
    search: Optional[str] = None,
) -> List[JourneyEvent]:
    wanted = None
    if categories:
        try:
            wanted = {EventCategory(c) for c in categories}
        except ValueError:
            raise ValidationError(f"Unknown event category in {sorted(categories)}.", field="categories")
    lower = as_timestamp(date_from)
    upper = as_timestamp(date_to, end_of_day=True)
    needle = search.strip().lower() if search and search.strip() else None

    checks: List[Callable[[JourneyEvent], bool]] = []
    if wanted is not None:
        checks.append(lambda event: event.category in wanted)
    if lower is not None:
        checks.append(lambda event: event.timestamp >= lower)
    if upper is not None:
        checks.append(lambda event: event.timestamp <= upper)
    if needle is not None:
        checks.append(lambda event: needle in event.title.lower() or needle in (event.description or "").lower())
    return [event for event in events if all(check(event) for check in checks)]


def paginate(events: Sequence[JourneyEvent], offset: int = 0, limit: Optional[int] = None) -> TimelinePage:
    offset = max(offset, 0)
    page = list(events[offset:]) if limit is None else list(events[offset : offset + limit])
    return TimelinePage(
        events=page,
        total=len(events),
        offset=offset,
        limit=limit,
        has_more=offset + len(page) < len(events),
    )


def category_counts(events: Iterable[JourneyEvent]) -> Dict[str, int]:
    counts = {category.value: 0 for category in EventCategory}
    for event in events:
        counts[event.category.value] += 1
    return counts
