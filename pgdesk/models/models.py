from datetime import datetime, timezone

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    event,
    inspect,
)
from sqlalchemy.orm import Session, column_property
from sqlalchemy.orm import relationship as orm_relationship

from ..config import Base
from ..constants import CHARGE_TRANSITIONS, SETTLEMENT_CLEARED, SETTLEMENT_TRANSITIONS
from ..core.errors import ClearanceLockedError, ImmutableRecordError, ValidationError


def utcnow():
    return datetime.now(timezone.utc)


class Owner(Base):
    __tablename__ = "owners"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String, nullable=False)
    email = Column(String, nullable=True, unique=True)
    phone = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    properties = orm_relationship("Property", back_populates="owner", cascade="all, delete-orphan")


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, index=True)
    timestamp = Column(DateTime, default=utcnow, index=True, nullable=False)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=True, index=True)
    actor = Column(String, nullable=True)
    action = Column(String, nullable=False)
    target_entity_type = Column(String, nullable=True)
    target_entity_id = Column(String, nullable=True)
    before = Column(Text, nullable=True)
    after = Column(Text, nullable=True)


class Property(Base):
    __tablename__ = "properties"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    address = Column(String, nullable=True)
    city = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    owner = orm_relationship("Owner", back_populates="properties")
    rooms = orm_relationship("Room", back_populates="property", cascade="all, delete-orphan")


class Room(Base):
    __tablename__ = "rooms"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id", ondelete="CASCADE"), nullable=False)
    room_number = Column(String, nullable=False)
    room_type = Column(String, nullable=True)
    deposit_amount = Column(Numeric(10, 2), nullable=False, default=0)
    status = Column(String, nullable=False, default="available")  # available|occupied|maintenance
    created_at = Column(DateTime, default=utcnow, nullable=False)

    property = orm_relationship("Property", back_populates="rooms")


class Person(Base):
    __tablename__ = "people"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True, index=True)
    email = Column(String, nullable=True)
    is_verified = Column(Boolean, default=False, nullable=False)
    verified_at = Column(DateTime, nullable=True)
    is_blocked = Column(Boolean, default=False, nullable=False)
    blocked_at = Column(DateTime, nullable=True)
    blocked_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Tenant(Base):
    __tablename__ = "tenants"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id = Column(Integer, ForeignKey("people.id"), nullable=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    # Extra contact numbers as [{"number": "...", "label": "..."}]
    phone_numbers = Column(JSON, nullable=True, default=list)
    monthly_rent = Column(Numeric(10, 2), nullable=False, default=0)
    security_deposit = Column(Numeric(10, 2), nullable=False, default=0)
    check_in_date = Column(Date, nullable=False)
    check_out_date = Column(Date, nullable=True)
    status = Column(String, nullable=False, default="active")  # active|notice_period|checked_out
    notice_date = Column(Date, nullable=True)
    expected_exit_date = Column(Date, nullable=True)
    agreement_end_date = Column(Date, nullable=True)
    agreement_signed = Column(Boolean, default=False, nullable=False)
    police_verification_status = Column(String, nullable=False, default="pending")
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)

    person = orm_relationship("Person")
    property = orm_relationship("Property")
    room = orm_relationship("Room")
    stays = orm_relationship("TenantStay", back_populates="tenant", cascade="all, delete-orphan")


class TenantStay(Base):
    __tablename__ = "tenant_stays"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    stay_number = Column(Integer, nullable=False, default=1)
    join_date = Column(Date, nullable=False)
    exit_date = Column(Date, nullable=True)
    monthly_rent = Column(Numeric(10, 2), nullable=False, default=0)
    security_deposit = Column(Numeric(10, 2), nullable=True)
    status = Column(String, nullable=False, default="active")  # active|transferred|completed
    exit_reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    tenant = orm_relationship("Tenant", back_populates="stays")
    property = orm_relationship("Property")
    room = orm_relationship("Room")


class Charge(Base):
    __tablename__ = "charges"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    # Old values are loaded on change so the flush guard can compare them.
    amount = column_property(Column(Numeric(10, 2), nullable=False), active_history=True)
    paid_amount = Column(Numeric(10, 2), nullable=False, default=0)
    late_fee_applied = Column(Numeric(10, 2), nullable=False, default=0)
    due_date = Column(Date, nullable=False)
    status = column_property(
        Column(String, nullable=False, default="pending"), active_history=True
    )  # pending|partial|overdue|paid
    for_period = Column(String, nullable=True)
    charge_type = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    payments = orm_relationship("Payment", back_populates="charge")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    charge_id = Column(Integer, ForeignKey("charges.id"), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    payment_date = Column(Date, nullable=False)
    payment_method = Column(String, nullable=False, default="cash")  # cash|upi|bank_transfer|cheque|card
    for_period = Column(String, nullable=True)
    charge_type = Column(String, nullable=True)
    reference_number = Column(String, nullable=True)
    receipt_number = Column(String, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    charge = orm_relationship("Charge", back_populates="payments")


class Refund(Base):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    exit_clearance_id = Column(Integer, ForeignKey("exit_clearances.id"), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    status = Column(String, nullable=False, default="pending")  # pending|processing|completed|failed
    payment_mode = Column(String, nullable=True)
    refund_type = Column(String, nullable=True)
    reason = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    processed_at = Column(DateTime, nullable=True)


class Complaint(Base):
    __tablename__ = "complaints"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    title = Column(String, nullable=False)
    category = Column(String, nullable=True)
    priority = Column(String, nullable=False, default="medium")
    description = Column(Text, nullable=True)
    status = Column(String, nullable=False, default="open")  # open|acknowledged|in_progress|resolved|closed
    resolution_notes = Column(Text, nullable=True)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    resolved_at = Column(DateTime, nullable=True)


class RoomTransfer(Base):
    __tablename__ = "room_transfers"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    from_property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    to_property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    from_room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    to_room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    old_rent = Column(Numeric(10, 2), nullable=True)
    new_rent = Column(Numeric(10, 2), nullable=True)
    reason = Column(Text, nullable=True)
    transfer_date = Column(Date, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)

    from_property = orm_relationship("Property", foreign_keys=[from_property_id])
    to_property = orm_relationship("Property", foreign_keys=[to_property_id])
    from_room = orm_relationship("Room", foreign_keys=[from_room_id])
    to_room = orm_relationship("Room", foreign_keys=[to_room_id])


class VisitorContact(Base):
    __tablename__ = "visitor_contacts"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id = Column(Integer, ForeignKey("people.id"), nullable=True, index=True)
    name = Column(String, nullable=False)
    phone = Column(String, nullable=True)
    visit_count = Column(Integer, nullable=False, default=0)
    is_blocked = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class Visitor(Base):
    __tablename__ = "visitors"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="SET NULL"), nullable=True, index=True)
    visitor_contact_id = Column(Integer, ForeignKey("visitor_contacts.id"), nullable=True)
    visitor_name = Column(String, nullable=False)
    visitor_phone = Column(String, nullable=True)
    relation = Column(String, nullable=True)
    purpose = Column(String, nullable=True)
    is_overnight = Column(Boolean, default=False, nullable=False)
    check_in_time = Column(DateTime, default=utcnow, nullable=False)
    check_out_time = Column(DateTime, nullable=True)

    property = orm_relationship("Property")
    tenant = orm_relationship("Tenant")


class StaffMember(Base):
    __tablename__ = "staff_members"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    person_id = Column(Integer, ForeignKey("people.id"), nullable=True, index=True)
    name = Column(String, nullable=False)
    role = Column(String, nullable=True)
    is_active = Column(Boolean, default=True, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)


class ExitClearance(Base):
    __tablename__ = "exit_clearances"

    id = Column(Integer, primary_key=True, index=True)
    owner_id = Column(Integer, ForeignKey("owners.id", ondelete="CASCADE"), nullable=False, index=True)
    tenant_id = Column(Integer, ForeignKey("tenants.id", ondelete="CASCADE"), nullable=False, index=True)
    property_id = Column(Integer, ForeignKey("properties.id"), nullable=False)
    room_id = Column(Integer, ForeignKey("rooms.id"), nullable=True)
    notice_given_date = Column(Date, nullable=True)
    expected_exit_date = Column(Date, nullable=False)
    actual_exit_date = Column(Date, nullable=True)
    total_dues = Column(Numeric(10, 2), nullable=False, default=0)
    total_refundable = Column(Numeric(10, 2), nullable=False, default=0)
    # Ordered list of {"reason": str, "amount": "123.00"}
    deductions = Column(JSON, nullable=False, default=list)
    final_amount = Column(Numeric(10, 2), nullable=False, default=0)
    settlement_status = column_property(
        Column(String, nullable=False, default="initiated"), active_history=True
    )  # initiated|pending_payment|cleared
    room_inspection_done = Column(Boolean, default=False, nullable=False)
    room_condition_notes = Column(Text, nullable=True)
    key_returned = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=utcnow, nullable=False)
    updated_at = Column(DateTime, default=utcnow, onupdate=utcnow, nullable=False)
    completed_at = Column(DateTime, nullable=True)
    completed_by = Column(String, nullable=True)
    settlement_mode = Column(String, nullable=True)  # cash|bank_transfer|upi|adjustment
    settlement_reference = Column(String, nullable=True)
    final_notes = Column(Text, nullable=True)

    tenant = orm_relationship("Tenant")
    property = orm_relationship("Property")
    room = orm_relationship("Room")


# --- Data-layer guards ---
# Client paths may bypass the service layer, so terminal and immutable states are
# checked again for every flush.


def _previous_value(obj, attribute: str):
    history = inspect(obj).attrs[attribute].history
    if history.deleted:
        return history.deleted[0]
    if history.unchanged:
        return history.unchanged[0]
    return getattr(obj, attribute)


def _changed_attributes(obj) -> list[str]:
    state = inspect(obj)
    return [attr.key for attr in state.attrs if attr.history.has_changes()]


def _guard_exit_clearance(obj: ExitClearance) -> None:
    changed = _changed_attributes(obj)
    if not changed:
        return
    previous_status = _previous_value(obj, "settlement_status")
    if previous_status == SETTLEMENT_CLEARED:
        raise ClearanceLockedError(
            "Exit clearance is cleared and can no longer be modified.",
            clearance_id=obj.id,
            attempted_fields=sorted(changed),
        )
    if "settlement_status" in changed and obj.settlement_status != previous_status:
        allowed = SETTLEMENT_TRANSITIONS.get(previous_status, set())
        if obj.settlement_status not in allowed:
            raise ValidationError(
                f"Cannot move settlement from {previous_status} to {obj.settlement_status}.",
                clearance_id=obj.id,
            )
        if obj.settlement_status == SETTLEMENT_CLEARED and not (obj.room_inspection_done and obj.key_returned):
            raise ValidationError(
                "Room inspection and key return are required before clearing.",
                clearance_id=obj.id,
            )


def _guard_charge(obj: Charge) -> None:
    changed = _changed_attributes(obj)
    if "amount" in changed:
        raise ImmutableRecordError("Charge amount cannot change once created.", charge_id=obj.id)
    if "status" in changed:
        previous_status = _previous_value(obj, "status")
        if obj.status != previous_status and obj.status not in CHARGE_TRANSITIONS.get(previous_status, set()):
            raise ImmutableRecordError(
                f"Charge status cannot move from {previous_status} to {obj.status}.",
                charge_id=obj.id,
            )


def _guard_payment(obj: Payment) -> None:
    if _changed_attributes(obj):
        raise ImmutableRecordError("Payments are immutable; record a correcting payment instead.", payment_id=obj.id)


@event.listens_for(Session, "before_flush")
def enforce_record_guards(session, flush_context, instances) -> None:
    for obj in list(session.dirty):
        if isinstance(obj, ExitClearance):
            _guard_exit_clearance(obj)
        elif isinstance(obj, Charge):
            _guard_charge(obj)
        elif isinstance(obj, Payment):
            _guard_payment(obj)
