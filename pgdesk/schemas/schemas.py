from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..services.timeline import AmountType, EventCategory, EventType


class DeductionCreate(BaseModel):
    # Left optional so missing values reach the settlement rules as a domain error.
    reason: Optional[str] = None
    amount: Optional[Decimal] = None


class DeductionRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    reason: str
    amount: Decimal


class ExitClearanceCreate(BaseModel):
    tenant_id: int
    expected_exit_date: date
    notice_given_date: Optional[date] = None


class ExitClearanceUpdate(BaseModel):
    notice_given_date: Optional[date] = None
    expected_exit_date: Optional[date] = None
    actual_exit_date: Optional[date] = None
    room_inspection_done: Optional[bool] = None
    room_condition_notes: Optional[str] = None
    key_returned: Optional[bool] = None
    deductions: Optional[List[DeductionCreate]] = None


class ExitClearanceComplete(BaseModel):
    actual_exit_date: Optional[date] = None
    settlement_mode: Optional[str] = None
    settlement_reference: Optional[str] = None
    final_notes: Optional[str] = None


class SettlementSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_dues: Decimal
    total_refundable: Decimal
    total_deductions: Decimal
    final_amount: Decimal
    refund_due: bool
    refund_amount: Decimal
    amount_payable: Decimal


class ExitClearanceRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    tenant_id: int
    property_id: int
    room_id: Optional[int] = None
    tenant_name: Optional[str] = None
    property_name: Optional[str] = None
    room_number: Optional[str] = None
    notice_given_date: Optional[date] = None
    expected_exit_date: date
    actual_exit_date: Optional[date] = None
    total_dues: Decimal
    total_refundable: Decimal
    deductions: List[DeductionRead] = []
    final_amount: Decimal
    settlement_status: Literal["initiated", "pending_payment", "cleared"]
    room_inspection_done: bool
    room_condition_notes: Optional[str] = None
    key_returned: bool
    created_at: datetime
    updated_at: datetime
    completed_at: Optional[datetime] = None
    completed_by: Optional[str] = None
    settlement_mode: Optional[str] = None
    settlement_reference: Optional[str] = None
    final_notes: Optional[str] = None
    settlement: SettlementSummaryRead
    can_complete: bool
    days_stayed: Optional[int] = None


class ReconcileRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    clearance_id: int
    applied_steps: List[str]


# --- Journey ---


class JourneyEventRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    category: EventCategory
    type: EventType
    timestamp: datetime
    title: str
    description: str = ""
    amount: Optional[Decimal] = None
    amount_type: Optional[AmountType] = None
    status: Optional[str] = None
    metadata: Dict[str, Any] = {}
    action_url: Optional[str] = None
    source_table: Optional[str] = None
    source_id: Optional[int] = None


class JourneySummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_stays: int
    total_visits: int
    is_current_tenant: bool
    is_staff: bool


class JourneyAnalyticsRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_stay_days: int
    current_stay_days: int
    total_stays: int
    average_stay_days: int
    total_revenue: Decimal
    total_payments: int
    total_bills_generated: int
    total_bills_paid: int
    bills_paid_on_time: int
    bills_paid_late: int
    average_days_to_pay: int
    total_complaints: int
    complaints_resolved: int
    total_room_transfers: int
    total_visitors: int
    police_verification_status: str
    agreement_status: str


class ChargeTypeBreakdownRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    charge_type: str
    total_billed: Decimal
    total_paid: Decimal
    balance: Decimal


class FinancialSummaryRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    security_deposit: Decimal
    current_monthly_rent: Decimal
    total_billed: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    total_overdue: Decimal
    total_refunds_processed: Decimal
    pending_refunds: Decimal
    breakdown: List[ChargeTypeBreakdownRead] = []
    next_due_date: Optional[date] = None
    next_due_amount: Optional[Decimal] = None


class JourneyScoresRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    payment_reliability_index: int = Field(ge=0, le=100)
    payment_reliability_band: str
    churn_risk_score: int = Field(ge=0, le=100)
    churn_risk_band: str
    satisfaction: Literal["high", "medium", "low"]
    reliability_factors: List[str] = []
    churn_factors: List[str] = []
    satisfaction_factors: List[str] = []
    confidence: str
    data_points_analyzed: int
    charge_outcomes: Dict[str, int] = {}


class AlertRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    type: str
    severity: str
    title: str
    description: str
    action_url: Optional[str] = None


class RecommendationRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    type: str
    priority: str
    message: str
    action_url: Optional[str] = None


class LinkedVisitorRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    visitor_id: int
    visitor_name: str
    visit_date: Optional[datetime] = None
    relationship: str


class PreTenantVisitRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    visitor_id: int
    visited_tenant_name: str
    visit_date: Optional[datetime] = None
    days_before_joining: int
    property_name: Optional[str] = None


class TenantJourneyRead(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    tenant_id: int
    tenant_name: str
    tenant_status: str
    as_of: date
    generated_at: datetime
    events: List[JourneyEventRead]
    total_events: int
    offset: int
    limit: Optional[int] = None
    has_more: bool
    category_counts: Dict[str, int]
    summary: JourneySummaryRead
    analytics: JourneyAnalyticsRead
    financial: FinancialSummaryRead
    scores: JourneyScoresRead
    alerts: List[AlertRead] = []
    recommendations: List[RecommendationRead] = []
    linked_visitors: List[LinkedVisitorRead] = []
    pre_tenant_visits: List[PreTenantVisitRead] = []
