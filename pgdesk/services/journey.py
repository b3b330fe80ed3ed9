"""Tenant journey aggregates built on top of the timeline and scoring modules.

``assemble_journey`` is pure: the caller supplies every fetched collection in a
``JourneySources`` and the reference date in the ``ScoringContext``.
"""
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Set

from ..constants import (
    COMPLETED_REFUND_STATUSES,
    OUTSTANDING_CHARGE_STATUSES,
    PENDING_REFUND_STATUSES,
    RESOLVED_COMPLAINT_STATUSES,
    STAY_ACTIVE,
    TENANT_ACTIVE,
    TWO_PLACES,
)
from ..utils.formatting import format_currency
from .scoring import LATE, ON_TIME, HeuristicScoringPolicy, JourneyScores, ScoringContext, ScoringPolicy, classify_charges
from .settlement import outstanding_dues
from .timeline import (
    JourneyEvent,
    JourneySources,
    as_timestamp,
    build_timeline,
    category_counts,
    filter_events,
    paginate,
)


@dataclass(frozen=True)
class JourneySummary:
    total_stays: int
    total_visits: int
    is_current_tenant: bool
    is_staff: bool


@dataclass(frozen=True)
class JourneyAnalytics:
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


@dataclass(frozen=True)
class ChargeTypeBreakdown:
    charge_type: str
    total_billed: Decimal
    total_paid: Decimal
    balance: Decimal


@dataclass(frozen=True)
class FinancialSummary:
    security_deposit: Decimal
    current_monthly_rent: Decimal
    total_billed: Decimal
    total_paid: Decimal
    total_outstanding: Decimal
    total_overdue: Decimal
    total_refunds_processed: Decimal
    pending_refunds: Decimal
    breakdown: List[ChargeTypeBreakdown] = field(default_factory=list)
    next_due_date: Optional[date] = None
    next_due_amount: Optional[Decimal] = None


@dataclass(frozen=True)
class Alert:
    id: str
    type: str
    severity: str
    title: str
    description: str
    action_url: Optional[str] = None


@dataclass(frozen=True)
class Recommendation:
    type: str
    priority: str
    message: str
    action_url: Optional[str] = None


@dataclass(frozen=True)
class LinkedVisitor:
    visitor_id: int
    visitor_name: str
    visit_date: Optional[datetime]
    relationship: str


@dataclass(frozen=True)
class PreTenantVisit:
    visitor_id: int
    visited_tenant_name: str
    visit_date: Optional[datetime]
    days_before_joining: int
    property_name: Optional[str] = None


@dataclass(frozen=True)
class JourneyFilters:
    categories: Optional[Sequence[str]] = None
    date_from: Optional[date] = None
    date_to: Optional[date] = None
    search: Optional[str] = None


@dataclass(frozen=True)
class TenantJourney:
    tenant_id: int
    tenant_name: str
    tenant_status: str
    as_of: date
    generated_at: datetime
    events: List[JourneyEvent]
    total_events: int
    offset: int
    limit: Optional[int]
    has_more: bool
    category_counts: Dict[str, int]
    summary: JourneySummary
    analytics: JourneyAnalytics
    financial: FinancialSummary
    scores: JourneyScores
    alerts: List[Alert]
    recommendations: List[Recommendation]
    linked_visitors: List[LinkedVisitor]
    pre_tenant_visits: List[PreTenantVisit]


def _get(row: Any, name: str, default: Any = None) -> Any:
    if row is None:
        return default
    value = row.get(name, default) if isinstance(row, Mapping) else getattr(row, name, default)
    return default if value is None else value


def _money(value: Any) -> Decimal:
    amount = value if isinstance(value, Decimal) else Decimal(str(value or 0))
    return amount.quantize(TWO_PLACES)


def _as_date(value: Any) -> Optional[date]:
    stamp = as_timestamp(value)
    return stamp.date() if stamp is not None else None


def normalize_phone(phone: Optional[str]) -> str:
    """Reduce a phone number to its 10 digit local form for matching."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 12 and digits.startswith("91"):
        digits = digits[2:]
    elif len(digits) == 11 and digits.startswith("0"):
        digits = digits[1:]
    return digits[-10:]


def summarize(sources: JourneySources) -> JourneySummary:
    return JourneySummary(
        total_stays=len(sources.stays),
        total_visits=int(_get(sources.visitor_contact, "visit_count", 0)),
        is_current_tenant=any(_get(stay, "status") == STAY_ACTIVE for stay in sources.stays),
        is_staff=any(_get(member, "is_active") for member in sources.staff),
    )


def _stay_days(stay: Mapping[str, Any], as_of: date) -> int:
    start = _as_date(_get(stay, "join_date"))
    end = _as_date(_get(stay, "exit_date")) or as_of
    if start is None:
        return 0
    return max((end - start).days, 0)


def compute_analytics(sources: JourneySources, events: Sequence[JourneyEvent], as_of: date) -> JourneyAnalytics:
    durations = [_stay_days(stay, as_of) for stay in sources.stays]
    active = [stay for stay in sources.stays if _get(stay, "status") == STAY_ACTIVE]
    outcomes = classify_charges(events, as_of)
    paid = [o for o in outcomes if o.paid_on is not None or o.outcome in (ON_TIME, LATE)]
    days_to_pay = [
        (o.paid_on - o.billed_on).days for o in paid if o.paid_on is not None and o.billed_on is not None
    ]
    tenant = sources.tenant
    return JourneyAnalytics(
        total_stay_days=sum(durations),
        current_stay_days=_stay_days(active[0], as_of) if active else 0,
        total_stays=len(sources.stays),
        average_stay_days=round(sum(durations) / len(durations)) if durations else 0,
        total_revenue=_money(sum((_money(_get(p, "amount")) for p in sources.payments), Decimal("0"))),
        total_payments=len(sources.payments),
        total_bills_generated=len(sources.charges),
        total_bills_paid=len(paid),
        bills_paid_on_time=sum(1 for o in paid if o.outcome == ON_TIME),
        bills_paid_late=sum(1 for o in paid if o.outcome == LATE),
        average_days_to_pay=round(sum(days_to_pay) / len(days_to_pay)) if days_to_pay else 0,
        total_complaints=len(sources.complaints),
        complaints_resolved=sum(1 for c in sources.complaints if _get(c, "status") in RESOLVED_COMPLAINT_STATUSES),
        total_room_transfers=len(sources.transfers),
        total_visitors=len(sources.visitors),
        police_verification_status=_get(tenant, "police_verification_status", "pending"),
        agreement_status="signed" if _get(tenant, "agreement_signed") else "pending",
    )


def _balance(charge: Mapping[str, Any]) -> Decimal:
    return _money(_get(charge, "amount")) - _money(_get(charge, "paid_amount"))


def compute_financial_summary(sources: JourneySources, as_of: date) -> FinancialSummary:
    charges = sources.charges
    overdue = [
        c
        for c in charges
        if _get(c, "status") == "overdue"
        or (_get(c, "status") in OUTSTANDING_CHARGE_STATUSES and (_as_date(_get(c, "due_date")) or as_of) < as_of)
    ]

    by_type: Dict[str, List[Decimal]] = {}
    for charge in charges:
        totals = by_type.setdefault(_get(charge, "charge_type", "other"), [Decimal("0"), Decimal("0")])
        totals[0] += _money(_get(charge, "amount"))
        totals[1] += _money(_get(charge, "paid_amount"))
    breakdown = [
        ChargeTypeBreakdown(charge_type=name, total_billed=billed, total_paid=paid_total, balance=billed - paid_total)
        for name, (billed, paid_total) in sorted(by_type.items())
    ]

    upcoming = sorted(
        (c for c in charges if _get(c, "status") in ("pending", "partial")),
        key=lambda c: (_as_date(_get(c, "due_date")) or as_of, _get(c, "id", 0)),
    )
    next_bill = upcoming[0] if upcoming else None

    def refund_total(statuses) -> Decimal:
        return _money(sum((_money(_get(r, "amount")) for r in sources.refunds if _get(r, "status") in statuses), Decimal("0")))

    return FinancialSummary(
        security_deposit=_money(_get(sources.tenant, "security_deposit")),
        current_monthly_rent=_money(_get(sources.tenant, "monthly_rent")),
        total_billed=_money(sum((_money(_get(c, "amount")) for c in charges), Decimal("0"))),
        total_paid=_money(sum((_money(_get(p, "amount")) for p in sources.payments), Decimal("0"))),
        total_outstanding=outstanding_dues(charges),
        total_overdue=_money(sum((max(_balance(c), Decimal("0")) for c in overdue), Decimal("0"))),
        total_refunds_processed=refund_total(COMPLETED_REFUND_STATUSES),
        pending_refunds=refund_total(PENDING_REFUND_STATUSES),
        breakdown=breakdown,
        next_due_date=_as_date(_get(next_bill, "due_date")) if next_bill else None,
        next_due_amount=_balance(next_bill) if next_bill else None,
    )


def linked_visitors(visitors: Iterable[Mapping[str, Any]]) -> List[LinkedVisitor]:
    return [
        LinkedVisitor(
            visitor_id=visitor["id"],
            visitor_name=_get(visitor, "visitor_name", ""),
            visit_date=as_timestamp(_get(visitor, "check_in_time")),
            relationship=_get(visitor, "relation", "Not specified"),
        )
        for visitor in visitors
    ]


def tenant_phones(tenant: Mapping[str, Any]) -> Set[str]:
    """Normalized primary and extra phone numbers of a tenant."""
    numbers = [_get(tenant, "phone")]
    numbers.extend(_get(entry, "number") for entry in _get(tenant, "phone_numbers") or [])
    return {normalize_phone(number) for number in numbers if number} - {""}


def match_pre_tenant_visits(tenant: Mapping[str, Any], visits: Iterable[Mapping[str, Any]]) -> List[Mapping[str, Any]]:
    """Visits made from any of the tenant's phone numbers strictly before they checked in."""
    phones = tenant_phones(tenant)
    check_in = _as_date(_get(tenant, "check_in_date"))
    if not phones or check_in is None:
        return []
    matched = []
    for visit in visits:
        if normalize_phone(_get(visit, "visitor_phone")) not in phones:
            continue
        visited_on = _as_date(_get(visit, "check_in_time"))
        if visited_on is not None and visited_on < check_in:
            matched.append(visit)
    return matched


def describe_pre_tenant_visits(tenant: Mapping[str, Any], visits: Iterable[Mapping[str, Any]]) -> List[PreTenantVisit]:
    check_in = _as_date(_get(tenant, "check_in_date"))
    described = []
    for visit in visits:
        visited_at = as_timestamp(_get(visit, "check_in_time"))
        described.append(
            PreTenantVisit(
                visitor_id=visit["id"],
                visited_tenant_name=_get(_get(visit, "tenant"), "name", "Unknown"),
                visit_date=visited_at,
                days_before_joining=(check_in - visited_at.date()).days if check_in and visited_at else 0,
                property_name=_get(_get(visit, "property"), "name"),
            )
        )
    return described


def build_insights(
    tenant: Mapping[str, Any],
    analytics: JourneyAnalytics,
    financial: FinancialSummary,
    scores: JourneyScores,
):
    tenant_id = _get(tenant, "id")
    alerts: List[Alert] = []
    recommendations: List[Recommendation] = []

    if analytics.bills_paid_late >= 3:
        alerts.append(
            Alert(
                id="consecutive_late_payments",
                type="payment_delay",
                severity="high",
                title="Consecutive Late Payments",
                description=f"{analytics.bills_paid_late} bills were paid after due date",
            )
        )
    if financial.total_overdue > 0:
        severity = "high" if financial.total_overdue > 5000 else "medium"
        alerts.append(
            Alert(
                id="overdue_amount",
                type="overdue",
                severity=severity,
                title="Overdue Amount",
                description=f"{format_currency(financial.total_overdue)} is overdue",
                action_url=f"/payments/new?tenant={tenant_id}",
            )
        )
        recommendations.append(
            Recommendation(
                type="collection",
                priority=severity,
                message=f"Outstanding overdue: {format_currency(financial.total_overdue)}. Send payment reminder.",
                action_url=f"/payments/new?tenant={tenant_id}",
            )
        )
    if financial.security_deposit < financial.current_monthly_rent:
        alerts.append(
            Alert(
                id="low_deposit",
                type="deposit_low",
                severity="low",
                title="Security Deposit Below Rent",
                description=f"Deposit ({format_currency(financial.security_deposit)}) is less than monthly rent",
            )
        )

    if scores.churn_risk_band == "high" and _get(tenant, "status") == TENANT_ACTIVE:
        recommendations.append(
            Recommendation(
                type="retention",
                priority="high",
                message="High churn risk detected. Consider reaching out to understand concerns.",
            )
        )
    if analytics.police_verification_status == "pending":
        recommendations.append(
            Recommendation(
                type="verification",
                priority="medium",
                message="Police verification pending. Complete for compliance.",
                action_url=f"/tenants/{tenant_id}/edit",
            )
        )
    if analytics.agreement_status != "signed":
        recommendations.append(
            Recommendation(
                type="agreement",
                priority="medium",
                message="Rental agreement not signed. Get agreement signed for legal protection.",
            )
        )
    return alerts, recommendations


def assemble_journey(
    sources: JourneySources,
    context: ScoringContext,
    policy: Optional[ScoringPolicy] = None,
    filters: Optional[JourneyFilters] = None,
    offset: int = 0,
    limit: Optional[int] = None,
    generated_at: Optional[datetime] = None,
) -> TenantJourney:
    policy = policy or HeuristicScoringPolicy()
    filters = filters or JourneyFilters()
    events = build_timeline(sources)
    # scores and counts use the full history, filters only narrow the page
    scores = policy.score(events, context)
    visible = filter_events(events, filters.categories, filters.date_from, filters.date_to, filters.search)
    page = paginate(visible, offset, limit)
    analytics = compute_analytics(sources, events, context.as_of)
    financial = compute_financial_summary(sources, context.as_of)
    alerts, recommendations = build_insights(sources.tenant, analytics, financial, scores)

    return TenantJourney(
        tenant_id=sources.tenant["id"],
        tenant_name=_get(sources.tenant, "name", ""),
        tenant_status=_get(sources.tenant, "status", ""),
        as_of=context.as_of,
        generated_at=generated_at or datetime.now(timezone.utc),
        events=page.events,
        total_events=page.total,
        offset=page.offset,
        limit=page.limit,
        has_more=page.has_more,
        category_counts=category_counts(events),
        summary=summarize(sources),
        analytics=analytics,
        financial=financial,
        scores=scores,
        alerts=alerts,
        recommendations=recommendations,
        linked_visitors=linked_visitors(sources.visitors),
        pre_tenant_visits=describe_pre_tenant_visits(sources.tenant, sources.pre_tenant_visits),
    )
