"""Derived tenant scores: payment reliability, churn risk and satisfaction.

Scores are recomputed from timeline events on every request and never stored.
``HeuristicScoringPolicy`` is the default; anything implementing ``ScoringPolicy``
can be injected instead.
"""
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, fields, replace
from datetime import date, timedelta
from typing import Any, Dict, List, Mapping, Optional, Sequence

from ..constants import (
    CHURN_BANDS,
    RELIABILITY_BANDS,
    RESOLVED_COMPLAINT_STATUSES,
    TENANT_CHECKED_OUT,
    TENANT_NOTICE_PERIOD,
)
from ..core.errors import ValidationError
from .timeline import EventType, JourneyEvent, as_timestamp

logger = logging.getLogger(__name__)

ON_TIME = "on_time"
LATE = "late"
OVERDUE = "overdue"
NOT_DUE = "not_due"


@dataclass(frozen=True)
class ScoringWeights:
    base_churn: int = 10
    consecutive_late_weight: int = 15
    consecutive_late_cap: int = 45
    unresolved_complaint_weight: int = 12
    unresolved_complaint_cap: int = 36
    recent_complaint_weight: int = 5
    recent_complaint_cap: int = 15
    recent_complaint_window_days: int = 90
    notice_weight: int = 30
    exit_proximity_weight: int = 20
    exit_proximity_days: int = 30
    agreement_expiry_weight: int = 15
    agreement_expiry_days: int = 30
    long_stay_days: int = 180
    low_unresolved_threshold: int = 2
    high_max_unresolved: int = 0
    no_history_reliability: int = 100

    @classmethod
    def from_overrides(cls, overrides: Optional[Mapping[str, Any]]) -> "ScoringWeights":
        if not overrides:
            return cls()
        known = {f.name for f in fields(cls)}
        unknown = sorted(set(overrides) - known)
        if unknown:
            raise ValidationError(f"Unknown scoring weights: {', '.join(unknown)}", fields=unknown)
        return replace(cls(), **{key: int(value) for key, value in overrides.items()})


@dataclass(frozen=True)
class ScoringContext:
    as_of: date
    tenant_status: Optional[str] = None
    notice_given_date: Optional[date] = None
    expected_exit_date: Optional[date] = None
    agreement_end_date: Optional[date] = None


@dataclass(frozen=True)
class ChargeOutcome:
    charge_id: Any
    due_date: Optional[date]
    outcome: str
    paid_on: Optional[date] = None
    billed_on: Optional[date] = None


@dataclass(frozen=True)
class JourneyScores:
    payment_reliability_index: int
    payment_reliability_band: str
    churn_risk_score: int
    churn_risk_band: str
    satisfaction: str
    reliability_factors: List[str] = field(default_factory=list)
    churn_factors: List[str] = field(default_factory=list)
    satisfaction_factors: List[str] = field(default_factory=list)
    confidence: str = "low"
    data_points_analyzed: int = 0
    charge_outcomes: Dict[str, int] = field(default_factory=dict)


class ScoringPolicy(ABC):
    @abstractmethod
    def score(self, events: Sequence[JourneyEvent], context: ScoringContext) -> JourneyScores:
        raise NotImplementedError


def _date(value: Any) -> Optional[date]:
    stamp = as_timestamp(value)
    return stamp.date() if stamp is not None else None


def _clamp(value: float, low: int = 0, high: int = 100) -> int:
    return int(max(low, min(high, round(value))))


def reliability_band(score: int) -> str:
    for floor, label in RELIABILITY_BANDS:
        if score >= floor:
            return label
    return RELIABILITY_BANDS[-1][1]


def churn_band(score: int) -> str:
    for ceiling, label in CHURN_BANDS:
        if score <= ceiling:
            return label
    return CHURN_BANDS[-1][1]


def classify_charges(events: Sequence[JourneyEvent], as_of: date) -> List[ChargeOutcome]:
    """Outcome per bill, oldest due date first.

    Paid bills are matched to the payment linked by charge id, then one for the same
    period, then the earliest unused payment on or after the bill date. A paid bill
    with no matching payment counts as on time.
    """
    bills = sorted(
        (e for e in events if e.type == EventType.BILL_GENERATED),
        key=lambda e: (_date(e.metadata.get("due_date")) or e.timestamp.date(), e.id),
    )
    payments = sorted(
        (e for e in events if e.type == EventType.PAYMENT_RECEIVED),
        key=lambda e: (_date(e.metadata.get("payment_date")) or e.timestamp.date(), e.id),
    )
    used = set()

    def match_payment(bill: JourneyEvent) -> Optional[JourneyEvent]:
        charge_id = bill.metadata.get("charge_id")
        period = bill.metadata.get("for_period")
        candidates = [p for p in payments if p.id not in used]
        for predicate in (
            lambda p: charge_id is not None and p.metadata.get("charge_id") == charge_id,
            lambda p: period is not None and p.metadata.get("charge_id") is None and p.metadata.get("for_period") == period,
            lambda p: p.metadata.get("charge_id") is None and p.timestamp.date() >= bill.timestamp.date(),
        ):
            for payment in candidates:
                if predicate(payment):
                    return payment
        return None

    outcomes = []
    for bill in bills:
        due = _date(bill.metadata.get("due_date"))
        status = bill.metadata.get("status") or bill.status
        billed_on = bill.timestamp.date()
        charge_id = bill.metadata.get("charge_id")
        if status == "paid":
            payment = match_payment(bill)
            if payment is None:
                outcomes.append(ChargeOutcome(charge_id, due, ON_TIME, billed_on=billed_on))
                continue
            used.add(payment.id)
            paid_on = payment.timestamp.date()
            outcome = ON_TIME if due is None or paid_on <= due else LATE
            outcomes.append(ChargeOutcome(charge_id, due, outcome, paid_on, billed_on))
        elif status == "overdue" or (due is not None and due < as_of):
            outcomes.append(ChargeOutcome(charge_id, due, OVERDUE, billed_on=billed_on))
        else:
            outcomes.append(ChargeOutcome(charge_id, due, NOT_DUE, billed_on=billed_on))
    return outcomes


def _trailing_late_streak(outcomes: Sequence[ChargeOutcome]) -> int:
    streak = 0
    for outcome in reversed([o for o in outcomes if o.outcome != NOT_DUE]):
        if outcome.outcome in (LATE, OVERDUE):
            streak += 1
        else:
            break
    return streak


def _current_stay_days(events: Sequence[JourneyEvent], as_of: date) -> int:
    joins = [
        e
        for e in events
        if e.type in (EventType.CHECK_IN, EventType.REJOINED) and e.metadata.get("status") == "active"
    ]
    if not joins:
        return 0
    latest = max(joins, key=lambda e: e.timestamp)
    return max((as_of - latest.timestamp.date()).days, 0)


class HeuristicScoringPolicy(ScoringPolicy):
    def __init__(self, weights: Optional[ScoringWeights] = None) -> None:
        self.weights = weights or ScoringWeights()

    def score(self, events: Sequence[JourneyEvent], context: ScoringContext) -> JourneyScores:
        w = self.weights
        as_of = context.as_of
        outcomes = classify_charges(events, as_of)
        due = [o for o in outcomes if o.outcome != NOT_DUE]
        on_time = sum(1 for o in due if o.outcome == ON_TIME)
        counts = {label: sum(1 for o in outcomes if o.outcome == label) for label in (ON_TIME, LATE, OVERDUE, NOT_DUE)}

        # --- payment reliability ---
        reliability_factors = []
        if due:
            reliability = _clamp(100 * on_time / len(due))
            reliability_factors.append(f"{on_time} of {len(due)} due bills paid on time")
        else:
            reliability = _clamp(w.no_history_reliability)
            reliability_factors.append("No bills due yet")

        # --- churn risk ---
        churn_factors = []
        churn = w.base_churn
        streak = _trailing_late_streak(outcomes)
        if streak:
            churn += min(streak * w.consecutive_late_weight, w.consecutive_late_cap)
            churn_factors.append(f"{streak} consecutive late or overdue bills")

        complaints = [e for e in events if e.type == EventType.COMPLAINT_RAISED]
        unresolved = [c for c in complaints if c.status not in RESOLVED_COMPLAINT_STATUSES]
        if unresolved:
            churn += min(len(unresolved) * w.unresolved_complaint_weight, w.unresolved_complaint_cap)
            churn_factors.append(f"{len(unresolved)} unresolved complaints")

        window_start = as_of - timedelta(days=w.recent_complaint_window_days)
        recent = [c for c in complaints if window_start <= c.timestamp.date() <= as_of]
        if recent:
            churn += min(len(recent) * w.recent_complaint_weight, w.recent_complaint_cap)
            churn_factors.append(f"{len(recent)} complaints in the last {w.recent_complaint_window_days} days")

        # notice_date outlives checkout, only the live status counts
        if context.tenant_status == TENANT_NOTICE_PERIOD:
            churn += w.notice_weight
            churn_factors.append("Currently on notice period")

        leaving = context.tenant_status != TENANT_CHECKED_OUT and context.expected_exit_date
        if leaving and 0 <= (context.expected_exit_date - as_of).days <= w.exit_proximity_days:
            churn += w.exit_proximity_weight
            churn_factors.append("Expected exit within the next month")

        if context.agreement_end_date and 0 <= (context.agreement_end_date - as_of).days <= w.agreement_expiry_days:
            churn += w.agreement_expiry_weight
            churn_factors.append("Agreement ends soon")

        churn = _clamp(churn)

        # --- satisfaction ---
        satisfaction_factors = []
        stay_days = _current_stay_days(events, as_of)
        if len(unresolved) >= w.low_unresolved_threshold:
            satisfaction = "low"
            satisfaction_factors.append("Pending complaints")
        elif len(unresolved) <= w.high_max_unresolved and stay_days >= w.long_stay_days:
            satisfaction = "high"
            satisfaction_factors.append("No complaints pending" if complaints else "No complaints filed")
            satisfaction_factors.append("Long-term resident")
        else:
            satisfaction = "medium"
            if unresolved:
                satisfaction_factors.append("Pending complaints")
            if stay_days < w.long_stay_days:
                satisfaction_factors.append("Stay shorter than six months")

        if len(due) >= 3:
            confidence = "high"
        elif due:
            confidence = "medium"
        else:
            confidence = "low"

        logger.debug(
            "Scored journey",
            extra={
                "due_bills": len(due),
                "on_time": on_time,
                "late_streak": streak,
                "unresolved_complaints": len(unresolved),
                "stay_days": stay_days,
            },
        )

        return JourneyScores(
            payment_reliability_index=reliability,
            payment_reliability_band=reliability_band(reliability),
            churn_risk_score=churn,
            churn_risk_band=churn_band(churn),
            satisfaction=satisfaction,
            reliability_factors=reliability_factors,
            churn_factors=churn_factors,
            satisfaction_factors=satisfaction_factors,
            confidence=confidence,
            data_points_analyzed=len(due) + len(complaints) + counts[NOT_DUE],
            charge_outcomes=counts,
        )


def default_policy(overrides: Optional[Mapping[str, Any]] = None) -> ScoringPolicy:
    return HeuristicScoringPolicy(ScoringWeights.from_overrides(overrides))
