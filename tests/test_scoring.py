from datetime import date, datetime
from decimal import Decimal

import pytest

from pgdesk.core.errors import ValidationError
from pgdesk.services.scoring import (
    LATE,
    NOT_DUE,
    ON_TIME,
    OVERDUE,
    HeuristicScoringPolicy,
    ScoringContext,
    ScoringWeights,
    churn_band,
    classify_charges,
    reliability_band,
)
from pgdesk.services.timeline import JourneySources, build_timeline


def _stay(join_date=date(2024, 1, 1)):
    return {
        "id": 1,
        "tenant_id": 1,
        "stay_number": 1,
        "join_date": join_date,
        "status": "active",
        "monthly_rent": Decimal("8000"),
    }


def _bill(charge_id, due_date, status, for_period=None):
    return {
        "id": charge_id,
        "amount": Decimal("8000"),
        "paid_amount": Decimal("8000") if status == "paid" else Decimal("0"),
        "due_date": due_date,
        "status": status,
        "for_period": for_period,
        "created_at": datetime(due_date.year, due_date.month, 1),
    }


def _payment(payment_id, paid_on, charge_id=None, for_period=None):
    return {
        "id": payment_id,
        "amount": Decimal("8000"),
        "payment_date": paid_on,
        "payment_method": "upi",
        "charge_id": charge_id,
        "for_period": for_period,
    }


def test_new_tenant_with_clean_history_scores_excellent_and_high():
    sources = JourneySources(
        tenant={"id": 1},
        stays=[_stay()],
        charges=[_bill(1, date(2024, 2, 5), "paid"), _bill(2, date(2024, 3, 5), "paid")],
        payments=[_payment(1, date(2024, 2, 3), charge_id=1), _payment(2, date(2024, 3, 4), charge_id=2)],
    )
    scores = HeuristicScoringPolicy().score(build_timeline(sources), ScoringContext(as_of=date(2024, 7, 1)))
    assert scores.payment_reliability_index >= 90
    assert scores.payment_reliability_band == "excellent"
    assert scores.satisfaction == "high"
    assert scores.churn_risk_band == "low"


def test_no_due_history_uses_default_reliability():
    sources = JourneySources(tenant={"id": 1}, stays=[_stay()])
    scores = HeuristicScoringPolicy().score(build_timeline(sources), ScoringContext(as_of=date(2024, 7, 1)))
    assert scores.payment_reliability_index == 100
    assert scores.confidence == "low"


def test_overdue_streak_and_unresolved_complaints_mean_high_churn():
    sources = JourneySources(
        tenant={"id": 1},
        stays=[_stay()],
        charges=[
            _bill(1, date(2024, 2, 5), "overdue"),
            _bill(2, date(2024, 3, 5), "overdue"),
            _bill(3, date(2024, 4, 5), "overdue"),
        ],
        complaints=[
            {"id": 1, "title": "Noise", "status": "open", "created_at": datetime(2024, 1, 10)},
            {"id": 2, "title": "Wifi", "status": "in_progress", "created_at": datetime(2024, 1, 20)},
        ],
    )
    scores = HeuristicScoringPolicy().score(build_timeline(sources), ScoringContext(as_of=date(2024, 7, 1)))
    assert scores.churn_risk_score >= 61
    assert scores.churn_risk_band == "high"
    assert scores.satisfaction == "low"
    assert scores.payment_reliability_band == "poor"
    assert any("consecutive" in factor for factor in scores.churn_factors)


def test_classify_matches_by_charge_then_period_then_date():
    sources = JourneySources(
        tenant={"id": 1},
        charges=[
            _bill(1, date(2024, 2, 5), "paid", for_period="2024-02"),
            _bill(2, date(2024, 3, 5), "paid", for_period="2024-03"),
            _bill(3, date(2024, 4, 5), "paid"),
            _bill(4, date(2024, 5, 5), "pending"),
            _bill(5, date(2024, 8, 5), "pending"),
        ],
        payments=[
            _payment(1, date(2024, 2, 10), charge_id=1),
            _payment(2, date(2024, 3, 2), for_period="2024-03"),
            _payment(3, date(2024, 4, 20)),
        ],
    )
    outcomes = classify_charges(build_timeline(sources), as_of=date(2024, 7, 1))
    assert [o.outcome for o in outcomes] == [LATE, ON_TIME, LATE, OVERDUE, NOT_DUE]
    assert outcomes[0].paid_on == date(2024, 2, 10)
    assert outcomes[2].paid_on == date(2024, 4, 20)


def test_notice_and_exit_proximity_raise_churn():
    sources = JourneySources(tenant={"id": 1}, stays=[_stay()])
    events = build_timeline(sources)
    calm = HeuristicScoringPolicy().score(events, ScoringContext(as_of=date(2024, 7, 1)))
    leaving = HeuristicScoringPolicy().score(
        events,
        ScoringContext(
            as_of=date(2024, 7, 1),
            tenant_status="notice_period",
            expected_exit_date=date(2024, 7, 20),
        ),
    )
    assert leaving.churn_risk_score == calm.churn_risk_score + 30 + 20
    assert leaving.churn_risk_band == "medium"


def test_short_stay_is_medium_satisfaction():
    sources = JourneySources(tenant={"id": 1}, stays=[_stay(join_date=date(2024, 6, 1))])
    scores = HeuristicScoringPolicy().score(build_timeline(sources), ScoringContext(as_of=date(2024, 7, 1)))
    assert scores.satisfaction == "medium"


def test_weights_can_be_overridden():
    weights = ScoringWeights.from_overrides({"base_churn": 40, "long_stay_days": 10})
    assert weights.base_churn == 40
    assert weights.long_stay_days == 10
    sources = JourneySources(tenant={"id": 1}, stays=[_stay(join_date=date(2024, 6, 1))])
    scores = HeuristicScoringPolicy(weights).score(build_timeline(sources), ScoringContext(as_of=date(2024, 7, 1)))
    assert scores.churn_risk_score == 40
    assert scores.satisfaction == "high"

    with pytest.raises(ValidationError):
        ScoringWeights.from_overrides({"mystery": 1})


@pytest.mark.parametrize("score, band", [(100, "excellent"), (90, "excellent"), (89, "good"), (70, "good"), (50, "fair"), (49, "poor")])
def test_reliability_bands(score, band):
    assert reliability_band(score) == band


@pytest.mark.parametrize("score, band", [(0, "low"), (30, "low"), (31, "medium"), (60, "medium"), (61, "high"), (100, "high")])
def test_churn_bands(score, band):
    assert churn_band(score) == band


def test_checked_out_tenant_is_not_scored_as_on_notice():
    sources = JourneySources(tenant={"id": 1}, stays=[_stay()])
    events = build_timeline(sources)
    calm = HeuristicScoringPolicy().score(events, ScoringContext(as_of=date(2024, 7, 1)))
    gone = HeuristicScoringPolicy().score(
        events,
        ScoringContext(
            as_of=date(2024, 7, 1),
            tenant_status="checked_out",
            notice_given_date=date(2024, 6, 1),
            expected_exit_date=date(2024, 7, 10),
        ),
    )
    assert gone.churn_risk_score == calm.churn_risk_score
    assert not any("notice" in factor for factor in gone.churn_factors)
