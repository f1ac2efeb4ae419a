"""
Tests for category scoring, weighted fusion and the persisted fraud decision.
"""

from __future__ import annotations

from decimal import Decimal

import pytest

from backend_grantshield.analysis_engine.decision import (
    FraudDecisionEngine,
    assess,
    effective_weights,
    fuse,
    recommendation_from_score,
    risk_from_score,
)
from backend_grantshield.analysis_engine.duplicates import DuplicateReport
from backend_grantshield.analysis_engine.scorer import score_credit, score_fraud, score_identity
from backend_grantshield.core.exceptions import ApplicationNotFound
from backend_grantshield.screening.models import (
    ApplicationStatus,
    CategoryScore,
    CheckResult,
    CheckStatus,
    CheckType,
    Recommendation,
    RiskLevel,
    ScoreCategory,
    Severity,
)


def _duplicates(raw: int) -> DuplicateReport:
    report = DuplicateReport()
    if raw:
        report.score.add(raw, "SSN matches 1 other application(s) with a different name", Severity.CRITICAL)
    return report


IDENTITY_WEAK = {"cvi_score": 12, "risk_indicators": []}
FRAUD_VPN = {"risk_score": 9, "ip": {"vpn": True}}
CREDIT_RAW_20 = {"scores": [], "summary": {"bankruptcy_count": 2}}


# ---- weights ----


@pytest.mark.parametrize("has_credit", [True, False])
def test_weights_sum_to_exactly_one(has_credit):
    weights = effective_weights(has_credit)
    assert sum(weights.values(), Decimal(0)) == Decimal(1)


def test_credit_weight_redistributed():
    weights = effective_weights(False)
    assert ScoreCategory.CREDIT not in weights
    assert weights[ScoreCategory.IDENTITY] == weights[ScoreCategory.FRAUD]
    assert round(float(weights[ScoreCategory.IDENTITY]), 4) == 0.4118
    assert round(float(weights[ScoreCategory.DUPLICATE]), 4) == 0.1765
    assert effective_weights(True)[ScoreCategory.CREDIT] == Decimal("0.15")


# ---- category rule tables ----


@pytest.mark.parametrize("cvi, raw", [(45, 0), (40, 0), (35, 10), (30, 10), (25, 25), (20, 25), (19, 35), (0, 35)])
def test_identity_bands(cvi, raw):
    assert score_identity({"cvi_score": cvi}).raw == raw


def test_identity_indicators_and_low_cvi_signal():
    result = score_identity(
        {"cvi_score": 12, "risk_indicators": [{"code": "11", "description": "SSN issued before DOB"}, {"code": "28"}]}
    )
    assert result.raw == 35 + 5 + 5
    assert {s.type for s in result.signals} == {"low_cvi", "identity_risk_indicator"}
    assert result.factors[-1].description == "Risk indicator: 28"


@pytest.mark.parametrize("score, raw", [(0, 0), (2, 0), (3, 15), (5, 15), (6, 25), (8, 25), (9, 35), (10, 35)])
def test_fraud_bands(score, raw):
    assert score_fraud({"risk_score": score}).raw == raw


def test_fraud_flags_add_points():
    result = score_fraud(
        {
            "risk_score": 1,
            "phone": {"prepaid": True, "owner_match": False},
            "ip": {"proxy": True},
            "email": {"domain_age": 3},
        }
    )
    assert result.raw == 5 + 10 + 5 + 5
    assert {s.type for s in result.signals} == {"prepaid_phone", "vpn_proxy", "young_email", "phone_mismatch"}


def test_high_fraud_score_signal():
    assert [s.type for s in score_fraud({"risk_score": 9}).signals] == ["high_fraud_score"]
    assert score_fraud({"risk_score": 8}).signals == []


def test_missing_checks_contribute_zero_with_factor():
    identity = score_identity(None)
    fraud = score_fraud(None)
    assert identity.raw == fraud.raw == 0
    assert identity.factors[0].description == "Identity verification was not performed"
    assert fraud.factors[0].description == "Fraud check was not performed"
    assert score_credit(None).factors == []


def test_credit_rules():
    assert score_credit({"scores": [{"value": 720}], "summary": {}}).raw == 0
    assert score_credit(CREDIT_RAW_20).raw == 20
    assert score_credit({"scores": [{"value": 650}], "summary": {"recent_address_changes": 4}}).raw == 5
    assert score_credit({"scores": [{"value": 650}], "summary": {"recent_address_changes": 3}}).raw == 0


# ---- thresholds ----


@pytest.mark.parametrize(
    "score, risk, recommendation",
    [
        (0, RiskLevel.LOW, Recommendation.APPROVE),
        (25, RiskLevel.LOW, Recommendation.APPROVE),
        (26, RiskLevel.MEDIUM, Recommendation.REVIEW),
        (55, RiskLevel.MEDIUM, Recommendation.REVIEW),
        (56, RiskLevel.HIGH, Recommendation.DENY),
        (80, RiskLevel.HIGH, Recommendation.DENY),
        (81, RiskLevel.CRITICAL, Recommendation.DENY),
        (100, RiskLevel.CRITICAL, Recommendation.DENY),
    ],
)
def test_threshold_boundaries(score, risk, recommendation):
    assert risk_from_score(score) is risk
    assert recommendation_from_score(score) is recommendation


def test_fuse_clamps_to_100():
    scores = {c: CategoryScore(c, raw=400) for c in ScoreCategory}
    assert fuse(scores, effective_weights(True)) == 100


# ---- fused assessments ----


def test_clean_applicant_is_approved():
    assessment = assess({"cvi_score": 45, "risk_indicators": []}, {"risk_score": 1}, None, _duplicates(0))
    assert assessment.overall_score == 0
    assert assessment.overall_risk is RiskLevel.LOW
    assert assessment.recommendation is Recommendation.APPROVE
    assert assessment.factors == []
    assert set(assessment.weights) == {"identity", "fraud", "duplicate"}


def test_redistributed_weights_without_credit():
    assessment = assess(IDENTITY_WEAK, FRAUD_VPN, None, _duplicates(50))
    assert assessment.category_scores == {"identity": 35, "fraud": 45, "duplicate": 50}
    assert assessment.overall_score == 42
    assert assessment.overall_risk is RiskLevel.MEDIUM
    assert assessment.recommendation is Recommendation.REVIEW


def test_credit_included_rounds_half_up():
    assessment = assess(IDENTITY_WEAK, FRAUD_VPN, CREDIT_RAW_20, _duplicates(50))
    assert assessment.category_scores["credit"] == 20
    # 12.25 + 15.75 + 3 + 7.5 = 38.5
    assert assessment.overall_score == 39
    assert assessment.recommendation is Recommendation.REVIEW
    assert assessment.weights["credit"] == pytest.approx(0.15)


def test_all_checks_missing_scores_zero():
    assessment = assess(None, None, None)
    assert assessment.overall_score == 0
    assert assessment.recommendation is Recommendation.APPROVE
    assert [f.description for f in assessment.factors] == [
        "Identity verification was not performed",
        "Fraud check was not performed",
    ]


def test_factors_are_ordered_by_category():
    assessment = assess(IDENTITY_WEAK, FRAUD_VPN, CREDIT_RAW_20, _duplicates(50))
    categories = [f.category for f in assessment.factors]
    assert categories == sorted(categories, key=list(ScoreCategory).index)
    assert assessment.to_dict()["factors"][0]["category"] == "identity"


# ---- engine with store ----


def _complete(store, application_id, check_type, payload):
    store.create_check_result(
        application_id,
        CheckResult(check_type=check_type, status=CheckStatus.COMPLETED, raw_payload=payload),
    )


def test_engine_uses_latest_completed_results(store, make_application):
    app = make_application()
    _complete(store, app.id, CheckType.IDENTITY, {"cvi_score": 45})
    _complete(store, app.id, CheckType.IDENTITY, {"cvi_score": 12})
    store.create_check_result(
        app.id, CheckResult(check_type=CheckType.FRAUD, status=CheckStatus.ERROR, raw_payload={"error": "boom"})
    )

    assessment = FraudDecisionEngine(store).compute(app.id)

    assert assessment.category_scores["identity"] == 35
    assert assessment.category_scores["fraud"] == 0
    assert "Fraud check was not performed" in [f.description for f in assessment.factors]


def test_decide_upserts_single_row_and_sets_status(store, make_application):
    app = make_application()
    engine = FraudDecisionEngine(store)
    _complete(store, app.id, CheckType.IDENTITY, {"cvi_score": 45})
    _complete(store, app.id, CheckType.FRAUD, {"risk_score": 1})

    first = engine.decide(app.id)
    assert first.recommendation is Recommendation.APPROVE
    assert store.get_application(app.id).status == ApplicationStatus.APPROVED.value

    store.record_override(app.id, "reviewer@agency.gov", "documents verified")
    _complete(store, app.id, CheckType.IDENTITY, {"cvi_score": 12})
    _complete(store, app.id, CheckType.FRAUD, {"risk_score": 9, "ip": {"vpn": True}})
    second = engine.decide(app.id, _duplicates(50))

    decision = store.get_fraud_decision(app.id)
    assert decision.overall_score == second.overall_score == 42
    assert decision.recommendation == "REVIEW"
    assert decision.overridden_by is None
    assert decision.override_reason is None
    assert store.get_application(app.id).status == ApplicationStatus.REVIEWED.value


def test_engine_unknown_application(store):
    with pytest.raises(ApplicationNotFound):
        FraudDecisionEngine(store).compute("missing")
