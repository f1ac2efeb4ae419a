"""
Fraud decision engine: fuse category scores into one explainable decision.

Weighted sum of category raw scores (identity 0.35, fraud 0.35, credit 0.15,
duplicate 0.15). Without a credit result the credit weight is redistributed
proportionally over the other categories. Weights are Decimals and the last
weight is the remainder, so they always sum to exactly 1. The overall score is
rounded half up and clamped to 0..100.
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Mapping

from backend_grantshield.analysis_engine.duplicates import DuplicateDetector, DuplicateReport
from backend_grantshield.analysis_engine.scorer import score_credit, score_fraud, score_identity
from backend_grantshield.core.exceptions import ApplicationNotFound
from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.screening.models import (
    STATUS_FOR_RECOMMENDATION,
    CategoryScore,
    CheckStatus,
    CheckType,
    FraudAssessment,
    Recommendation,
    RiskLevel,
    ScoreCategory,
)

logger = get_logger(__name__)

BASE_WEIGHTS: dict[ScoreCategory, Decimal] = {
    ScoreCategory.IDENTITY: Decimal("0.35"),
    ScoreCategory.FRAUD: Decimal("0.35"),
    ScoreCategory.CREDIT: Decimal("0.15"),
    ScoreCategory.DUPLICATE: Decimal("0.15"),
}

THRESHOLD_APPROVE = 25
THRESHOLD_REVIEW = 55
THRESHOLD_HIGH = 80
MIN_SCORE = 0
MAX_SCORE = 100


def effective_weights(has_credit: bool) -> dict[ScoreCategory, Decimal]:
    """Weights for the present categories, summing to exactly Decimal(1)."""
    present = [c for c in BASE_WEIGHTS if has_credit or c is not ScoreCategory.CREDIT]
    total = sum((BASE_WEIGHTS[c] for c in present), Decimal(0))
    weights: dict[ScoreCategory, Decimal] = {}
    remaining = Decimal(1)
    for category in present[:-1]:
        weights[category] = BASE_WEIGHTS[category] / total
        remaining -= weights[category]
    weights[present[-1]] = remaining
    return weights


def round_half_up(value: Decimal) -> int:
    return int(value.quantize(Decimal(1), rounding=ROUND_HALF_UP))


def risk_from_score(score: int) -> RiskLevel:
    if score <= THRESHOLD_APPROVE:
        return RiskLevel.LOW
    if score <= THRESHOLD_REVIEW:
        return RiskLevel.MEDIUM
    if score <= THRESHOLD_HIGH:
        return RiskLevel.HIGH
    return RiskLevel.CRITICAL


def recommendation_from_score(score: int) -> Recommendation:
    if score <= THRESHOLD_APPROVE:
        return Recommendation.APPROVE
    if score <= THRESHOLD_REVIEW:
        return Recommendation.REVIEW
    return Recommendation.DENY


def fuse(scores: dict[ScoreCategory, CategoryScore], weights: dict[ScoreCategory, Decimal]) -> int:
    weighted = sum((Decimal(scores[c].raw) * w for c, w in weights.items()), Decimal(0))
    return max(MIN_SCORE, min(MAX_SCORE, round_half_up(weighted)))


def assess(
    identity: dict[str, Any] | None,
    fraud: dict[str, Any] | None,
    credit: dict[str, Any] | None,
    duplicates: DuplicateReport | None = None,
) -> FraudAssessment:
    """
    Pure scoring step.

    identity/fraud/credit are the normalized payloads of the latest COMPLETED
    result per category, or None when that check has no completed result.
    Never raises for a missing category.
    """
    scores = {
        ScoreCategory.IDENTITY: score_identity(identity),
        ScoreCategory.FRAUD: score_fraud(fraud),
        ScoreCategory.CREDIT: score_credit(credit),
        ScoreCategory.DUPLICATE: duplicates.score if duplicates else CategoryScore(ScoreCategory.DUPLICATE),
    }
    weights = effective_weights(has_credit=credit is not None)
    overall = fuse(scores, weights)

    ordered = [scores[c] for c in BASE_WEIGHTS]
    return FraudAssessment(
        overall_score=overall,
        overall_risk=risk_from_score(overall),
        recommendation=recommendation_from_score(overall),
        factors=[f for s in ordered for f in s.factors],
        signals=[sig for s in ordered for sig in s.signals],
        category_scores={c.value: s.raw for c, s in scores.items() if c in weights},
        weights={c.value: float(w) for c, w in weights.items()},
    )


class FraudDecisionEngine:
    """Loads the latest completed results, scores them and writes the decision."""

    def __init__(self, store: Any, detector: DuplicateDetector | None = None) -> None:
        self._store = store
        self._detector = detector or DuplicateDetector(store)

    def compute(
        self,
        application_id: str,
        duplicates: DuplicateReport | None = None,
        results: Mapping[CheckType, Any] | None = None,
    ) -> FraudAssessment:
        """
        Score the application.

        results, when given, are the COMPLETED check records of one screening
        run and are the only ones scored; a category missing from it counts as
        absent. Without results the latest COMPLETED record per type in the
        stored history is used.
        """
        application = self._store.get_application(application_id)
        if application is None:
            raise ApplicationNotFound(application_id)
        if results is None:
            latest = self._store.latest_completed_results(application_id)
        else:
            latest = {t: r for t, r in results.items() if r.status == CheckStatus.COMPLETED.value}

        def payload(check_type: CheckType) -> dict[str, Any] | None:
            record = latest.get(check_type)
            return dict(record.raw_payload or {}) if record is not None else None

        if duplicates is None:
            duplicates = self._detector.scan(application)
        return assess(
            payload(CheckType.IDENTITY),
            payload(CheckType.FRAUD),
            payload(CheckType.CREDIT),
            duplicates,
        )

    def decide(
        self,
        application_id: str,
        duplicates: DuplicateReport | None = None,
        results: Mapping[CheckType, Any] | None = None,
    ) -> FraudAssessment:
        """Compute, upsert the single decision row and move the application to its decided status."""
        assessment = self.compute(application_id, duplicates, results)
        status = STATUS_FOR_RECOMMENDATION[assessment.recommendation]
        self._store.upsert_fraud_decision(application_id, assessment, status)
        logger.info(
            "fraud_assessment_completed",
            application_id=application_id,
            overall_score=assessment.overall_score,
            overall_risk=assessment.overall_risk.value,
            recommendation=assessment.recommendation.value,
            category_scores=assessment.category_scores,
        )
        return assessment
