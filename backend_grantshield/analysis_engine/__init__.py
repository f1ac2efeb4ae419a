"""
Analysis engine package: duplicate detection, category scoring and the fraud
decision engine that fuses them into one explainable risk score.
"""

from backend_grantshield.analysis_engine.decision import (
    BASE_WEIGHTS,
    FraudDecisionEngine,
    assess,
    effective_weights,
    recommendation_from_score,
    risk_from_score,
)
from backend_grantshield.analysis_engine.duplicates import (
    DuplicateDetector,
    DuplicateReport,
    detect_duplicates,
)
from backend_grantshield.analysis_engine.scorer import (
    score_credit,
    score_fraud,
    score_identity,
)

__all__ = [
    "BASE_WEIGHTS",
    "DuplicateDetector",
    "DuplicateReport",
    "FraudDecisionEngine",
    "assess",
    "detect_duplicates",
    "effective_weights",
    "recommendation_from_score",
    "risk_from_score",
    "score_credit",
    "score_fraud",
    "score_identity",
]
