"""
Screening domain: canonical models, applicant profile builder and the
orchestrator that runs verification checks for one application.
"""

from backend_grantshield.screening.models import (
    ApplicantProfile,
    ApplicationStatus,
    CheckResult,
    CheckStatus,
    CheckType,
    FraudAssessment,
    Recommendation,
    RiskLevel,
    ScreeningRun,
)

__all__ = [
    "ApplicantProfile",
    "ApplicationStatus",
    "CheckResult",
    "CheckStatus",
    "CheckType",
    "FraudAssessment",
    "Recommendation",
    "RiskLevel",
    "ScreeningRun",
]
