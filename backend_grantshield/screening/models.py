"""
Domain models for the screening pipeline.

Canonical applicant profile, per-check results, explainable factors and
signals, and the fused fraud assessment. Plain dataclasses; the database
layer maps them to rows.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class CheckType(str, Enum):
    IDENTITY = "IDENTITY"
    FRAUD = "FRAUD"
    CREDIT = "CREDIT"
    CRIMINAL = "CRIMINAL"
    EVICTION = "EVICTION"

    @property
    def key(self) -> str:
        """Lower-case name used in result and error maps ("identity", "fraud", ...)."""
        return self.value.lower()

    @classmethod
    def parse(cls, raw: str) -> CheckType:
        try:
            return cls(raw.strip().upper())
        except ValueError as e:
            valid = ", ".join(t.key for t in cls)
            raise ValueError(f"Invalid screening type: {raw}. Valid types: {valid}") from e


TWO_PHASE_CHECKS = frozenset({CheckType.CRIMINAL, CheckType.EVICTION})


class CheckStatus(str, Enum):
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    ERROR = "ERROR"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Severity(str, Enum):
    """Severity of a scored factor."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class SignalSeverity(str, Enum):
    """Severity of a review signal shown to humans."""

    INFO = "info"
    WARNING = "warning"
    DANGER = "danger"
    CRITICAL = "critical"


class Recommendation(str, Enum):
    APPROVE = "APPROVE"
    REVIEW = "REVIEW"
    DENY = "DENY"


class ApplicationStatus(str, Enum):
    PENDING = "PENDING"
    SCREENING = "SCREENING"
    APPROVED = "APPROVED"
    REVIEWED = "REVIEWED"
    DENIED = "DENIED"
    ARCHIVED = "ARCHIVED"


STATUS_FOR_RECOMMENDATION = {
    Recommendation.APPROVE: ApplicationStatus.APPROVED,
    Recommendation.REVIEW: ApplicationStatus.REVIEWED,
    Recommendation.DENY: ApplicationStatus.DENIED,
}

RECOMMENDATION_FOR_STATUS = {status: rec for rec, status in STATUS_FOR_RECOMMENDATION.items()}


class ScoreCategory(str, Enum):
    IDENTITY = "identity"
    FRAUD = "fraud"
    CREDIT = "credit"
    DUPLICATE = "duplicate"


@dataclass(frozen=True)
class PostalAddress:
    line1: str | None = None
    line2: str | None = None
    city: str | None = None
    state: str | None = None
    postal_code: str | None = None

    @property
    def is_complete(self) -> bool:
        """True when line1, city, state and postal code are all present."""
        return all((self.line1, self.city, self.state, self.postal_code))


@dataclass(frozen=True)
class ApplicantProfile:
    """
    Canonical applicant data consumed by every adapter.

    Built once per screening run from the stored application; adapters
    reformat fields (dates, tax id) for their own provider.
    """

    first_name: str
    last_name: str
    email: str
    middle_name: str | None = None
    phone: str | None = None
    tax_id: str | None = None
    date_of_birth: str | None = None
    """ISO YYYY-MM-DD, or None when absent or unparseable."""
    address: PostalAddress = field(default_factory=PostalAddress)
    ip_address: str | None = None

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


@dataclass
class Signal:
    """Detected fraud indicator for human review; not necessarily scored."""

    type: str
    description: str
    source: str
    severity: SignalSeverity

    def to_dict(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "description": self.description,
            "source": self.source,
            "severity": self.severity.value,
        }


@dataclass
class Factor:
    """One scored line of explanation within a category."""

    category: ScoreCategory
    description: str
    impact: int
    severity: Severity

    def to_dict(self) -> dict[str, Any]:
        return {
            "category": self.category.value,
            "description": self.description,
            "impact": self.impact,
            "severity": self.severity.value,
        }


@dataclass
class CheckResult:
    """
    Canonical, provider-agnostic outcome of one verification call.

    raw_payload holds the normalized provider response (with the provider's own
    body under "response") and is what the decision engine reads back.
    """

    check_type: CheckType
    status: CheckStatus
    score: float | None = None
    risk_level: RiskLevel | None = None
    flags: list[Signal] = field(default_factory=list)
    raw_payload: dict[str, Any] = field(default_factory=dict)
    provider_request_id: str | None = None

    def flags_as_dicts(self) -> list[dict[str, Any]]:
        return [f.to_dict() for f in self.flags]


@dataclass
class CategoryScore:
    """Raw (unweighted) score of one category plus its explanation."""

    category: ScoreCategory
    raw: int = 0
    factors: list[Factor] = field(default_factory=list)
    signals: list[Signal] = field(default_factory=list)

    def add(self, impact: int, description: str, severity: Severity) -> None:
        self.raw += impact
        self.factors.append(Factor(self.category, description, impact, severity))

    def signal(self, type_: str, description: str, source: str, severity: SignalSeverity) -> None:
        self.signals.append(Signal(type_, description, source, severity))


@dataclass
class FraudAssessment:
    """Fused decision for one application."""

    overall_score: int
    overall_risk: RiskLevel
    recommendation: Recommendation
    factors: list[Factor] = field(default_factory=list)
    signals: list[Signal] = field(default_factory=list)
    category_scores: dict[str, int] = field(default_factory=dict)
    weights: dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {
            "overall_score": self.overall_score,
            "overall_risk": self.overall_risk.value,
            "recommendation": self.recommendation.value,
            "factors": [f.to_dict() for f in self.factors],
            "signals": [s.to_dict() for s in self.signals],
            "category_scores": dict(self.category_scores),
            "weights": dict(self.weights),
        }


@dataclass
class ScreeningRun:
    """Outcome of one full screening pipeline run."""

    application_id: str
    results: dict[str, dict[str, Any]] = field(default_factory=dict)
    errors: dict[str, str] = field(default_factory=dict)
    assessment: FraudAssessment | None = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {
            "application_id": self.application_id,
            "results": self.results,
            "assessment": self.assessment.to_dict() if self.assessment else None,
        }
        if self.errors:
            out["errors"] = dict(self.errors)
        return out
