"""
Duplicate-applicant detection across stored applications.

Exact-match rules over identity fields of every other non-archived application.
Rules are independent and additive; the category raw score is not capped here
(clamping happens only on the fused overall score).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Iterable

from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.screening.models import (
    CategoryScore,
    ScoreCategory,
    Severity,
    SignalSeverity,
)

logger = get_logger(__name__)

SOURCE = "DuplicateDetection"


def _lower(value: Any) -> str:
    return str(value or "").strip().lower()


def _digits(value: Any) -> str:
    return "".join(ch for ch in str(value or "") if ch.isdigit())


@dataclass(frozen=True)
class DuplicateRule:
    """One exact-match rule; key normalizes the compared field, empty keys never match."""

    name: str
    impact: int
    severity: Severity
    signal_type: str
    signal_severity: SignalSeverity
    field_label: str
    signal_text: str
    key: Callable[[Any], str]
    matches: Callable[[Any, Any], bool] | None = None


def _tax_id(app: Any) -> str:
    return _digits(getattr(app, "applicant_ssn", None))


def _different_name(current: Any, other: Any) -> bool:
    return _lower(current.applicant_first_name) != _lower(other.applicant_first_name) or _lower(
        current.applicant_last_name
    ) != _lower(other.applicant_last_name)


RULES: tuple[DuplicateRule, ...] = (
    DuplicateRule(
        name="tax_id_name_mismatch",
        impact=50,
        severity=Severity.CRITICAL,
        signal_type="ssn_name_mismatch",
        signal_severity=SignalSeverity.CRITICAL,
        field_label="SSN",
        signal_text="Same SSN used with different names across applications",
        key=_tax_id,
        matches=_different_name,
    ),
    DuplicateRule(
        name="address",
        impact=20,
        severity=Severity.HIGH,
        signal_type="duplicate_address",
        signal_severity=SignalSeverity.DANGER,
        field_label="Address",
        signal_text="Same address found on another application",
        key=lambda app: _lower(getattr(app, "applicant_address1", None)),
    ),
    DuplicateRule(
        name="email",
        impact=15,
        severity=Severity.MEDIUM,
        signal_type="duplicate_email",
        signal_severity=SignalSeverity.WARNING,
        field_label="Email",
        signal_text="Same email address found on another application",
        key=lambda app: _lower(getattr(app, "applicant_email", None)),
    ),
    DuplicateRule(
        name="phone",
        impact=10,
        severity=Severity.LOW,
        signal_type="duplicate_phone",
        signal_severity=SignalSeverity.WARNING,
        field_label="Phone",
        signal_text="Same phone number found on another application",
        key=lambda app: _digits(getattr(app, "applicant_phone", None)),
    ),
)


@dataclass
class DuplicateReport:
    """Duplicate category score plus the matching application ids per rule."""

    score: CategoryScore = field(default_factory=lambda: CategoryScore(ScoreCategory.DUPLICATE))
    matches: dict[str, list[str]] = field(default_factory=dict)

    @property
    def raw(self) -> int:
        return self.score.raw

    def to_dict(self) -> dict[str, Any]:
        return {
            "raw": self.raw,
            "matches": {k: list(v) for k, v in self.matches.items()},
            "factors": [f.to_dict() for f in self.score.factors],
            "signals": [s.to_dict() for s in self.score.signals],
        }


def detect_duplicates(application: Any, others: Iterable[Any]) -> DuplicateReport:
    """Evaluate every rule of RULES for application against others."""
    others = [o for o in others if getattr(o, "id", None) != getattr(application, "id", None)]
    report = DuplicateReport()
    for rule in RULES:
        own_key = rule.key(application)
        if not own_key:
            continue
        hits = [
            o
            for o in others
            if rule.key(o) == own_key and (rule.matches is None or rule.matches(application, o))
        ]
        if not hits:
            continue
        report.matches[rule.name] = [str(o.id) for o in hits]
        suffix = " with a different name" if rule.matches is not None else ""
        report.score.add(
            rule.impact,
            f"{rule.field_label} matches {len(hits)} other application(s){suffix}",
            rule.severity,
        )
        report.score.signal(rule.signal_type, rule.signal_text, SOURCE, rule.signal_severity)
    return report


class DuplicateDetector:
    """Scans the store for other non-archived applications sharing identity fields."""

    def __init__(self, store: Any) -> None:
        self._store = store

    def scan(self, application: Any) -> DuplicateReport:
        others = self._store.list_other_active_applications(application.id)
        report = detect_duplicates(application, others)
        if report.matches:
            logger.info(
                "duplicate_matches_found",
                application_id=application.id,
                rules=sorted(report.matches),
                raw=report.raw,
            )
        return report
