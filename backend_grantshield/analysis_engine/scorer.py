"""
Category rule tables: raw (unweighted) risk points per category.

Each scorer reads the normalized payload stored on a COMPLETED check result and
returns a CategoryScore with explainable factors and review signals. Raw scores
are non-negative integers; weighting and clamping happen in decision.py.
"""

from __future__ import annotations

from typing import Any

from backend_grantshield.screening.models import (
    CategoryScore,
    ScoreCategory,
    Severity,
    SignalSeverity,
)

# (minimum CVI, points, label, severity); first matching row wins.
IDENTITY_BANDS = (
    (40, 0, None, None),
    (30, 10, "moderate", Severity.LOW),
    (20, 25, "weak", Severity.MEDIUM),
    (None, 35, "very low", Severity.HIGH),
)
IDENTITY_INDICATOR_POINTS = 5
LOW_CVI_THRESHOLD = 20

# (maximum internal 0-10 score, points, label, severity); first matching row wins.
FRAUD_BANDS = (
    (2, 0, None, None),
    (5, 15, "moderate", Severity.MEDIUM),
    (8, 25, "elevated", Severity.HIGH),
    (None, 35, "very high", Severity.CRITICAL),
)
HIGH_FRAUD_SCORE = 8
PREPAID_PHONE_POINTS = 5
PROXY_VPN_POINTS = 10
YOUNG_EMAIL_POINTS = 5
YOUNG_EMAIL_DAYS = 30
PHONE_MISMATCH_POINTS = 5

NO_CREDIT_FILE_POINTS = 10
BANKRUPTCY_POINTS = 5
ADDRESS_CHANGE_POINTS = 5
ADDRESS_CHANGE_LIMIT = 3


def _number(value: Any, default: float = 0.0) -> float:
    if value is None or isinstance(value, bool):
        return default
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _fmt(value: float) -> str:
    return f"{value:g}"


def score_identity(payload: dict[str, Any] | None) -> CategoryScore:
    result = CategoryScore(ScoreCategory.IDENTITY)
    if payload is None:
        result.add(0, "Identity verification was not performed", Severity.MEDIUM)
        return result

    cvi = _number(payload.get("cvi_score"))
    for minimum, points, label, severity in IDENTITY_BANDS:
        if minimum is None or cvi >= minimum:
            if points:
                result.add(points, f"CVI score is {label} ({_fmt(cvi)})", severity)
            break
    if cvi < LOW_CVI_THRESHOLD:
        result.signal(
            "low_cvi",
            f"Identity confidence score is critically low ({_fmt(cvi)}/100)",
            "FlexID",
            SignalSeverity.CRITICAL,
        )

    for indicator in payload.get("risk_indicators") or []:
        description = indicator.get("description") or indicator.get("code") or "unknown"
        result.add(IDENTITY_INDICATOR_POINTS, f"Risk indicator: {description}", Severity.LOW)
        result.signal(
            "identity_risk_indicator",
            indicator.get("description") or f"Risk indicator code {indicator.get('code')}",
            "FlexID",
            SignalSeverity.WARNING,
        )
    return result


def score_fraud(payload: dict[str, Any] | None) -> CategoryScore:
    result = CategoryScore(ScoreCategory.FRAUD)
    if payload is None:
        result.add(0, "Fraud check was not performed", Severity.MEDIUM)
        return result

    score = _number(payload.get("risk_score"))
    for maximum, points, label, severity in FRAUD_BANDS:
        if maximum is None or score <= maximum:
            if points:
                result.add(points, f"Fraud risk score is {label} ({_fmt(score)}/10)", severity)
            break
    if score > HIGH_FRAUD_SCORE:
        result.signal(
            "high_fraud_score",
            f"Fraud risk score is critically high ({_fmt(score)}/10)",
            "FraudFinder",
            SignalSeverity.CRITICAL,
        )

    phone = payload.get("phone") or {}
    ip = payload.get("ip") or {}
    email = payload.get("email") or {}

    if phone.get("prepaid"):
        result.add(PREPAID_PHONE_POINTS, "Phone number is prepaid", Severity.LOW)
        result.signal(
            "prepaid_phone", "Applicant is using a prepaid phone number", "FraudFinder", SignalSeverity.WARNING
        )
    if ip.get("vpn") or ip.get("proxy"):
        result.add(PROXY_VPN_POINTS, "IP address associated with VPN or proxy", Severity.MEDIUM)
        result.signal(
            "vpn_proxy", "Application submitted from a VPN or proxy IP address", "FraudFinder", SignalSeverity.DANGER
        )
    domain_age = email.get("domain_age")
    if domain_age is not None and _number(domain_age) < YOUNG_EMAIL_DAYS:
        age = _fmt(_number(domain_age))
        result.add(YOUNG_EMAIL_POINTS, f"Email domain age is very young ({age} days)", Severity.LOW)
        result.signal(
            "young_email", f"Email domain was registered only {age} days ago", "FraudFinder", SignalSeverity.WARNING
        )
    if phone.get("owner_match") is False:
        result.add(PHONE_MISMATCH_POINTS, "Phone number owner does not match applicant", Severity.LOW)
        result.signal(
            "phone_mismatch", "Phone number is registered to a different person", "FraudFinder", SignalSeverity.WARNING
        )
    return result


def score_credit(payload: dict[str, Any] | None) -> CategoryScore:
    """None means no credit check was run; the engine drops the category from weighting."""
    result = CategoryScore(ScoreCategory.CREDIT)
    if payload is None:
        return result

    summary = payload.get("summary") or {}
    if not payload.get("scores"):
        result.add(NO_CREDIT_FILE_POINTS, "No credit file found for applicant", Severity.MEDIUM)
        result.signal(
            "no_credit_file", "Applicant has no credit file on record", "CreditBureau", SignalSeverity.WARNING
        )

    bankruptcies = int(_number(summary.get("bankruptcy_count")))
    if bankruptcies > 0:
        result.add(
            bankruptcies * BANKRUPTCY_POINTS,
            f"{bankruptcies} bankruptcy record(s) found",
            Severity.HIGH if bankruptcies > 1 else Severity.MEDIUM,
        )
        result.signal(
            "bankruptcy", f"Applicant has {bankruptcies} bankruptcy record(s)", "CreditBureau", SignalSeverity.DANGER
        )

    changes = int(_number(summary.get("recent_address_changes")))
    if changes > ADDRESS_CHANGE_LIMIT:
        result.add(ADDRESS_CHANGE_POINTS, f"High number of recent address changes ({changes})", Severity.LOW)
        result.signal(
            "frequent_address_changes",
            f"Applicant has {changes} recent address changes",
            "CreditBureau",
            SignalSeverity.WARNING,
        )
    return result
