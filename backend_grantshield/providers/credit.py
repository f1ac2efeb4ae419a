"""
Credit bureau adapter (Experian prequal report through the CRS gateway).

Credit pulls are costly and sensitive, so the tax id and a complete postal
address are checked locally before any provider call.
"""

from __future__ import annotations

from typing import Any

from backend_grantshield.core.exceptions import ValidationError
from backend_grantshield.providers.base import VerificationAdapter, digits_only
from backend_grantshield.providers.fields import FieldTable, as_float
from backend_grantshield.screening.models import (
    ApplicantProfile,
    CheckResult,
    CheckStatus,
    CheckType,
    RiskLevel,
    Signal,
    SignalSeverity,
)

SOURCE = "CreditBureau"
DEFAULT_SCORE_MODEL = "VantageScore4"
DELINQUENT_MARKERS = ("delinquent", "late", "past due")

RESPONSE_FIELDS = FieldTable(
    {
        "scores": ("scores", "Scores", "creditScore"),
        "tradelines": ("tradelines", "Tradelines", "tradeLines"),
        "inquiries": ("inquiries", "Inquiries"),
        "public_records": ("publicRecords", "PublicRecords"),
        "address_changes": ("recentAddressChanges", "RecentAddressChanges"),
    }
)
SCORE_FIELDS = FieldTable(
    {
        "model": ("model", "Model", "scoreName"),
        "value": ("value", "Value", "score"),
    }
)
TRADELINE_FIELDS = FieldTable(
    {
        "balance": ("currentBalance", "CurrentBalance", "balance"),
        "status": ("paymentStatus", "PaymentStatus", "accountStatus"),
    }
)
PUBLIC_RECORD_FIELDS = FieldTable({"kind": ("description", "type", "publicRecordType")})


def credit_risk(score: float | None) -> RiskLevel | None:
    if score is None:
        return None
    if score >= 700:
        return RiskLevel.LOW
    if score >= 600:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def is_bankruptcy(record: Any) -> bool:
    return "bankrupt" in str(PUBLIC_RECORD_FIELDS.get(record, "kind", "")).lower()


def summarize_tradelines(tradelines: list[Any]) -> dict[str, Any]:
    total_balance = 0.0
    delinquent = 0
    for line in tradelines:
        total_balance += as_float(TRADELINE_FIELDS.get(line, "balance")) or 0.0
        status = str(TRADELINE_FIELDS.get(line, "status", "")).lower()
        if any(marker in status for marker in DELINQUENT_MARKERS):
            delinquent += 1
    return {
        "total_accounts": len(tradelines),
        "total_balance": total_balance,
        "delinquent_count": delinquent,
    }


class CreditAdapter(VerificationAdapter):
    check_type = CheckType.CREDIT
    name = "credit"

    def build_request(self, profile: ApplicantProfile) -> dict[str, Any]:
        if not profile.tax_id:
            raise ValidationError("SSN is required for credit report pull", provider=self.name)
        if not profile.address.is_complete:
            raise ValidationError(
                "Complete address (address1, city, state, zip) is required for credit report pull",
                provider=self.name,
            )
        address: dict[str, Any] = {
            "borrowerResidencyType": "Current",
            "addressLine1": profile.address.line1,
            "city": profile.address.city,
            "state": profile.address.state,
            "postalCode": profile.address.postal_code,
        }
        if profile.address.line2:
            address["addressLine2"] = profile.address.line2
        request: dict[str, Any] = {
            "firstName": profile.first_name,
            "lastName": profile.last_name,
            "ssn": digits_only(profile.tax_id),
            "addresses": [address],
        }
        optional = {
            "middleName": profile.middle_name,
            "birthDate": profile.date_of_birth,
            "email": profile.email,
            "phoneNumber": profile.phone,
        }
        request.update({k: v for k, v in optional.items() if v})
        return request

    def parse(self, payload: dict[str, Any]) -> CheckResult:
        scores = [
            {
                "model": str(SCORE_FIELDS.get(item, "model", DEFAULT_SCORE_MODEL)),
                "value": as_float(SCORE_FIELDS.get(item, "value")) or 0.0,
            }
            for item in RESPONSE_FIELDS.items(payload, "scores")
            if isinstance(item, dict)
        ]
        tradelines = RESPONSE_FIELDS.items(payload, "tradelines")
        public_records = RESPONSE_FIELDS.items(payload, "public_records")
        summary = summarize_tradelines(tradelines)
        summary["public_record_count"] = len(public_records)
        summary["bankruptcy_count"] = sum(1 for r in public_records if is_bankruptcy(r))
        summary["recent_address_changes"] = int(as_float(RESPONSE_FIELDS.get(payload, "address_changes")) or 0)

        primary = scores[0]["value"] if scores else None
        normalized: dict[str, Any] = {
            "scores": scores,
            "primary_score": primary,
            "summary": summary,
            "public_records": public_records,
            "inquiry_count": len(RESPONSE_FIELDS.items(payload, "inquiries")),
            "response": payload,
        }
        return CheckResult(
            check_type=self.check_type,
            status=CheckStatus.COMPLETED,
            score=primary,
            risk_level=credit_risk(primary),
            flags=credit_flags(primary, summary),
            raw_payload=normalized,
        )


def credit_flags(primary: float | None, summary: dict[str, Any]) -> list[Signal]:
    flags: list[Signal] = []
    if primary is None:
        flags.append(Signal("no_credit_file", "No credit score reported", SOURCE, SignalSeverity.WARNING))
    if summary["delinquent_count"]:
        flags.append(
            Signal(
                "delinquent_accounts",
                f"{summary['delinquent_count']} delinquent account(s)",
                SOURCE,
                SignalSeverity.WARNING,
            )
        )
    if summary["bankruptcy_count"]:
        flags.append(
            Signal(
                "bankruptcy",
                f"{summary['bankruptcy_count']} bankruptcy record(s)",
                SOURCE,
                SignalSeverity.DANGER,
            )
        )
    return flags
