"""
Identity verification adapter (FlexID through the CRS gateway).

Produces the 0-100 CVI confidence score and the provider's risk indicators.
The provider sandbox answers some test identities with an empty payload (or
error code CRS779 "empty response"); that is scored as a moderate default
instead of a failure.
"""

from __future__ import annotations

from typing import Any

from backend_grantshield.providers.base import VerificationAdapter, digits_only
from backend_grantshield.providers.client import ProviderHTTPError
from backend_grantshield.providers.fields import FieldTable, as_bool, as_float
from backend_grantshield.screening.models import (
    ApplicantProfile,
    CheckResult,
    CheckStatus,
    CheckType,
    RiskLevel,
    Signal,
    SignalSeverity,
)

SOURCE = "FlexID"
SANDBOX_CODE = "CRS779"
SANDBOX_CVI = 30
SANDBOX_INDICATOR = {
    "code": "SANDBOX",
    "description": "Provider sandbox returned no data - using default moderate score",
    "risk_level": "medium",
}

RESPONSE_FIELDS = FieldTable(
    {
        "cvi": ("cviScore", "CVIScore", "cvi", "comprehensiveVerificationIndex"),
        "indicators": ("riskIndicators", "RiskIndicators"),
        "verified": ("verifiedElementSummary", "VerifiedElementSummary"),
        "ssn": ("ssnVerification", "SSNVerification"),
        "email": ("emailVerification", "EmailVerification"),
    }
)
INDICATOR_FIELDS = FieldTable(
    {
        "code": ("code", "Code", "riskCode"),
        "description": ("description", "Description"),
        "risk_level": ("riskLevel", "RiskLevel"),
    }
)
VERIFIED_FIELDS = FieldTable(
    {
        "name": ("name", "Name"),
        "address": ("address", "Address"),
        "ssn": ("ssn", "SSN"),
        "dob": ("dob", "DOB", "dateOfBirth"),
        "phone": ("phone", "Phone"),
        "email": ("email", "Email"),
    }
)
VALID_FIELDS = FieldTable({"valid": ("valid", "Valid")})


def identity_risk(cvi: float) -> RiskLevel:
    if cvi >= 40:
        return RiskLevel.LOW
    if cvi >= 30:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def _is_sandbox_empty(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    codes = payload.get("codes") or []
    details = payload.get("details") or []
    if isinstance(codes, str):
        codes = [codes]
    if isinstance(details, str):
        details = [details]
    return SANDBOX_CODE in codes and any("empty response" in str(d) for d in details)


class IdentityAdapter(VerificationAdapter):
    check_type = CheckType.IDENTITY
    name = "identity"

    def build_request(self, profile: ApplicantProfile) -> dict[str, Any]:
        request: dict[str, Any] = {
            "firstName": profile.first_name,
            "lastName": profile.last_name,
            "includeAllRiskIndicators": True,
            "includeVerifiedElementSummary": True,
            "includeSSNVerification": True,
            "includeEmailVerification": True,
        }
        optional = {
            "ssn": digits_only(profile.tax_id) or None,
            "dateOfBirth": profile.date_of_birth,
            "streetAddress1": profile.address.line1,
            "city": profile.address.city,
            "state": profile.address.state,
            "zipCode": profile.address.postal_code,
            "homePhone": profile.phone,
            "email": profile.email,
            "ipAddress": profile.ip_address,
        }
        request.update({k: v for k, v in optional.items() if v})
        return request

    def recover(self, error: ProviderHTTPError) -> dict[str, Any] | None:
        if _is_sandbox_empty(error.payload):
            return {}
        return None

    def parse(self, payload: dict[str, Any]) -> CheckResult:
        if not payload:
            return self._sandbox_default()

        cvi = as_float(RESPONSE_FIELDS.get(payload, "cvi")) or 0.0
        indicators = [
            {
                "code": str(INDICATOR_FIELDS.get(item, "code", "")),
                "description": str(INDICATOR_FIELDS.get(item, "description", "")),
                "risk_level": str(INDICATOR_FIELDS.get(item, "risk_level", "unknown")),
            }
            for item in RESPONSE_FIELDS.items(payload, "indicators")
            if isinstance(item, dict)
        ]
        verified_raw = RESPONSE_FIELDS.section(payload, "verified")
        normalized: dict[str, Any] = {
            "cvi_score": cvi,
            "risk_indicators": indicators,
            "verified_elements": (
                {k: as_bool(v) for k, v in VERIFIED_FIELDS.extract(verified_raw).items()} if verified_raw else None
            ),
            "ssn_valid": self._valid_flag(payload, "ssn"),
            "email_valid": self._valid_flag(payload, "email"),
            "response": payload,
        }
        return CheckResult(
            check_type=self.check_type,
            status=CheckStatus.COMPLETED,
            score=cvi,
            risk_level=identity_risk(cvi),
            flags=[self._indicator_signal(i) for i in indicators],
            raw_payload=normalized,
        )

    @staticmethod
    def _valid_flag(payload: dict[str, Any], section: str) -> bool | None:
        data = RESPONSE_FIELDS.section(payload, section)
        return as_bool(VALID_FIELDS.get(data, "valid")) if data else None

    @staticmethod
    def _indicator_signal(indicator: dict[str, Any]) -> Signal:
        return Signal(
            type="identity_risk_indicator",
            description=indicator["description"] or f"Risk indicator code {indicator['code']}",
            source=SOURCE,
            severity=SignalSeverity.WARNING,
        )

    def _sandbox_default(self) -> CheckResult:
        indicator = dict(SANDBOX_INDICATOR)
        return CheckResult(
            check_type=self.check_type,
            status=CheckStatus.COMPLETED,
            score=float(SANDBOX_CVI),
            risk_level=identity_risk(SANDBOX_CVI),
            flags=[self._indicator_signal(indicator)],
            raw_payload={
                "cvi_score": float(SANDBOX_CVI),
                "risk_indicators": [indicator],
                "verified_elements": None,
                "ssn_valid": None,
                "email_valid": None,
                "sandbox_fallback": True,
                "response": {},
            },
        )
