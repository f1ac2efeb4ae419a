"""
Fraud-signal adapter (FraudFinder through the CRS gateway).

The provider scores 0-100 (higher is riskier). Internally the score is kept on
a 0-10 scale (score / 10, rounded half up) while the risk band uses the raw
value. Email, domain age, phone, IP and postal sections become boolean signals.
"""

from __future__ import annotations

import re
from decimal import ROUND_HALF_UP, Decimal
from typing import Any

from backend_grantshield.core.exceptions import ValidationError
from backend_grantshield.providers.base import VerificationAdapter, digits_only
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

SOURCE = "FraudFinder"
YOUNG_DOMAIN_DAYS = 30

RESPONSE_FIELDS = FieldTable(
    {
        "score": ("risk.score", "riskScore", "RiskScore"),
        "email": ("email_validation", "emailValidation", "EmailValidation"),
        "domain_age": ("dam.longevity",),
        "phone": ("phoneVerification", "PhoneVerification", "phone"),
        "ip": ("ipAnalysis", "IPAnalysis", "ip"),
        "postal": ("risk.postal", "addressDeliverability", "AddressDeliverability"),
    }
)
EMAIL_FIELDS = FieldTable(
    {
        "status": ("status",),
        "status_code": ("status_code",),
        "valid": ("valid", "Valid"),
        "domain_type": ("domain_type", "domainType"),
        "domain_age": ("domainAge", "DomainAge"),
    }
)
PHONE_FIELDS = FieldTable(
    {
        "prepaid": ("prepaid", "Prepaid"),
        "owner_match": ("ownerMatch", "OwnerMatch", "owner_match"),
        "line_type": ("lineType", "LineType", "line_type"),
        "carrier": ("carrier", "Carrier"),
    }
)
IP_FIELDS = FieldTable(
    {
        "proxy": ("proxy", "Proxy"),
        "vpn": ("vpn", "VPN"),
        "country": ("country", "Country"),
    }
)
POSTAL_FIELDS = FieldTable(
    {
        "deliverability": ("deliverability",),
        "substatus": ("deliverability_substatus", "type", "Type"),
        "first_name_match": ("first_name_match",),
        "last_name_match": ("last_name_match",),
    }
)


def normalize_fraud_score(provider_score: float) -> int:
    """0-100 provider score -> 0-10 internal score, rounded half up."""
    return int((Decimal(str(provider_score)) / 10).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def fraud_risk(provider_score: float) -> RiskLevel:
    if provider_score <= 30:
        return RiskLevel.LOW
    if provider_score <= 60:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


def normalize_postal_code(value: str) -> str:
    digits = digits_only(value)
    if len(digits) == 9:
        return f"{digits[:5]}-{digits[5:]}"
    if len(digits) >= 5:
        return digits[:5]
    return value


class FraudSignalAdapter(VerificationAdapter):
    check_type = CheckType.FRAUD
    name = "fraud_signal"

    def build_request(self, profile: ApplicantProfile) -> dict[str, Any]:
        if not profile.email or not re.match(r"^[^@\s]+@[^@\s]+$", profile.email):
            raise ValidationError("Email is required for fraud signal verification", provider=self.name)
        request: dict[str, Any] = {
            "email": profile.email,
            "firstName": profile.first_name,
            "lastName": profile.last_name,
        }
        if profile.phone:
            request["phoneNumber"] = profile.phone
        if profile.ip_address:
            request["ipAddress"] = profile.ip_address
        address = {
            "addressLine1": profile.address.line1,
            "city": profile.address.city,
            "state": profile.address.state,
            "postalCode": normalize_postal_code(profile.address.postal_code) if profile.address.postal_code else None,
        }
        address = {k: v for k, v in address.items() if v}
        if address:
            request["address"] = address
        return request

    def parse(self, payload: dict[str, Any]) -> CheckResult:
        provider_score = as_float(RESPONSE_FIELDS.get(payload, "score")) or 0.0
        email = RESPONSE_FIELDS.section(payload, "email")
        phone = RESPONSE_FIELDS.section(payload, "phone")
        ip = RESPONSE_FIELDS.section(payload, "ip")
        postal = RESPONSE_FIELDS.section(payload, "postal")

        domain_age = as_float(RESPONSE_FIELDS.get(payload, "domain_age"))
        if domain_age is None:
            domain_age = as_float(EMAIL_FIELDS.get(email, "domain_age"))

        email_status = EMAIL_FIELDS.get(email, "status")
        email_valid_raw = EMAIL_FIELDS.get(email, "valid")
        owner_match = PHONE_FIELDS.get(phone, "owner_match")
        normalized: dict[str, Any] = {
            "risk_score": normalize_fraud_score(provider_score),
            "provider_score": provider_score,
            "email": {
                "status": email_status,
                "invalid": email_status == "invalid" or (email_valid_raw is not None and not as_bool(email_valid_raw)),
                "domain_type": EMAIL_FIELDS.get(email, "domain_type"),
                "domain_age": domain_age,
            },
            "phone": {
                "prepaid": as_bool(PHONE_FIELDS.get(phone, "prepaid")),
                "owner_match": None if owner_match is None else as_bool(owner_match),
                "line_type": PHONE_FIELDS.get(phone, "line_type"),
                "carrier": PHONE_FIELDS.get(phone, "carrier"),
            },
            "ip": {
                "proxy": as_bool(IP_FIELDS.get(ip, "proxy")),
                "vpn": as_bool(IP_FIELDS.get(ip, "vpn")),
                "country": IP_FIELDS.get(ip, "country"),
            },
            "postal": {
                "undeliverable": POSTAL_FIELDS.get(postal, "deliverability") == "undeliverable",
                "substatus": POSTAL_FIELDS.get(postal, "substatus"),
                "name_mismatch": "no_match"
                in (POSTAL_FIELDS.get(postal, "first_name_match"), POSTAL_FIELDS.get(postal, "last_name_match")),
            },
            "response": payload,
        }
        return CheckResult(
            check_type=self.check_type,
            status=CheckStatus.COMPLETED,
            score=float(normalized["risk_score"]),
            risk_level=fraud_risk(provider_score),
            flags=extract_fraud_signals(normalized, email),
            raw_payload=normalized,
        )


def extract_fraud_signals(normalized: dict[str, Any], email_section: dict[str, Any] | None = None) -> list[Signal]:
    """Signals for every boolean indicator that is set in a normalized fraud payload."""
    email = normalized["email"]
    phone = normalized["phone"]
    ip = normalized["ip"]
    postal = normalized["postal"]
    signals: list[Signal] = []

    def add(type_: str, description: str, severity: SignalSeverity) -> None:
        signals.append(Signal(type_, description, SOURCE, severity))

    if email["invalid"]:
        code = EMAIL_FIELDS.get(email_section or {}, "status_code", "unknown")
        add(
            "email_invalid",
            f"Email address status: {email['status'] or 'invalid'} (code: {code})",
            SignalSeverity.WARNING,
        )
    if email["domain_type"] in ("disposable", "temporary"):
        add("email_domain_risk", f"Email uses a {email['domain_type']} domain", SignalSeverity.DANGER)
    if email["domain_age"] is not None and email["domain_age"] < YOUNG_DOMAIN_DAYS:
        add(
            "young_email",
            f"Email domain was registered only {email['domain_age']:g} days ago",
            SignalSeverity.WARNING,
        )
    if postal["undeliverable"]:
        add(
            "address_undeliverable",
            f"Address is undeliverable: {postal['substatus'] or 'unknown reason'}",
            SignalSeverity.DANGER,
        )
    if postal["name_mismatch"]:
        add("name_address_mismatch", "Name does not match postal records at this address", SignalSeverity.WARNING)
    if phone["prepaid"]:
        add("prepaid_phone", "Phone number is associated with a prepaid carrier", SignalSeverity.WARNING)
    if phone["owner_match"] is False:
        add("phone_owner_mismatch", "Phone number owner does not match applicant name", SignalSeverity.WARNING)
    if ip["proxy"] or ip["vpn"]:
        add("ip_proxy_vpn", "IP address is associated with a proxy or VPN", SignalSeverity.DANGER)
    return signals
