"""
Two-phase background check adapters (criminal records, eviction records).

submit(profile) files a request and returns the provider request id; poll(id)
returns the completed CheckResult or raises NotReadyError while the provider is
still processing (HTTP 404 on the result endpoint, or a pending status field).
These providers want the date of birth as MM-DD-YYYY, the SSN with dashes and
the street address split into house number and street name.
"""

from __future__ import annotations

import re
import time
from typing import Any

from backend_grantshield.core.exceptions import NotReadyError, ValidationError
from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.providers.base import VerificationAdapter, digits_only
from backend_grantshield.providers.client import TwoPhaseClient
from backend_grantshield.providers.fields import FieldTable
from backend_grantshield.screening.models import (
    ApplicantProfile,
    CheckResult,
    CheckStatus,
    CheckType,
    RiskLevel,
    Signal,
    SignalSeverity,
)

logger = get_logger(__name__)

PENDING_STATUSES = frozenset({"pending", "processing", "in_progress", "in progress", "submitted", "queued"})
_HOUSE_NUMBER = re.compile(r"^(\d+[\w-]*)\s+(.+)$")

SUBMIT_FIELDS = FieldTable({"request_id": ("id", "requestId", "Id", "RequestId")})
STATUS_FIELDS = FieldTable({"status": ("status", "Status", "requestStatus")})


def format_dob_mdy(iso_date: str) -> str:
    year, month, day = iso_date.split("-")
    return f"{month}-{day}-{year}"


def format_ssn_dashed(tax_id: str) -> str:
    digits = digits_only(tax_id)
    if len(digits) != 9:
        raise ValidationError(f"Invalid SSN: expected 9 digits, got {len(digits)}")
    return f"{digits[:3]}-{digits[3:5]}-{digits[5:]}"


def split_street(line1: str) -> tuple[str, str]:
    """("123 Main St Apt 4") -> ("123", "Main St Apt 4"); no leading number -> ("", line1)."""
    trimmed = line1.strip()
    match = _HOUSE_NUMBER.match(trimmed)
    if match:
        return match.group(1), match.group(2)
    return "", trimmed


def background_risk(count: int) -> RiskLevel:
    if count == 0:
        return RiskLevel.LOW
    if count <= 2:
        return RiskLevel.MEDIUM
    return RiskLevel.HIGH


class BackgroundCheckAdapter(VerificationAdapter):
    """Shared submit/poll flow; subclasses define the record parsing."""

    client: TwoPhaseClient
    reference_prefix = "grant-shield"

    def build_request(self, profile: ApplicantProfile) -> dict[str, Any]:
        if not profile.date_of_birth:
            raise ValidationError(f"Date of birth is required for {self.name} check", provider=self.name)
        subject: dict[str, Any] = {
            "first": profile.first_name,
            "last": profile.last_name,
            "dob": format_dob_mdy(profile.date_of_birth),
        }
        if profile.middle_name:
            subject["middle"] = profile.middle_name
        if profile.tax_id:
            try:
                subject["ssn"] = format_ssn_dashed(profile.tax_id)
            except ValidationError as e:
                raise ValidationError(e.message, provider=self.name) from e
        if profile.address.line1:
            subject["houseNumber"], subject["streetName"] = split_street(profile.address.line1)
        optional = {
            "city": profile.address.city,
            "state": profile.address.state,
            "zip": profile.address.postal_code,
        }
        subject.update({k: v for k, v in optional.items() if v})
        return {"reference": self.reference(profile), "subjectInfo": subject}

    def reference(self, profile: ApplicantProfile) -> str:
        name = re.sub(r"\s+", "-", f"{profile.first_name}-{profile.last_name}".lower())
        return f"{self.reference_prefix}-{self.name}-{name}-{int(time.time() * 1000)}"

    async def submit(self, profile: ApplicantProfile) -> str:
        request = self.build_request(profile)
        payload = await self._call(self.client.submit, request)
        request_id = SUBMIT_FIELDS.get(payload, "request_id")
        if not request_id:
            raise ValidationError(f"{self.name} submission returned no request id", provider=self.name)
        logger.info("background_check_submitted", provider=self.name, request_id=str(request_id))
        return str(request_id)

    async def poll(self, request_id: str) -> CheckResult:
        try:
            payload = await self._call(self.client.fetch, request_id)
        except ValidationError as e:
            if e.http_status == 404:
                raise NotReadyError(request_id) from e
            raise
        status = str(STATUS_FIELDS.get(payload, "status", "")).strip().lower()
        if status in PENDING_STATUSES:
            raise NotReadyError(request_id, f"{self.name} request {request_id} is {status}")
        result = self.parse(payload)
        result.provider_request_id = request_id
        return result

    async def invoke(self, profile: ApplicantProfile) -> CheckResult:
        """Submit and try one poll; a not-ready provider yields a PENDING result."""
        request_id = await self.submit(profile)
        try:
            return await self.poll(request_id)
        except NotReadyError:
            return CheckResult(
                check_type=self.check_type,
                status=CheckStatus.PENDING,
                raw_payload={"request_id": request_id},
                provider_request_id=request_id,
            )


CANDIDATE_FIELDS = FieldTable(
    {
        "candidates": ("candidates", "Candidates", "records"),
        "name": ("name", "Name"),
        "first": ("first", "firstName"),
        "last": ("last", "lastName"),
        "offenses": ("offenses", "Offenses", "charges"),
    }
)
OFFENSE_FIELDS = FieldTable(
    {
        "description": ("description", "Description", "charge"),
        "statute": ("statute", "Statute"),
        "date": ("date", "Date", "offenseDate"),
        "disposition": ("disposition", "Disposition"),
        "court": ("court", "Court"),
        "sentence": ("sentence", "Sentence"),
    }
)


class CriminalAdapter(BackgroundCheckAdapter):
    check_type = CheckType.CRIMINAL
    name = "criminal"

    def parse(self, payload: dict[str, Any]) -> CheckResult:
        candidates = []
        for item in CANDIDATE_FIELDS.items(payload, "candidates"):
            if not isinstance(item, dict):
                continue
            name = CANDIDATE_FIELDS.get(item, "name") or " ".join(
                str(p) for p in (CANDIDATE_FIELDS.get(item, "first", ""), CANDIDATE_FIELDS.get(item, "last", "")) if p
            )
            offenses = [
                OFFENSE_FIELDS.extract(o) for o in CANDIDATE_FIELDS.items(item, "offenses") if isinstance(o, dict)
            ]
            candidates.append({"name": name, "offenses": offenses})
        count = sum(len(c["offenses"]) for c in candidates)
        flags = []
        if count:
            flags.append(
                Signal(
                    "criminal_records",
                    f"{count} offense(s) across {len(candidates)} candidate record(s)",
                    "Criminal",
                    SignalSeverity.DANGER if count > 2 else SignalSeverity.WARNING,
                )
            )
        return CheckResult(
            check_type=self.check_type,
            status=CheckStatus.COMPLETED,
            score=float(count),
            risk_level=background_risk(count),
            flags=flags,
            raw_payload={"candidates": candidates, "offense_count": count, "response": payload},
        )


EVICTION_FIELDS = FieldTable(
    {
        "evictions": ("evictions", "Evictions", "filings"),
        "date": ("filingDate", "FilingDate", "date"),
        "court": ("court", "Court"),
        "plaintiff": ("plaintiff", "Plaintiff"),
        "amount": ("amount", "Amount", "judgmentAmount"),
        "status": ("status", "Status", "disposition"),
    }
)


class EvictionAdapter(BackgroundCheckAdapter):
    check_type = CheckType.EVICTION
    name = "eviction"

    def parse(self, payload: dict[str, Any]) -> CheckResult:
        evictions = [
            {k: v for k, v in EVICTION_FIELDS.extract(e).items() if k != "evictions"}
            for e in EVICTION_FIELDS.items(payload, "evictions")
            if isinstance(e, dict)
        ]
        count = len(evictions)
        flags = []
        if count:
            flags.append(
                Signal(
                    "eviction_records",
                    f"{count} eviction filing(s) on record",
                    "Eviction",
                    SignalSeverity.DANGER if count > 2 else SignalSeverity.WARNING,
                )
            )
        return CheckResult(
            check_type=self.check_type,
            status=CheckStatus.COMPLETED,
            score=float(count),
            risk_level=background_risk(count),
            flags=flags,
            raw_payload={"evictions": evictions, "eviction_count": count, "response": payload},
        )
