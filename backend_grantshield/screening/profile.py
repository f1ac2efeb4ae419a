"""
Applicant profile builder.

Maps a stored application row onto the canonical ApplicantProfile. Validates
the fields every provider needs (first name, last name, email) so the pipeline
fails before any network call, and normalizes date of birth to ISO form.
"""

from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any

from backend_grantshield.core.exceptions import ValidationError
from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.screening.models import ApplicantProfile, PostalAddress

logger = get_logger(__name__)

REQUIRED_FIELDS = (
    ("applicant_first_name", "first name"),
    ("applicant_last_name", "last name"),
    ("applicant_email", "email"),
)

_ISO_DATE = re.compile(r"^(\d{4})-(\d{1,2})-(\d{1,2})")
_US_DATE = re.compile(r"^(\d{1,2})[/-](\d{1,2})[/-](\d{4})$")


def _clean(value: Any) -> str | None:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def normalize_date_of_birth(value: Any) -> str | None:
    """
    Return value as ISO YYYY-MM-DD, or None if absent or unparseable.

    Accepts date/datetime objects, YYYY-MM-DD (optionally followed by a time),
    MM/DD/YYYY and MM-DD-YYYY.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date().isoformat()
    if isinstance(value, date):
        return value.isoformat()
    text = str(value).strip()
    if not text:
        return None
    match = _ISO_DATE.match(text)
    if match:
        year, month, day = match.groups()
    else:
        match = _US_DATE.match(text)
        if not match:
            return None
        month, day, year = match.groups()
    try:
        return date(int(year), int(month), int(day)).isoformat()
    except ValueError:
        return None


def build_applicant_profile(application: Any) -> ApplicantProfile:
    """
    Build the canonical profile from an application record.

    application is any object exposing the applicant_* attributes of
    ApplicationRecord. Raises ValidationError naming every missing required field.
    """
    missing = [label for attr, label in REQUIRED_FIELDS if not _clean(getattr(application, attr, None))]
    if missing:
        raise ValidationError(
            f"Applicant is missing required field(s): {', '.join(missing)}",
            provider="profile",
        )

    raw_dob = getattr(application, "applicant_dob", None)
    dob = normalize_date_of_birth(raw_dob)
    if raw_dob not in (None, "") and dob is None:
        logger.warning(
            "profile_dob_unparseable",
            application_id=getattr(application, "id", None),
        )

    return ApplicantProfile(
        first_name=_clean(application.applicant_first_name),
        last_name=_clean(application.applicant_last_name),
        email=_clean(application.applicant_email),
        middle_name=_clean(getattr(application, "applicant_middle_name", None)),
        phone=_clean(getattr(application, "applicant_phone", None)),
        tax_id=_clean(getattr(application, "applicant_ssn", None)),
        date_of_birth=dob,
        address=PostalAddress(
            line1=_clean(getattr(application, "applicant_address1", None)),
            line2=_clean(getattr(application, "applicant_address2", None)),
            city=_clean(getattr(application, "applicant_city", None)),
            state=_clean(getattr(application, "applicant_state", None)),
            postal_code=_clean(getattr(application, "applicant_zip", None)),
        ),
        ip_address=_clean(getattr(application, "ip_address", None)),
    )
