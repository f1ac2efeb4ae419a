"""
SQLAlchemy models for applications, check results and fraud decisions.

Timestamps are Unix seconds. JSON columns hold flags, payloads, factors and
signals as plain lists/dicts.
"""

from __future__ import annotations

import time
import uuid
from typing import Any

from sqlalchemy import JSON, Column, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import declarative_base

Base = declarative_base()


def _new_id() -> str:
    return uuid.uuid4().hex


def _now() -> int:
    return int(time.time())


class ApplicationRecord(Base):
    """Grant/rebate application with applicant identity fields and workflow status."""

    __tablename__ = "applications"

    id = Column(String(32), primary_key=True, default=_new_id)
    program_type = Column(String(64), nullable=True)
    requested_amount = Column(Float, nullable=False, default=0.0)
    status = Column(String(16), nullable=False, default="PENDING", index=True)

    applicant_first_name = Column(String(128), nullable=True)
    applicant_middle_name = Column(String(128), nullable=True)
    applicant_last_name = Column(String(128), nullable=True)
    applicant_email = Column(String(256), nullable=True, index=True)
    applicant_phone = Column(String(32), nullable=True)
    applicant_ssn = Column(String(16), nullable=True, index=True)
    applicant_dob = Column(String(32), nullable=True)
    applicant_address1 = Column(String(256), nullable=True)
    applicant_address2 = Column(String(256), nullable=True)
    applicant_city = Column(String(128), nullable=True)
    applicant_state = Column(String(32), nullable=True)
    applicant_zip = Column(String(16), nullable=True)
    ip_address = Column(String(64), nullable=True)

    created_at = Column(Integer, nullable=False, default=_now)
    updated_at = Column(Integer, nullable=False, default=_now, onupdate=_now)

    def to_dict(self) -> dict[str, Any]:
        """Public view; the tax id is masked to its last four digits."""
        ssn = self.applicant_ssn or ""
        return {
            "id": self.id,
            "program_type": self.program_type,
            "requested_amount": self.requested_amount,
            "status": self.status,
            "applicant_first_name": self.applicant_first_name,
            "applicant_middle_name": self.applicant_middle_name,
            "applicant_last_name": self.applicant_last_name,
            "applicant_email": self.applicant_email,
            "applicant_phone": self.applicant_phone,
            "applicant_ssn_last4": ssn[-4:] if ssn else None,
            "applicant_dob": self.applicant_dob,
            "applicant_address1": self.applicant_address1,
            "applicant_address2": self.applicant_address2,
            "applicant_city": self.applicant_city,
            "applicant_state": self.applicant_state,
            "applicant_zip": self.applicant_zip,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class CheckResultRecord(Base):
    """
    One verification call outcome. Append-only history; only two-phase checks
    are updated in place (PENDING -> COMPLETED).
    """

    __tablename__ = "check_results"

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(String(32), ForeignKey("applications.id"), nullable=False, index=True)
    check_type = Column(String(16), nullable=False, index=True)
    status = Column(String(16), nullable=False, index=True)
    score = Column(Float, nullable=True)
    risk_level = Column(String(16), nullable=True)
    flags = Column(JSON, nullable=False, default=list)
    raw_payload = Column(JSON, nullable=False, default=dict)
    provider_request_id = Column(String(128), nullable=True)
    created_at = Column(Integer, nullable=False, default=_now)
    completed_at = Column(Integer, nullable=True)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "check_type": self.check_type,
            "status": self.status,
            "score": self.score,
            "risk_level": self.risk_level,
            "flags": list(self.flags or []),
            "raw_payload": dict(self.raw_payload or {}),
            "provider_request_id": self.provider_request_id,
            "created_at": self.created_at,
            "completed_at": self.completed_at,
        }


class FraudDecisionRecord(Base):
    """Single live fraud decision per application; recomputation overwrites it."""

    __tablename__ = "fraud_decisions"
    __table_args__ = (UniqueConstraint("application_id", name="uq_fraud_decisions_application"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    application_id = Column(String(32), ForeignKey("applications.id"), nullable=False, index=True)
    overall_score = Column(Integer, nullable=False)
    overall_risk = Column(String(16), nullable=False)
    recommendation = Column(String(16), nullable=False)
    factors = Column(JSON, nullable=False, default=list)
    signals = Column(JSON, nullable=False, default=list)
    category_scores = Column(JSON, nullable=False, default=dict)
    overridden_by = Column(String(128), nullable=True)
    override_reason = Column(String(1024), nullable=True)
    decided_at = Column(Integer, nullable=False, default=_now)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "application_id": self.application_id,
            "overall_score": self.overall_score,
            "overall_risk": self.overall_risk,
            "recommendation": self.recommendation,
            "factors": list(self.factors or []),
            "signals": list(self.signals or []),
            "category_scores": dict(self.category_scores or {}),
            "overridden_by": self.overridden_by,
            "override_reason": self.override_reason,
            "decided_at": self.decided_at,
        }
