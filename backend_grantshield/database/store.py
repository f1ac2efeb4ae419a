"""
Persistence layer for the screening pipeline.

All access goes through the ScreeningStore interface; SQLAlchemyStore is the
default implementation (SQLite file by default, PostgreSQL via DATABASE_URL).
One session per operation, committed on success and rolled back on error.
Returned rows are detached and safe to read after the session closes.
"""

from __future__ import annotations

import time
from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Any, Iterator

from sqlalchemy import create_engine, func, or_
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, sessionmaker

from backend_grantshield.config.env import get_database_url
from backend_grantshield.core.exceptions import ApplicationNotFound
from backend_grantshield.database.models import (
    ApplicationRecord,
    Base,
    CheckResultRecord,
    FraudDecisionRecord,
)
from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.screening.models import (
    RECOMMENDATION_FOR_STATUS,
    TWO_PHASE_CHECKS,
    ApplicationStatus,
    CheckResult,
    CheckStatus,
    CheckType,
    FraudAssessment,
)

logger = get_logger(__name__)

APPLICATION_FIELDS = frozenset(
    c.name for c in ApplicationRecord.__table__.columns if c.name not in ("id", "created_at", "updated_at")
)
CHECK_RESULT_UPDATABLE = frozenset(
    {"status", "score", "risk_level", "flags", "raw_payload", "provider_request_id", "completed_at"}
)


# -----------------------------------------------------------------------------
# Abstract store: swap implementation without touching the pipeline.
# -----------------------------------------------------------------------------


class ScreeningStore(ABC):
    """Persistence operations required by the orchestrator, engine and API."""

    @abstractmethod
    def create_application(self, **fields: Any) -> ApplicationRecord:
        ...

    @abstractmethod
    def get_application(self, application_id: str) -> ApplicationRecord | None:
        ...

    @abstractmethod
    def list_applications(
        self,
        *,
        status: str | None = None,
        program_type: str | None = None,
        risk_level: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[ApplicationRecord], int]:
        """
        Newest applications first plus the total matching count.

        ARCHIVED rows are excluded unless status is given; status "all" disables
        the status filter. risk_level filters on the fraud decision.
        """
        ...

    @abstractmethod
    def archive_application(self, application_id: str) -> ApplicationRecord:
        """Move the application to ARCHIVED. Raises ApplicationNotFound."""
        ...

    @abstractmethod
    def update_application_status(self, application_id: str, status: ApplicationStatus) -> None:
        ...

    @abstractmethod
    def create_check_result(self, application_id: str, result: CheckResult) -> CheckResultRecord:
        ...

    @abstractmethod
    def update_check_result(self, result_id: int, **changes: Any) -> CheckResultRecord:
        ...

    @abstractmethod
    def list_check_results(self, application_id: str) -> list[CheckResultRecord]:
        """All check results for the application, newest first."""
        ...

    @abstractmethod
    def latest_completed_results(self, application_id: str) -> dict[CheckType, CheckResultRecord]:
        """Most recent COMPLETED result per check type."""
        ...

    @abstractmethod
    def list_pending_checks(self, application_id: str) -> list[CheckResultRecord]:
        """PENDING two-phase results awaiting a poll, oldest first."""
        ...

    @abstractmethod
    def list_other_active_applications(self, application_id: str) -> list[ApplicationRecord]:
        """Non-archived applications other than application_id."""
        ...

    @abstractmethod
    def get_fraud_decision(self, application_id: str) -> FraudDecisionRecord | None:
        ...

    @abstractmethod
    def upsert_fraud_decision(
        self,
        application_id: str,
        assessment: FraudAssessment,
        status: ApplicationStatus,
    ) -> FraudDecisionRecord:
        """
        Write the single decision row for the application and set its status,
        in one transaction. Overwrites any previous decision and clears the
        human override fields (overridden_by, override_reason).
        """
        ...

    @abstractmethod
    def record_override(
        self,
        application_id: str,
        reviewer: str,
        reason: str,
        status: ApplicationStatus | None = None,
    ) -> FraudDecisionRecord:
        ...


# -----------------------------------------------------------------------------
# SQLAlchemy implementation
# -----------------------------------------------------------------------------


class SQLAlchemyStore(ScreeningStore):
    """SQLAlchemy store; one session per operation."""

    def __init__(self, url: str) -> None:
        self._url = url
        connect_args: dict[str, Any] = {}
        if url.startswith("sqlite"):
            connect_args["check_same_thread"] = False
        self._engine = create_engine(url, connect_args=connect_args, pool_pre_ping=True)
        self._session_factory = sessionmaker(
            autocommit=False, autoflush=False, expire_on_commit=False, bind=self._engine
        )

    def ensure_schema(self) -> None:
        """Create tables if they do not exist. Safe to call on every startup."""
        Base.metadata.create_all(bind=self._engine)
        logger.info("screening_store_init_db", url=self._url.split("?")[0].split("//")[-1])

    def dispose(self) -> None:
        self._engine.dispose()

    @contextmanager
    def _session_scope(self) -> Iterator[Session]:
        """Single session. Commits on success, rolls back on error."""
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    # --- applications --------------------------------------------------------

    def create_application(self, **fields: Any) -> ApplicationRecord:
        unknown = set(fields) - APPLICATION_FIELDS
        if unknown:
            raise ValueError(f"Unknown application field(s): {', '.join(sorted(unknown))}")
        fields.setdefault("status", ApplicationStatus.PENDING.value)
        with self._session_scope() as session:
            row = ApplicationRecord(**fields)
            session.add(row)
            session.flush()
        logger.info("application_created", application_id=row.id, program_type=row.program_type)
        return row

    def get_application(self, application_id: str) -> ApplicationRecord | None:
        with self._session_scope() as session:
            return session.get(ApplicationRecord, application_id)

    def list_applications(
        self,
        *,
        status: str | None = None,
        program_type: str | None = None,
        risk_level: str | None = None,
        search: str | None = None,
        offset: int = 0,
        limit: int = 20,
    ) -> tuple[list[ApplicationRecord], int]:
        with self._session_scope() as session:
            query = session.query(ApplicationRecord)
            if status is None:
                query = query.filter(ApplicationRecord.status != ApplicationStatus.ARCHIVED.value)
            elif status != "all":
                query = query.filter(ApplicationRecord.status == status)
            if program_type:
                query = query.filter(ApplicationRecord.program_type == program_type)
            if risk_level:
                query = query.join(
                    FraudDecisionRecord, FraudDecisionRecord.application_id == ApplicationRecord.id
                ).filter(FraudDecisionRecord.overall_risk == risk_level)
            if search:
                term = f"%{search.strip().lower()}%"
                query = query.filter(
                    or_(
                        func.lower(ApplicationRecord.applicant_first_name).like(term),
                        func.lower(ApplicationRecord.applicant_last_name).like(term),
                        func.lower(ApplicationRecord.applicant_email).like(term),
                    )
                )
            total = query.count()
            rows = (
                query.order_by(ApplicationRecord.created_at.desc(), ApplicationRecord.id)
                .offset(offset)
                .limit(limit)
                .all()
            )
        return rows, total

    def archive_application(self, application_id: str) -> ApplicationRecord:
        with self._session_scope() as session:
            row = session.get(ApplicationRecord, application_id)
            if row is None:
                raise ApplicationNotFound(application_id)
            row.status = ApplicationStatus.ARCHIVED.value
            row.updated_at = int(time.time())
        logger.info("application_archived", application_id=application_id)
        return row

    def update_application_status(self, application_id: str, status: ApplicationStatus) -> None:
        with self._session_scope() as session:
            updated = (
                session.query(ApplicationRecord)
                .filter(ApplicationRecord.id == application_id)
                .update({"status": ApplicationStatus(status).value, "updated_at": int(time.time())})
            )
        if not updated:
            raise ApplicationNotFound(application_id)
        logger.debug("application_status_updated", application_id=application_id, status=ApplicationStatus(status).value)

    def list_other_active_applications(self, application_id: str) -> list[ApplicationRecord]:
        with self._session_scope() as session:
            return (
                session.query(ApplicationRecord)
                .filter(
                    ApplicationRecord.id != application_id,
                    ApplicationRecord.status != ApplicationStatus.ARCHIVED.value,
                )
                .order_by(ApplicationRecord.created_at)
                .all()
            )

    # --- check results -------------------------------------------------------

    def create_check_result(self, application_id: str, result: CheckResult) -> CheckResultRecord:
        now = int(time.time())
        with self._session_scope() as session:
            row = CheckResultRecord(
                application_id=application_id,
                check_type=result.check_type.value,
                status=result.status.value,
                score=result.score,
                risk_level=result.risk_level.value if result.risk_level else None,
                flags=result.flags_as_dicts(),
                raw_payload=result.raw_payload,
                provider_request_id=result.provider_request_id,
                created_at=now,
                completed_at=now if result.status == CheckStatus.COMPLETED else None,
            )
            session.add(row)
            session.flush()
        logger.debug(
            "check_result_created",
            application_id=application_id,
            check_type=result.check_type.value,
            status=result.status.value,
            result_id=row.id,
        )
        return row

    def update_check_result(self, result_id: int, **changes: Any) -> CheckResultRecord:
        unknown = set(changes) - CHECK_RESULT_UPDATABLE
        if unknown:
            raise ValueError(f"Cannot update check result field(s): {', '.join(sorted(unknown))}")
        with self._session_scope() as session:
            row = session.get(CheckResultRecord, result_id)
            if row is None:
                raise LookupError(f"Check result not found: {result_id}")
            for key, value in changes.items():
                setattr(row, key, value)
        return row

    def list_check_results(self, application_id: str) -> list[CheckResultRecord]:
        with self._session_scope() as session:
            return (
                session.query(CheckResultRecord)
                .filter(CheckResultRecord.application_id == application_id)
                .order_by(CheckResultRecord.created_at.desc(), CheckResultRecord.id.desc())
                .all()
            )

    def latest_completed_results(self, application_id: str) -> dict[CheckType, CheckResultRecord]:
        with self._session_scope() as session:
            rows = (
                session.query(CheckResultRecord)
                .filter(
                    CheckResultRecord.application_id == application_id,
                    CheckResultRecord.status == CheckStatus.COMPLETED.value,
                )
                .order_by(CheckResultRecord.created_at.desc(), CheckResultRecord.id.desc())
                .all()
            )
        latest: dict[CheckType, CheckResultRecord] = {}
        for row in rows:
            latest.setdefault(CheckType(row.check_type), row)
        return latest

    def list_pending_checks(self, application_id: str) -> list[CheckResultRecord]:
        with self._session_scope() as session:
            return (
                session.query(CheckResultRecord)
                .filter(
                    CheckResultRecord.application_id == application_id,
                    CheckResultRecord.status == CheckStatus.PENDING.value,
                    CheckResultRecord.check_type.in_([t.value for t in TWO_PHASE_CHECKS]),
                )
                .order_by(CheckResultRecord.created_at, CheckResultRecord.id)
                .all()
            )

    # --- fraud decisions -----------------------------------------------------

    def get_fraud_decision(self, application_id: str) -> FraudDecisionRecord | None:
        with self._session_scope() as session:
            return (
                session.query(FraudDecisionRecord)
                .filter(FraudDecisionRecord.application_id == application_id)
                .one_or_none()
            )

    def upsert_fraud_decision(
        self,
        application_id: str,
        assessment: FraudAssessment,
        status: ApplicationStatus,
    ) -> FraudDecisionRecord:
        now = int(time.time())
        values = {
            "overall_score": assessment.overall_score,
            "overall_risk": assessment.overall_risk.value,
            "recommendation": assessment.recommendation.value,
            "factors": [f.to_dict() for f in assessment.factors],
            "signals": [s.to_dict() for s in assessment.signals],
            "category_scores": dict(assessment.category_scores),
            "overridden_by": None,
            "override_reason": None,
            "decided_at": now,
        }
        # A concurrent writer from another process can win the insert; retry once as an update.
        for attempt in range(2):
            try:
                with self._session_scope() as session:
                    row = (
                        session.query(FraudDecisionRecord)
                        .filter(FraudDecisionRecord.application_id == application_id)
                        .one_or_none()
                    )
                    if row is None:
                        row = FraudDecisionRecord(application_id=application_id, **values)
                        session.add(row)
                    else:
                        for key, value in values.items():
                            setattr(row, key, value)
                    updated = (
                        session.query(ApplicationRecord)
                        .filter(ApplicationRecord.id == application_id)
                        .update({"status": ApplicationStatus(status).value, "updated_at": now})
                    )
                    if not updated:
                        raise ApplicationNotFound(application_id)
                    session.flush()
                logger.info(
                    "fraud_decision_upserted",
                    application_id=application_id,
                    overall_score=assessment.overall_score,
                    recommendation=assessment.recommendation.value,
                )
                return row
            except IntegrityError:
                if attempt:
                    raise
                logger.info("fraud_decision_upsert_conflict", application_id=application_id)
        raise RuntimeError("unreachable")

    def record_override(
        self,
        application_id: str,
        reviewer: str,
        reason: str,
        status: ApplicationStatus | None = None,
    ) -> FraudDecisionRecord:
        with self._session_scope() as session:
            row = (
                session.query(FraudDecisionRecord)
                .filter(FraudDecisionRecord.application_id == application_id)
                .one_or_none()
            )
            if row is None:
                raise LookupError(f"No fraud decision for application: {application_id}")
            row.overridden_by = reviewer
            row.override_reason = reason
            if status is not None:
                status = ApplicationStatus(status)
                recommendation = RECOMMENDATION_FOR_STATUS.get(status)
                if recommendation is not None:
                    row.recommendation = recommendation.value
                session.query(ApplicationRecord).filter(ApplicationRecord.id == application_id).update(
                    {"status": status.value, "updated_at": int(time.time())}
                )
        logger.info("fraud_decision_overridden", application_id=application_id, reviewer=reviewer)
        return row


def get_store(url: str | None = None) -> SQLAlchemyStore:
    """Return a store for url (default from DATABASE_URL / DB_PATH) with tables created."""
    store = SQLAlchemyStore(url or get_database_url())
    store.ensure_schema()
    return store
