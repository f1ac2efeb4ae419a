"""
Screening orchestrator: runs the verification pipeline for one application.

Identity and fraud-signal checks (plus credit above the amount threshold) run
concurrently with the duplicate scan; every outcome is persisted as a check
result, provider failures are recorded per check and never abort the run, and
the decision engine joins this run's completed results into one fraud decision.

Runs for the same application are serialized with a per-application lock;
different applications proceed in parallel. The store is synchronous
SQLAlchemy, so every store and engine call is pushed to a worker thread to
keep the event loop free while provider calls are in flight.
"""

from __future__ import annotations

import asyncio
import time
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Callable, Mapping, TypeVar

from backend_grantshield.analysis_engine.decision import FraudDecisionEngine
from backend_grantshield.analysis_engine.duplicates import DuplicateDetector, DuplicateReport
from backend_grantshield.config.settings import DEFAULT_CREDIT_CHECK_THRESHOLD
from backend_grantshield.core.exceptions import (
    ApplicationNotFound,
    NotReadyError,
    ProviderError,
    ScreeningNotAllowed,
    ValidationError,
)
from backend_grantshield.database.models import ApplicationRecord, CheckResultRecord
from backend_grantshield.database.store import ScreeningStore
from backend_grantshield.grantshield_logging import bind_application
from backend_grantshield.providers.background import BackgroundCheckAdapter
from backend_grantshield.providers.base import VerificationAdapter
from backend_grantshield.screening.models import (
    TWO_PHASE_CHECKS,
    ApplicantProfile,
    ApplicationStatus,
    CheckResult,
    CheckStatus,
    CheckType,
    ScreeningRun,
)
from backend_grantshield.screening.profile import build_applicant_profile

T = TypeVar("T")


async def _in_thread(func: Callable[..., T], *args: Any, **kwargs: Any) -> T:
    return await asyncio.to_thread(func, *args, **kwargs)


class ScreeningOrchestrator:
    """
    Entry points for the application-management layer:

    - run_full_screening(application_id) -> ScreeningRun
    - run_single_check(application_id, check_type) -> CheckResultRecord
    - poll_pending_checks(application_id) -> list[CheckResultRecord]
    - list_check_results(application_id) -> list[CheckResultRecord]
    """

    def __init__(
        self,
        store: ScreeningStore,
        adapters: Mapping[CheckType, VerificationAdapter],
        engine: FraudDecisionEngine | None = None,
        *,
        credit_threshold: float = DEFAULT_CREDIT_CHECK_THRESHOLD,
        detector: DuplicateDetector | None = None,
    ) -> None:
        self._store = store
        self._adapters = dict(adapters)
        self._detector = detector or DuplicateDetector(store)
        self._engine = engine or FraudDecisionEngine(store, self._detector)
        self._credit_threshold = credit_threshold
        # application id -> (lock, number of holders and waiters)
        self._locks: dict[str, tuple[asyncio.Lock, int]] = {}

    @property
    def active_locks(self) -> int:
        """Applications that currently hold or wait for their screening lock."""
        return len(self._locks)

    # --- entry points --------------------------------------------------------

    async def run_full_screening(self, application_id: str) -> ScreeningRun:
        async with self._application_lock(application_id):
            return await self._run_full(application_id)

    async def run_single_check(self, application_id: str, check_type: CheckType | str) -> CheckResultRecord:
        """Run one check with the same per-adapter semantics; no decision is computed."""
        if not isinstance(check_type, CheckType):
            check_type = CheckType.parse(check_type)
        async with self._application_lock(application_id):
            application = await self._load_screenable(application_id)
            profile = build_applicant_profile(application)
            if check_type in TWO_PHASE_CHECKS:
                return await self._start_two_phase(application_id, check_type, profile)
            record, _ = await self._run_step(application_id, check_type, profile)
            return record

    async def poll_pending_checks(self, application_id: str) -> list[CheckResultRecord]:
        """Re-poll PENDING criminal/eviction results; called by an external scheduler."""
        async with self._application_lock(application_id):
            if await _in_thread(self._store.get_application, application_id) is None:
                raise ApplicationNotFound(application_id)
            pending = await _in_thread(self._store.list_pending_checks, application_id)
            return [await self._poll_record(application_id, record) for record in pending]

    def list_check_results(self, application_id: str) -> list[CheckResultRecord]:
        if self._store.get_application(application_id) is None:
            raise ApplicationNotFound(application_id)
        return self._store.list_check_results(application_id)

    @asynccontextmanager
    async def _application_lock(self, application_id: str) -> AsyncIterator[None]:
        """Per-application lock; the entry is dropped once nobody holds or waits for it."""
        lock, users = self._locks.get(application_id, (None, 0))
        if lock is None:
            lock = asyncio.Lock()
        self._locks[application_id] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[application_id]
            if users <= 1:
                del self._locks[application_id]
            else:
                self._locks[application_id] = (lock, users - 1)

    # --- full pipeline -------------------------------------------------------

    async def _run_full(self, application_id: str) -> ScreeningRun:
        log = bind_application(application_id, __name__)
        application = await self._load_screenable(application_id)
        profile = build_applicant_profile(application)

        await _in_thread(self._store.update_application_status, application_id, ApplicationStatus.SCREENING)
        log.info("screening_started", requested_amount=application.requested_amount)

        steps = [CheckType.IDENTITY, CheckType.FRAUD]
        if self._credit_required(application):
            steps.append(CheckType.CREDIT)
        else:
            log.info(
                "credit_check_skipped",
                requested_amount=application.requested_amount,
                threshold=self._credit_threshold,
            )

        outcomes = await asyncio.gather(
            *(self._run_step(application_id, step, profile) for step in steps),
            self._scan_duplicates(application),
            return_exceptions=True,
        )
        unexpected = [o for o in outcomes if isinstance(o, BaseException)]
        if unexpected:
            raise unexpected[0]

        run = ScreeningRun(application_id=application_id)
        completed: dict[CheckType, CheckResultRecord] = {}
        for step, (record, error) in zip(steps, outcomes[:-1]):
            run.results[step.key] = record.to_dict()
            if error is not None:
                run.errors[step.key] = error
            elif record.status == CheckStatus.COMPLETED.value:
                completed[step] = record
        duplicates, duplicate_error = outcomes[-1]
        if duplicate_error is not None:
            run.errors["duplicate"] = duplicate_error

        try:
            run.assessment = await _in_thread(self._engine.decide, application_id, duplicates, completed)
        except Exception as e:
            log.exception("fraud_assessment_failed", error=str(e))
            run.errors["assessment"] = str(e)

        log.info(
            "screening_completed",
            checks=[s.key for s in steps],
            failed=sorted(run.errors),
            overall_score=run.assessment.overall_score if run.assessment else None,
        )
        return run

    def _credit_required(self, application: ApplicationRecord) -> bool:
        return float(application.requested_amount or 0) > self._credit_threshold

    async def _scan_duplicates(self, application: ApplicationRecord) -> tuple[DuplicateReport, str | None]:
        try:
            return await _in_thread(self._detector.scan, application), None
        except Exception as e:
            bind_application(application.id, __name__).exception("duplicate_scan_failed", error=str(e))
            return DuplicateReport(), str(e)

    # --- single steps --------------------------------------------------------

    def _adapter(self, check_type: CheckType) -> VerificationAdapter:
        adapter = self._adapters.get(check_type)
        if adapter is None:
            raise ValidationError(f"No adapter configured for {check_type.key} checks", provider=check_type.key)
        return adapter

    async def _run_step(
        self,
        application_id: str,
        check_type: CheckType,
        profile: ApplicantProfile,
    ) -> tuple[CheckResultRecord, str | None]:
        """Invoke one adapter and persist its outcome; returns (record, error message or None)."""
        log = bind_application(application_id, __name__)
        started = time.monotonic()
        try:
            result = await self._adapter(check_type).invoke(profile)
        except ProviderError as e:
            return await self._record_failure(application_id, check_type, e), e.message
        record = await _in_thread(self._store.create_check_result, application_id, result)
        log.info(
            "screening_step_completed",
            check_type=check_type.key,
            status=result.status.value,
            score=result.score,
            duration_ms=int((time.monotonic() - started) * 1000),
        )
        return record, None

    async def _record_failure(
        self,
        application_id: str,
        check_type: CheckType,
        error: ProviderError,
    ) -> CheckResultRecord:
        bind_application(application_id, __name__).warning(
            "screening_step_failed",
            check_type=check_type.key,
            error_kind=error.kind.value,
            http_status=error.http_status,
            error=error.message,
        )
        return await _in_thread(
            self._store.create_check_result,
            application_id,
            CheckResult(check_type=check_type, status=CheckStatus.ERROR, raw_payload={"error": error.message}),
        )

    async def _start_two_phase(
        self,
        application_id: str,
        check_type: CheckType,
        profile: ApplicantProfile,
    ) -> CheckResultRecord:
        adapter = self._adapter(check_type)
        if not isinstance(adapter, BackgroundCheckAdapter):
            raise TypeError(f"{check_type.key} adapter does not support submit/poll")
        try:
            request_id = await adapter.submit(profile)
        except ProviderError as e:
            return await self._record_failure(application_id, check_type, e)
        record = await _in_thread(
            self._store.create_check_result,
            application_id,
            CheckResult(
                check_type=check_type,
                status=CheckStatus.PENDING,
                raw_payload={"request_id": request_id},
                provider_request_id=request_id,
            ),
        )
        return await self._poll_record(application_id, record)

    async def _poll_record(self, application_id: str, record: CheckResultRecord) -> CheckResultRecord:
        """Poll once; COMPLETED on success, otherwise the row stays PENDING."""
        log = bind_application(application_id, __name__)
        check_type = CheckType(record.check_type)
        adapter = self._adapter(check_type)
        try:
            result = await adapter.poll(record.provider_request_id)
        except NotReadyError:
            log.info("background_check_pending", check_type=check_type.key, request_id=record.provider_request_id)
            return record
        except ProviderError as e:
            log.warning(
                "background_check_poll_failed",
                check_type=check_type.key,
                request_id=record.provider_request_id,
                error_kind=e.kind.value,
                error=e.message,
            )
            payload: dict[str, Any] = dict(record.raw_payload or {})
            payload["last_poll_error"] = e.message
            return await _in_thread(self._store.update_check_result, record.id, raw_payload=payload)

        updated = await _in_thread(
            self._store.update_check_result,
            record.id,
            status=CheckStatus.COMPLETED.value,
            score=result.score,
            risk_level=result.risk_level.value if result.risk_level else None,
            flags=result.flags_as_dicts(),
            raw_payload=result.raw_payload,
            completed_at=int(time.time()),
        )
        log.info("background_check_completed", check_type=check_type.key, score=result.score)
        return updated

    # --- helpers -------------------------------------------------------------

    async def _load_screenable(self, application_id: str) -> ApplicationRecord:
        application = await _in_thread(self._store.get_application, application_id)
        if application is None:
            raise ApplicationNotFound(application_id)
        if application.status == ApplicationStatus.ARCHIVED.value:
            raise ScreeningNotAllowed(application_id, application.status)
        return application
