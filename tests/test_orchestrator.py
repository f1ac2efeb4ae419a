"""
Tests for the screening orchestrator: full pipeline, per-check failure
isolation, credit threshold, single checks and two-phase polling.
"""

from __future__ import annotations

import asyncio
import threading

import pytest

from backend_grantshield.core.exceptions import (
    ApplicationNotFound,
    ScreeningNotAllowed,
    ValidationError,
)
from backend_grantshield.providers.client import ProviderHTTPError
from backend_grantshield.providers.background import CriminalAdapter, EvictionAdapter
from backend_grantshield.providers.credit import CreditAdapter
from backend_grantshield.providers.fraud_signal import FraudSignalAdapter
from backend_grantshield.providers.identity import IdentityAdapter
from backend_grantshield.screening.models import ApplicationStatus, CheckType
from backend_grantshield.screening.orchestrator import ScreeningOrchestrator

IDENTITY_OK = {"cviScore": 45, "riskIndicators": []}
FRAUD_OK = {"risk": {"score": 10}}
CREDIT_OK = {"scores": [{"model": "VantageScore4", "value": 720}], "tradelines": [], "publicRecords": []}


class Pipeline:
    """Orchestrator wired to scripted clients, one per check type."""

    def __init__(self, store, fake_client, *, identity=(IDENTITY_OK,), fraud=(FRAUD_OK,), credit=(),
                 criminal=(), criminal_fetch=(), eviction=(), eviction_fetch=(), timeout_sec=5.0, engine=None,
                 credit_threshold=10_000):
        self.clients = {
            CheckType.IDENTITY: fake_client(*identity),
            CheckType.FRAUD: fake_client(*fraud),
            CheckType.CREDIT: fake_client(*credit),
            CheckType.CRIMINAL: fake_client(*criminal, fetch=criminal_fetch),
            CheckType.EVICTION: fake_client(*eviction, fetch=eviction_fetch),
        }
        adapters = {
            CheckType.IDENTITY: IdentityAdapter(self.clients[CheckType.IDENTITY], timeout_sec=timeout_sec),
            CheckType.FRAUD: FraudSignalAdapter(self.clients[CheckType.FRAUD], timeout_sec=timeout_sec),
            CheckType.CREDIT: CreditAdapter(self.clients[CheckType.CREDIT], timeout_sec=timeout_sec),
            CheckType.CRIMINAL: CriminalAdapter(self.clients[CheckType.CRIMINAL], timeout_sec=timeout_sec),
            CheckType.EVICTION: EvictionAdapter(self.clients[CheckType.EVICTION], timeout_sec=timeout_sec),
        }
        self.orchestrator = ScreeningOrchestrator(store, adapters, engine, credit_threshold=credit_threshold)

    def calls(self, check_type):
        return len(self.clients[check_type].requests)

    def run(self, application_id):
        return asyncio.run(self.orchestrator.run_full_screening(application_id))


def test_full_screening_clean_applicant(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(store, fake_client)

    run = pipeline.run(app.id)

    assert set(run.results) == {"identity", "fraud"}
    assert run.results["identity"]["status"] == "COMPLETED"
    assert run.results["fraud"]["raw_payload"]["risk_score"] == 1
    assert run.errors == {}
    assert "errors" not in run.to_dict()
    assert run.assessment.overall_score == 0
    assert run.assessment.recommendation.value == "APPROVE"
    assert store.get_application(app.id).status == ApplicationStatus.APPROVED.value
    assert pipeline.calls(CheckType.CREDIT) == 0
    assert len(store.list_check_results(app.id)) == 2


@pytest.mark.parametrize("amount, expect_credit", [(10_000.0, False), (10_000.01, True), (25_000.0, True)])
def test_credit_check_threshold(store, make_application, fake_client, amount, expect_credit):
    app = make_application(requested_amount=amount)
    pipeline = Pipeline(store, fake_client, credit=(CREDIT_OK,))

    run = pipeline.run(app.id)

    assert ("credit" in run.results) is expect_credit
    assert pipeline.calls(CheckType.CREDIT) == int(expect_credit)
    assert ("credit" in run.assessment.weights) is expect_credit


def test_provider_failure_is_recorded_not_raised(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(store, fake_client, fraud=(ProviderHTTPError(503, "Service Unavailable"),))

    run = pipeline.run(app.id)

    assert run.errors == {"fraud": "fraud_signal error (HTTP 503): Service Unavailable"}
    assert run.results["fraud"]["status"] == "ERROR"
    assert run.results["fraud"]["raw_payload"] == {"error": run.errors["fraud"]}
    assert run.results["identity"]["status"] == "COMPLETED"
    assert "Fraud check was not performed" in [f.description for f in run.assessment.factors]
    assert run.to_dict()["errors"]["fraud"].startswith("fraud_signal error")


def test_every_step_failing_still_decides(store, make_application, fake_client):
    app = make_application(requested_amount=50_000.0)
    pipeline = Pipeline(
        store,
        fake_client,
        identity=(ProviderHTTPError(None, "connection reset"),),
        fraud=(ProviderHTTPError(500, "Internal Server Error"),),
        credit=(ProviderHTTPError(400, "Invalid subject"),),
    )

    run = pipeline.run(app.id)

    assert set(run.errors) == {"identity", "fraud", "credit"}
    assert run.assessment.overall_score == 0
    assert store.get_fraud_decision(app.id) is not None


def test_rerun_keeps_one_decision_and_clears_override(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(
        store,
        fake_client,
        identity=(IDENTITY_OK, {"cviScore": 12}),
        fraud=(FRAUD_OK, {"riskScore": 90, "ipAnalysis": {"VPN": True}}),
    )

    pipeline.run(app.id)
    store.record_override(app.id, "analyst", "looked fine")
    second = pipeline.run(app.id)

    decision = store.get_fraud_decision(app.id)
    assert decision.overall_score == second.assessment.overall_score
    assert decision.overridden_by is None
    assert len(store.list_check_results(app.id)) == 4
    # identity 35 and fraud 45 over the redistributed weights
    assert second.assessment.overall_score == 33
    assert store.get_application(app.id).status == ApplicationStatus.REVIEWED.value


def test_rerun_with_every_step_failing_ignores_earlier_results(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(
        store,
        fake_client,
        identity=({"cviScore": 12}, ProviderHTTPError(500, "Internal Server Error")),
        fraud=({"riskScore": 90, "ipAnalysis": {"VPN": True}}, ProviderHTTPError(500, "Internal Server Error")),
    )

    first = pipeline.run(app.id)
    second = pipeline.run(app.id)

    assert first.assessment.overall_score == 33
    assert set(second.errors) == {"identity", "fraud"}
    assert second.assessment.overall_score == 0
    descriptions = [f.description for f in second.assessment.factors]
    assert "Identity verification was not performed" in descriptions
    assert "Fraud check was not performed" in descriptions
    assert store.get_fraud_decision(app.id).overall_score == 0
    assert store.get_application(app.id).status == ApplicationStatus.APPROVED.value


def test_rerun_below_credit_threshold_drops_earlier_credit(store, make_application, fake_client):
    app = make_application(requested_amount=50_000.0)
    Pipeline(store, fake_client, credit=(CREDIT_OK,)).run(app.id)
    raised = Pipeline(store, fake_client, credit_threshold=100_000)

    run = raised.run(app.id)

    assert raised.calls(CheckType.CREDIT) == 0
    assert "credit" not in run.results
    assert set(run.assessment.weights) == {"identity", "fraud", "duplicate"}
    assert "credit" not in store.get_fraud_decision(app.id).to_dict()["category_scores"]


def test_archived_application_is_rejected(store, make_application, fake_client):
    app = make_application()
    store.archive_application(app.id)
    pipeline = Pipeline(store, fake_client)

    with pytest.raises(ScreeningNotAllowed):
        pipeline.run(app.id)
    assert pipeline.calls(CheckType.IDENTITY) == 0
    assert store.get_application(app.id).status == ApplicationStatus.ARCHIVED.value


def test_unknown_application(store, fake_client):
    pipeline = Pipeline(store, fake_client)
    with pytest.raises(ApplicationNotFound):
        pipeline.run("does-not-exist")
    with pytest.raises(ApplicationNotFound):
        pipeline.orchestrator.list_check_results("does-not-exist")


def test_incomplete_profile_makes_no_calls(store, make_application, fake_client):
    app = make_application(applicant_email=None)
    pipeline = Pipeline(store, fake_client)

    with pytest.raises(ValidationError, match="email"):
        pipeline.run(app.id)
    assert pipeline.calls(CheckType.IDENTITY) == 0
    assert pipeline.calls(CheckType.FRAUD) == 0
    assert store.get_application(app.id).status == ApplicationStatus.PENDING.value


def test_timeout_is_recorded_as_network_error(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(store, fake_client, identity=(0.5,), fraud=(FRAUD_OK,), timeout_sec=0.05)

    run = pipeline.run(app.id)

    assert "timed out" in run.errors["identity"]
    assert run.results["fraud"]["status"] == "COMPLETED"


def test_assessment_failure_is_reported(store, make_application, fake_client):
    class BrokenEngine:
        def decide(self, application_id, duplicates=None, results=None):
            raise RuntimeError("decision store unavailable")

    app = make_application()
    pipeline = Pipeline(store, fake_client, engine=BrokenEngine())

    run = pipeline.run(app.id)

    assert run.assessment is None
    assert run.errors == {"assessment": "decision store unavailable"}
    assert run.to_dict()["assessment"] is None


def test_duplicates_feed_the_decision(store, make_application, fake_client):
    make_application(applicant_first_name="John")
    app = make_application()
    pipeline = Pipeline(store, fake_client)

    run = pipeline.run(app.id)

    # tax id with a different name 50, address 20, email 15, phone 10
    assert run.assessment.category_scores["duplicate"] == 95
    assert {s.type for s in run.assessment.signals} >= {"ssn_name_mismatch", "duplicate_email"}


def test_concurrent_runs_are_serialized(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(store, fake_client, identity=(IDENTITY_OK, IDENTITY_OK), fraud=(FRAUD_OK, FRAUD_OK))

    async def both():
        return await asyncio.gather(
            pipeline.orchestrator.run_full_screening(app.id),
            pipeline.orchestrator.run_full_screening(app.id),
        )

    first, second = asyncio.run(both())

    assert first.assessment.overall_score == second.assessment.overall_score == 0
    assert len(store.list_check_results(app.id)) == 4
    assert store.get_fraud_decision(app.id).overall_score == 0
    assert pipeline.orchestrator.active_locks == 0


def test_application_locks_are_released(store, make_application, fake_client):
    apps = [make_application(applicant_email=f"applicant{i}@example.com") for i in range(3)]
    pipeline = Pipeline(store, fake_client, identity=(IDENTITY_OK,) * 3, fraud=(FRAUD_OK,) * 3)

    async def all_runs():
        return await asyncio.gather(*(pipeline.orchestrator.run_full_screening(a.id) for a in apps))

    runs = asyncio.run(all_runs())

    assert len(runs) == 3
    assert pipeline.orchestrator.active_locks == 0
    with pytest.raises(ApplicationNotFound):
        asyncio.run(pipeline.orchestrator.run_full_screening("missing"))
    assert pipeline.orchestrator.active_locks == 0


# ---- single checks ----


def test_single_check_does_not_decide(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(store, fake_client)

    record = asyncio.run(pipeline.orchestrator.run_single_check(app.id, "identity"))

    assert record.check_type == "IDENTITY"
    assert record.status == "COMPLETED"
    assert store.get_fraud_decision(app.id) is None
    assert store.get_application(app.id).status == ApplicationStatus.PENDING.value


def test_single_check_invalid_type(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(store, fake_client)
    with pytest.raises(ValueError, match="Invalid screening type"):
        asyncio.run(pipeline.orchestrator.run_single_check(app.id, "horoscope"))


def test_two_phase_check_pending_then_completed(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(
        store,
        fake_client,
        criminal=({"id": "req-42"},),
        criminal_fetch=(
            ProviderHTTPError(404, "Not Found"),
            {"status": "complete", "candidates": [{"name": "Jane Doe", "offenses": [{"description": "Theft"}]}]},
        ),
    )

    pending = asyncio.run(pipeline.orchestrator.run_single_check(app.id, CheckType.CRIMINAL))
    assert pending.status == "PENDING"
    assert pending.provider_request_id == "req-42"

    polled = asyncio.run(pipeline.orchestrator.poll_pending_checks(app.id))

    assert [r.id for r in polled] == [pending.id]
    assert polled[0].status == "COMPLETED"
    assert polled[0].raw_payload["offense_count"] == 1
    assert polled[0].completed_at is not None
    assert len(store.list_check_results(app.id)) == 1
    assert pipeline.clients[CheckType.CRIMINAL].fetched == ["req-42", "req-42"]


def test_two_phase_poll_failure_stays_pending(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(
        store,
        fake_client,
        eviction=({"requestId": "ev-1"},),
        eviction_fetch=(ProviderHTTPError(404, "Not Found"), ProviderHTTPError(500, "Internal Server Error")),
    )

    asyncio.run(pipeline.orchestrator.run_single_check(app.id, "eviction"))
    polled = asyncio.run(pipeline.orchestrator.poll_pending_checks(app.id))

    assert polled[0].status == "PENDING"
    assert polled[0].raw_payload["request_id"] == "ev-1"
    assert "HTTP 500" in polled[0].raw_payload["last_poll_error"]
    assert [r.id for r in store.list_pending_checks(app.id)] == [polled[0].id]


def test_two_phase_submit_failure_is_error_row(store, make_application, fake_client):
    app = make_application()
    pipeline = Pipeline(store, fake_client, criminal=(ProviderHTTPError(400, "Bad subject"),))

    record = asyncio.run(pipeline.orchestrator.run_single_check(app.id, "criminal"))

    assert record.status == "ERROR"
    assert store.list_pending_checks(app.id) == []


def test_store_writes_run_off_the_event_loop_thread(store, make_application, fake_client, monkeypatch):
    app = make_application()
    pipeline = Pipeline(store, fake_client)
    threads = []
    create = store.create_check_result

    def recording_create(application_id, result):
        threads.append(threading.get_ident())
        return create(application_id, result)

    monkeypatch.setattr(store, "create_check_result", recording_create)

    pipeline.run(app.id)

    assert len(threads) == 2
    assert threading.get_ident() not in threads
