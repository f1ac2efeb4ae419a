"""
FastAPI server: application intake and screening endpoints.

Routes:
- GET  /health
- POST /applications, GET /applications (filters + pagination)
- GET /applications/{id}, PATCH /applications/{id} (status / reviewer override)
- DELETE /applications/{id} (archive)
- POST /screening/{id}/run                  full pipeline + fraud decision
- POST /screening/{id}/run/{check_type}     single check, no decision
- POST /screening/{id}/poll                 re-poll pending criminal/eviction checks
- GET  /screening/{id}/results, GET /screening/{id}/decision

Config via env (see backend_grantshield.config).
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from functools import lru_cache
from typing import Any

import httpx
from fastapi import Depends, FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from backend_grantshield.config import get_settings
from backend_grantshield.core.exceptions import (
    ApplicationNotFound,
    ScreeningNotAllowed,
    ValidationError,
)
from backend_grantshield.database import ScreeningStore
from backend_grantshield.database import get_store as open_store
from backend_grantshield.grantshield_logging import get_logger
from backend_grantshield.providers import build_default_adapters
from backend_grantshield.screening.models import ApplicationStatus, CheckType
from backend_grantshield.screening.orchestrator import ScreeningOrchestrator

logger = get_logger(__name__)

_provider_http: httpx.AsyncClient | None = None


# -----------------------------------------------------------------------------
# Dependencies (app-scoped singletons; override in tests)
# -----------------------------------------------------------------------------


@lru_cache(maxsize=1)
def get_store() -> ScreeningStore:
    return open_store(get_settings().database_url)


@lru_cache(maxsize=1)
def get_orchestrator() -> ScreeningOrchestrator:
    global _provider_http
    settings = get_settings()
    _provider_http = httpx.AsyncClient(timeout=httpx.Timeout(settings.provider_timeout_sec))
    return ScreeningOrchestrator(
        get_store(),
        build_default_adapters(settings, _provider_http),
        credit_threshold=settings.credit_check_threshold,
    )


# -----------------------------------------------------------------------------
# Request / response models
# -----------------------------------------------------------------------------


class ApplicationCreate(BaseModel):
    """POST /applications body."""

    program_type: str | None = None
    requested_amount: float = Field(0.0, ge=0)
    applicant_first_name: str = Field(..., min_length=1)
    applicant_last_name: str = Field(..., min_length=1)
    applicant_email: str = Field(..., min_length=3)
    applicant_middle_name: str | None = None
    applicant_phone: str | None = None
    applicant_ssn: str | None = None
    applicant_dob: str | None = None
    applicant_address1: str | None = None
    applicant_address2: str | None = None
    applicant_city: str | None = None
    applicant_state: str | None = None
    applicant_zip: str | None = None
    ip_address: str | None = None


class ApplicationUpdate(BaseModel):
    """PATCH /applications/{id} body."""

    status: ApplicationStatus | None = None
    overridden_by: str | None = Field(None, min_length=1)
    override_reason: str | None = None


class HealthResponse(BaseModel):
    status: str


class CheckResultList(BaseModel):
    application_id: str
    results: list[dict[str, Any]]


# -----------------------------------------------------------------------------
# App
# -----------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Create tables on startup; close the shared provider HTTP client on shutdown."""
    settings = get_settings()
    get_store()
    if not settings.has_provider_credentials:
        logger.warning("api_provider_credentials_missing", base_url=settings.crs_base_url)
    logger.info("api_started", base_url=settings.crs_base_url)
    yield
    if _provider_http is not None:
        await _provider_http.aclose()
    logger.info("api_stopped")


app = FastAPI(
    title="GrantShield Screening API",
    description="Fraud screening for grant and rebate applications.",
    version="0.1.0",
    lifespan=lifespan,
)


@app.exception_handler(ApplicationNotFound)
def application_not_found_handler(request: Request, exc: ApplicationNotFound) -> JSONResponse:
    return JSONResponse(status_code=404, content={"detail": str(exc)})


@app.exception_handler(ScreeningNotAllowed)
def screening_not_allowed_handler(request: Request, exc: ScreeningNotAllowed) -> JSONResponse:
    return JSONResponse(status_code=409, content={"detail": str(exc)})


@app.exception_handler(ValidationError)
def validation_error_handler(request: Request, exc: ValidationError) -> JSONResponse:
    return JSONResponse(status_code=422, content={"detail": exc.message})


@app.exception_handler(HTTPException)
def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Consistent JSON error response for HTTPException."""
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


@app.get("/health", response_model=HealthResponse)
def health() -> HealthResponse:
    """Liveness check: API is up."""
    return HealthResponse(status="ok")


@app.post("/applications", status_code=201)
def create_application(body: ApplicationCreate, store: ScreeningStore = Depends(get_store)) -> dict[str, Any]:
    record = store.create_application(**body.model_dump())
    return record.to_dict()


def _application_view(store: ScreeningStore, record: Any) -> dict[str, Any]:
    decision = store.get_fraud_decision(record.id)
    out = record.to_dict()
    out["fraud_decision"] = decision.to_dict() if decision else None
    return out


@app.get("/applications")
def list_applications(
    status: str | None = None,
    program_type: str | None = None,
    risk_level: str | None = None,
    search: str | None = None,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    store: ScreeningStore = Depends(get_store),
) -> dict[str, Any]:
    """Newest first; archived applications only when status is ARCHIVED or all."""
    records, total = store.list_applications(
        status=status,
        program_type=program_type,
        risk_level=None if risk_level == "all" else risk_level,
        search=search,
        offset=(page - 1) * limit,
        limit=limit,
    )
    return {
        "data": [_application_view(store, r) for r in records],
        "pagination": {
            "page": page,
            "limit": limit,
            "total": total,
            "total_pages": -(-total // limit),
        },
    }


@app.get("/applications/{application_id}")
def get_application(application_id: str, store: ScreeningStore = Depends(get_store)) -> dict[str, Any]:
    record = store.get_application(application_id)
    if record is None:
        raise ApplicationNotFound(application_id)
    return _application_view(store, record)


@app.patch("/applications/{application_id}")
def update_application(
    application_id: str,
    body: ApplicationUpdate,
    store: ScreeningStore = Depends(get_store),
) -> dict[str, Any]:
    """
    Reviewer action: set the status and/or override the automated decision.

    An override needs overridden_by and an existing fraud decision (409 otherwise);
    the next screening run clears it.
    """
    if store.get_application(application_id) is None:
        raise ApplicationNotFound(application_id)
    if body.overridden_by or body.override_reason:
        if not body.overridden_by:
            raise HTTPException(status_code=422, detail="overridden_by is required for an override")
        try:
            store.record_override(application_id, body.overridden_by, body.override_reason or "", body.status)
        except LookupError as e:
            raise HTTPException(status_code=409, detail=str(e)) from e
    elif body.status is not None:
        store.update_application_status(application_id, body.status)
    return _application_view(store, store.get_application(application_id))


@app.delete("/applications/{application_id}")
def archive_application(application_id: str, store: ScreeningStore = Depends(get_store)) -> dict[str, Any]:
    return store.archive_application(application_id).to_dict()


@app.post("/screening/{application_id}/run")
async def run_screening(
    application_id: str,
    orchestrator: ScreeningOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    run = await orchestrator.run_full_screening(application_id)
    return run.to_dict()


@app.post("/screening/{application_id}/run/{check_type}")
async def run_single_check(
    application_id: str,
    check_type: str,
    orchestrator: ScreeningOrchestrator = Depends(get_orchestrator),
) -> dict[str, Any]:
    try:
        parsed = CheckType.parse(check_type)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e)) from e
    record = await orchestrator.run_single_check(application_id, parsed)
    return record.to_dict()


@app.post("/screening/{application_id}/poll", response_model=CheckResultList)
async def poll_pending(
    application_id: str,
    orchestrator: ScreeningOrchestrator = Depends(get_orchestrator),
) -> CheckResultList:
    records = await orchestrator.poll_pending_checks(application_id)
    return CheckResultList(application_id=application_id, results=[r.to_dict() for r in records])


@app.get("/screening/{application_id}/results", response_model=CheckResultList)
def list_results(
    application_id: str,
    orchestrator: ScreeningOrchestrator = Depends(get_orchestrator),
) -> CheckResultList:
    records = orchestrator.list_check_results(application_id)
    return CheckResultList(application_id=application_id, results=[r.to_dict() for r in records])


@app.get("/screening/{application_id}/decision")
def get_decision(application_id: str, store: ScreeningStore = Depends(get_store)) -> dict[str, Any]:
    if store.get_application(application_id) is None:
        raise ApplicationNotFound(application_id)
    decision = store.get_fraud_decision(application_id)
    if decision is None:
        raise HTTPException(status_code=404, detail=f"No fraud decision for application {application_id}")
    return decision.to_dict()
