"""
Logger factory for the screening backend.

Every record is one JSON object on stdout keyed by event_type (snake_case,
e.g. "screening_step_completed"), with level, ISO timestamp, the emitting
module and, inside the pipeline, the application_id. Applicant identifiers
(tax id, date of birth) must never reach a log line: the redaction processor
masks them even if a caller passes them by mistake.

LOG_FORMAT=console switches to the coloured dev renderer. This module imports
nothing from backend_grantshield so config and store code can log freely.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()

REDACTED = "[redacted]"
SENSITIVE_KEYS = frozenset({"ssn", "applicant_ssn", "tax_id", "dob", "applicant_dob", "date_of_birth"})


def _add_timestamp(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    event_dict.setdefault("timestamp", datetime.now(timezone.utc).isoformat())
    return event_dict


def _redact_identifiers(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """Mask applicant identifiers passed as top-level keys."""
    for key in SENSITIVE_KEYS.intersection(event_dict):
        event_dict[key] = REDACTED
    return event_dict


def _normalize_event(logger: Any, method_name: str, event_dict: dict[str, Any]) -> dict[str, Any]:
    """structlog's positional 'event' becomes event_type; message mirrors it for log shippers."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "message" not in event_dict and "event_type" in event_dict:
        event_dict["message"] = str(event_dict["event_type"])
    return event_dict


def configure_structlog() -> None:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _redact_identifiers,
        _normalize_event,
    ]
    if LOG_FORMAT == "json":
        processors.append(structlog.processors.JSONRenderer())
    else:
        processors.append(structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty()))
    structlog.configure(
        processors=processors,
        wrapper_class=structlog.make_filtering_bound_logger(LOG_LEVEL_VALUE),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Module logger; the module name is bound as "logger".

        logger = get_logger(__name__)
        logger.warning("screening_step_failed", application_id=app_id, check_type="fraud", http_status=503)
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_application(application_id: str, name: str = "backend_grantshield") -> structlog.BoundLogger:
    """Logger for one screening run: every line carries application_id."""
    return get_logger(name).bind(application_id=application_id)
