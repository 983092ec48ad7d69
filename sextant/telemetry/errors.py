"""Structured error telemetry helpers."""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any


class ErrorCode(str, Enum):
    """Canonical error codes for operational telemetry."""

    BUDGET_EXCEEDED = "BUDGET_EXCEEDED"
    SELECTOR_DERIVATION_FAILED = "SELECTOR_DERIVATION_FAILED"
    VALIDATION_SHORT_CIRCUIT = "VALIDATION_SHORT_CIRCUIT"
    SCHEMA_VALIDATION_FAILED = "SCHEMA_VALIDATION_FAILED"
    TRANSFORM_FAILED = "TRANSFORM_FAILED"
    RECIPE_STORE_WRITE_FAILED = "RECIPE_STORE_WRITE_FAILED"
    RECIPE_STORE_CORRUPT_RECORD = "RECIPE_STORE_CORRUPT_RECORD"
    RECIPE_PROMOTION_REJECTED = "RECIPE_PROMOTION_REJECTED"
    SIGNAL_SUBSCRIBER_FAILURE = "SIGNAL_SUBSCRIBER_FAILURE"
    ORCHESTRATION_FAILED = "ORCHESTRATION_FAILED"


def emit_structured_error(
    logger: logging.Logger,
    *,
    code: ErrorCode,
    message: str,
    suppressed: bool,
    run_id: str | None = None,
    phase: str | None = None,
    details: dict[str, Any] | None = None,
) -> None:
    """Emit a structured telemetry event via logging."""
    logger.error(
        "sextant_error",
        extra={
            "error_code": code,
            "error_message": message,
            "suppressed": suppressed,
            "run_id": run_id,
            "phase": phase,
            "details": details or {},
        },
    )
