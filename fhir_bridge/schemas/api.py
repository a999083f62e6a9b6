"""Pydantic models for API request/response serialization."""

from __future__ import annotations

from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


# ---------------------------------------------------------------------------
# Validation
# ---------------------------------------------------------------------------

class Severity(str, Enum):
    ERROR = "error"
    WARNING = "warning"
    INFO = "info"


class ValidationIssue(BaseModel):
    """A single finding against the Bundle, located by a dotted FHIR path."""
    model_config = ConfigDict(frozen=True, use_enum_values=True)

    severity: Severity
    path: str
    message: str
    fix: str | None = None


class ValidationStats(BaseModel):
    model_config = ConfigDict(frozen=True)

    totalEntries: int
    resourceTypes: dict[str, int]
    checkedRules: int
    passedRules: int


class ValidationResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    valid: bool
    score: int
    issues: list[ValidationIssue]
    stats: ValidationStats


# ---------------------------------------------------------------------------
# Batch transformation
# ---------------------------------------------------------------------------

class BatchResultItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    filename: str
    ok: bool
    bundle: dict[str, Any] | None = None
    error: str | None = None


class BatchResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    succeeded: int
    failed: int
    results: list[BatchResultItem]


# ---------------------------------------------------------------------------
# Signing / SHR submission
# ---------------------------------------------------------------------------

class VerifyResponse(BaseModel):
    valid: bool
    algorithm: str = "HMAC-SHA256"


class SubmissionResult(BaseModel):
    """Same shape whether the SHR call was live or mocked."""
    success: bool
    status: int | None = None
    responseBody: Any = None
    error: str | None = None
    endpoint: str
    live: bool


# ---------------------------------------------------------------------------
# Health check
# ---------------------------------------------------------------------------

class HealthResponse(BaseModel):
    status: str = "healthy"
    environment: str
    database: str = "connected"
    transform_engine: str = "available"
    signing_secret: str = "configured"
