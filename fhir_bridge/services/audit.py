"""Audit logging service for compliance tracking."""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Any

from sqlalchemy.orm import Session

from fhir_bridge.models.audit import AuditLog, BatchRun
from fhir_bridge.schemas.api import BatchResult

logger = logging.getLogger(__name__)


def log_action(
    db: Session,
    *,
    actor: str,
    action: str,
    resource_type: str,
    outcome: str,
    detail: dict[str, Any] | None = None,
) -> None:
    """Write an immutable audit log entry. ``detail`` must never carry PHI."""
    entry = AuditLog(
        actor=actor,
        action=action,
        resource_type=resource_type,
        outcome=outcome,
        detail=detail,
    )
    db.add(entry)
    db.flush()
    logger.info("AUDIT: %s %s %s -> %s", actor, action, resource_type, outcome)


def record_batch_run(
    db: Session, result: BatchResult, *, started_at: datetime, duration_ms: float
) -> BatchRun:
    """Persist counts for a finished batch. Filenames and content are not stored."""
    if result.failed == 0:
        status = "completed"
    elif result.succeeded == 0:
        status = "failed"
    else:
        status = "partial"

    run = BatchRun(
        status=status,
        started_at=started_at,
        file_count=result.succeeded + result.failed,
        succeeded_count=result.succeeded,
        failed_count=result.failed,
        duration_ms=round(duration_ms, 2),
    )
    db.add(run)
    db.flush()
    return run
