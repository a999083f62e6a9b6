"""
Audit trail models.

Demonstrates:
- Compliance logging without PHI: only actions, outcomes and counts are
  stored, never Bundle content, identifiers or uploaded filenames
- Batch execution history for operational review
"""

import uuid
from datetime import datetime, timezone

from sqlalchemy import JSON, Column, DateTime, Enum, Float, Index, Integer, String, Uuid

from fhir_bridge.models.database import Base


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Audit Log – immutable compliance trail
# ---------------------------------------------------------------------------
class AuditLog(Base):
    __tablename__ = "audit_log"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    actor = Column(String(128), nullable=False, comment="User or service identity")
    action = Column(
        String(64),
        nullable=False,
        comment="validate | transform | batch | download | verify | submit",
    )
    resource_type = Column(String(64), nullable=False)
    outcome = Column(String(32), nullable=False, comment="success | failure | rejected")
    detail = Column(JSON, comment="Non-identifying context: scores, counts, status codes")
    timestamp = Column(DateTime(timezone=True), default=_utcnow, nullable=False)

    __table_args__ = (
        Index("ix_audit_timestamp", "timestamp"),
        Index("ix_audit_action", "action"),
    )


# ---------------------------------------------------------------------------
# Batch Run – tracks batch transform executions
# ---------------------------------------------------------------------------
class BatchRun(Base):
    __tablename__ = "batch_runs"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    status = Column(
        Enum("completed", "partial", "failed", name="batch_status_enum"),
        nullable=False,
    )
    started_at = Column(DateTime(timezone=True), nullable=False)
    completed_at = Column(DateTime(timezone=True), default=_utcnow)
    file_count = Column(Integer, nullable=False)
    succeeded_count = Column(Integer, nullable=False)
    failed_count = Column(Integer, nullable=False)
    duration_ms = Column(Float)
