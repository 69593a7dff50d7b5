"""AuditLog model - immutable record of every state-changing action.

Design principles:
- Append-only: never update or delete audit rows
- Consent status history and DSAR transition history are both read back
  from this table, keyed by resource_type + resource_id
- Detail text is truncated to avoid storing PII-heavy content at full fidelity
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from consenthub.database import Base, JSONType, UTCDateTime, utcnow


class AuditStatus(StrEnum):
    SUCCESS = "success"
    ERROR = "error"
    DENIED = "denied"


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    # Timestamp of when the action was performed
    timestamp: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        index=True,
    )

    # No FK: the actor may be a background job or a since-deleted user
    actor_id: Mapped[str | None] = mapped_column(String(128), nullable=True, index=True)

    # Action identifier, e.g. "consent.status_changed", "dsar.transitioned"
    action: Mapped[str] = mapped_column(String(128), nullable=False, index=True)

    resource_type: Mapped[str | None] = mapped_column(
        String(64),
        nullable=True,
        comment="e.g. 'consent', 'dsar_request', 'privacy_notice'",
    )
    resource_id: Mapped[str | None] = mapped_column(
        String(128),
        nullable=True,
        comment="UUID of the resource",
    )

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default=AuditStatus.SUCCESS,
    )
    detail: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Structured before/after data, e.g. {"from": "pending", "to": "granted"}
    extra: Mapped[dict[str, Any]] = mapped_column(
        JSONType,
        nullable=False,
        default=dict,
    )

    __table_args__ = (Index("ix_audit_resource", "resource_type", "resource_id", "timestamp"),)

    def __repr__(self) -> str:
        return f"<AuditLog id={self.id} action={self.action!r} status={self.status}>"
