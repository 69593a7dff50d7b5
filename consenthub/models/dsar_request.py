"""SQLAlchemy ORM model for data subject access requests (DSARs).

Tracks the full lifecycle of a request (access, erasure, portability,
rectification) from submission through processing to a terminal outcome,
including the statutory due date fixed at submission time.

Status changes are only ever made through
consenthub.compliance.dsar.apply_transition(); this model has no behaviour
of its own beyond storage. The version column is SQLAlchemy's optimistic
lock counter, so two sessions racing on the same row cannot both win.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from consenthub.database import Base, JSONType, UTCDateTime, utcnow


class DSARRequest(Base):
    """Persistent record of a data subject rights request."""

    __tablename__ = "dsar_requests"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    request_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Human-readable DSAR-<epoch-ms>-<suffix> reference",
    )

    # No FK cascade: the subject row may be anonymised by an erasure request
    requester_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    requester_name: Mapped[str] = mapped_column(String(255), nullable=False)
    requester_email: Mapped[str] = mapped_column(String(320), nullable=False, index=True)
    requester_phone: Mapped[str | None] = mapped_column(String(64), nullable=True)

    request_type: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        comment="data_access | data_erasure | data_portability | data_rectification",
    )
    priority: Mapped[str] = mapped_column(String(16), nullable=False, default="medium")
    subject: Mapped[str | None] = mapped_column(String(255), nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    source: Mapped[str] = mapped_column(String(32), nullable=False, default="web_form")

    status: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        default="pending",
        comment="pending | in_progress | completed | rejected",
    )

    submitted_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    due_date: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        comment="Statutory deadline, fixed at submission",
    )
    processing_started_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    failed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    processing_result: Mapped[dict[str, Any] | None] = mapped_column(JSONType, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)

    # [{"note", "author", "timestamp"}]
    processing_notes: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_dsar_status_submitted", "status", "submitted_at"),
        Index("ix_dsar_type", "request_type"),
    )

    def __repr__(self) -> str:
        return (
            f"<DSARRequest id={self.id} request_id={self.request_id!r} "
            f"type={self.request_type!r} status={self.status!r}>"
        )
