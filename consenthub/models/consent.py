"""Consent record model.

A party may hold several records for the same purpose over time; none of
them is ever overwritten by a newer one. Which record is currently in
force is decided at read time by
consenthub.compliance.consent.resolve_current().
"""

from __future__ import annotations

import threading
import time
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import BigInteger, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from consenthub.database import Base, JSONType, UTCDateTime, utcnow

_sequence_lock = threading.Lock()
_last_sequence = 0


def next_insert_seq() -> int:
    """Strictly increasing insertion stamp: the nanosecond clock, bumped on collision."""
    global _last_sequence
    with _sequence_lock:
        _last_sequence = max(time.time_ns(), _last_sequence + 1)
        return _last_sequence


class Consent(Base):
    __tablename__ = "consents"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    party_id: Mapped[str] = mapped_column(
        String(128),
        nullable=False,
        index=True,
        comment="Subject reference: user id, minor id or external TMF party id",
    )
    purpose: Mapped[str] = mapped_column(String(128), nullable=False)
    channel: Mapped[str] = mapped_column(String(32), nullable=False, default="all")
    consent_type: Mapped[str] = mapped_column(String(32), nullable=False, default="marketing")

    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default="pending",
        comment="granted | revoked | pending | denied",
    )
    granted_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    revoked_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    denied_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    valid_from: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
    valid_to: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    record_source: Mapped[str] = mapped_column(String(32), nullable=False, default="self_service")
    privacy_notice_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    version_accepted: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")
    guardian_id: Mapped[uuid.UUID | None] = mapped_column(nullable=True, index=True)
    # "metadata" is reserved on declarative classes
    details: Mapped[dict[str, Any]] = mapped_column(
        "metadata",
        JSONType,
        nullable=False,
        default=dict,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )
    insert_seq: Mapped[int] = mapped_column(
        BigInteger,
        nullable=False,
        default=next_insert_seq,
        comment="Breaks created_at ties so insertion order is total",
    )

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("ix_consents_party_purpose", "party_id", "purpose"),
        Index("ix_consents_status", "status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Consent id={self.id} party={self.party_id!r} "
            f"purpose={self.purpose!r} status={self.status!r}>"
        )
