"""Privacy notice models.

Notices are versioned as a chain: every new version points at the notice
it was derived from (parent_id) and shares the family_id of the first
notice in the chain. At most one notice per family is active at a time.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import ForeignKey, Index, String, Text, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from consenthub.database import Base, JSONType, UTCDateTime, utcnow


class NoticeStatus(StrEnum):
    DRAFT = "draft"
    ACTIVE = "active"
    INACTIVE = "inactive"
    ARCHIVED = "archived"


class PrivacyNotice(Base):
    __tablename__ = "privacy_notices"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    notice_id: Mapped[str] = mapped_column(
        String(64),
        nullable=False,
        unique=True,
        comment="Human-readable PN-<CATEGORY>-<epoch-ms> reference",
    )

    title: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    content: Mapped[str] = mapped_column(Text, nullable=False)
    content_type: Mapped[str] = mapped_column(String(32), nullable=False, default="text/markdown")
    version: Mapped[str] = mapped_column(String(16), nullable=False, default="1.0")
    category: Mapped[str] = mapped_column(String(64), nullable=False, default="general")
    purposes: Mapped[list[str]] = mapped_column(JSONType, nullable=False, default=list)
    legal_basis: Mapped[str | None] = mapped_column(String(64), nullable=True)
    language: Mapped[str] = mapped_column(String(8), nullable=False, default="en")

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=NoticeStatus.DRAFT)
    effective_date: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)

    parent_id: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("privacy_notices.id", ondelete="SET NULL"),
        nullable=True,
    )
    family_id: Mapped[uuid.UUID] = mapped_column(
        nullable=False,
        index=True,
        comment="Id of the first notice in this version chain",
    )
    created_by: Mapped[uuid.UUID | None] = mapped_column(nullable=True)

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (Index("ix_notices_status_category", "status", "category"),)

    def snapshot(self) -> dict[str, Any]:
        """Content fields carried over when deriving a new version."""
        return {
            "title": self.title,
            "description": self.description,
            "content": self.content,
            "content_type": self.content_type,
            "category": self.category,
            "purposes": list(self.purposes or []),
            "legal_basis": self.legal_basis,
            "language": self.language,
        }

    def __repr__(self) -> str:
        return (
            f"<PrivacyNotice id={self.id} notice_id={self.notice_id!r} "
            f"version={self.version!r} status={self.status!r}>"
        )


class NoticeAcknowledgment(Base):
    """A user's acknowledgment of a specific notice version."""

    __tablename__ = "privacy_notice_acknowledgments"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)
    notice_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("privacy_notices.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    acknowledged_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)

    __table_args__ = (UniqueConstraint("notice_id", "user_id", name="uq_notice_ack_user"),)
