"""Event subscription (TMF669 hub listener) model.

A subscription is a callback URL plus the list of event types it wants.
An empty list, or one containing "*", receives every event. Delivery
never mutates these rows; there is no delivery bookkeeping table because
notifications are sent at most once.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from consenthub.database import Base, JSONType, UTCDateTime, utcnow


class WebhookStatus(StrEnum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Webhook(Base):
    __tablename__ = "webhooks"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    url: Mapped[str] = mapped_column(
        Text,
        nullable=False,
        comment="Callback endpoint that receives event payloads",
    )
    query: Mapped[str | None] = mapped_column(
        Text,
        nullable=True,
        comment="Subscription query exactly as submitted",
    )
    events: Mapped[list[str]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Event types this subscription receives",
    )
    status: Mapped[str] = mapped_column(
        String(16),
        nullable=False,
        default=WebhookStatus.ACTIVE,
    )

    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False, default=utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (Index("ix_webhooks_status", "status"),)

    def wants(self, event_type: str) -> bool:
        """True when this subscription should receive event_type."""
        events = self.events or []
        return not events or "*" in events or event_type in events

    def __repr__(self) -> str:
        return f"<Webhook id={self.id} url={self.url!r} status={self.status!r}>"
