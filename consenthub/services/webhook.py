"""WebhookService: TMF669 hub registration and event publishing.

Event types published:
  PrivacyConsentCreatedEvent       - A consent record was captured
  PrivacyConsentStateChangeEvent   - A consent record changed status
  DSARRequestCreatedEvent          - A data subject request was submitted
  DSARRequestStateChangeEvent      - A data subject request changed status
  PrivacyNoticeCreatedEvent        - A privacy notice (or new version) was drafted

Delivery is best-effort:
  - at most once: each matching subscriber gets exactly one POST attempt
  - no retry, no backoff, no delivery bookkeeping
  - failures are logged and never raised, so the state change that
    triggered the event is never affected by a subscriber being down
"""

from __future__ import annotations

import json
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Any

import httpx
import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.config import Settings, get_settings
from consenthub.core.errors import NotFoundError, ValidationError
from consenthub.models.webhook import Webhook, WebhookStatus

log = structlog.get_logger(__name__)


class EventType(StrEnum):
    CONSENT_CREATED = "PrivacyConsentCreatedEvent"
    CONSENT_STATE_CHANGE = "PrivacyConsentStateChangeEvent"
    DSAR_CREATED = "DSARRequestCreatedEvent"
    DSAR_STATE_CHANGE = "DSARRequestStateChangeEvent"
    NOTICE_CREATED = "PrivacyNoticeCreatedEvent"


_QUERY_PREFIX = "eventtype="


def parse_event_query(query: str | None) -> list[str]:
    """Split a TMF669 subscription query into event type names.

    ``"eventType=A,B"`` and ``"A, B"`` both yield ``["A", "B"]``. An empty
    query subscribes to everything.
    """
    events: list[str] = []
    for raw in (query or "").split(","):
        topic = raw.strip()
        if topic.lower().startswith(_QUERY_PREFIX):
            topic = topic[len(_QUERY_PREFIX):].strip()
        if topic and topic not in events:
            events.append(topic)
    return events


@dataclass(frozen=True)
class DeliveryOutcome:
    """Result of one delivery attempt, for logging and tests."""

    webhook_id: uuid.UUID
    url: str
    delivered: bool
    status_code: int | None = None
    error: str | None = None


class WebhookService:
    """Subscription management and event fan-out over one async DB session."""

    def __init__(self, db: AsyncSession, settings: Settings | None = None) -> None:
        self._db = db
        self._settings = settings or get_settings()

    # ------------------------------------------------------------------ #
    # Registration
    # ------------------------------------------------------------------ #

    async def register(self, callback: str, query: str | None = None) -> Webhook:
        """Register a listener callback for the events named in query."""
        if not callback or not callback.strip():
            raise ValidationError("callback is required")
        url = callback.strip()
        if not url.lower().startswith(("http://", "https://")):
            raise ValidationError("callback must be an http(s) URL")

        webhook = Webhook(
            url=url,
            query=query,
            events=parse_event_query(query),
            status=WebhookStatus.ACTIVE,
        )
        self._db.add(webhook)
        await self._db.flush()

        log.info(
            "webhook.registered",
            webhook_id=str(webhook.id),
            url=url,
            events=webhook.events,
        )
        return webhook

    # ------------------------------------------------------------------ #
    # Querying
    # ------------------------------------------------------------------ #

    async def get(self, webhook_id: uuid.UUID) -> Webhook:
        webhook = await self._db.get(Webhook, webhook_id)
        if webhook is None:
            raise NotFoundError(f"Hub subscription {webhook_id} not found")
        return webhook

    async def list_active(self) -> list[Webhook]:
        result = await self._db.execute(
            select(Webhook)
            .where(Webhook.status == WebhookStatus.ACTIVE)
            .order_by(Webhook.created_at.asc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------ #
    # Deletion
    # ------------------------------------------------------------------ #

    async def unregister(self, webhook_id: uuid.UUID) -> None:
        webhook = await self.get(webhook_id)
        await self._db.delete(webhook)
        await self._db.flush()
        log.info("webhook.unregistered", webhook_id=str(webhook_id))

    # ------------------------------------------------------------------ #
    # Publishing
    # ------------------------------------------------------------------ #

    def build_envelope(self, event_type: str, resource: dict[str, Any]) -> dict[str, Any]:
        return {
            "eventId": str(uuid.uuid4()),
            "eventTime": datetime.now(UTC).isoformat(),
            "eventType": str(event_type),
            "event": {"resource": resource},
            "domain": self._settings.event_domain,
            "source": self._settings.event_source,
        }

    async def publish(self, event_type: str, resource: dict[str, Any]) -> list[DeliveryOutcome]:
        """Send event_type to every active subscriber that wants it.

        Never raises on delivery problems; the returned outcomes say which
        subscribers were reached.
        """
        subscribers = [hook for hook in await self.list_active() if hook.wants(event_type)]
        if not subscribers:
            return []

        envelope = self.build_envelope(event_type, resource)
        body = json.dumps(envelope, default=str)

        outcomes: list[DeliveryOutcome] = []
        async with httpx.AsyncClient(timeout=self._settings.webhook_timeout_seconds) as client:
            for webhook in subscribers:
                outcomes.append(await self._attempt_delivery(client, webhook, event_type, body))

        log.info(
            "webhook.published",
            event_type=str(event_type),
            subscribers=len(subscribers),
            delivered=sum(1 for o in outcomes if o.delivered),
        )
        return outcomes

    async def _attempt_delivery(
        self,
        client: httpx.AsyncClient,
        webhook: Webhook,
        event_type: str,
        body: str,
    ) -> DeliveryOutcome:
        """Perform the single HTTP POST for one subscriber."""
        try:
            response = await client.post(
                webhook.url,
                content=body,
                headers={
                    "Content-Type": "application/json",
                    "X-Event-Type": str(event_type),
                },
            )
        except Exception as exc:
            # Any failure here, including malformed callback URLs, stays local
            log.warning(
                "webhook.delivery_failed",
                webhook_id=str(webhook.id),
                event_type=str(event_type),
                error=str(exc),
            )
            return DeliveryOutcome(webhook.id, webhook.url, delivered=False, error=str(exc))

        delivered = 200 <= response.status_code < 300
        if delivered:
            log.info(
                "webhook.delivered",
                webhook_id=str(webhook.id),
                event_type=str(event_type),
                status_code=response.status_code,
            )
        else:
            log.warning(
                "webhook.delivery_failed",
                webhook_id=str(webhook.id),
                event_type=str(event_type),
                status_code=response.status_code,
            )
        return DeliveryOutcome(
            webhook.id,
            webhook.url,
            delivered=delivered,
            status_code=response.status_code,
        )
