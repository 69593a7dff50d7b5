"""ConsentService: capture, status changes and resolution of consent records.

Records are never overwritten by newer ones; the record in force for a
party and purpose is chosen by consenthub.compliance.consent.resolve_current().
Every status change is written to the audit log, which doubles as the
record's status history.

Guardian consent:
    A customer listed as guardian of a minor (User.minor_dependents) may
    record consent on the minor's behalf. Admins may do so for any
    guardian; nobody else may.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from consenthub.compliance.consent import (
    GUARDIAN_CONSENT_TYPE,
    ConsentChannel,
    ConsentSource,
    ConsentStatus,
    apply_status,
    current_by_purpose,
    latest_action_at,
)
from consenthub.config import Settings, get_settings
from consenthub.core.audit import AuditService
from consenthub.core.errors import (
    ConcurrentModificationError,
    ForbiddenError,
    NotFoundError,
    ValidationError,
)
from consenthub.core.policy import Actor, is_staff
from consenthub.database import utcnow
from consenthub.models.audit import AuditLog
from consenthub.models.consent import Consent
from consenthub.models.user import User, UserRole
from consenthub.services.resources import consent_resource
from consenthub.services.webhook import EventType, WebhookService

log = structlog.get_logger(__name__)

_RESOURCE_TYPE = "consent"


@dataclass
class ConsentInput:
    """Fields accepted when capturing a consent record."""

    purpose: str
    status: str = ConsentStatus.GRANTED
    channel: str = ConsentChannel.ALL
    consent_type: str = "marketing"
    privacy_notice_id: str | None = None
    version_accepted: str = "1.0"
    valid_from: datetime | None = None
    valid_to: datetime | None = None
    metadata: dict[str, Any] | None = None


class ConsentService:
    def __init__(
        self,
        db: AsyncSession,
        settings: Settings | None = None,
        webhooks: WebhookService | None = None,
    ) -> None:
        self._db = db
        self._settings = settings or get_settings()
        self._audit = AuditService(db)
        self._webhooks = webhooks or WebhookService(db, self._settings)

    # ------------------------------------------------------------------ #
    # Capture
    # ------------------------------------------------------------------ #

    async def create_consent(
        self,
        actor: Actor,
        party_id: str,
        data: ConsentInput,
        *,
        record_source: str | None = None,
        guardian_id: uuid.UUID | None = None,
    ) -> Consent:
        """Capture a new consent record for party_id.

        Customers may only capture consent for themselves.
        """
        if not party_id:
            raise ValidationError("partyId is required")
        if not data.purpose or not data.purpose.strip():
            raise ValidationError("purpose is required")
        if not is_staff(actor.role) and guardian_id is None and party_id != str(actor.id):
            raise ForbiddenError("Customers may only record their own consent")
        if data.valid_from and data.valid_to and data.valid_to < data.valid_from:
            raise ValidationError("validTo must not be earlier than validFrom")

        status = ConsentStatus.parse(data.status)
        if record_source is None:
            record_source = ConsentSource.CSR if is_staff(actor.role) else ConsentSource.SELF_SERVICE

        now = utcnow()
        consent = Consent(
            party_id=str(party_id),
            purpose=data.purpose.strip(),
            channel=data.channel or ConsentChannel.ALL,
            consent_type=data.consent_type or "marketing",
            status=ConsentStatus.PENDING,
            valid_from=data.valid_from or now,
            valid_to=data.valid_to,
            record_source=record_source,
            privacy_notice_id=data.privacy_notice_id,
            version_accepted=data.version_accepted or "1.0",
            guardian_id=guardian_id,
            details=dict(data.metadata or {}),
            created_at=now,
        )
        apply_status(consent, status, now)
        self._db.add(consent)
        await self._db.flush()

        await self._audit.log(
            action="consent.created",
            actor_id=actor.id,
            resource_type=_RESOURCE_TYPE,
            resource_id=consent.id,
            extra={"to": consent.status, "purpose": consent.purpose, "source": record_source},
        )
        log.info(
            "consent.created",
            consent_id=str(consent.id),
            party_id=consent.party_id,
            purpose=consent.purpose,
            status=consent.status,
        )
        await self._webhooks.publish(EventType.CONSENT_CREATED, consent_resource(consent))
        return consent

    async def create_guardian_consents(
        self,
        actor: Actor,
        guardian_id: uuid.UUID,
        minor_id: str,
        consents: list[ConsentInput],
    ) -> list[Consent]:
        """Record consents on behalf of a minor.

        Raises ForbiddenError when a non-admin actor is not the guardian or
        the guardian has no relationship to minor_id.
        """
        if not consents:
            raise ValidationError("At least one consent is required")
        if actor.role != UserRole.ADMIN and actor.id != guardian_id:
            raise ForbiddenError("Only the guardian or an administrator may act for this minor")

        guardian = await self._db.get(User, guardian_id)
        if guardian is None:
            raise NotFoundError(f"Guardian {guardian_id} not found")

        minor = guardian.find_minor(minor_id)
        if minor is None and actor.role != UserRole.ADMIN:
            log.warning(
                "consent.guardian_relationship_missing",
                guardian_id=str(guardian_id),
                minor_id=str(minor_id),
            )
            raise ForbiddenError(
                f"Guardian {guardian_id} has no established relationship to minor {minor_id}"
            )

        created: list[Consent] = []
        for data in consents:
            metadata = {
                **(data.metadata or {}),
                "guardianName": guardian.name,
                "minorName": (minor or {}).get("name"),
                "relationship": (minor or {}).get("relationship"),
            }
            guardian_data = ConsentInput(
                purpose=data.purpose,
                status=data.status,
                channel=ConsentChannel.GUARDIAN_PORTAL,
                consent_type=GUARDIAN_CONSENT_TYPE,
                privacy_notice_id=data.privacy_notice_id,
                version_accepted=data.version_accepted,
                valid_from=data.valid_from,
                valid_to=data.valid_to,
                metadata=metadata,
            )
            created.append(
                await self.create_consent(
                    actor,
                    str(minor_id),
                    guardian_data,
                    record_source=ConsentSource.GUARDIAN,
                    guardian_id=guardian.id,
                )
            )
        return created

    # ------------------------------------------------------------------ #
    # Status changes
    # ------------------------------------------------------------------ #

    async def update_status(
        self,
        actor: Actor,
        consent_id: uuid.UUID,
        status: str,
        *,
        expected_version: int | None = None,
    ) -> Consent:
        consent = await self.get_consent(consent_id)
        self.assert_can_act(actor, consent)
        if expected_version is not None and expected_version != consent.version:
            raise ConcurrentModificationError(
                f"Consent {consent_id} was modified "
                f"(version {consent.version}, expected {expected_version})"
            )

        new_status = ConsentStatus.parse(status)
        previous = apply_status(consent, new_status, utcnow())
        try:
            await self._db.flush()
        except StaleDataError:
            raise ConcurrentModificationError(
                f"Consent {consent_id} was modified concurrently"
            ) from None

        await self._audit.log(
            action="consent.status_changed",
            actor_id=actor.id,
            resource_type=_RESOURCE_TYPE,
            resource_id=consent.id,
            extra={"from": previous, "to": consent.status},
        )
        log.info(
            "consent.status_changed",
            consent_id=str(consent.id),
            from_status=previous,
            to_status=consent.status,
        )
        await self._webhooks.publish(EventType.CONSENT_STATE_CHANGE, consent_resource(consent))
        return consent

    # ------------------------------------------------------------------ #
    # Querying
    # ------------------------------------------------------------------ #

    async def get_consent(self, consent_id: uuid.UUID) -> Consent:
        consent = await self._db.get(Consent, consent_id)
        if consent is None:
            raise NotFoundError(f"Consent {consent_id} not found")
        return consent

    async def list_consents(
        self,
        *,
        party_id: str | None = None,
        status: str | None = None,
        purpose: str | None = None,
    ) -> list[Consent]:
        """Records ordered by latest action, newest first."""
        records = await self._load(party_id=party_id, status=status, purpose=purpose)
        return sorted(records, key=lambda c: latest_action_at(c) or c.created_at, reverse=True)

    async def effective_consents(self, party_id: str | None = None) -> list[Consent]:
        """The record in force for every purpose (of one party, if given)."""
        records = await self._load(party_id=party_id)
        return list(current_by_purpose(records).values())

    async def _load(
        self,
        *,
        party_id: str | None = None,
        status: str | None = None,
        purpose: str | None = None,
    ) -> list[Consent]:
        # insertion order; resolve_current relies on it for ties
        stmt = select(Consent)
        if party_id:
            stmt = stmt.where(Consent.party_id == str(party_id))
        if status:
            stmt = stmt.where(Consent.status == ConsentStatus.parse(status))
        if purpose:
            stmt = stmt.where(Consent.purpose == purpose)
        stmt = stmt.order_by(Consent.created_at.asc(), Consent.insert_seq.asc())
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def history(self, consent_id: uuid.UUID) -> list[AuditLog]:
        await self.get_consent(consent_id)
        return await self._audit.history(_RESOURCE_TYPE, consent_id)

    @staticmethod
    def assert_can_act(actor: Actor, consent: Consent) -> None:
        """Staff may act on any record; customers on their own or their minors'."""
        if is_staff(actor.role):
            return
        if consent.party_id == str(actor.id) or consent.guardian_id == actor.id:
            return
        raise NotFoundError(f"Consent {consent.id} not found")
