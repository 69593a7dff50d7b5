"""DSARService: persistence side of the data subject request lifecycle.

All status changes are delegated to consenthub.compliance.dsar so the
transition table is enforced in one place. This service adds loading,
optimistic-lock handling, audit entries and event publication.

Usage:
    service = DSARService(db)
    request = await service.create_request(
        requester_name="Ada Lovelace",
        requester_email="ada@example.com",
        request_type="export",
    )
    await service.transition(request.id, RequestStatus.IN_PROGRESS, actor_id=csr.id)
"""

from __future__ import annotations

import uuid
from typing import Any

import structlog
from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm.exc import StaleDataError

from consenthub.compliance import dsar as lifecycle
from consenthub.compliance.dsar import Priority, RequestSource, RequestStatus, RequestType
from consenthub.config import Settings, get_settings
from consenthub.core.audit import AuditService
from consenthub.core.errors import (
    ConcurrentModificationError,
    InvalidStateError,
    NotFoundError,
    ValidationError,
)
from consenthub.database import utcnow
from consenthub.models.dsar_request import DSARRequest
from consenthub.services.resources import dsar_resource
from consenthub.services.webhook import EventType, WebhookService

log = structlog.get_logger(__name__)

_RESOURCE_TYPE = "dsar_request"


def _parse_uuid(value: str | uuid.UUID) -> uuid.UUID | None:
    if isinstance(value, uuid.UUID):
        return value
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class DSARService:
    """Create, query and transition DSAR requests."""

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
    # Creation
    # ------------------------------------------------------------------ #

    async def create_request(
        self,
        *,
        requester_name: str,
        requester_email: str,
        request_type: str,
        requester_phone: str | None = None,
        requester_id: uuid.UUID | None = None,
        priority: str = Priority.MEDIUM,
        subject: str | None = None,
        description: str | None = None,
        source: str = RequestSource.WEB_FORM,
        actor_id: uuid.UUID | None = None,
    ) -> DSARRequest:
        """Submit a new request in pending status with its due date fixed."""
        if not requester_name or not requester_name.strip():
            raise ValidationError("requesterName is required")
        if not requester_email or "@" not in requester_email:
            raise ValidationError("A valid requesterEmail is required")
        try:
            priority = Priority(priority)
            source = RequestSource(source)
        except ValueError as exc:
            raise ValidationError(str(exc)) from None

        now = utcnow()
        request = DSARRequest(
            request_id=lifecycle.generate_request_id(now),
            requester_id=requester_id,
            requester_name=requester_name.strip(),
            requester_email=requester_email.strip(),
            requester_phone=requester_phone,
            request_type=RequestType.parse(request_type),
            priority=priority,
            subject=subject,
            description=description,
            source=source,
            status=RequestStatus.PENDING,
            submitted_at=now,
            due_date=lifecycle.compute_due_date(now, self._settings.dsar_sla_days),
            processing_notes=[],
        )
        self._db.add(request)
        await self._db.flush()

        await self._audit.log(
            action="dsar.created",
            actor_id=actor_id or requester_id,
            resource_type=_RESOURCE_TYPE,
            resource_id=request.id,
            extra={"requestType": request.request_type, "requestId": request.request_id},
        )
        log.info(
            "dsar.created",
            dsar_id=str(request.id),
            request_id=request.request_id,
            request_type=request.request_type,
        )
        await self._webhooks.publish(EventType.DSAR_CREATED, dsar_resource(request))
        return request

    # ------------------------------------------------------------------ #
    # Querying
    # ------------------------------------------------------------------ #

    async def get_request(self, identifier: str | uuid.UUID) -> DSARRequest:
        """Fetch by internal UUID or by human-readable requestId."""
        as_uuid = _parse_uuid(identifier)
        if as_uuid is not None:
            stmt = select(DSARRequest).where(DSARRequest.id == as_uuid)
        else:
            stmt = select(DSARRequest).where(DSARRequest.request_id == str(identifier))
        result = await self._db.execute(stmt)
        request = result.scalar_one_or_none()
        if request is None:
            raise NotFoundError(f"DSAR request {identifier} not found")
        return request

    async def list_requests(
        self,
        *,
        status: str | None = None,
        request_type: str | None = None,
        requester_email: str | None = None,
        requester_id: uuid.UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[DSARRequest]:
        """Newest first, optionally filtered. One page of at most `limit` rows."""
        stmt = select(DSARRequest)
        if status:
            try:
                stmt = stmt.where(DSARRequest.status == RequestStatus(status))
            except ValueError:
                raise ValidationError(f"Unknown DSAR status '{status}'") from None
        if request_type:
            stmt = stmt.where(DSARRequest.request_type == RequestType.parse(request_type))
        if requester_email and requester_id:
            stmt = stmt.where(
                or_(
                    func.lower(DSARRequest.requester_email) == requester_email.lower(),
                    DSARRequest.requester_id == requester_id,
                )
            )
        elif requester_email:
            stmt = stmt.where(func.lower(DSARRequest.requester_email) == requester_email.lower())
        elif requester_id:
            stmt = stmt.where(DSARRequest.requester_id == requester_id)
        stmt = stmt.order_by(DSARRequest.submitted_at.desc(), DSARRequest.id)
        stmt = stmt.offset(offset).limit(limit)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    # ------------------------------------------------------------------ #
    # Lifecycle
    # ------------------------------------------------------------------ #

    async def transition(
        self,
        identifier: str | uuid.UUID,
        target: RequestStatus | str,
        *,
        actor_id: uuid.UUID | str | None = None,
        reason: str | None = None,
        result: dict[str, Any] | None = None,
        expected_version: int | None = None,
    ) -> DSARRequest:
        """Apply one state change and persist it.

        Raises InvalidStateError for an illegal move and
        ConcurrentModificationError when expected_version is stale or
        another writer committed first.
        """
        request = await self.get_request(identifier)
        if expected_version is not None and expected_version != request.version:
            raise ConcurrentModificationError(
                f"DSAR request {request.request_id} was modified "
                f"(version {request.version}, expected {expected_version})"
            )

        previous = request.status
        try:
            target = RequestStatus(target)
        except ValueError:
            raise ValidationError(f"Unknown DSAR status '{target}'") from None
        lifecycle.apply_transition(request, target, now=utcnow(), result=result, reason=reason)
        await self._flush_locked(request)

        await self._audit.log(
            action="dsar.transitioned",
            actor_id=actor_id,
            resource_type=_RESOURCE_TYPE,
            resource_id=request.id,
            detail=request.failure_reason if target == RequestStatus.REJECTED else None,
            extra={"from": previous, "to": request.status},
        )
        log.info(
            "dsar.transitioned",
            dsar_id=str(request.id),
            from_status=previous,
            to_status=request.status,
        )
        await self._webhooks.publish(EventType.DSAR_STATE_CHANGE, dsar_resource(request))
        return request

    async def begin_auto_processing(
        self,
        identifier: str | uuid.UUID,
        *,
        actor_id: uuid.UUID | str | None = None,
    ) -> DSARRequest:
        """Claim a pending request for automated processing.

        Only a pending request may be auto-processed; anything else raises
        InvalidStateError before any field is touched.
        """
        request = await self.get_request(identifier)
        if request.status != RequestStatus.PENDING:
            raise InvalidStateError(
                f"DSAR request {request.request_id} is '{request.status}'; "
                "only pending requests can be auto-processed"
            )
        return await self.transition(request.id, RequestStatus.IN_PROGRESS, actor_id=actor_id)

    async def add_note(
        self,
        identifier: str | uuid.UUID,
        note: str,
        *,
        author: str,
    ) -> DSARRequest:
        if not note or not note.strip():
            raise ValidationError("note must not be empty")
        request = await self.get_request(identifier)
        # Reassign so the JSON column is flagged dirty
        request.processing_notes = [
            *(request.processing_notes or []),
            {"note": note.strip(), "author": author, "timestamp": utcnow().isoformat()},
        ]
        await self._flush_locked(request)
        log.info("dsar.note_added", dsar_id=str(request.id), author=author)
        return request

    async def purge(self, identifier: str | uuid.UUID, *, actor_id: uuid.UUID | str) -> None:
        """Administrative hard delete. The audit trail keeps the record of it."""
        request = await self.get_request(identifier)
        request_pk = request.id
        await self._db.delete(request)
        await self._flush_locked(request)
        await self._audit.log(
            action="dsar.purged",
            actor_id=actor_id,
            resource_type=_RESOURCE_TYPE,
            resource_id=request_pk,
            extra={"requestId": request.request_id},
        )
        log.warning("dsar.purged", dsar_id=str(request_pk), actor_id=str(actor_id))

    async def _flush_locked(self, request: DSARRequest) -> None:
        # A failed flush expires the instance, so read the id first
        request_id = request.request_id
        try:
            await self._db.flush()
        except StaleDataError:
            raise ConcurrentModificationError(
                f"DSAR request {request_id} was modified concurrently"
            ) from None
