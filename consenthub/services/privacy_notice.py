"""PrivacyNoticeService: drafting, versioning, activation and acknowledgment."""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.compliance.notices import next_version, notice_reference, parse_version
from consenthub.config import Settings, get_settings
from consenthub.core.audit import AuditService
from consenthub.core.errors import InvalidStateError, NotFoundError, ValidationError
from consenthub.database import utcnow
from consenthub.models.privacy_notice import NoticeAcknowledgment, NoticeStatus, PrivacyNotice
from consenthub.services.resources import notice_resource
from consenthub.services.webhook import EventType, WebhookService

log = structlog.get_logger(__name__)

_RESOURCE_TYPE = "privacy_notice"

# Fields a new version may override
_VERSIONABLE_FIELDS = frozenset(
    {
        "title",
        "description",
        "content",
        "content_type",
        "category",
        "purposes",
        "legal_basis",
        "language",
    }
)


class PrivacyNoticeService:
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

    async def create_notice(
        self,
        *,
        title: str,
        content: str,
        actor_id: uuid.UUID | None = None,
        version: str = "1.0",
        category: str = "general",
        description: str | None = None,
        content_type: str = "text/markdown",
        purposes: list[str] | None = None,
        legal_basis: str | None = None,
        language: str = "en",
        effective_date: datetime | None = None,
    ) -> PrivacyNotice:
        if not title or not title.strip():
            raise ValidationError("title is required")
        if not content or not content.strip():
            raise ValidationError("content is required")
        major, minor = parse_version(version)

        notice_pk = uuid.uuid4()
        now = utcnow()
        notice = PrivacyNotice(
            id=notice_pk,
            notice_id=notice_reference(category, int(now.timestamp() * 1000)),
            title=title.strip(),
            content=content,
            description=description,
            content_type=content_type,
            version=f"{major}.{minor}",
            category=category,
            purposes=list(purposes or []),
            legal_basis=legal_basis,
            language=language,
            status=NoticeStatus.DRAFT,
            effective_date=effective_date,
            family_id=notice_pk,
            created_by=actor_id,
        )
        return await self._persist_new(notice, actor_id)

    async def create_version(
        self,
        notice_id: uuid.UUID,
        *,
        changes: dict[str, Any] | None = None,
        major: bool = False,
        actor_id: uuid.UUID | None = None,
    ) -> PrivacyNotice:
        """Derive a draft from notice_id with the next version number."""
        source = await self.get_notice(notice_id)
        changes = dict(changes or {})
        effective_date = changes.pop("effective_date", None)
        unknown = set(changes) - _VERSIONABLE_FIELDS
        if unknown:
            raise ValidationError(f"Fields cannot be changed in a new version: {sorted(unknown)}")

        fields = source.snapshot()
        fields.update({k: v for k, v in changes.items() if v is not None})
        now = utcnow()
        draft = PrivacyNotice(
            id=uuid.uuid4(),
            notice_id=notice_reference(fields["category"], int(now.timestamp() * 1000)),
            version=next_version(source.version, major=major),
            status=NoticeStatus.DRAFT,
            parent_id=source.id,
            family_id=source.family_id,
            effective_date=effective_date,
            created_by=actor_id,
            **fields,
        )
        return await self._persist_new(draft, actor_id)

    async def _persist_new(self, notice: PrivacyNotice, actor_id: uuid.UUID | None) -> PrivacyNotice:
        self._db.add(notice)
        await self._db.flush()
        await self._audit.log(
            action="privacy_notice.created",
            actor_id=actor_id,
            resource_type=_RESOURCE_TYPE,
            resource_id=notice.id,
            extra={"version": notice.version, "parentId": str(notice.parent_id) if notice.parent_id else None},
        )
        log.info(
            "privacy_notice.created",
            notice_id=notice.notice_id,
            version=notice.version,
            parent_id=str(notice.parent_id) if notice.parent_id else None,
        )
        await self._webhooks.publish(EventType.NOTICE_CREATED, notice_resource(notice))
        return notice

    async def get_notice(self, notice_id: uuid.UUID) -> PrivacyNotice:
        notice = await self._db.get(PrivacyNotice, notice_id)
        if notice is None:
            raise NotFoundError(f"Privacy notice {notice_id} not found")
        return notice

    async def list_notices(
        self,
        *,
        status: str | None = None,
        category: str | None = None,
    ) -> list[PrivacyNotice]:
        stmt = select(PrivacyNotice)
        if status:
            try:
                stmt = stmt.where(PrivacyNotice.status == NoticeStatus(status))
            except ValueError:
                raise ValidationError(f"Unknown notice status '{status}'") from None
        if category:
            stmt = stmt.where(PrivacyNotice.category == category)
        result = await self._db.execute(stmt.order_by(PrivacyNotice.created_at.desc()))
        return list(result.scalars().all())

    async def activate(self, notice_id: uuid.UUID, *, actor_id: uuid.UUID | None = None) -> PrivacyNotice:
        """Make notice_id the active version of its family."""
        notice = await self.get_notice(notice_id)
        if notice.status not in (NoticeStatus.DRAFT, NoticeStatus.INACTIVE):
            raise InvalidStateError(
                f"Privacy notice {notice.notice_id} is '{notice.status}' and cannot be activated"
            )

        result = await self._db.execute(
            select(PrivacyNotice).where(
                PrivacyNotice.family_id == notice.family_id,
                PrivacyNotice.status == NoticeStatus.ACTIVE,
                PrivacyNotice.id != notice.id,
            )
        )
        archived = list(result.scalars().all())
        for previous in archived:
            previous.status = NoticeStatus.ARCHIVED

        notice.status = NoticeStatus.ACTIVE
        if notice.effective_date is None:
            notice.effective_date = utcnow()
        await self._db.flush()

        await self._audit.log(
            action="privacy_notice.activated",
            actor_id=actor_id,
            resource_type=_RESOURCE_TYPE,
            resource_id=notice.id,
            extra={"version": notice.version, "archived": [str(p.id) for p in archived]},
        )
        log.info(
            "privacy_notice.activated",
            notice_id=notice.notice_id,
            version=notice.version,
            archived=len(archived),
        )
        return notice

    async def acknowledge(self, notice_id: uuid.UUID, user_id: uuid.UUID) -> NoticeAcknowledgment:
        """Record that user_id has read notice_id. Repeated calls are no-ops."""
        notice = await self.get_notice(notice_id)
        if notice.status != NoticeStatus.ACTIVE:
            raise InvalidStateError(f"Privacy notice {notice.notice_id} is not active")

        result = await self._db.execute(
            select(NoticeAcknowledgment).where(
                NoticeAcknowledgment.notice_id == notice.id,
                NoticeAcknowledgment.user_id == user_id,
            )
        )
        existing = result.scalar_one_or_none()
        if existing is not None:
            return existing

        ack = NoticeAcknowledgment(notice_id=notice.id, user_id=user_id, acknowledged_at=utcnow())
        self._db.add(ack)
        await self._db.flush()
        log.info("privacy_notice.acknowledged", notice_id=notice.notice_id, user_id=str(user_id))
        return ack
