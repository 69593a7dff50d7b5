"""Audit logging service.

Provides a simple interface for writing and reading audit log entries.
Every consent status change, DSAR transition and notice activation is
recorded; the consent history endpoint is served from these rows,
and staff can search them through the audit feed.

Design:
- Audit writes happen AFTER the primary change has been flushed, so a
  failed audit write never masks a conflict on the business row. We log
  the failure but do not surface it to the user.
- Detail text is capped at 500 characters to avoid storing sensitive data
  at full fidelity in the audit table.
- The service is a plain class (not a singleton) to keep it testable.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.database import utcnow
from consenthub.models.audit import AuditLog, AuditStatus

log = structlog.get_logger(__name__)

_DETAIL_MAX_CHARS = 500


def _truncate(text: str | None, max_chars: int = _DETAIL_MAX_CHARS) -> str | None:
    """Truncate text to max_chars, appending '...' if truncated."""
    if text is None:
        return None
    if len(text) <= max_chars:
        return text
    return text[:max_chars] + "..."


class AuditService:
    """Append-only audit log service.

    Usage:
        audit = AuditService(db)
        await audit.log(
            action="consent.status_changed",
            actor_id=user.id,
            resource_type="consent",
            resource_id=consent.id,
            extra={"from": "pending", "to": "granted"},
        )
    """

    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def log(
        self,
        *,
        action: str,
        actor_id: uuid.UUID | str | None = None,
        resource_type: str | None = None,
        resource_id: uuid.UUID | str | None = None,
        status: AuditStatus = AuditStatus.SUCCESS,
        detail: str | None = None,
        extra: dict[str, Any] | None = None,
    ) -> AuditLog:
        """Write an audit log entry and flush it to the DB.

        This does not commit - the calling code owns the transaction boundary.
        """
        entry = AuditLog(
            timestamp=utcnow(),
            actor_id=str(actor_id) if actor_id else None,
            action=action,
            resource_type=resource_type,
            resource_id=str(resource_id) if resource_id else None,
            status=status,
            detail=_truncate(detail),
            extra=extra or {},
        )
        self._db.add(entry)
        try:
            await self._db.flush()
        except SQLAlchemyError as exc:
            log.error("audit.write_failed", error=str(exc), action=action)
            # Do not re-raise - audit failure must not crash the request
        return entry

    async def history(self, resource_type: str, resource_id: uuid.UUID | str) -> list[AuditLog]:
        """Return every entry for one resource, oldest first."""
        result = await self._db.execute(
            select(AuditLog)
            .where(
                AuditLog.resource_type == resource_type,
                AuditLog.resource_id == str(resource_id),
            )
            .order_by(AuditLog.timestamp.asc())
        )
        return list(result.scalars().all())

    async def search(
        self,
        *,
        resource_type: str | None = None,
        resource_id: uuid.UUID | str | None = None,
        action: str | None = None,
        since: datetime | None = None,
        until: datetime | None = None,
        limit: int = 50,
        offset: int = 0,
    ) -> list[AuditLog]:
        """Newest first. `action` ending in '.' or '*' matches a prefix (e.g. 'consent.*')."""
        stmt = select(AuditLog)
        if resource_type:
            stmt = stmt.where(AuditLog.resource_type == resource_type)
        if resource_id:
            stmt = stmt.where(AuditLog.resource_id == str(resource_id))
        if action:
            stmt = stmt.where(_action_clause(action))
        if since:
            stmt = stmt.where(AuditLog.timestamp >= since)
        if until:
            stmt = stmt.where(AuditLog.timestamp < until)
        stmt = stmt.order_by(AuditLog.timestamp.desc(), AuditLog.id).offset(offset).limit(limit)
        result = await self._db.execute(stmt)
        return list(result.scalars().all())

    async def count(self, *, action: str | None = None, since: datetime | None = None) -> int:
        stmt = select(func.count()).select_from(AuditLog)
        if action:
            stmt = stmt.where(_action_clause(action))
        if since:
            stmt = stmt.where(AuditLog.timestamp >= since)
        return await self._db.scalar(stmt) or 0


def _action_clause(action: str):
    if action.endswith(("*", ".")):
        prefix = action.rstrip("*")
        return AuditLog.action.startswith(prefix, autoescape=True)
    return AuditLog.action == action
