"""Automated DSAR processing.

Runs on the background worker pool, never on a request coroutine. The
HTTP layer has already moved the request to in_progress and committed;
DSARProcessor.process() then does the type-specific work in its own
session and finishes the lifecycle:

    success          -> completed, with a type-specific processing_result
    any exception    -> rejected, failure_reason = str(exc)

There are no retries. The per-type delay stands in for real export and
deletion jobs and is awaited with asyncio.sleep so it never blocks the
event loop.
"""

from __future__ import annotations

import asyncio
import hashlib
import hmac
import json
import time
import uuid
from collections.abc import Awaitable, Callable
from datetime import timedelta
from typing import Any

import structlog
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consenthub.compliance.dsar import RequestStatus, RequestType
from consenthub.config import Settings, get_settings
from consenthub.core.errors import ConsentHubError, NotFoundError
from consenthub.database import utcnow
from consenthub.models.consent import Consent
from consenthub.models.dsar_request import DSARRequest
from consenthub.models.preference import PreferenceItem, UserPreference
from consenthub.models.user import User
from consenthub.services.dsar import DSARService
from consenthub.services.resources import consent_resource

log = structlog.get_logger(__name__)

PROCESSOR_ACTOR = "system:dsar-processor"

# Personal data categories removed by an erasure request
ERASURE_SCOPE: tuple[str, ...] = (
    "profile",
    "contact_details",
    "communication_preferences",
    "marketing_consents",
    "activity_history",
)

# Categories that must be kept for legal retention and are excluded above
RETAINED_CATEGORIES: tuple[str, ...] = ("audit_trail", "dsar_records")

RECTIFIABLE_FIELDS: tuple[str, ...] = ("name", "email", "phone")


class DSARProcessor:
    """Completes in_progress requests with a type-specific result.

    Args:
        session_factory: Opens the session each run works in.
        settings: Supplies the simulated delays, export link TTL and secret.
        sleep: Awaitable delay function; tests pass a no-op.
    """

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings | None = None,
        *,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._session_factory = session_factory
        self._settings = settings or get_settings()
        self._sleep = sleep

    async def process(self, request_id: uuid.UUID) -> str | None:
        """Run automated processing for one request; returns the final status."""
        started = time.perf_counter()
        async with self._session_factory() as db:
            service = DSARService(db, self._settings)
            try:
                request = await service.get_request(request_id)
            except NotFoundError:
                log.warning("dsar.auto_process_missing", dsar_id=str(request_id))
                return None

            if request.status != RequestStatus.IN_PROGRESS:
                log.warning(
                    "dsar.auto_process_skipped",
                    dsar_id=str(request_id),
                    status=request.status,
                )
                return request.status

            try:
                await self._simulate_work(request.request_type)
                result = await self.build_result(db, request)
                result["processingTime"] = f"{time.perf_counter() - started:.2f}s"
                await service.transition(
                    request.id,
                    RequestStatus.COMPLETED,
                    actor_id=PROCESSOR_ACTOR,
                    result=result,
                )
                await db.commit()
            except Exception as exc:
                await db.rollback()
                log.error(
                    "dsar.auto_process_failed",
                    dsar_id=str(request_id),
                    error=str(exc),
                    exc_info=True,
                )
                return await self._reject(request_id, str(exc) or type(exc).__name__)

        log.info("dsar.auto_process_completed", dsar_id=str(request_id))
        return RequestStatus.COMPLETED

    async def _reject(self, request_id: uuid.UUID, reason: str) -> str | None:
        async with self._session_factory() as db:
            service = DSARService(db, self._settings)
            try:
                request = await service.transition(
                    request_id,
                    RequestStatus.REJECTED,
                    actor_id=PROCESSOR_ACTOR,
                    reason=reason,
                )
                await db.commit()
            except ConsentHubError as exc:
                # Someone else finished the request while we were working
                await db.rollback()
                log.warning("dsar.auto_reject_skipped", dsar_id=str(request_id), error=str(exc))
                return None
        return request.status

    async def _simulate_work(self, request_type: str) -> None:
        if not self._settings.dsar_simulate_processing:
            return
        delay = self._settings.dsar_processing_delays.get(str(request_type), 0.0)
        if delay > 0:
            await self._sleep(delay)

    # ------------------------------------------------------------------ #
    # Result builders
    # ------------------------------------------------------------------ #

    async def build_result(self, db: AsyncSession, request: DSARRequest) -> dict[str, Any]:
        request_type = RequestType.parse(request.request_type)
        if request_type in (RequestType.DATA_ACCESS, RequestType.DATA_PORTABILITY):
            return await self._export_result(db, request, request_type)
        if request_type == RequestType.DATA_ERASURE:
            return self._erasure_result(request)
        return self._rectification_result(request)

    async def _export_result(
        self,
        db: AsyncSession,
        request: DSARRequest,
        request_type: RequestType,
    ) -> dict[str, Any]:
        export = await self.collect_subject_data(db, request)
        payload = json.dumps(export, default=str, sort_keys=True)
        now = utcnow()
        export_format = "csv" if request_type == RequestType.DATA_PORTABILITY else "json"
        token = self._sign(f"{request.id}:{now.isoformat()}")[:32]
        base = self._settings.public_base_url.rstrip("/")
        return {
            "dataExported": True,
            "exportFormat": export_format,
            "exportSize": len(payload.encode("utf-8")),
            "recordCount": len(export["consents"]) + len(export["preferences"]),
            "downloadLink": f"{base}/exports/{request.request_id}.{export_format}?token={token}",
            "expiresAt": (now + timedelta(days=self._settings.dsar_export_link_ttl_days)).isoformat(),
        }

    def _erasure_result(self, request: DSARRequest) -> dict[str, Any]:
        digest = self._sign(f"erasure:{request.id}:{request.requester_email}")
        return {
            "dataDeleted": True,
            "deletionScope": list(ERASURE_SCOPE),
            "retainedCategories": list(RETAINED_CATEGORIES),
            "retentionCompliance": True,
            "deletionCertificate": f"CERT-{digest[:16].upper()}",
        }

    def _rectification_result(self, request: DSARRequest) -> dict[str, Any]:
        text = f"{request.subject or ''} {request.description or ''}".lower()
        fields = [field for field in RECTIFIABLE_FIELDS if field in text]
        if not fields:
            fields = ["name"]
        return {
            "dataRectified": True,
            "fieldsUpdated": fields,
            # A changed email address has to be re-confirmed by the subject
            "verificationRequired": "email" in fields,
        }

    async def collect_subject_data(self, db: AsyncSession, request: DSARRequest) -> dict[str, Any]:
        """Gather the subject's consents and preference values."""
        user = None
        if request.requester_id is not None:
            user = await db.get(User, request.requester_id)
        if user is None:
            result = await db.execute(
                select(User).where(User.email == request.requester_email)
            )
            user = result.scalar_one_or_none()

        party_refs = [request.requester_email]
        if user is not None:
            party_refs.append(str(user.id))

        consent_rows = await db.execute(
            select(Consent)
            .where(or_(*(Consent.party_id == ref for ref in party_refs)))
            .order_by(Consent.created_at.asc())
        )
        consents = [consent_resource(c) for c in consent_rows.scalars().all()]

        preferences: list[dict[str, Any]] = []
        if user is not None:
            pref_rows = await db.execute(
                select(UserPreference, PreferenceItem)
                .join(PreferenceItem, PreferenceItem.id == UserPreference.item_id)
                .where(UserPreference.user_id == user.id)
            )
            preferences = [
                {"key": item.key, "name": item.name, "value": pref.value}
                for pref, item in pref_rows.all()
            ]

        return {
            "subject": {
                "name": request.requester_name,
                "email": request.requester_email,
                "phone": request.requester_phone,
            },
            "consents": consents,
            "preferences": preferences,
        }

    def _sign(self, message: str) -> str:
        return hmac.new(
            self._settings.secret_key.get_secret_value().encode("utf-8"),
            message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
