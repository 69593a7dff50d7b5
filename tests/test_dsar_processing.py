"""Tests for automated DSAR processing (DSARProcessor).

Every test drives the processor the way the worker pool does: the
request has already been claimed (in_progress) and committed, and
process() runs in its own session.
"""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from consenthub.compliance.dsar import RequestStatus
from consenthub.compliance.processing import PROCESSOR_ACTOR, DSARProcessor
from consenthub.config import Settings
from consenthub.core.audit import AuditService
from consenthub.core.policy import Actor
from consenthub.models.user import User
from consenthub.services.consent import ConsentInput, ConsentService
from consenthub.services.dsar import DSARService


async def _claimed_request(
    session_factory: async_sessionmaker[AsyncSession],
    request_type: str,
    *,
    email: str = "customer@example.com",
    requester_id: uuid.UUID | None = None,
    description: str | None = None,
) -> uuid.UUID:
    async with session_factory() as db:
        svc = DSARService(db)
        request = await svc.create_request(
            requester_name="Cora Customer",
            requester_email=email,
            request_type=request_type,
            requester_id=requester_id,
            description=description,
        )
        await svc.begin_auto_processing(request.id)
        await db.commit()
        return request.id


async def _reload(session_factory: async_sessionmaker[AsyncSession], request_id: uuid.UUID):
    async with session_factory() as db:
        return await DSARService(db).get_request(request_id)


class TestProcessResults:
    async def test_erasure_completes_with_deletion_certificate(
        self, session_factory, processor: DSARProcessor
    ) -> None:
        request_id = await _claimed_request(session_factory, "delete")

        assert await processor.process(request_id) == RequestStatus.COMPLETED

        request = await _reload(session_factory, request_id)
        assert request.status == RequestStatus.COMPLETED
        result = request.processing_result
        assert result["dataDeleted"] is True
        assert result["deletionCertificate"].startswith("CERT-")
        assert "audit_trail" in result["retainedCategories"]
        assert result["processingTime"].endswith("s")

    async def test_access_exports_subject_data(
        self, session_factory, processor: DSARProcessor, users: dict[str, User]
    ) -> None:
        customer = users["customer"]
        async with session_factory() as db:
            await ConsentService(db).create_consent(
                Actor(id=customer.id, role=customer.role),
                str(customer.id),
                ConsentInput(purpose="marketing_email"),
            )
            await db.commit()

        request_id = await _claimed_request(session_factory, "export", requester_id=customer.id)
        await processor.process(request_id)

        result = (await _reload(session_factory, request_id)).processing_result
        assert result["dataExported"] is True
        assert result["exportFormat"] == "json"
        assert result["recordCount"] == 1
        assert result["exportSize"] > 0
        assert result["downloadLink"].startswith("https://consenthub.test/exports/DSAR-")

    async def test_portability_exports_csv(self, session_factory, processor: DSARProcessor) -> None:
        request_id = await _claimed_request(session_factory, "portability")
        await processor.process(request_id)
        result = (await _reload(session_factory, request_id)).processing_result
        assert result["exportFormat"] == "csv"
        assert ".csv?token=" in result["downloadLink"]

    async def test_rectification_detects_fields(self, session_factory, processor: DSARProcessor) -> None:
        request_id = await _claimed_request(
            session_factory,
            "rectification",
            description="Please fix my email and phone number",
        )
        await processor.process(request_id)
        result = (await _reload(session_factory, request_id)).processing_result
        assert result["dataRectified"] is True
        assert result["fieldsUpdated"] == ["email", "phone"]
        assert result["verificationRequired"] is True

    async def test_completion_is_attributed_to_the_processor(
        self, session_factory, processor: DSARProcessor
    ) -> None:
        request_id = await _claimed_request(session_factory, "access")
        await processor.process(request_id)
        async with session_factory() as db:
            entries = await AuditService(db).history("dsar_request", request_id)
        assert entries[-1].actor_id == PROCESSOR_ACTOR
        assert entries[-1].extra["to"] == "completed"


class TestProcessGuards:
    async def test_request_not_in_progress_is_left_alone(
        self, session_factory, processor: DSARProcessor
    ) -> None:
        async with session_factory() as db:
            request = await DSARService(db).create_request(
                requester_name="Cora Customer",
                requester_email="customer@example.com",
                request_type="access",
            )
            await db.commit()

        assert await processor.process(request.id) == RequestStatus.PENDING
        assert (await _reload(session_factory, request.id)).status == RequestStatus.PENDING

    async def test_missing_request_returns_none(self, processor: DSARProcessor) -> None:
        assert await processor.process(uuid.uuid4()) is None

    async def test_failure_rejects_with_error_message(
        self, session_factory, processor: DSARProcessor
    ) -> None:
        request_id = await _claimed_request(session_factory, "access")

        with patch.object(
            DSARProcessor,
            "build_result",
            AsyncMock(side_effect=RuntimeError("export store unavailable")),
        ):
            assert await processor.process(request_id) == RequestStatus.REJECTED

        request = await _reload(session_factory, request_id)
        assert request.status == RequestStatus.REJECTED
        assert request.failure_reason == "export store unavailable"
        assert request.failed_at is not None


class TestSimulatedDelay:
    async def test_delay_uses_injected_sleep(self, session_factory, settings: Settings) -> None:
        sleep = AsyncMock()
        simulated = settings.model_copy(update={"dsar_simulate_processing": True})
        processor = DSARProcessor(session_factory, simulated, sleep=sleep)

        request_id = await _claimed_request(session_factory, "delete")
        await processor.process(request_id)

        sleep.assert_awaited_once_with(simulated.dsar_processing_delays["data_erasure"])

    async def test_no_delay_when_simulation_disabled(self, session_factory, settings: Settings) -> None:
        sleep = AsyncMock()
        processor = DSARProcessor(session_factory, settings, sleep=sleep)
        request_id = await _claimed_request(session_factory, "delete")
        await processor.process(request_id)
        sleep.assert_not_awaited()
