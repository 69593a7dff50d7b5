"""Data Subject Access Request endpoints.

Routes:
  POST   /api/v1/dsar                     - Submit a request
  GET    /api/v1/dsar                     - List requests (customers: their own)
  GET    /api/v1/dsar/{id}                - Fetch by UUID or requestId
  PATCH  /api/v1/dsar/{id}/status         - CSR status transition
  POST   /api/v1/dsar/{id}/notes          - Add a processing note
  POST   /api/v1/dsar/{id}/auto-process   - Start automated processing (202)
  DELETE /api/v1/dsar/{id}                - Administrative purge
  GET    /api/dsar-requests               - CSR work queue with risk fields
"""

from __future__ import annotations

import structlog
from fastapi import APIRouter, Depends, Query, Request, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.api.schemas import DSARCreateRequest, DSARNoteRequest, DSARStatusUpdate, envelope
from consenthub.auth.dependencies import AuthenticatedUser, get_current_user
from consenthub.compliance.dsar import RequestSource, RequestStatus
from consenthub.core.errors import ForbiddenError, UpstreamFailure
from consenthub.core.policy import Permission, assert_owner_or_staff, check_permission, is_staff
from consenthub.database import get_db_session, utcnow
from consenthub.infra.background_worker import TaskType
from consenthub.models.dsar_request import DSARRequest
from consenthub.services.dsar import DSARService
from consenthub.services.resources import dsar_resource

log = structlog.get_logger(__name__)

router = APIRouter(prefix="/dsar", tags=["dsar"])
queue_router = APIRouter(tags=["dsar"])


def _is_requester(request: DSARRequest, user: AuthenticatedUser) -> bool:
    if request.requester_id is not None and request.requester_id == user.id:
        return True
    return request.requester_email.lower() == user.email.lower()


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_dsar(
    body: DSARCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Submit a DSAR. Customers may only file requests about themselves."""
    check_permission(current_user.role, Permission.DSAR_SUBMIT)
    staff = is_staff(current_user.role)
    if not staff and body.requester_email.lower() != current_user.email.lower():
        raise ForbiddenError("Customers may only submit requests for their own email address")

    svc = DSARService(db)
    request = await svc.create_request(
        requester_name=body.requester_name,
        requester_email=body.requester_email,
        request_type=body.request_type,
        requester_phone=body.requester_phone,
        requester_id=None if staff else current_user.id,
        priority=body.priority,
        subject=body.subject,
        description=body.description,
        source=body.source if staff else RequestSource.WEB_FORM,
        actor_id=current_user.id,
    )
    return envelope(dsar_resource(request, utcnow()), "DSAR request submitted")


@router.get("")
async def list_dsars(
    status_filter: str | None = Query(None, alias="status"),
    request_type: str | None = Query(None, alias="requestType"),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    svc = DSARService(db)
    if is_staff(current_user.role):
        requests = await svc.list_requests(
            status=status_filter, request_type=request_type, limit=limit, offset=offset
        )
    else:
        requests = await svc.list_requests(
            status=status_filter,
            request_type=request_type,
            requester_email=current_user.email,
            requester_id=current_user.id,
            limit=limit,
            offset=offset,
        )
    now = utcnow()
    return envelope([dsar_resource(r, now) for r in requests])


@router.get("/{dsar_id}")
async def get_dsar(
    dsar_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    request = await DSARService(db).get_request(dsar_id)
    assert_owner_or_staff(current_user.role, _is_requester(request, current_user), "DSAR request")
    return envelope(dsar_resource(request, utcnow()))


@router.patch("/{dsar_id}/status")
async def update_dsar_status(
    dsar_id: str,
    body: DSARStatusUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.DSAR_MANAGE)
    request = await DSARService(db).transition(
        dsar_id,
        body.status,
        actor_id=current_user.id,
        reason=body.reason,
        result=body.result,
        expected_version=body.expected_version,
    )
    return envelope(dsar_resource(request, utcnow()), f"DSAR request is now {request.status}")


@router.post("/{dsar_id}/notes")
async def add_dsar_note(
    dsar_id: str,
    body: DSARNoteRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.DSAR_MANAGE)
    request = await DSARService(db).add_note(dsar_id, body.note, author=current_user.email)
    return envelope(dsar_resource(request, utcnow()))


@router.post("/{dsar_id}/auto-process", status_code=status.HTTP_202_ACCEPTED)
async def auto_process_dsar(
    dsar_id: str,
    http_request: Request,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> JSONResponse:
    """Move a pending request to in_progress and hand it to the worker pool."""
    check_permission(current_user.role, Permission.DSAR_MANAGE)
    worker_pool = getattr(http_request.app.state, "worker_pool", None)
    if worker_pool is None or not worker_pool.accepts(TaskType.DSAR_AUTO_PROCESS):
        raise UpstreamFailure("Background processing is not available")

    svc = DSARService(db)
    request = await svc.begin_auto_processing(dsar_id, actor_id=current_user.id)
    # The worker reads the request from its own session
    await db.commit()

    try:
        task_id = await worker_pool.submit_task(
            task_type=TaskType.DSAR_AUTO_PROCESS,
            payload={"dsar_id": str(request.id)},
        )
    except (RuntimeError, ValueError) as exc:
        # No worker will pick the claim up, so close it out instead of leaving it in_progress
        log.error("dsar.auto_process_queue_failed", dsar_id=str(request.id), error=str(exc))
        await svc.transition(
            request.id,
            RequestStatus.REJECTED,
            actor_id=current_user.id,
            reason=f"Automated processing could not be queued: {exc}",
        )
        await db.commit()
        raise UpstreamFailure("Automated processing could not be queued") from None

    log.info("dsar.auto_process_queued", dsar_id=str(request.id), task_id=task_id)
    return JSONResponse(
        status_code=status.HTTP_202_ACCEPTED,
        content=envelope(
            {"taskId": task_id, "request": dsar_resource(request, utcnow())},
            "Automated processing started",
        ),
    )


@router.delete("/{dsar_id}")
async def purge_dsar(
    dsar_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.DSAR_PURGE)
    await DSARService(db).purge(dsar_id, actor_id=current_user.id)
    return envelope(None, "DSAR request deleted")


@queue_router.get("/dsar-requests")
async def dsar_work_queue(
    status_filter: str | None = Query(None, alias="status"),
    request_type: str | None = Query(None, alias="requestType"),
    email: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """All requests with derived risk, eligibility and recommendation fields."""
    check_permission(current_user.role, Permission.DSAR_MANAGE)
    requests = await DSARService(db).list_requests(
        status=status_filter,
        request_type=request_type,
        requester_email=email,
        limit=limit,
        offset=offset,
    )
    now = utcnow()
    return envelope([dsar_resource(r, now) for r in requests])
