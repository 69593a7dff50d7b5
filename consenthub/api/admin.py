"""Admin / CSR views.

Routes:
  GET /api/v1/admin/dashboard/overview - Aggregate counts, compliance score and CSR stats
  GET /api/v1/audit                    - Search the audit log (staff only)
  GET /api/guardians                   - Guardians and their minor dependents
"""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.api.schemas import envelope
from consenthub.auth.dependencies import AuthenticatedUser, get_current_user
from consenthub.core.audit import AuditService
from consenthub.core.errors import ValidationError
from consenthub.core.policy import Permission, check_permission
from consenthub.database import get_db_session
from consenthub.services.dashboard import DashboardService
from consenthub.services.resources import audit_resource, guardian_resource

router = APIRouter(prefix="/admin", tags=["admin"])
audit_router = APIRouter(tags=["admin"])
guardians_router = APIRouter(tags=["admin"])


@router.get("/dashboard/overview")
async def dashboard_overview(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.DASHBOARD_READ)
    overview = await DashboardService(db).overview()
    return envelope(overview.to_dict())


@audit_router.get("/audit")
async def query_audit_log(
    resource_type: str | None = Query(None, alias="resourceType"),
    resource_id: str | None = Query(None, alias="resourceId"),
    action: str | None = Query(None, description="Exact action, or a prefix ending in '*'"),
    since: datetime | None = Query(None, alias="from"),
    until: datetime | None = Query(None, alias="to"),
    limit: int = Query(50, ge=1, le=500),
    offset: int = Query(0, ge=0),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Newest entries first; `from` is inclusive and `to` exclusive."""
    check_permission(current_user.role, Permission.AUDIT_READ)
    since, until = _as_utc(since), _as_utc(until)
    if since and until and until <= since:
        raise ValidationError("'to' must be later than 'from'")
    entries = await AuditService(db).search(
        resource_type=resource_type,
        resource_id=resource_id,
        action=action,
        since=since,
        until=until,
        limit=limit,
        offset=offset,
    )
    return envelope([audit_resource(e) for e in entries])


def _as_utc(value: datetime | None) -> datetime | None:
    if value is not None and value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value


@guardians_router.get("/guardians")
async def list_guardians(
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.GUARDIAN_READ)
    guardians = await DashboardService(db).guardians()
    return envelope([guardian_resource(g) for g in guardians])
