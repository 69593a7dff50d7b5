"""Privacy notice endpoints.

Routes:
  GET  /api/v1/privacy-notices                    - List notices
  POST /api/v1/privacy-notices                    - Create a draft notice
  GET  /api/v1/privacy-notices/{id}               - Fetch one notice
  POST /api/v1/privacy-notices/{id}/versions      - Derive the next draft version
  POST /api/v1/privacy-notices/{id}/activate      - Make a version active
  POST /api/v1/privacy-notices/{id}/acknowledge   - Record that the caller read it
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.api.schemas import NoticeCreateRequest, NoticeVersionRequest, envelope
from consenthub.auth.dependencies import AuthenticatedUser, get_current_user
from consenthub.core.policy import Permission, check_permission
from consenthub.database import get_db_session
from consenthub.services.privacy_notice import PrivacyNoticeService
from consenthub.services.resources import notice_resource

router = APIRouter(prefix="/privacy-notices", tags=["privacy-notices"])


@router.get("")
async def list_notices(
    status_filter: str | None = Query(None, alias="status"),
    category: str | None = Query(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.NOTICE_READ)
    notices = await PrivacyNoticeService(db).list_notices(status=status_filter, category=category)
    return envelope([notice_resource(n) for n in notices])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_notice(
    body: NoticeCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.NOTICE_MANAGE)
    notice = await PrivacyNoticeService(db).create_notice(
        title=body.title,
        content=body.content,
        actor_id=current_user.id,
        version=body.version,
        category=body.category,
        description=body.description,
        content_type=body.content_type,
        purposes=body.purposes,
        legal_basis=body.legal_basis,
        language=body.language,
        effective_date=body.effective_date,
    )
    return envelope(notice_resource(notice), "Privacy notice created")


@router.get("/{notice_id}")
async def get_notice(
    notice_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.NOTICE_READ)
    notice = await PrivacyNoticeService(db).get_notice(notice_id)
    return envelope(notice_resource(notice))


@router.post("/{notice_id}/versions", status_code=status.HTTP_201_CREATED)
async def create_notice_version(
    notice_id: uuid.UUID,
    body: NoticeVersionRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.NOTICE_MANAGE)
    draft = await PrivacyNoticeService(db).create_version(
        notice_id,
        changes=body.changes(),
        major=body.major,
        actor_id=current_user.id,
    )
    return envelope(notice_resource(draft), f"Version {draft.version} created as draft")


@router.post("/{notice_id}/activate")
async def activate_notice(
    notice_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.NOTICE_MANAGE)
    notice = await PrivacyNoticeService(db).activate(notice_id, actor_id=current_user.id)
    return envelope(notice_resource(notice), f"Version {notice.version} is now active")


@router.post("/{notice_id}/acknowledge")
async def acknowledge_notice(
    notice_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.NOTICE_READ)
    ack = await PrivacyNoticeService(db).acknowledge(notice_id, current_user.id)
    return envelope(
        {
            "noticeId": str(ack.notice_id),
            "userId": str(ack.user_id),
            "acknowledgedAt": ack.acknowledged_at.isoformat(),
        }
    )
