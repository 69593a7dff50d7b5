"""Guardian consent on behalf of minors.

Routes:
  POST /api/v1/guardian/consent - Record consents for a minor dependent
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.api.consents import to_consent_input
from consenthub.api.schemas import GuardianConsentRequest, envelope
from consenthub.auth.dependencies import AuthenticatedUser, get_current_user
from consenthub.core.errors import ValidationError
from consenthub.core.policy import Permission, check_permission
from consenthub.database import get_db_session
from consenthub.services.consent import ConsentService
from consenthub.services.resources import consent_resource

router = APIRouter(prefix="/guardian", tags=["guardian"])


@router.post("/consent")
async def record_guardian_consent(
    body: GuardianConsentRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    """Only the guardian named on the minor (or an admin) may record these."""
    check_permission(current_user.role, Permission.CONSENT_WRITE_OWN)
    guardian_id = current_user.id
    if body.guardian_id:
        try:
            guardian_id = uuid.UUID(body.guardian_id)
        except ValueError:
            raise ValidationError("guardianId must be a user id") from None

    consents = await ConsentService(db).create_guardian_consents(
        current_user.actor,
        guardian_id,
        body.minor_id,
        [to_consent_input(c) for c in body.consents],
    )
    return envelope(
        [consent_resource(c) for c in consents],
        f"Recorded {len(consents)} consent(s) for minor {body.minor_id}",
    )
