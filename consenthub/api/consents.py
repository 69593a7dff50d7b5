"""Consent record endpoints.

Routes:
  GET    /api/v1/consents                      - List records (customers: their own)
  POST   /api/v1/consents                      - Capture a consent record
  GET    /api/v1/consents/effective?partyId=   - Record in force per purpose
  PATCH  /api/v1/consents/{id}                 - Change status
  GET    /api/v1/consents/{id}/history         - Status-change audit trail
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.api.schemas import ConsentCreateRequest, ConsentFields, ConsentStatusUpdate, envelope
from consenthub.auth.dependencies import AuthenticatedUser, get_current_user
from consenthub.compliance.consent import ConsentStatus, compliance_score
from consenthub.core.policy import Permission, assert_owner_or_staff, check_permission, is_staff
from consenthub.database import get_db_session
from consenthub.services.consent import ConsentInput, ConsentService
from consenthub.services.resources import consent_resource

router = APIRouter(prefix="/consents", tags=["consents"])


def to_consent_input(body: ConsentFields) -> ConsentInput:
    return ConsentInput(
        purpose=body.purpose,
        status=body.status,
        channel=body.channel,
        consent_type=body.consent_type,
        privacy_notice_id=body.privacy_notice_id,
        version_accepted=body.version_accepted,
        valid_from=body.valid_from,
        valid_to=body.valid_to,
        metadata=body.metadata,
    )


def _scoped_party(current_user: AuthenticatedUser, party_id: str | None) -> str | None:
    """Customers are scoped to their own party id or a minor they are guardian of."""
    if is_staff(current_user.role):
        return party_id
    own = str(current_user.id)
    if party_id in (None, own):
        return own
    guards = current_user.user.find_minor(party_id) is not None
    assert_owner_or_staff(current_user.role, guards, "Party")
    return party_id


@router.get("")
async def list_consents(
    party_id: str | None = Query(None, alias="partyId"),
    status_filter: str | None = Query(None, alias="status"),
    purpose: str | None = Query(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    consents = await ConsentService(db).list_consents(
        party_id=_scoped_party(current_user, party_id),
        status=status_filter,
        purpose=purpose,
    )
    return envelope([consent_resource(c) for c in consents])


@router.post("", status_code=status.HTTP_201_CREATED)
async def create_consent(
    body: ConsentCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.CONSENT_WRITE_OWN)
    consent = await ConsentService(db).create_consent(
        current_user.actor,
        body.party_id or str(current_user.id),
        to_consent_input(body),
    )
    return envelope(consent_resource(consent), "Consent recorded")


@router.get("/effective")
async def effective_consents(
    party_id: str | None = Query(None, alias="partyId"),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    consents = await ConsentService(db).effective_consents(_scoped_party(current_user, party_id))
    granted = sum(1 for c in consents if c.status == ConsentStatus.GRANTED)
    return envelope(
        {
            "consents": [consent_resource(c) for c in consents],
            "complianceScore": compliance_score(granted, len(consents)),
        }
    )


@router.patch("/{consent_id}")
async def update_consent(
    consent_id: uuid.UUID,
    body: ConsentStatusUpdate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.CONSENT_WRITE_OWN)
    consent = await ConsentService(db).update_status(
        current_user.actor,
        consent_id,
        body.status,
        expected_version=body.expected_version,
    )
    return envelope(consent_resource(consent), f"Consent is now {consent.status}")


@router.get("/{consent_id}/history")
async def consent_history(
    consent_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    svc = ConsentService(db)
    consent = await svc.get_consent(consent_id)
    svc.assert_can_act(current_user.actor, consent)
    entries = await svc.history(consent_id)
    return envelope(
        [
            {
                "timestamp": entry.timestamp.isoformat(),
                "action": entry.action,
                "actorId": entry.actor_id,
                "from": (entry.extra or {}).get("from"),
                "to": (entry.extra or {}).get("to"),
            }
            for entry in entries
        ]
    )
