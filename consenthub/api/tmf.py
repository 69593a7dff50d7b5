"""TM Forum open API endpoints.

Routes:
  GET    /api/tmf632/privacyConsent   - TMF632 PrivacyConsent list
  POST   /api/tmf632/privacyConsent   - TMF632 PrivacyConsent create
  POST   /api/tmf669/hub              - TMF669 event subscription
  DELETE /api/tmf669/hub/{id}         - TMF669 unsubscribe
  GET    /api/tmf641/party/{id}       - TMF641 Individual party

Successful responses use the TMF resource shapes, not the API envelope.
"""

from __future__ import annotations

import uuid
from typing import Any

from fastapi import APIRouter, Depends, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.api.schemas import TMFHubRegistration, TMFPrivacyConsentCreate
from consenthub.auth.dependencies import AuthenticatedUser, get_current_user
from consenthub.compliance.consent import ConsentSource
from consenthub.core.errors import NotFoundError
from consenthub.core.policy import Permission, check_permission
from consenthub.database import get_db_session
from consenthub.models.consent import Consent
from consenthub.models.user import User
from consenthub.services.consent import ConsentInput, ConsentService
from consenthub.services.webhook import WebhookService

router = APIRouter(tags=["tmf"])

_CONSENT_SCHEMA = "https://schemas.tmforum.org/TMF632/PrivacyConsent"
_PARTY_SCHEMA = "https://schemas.tmforum.org/TMF641/Party"


def privacy_consent_resource(consent: Consent) -> dict[str, Any]:
    return {
        "id": str(consent.id),
        "partyId": consent.party_id,
        "purpose": consent.purpose,
        "status": consent.status,
        "channel": consent.channel,
        "validFor": {
            "startDateTime": consent.valid_from.isoformat() if consent.valid_from else None,
            "endDateTime": consent.valid_to.isoformat() if consent.valid_to else None,
        },
        "privacyNoticeId": consent.privacy_notice_id,
        "versionAccepted": consent.version_accepted,
        "@type": "PrivacyConsent",
        "@schemaLocation": _CONSENT_SCHEMA,
    }


def party_resource(user: User) -> dict[str, Any]:
    characteristic = [{"name": "email", "value": user.email}]
    if user.phone:
        characteristic.append({"name": "mobile", "value": user.phone})
    return {
        "id": str(user.id),
        "name": user.name,
        "@type": "Individual",
        "characteristic": characteristic,
        "contactMedium": [
            {
                "mediumType": "email",
                "preferred": True,
                "characteristic": {"emailAddress": user.email},
            }
        ],
        "@schemaLocation": _PARTY_SCHEMA,
    }


# ------------------------------------------------------------------ #
# TMF632 Privacy Consent
# ------------------------------------------------------------------ #


@router.get("/tmf632/privacyConsent")
async def list_privacy_consents(
    party_id: str | None = Query(None, alias="partyId"),
    status_filter: str | None = Query(None, alias="status"),
    purpose: str | None = Query(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.CONSENT_MANAGE)
    consents = await ConsentService(db).list_consents(
        party_id=party_id,
        status=status_filter,
        purpose=purpose,
    )
    return {"privacyConsent": [privacy_consent_resource(c) for c in consents]}


@router.post("/tmf632/privacyConsent", status_code=status.HTTP_201_CREATED)
async def create_privacy_consent(
    body: TMFPrivacyConsentCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.CONSENT_MANAGE)
    valid_for = body.valid_for
    consent = await ConsentService(db).create_consent(
        current_user.actor,
        body.party_id,
        ConsentInput(
            purpose=body.purpose,
            status=body.status,
            channel=body.channel,
            privacy_notice_id=body.privacy_notice_id,
            version_accepted=body.version_accepted,
            valid_from=valid_for.start_date_time if valid_for else None,
            valid_to=valid_for.end_date_time if valid_for else None,
        ),
        record_source=ConsentSource.TMF632_API,
    )
    return {"id": str(consent.id), "@type": "PrivacyConsent"}


# ------------------------------------------------------------------ #
# TMF669 Event Hub
# ------------------------------------------------------------------ #


@router.post("/tmf669/hub", status_code=status.HTTP_201_CREATED)
async def register_hub(
    body: TMFHubRegistration,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.HUB_MANAGE)
    webhook = await WebhookService(db).register(body.callback, body.query)
    return {
        "id": str(webhook.id),
        "callback": webhook.url,
        "query": ",".join(webhook.events or []),
    }


@router.delete("/tmf669/hub/{hub_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unregister_hub(
    hub_id: uuid.UUID,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> Response:
    check_permission(current_user.role, Permission.HUB_MANAGE)
    await WebhookService(db).unregister(hub_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


# ------------------------------------------------------------------ #
# TMF641 Party
# ------------------------------------------------------------------ #


@router.get("/tmf641/party/{party_id}")
async def get_party(
    party_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    db: AsyncSession = Depends(get_db_session),
) -> dict:
    check_permission(current_user.role, Permission.PARTY_READ)
    try:
        user = await db.get(User, uuid.UUID(party_id))
    except ValueError:
        user = None
    if user is None:
        raise NotFoundError("Party not found")
    return party_resource(user)
