"""Public (camelCase, JSON-safe) representations of domain records.

The same dictionaries are returned by the REST API and embedded in event
notifications, so subscribers and API clients always see one shape.
"""

from __future__ import annotations

from datetime import datetime
from typing import Any

from consenthub.compliance import dsar as lifecycle
from consenthub.compliance.consent import latest_action_at
from consenthub.models.audit import AuditLog
from consenthub.models.consent import Consent
from consenthub.models.dsar_request import DSARRequest
from consenthub.models.preference import PreferenceCategory, PreferenceItem
from consenthub.models.privacy_notice import PrivacyNotice
from consenthub.models.user import User


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def consent_resource(consent: Consent) -> dict[str, Any]:
    return {
        "id": str(consent.id),
        "partyId": consent.party_id,
        "purpose": consent.purpose,
        "channel": consent.channel,
        "consentType": consent.consent_type,
        "status": consent.status,
        "grantedAt": _iso(consent.granted_at),
        "revokedAt": _iso(consent.revoked_at),
        "deniedAt": _iso(consent.denied_at),
        "validFrom": _iso(consent.valid_from),
        "validTo": _iso(consent.valid_to),
        "recordSource": consent.record_source,
        "privacyNoticeId": consent.privacy_notice_id,
        "versionAccepted": consent.version_accepted,
        "guardianId": str(consent.guardian_id) if consent.guardian_id else None,
        "metadata": dict(consent.details or {}),
        "lastActionAt": _iso(latest_action_at(consent)),
        "createdAt": _iso(consent.created_at),
        "updatedAt": _iso(consent.updated_at),
        "version": consent.version,
    }


def dsar_resource(request: DSARRequest, now: datetime | None = None) -> dict[str, Any]:
    """DSAR view; when now is given the derived SLA fields are included."""
    resource: dict[str, Any] = {
        "id": str(request.id),
        "requestId": request.request_id,
        "requesterId": str(request.requester_id) if request.requester_id else None,
        "requesterName": request.requester_name,
        "requesterEmail": request.requester_email,
        "requesterPhone": request.requester_phone,
        "requestType": request.request_type,
        "priority": request.priority,
        "subject": request.subject,
        "description": request.description,
        "source": request.source,
        "status": request.status,
        "submittedAt": _iso(request.submitted_at),
        "dueDate": _iso(request.due_date),
        "processingStartedAt": _iso(request.processing_started_at),
        "completedAt": _iso(request.completed_at),
        "failedAt": _iso(request.failed_at),
        "processingResult": request.processing_result,
        "failureReason": request.failure_reason,
        "processingNotes": list(request.processing_notes or []),
        "version": request.version,
    }
    if now is not None:
        insights = lifecycle.derive(request, now)
        resource.update(
            {
                "daysSinceCreation": insights.days_since_creation,
                "riskLevel": insights.risk_level.value,
                "automationEligible": insights.automation_eligible,
                "isOverdue": insights.is_overdue,
                "daysRemaining": insights.days_remaining,
                "processingDays": insights.processing_days,
                "recommendation": (
                    insights.recommendation.to_dict() if insights.recommendation else None
                ),
            }
        )
    return resource


def notice_resource(notice: PrivacyNotice) -> dict[str, Any]:
    return {
        "id": str(notice.id),
        "noticeId": notice.notice_id,
        "title": notice.title,
        "description": notice.description,
        "content": notice.content,
        "contentType": notice.content_type,
        "version": notice.version,
        "category": notice.category,
        "purposes": list(notice.purposes or []),
        "legalBasis": notice.legal_basis,
        "language": notice.language,
        "status": notice.status,
        "effectiveDate": _iso(notice.effective_date),
        "parentId": str(notice.parent_id) if notice.parent_id else None,
        "familyId": str(notice.family_id),
        "createdAt": _iso(notice.created_at),
        "updatedAt": _iso(notice.updated_at),
    }


def category_resource(
    category: PreferenceCategory,
    items: list[PreferenceItem] | None = None,
) -> dict[str, Any]:
    resource: dict[str, Any] = {
        "id": str(category.id),
        "name": category.name,
        "description": category.description,
        "enabled": category.enabled,
        "priority": category.priority,
    }
    if items is not None:
        resource["items"] = [item_resource(item) for item in items]
    return resource


def item_resource(item: PreferenceItem) -> dict[str, Any]:
    return {
        "id": str(item.id),
        "categoryId": str(item.category_id),
        "key": item.key,
        "name": item.name,
        "description": item.description,
        "type": item.value_type,
        "defaultValue": item.default_value,
        "options": list(item.options or []),
        "enabled": item.enabled,
    }


def guardian_resource(user: User) -> dict[str, Any]:
    return {
        "id": str(user.id),
        "name": user.name,
        "email": user.email,
        "phone": user.phone,
        "minors": [
            {
                "id": str(minor.get("id")),
                "name": minor.get("name"),
                "age": minor.get("age"),
                "relationship": minor.get("relationship", "child"),
            }
            for minor in user.minor_dependents or []
        ],
    }


def audit_resource(entry: AuditLog) -> dict[str, Any]:
    return {
        "id": str(entry.id),
        "timestamp": _iso(entry.timestamp),
        "action": entry.action,
        "actorId": entry.actor_id,
        "resourceType": entry.resource_type,
        "resourceId": entry.resource_id,
        "status": entry.status,
        "detail": entry.detail,
        "extra": dict(entry.extra or {}),
    }
