"""ORM models package.

Import all models here so that SQLAlchemy's metadata is fully populated
when Alembic runs autogenerate. The order of imports matters for foreign
key resolution.
"""

from consenthub.models.audit import AuditLog, AuditStatus
from consenthub.models.consent import Consent
from consenthub.models.dsar_request import DSARRequest
from consenthub.models.preference import (
    PreferenceCategory,
    PreferenceItem,
    PreferenceValueType,
    UserPreference,
)
from consenthub.models.privacy_notice import NoticeAcknowledgment, NoticeStatus, PrivacyNotice
from consenthub.models.user import MinorRelationship, User, UserRole
from consenthub.models.webhook import Webhook, WebhookStatus

__all__ = [
    "AuditLog",
    "AuditStatus",
    "Consent",
    "DSARRequest",
    "MinorRelationship",
    "NoticeAcknowledgment",
    "NoticeStatus",
    "PreferenceCategory",
    "PreferenceItem",
    "PreferenceValueType",
    "PrivacyNotice",
    "User",
    "UserPreference",
    "UserRole",
    "Webhook",
    "WebhookStatus",
]
