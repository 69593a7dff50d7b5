"""Admin/CSR dashboard aggregation.

All counts are computed on demand from the database; nothing is cached.
The compliance score is taken over effective consents only (one per party
and purpose), so superseded records do not dilute it.

CSR stats: consent updates are consent.* audit entries in the last seven
days, today's actions are all audit entries since UTC midnight, and risk
alerts are pending requests open for 25 days or more.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime, timedelta
from typing import Any

import structlog
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from consenthub.compliance import dsar as lifecycle
from consenthub.compliance.consent import ConsentStatus, compliance_score, current_by_purpose
from consenthub.compliance.dsar import RequestStatus, RiskLevel
from consenthub.core.audit import AuditService
from consenthub.database import utcnow
from consenthub.models.consent import Consent
from consenthub.models.dsar_request import DSARRequest
from consenthub.models.privacy_notice import NoticeStatus, PrivacyNotice
from consenthub.models.user import User, UserRole
from consenthub.models.webhook import Webhook, WebhookStatus

log = structlog.get_logger(__name__)


@dataclass
class DashboardOverview:
    total_users: int = 0
    total_customers: int = 0
    total_guardians: int = 0
    consents_by_status: dict[str, int] = field(default_factory=dict)
    effective_consents: int = 0
    dsar_by_status: dict[str, int] = field(default_factory=dict)
    dsar_overdue: int = 0
    dsar_critical: int = 0
    dsar_automation_eligible: int = 0
    active_notices: int = 0
    active_webhooks: int = 0
    compliance_score: int = 0
    consent_updates_last_7_days: int = 0
    today_actions: int = 0
    risk_alerts: int = 0
    generated_at: str = ""

    def to_dict(self) -> dict[str, Any]:
        data = asdict(self)
        return {
            "totalUsers": data["total_users"],
            "totalCustomers": data["total_customers"],
            "totalGuardians": data["total_guardians"],
            "consentsByStatus": data["consents_by_status"],
            "effectiveConsents": data["effective_consents"],
            "dsarByStatus": data["dsar_by_status"],
            "dsarOverdue": data["dsar_overdue"],
            "dsarCritical": data["dsar_critical"],
            "dsarAutomationEligible": data["dsar_automation_eligible"],
            "activeNotices": data["active_notices"],
            "activeWebhooks": data["active_webhooks"],
            "complianceScore": data["compliance_score"],
            "consentUpdatesLast7Days": data["consent_updates_last_7_days"],
            "todayActions": data["today_actions"],
            "riskAlerts": data["risk_alerts"],
            "generatedAt": data["generated_at"],
        }


class DashboardService:
    def __init__(self, db: AsyncSession) -> None:
        self._db = db

    async def overview(self, now: datetime | None = None) -> DashboardOverview:
        now = now or utcnow()
        overview = DashboardOverview(generated_at=now.isoformat())

        users = (await self._db.execute(select(User))).scalars().all()
        overview.total_users = len(users)
        overview.total_customers = sum(1 for u in users if u.role == UserRole.CUSTOMER)
        overview.total_guardians = sum(1 for u in users if u.is_guardian)

        status_rows = await self._db.execute(
            select(Consent.status, func.count()).group_by(Consent.status)
        )
        overview.consents_by_status = {s.value: 0 for s in ConsentStatus}
        overview.consents_by_status.update({status: count for status, count in status_rows.all()})

        stmt = select(Consent).order_by(Consent.created_at.asc(), Consent.insert_seq.asc())
        consents = (await self._db.execute(stmt)).scalars().all()
        effective = list(current_by_purpose(consents).values())
        overview.effective_consents = len(effective)
        granted = sum(1 for c in effective if c.status == ConsentStatus.GRANTED)
        overview.compliance_score = compliance_score(granted, len(effective))

        requests = (await self._db.execute(select(DSARRequest))).scalars().all()
        overview.dsar_by_status = {s.value: 0 for s in RequestStatus}
        for request in requests:
            overview.dsar_by_status[request.status] = overview.dsar_by_status.get(request.status, 0) + 1
            insights = lifecycle.derive(request, now)
            if insights.is_overdue:
                overview.dsar_overdue += 1
            if insights.automation_eligible:
                overview.dsar_automation_eligible += 1
            if (
                request.status not in lifecycle.TERMINAL_STATUSES
                and insights.risk_level == RiskLevel.CRITICAL
            ):
                overview.dsar_critical += 1
            if request.status == RequestStatus.PENDING and insights.risk_level == RiskLevel.CRITICAL:
                overview.risk_alerts += 1

        overview.active_notices = await self._db.scalar(
            select(func.count()).select_from(PrivacyNotice).where(
                PrivacyNotice.status == NoticeStatus.ACTIVE
            )
        ) or 0
        overview.active_webhooks = await self._db.scalar(
            select(func.count()).select_from(Webhook).where(Webhook.status == WebhookStatus.ACTIVE)
        ) or 0

        audit = AuditService(self._db)
        overview.consent_updates_last_7_days = await audit.count(
            action="consent.*", since=now - timedelta(days=7)
        )
        midnight = now.astimezone(UTC).replace(hour=0, minute=0, second=0, microsecond=0)
        overview.today_actions = await audit.count(since=midnight)

        log.debug("dashboard.overview_computed", compliance_score=overview.compliance_score)
        return overview

    async def guardians(self) -> list[User]:
        """Users with at least one minor dependent."""
        result = await self._db.execute(select(User).order_by(User.name.asc()))
        return [user for user in result.scalars().all() if user.is_guardian]
