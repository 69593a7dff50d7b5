"""DSAR lifecycle state machine and derived SLA fields.

A data subject request moves through:

    pending ──> in_progress ──> completed
       │             │
       └─────────────┴──────> rejected

completed and rejected are terminal. _TRANSITIONS is the only place that
decides which moves are legal; every status change in the codebase goes
through apply_transition(), which also stamps the lifecycle timestamps.

Everything in this module is pure: no I/O, no database access, and "now"
is always passed in so the derivations are deterministic under test.
"""

from __future__ import annotations

import math
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any, Protocol

from consenthub.core.errors import InvalidStateError, ValidationError


class RequestType(StrEnum):
    """Canonical DSAR request types."""

    DATA_ACCESS = "data_access"  # Right of access
    DATA_ERASURE = "data_erasure"  # Right to erasure
    DATA_PORTABILITY = "data_portability"  # Right to data portability
    DATA_RECTIFICATION = "data_rectification"  # Right to rectification

    @classmethod
    def parse(cls, value: str) -> RequestType:
        """Translate any accepted spelling into the canonical type.

        This is the single boundary between client vocabulary (``export``,
        ``delete`` ...) and the stored enum values.
        """
        key = (value or "").strip().lower().replace("-", "_")
        if key in cls._value2member_map_:
            return cls(key)
        try:
            return _REQUEST_TYPE_ALIASES[key]
        except KeyError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(
                f"Unknown request type '{value}'. Expected one of: {allowed}"
            ) from None


_REQUEST_TYPE_ALIASES: dict[str, RequestType] = {
    "access": RequestType.DATA_ACCESS,
    "export": RequestType.DATA_ACCESS,
    "data_export": RequestType.DATA_ACCESS,
    "erasure": RequestType.DATA_ERASURE,
    "delete": RequestType.DATA_ERASURE,
    "deletion": RequestType.DATA_ERASURE,
    "data_deletion": RequestType.DATA_ERASURE,
    "portability": RequestType.DATA_PORTABILITY,
    "rectification": RequestType.DATA_RECTIFICATION,
    "rectify": RequestType.DATA_RECTIFICATION,
    "correction": RequestType.DATA_RECTIFICATION,
    "update": RequestType.DATA_RECTIFICATION,
}

# Types whose processing produces a data export
EXPORTABLE_TYPES: frozenset[RequestType] = frozenset(
    {RequestType.DATA_ACCESS, RequestType.DATA_PORTABILITY}
)


class RequestStatus(StrEnum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    REJECTED = "rejected"


TERMINAL_STATUSES: frozenset[RequestStatus] = frozenset(
    {RequestStatus.COMPLETED, RequestStatus.REJECTED}
)

_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    RequestStatus.PENDING: frozenset({RequestStatus.IN_PROGRESS, RequestStatus.REJECTED}),
    RequestStatus.IN_PROGRESS: frozenset({RequestStatus.COMPLETED, RequestStatus.REJECTED}),
    RequestStatus.COMPLETED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
}


class Priority(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class RequestSource(StrEnum):
    WEB_FORM = "web_form"
    EMAIL = "email"
    PHONE = "phone"
    CSR = "csr"
    API = "api"


class RiskLevel(StrEnum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class _Lifecycle(Protocol):
    """The subset of DSARRequest that the state machine reads and writes."""

    status: str
    processing_started_at: datetime | None
    completed_at: datetime | None
    failed_at: datetime | None
    processing_result: dict[str, Any] | None
    failure_reason: str | None


def allowed_transitions(current: RequestStatus | str) -> frozenset[RequestStatus]:
    return _TRANSITIONS[RequestStatus(current)]


def can_transition(current: RequestStatus | str, target: RequestStatus | str) -> bool:
    return RequestStatus(target) in allowed_transitions(current)


def assert_transition(current: RequestStatus | str, target: RequestStatus | str) -> None:
    """Raise InvalidStateError unless current -> target is a legal move."""
    if not can_transition(current, target):
        raise InvalidStateError(
            f"Cannot move DSAR request from '{RequestStatus(current)}' "
            f"to '{RequestStatus(target)}'"
        )


def apply_transition(
    request: _Lifecycle,
    target: RequestStatus | str,
    *,
    now: datetime,
    result: dict[str, Any] | None = None,
    reason: str | None = None,
) -> None:
    """Move request to target and stamp the matching lifecycle fields.

    completed_at and failed_at are written exactly once because the
    transition table never allows leaving a terminal status.
    """
    target = RequestStatus(target)
    assert_transition(request.status, target)

    if target == RequestStatus.IN_PROGRESS:
        request.processing_started_at = now
    elif target == RequestStatus.COMPLETED:
        request.completed_at = now
        request.processing_result = result or {}
    elif target == RequestStatus.REJECTED:
        if not reason or not reason.strip():
            raise ValidationError("A reason is required to reject a DSAR request")
        request.failed_at = now
        request.failure_reason = reason.strip()

    request.status = target


# ---------------------------------------------------------------------- #
# Identity and deadlines
# ---------------------------------------------------------------------- #

_SUFFIX_ALPHABET = string.ascii_uppercase + string.digits


def generate_request_id(now: datetime) -> str:
    """Human-readable reference, e.g. DSAR-1718000000000-K3Q9ZA."""
    suffix = "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(6))
    return f"DSAR-{int(now.timestamp() * 1000)}-{suffix}"


def compute_due_date(submitted_at: datetime, sla_days: int) -> datetime:
    return submitted_at + timedelta(days=sla_days)


# ---------------------------------------------------------------------- #
# Derived, read-only fields
# ---------------------------------------------------------------------- #


def days_since(submitted_at: datetime, now: datetime) -> int:
    """Whole days elapsed since submission, floored, never negative."""
    return max(0, math.floor((now - submitted_at) / timedelta(days=1)))


def risk_level(days_open: int) -> RiskLevel:
    if days_open >= 25:
        return RiskLevel.CRITICAL
    if days_open >= 20:
        return RiskLevel.HIGH
    if days_open >= 15:
        return RiskLevel.MEDIUM
    return RiskLevel.LOW


def is_automation_eligible(status: RequestStatus | str, request_type: RequestType | str) -> bool:
    return (
        RequestStatus(status) == RequestStatus.PENDING
        and RequestType.parse(request_type) in EXPORTABLE_TYPES
    )


@dataclass(frozen=True)
class Recommendation:
    """Triage hint shown to CSRs for pending requests."""

    priority: str
    action: str
    reason: str

    def to_dict(self) -> dict[str, str]:
        return {"priority": self.priority, "action": self.action, "reason": self.reason}


def recommend(
    status: RequestStatus | str,
    request_type: RequestType | str,
    days_open: int,
) -> Recommendation | None:
    """Suggest an action for a pending request, or None when nothing is due."""
    if RequestStatus(status) != RequestStatus.PENDING:
        return None
    if days_open >= 7:
        return Recommendation(
            priority="high",
            action="auto_process",
            reason=f"Request has been pending for {days_open} days",
        )
    if days_open >= 3:
        return Recommendation(
            priority="medium",
            action="review",
            reason="Request requires attention",
        )
    if RequestType.parse(request_type) in EXPORTABLE_TYPES:
        return Recommendation(
            priority="low",
            action="auto_process",
            reason="Export request can be processed automatically",
        )
    return None


@dataclass(frozen=True)
class DSARInsights:
    """Derived SLA view of one request at a point in time."""

    days_since_creation: int
    risk_level: RiskLevel
    automation_eligible: bool
    is_overdue: bool
    days_remaining: int
    processing_days: int | None
    recommendation: Recommendation | None


class _Derivable(Protocol):
    status: str
    request_type: str
    submitted_at: datetime
    due_date: datetime
    completed_at: datetime | None


def derive(request: _Derivable, now: datetime) -> DSARInsights:
    """Compute every derived field for request as of now."""
    status = RequestStatus(request.status)
    days_open = days_since(request.submitted_at, now)
    terminal = status in TERMINAL_STATUSES

    if terminal:
        days_remaining = 0
    else:
        days_remaining = max(0, math.ceil((request.due_date - now) / timedelta(days=1)))

    processing_days = None
    if request.completed_at is not None:
        processing_days = math.ceil((request.completed_at - request.submitted_at) / timedelta(days=1))

    return DSARInsights(
        days_since_creation=days_open,
        risk_level=risk_level(days_open),
        automation_eligible=is_automation_eligible(status, request.request_type),
        is_overdue=not terminal and now > request.due_date,
        days_remaining=days_remaining,
        processing_days=processing_days,
        recommendation=recommend(status, request.request_type, days_open),
    )
