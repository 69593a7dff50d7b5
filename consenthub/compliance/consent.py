"""Consent status rules and chronological resolution.

A party may accumulate several consent records for one purpose. The record
in force is the one whose latest action (the newest of granted_at,
revoked_at and updated_at) is most recent. When two records tie, the one
inserted later wins, so callers must pass records in insertion order.

These functions are pure and shared by the consent service, the dashboard
and the TMF632 view so the rule is implemented exactly once.
"""

from __future__ import annotations

import math
from collections.abc import Iterable, Sequence
from datetime import datetime
from enum import StrEnum
from typing import Protocol, TypeVar

from consenthub.core.errors import ValidationError


class ConsentStatus(StrEnum):
    GRANTED = "granted"
    REVOKED = "revoked"
    PENDING = "pending"
    DENIED = "denied"

    @classmethod
    def parse(cls, value: str) -> ConsentStatus:
        try:
            return cls((value or "").strip().lower())
        except ValueError:
            allowed = ", ".join(m.value for m in cls)
            raise ValidationError(
                f"Unknown consent status '{value}'. Expected one of: {allowed}"
            ) from None


class ConsentChannel(StrEnum):
    EMAIL = "email"
    SMS = "sms"
    PHONE = "phone"
    POST = "post"
    PUSH = "push"
    WEB = "web"
    IN_PERSON = "in_person"
    GUARDIAN_PORTAL = "guardian_portal"
    ALL = "all"


class ConsentSource(StrEnum):
    SELF_SERVICE = "self_service"
    CSR = "csr"
    GUARDIAN = "guardian"
    ADMIN = "admin"
    TMF632_API = "tmf632-api"


GUARDIAN_CONSENT_TYPE = "guardian_consent"


class _Timestamped(Protocol):
    granted_at: datetime | None
    revoked_at: datetime | None
    updated_at: datetime | None


class _Resolvable(_Timestamped, Protocol):
    party_id: str
    purpose: str


class _StatusTarget(_Timestamped, Protocol):
    status: str
    denied_at: datetime | None


T = TypeVar("T", bound=_Timestamped)
R = TypeVar("R", bound=_Resolvable)


def latest_action_at(record: _Timestamped) -> datetime | None:
    """Newest of granted_at, revoked_at and updated_at; None if all unset."""
    stamps = [ts for ts in (record.granted_at, record.revoked_at, record.updated_at) if ts]
    return max(stamps) if stamps else None


def resolve_current(records: Iterable[T]) -> T | None:
    """Pick the record in force from records given in insertion order."""
    current: T | None = None
    current_at: datetime | None = None
    for record in records:
        at = latest_action_at(record)
        if current is None:
            current, current_at = record, at
            continue
        # ">=" makes the later-inserted record win ties
        if at is not None and (current_at is None or at >= current_at):
            current, current_at = record, at
        elif at is None and current_at is None:
            current = record
    return current


def current_by_purpose(records: Sequence[R]) -> dict[tuple[str, str], R]:
    """Effective record for every (party_id, purpose) pair present."""
    groups: dict[tuple[str, str], list[R]] = {}
    for record in records:
        groups.setdefault((record.party_id, record.purpose), []).append(record)
    resolved: dict[tuple[str, str], R] = {}
    for key, group in groups.items():
        winner = resolve_current(group)
        if winner is not None:
            resolved[key] = winner
    return resolved


def compliance_score(granted_count: int, total_count: int) -> int:
    """Percentage of consents that are granted, rounded half up to an integer."""
    return math.floor(granted_count / max(total_count, 1) * 100 + 0.5)


def apply_status(record: _StatusTarget, status: ConsentStatus, now: datetime) -> str:
    """Set status on record, stamping the matching timestamp.

    Returns the previous status. Any status may follow any other; the
    timestamps make the change visible to resolve_current().
    """
    previous = record.status
    record.status = status
    if status == ConsentStatus.GRANTED:
        record.granted_at = now
    elif status == ConsentStatus.REVOKED:
        record.revoked_at = now
    elif status == ConsentStatus.DENIED:
        record.denied_at = now
    record.updated_at = now
    return previous
