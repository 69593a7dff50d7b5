"""Policy engine - RBAC and subject ownership enforcement.

This module is the enforcement point for two security properties:

1. RBAC:
   Role-based access control is checked via check_permission() before
   any privileged operation. Roles are ordered customer < csr < admin.

2. Ownership:
   Customers may only see or change records about themselves.
   assert_owner_or_staff() is the canonical check after a record is loaded.

Permission matrix:
  Action              | admin | csr | customer
  --------------------|-------|-----|---------
  consent.write_own   |  yes  | yes |  yes
  consent.manage      |  yes  | yes |  no
  dsar.submit         |  yes  | yes |  yes
  dsar.manage         |  yes  | yes |  no
  dsar.purge          |  yes  | no  |  no
  notice.manage       |  yes  | no  |  no
  preference.manage   |  yes  | no  |  no
  dashboard.read      |  yes  | yes |  no
  hub.manage          |  yes  | no  |  no
  party.read          |  yes  | yes |  no
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from enum import StrEnum

import structlog
from fastapi import HTTPException, status

from consenthub.models.user import UserRole

log = structlog.get_logger(__name__)


class Permission(StrEnum):
    # Consents
    CONSENT_WRITE_OWN = "consent.write_own"
    CONSENT_MANAGE = "consent.manage"

    # DSAR
    DSAR_SUBMIT = "dsar.submit"
    DSAR_MANAGE = "dsar.manage"
    DSAR_PURGE = "dsar.purge"

    # Privacy notices
    NOTICE_READ = "notice.read"
    NOTICE_MANAGE = "notice.manage"

    # Preferences
    PREFERENCE_READ = "preference.read"
    PREFERENCE_MANAGE = "preference.manage"

    # Admin / CSR views
    DASHBOARD_READ = "dashboard.read"
    GUARDIAN_READ = "guardian.read"
    PARTY_READ = "party.read"
    AUDIT_READ = "audit.read"

    # TMF669 event hub
    HUB_MANAGE = "hub.manage"


# Permission -> minimum required role (inclusive upward)
_PERMISSION_TO_MIN_ROLE: dict[Permission, UserRole] = {
    Permission.CONSENT_WRITE_OWN: UserRole.CUSTOMER,
    Permission.DSAR_SUBMIT: UserRole.CUSTOMER,
    Permission.NOTICE_READ: UserRole.CUSTOMER,
    Permission.PREFERENCE_READ: UserRole.CUSTOMER,
    Permission.CONSENT_MANAGE: UserRole.CSR,
    Permission.DSAR_MANAGE: UserRole.CSR,
    Permission.DASHBOARD_READ: UserRole.CSR,
    Permission.GUARDIAN_READ: UserRole.CSR,
    Permission.PARTY_READ: UserRole.CSR,
    Permission.AUDIT_READ: UserRole.CSR,
    Permission.DSAR_PURGE: UserRole.ADMIN,
    Permission.NOTICE_MANAGE: UserRole.ADMIN,
    Permission.PREFERENCE_MANAGE: UserRole.ADMIN,
    Permission.HUB_MANAGE: UserRole.ADMIN,
}


@dataclass(frozen=True)
class Actor:
    """Who is performing an operation."""

    id: uuid.UUID
    role: UserRole


# Role hierarchy: higher index = more permissions
_ROLE_HIERARCHY = [UserRole.CUSTOMER, UserRole.CSR, UserRole.ADMIN]


def _role_level(role: UserRole) -> int:
    try:
        return _ROLE_HIERARCHY.index(role)
    except ValueError:
        return -1


def is_staff(role: UserRole) -> bool:
    """CSRs and admins act on behalf of other subjects."""
    return _role_level(role) >= _role_level(UserRole.CSR)


def check_permission(
    user_role: UserRole,
    permission: Permission,
    *,
    raise_on_failure: bool = True,
) -> bool:
    """Check whether user_role satisfies the required permission.

    If raise_on_failure=True (default), raises HTTP 403 on failure.
    If raise_on_failure=False, returns False instead.
    """
    min_role = _PERMISSION_TO_MIN_ROLE.get(permission, UserRole.ADMIN)
    has_permission = _role_level(user_role) >= _role_level(min_role)

    if not has_permission:
        log.warning(
            "policy.permission_denied",
            role=user_role,
            permission=permission,
            required_role=min_role,
        )
        if raise_on_failure:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail=f"Permission denied: '{permission}' requires role '{min_role}' or higher",
            )
        return False

    return True


def assert_owner_or_staff(
    user_role: UserRole,
    is_owner: bool,
    resource_name: str = "resource",
) -> None:
    """Allow staff unconditionally and customers only for their own records.

    Raises HTTP 404 (not 403) intentionally - we do not confirm existence
    of records belonging to other subjects.
    """
    if is_staff(user_role) or is_owner:
        return
    log.warning("policy.foreign_subject_access_attempt", role=user_role, resource=resource_name)
    raise HTTPException(
        status_code=status.HTTP_404_NOT_FOUND,
        detail=f"{resource_name} not found",
    )
