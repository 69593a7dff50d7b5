"""User (party) model.

Every data subject, CSR and administrator is a row here. The JWT 'sub'
claim is the user id. A customer whose minor_dependents list is non-empty
acts as a guardian and may record consent on behalf of those minors.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from enum import StrEnum
from typing import Any

from sqlalchemy import Boolean, Enum, Index, String
from sqlalchemy.orm import Mapped, mapped_column, validates

from consenthub.database import Base, JSONType, UTCDateTime, utcnow


class UserRole(StrEnum):
    ADMIN = "admin"
    CSR = "csr"
    CUSTOMER = "customer"


class MinorRelationship(StrEnum):
    CHILD = "child"
    WARD = "ward"
    STEPCHILD = "stepchild"


class User(Base):
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(primary_key=True, default=uuid.uuid4)

    email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(64), nullable=True)
    role: Mapped[UserRole] = mapped_column(
        Enum(UserRole, name="user_role", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=UserRole.CUSTOMER,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # [{"id", "name", "age", "relationship"}]
    minor_dependents: Mapped[list[dict[str, Any]]] = mapped_column(
        JSONType,
        nullable=False,
        default=list,
        comment="Minors this user may act for as guardian",
    )

    created_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
    )
    updated_at: Mapped[datetime] = mapped_column(
        UTCDateTime,
        nullable=False,
        default=utcnow,
        onupdate=utcnow,
    )

    __table_args__ = (Index("ix_users_role", "role"),)

    @validates("minor_dependents")
    def validate_minor_dependents(
        self, key: str, minors: list[dict[str, Any]] | None
    ) -> list[dict[str, Any]]:
        """Each entry needs an id and name; relationship must be a MinorRelationship."""
        cleaned = []
        for minor in minors or []:
            if not minor.get("id") or not minor.get("name"):
                raise ValueError(f"Minor dependent needs an id and a name: {minor!r}")
            relationship = minor.get("relationship", MinorRelationship.CHILD)
            try:
                relationship = MinorRelationship(relationship)
            except ValueError:
                raise ValueError(f"Invalid minor relationship: {relationship}") from None
            cleaned.append({**minor, "id": str(minor["id"]), "relationship": relationship.value})
        return cleaned

    @property
    def is_guardian(self) -> bool:
        return bool(self.minor_dependents)

    def find_minor(self, minor_id: str) -> dict[str, Any] | None:
        """Return the dependent entry with the given id, if this user guards it."""
        for minor in self.minor_dependents or []:
            if str(minor.get("id")) == str(minor_id):
                return minor
        return None

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} role={self.role}>"
