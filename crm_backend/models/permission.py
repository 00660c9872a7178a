"""
Permission model & direct per-user overrides.

Permissions are *stable keys* that map to a single capability in the
system (e.g. `leads_view`).  They are seeded at deploy time and
referenced by role ↔ permission associations.  Guards only ever
reference the key (never the UUID id), so re-seeding is
idempotent and guards survive catalog edits.

`UserPermission` layers an explicit grant (`granted=True`) or deny
(`granted=False`) for one user on top of whatever their roles give.
"""

from __future__ import annotations

import uuid
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, ForeignKey, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_backend.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from crm_backend.models.user import User


class Permission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "permissions"

    key: Mapped[str] = mapped_column(String(128), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(128), nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    module: Mapped[str] = mapped_column(String(64), index=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Permission {self.key}>"


class UserPermission(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "user_permissions"
    __table_args__ = (UniqueConstraint("user_id", "permission_id"),)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    permission_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("permissions.id", ondelete="CASCADE"), nullable=False
    )
    granted: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )

    # ── Relationships ────────────────────────────────────────────────
    permission: Mapped["Permission"] = relationship(lazy="selectin")
    user: Mapped["User"] = relationship(  # noqa: F821
        back_populates="user_permissions",
        foreign_keys=[user_id],
        lazy="raise",
    )

    def __repr__(self) -> str:
        flag = "grant" if self.granted else "deny"
        return f"<UserPermission {self.user_id} {flag} {self.permission_id}>"
