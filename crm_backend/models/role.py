"""
Role model & user ↔ role assignments.

Roles are named, colored bundles of permissions.  `role_permissions`
is intentionally a plain association table (no extra columns);
SQLAlchemy `secondary` handles it transparently and a whole-set
replacement is just `role.permissions = [...]`.

`UserRole` is a mapped class because an assignment records who
granted it and when.

System roles (`is_system=True`) are created by the seed and are never
edited or deleted through the admin service.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Column, DateTime, ForeignKey, String, Table, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_backend.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin, utcnow

if TYPE_CHECKING:
    from crm_backend.models.permission import Permission
    from crm_backend.models.user import User

DEFAULT_ROLE_COLOR = "#2196F3"

# ── Association table ────────────────────────────────────────────────
role_permissions = Table(
    "role_permissions",
    Base.metadata,
    Column("role_id", ForeignKey("roles.id", ondelete="CASCADE"), primary_key=True),
    Column("permission_id", ForeignKey("permissions.id", ondelete="CASCADE"), primary_key=True),
)


class Role(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "roles"

    name: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    description: Mapped[str | None] = mapped_column(String(256), nullable=True)
    color: Mapped[str] = mapped_column(String(16), default=DEFAULT_ROLE_COLOR, nullable=False)
    is_system: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    # ── Relationships ────────────────────────────────────────────────
    permissions: Mapped[list["Permission"]] = relationship(  # noqa: F821
        secondary=role_permissions,
        lazy="selectin",
        order_by="Permission.key",
    )

    @property
    def permission_keys(self) -> set[str]:
        return {perm.key for perm in self.permissions}

    def __repr__(self) -> str:
        return f"<Role {self.name}>"


class UserRole(Base, UUIDPrimaryKeyMixin):
    __tablename__ = "user_roles"
    __table_args__ = (UniqueConstraint("user_id", "role_id"),)

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
    )
    role_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("roles.id", ondelete="CASCADE"), index=True, nullable=False
    )
    assigned_by: Mapped[uuid.UUID | None] = mapped_column(
        ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    assigned_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # ── Relationships ────────────────────────────────────────────────
    role: Mapped["Role"] = relationship(lazy="selectin")
    user: Mapped["User"] = relationship(  # noqa: F821
        back_populates="user_roles",
        foreign_keys=[user_id],
        lazy="raise",
    )

    def __repr__(self) -> str:
        return f"<UserRole {self.user_id} → {self.role_id}>"
