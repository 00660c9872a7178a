"""
User model.

Design decisions:
- Status is an ENUM (ACTIVE → DISABLED).  A disabled user never passes
  an RBAC guard, whatever their roles say.
- Roles are attached through `UserRole` rows so new roles can be added
  without schema changes and every assignment keeps its audit fields.
- Direct permission overrides hang off `user_permissions`.
"""

from __future__ import annotations

import enum
from typing import TYPE_CHECKING

from sqlalchemy import Enum, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from crm_backend.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin

if TYPE_CHECKING:
    from crm_backend.models.permission import UserPermission
    from crm_backend.models.role import Role, UserRole


class UserStatus(str, enum.Enum):
    ACTIVE = "ACTIVE"
    DISABLED = "DISABLED"


class User(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(256), unique=True, index=True, nullable=False)
    password_hash: Mapped[str | None] = mapped_column(String(512), nullable=True)
    full_name: Mapped[str] = mapped_column(String(256), nullable=False)
    department: Mapped[str | None] = mapped_column(String(128), nullable=True)
    status: Mapped[UserStatus] = mapped_column(
        Enum(UserStatus, name="user_status"),
        default=UserStatus.ACTIVE,
        nullable=False,
    )

    # ── Relationships ────────────────────────────────────────────────
    user_roles: Mapped[list["UserRole"]] = relationship(  # noqa: F821
        back_populates="user",
        foreign_keys="[UserRole.user_id]",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    user_permissions: Mapped[list["UserPermission"]] = relationship(  # noqa: F821
        back_populates="user",
        foreign_keys="[UserPermission.user_id]",
        cascade="all, delete-orphan",
        lazy="selectin",
    )

    @property
    def roles(self) -> list["Role"]:
        return [assignment.role for assignment in self.user_roles]

    @property
    def is_active(self) -> bool:
        return self.status == UserStatus.ACTIVE

    def __repr__(self) -> str:
        return f"<User {self.email}>"
