"""
Models package — import every model so SQLAlchemy's Base.metadata
knows about all tables (critical for `create_all` / Alembic).
"""

from crm_backend.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin
from crm_backend.models.user import User, UserStatus
from crm_backend.models.role import DEFAULT_ROLE_COLOR, Role, UserRole, role_permissions
from crm_backend.models.permission import Permission, UserPermission

__all__ = [
    "Base",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    "User",
    "UserStatus",
    "Role",
    "UserRole",
    "role_permissions",
    "DEFAULT_ROLE_COLOR",
    "Permission",
    "UserPermission",
]
