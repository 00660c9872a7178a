"""
Pydantic schemas for request / response serialization.

Kept in a single file for now; split per-domain when it grows.
Schemas are deliberately decoupled from SQLAlchemy models so the
API surface can evolve independently of the DB layer.
"""

import uuid
from datetime import datetime

from pydantic import BaseModel, EmailStr, Field, field_validator

from crm_backend.rbac.keys import PermissionKey, RoleName


def _validate_key(value: str) -> str:
    return str(PermissionKey(value))


# ── Auth ─────────────────────────────────────────────────────────────
class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    user_id: str
    roles: list[str]


class MeResponse(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str
    roles: list[str]
    permissions: list[str]


# ── User ─────────────────────────────────────────────────────────────
class UserOut(BaseModel):
    id: uuid.UUID
    email: str
    full_name: str
    department: str | None = None
    status: str
    roles: list[str] = []
    created_at: datetime

    model_config = {"from_attributes": True}


class CreateUserRequest(BaseModel):
    email: EmailStr
    full_name: str = Field(min_length=1, max_length=256)
    password: str = Field(min_length=8)
    department: str | None = None


# ── Permission ───────────────────────────────────────────────────────
class PermissionOut(BaseModel):
    id: uuid.UUID
    key: str
    name: str
    description: str | None = None
    module: str

    model_config = {"from_attributes": True}


class PermissionCatalogOut(BaseModel):
    permissions: list[PermissionOut]
    grouped_permissions: dict[str, list[PermissionOut]]


class CreatePermissionRequest(BaseModel):
    key: str = Field(min_length=1, max_length=128)
    name: str = Field(min_length=1, max_length=128)
    module: str = Field(min_length=1, max_length=64)
    description: str | None = Field(default=None, max_length=256)

    @field_validator("key")
    @classmethod
    def check_key(cls, value: str) -> str:
        return _validate_key(value)


class UpdatePermissionRequest(BaseModel):
    name: str | None = Field(default=None, min_length=1, max_length=128)
    module: str | None = Field(default=None, min_length=1, max_length=64)
    description: str | None = Field(default=None, max_length=256)


# ── Role ─────────────────────────────────────────────────────────────
class RoleOut(BaseModel):
    id: uuid.UUID
    name: str
    description: str | None = None
    color: str
    is_system: bool
    permissions: list[str] = []
    created_at: datetime

    @classmethod
    def from_role(cls, role) -> "RoleOut":
        return cls(
            id=role.id,
            name=role.name,
            description=role.description,
            color=role.color,
            is_system=role.is_system,
            permissions=sorted(role.permission_keys),
            created_at=role.created_at,
        )


class CreateRoleRequest(BaseModel):
    name: str
    description: str | None = Field(default=None, max_length=256)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    permission_keys: list[str] = []

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str) -> str:
        return str(RoleName(value))

    @field_validator("permission_keys")
    @classmethod
    def check_keys(cls, value: list[str]) -> list[str]:
        return [_validate_key(key) for key in value]


class UpdateRoleRequest(BaseModel):
    name: str | None = None
    description: str | None = Field(default=None, max_length=256)
    color: str | None = Field(default=None, pattern=r"^#[0-9A-Fa-f]{6}$")
    # None → leave the permission set alone; [] → clear it.
    permission_keys: list[str] | None = None

    @field_validator("name")
    @classmethod
    def check_name(cls, value: str | None) -> str | None:
        return None if value is None else str(RoleName(value))

    @field_validator("permission_keys")
    @classmethod
    def check_keys(cls, value: list[str] | None) -> list[str] | None:
        return None if value is None else [_validate_key(key) for key in value]


# ── Assignments ──────────────────────────────────────────────────────
class AssignRoleRequest(BaseModel):
    role_id: uuid.UUID


class UserRoleOut(BaseModel):
    user_id: uuid.UUID
    role_id: uuid.UUID
    assigned_by: uuid.UUID | None = None
    assigned_at: datetime

    model_config = {"from_attributes": True}


class SetDirectPermissionRequest(BaseModel):
    granted: bool = True


class DirectPermissionOut(BaseModel):
    permission_key: str
    granted: bool
    assigned_by: uuid.UUID | None = None

    @classmethod
    def from_override(cls, override) -> "DirectPermissionOut":
        return cls(
            permission_key=override.permission.key,
            granted=override.granted,
            assigned_by=override.assigned_by,
        )


class UserPermissionSummaryOut(BaseModel):
    user_id: uuid.UUID
    email: str
    full_name: str
    roles: list[RoleOut]
    permissions: list[str]
    direct_permissions: list[DirectPermissionOut]


class PermissionCheckOut(BaseModel):
    user_id: uuid.UUID
    permission_key: str
    has_permission: bool


class BulkPermissionCheckRequest(BaseModel):
    permission_keys: list[str] = Field(min_length=1)


class BulkPermissionCheckOut(BaseModel):
    user_id: uuid.UUID
    permissions: dict[str, bool]


class PermissionStatsOut(BaseModel):
    total_permissions: int
    total_roles: int
    system_roles: int
    custom_roles: int
    module_stats: dict[str, int]
    users_with_roles: int


class SeedReportOut(BaseModel):
    permissions_created: int
    roles_created: int
    links_created: int


# ── Generic ──────────────────────────────────────────────────────────
class MessageResponse(BaseModel):
    detail: str
