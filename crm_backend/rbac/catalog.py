"""
Canonical permission catalog & default roles.

This is the static half of the catalog: what the seed writes and what
guards are allowed to reference.  Admins can add further permissions
at runtime through the admin API; those live only in the database.

Governance rules encoded here:
    • Only Administrator holds the user / permission management keys.
    • Director gets every business permission plus `admin_access`.
    • Manager is departmental: no deletes and no conversion approval.
"""

from dataclasses import dataclass, field

from crm_backend.rbac.keys import PermissionKey, RoleName


@dataclass(frozen=True)
class PermissionDefinition:
    key: PermissionKey
    name: str
    module: str
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "key", PermissionKey(self.key))


@dataclass(frozen=True)
class RoleDefinition:
    """Seed data for a default role."""

    name: RoleName
    description: str
    color: str
    permissions: tuple[PermissionKey, ...] = field(default_factory=tuple)
    is_system: bool = True

    def __post_init__(self) -> None:
        object.__setattr__(self, "name", RoleName(self.name))
        object.__setattr__(self, "permissions", tuple(PermissionKey(k) for k in self.permissions))


def _p(key: str, name: str, module: str) -> PermissionDefinition:
    return PermissionDefinition(key=PermissionKey(key), name=name, module=module)


# ────────────────────────────────────────────────────────────────────
# 1.  PERMISSIONS
# ────────────────────────────────────────────────────────────────────
PERMISSIONS: tuple[PermissionDefinition, ...] = (
    # Admin
    _p("admin_access", "Access admin panel", "Admin"),
    _p("admin_users_manage", "Manage users", "Admin"),
    _p("admin_permissions_manage", "Manage permissions", "Admin"),
    # Leads
    _p("leads_view", "View leads", "Leads"),
    _p("leads_create", "Create leads", "Leads"),
    _p("leads_edit", "Edit leads", "Leads"),
    _p("leads_delete", "Delete leads", "Leads"),
    _p("leads_convert", "Convert leads", "Leads"),
    _p("leads_approve_conversion", "Approve lead conversion", "Leads"),
    # Clients
    _p("clients_view", "View clients", "Clients"),
    _p("clients_create", "Create clients", "Clients"),
    _p("clients_edit", "Edit clients", "Clients"),
    _p("clients_delete", "Delete clients", "Clients"),
    # Projects
    _p("projects_view", "View projects", "Projects"),
    _p("projects_create", "Create projects", "Projects"),
    _p("projects_edit", "Edit projects", "Projects"),
    _p("projects_delete", "Delete projects", "Projects"),
    _p("projects_manage_tasks", "Manage project tasks", "Projects"),
    # Tasks
    _p("tasks_view", "View tasks", "Tasks"),
    _p("tasks_create", "Create tasks", "Tasks"),
    _p("tasks_edit", "Edit tasks", "Tasks"),
    _p("tasks_delete", "Delete tasks", "Tasks"),
    # Implementation (onboarding)
    _p("implantacao_access", "Access implementation", "Implementation"),
    _p("implantacao_manage", "Manage implementation", "Implementation"),
    # Email marketing
    _p("email_marketing_access", "Access email marketing", "Email Marketing"),
    _p("email_marketing_send", "Send emails", "Email Marketing"),
    # Chat
    _p("chat_access", "Access chat", "Chat"),
    # Reports
    _p("reports_view", "View reports", "Reports"),
    _p("reports_export", "Export reports", "Reports"),
)

PERMISSION_REGISTRY: dict[PermissionKey, PermissionDefinition] = {p.key: p for p in PERMISSIONS}

ALL_PERMISSION_KEYS: tuple[PermissionKey, ...] = tuple(p.key for p in PERMISSIONS)

# ────────────────────────────────────────────────────────────────────
# 2.  DEFAULT ROLES
# ────────────────────────────────────────────────────────────────────
_ADMIN_ONLY = {"admin_users_manage", "admin_permissions_manage"}

DEFAULT_ROLES: tuple[RoleDefinition, ...] = (
    RoleDefinition(
        name=RoleName("Administrator"),
        description="Full system access",
        color="#f44336",
        permissions=ALL_PERMISSION_KEYS,
    ),
    RoleDefinition(
        name=RoleName("Director"),
        description="Full managerial access",
        color="#9c27b0",
        permissions=tuple(k for k in ALL_PERMISSION_KEYS if k not in _ADMIN_ONLY),
    ),
    RoleDefinition(
        name=RoleName("Manager"),
        description="Departmental management access",
        color="#3f51b5",
        permissions=(
            "leads_view", "leads_create", "leads_edit", "leads_convert",
            "clients_view", "clients_create", "clients_edit",
            "projects_view", "projects_create", "projects_edit", "projects_manage_tasks",
            "tasks_view", "tasks_create", "tasks_edit",
            "chat_access", "reports_view",
        ),
    ),
    # Editable defaults, seeded once, then owned by the admins.
    RoleDefinition(
        name=RoleName("Salesperson"),
        description="Sales and lead-focused access",
        color="#4caf50",
        permissions=(
            "leads_view", "leads_create", "leads_edit", "leads_convert",
            "clients_view", "tasks_view", "tasks_create", "chat_access",
        ),
        is_system=False,
    ),
    RoleDefinition(
        name=RoleName("Implementation"),
        description="Access to the implementation module",
        color="#ff9800",
        permissions=(
            "implantacao_access", "implantacao_manage",
            "projects_view", "projects_manage_tasks",
            "tasks_view", "tasks_create", "tasks_edit",
            "clients_view", "chat_access",
        ),
        is_system=False,
    ),
)

SYSTEM_ROLE_NAMES: frozenset[RoleName] = frozenset(r.name for r in DEFAULT_ROLES if r.is_system)


def is_known_permission(key: str) -> bool:
    return key in PERMISSION_REGISTRY


def permissions_by_module() -> dict[str, list[PermissionDefinition]]:
    grouped: dict[str, list[PermissionDefinition]] = {}
    for definition in PERMISSIONS:
        grouped.setdefault(definition.module, []).append(definition)
    return grouped
