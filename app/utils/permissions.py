# app/utils/permissions.py
from enum import Enum
from typing import Dict, FrozenSet, Iterable, List, Optional

from app.models import UserRole

class Permission(str, Enum):
    INVENTORY_READ = "inventory:read"
    INBOUND_CREATE = "inbound:create"
    INBOUND_BATCH = "inbound:batch"
    INBOUND_READ = "inbound:read"
    OUTBOUND_CREATE = "outbound:create"
    OUTBOUND_BOX = "outbound:box"
    OUTBOUND_READ = "outbound:read"
    REPORTS_READ = "reports:read"
    USERS_MANAGE = "users:manage"
    STORAGE_MANAGE = "storage:manage"

# --- ROLE TABLE ---

ROLE_PERMISSIONS: Dict[UserRole, FrozenSet[Permission]] = {
    UserRole.ADMIN: frozenset(Permission),
    # Operators handle single tubes; bulk inbound and whole-box outbound stay with admins
    UserRole.OPERATOR: frozenset({
        Permission.INVENTORY_READ,
        Permission.INBOUND_CREATE,
        Permission.INBOUND_READ,
        Permission.OUTBOUND_CREATE,
        Permission.OUTBOUND_READ,
        Permission.REPORTS_READ,
    }),
    UserRole.VIEWER: frozenset({
        Permission.INVENTORY_READ,
        Permission.INBOUND_READ,
        Permission.OUTBOUND_READ,
        Permission.REPORTS_READ,
    }),
}

ROLE_LABELS: Dict[UserRole, str] = {
    UserRole.ADMIN: "Administrator",
    UserRole.OPERATOR: "Cell operator",
    UserRole.VIEWER: "Viewer",
}

MENU_PERMISSIONS: Dict[str, List[Permission]] = {
    "inventory": [Permission.INVENTORY_READ],
    "inbound": [Permission.INBOUND_CREATE, Permission.INBOUND_READ],
    "outbound": [Permission.OUTBOUND_CREATE, Permission.OUTBOUND_READ],
    "reports": [Permission.REPORTS_READ],
    "users": [Permission.USERS_MANAGE],
    "storage": [Permission.STORAGE_MANAGE],
}

def _as_role(role: Optional[str]) -> Optional[UserRole]:
    try:
        return UserRole(role)
    except ValueError:
        return None

def get_user_permissions(role: Optional[str]) -> FrozenSet[Permission]:
    """Returns every permission granted to a role; unknown roles get none."""
    parsed = _as_role(role)
    if parsed is None:
        return frozenset()
    return ROLE_PERMISSIONS[parsed]

def has_permission(role: Optional[str], permission: Permission) -> bool:
    return permission in get_user_permissions(role)

def has_any_permission(role: Optional[str], permissions: Iterable[Permission]) -> bool:
    granted = get_user_permissions(role)
    return any(p in granted for p in permissions)

def has_all_permissions(role: Optional[str], permissions: Iterable[Permission]) -> bool:
    granted = get_user_permissions(role)
    return all(p in granted for p in permissions)

def can_access_menu(role: Optional[str], menu: str) -> bool:
    permissions = MENU_PERMISSIONS.get(menu)
    if not permissions:
        return False
    return has_any_permission(role, permissions)

def role_label(role: Optional[str]) -> str:
    parsed = _as_role(role)
    return ROLE_LABELS[parsed] if parsed else (role or "")
