"""
User roles and the admin-panel access rule.
"""

from __future__ import annotations

import enum


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    STAFF = "staff"
    MANAGER = "manager"
    ADMIN = "admin"


PANEL_ROLES: frozenset[UserRole] = frozenset(
    {UserRole.STAFF, UserRole.MANAGER, UserRole.ADMIN}
)


def parse_role(value: object) -> UserRole | None:
    """Return the matching role, or ``None`` for anything outside the enum."""
    if isinstance(value, UserRole):
        return value
    try:
        return UserRole(value)
    except ValueError:
        return None


def can_access_panel(role: UserRole) -> bool:
    if role is UserRole.CUSTOMER:
        return False
    if role in PANEL_ROLES:
        return True
    raise ValueError(f"Unhandled role: {role!r}")
