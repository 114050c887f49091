"""
Roles and permissions.

The authorization engine lives in orgdir.kernel.permissions.authorization.
"""

from orgdir.kernel.permissions.roles import (
    ADMIN_ROLES,
    Permission,
    Role,
    resolve_role,
    role_allows,
)

__all__ = [
    "ADMIN_ROLES",
    "Permission",
    "Role",
    "resolve_role",
    "role_allows",
]
