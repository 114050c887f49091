"""
Role and permission model.

Roles are ranked; permissions are granted per role before any scope rule is
applied. MANAGE implies every other permission.
"""

from enum import Enum
from typing import Any, Dict, FrozenSet, Iterable, Mapping, Optional, Sequence


class Role(str, Enum):
    """Roles, highest privilege first."""
    SUPER_ADMIN = "SUPER_ADMIN"  # global, bypasses scope
    OU_ADMIN = "OU_ADMIN"  # elevated within an administered subtree
    USER = "USER"
    READONLY = "READONLY"


class Permission(str, Enum):
    """Actions on directory nodes."""
    READ = "READ"
    CREATE = "CREATE"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MANAGE = "MANAGE"


ROLE_RANK = {
    Role.READONLY: 0,
    Role.USER: 1,
    Role.OU_ADMIN: 2,
    Role.SUPER_ADMIN: 3,
}

ADMIN_ROLES: FrozenSet[Role] = frozenset({Role.OU_ADMIN, Role.SUPER_ADMIN})

_ALL_PERMISSIONS: FrozenSet[Permission] = frozenset(Permission)

ROLE_PERMISSIONS: Dict[Role, FrozenSet[Permission]] = {
    Role.READONLY: frozenset({Permission.READ}),
    Role.USER: frozenset({Permission.READ}),
    Role.OU_ADMIN: _ALL_PERMISSIONS,
    Role.SUPER_ADMIN: _ALL_PERMISSIONS,
}

# Attribute keys that carry administrative meaning in the legacy scheme
ADMIN_ATTRIBUTE_KEYS = ("isSuperAdmin", "isAdmin", "adminOf", "role")


def parse_role(value: Any) -> Optional[Role]:
    """Role for a raw value, None when unknown."""
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).upper())
    except ValueError:
        return None


def role_allows(role: Role, permission: Permission) -> bool:
    """Base rule, without scope: does role hold permission?"""
    granted = ROLE_PERMISSIONS.get(role, frozenset())
    return permission in granted or Permission.MANAGE in granted


def highest_role(roles: Iterable[Any]) -> Optional[Role]:
    parsed = [r for r in (parse_role(v) for v in roles) if r is not None]
    if not parsed:
        return None
    return max(parsed, key=ROLE_RANK.__getitem__)


def role_from_attributes(attributes: Optional[Mapping[str, Any]]) -> Role:
    """
    Legacy role derivation from the attribute bag.

    Order: attributes.role, isSuperAdmin, isAdmin + adminOf, else USER.
    """
    attributes = attributes or {}
    explicit = parse_role(attributes.get("role")) if attributes.get("role") else None
    if explicit is not None:
        return explicit
    if attributes.get("isSuperAdmin") is True:
        return Role.SUPER_ADMIN
    if attributes.get("isAdmin") is True and attributes.get("adminOf"):
        return Role.OU_ADMIN
    return Role.USER


def resolve_role(
    roles: Optional[Sequence[Any]],
    attributes: Optional[Mapping[str, Any]] = None,
) -> Role:
    """
    Resolve the single effective role of a principal.

    The explicit roles field is authoritative; attribute flags are only
    consulted when it is empty or holds no known role.
    """
    explicit = highest_role(roles or [])
    if explicit is not None:
        return explicit
    return role_from_attributes(attributes)


def resolve_administered_node(
    role: Role,
    administers_node_id: Optional[int],
    attributes: Optional[Mapping[str, Any]] = None,
) -> Optional[int]:
    """Administered node id: explicit column first, then attributes.adminOf."""
    if administers_node_id is not None:
        return administers_node_id
    if role != Role.OU_ADMIN:
        return None
    admin_of = (attributes or {}).get("adminOf")
    if isinstance(admin_of, bool):
        return None
    try:
        return int(admin_of) if admin_of is not None else None
    except (TypeError, ValueError):
        return None


def grants_super_admin(
    attributes: Optional[Mapping[str, Any]],
    roles: Optional[Sequence[Any]] = None,
) -> bool:
    """True when creating a node with these values would mint a SUPER_ADMIN."""
    attributes = attributes or {}
    if attributes.get("isSuperAdmin") is True:
        return True
    if parse_role(attributes.get("role")) == Role.SUPER_ADMIN:
        return True
    return any(parse_role(r) == Role.SUPER_ADMIN for r in roles or [])


def grants_administration(
    attributes: Optional[Mapping[str, Any]],
    roles: Optional[Sequence[Any]] = None,
    administers_node_id: Optional[int] = None,
) -> bool:
    """True when any administrative privilege or scope would be granted."""
    attributes = attributes or {}
    if administers_node_id is not None:
        return True
    if attributes.get("isSuperAdmin") is True or attributes.get("isAdmin") is True:
        return True
    if attributes.get("adminOf") not in (None, False):
        return True
    if parse_role(attributes.get("role")) in ADMIN_ROLES:
        return True
    return any(parse_role(r) in ADMIN_ROLES for r in roles or [])
