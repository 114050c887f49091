"""
Resolved identity of the principal behind a request.
"""

from dataclasses import dataclass, field
from typing import Optional, Tuple

from orgdir.kernel.models.directory_node import DirectoryNode
from orgdir.kernel.permissions.roles import (
    Role,
    parse_role,
    resolve_administered_node,
    resolve_role,
)


@dataclass(frozen=True)
class CallerIdentity:
    """Role, administered node and own path of an authenticated principal."""

    node_id: int
    name: str
    role: Role
    path: str
    administers_node_id: Optional[int] = None
    roles: Tuple[Role, ...] = field(default_factory=tuple)

    @property
    def is_super_admin(self) -> bool:
        return self.role == Role.SUPER_ADMIN or Role.SUPER_ADMIN in self.roles

    @property
    def label(self) -> str:
        """Short form used in log context."""
        return f"{self.node_id}:{self.name}"

    @classmethod
    def from_node(cls, node: DirectoryNode) -> "CallerIdentity":
        """Resolve role and scope once, from the node's current state."""
        role = resolve_role(node.roles, node.attributes)
        explicit = tuple(r for r in (parse_role(v) for v in node.roles or []) if r is not None)
        return cls(
            node_id=node.id,
            name=node.name,
            role=role,
            path=node.path,
            administers_node_id=resolve_administered_node(
                role, node.administers_node_id, node.attributes
            ),
            roles=explicit or (role,),
        )
