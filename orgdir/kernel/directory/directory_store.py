"""
Directory tree store: node CRUD over a materialized-path tree.

The store owns every write to `DirectoryNode.path`. It flushes but never
commits; the caller's transaction is the unit of atomicity, so a failed move
cascade is rolled back together with the reparenting itself.
"""

from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import undefer

from orgdir.kernel.directory.paths import (
    ancestor_ids,
    child_path,
    depth,
    is_descendant_or_self,
    rebase_path,
    root_path,
)
from orgdir.kernel.errors import (
    ConflictError,
    InvalidOperationError,
    NotFoundError,
    NotImplementedOperationError,
)
from orgdir.kernel.identity.password import SecretHasher
from orgdir.kernel.models.directory_node import DirectoryNode, NodeKind
from orgdir.kernel.permissions.roles import parse_role
from orgdir.logging_config import get_logger

logger = get_logger(__name__)


@dataclass
class TreeNode:
    """A node with its children, for nested tree rendering."""

    node: DirectoryNode
    children: List["TreeNode"] = field(default_factory=list)


@dataclass(frozen=True)
class PathViolation:
    """A node whose stored path disagrees with its parent's path."""

    node_id: int
    actual: str
    expected: Optional[str]
    reason: str


def _parse_kind(kind: Any) -> NodeKind:
    try:
        return NodeKind(kind.value if hasattr(kind, "value") else str(kind).upper())
    except ValueError:
        raise InvalidOperationError(f"Unknown node kind {kind!r}")


def _normalize_roles(roles: Optional[Sequence[Any]]) -> Optional[List[str]]:
    if not roles:
        return None
    normalized = []
    for value in roles:
        role = parse_role(value)
        if role is None:
            raise InvalidOperationError(f"Unknown role {value!r}")
        if role.value not in normalized:
            normalized.append(role.value)
    return normalized


class DirectoryStore:
    """
    Tree store over DirectoryNode rows.

    Usage:
        store = DirectoryStore(session)
        unit = await store.create("sales", NodeKind.UNIT, parent_id=root.id)
        await store.move(unit.id, new_parent_id=other.id)
    """

    def __init__(self, session: AsyncSession, hasher: Optional[SecretHasher] = None):
        self.session = session
        self.hasher = hasher or SecretHasher()

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, node_id: int) -> Optional[DirectoryNode]:
        """Find a node by id (secret not loaded)."""
        return await self.session.get(DirectoryNode, node_id)

    async def require(self, node_id: int, what: str = "Node") -> DirectoryNode:
        """Find a node by id or raise NotFoundError."""
        node = await self.get(node_id)
        if node is None:
            raise NotFoundError(f"{what} {node_id} does not exist")
        return node

    async def find_child(self, parent_id: Optional[int], name: str) -> Optional[DirectoryNode]:
        """Child of parent_id (a root when None) with the given name."""
        query = select(DirectoryNode).where(DirectoryNode.name == name)
        if parent_id is None:
            query = query.where(DirectoryNode.parent_id.is_(None))
        else:
            query = query.where(DirectoryNode.parent_id == parent_id)
        result = await self.session.execute(query.limit(1))
        return result.scalar_one_or_none()

    async def ancestors(self, node_id: int) -> List[DirectoryNode]:
        """
        Ancestors of a node ordered from the root down to the parent.

        The node itself is not included.
        """
        node = await self.require(node_id)
        ids = ancestor_ids(node.path)
        if not ids:
            return []

        result = await self.session.execute(
            select(DirectoryNode).where(DirectoryNode.id.in_(ids))
        )
        by_id = {n.id: n for n in result.scalars().all()}
        return [by_id[i] for i in ids if i in by_id]

    async def search_subtree(
        self,
        root_id: int,
        term: Optional[str] = None,
    ) -> List[DirectoryNode]:
        """
        All nodes below root_id, optionally filtered by name or email.

        The root itself is excluded. Matching is a case-insensitive substring
        test on the name and on attributes.email.
        """
        root = await self.require(root_id, "Root node")

        query = select(DirectoryNode).where(
            DirectoryNode.path.startswith(root.path, autoescape=True),
            DirectoryNode.id != root.id,
        )
        if term:
            query = query.where(self._matches(term))
        query = query.order_by(DirectoryNode.id)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def search_flat(
        self,
        term: str,
        kind: Optional[NodeKind] = None,
    ) -> List[DirectoryNode]:
        """Substring search over the whole directory, ignoring hierarchy."""
        query = select(DirectoryNode).where(self._matches(term or ""))
        if kind is not None:
            query = query.where(DirectoryNode.kind == _parse_kind(kind).value)
        query = query.order_by(DirectoryNode.id)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def find_principal_with_secret(self, name: str) -> Optional[DirectoryNode]:
        """
        Principal by name with its credential secret loaded.

        Used exclusively by credential verification. Names are only unique
        among siblings, so an ambiguous name resolves to nobody.
        """
        query = (
            select(DirectoryNode)
            .options(undefer(DirectoryNode.credential_secret))
            .where(
                DirectoryNode.name == name,
                DirectoryNode.kind == NodeKind.PRINCIPAL.value,
            )
            .limit(2)
            .execution_options(populate_existing=True)
        )
        result = await self.session.execute(query)
        matches = list(result.scalars().all())

        if len(matches) > 1:
            logger.warning("Ambiguous principal name refused", extra={"principal": name})
            return None
        return matches[0] if matches else None

    async def full_tree(self) -> List[TreeNode]:
        """The whole directory as a forest, children ordered by id."""
        result = await self.session.execute(select(DirectoryNode).order_by(DirectoryNode.id))
        nodes = sorted(result.scalars().all(), key=lambda n: (depth(n.path), n.id))

        by_id: Dict[int, TreeNode] = {}
        roots: List[TreeNode] = []
        for node in nodes:
            entry = TreeNode(node=node)
            by_id[node.id] = entry
            parent = by_id.get(node.parent_id) if node.parent_id is not None else None
            if parent is None:
                roots.append(entry)
            else:
                parent.children.append(entry)
        return roots

    async def find_path_violations(self) -> List[PathViolation]:
        """Every node whose path is not parent.path + own id."""
        result = await self.session.execute(
            select(DirectoryNode.id, DirectoryNode.parent_id, DirectoryNode.path)
        )
        rows = result.all()
        paths = {row.id: row.path for row in rows}

        violations = []
        for row in rows:
            if row.parent_id is None:
                expected = root_path(row.id)
            elif row.parent_id not in paths:
                violations.append(PathViolation(row.id, row.path, None, "parent missing"))
                continue
            else:
                expected = child_path(paths[row.parent_id], row.id)
            if row.path != expected:
                violations.append(PathViolation(row.id, row.path, expected, "path mismatch"))
        return violations

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def create(
        self,
        name: str,
        kind: NodeKind,
        parent_id: Optional[int] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        secret: Optional[str] = None,
        roles: Optional[Sequence[Any]] = None,
        administers_node_id: Optional[int] = None,
    ) -> DirectoryNode:
        """
        Insert a node and assign its path.

        Raises:
            NotFoundError: parent or administered node does not exist
            InvalidOperationError: parent is a principal, secret on a
                non-principal, empty name, unknown kind or role
            ConflictError: a sibling already has this name
        """
        name = (name or "").strip()
        if not name:
            raise InvalidOperationError("Node name must not be empty")
        kind = _parse_kind(kind)

        parent = None
        if parent_id is not None:
            parent = await self.require(parent_id, "Parent node")
            if parent.is_principal:
                raise InvalidOperationError("Principals cannot own children")

        await self._ensure_unique_sibling(parent_id, name)

        if administers_node_id is not None:
            await self.require(administers_node_id, "Administered node")

        if secret is not None and kind != NodeKind.PRINCIPAL:
            raise InvalidOperationError("Only principals can hold a credential secret")

        node = DirectoryNode(
            name=name,
            kind=kind,
            parent_id=parent_id,
            attributes=dict(attributes or {}),
            roles=_normalize_roles(roles),
            administers_node_id=administers_node_id,
            path="",
        )
        if secret is not None:
            node.credential_secret = self.hasher.ensure_hashed(secret)

        self.session.add(node)
        await self.session.flush()  # assigns the id

        node.path = child_path(parent.path, node.id) if parent else root_path(node.id)
        await self.session.flush()

        logger.info(
            "Node created",
            extra={"node_id": node.id, "kind": kind.value, "path": node.path},
        )
        return node

    async def move(self, node_id: int, new_parent_id: int) -> DirectoryNode:
        """
        Reparent a node and rewrite the path of its whole subtree.

        Node, new parent and subtree are re-read under the write lock, so the
        cycle and prefix checks see committed paths. The subtree is fetched
        with one prefix query, new paths are computed in memory and written
        with a single flush.

        Raises:
            NotFoundError: node or new parent does not exist
            InvalidOperationError: new parent is a principal, or is the node
                itself or one of its descendants
            ConflictError: the new parent already has a child with this name
        """
        locked = {n.id: n for n in await self.lock_nodes(node_id, new_parent_id)}
        node = locked.get(node_id)
        if node is None:
            raise NotFoundError(f"Node {node_id} does not exist")
        new_parent = locked.get(new_parent_id)
        if new_parent is None:
            raise NotFoundError(f"New parent node {new_parent_id} does not exist")

        if new_parent.is_principal:
            raise InvalidOperationError("Principals cannot own children")
        if is_descendant_or_self(node.path, new_parent.path):
            raise InvalidOperationError(
                f"Cannot move node {node.id} ({node.path}) under its own subtree ({new_parent.path})"
            )
        if node.parent_id == new_parent.id:
            return node

        await self._ensure_unique_sibling(new_parent.id, node.name, exclude_id=node.id)

        old_prefix = node.path
        new_prefix = child_path(new_parent.path, node.id)

        result = await self.session.execute(
            select(DirectoryNode)
            .where(DirectoryNode.path.startswith(old_prefix, autoescape=True))
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        subtree = list(result.scalars().all())

        node.parent_id = new_parent.id
        for member in subtree:
            member.path = rebase_path(member.path, old_prefix, new_prefix)
        await self.session.flush()

        logger.info(
            "Subtree moved",
            extra={
                "node_id": node.id,
                "old_path": old_prefix,
                "new_path": new_prefix,
                "rewritten": len(subtree),
            },
        )
        return node

    async def lock_nodes(self, *node_ids: Optional[int]) -> List[DirectoryNode]:
        """
        Take the tree write lock and reload nodes from the database.

        Rows are selected FOR UPDATE and replace whatever the session already
        held for them. SQLite has no row locks, so the database write lock is
        taken first with a no-op update; it is held until the transaction ends.
        """
        ids = sorted({i for i in node_ids if i is not None})
        if not ids:
            return []

        if self.session.get_bind().dialect.name == "sqlite":
            await self.session.execute(
                update(DirectoryNode)
                .where(DirectoryNode.id == ids[0])
                .values(updated_at=DirectoryNode.updated_at)
                .execution_options(synchronize_session=False)
            )

        result = await self.session.execute(
            select(DirectoryNode)
            .where(DirectoryNode.id.in_(ids))
            .order_by(DirectoryNode.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return list(result.scalars().all())

    async def update(
        self,
        node_id: int,
        name: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        replace_attributes: bool = False,
    ) -> DirectoryNode:
        """Rename a node and/or merge (or replace) its attributes."""
        node = await self.require(node_id)

        if name is not None:
            name = name.strip()
            if not name:
                raise InvalidOperationError("Node name must not be empty")
            if name != node.name:
                await self._ensure_unique_sibling(node.parent_id, name, exclude_id=node.id)
                node.name = name

        if attributes is not None:
            if replace_attributes:
                node.attributes = dict(attributes)
            else:
                node.attributes = {**(node.attributes or {}), **attributes}

        await self.session.flush()
        return node

    async def set_secret(self, node_id: int, secret: str) -> DirectoryNode:
        """Store a new (hashed) credential secret for a principal."""
        node = await self.require(node_id)
        if not node.is_principal:
            raise InvalidOperationError("Only principals can hold a credential secret")
        node.credential_secret = self.hasher.ensure_hashed(secret)
        await self.session.flush()
        return node

    async def delete(self, node_id: int) -> None:
        """Deletion has no defined semantics for subtrees yet."""
        await self.require(node_id)
        raise NotImplementedOperationError(f"Deleting node {node_id} is not implemented")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _ensure_unique_sibling(
        self,
        parent_id: Optional[int],
        name: str,
        exclude_id: Optional[int] = None,
    ) -> None:
        existing = await self.find_child(parent_id, name)
        if existing is not None and existing.id != exclude_id:
            raise ConflictError(f"A node named '{name}' already exists under this parent")

    @staticmethod
    def _matches(term: str):
        return or_(
            DirectoryNode.name.icontains(term, autoescape=True),
            DirectoryNode.attributes["email"].as_string().icontains(term, autoescape=True),
        )
