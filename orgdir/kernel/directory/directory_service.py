"""
Directory service: the query surface over the tree store.

Every call runs authorize -> store operation -> commit -> audit. Nothing
is written before the engine has allowed the request, and the audit event
for a successful mutation is emitted only after its transaction committed.
"""

from collections import deque
from typing import Any, Dict, List, Mapping, Optional, Sequence

from sqlalchemy.ext.asyncio import AsyncSession

from orgdir.kernel.directory.directory_store import DirectoryStore, PathViolation, TreeNode
from orgdir.kernel.directory.paths import is_descendant_or_self
from orgdir.kernel.errors import AuthorizationError, DirectoryError
from orgdir.kernel.events.audit_sink import AuditSink
from orgdir.kernel.events.event_types import AuditEvent
from orgdir.kernel.identity.caller import CallerIdentity
from orgdir.kernel.identity.password import SecretHasher
from orgdir.kernel.models.audit_log import AuditAction, AuditStatus
from orgdir.kernel.models.directory_node import DirectoryNode, NodeKind
from orgdir.kernel.permissions.authorization import AccessRequest, AuthorizationEngine
from orgdir.kernel.permissions.roles import ADMIN_ROLES, Permission
from orgdir.logging_config import get_logger

logger = get_logger(__name__)


class DirectoryService:
    """
    Authorized, audited directory operations.

    Usage:
        service = DirectoryService(session, audit_sink)
        node = await service.create(identity, "sales", NodeKind.UNIT, parent_id=1)
    """

    def __init__(
        self,
        session: AsyncSession,
        audit_sink: AuditSink,
        hasher: Optional[SecretHasher] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None,
    ):
        self.session = session
        self.audit_sink = audit_sink
        self.store = DirectoryStore(session, hasher)
        self.engine = AuthorizationEngine(self.store)
        self.ip_address = ip_address
        self.user_agent = user_agent

    # ------------------------------------------------------------------
    # Mutations
    # ------------------------------------------------------------------

    async def create(
        self,
        identity: Optional[CallerIdentity],
        name: str,
        kind: NodeKind,
        parent_id: Optional[int] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        secret: Optional[str] = None,
        roles: Optional[Sequence[Any]] = None,
        administers_node_id: Optional[int] = None,
    ) -> DirectoryNode:
        """Create a node under parent_id (or a root, for super admins)."""
        request = AccessRequest(
            action=AuditAction.CREATE,
            permission=Permission.CREATE,
            parent_id=parent_id,
            attributes=attributes,
            roles=roles,
            administers_node_id=administers_node_id,
        )
        scope = await self._authorize(identity, request)

        try:
            node = await self.store.create(
                name,
                kind,
                parent_id=parent_id,
                attributes=attributes,
                secret=secret,
                roles=roles,
                administers_node_id=administers_node_id,
            )
            await self.session.commit()
        except DirectoryError as exc:
            await self._fail(identity, request, scope, exc, {"name": name})
            raise

        await self._emit(
            identity,
            AuditAction.CREATE,
            scope,
            target=node,
            metadata={"parent_id": parent_id, "kind": node.kind_value, "path": node.path},
        )
        return node

    async def move(
        self,
        identity: Optional[CallerIdentity],
        node_id: int,
        new_parent_id: int,
    ) -> DirectoryNode:
        """Reparent a node; its whole subtree follows."""
        request = AccessRequest(
            action=AuditAction.MOVE,
            permission=Permission.UPDATE,
            target_id=node_id,
            new_parent_id=new_parent_id,
        )
        await self._lock_for_move(identity, node_id, new_parent_id)
        scope = await self._authorize(identity, request)

        try:
            node = await self.store.require(node_id)
            old_parent_id, old_path = node.parent_id, node.path
            node = await self.store.move(node_id, new_parent_id)
            await self.session.commit()
        except DirectoryError as exc:
            await self._fail(identity, request, scope, exc, {"new_parent_id": new_parent_id})
            raise

        await self._emit(
            identity,
            AuditAction.MOVE,
            scope,
            target=node,
            metadata={
                "old_parent_id": old_parent_id,
                "new_parent_id": new_parent_id,
                "old_path": old_path,
                "new_path": node.path,
            },
        )
        return node

    async def update(
        self,
        identity: Optional[CallerIdentity],
        node_id: int,
        name: Optional[str] = None,
        attributes: Optional[Mapping[str, Any]] = None,
        replace_attributes: bool = False,
        secret: Optional[str] = None,
    ) -> DirectoryNode:
        """Rename a node, change its attributes or reset a principal's secret."""
        request = AccessRequest(
            action=AuditAction.UPDATE,
            permission=Permission.UPDATE,
            target_id=node_id,
            attributes=attributes,
            replace_attributes=replace_attributes,
        )
        scope = await self._authorize(identity, request)

        changed: List[str] = []
        if name is not None:
            changed.append("name")
        if attributes is not None:
            changed.append("attributes")
        if secret is not None:
            changed.append("secret")

        try:
            node = await self.store.update(
                node_id,
                name=name,
                attributes=attributes,
                replace_attributes=replace_attributes,
            )
            if secret is not None:
                node = await self.store.set_secret(node_id, secret)
            await self.session.commit()
        except DirectoryError as exc:
            await self._fail(identity, request, scope, exc, {"fields": changed})
            raise

        await self._emit(
            identity,
            AuditAction.UPDATE,
            scope,
            target=node,
            metadata={"fields": changed, "replace_attributes": replace_attributes},
        )
        return node

    async def delete(self, identity: Optional[CallerIdentity], node_id: int) -> None:
        """Authorized and audited, but deletion itself is not implemented."""
        request = AccessRequest(
            action=AuditAction.DELETE,
            permission=Permission.DELETE,
            target_id=node_id,
        )
        scope = await self._authorize(identity, request)

        try:
            await self.store.delete(node_id)
        except DirectoryError as exc:
            await self._fail(identity, request, scope, exc)
            raise

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get(self, identity: Optional[CallerIdentity], node_id: int) -> DirectoryNode:
        request = AccessRequest(
            action=AuditAction.READ, permission=Permission.READ, target_id=node_id
        )
        scope = await self._authorize(identity, request)
        node = await self.store.require(node_id)
        await self._emit_read(identity, scope, "get", target=node)
        return node

    async def ancestors(
        self,
        identity: Optional[CallerIdentity],
        node_id: int,
    ) -> List[DirectoryNode]:
        """Ancestors of a node, root first, node itself excluded."""
        request = AccessRequest(
            action=AuditAction.READ, permission=Permission.READ, target_id=node_id
        )
        scope = await self._authorize(identity, request)
        nodes = await self.store.ancestors(node_id)
        await self._emit_read(identity, scope, "ancestors", target_id=node_id, results=len(nodes))
        return nodes

    async def search_subtree(
        self,
        identity: Optional[CallerIdentity],
        root_id: int,
        term: Optional[str] = None,
    ) -> List[DirectoryNode]:
        request = AccessRequest(
            action=AuditAction.READ, permission=Permission.READ, root_id=root_id
        )
        scope = await self._authorize(identity, request)
        nodes = await self.store.search_subtree(root_id, term)
        await self._emit_read(
            identity, scope, "search_subtree", target_id=root_id, term=term, results=len(nodes)
        )
        return nodes

    async def search_flat(
        self,
        identity: Optional[CallerIdentity],
        term: str,
        kind: Optional[NodeKind] = None,
    ) -> List[DirectoryNode]:
        """
        Directory-wide search.

        Super admins see every match; everyone else only matches inside
        their effective path.
        """
        request = AccessRequest(action=AuditAction.READ, permission=Permission.READ)
        scope = await self._authorize(identity, request)
        nodes = await self.store.search_flat(term, kind)
        nodes = self._visible(identity, scope, nodes)
        await self._emit_read(identity, scope, "search_flat", term=term, results=len(nodes))
        return nodes

    async def full_tree(self, identity: Optional[CallerIdentity]) -> List[TreeNode]:
        """The directory forest, pruned to the caller's effective path."""
        request = AccessRequest(action=AuditAction.READ, permission=Permission.READ)
        scope = await self._authorize(identity, request)
        forest = await self.store.full_tree()
        if not identity.is_super_admin:
            forest = _prune(forest, scope)
        await self._emit_read(identity, scope, "full_tree", roots=len(forest))
        return forest

    async def path_violations(self, identity: Optional[CallerIdentity]) -> List[PathViolation]:
        """Integrity sweep over every stored path. Super admins only."""
        request = AccessRequest(
            action=AuditAction.READ,
            permission=Permission.MANAGE,
            directory_wide=True,
        )
        scope = await self._authorize(identity, request)
        violations = await self.store.find_path_violations()
        if violations:
            logger.error(
                "Path integrity violations found",
                extra={"count": len(violations), "node_ids": [v.node_id for v in violations]},
            )
        await self._emit_read(identity, scope, "path_violations", results=len(violations))
        return violations

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _lock_for_move(
        self,
        identity: Optional[CallerIdentity],
        node_id: int,
        new_parent_id: int,
    ) -> None:
        """Lock and reload every row the move authorization reads."""
        if identity is None:
            return
        await self.store.lock_nodes(
            node_id, new_parent_id, identity.node_id, identity.administers_node_id
        )

    @staticmethod
    def _is_audited(identity: CallerIdentity, action: AuditAction) -> bool:
        return action != AuditAction.READ or identity.role in ADMIN_ROLES

    @staticmethod
    def _visible(
        identity: CallerIdentity,
        scope: str,
        nodes: List[DirectoryNode],
    ) -> List[DirectoryNode]:
        if identity.is_super_admin:
            return nodes
        return [n for n in nodes if is_descendant_or_self(scope, n.path)]

    async def _authorize(
        self,
        identity: Optional[CallerIdentity],
        request: AccessRequest,
    ) -> str:
        """Enforce the request; returns the caller's effective path."""
        try:
            await self.engine.enforce(identity, request)
        except AuthorizationError as exc:
            if identity is not None and self._is_audited(identity, request.action):
                await self.session.rollback()
                scope = await self.engine.effective_path(identity)
                await self._emit(
                    identity,
                    request.action,
                    scope,
                    target_id=request.target_id or request.parent_id or request.root_id,
                    status=AuditStatus.DENIED,
                    error_message=exc.message,
                    metadata={"reason": exc.code.value, "stage": exc.stage},
                )
            raise

        return await self.engine.effective_path(identity)

    async def _fail(
        self,
        identity: CallerIdentity,
        request: AccessRequest,
        scope: str,
        exc: DirectoryError,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        await self.session.rollback()
        if not self._is_audited(identity, request.action):
            return
        await self._emit(
            identity,
            request.action,
            scope,
            target_id=request.target_id or request.parent_id,
            status=AuditStatus.FAILED,
            error_message=exc.message,
            metadata={**(metadata or {}), "code": exc.code.value},
        )

    async def _emit_read(
        self,
        identity: CallerIdentity,
        scope: str,
        operation: str,
        target: Optional[DirectoryNode] = None,
        target_id: Optional[int] = None,
        **metadata: Any,
    ) -> None:
        if not self._is_audited(identity, AuditAction.READ):
            return
        await self._emit(
            identity,
            AuditAction.READ,
            scope,
            target=target,
            target_id=target_id,
            metadata={"operation": operation, **metadata},
        )

    async def _emit(
        self,
        identity: CallerIdentity,
        action: AuditAction,
        scope: str,
        target: Optional[DirectoryNode] = None,
        target_id: Optional[int] = None,
        **fields: Any,
    ) -> None:
        event = AuditEvent.for_caller(
            identity,
            action,
            scope,
            target=target,
            target_id=target_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            **fields,
        )
        await self.audit_sink.emit(event)


def _prune(forest: List[TreeNode], scope: str) -> List[TreeNode]:
    """Subtrees of forest rooted at the topmost nodes inside scope."""
    visible: List[TreeNode] = []
    pending = deque(forest)
    while pending:
        entry = pending.popleft()
        if is_descendant_or_self(scope, entry.node.path):
            visible.append(entry)
        else:
            pending.extend(entry.children)
    return visible
