"""
Authorization engine for directory operations.

A decision is produced by an ordered pipeline of stages sharing one
AuthorizationContext:

1. identity   - an authenticated caller is present
2. role       - the caller's role holds the requested permission
3. scope      - the target lies inside the caller's effective path
4. escalation - CREATE/MOVE/UPDATE cannot widen anyone's privileges,
                and an UPDATE cannot touch a principal who outranks the caller
                or whose authority reaches outside the caller's scope

Each stage returns None to hand over to the next stage, or a terminal
Decision. Every check runs before the directory is mutated.
"""

from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, Mapping, Optional, Sequence, Tuple

from orgdir.kernel.directory.directory_store import DirectoryStore
from orgdir.kernel.directory.paths import is_descendant_or_self, is_strict_ancestor
from orgdir.kernel.errors import AuthorizationError, ErrorCode, NotFoundError
from orgdir.kernel.identity.caller import CallerIdentity
from orgdir.kernel.models.audit_log import AuditAction
from orgdir.kernel.models.directory_node import DirectoryNode
from orgdir.kernel.permissions.roles import (
    ROLE_RANK,
    Permission,
    Role,
    grants_administration,
    grants_super_admin,
    resolve_administered_node,
    resolve_role,
    role_allows,
)
from orgdir.logging_config import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class AccessRequest:
    """
    Operation descriptor evaluated by the engine.

    Which id is the scope target depends on the action:
    target_id for READ/UPDATE/DELETE/MOVE, parent_id for CREATE,
    root_id for a scoped search. A request without any of them (flat
    search, full tree) has no positional target.
    """

    action: AuditAction
    permission: Optional[Permission] = None
    target_id: Optional[int] = None
    parent_id: Optional[int] = None
    new_parent_id: Optional[int] = None
    root_id: Optional[int] = None
    # Privileges a CREATE/UPDATE would hand out
    attributes: Optional[Mapping[str, Any]] = None
    replace_attributes: bool = False
    roles: Optional[Sequence[Any]] = None
    administers_node_id: Optional[int] = None
    # Spans the whole directory regardless of scope (integrity sweeps)
    directory_wide: bool = False


@dataclass(frozen=True)
class Decision:
    """Outcome of an authorization check."""

    allowed: bool
    reason: Optional[ErrorCode] = None
    detail: str = ""
    stage: Optional[str] = None

    @classmethod
    def allow(cls, stage: str, detail: str = "") -> "Decision":
        return cls(allowed=True, detail=detail, stage=stage)

    @classmethod
    def deny(cls, reason: ErrorCode, detail: str, stage: str) -> "Decision":
        return cls(allowed=False, reason=reason, detail=detail, stage=stage)


@dataclass
class AuthorizationContext:
    """State shared by the stages of one decision."""

    identity: Optional[CallerIdentity]
    request: AccessRequest
    store: DirectoryStore
    _nodes: Dict[int, Optional[DirectoryNode]] = field(default_factory=dict)
    _effective_path: Optional[str] = None

    async def node(self, node_id: int) -> Optional[DirectoryNode]:
        """Node by id, looked up at most once per decision."""
        if node_id not in self._nodes:
            self._nodes[node_id] = await self.store.get(node_id)
        return self._nodes[node_id]

    async def effective_path(self) -> str:
        """
        Path the caller's authority is anchored at.

        OU admins are anchored at their administered node; everyone else
        (and an OU admin whose administered node is gone) at their own node.
        """
        if self._effective_path is not None:
            return self._effective_path

        identity = self.identity
        path = identity.path
        if identity.role == Role.OU_ADMIN and identity.administers_node_id is not None:
            administered = await self.node(identity.administers_node_id)
            if administered is not None:
                path = administered.path
        else:
            own = await self.node(identity.node_id)
            if own is not None:
                path = own.path

        self._effective_path = path
        return path

    def is_self(self, node_id: Optional[int]) -> bool:
        return node_id is not None and node_id == self.identity.node_id


Stage = Callable[[AuthorizationContext], Awaitable[Optional[Decision]]]


def scope_outcome(effective_path: str, target_path: str) -> Optional[ErrorCode]:
    """
    Positional test of a target against an effective path.

    The ancestor test runs first: a strict ancestor of the scope is never a
    descendant of it, so checking descendants first would hide the reason.
    """
    if is_strict_ancestor(effective_path, target_path):
        return ErrorCode.ANCESTOR_EDIT_FORBIDDEN
    if not is_descendant_or_self(effective_path, target_path):
        return ErrorCode.SCOPE_VIOLATION
    return None


def _scope_target_id(request: AccessRequest) -> Optional[int]:
    if request.action == AuditAction.CREATE:
        return request.parent_id
    if request.target_id is not None:
        return request.target_id
    return request.root_id


# ----------------------------------------------------------------------
# Stages
# ----------------------------------------------------------------------


async def check_identity(ctx: AuthorizationContext) -> Optional[Decision]:
    if ctx.identity is None:
        return Decision.deny(ErrorCode.AUTH_REQUIRED, "Authentication required", "identity")
    return None


async def check_role(ctx: AuthorizationContext) -> Optional[Decision]:
    permission = ctx.request.permission
    if permission is None:
        return Decision.allow("role", "no permission required")
    if ctx.identity.is_super_admin:
        return None
    if not role_allows(ctx.identity.role, permission):
        return Decision.deny(
            ErrorCode.ROLE_INSUFFICIENT,
            f"Role {ctx.identity.role.value} does not grant {permission.value}",
            "role",
        )
    return None


async def check_scope(ctx: AuthorizationContext) -> Optional[Decision]:
    if ctx.identity.is_super_admin:
        return None

    request = ctx.request
    if request.directory_wide:
        return Decision.deny(
            ErrorCode.SCOPE_VIOLATION,
            "Directory-wide operations are reserved to super admins",
            "scope",
        )
    if request.action == AuditAction.CREATE and request.parent_id is None:
        return Decision.deny(
            ErrorCode.SCOPE_VIOLATION,
            "Only a super admin can create root nodes",
            "scope",
        )

    target_id = _scope_target_id(request)
    if target_id is None:
        return None
    if ctx.is_self(target_id):
        return None

    target = await ctx.node(target_id)
    if target is None:
        return Decision.deny(ErrorCode.NOT_FOUND, f"Node {target_id} does not exist", "scope")

    effective = await ctx.effective_path()
    outcome = scope_outcome(effective, target.path)
    if outcome is not None:
        return Decision.deny(
            outcome,
            f"Target path {target.path} is outside scope {effective}",
            "scope",
        )
    return None


async def _check_role_granting(ctx: AuthorizationContext) -> Optional[Decision]:
    request = ctx.request
    if grants_super_admin(request.attributes, request.roles):
        return Decision.deny(
            ErrorCode.ESCALATION_DENIED,
            "Only a super admin can grant SUPER_ADMIN",
            "escalation",
        )

    if ctx.identity.role in (Role.USER, Role.READONLY) and grants_administration(
        request.attributes, request.roles, request.administers_node_id
    ):
        return Decision.deny(
            ErrorCode.ESCALATION_DENIED,
            f"Role {ctx.identity.role.value} cannot grant administrative attributes",
            "escalation",
        )

    administered_id = resolve_administered_node(
        Role.OU_ADMIN, request.administers_node_id, request.attributes
    )
    if administered_id is not None:
        administered = await ctx.node(administered_id)
        if administered is None:
            return Decision.deny(
                ErrorCode.NOT_FOUND, f"Node {administered_id} does not exist", "escalation"
            )
        effective = await ctx.effective_path()
        if not is_descendant_or_self(effective, administered.path):
            return Decision.deny(
                ErrorCode.ESCALATION_DENIED,
                f"Cannot delegate administration of {administered.path} outside scope {effective}",
                "escalation",
            )
    return None


async def _check_phantom_parent(ctx: AuthorizationContext) -> Optional[Decision]:
    parent_id = ctx.request.parent_id
    if parent_id is None:
        return Decision.deny(
            ErrorCode.ESCALATION_DENIED, "Parent is required", "escalation"
        )
    if ctx.is_self(parent_id):
        return None

    parent = await ctx.node(parent_id)
    if parent is None:
        return Decision.deny(ErrorCode.NOT_FOUND, f"Parent {parent_id} does not exist", "escalation")

    effective = await ctx.effective_path()
    if not is_descendant_or_self(effective, parent.path):
        return Decision.deny(
            ErrorCode.ESCALATION_DENIED,
            f"Parent path {parent.path} is outside scope {effective}",
            "escalation",
        )
    return None


async def _check_move(ctx: AuthorizationContext) -> Optional[Decision]:
    request = ctx.request
    identity = ctx.identity

    if (
        identity.role == Role.OU_ADMIN
        and request.target_id is not None
        and request.target_id == identity.administers_node_id
    ):
        return Decision.deny(
            ErrorCode.ESCALATION_DENIED,
            "An OU admin cannot move the node they administer",
            "escalation",
        )

    if request.target_id is None or request.new_parent_id is None:
        return Decision.deny(
            ErrorCode.ESCALATION_DENIED, "Move requires a node and a new parent", "escalation"
        )

    node = await ctx.node(request.target_id)
    if node is None:
        return Decision.deny(
            ErrorCode.NOT_FOUND, f"Node {request.target_id} does not exist", "escalation"
        )
    new_parent = await ctx.node(request.new_parent_id)
    if new_parent is None:
        return Decision.deny(
            ErrorCode.NOT_FOUND, f"New parent {request.new_parent_id} does not exist", "escalation"
        )

    effective = await ctx.effective_path()
    if len(new_parent.path) < len(effective):
        return Decision.deny(
            ErrorCode.ESCALATION_DENIED,
            f"New parent path {new_parent.path} is above scope {effective}",
            "escalation",
        )

    candidates = [(new_parent, "New parent")]
    if not ctx.is_self(node.id):
        candidates.insert(0, (node, "Node"))
    for candidate, label in candidates:
        outcome = scope_outcome(effective, candidate.path)
        if outcome is not None:
            return Decision.deny(
                outcome,
                f"{label} path {candidate.path} is outside scope {effective}",
                "escalation",
            )
    return None


def _updated_attributes(target: DirectoryNode, request: AccessRequest) -> Dict[str, Any]:
    """Attribute bag the target would hold once the update is applied."""
    current = dict(target.attributes or {})
    if request.attributes is None:
        return current
    if request.replace_attributes:
        return dict(request.attributes)
    return {**current, **request.attributes}


async def _authority_path(
    ctx: AuthorizationContext,
    principal: DirectoryNode,
    attributes: Mapping[str, Any],
) -> Tuple[Role, str]:
    """Role a principal resolves to with these attributes, and where it is anchored."""
    role = resolve_role(principal.roles, attributes)
    if role == Role.OU_ADMIN:
        administered_id = resolve_administered_node(
            role, principal.administers_node_id, attributes
        )
        if administered_id is not None:
            administered = await ctx.node(administered_id)
            if administered is not None:
                return role, administered.path
    return role, principal.path


async def _check_target_authority(ctx: AuthorizationContext) -> Optional[Decision]:
    if ctx.request.target_id is None:
        return None
    target = await ctx.node(ctx.request.target_id)
    if target is None or not target.is_principal:
        return None

    effective = await ctx.effective_path()
    caller_rank = ROLE_RANK[ctx.identity.role]
    states = (
        ("Target", dict(target.attributes or {})),
        ("Updated target", _updated_attributes(target, ctx.request)),
    )
    for label, attributes in states:
        role, anchor = await _authority_path(ctx, target, attributes)
        if ROLE_RANK[role] > caller_rank:
            return Decision.deny(
                ErrorCode.ESCALATION_DENIED,
                f"{label} role {role.value} outranks {ctx.identity.role.value}",
                "escalation",
            )
        if not is_descendant_or_self(effective, anchor):
            return Decision.deny(
                ErrorCode.ESCALATION_DENIED,
                f"{label} authority at {anchor} lies outside scope {effective}",
                "escalation",
            )
    return None


async def check_escalation(ctx: AuthorizationContext) -> Optional[Decision]:
    if ctx.identity.is_super_admin:
        return None

    action = ctx.request.action
    if action == AuditAction.CREATE:
        return await _check_role_granting(ctx) or await _check_phantom_parent(ctx)
    if action == AuditAction.UPDATE:
        return await _check_role_granting(ctx) or await _check_target_authority(ctx)
    if action == AuditAction.MOVE:
        return await _check_move(ctx)
    return None


PIPELINE: Tuple[Stage, ...] = (
    check_identity,
    check_role,
    check_scope,
    check_escalation,
)


class AuthorizationEngine:
    """
    Runs the stage pipeline for one request.

    Usage:
        engine = AuthorizationEngine(store)
        await engine.enforce(identity, AccessRequest(AuditAction.MOVE, ...))
    """

    def __init__(self, store: DirectoryStore, stages: Sequence[Stage] = PIPELINE):
        self.store = store
        self.stages = tuple(stages)

    async def authorize(
        self,
        identity: Optional[CallerIdentity],
        request: AccessRequest,
    ) -> Decision:
        """Evaluate the pipeline. The first terminal decision wins."""
        ctx = AuthorizationContext(identity=identity, request=request, store=self.store)
        for stage in self.stages:
            decision = await stage(ctx)
            if decision is not None:
                return decision
        return Decision.allow("pipeline")

    async def effective_path(self, identity: CallerIdentity) -> str:
        """Effective path of a caller, as used for scope checks and audit."""
        ctx = AuthorizationContext(
            identity=identity,
            request=AccessRequest(action=AuditAction.READ),
            store=self.store,
        )
        return await ctx.effective_path()

    async def enforce(
        self,
        identity: Optional[CallerIdentity],
        request: AccessRequest,
    ) -> Decision:
        """
        Authorize or raise.

        Raises:
            NotFoundError: a node named by the request does not exist
            AuthorizationError: the request was denied
        """
        decision = await self.authorize(identity, request)
        if decision.allowed:
            return decision

        logger.warning(
            "Access denied",
            extra={
                "reason": decision.reason.value,
                "stage": decision.stage,
                "action": request.action.value,
                "target_id": request.target_id or request.parent_id or request.root_id,
                "detail": decision.detail,
            },
        )
        if decision.reason == ErrorCode.NOT_FOUND:
            raise NotFoundError(decision.detail)
        raise AuthorizationError(decision.reason, decision.detail, stage=decision.stage)
