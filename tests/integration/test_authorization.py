"""Tests for the authorization pipeline against the sample tree."""

import pytest

from orgdir.kernel.errors import AuthorizationError, ErrorCode, NotFoundError
from orgdir.kernel.identity.caller import CallerIdentity
from orgdir.kernel.models import AuditAction, NodeKind
from orgdir.kernel.permissions.authorization import (
    AccessRequest,
    AuthorizationEngine,
    check_identity,
    scope_outcome,
)
from orgdir.kernel.permissions.roles import Permission, Role


@pytest.fixture
def engine(store):
    return AuthorizationEngine(store)


def _create(parent_id, **fields):
    return AccessRequest(AuditAction.CREATE, Permission.CREATE, parent_id=parent_id, **fields)


def _move(target_id, new_parent_id):
    return AccessRequest(
        AuditAction.MOVE, Permission.UPDATE, target_id=target_id, new_parent_id=new_parent_id
    )


def _update(target_id, **fields):
    return AccessRequest(AuditAction.UPDATE, Permission.UPDATE, target_id=target_id, **fields)


def _read(target_id):
    return AccessRequest(AuditAction.READ, Permission.READ, target_id=target_id)


class TestScopeOutcome:
    """Pure positional rule."""

    def test_descendant_is_in_scope(self):
        assert scope_outcome("1.2.", "1.2.5.10.") is None

    def test_own_scope_root_is_in_scope(self):
        assert scope_outcome("1.2.", "1.2.") is None

    def test_sibling_subtree_is_out_of_scope(self):
        assert scope_outcome("1.2.", "1.3.8.") == ErrorCode.SCOPE_VIOLATION

    def test_ancestor_is_reported_as_such(self):
        assert scope_outcome("1.2.", "1.") == ErrorCode.ANCESTOR_EDIT_FORBIDDEN

    def test_numeric_prefix_is_not_a_parent(self):
        assert scope_outcome("1.2.", "1.22.") == ErrorCode.SCOPE_VIOLATION


class TestIdentityAndRole:
    """Stages one and two."""

    @pytest.mark.asyncio
    async def test_anonymous_is_denied(self, engine, tree):
        decision = await engine.authorize(None, _read(tree.root.id))
        assert not decision.allowed
        assert decision.reason == ErrorCode.AUTH_REQUIRED
        assert decision.stage == "identity"

    @pytest.mark.asyncio
    async def test_user_cannot_create(self, engine, tree):
        decision = await engine.authorize(tree.identity("alice"), _create(tree.emea.id))
        assert decision.reason == ErrorCode.ROLE_INSUFFICIENT

    @pytest.mark.asyncio
    async def test_readonly_cannot_manage(self, engine, tree):
        request = AccessRequest(AuditAction.READ, Permission.MANAGE, target_id=tree.bob.id)
        decision = await engine.authorize(tree.identity("bob"), request)
        assert decision.reason == ErrorCode.ROLE_INSUFFICIENT

    @pytest.mark.asyncio
    async def test_self_edit_fails_on_role_before_scope(self, engine, tree):
        request = AccessRequest(AuditAction.UPDATE, Permission.UPDATE, target_id=tree.alice.id)
        decision = await engine.authorize(tree.identity("alice"), request)
        assert decision.reason == ErrorCode.ROLE_INSUFFICIENT
        assert decision.stage == "role"

    @pytest.mark.asyncio
    async def test_no_permission_needed(self, engine, tree):
        request = AccessRequest(AuditAction.READ)
        decision = await engine.authorize(tree.identity("bob"), request)
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_custom_pipeline(self, store, tree):
        engine = AuthorizationEngine(store, stages=(check_identity,))
        assert (await engine.authorize(tree.identity("alice"), _create(tree.ops.id))).allowed


class TestScope:
    """Stage three."""

    @pytest.mark.asyncio
    async def test_user_reads_self(self, engine, tree):
        assert (await engine.authorize(tree.identity("alice"), _read(tree.alice.id))).allowed

    @pytest.mark.asyncio
    async def test_user_cannot_read_sibling_subtree(self, engine, tree):
        decision = await engine.authorize(tree.identity("alice"), _read(tree.bob.id))
        assert decision.reason == ErrorCode.SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_user_cannot_reach_own_ancestors(self, engine, tree):
        decision = await engine.authorize(tree.identity("alice"), _read(tree.emea.id))
        assert decision.reason == ErrorCode.ANCESTOR_EDIT_FORBIDDEN

    @pytest.mark.asyncio
    async def test_ou_admin_creates_inside_subtree(self, engine, tree):
        decision = await engine.authorize(tree.identity("sales_admin"), _create(tree.emea.id))
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_ou_admin_outside_subtree(self, engine, tree):
        decision = await engine.authorize(tree.identity("sales_admin"), _create(tree.ops.id))
        assert decision.reason == ErrorCode.SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_ou_admin_above_subtree(self, engine, tree):
        decision = await engine.authorize(tree.identity("sales_admin"), _create(tree.root.id))
        assert decision.reason == ErrorCode.ANCESTOR_EDIT_FORBIDDEN

    @pytest.mark.asyncio
    async def test_only_super_admin_creates_roots(self, engine, tree):
        decision = await engine.authorize(tree.identity("sales_admin"), _create(None))
        assert decision.reason == ErrorCode.SCOPE_VIOLATION
        assert (await engine.authorize(tree.identity("admin"), _create(None))).allowed

    @pytest.mark.asyncio
    async def test_directory_wide_requests(self, engine, tree):
        request = AccessRequest(AuditAction.READ, Permission.MANAGE, directory_wide=True)
        denied = await engine.authorize(tree.identity("sales_admin"), request)
        assert denied.reason == ErrorCode.SCOPE_VIOLATION
        assert (await engine.authorize(tree.identity("admin"), request)).allowed

    @pytest.mark.asyncio
    async def test_missing_target(self, engine, tree):
        decision = await engine.authorize(tree.identity("sales_admin"), _read(999))
        assert decision.reason == ErrorCode.NOT_FOUND

    @pytest.mark.asyncio
    async def test_scoped_search_root(self, engine, tree):
        request = AccessRequest(AuditAction.READ, Permission.READ, root_id=tree.ops.id)
        decision = await engine.authorize(tree.identity("sales_admin"), request)
        assert decision.reason == ErrorCode.SCOPE_VIOLATION

    @pytest.mark.asyncio
    async def test_effective_path(self, engine, tree):
        assert await engine.effective_path(tree.identity("sales_admin")) == tree.sales.path
        assert await engine.effective_path(tree.identity("alice")) == tree.alice.path

    @pytest.mark.asyncio
    async def test_dangling_administered_node_falls_back_to_own_path(self, engine, tree):
        identity = CallerIdentity(
            node_id=tree.sales_admin.id,
            name="sales_admin",
            role=Role.OU_ADMIN,
            path=tree.sales_admin.path,
            administers_node_id=999,
        )
        assert await engine.effective_path(identity) == tree.sales_admin.path


class TestEscalation:
    """Stage four."""

    @pytest.mark.asyncio
    async def test_ou_admin_cannot_mint_super_admin(self, engine, tree):
        for fields in ({"roles": [Role.SUPER_ADMIN]}, {"attributes": {"isSuperAdmin": True}}):
            decision = await engine.authorize(
                tree.identity("sales_admin"), _create(tree.emea.id, **fields)
            )
            assert decision.reason == ErrorCode.ESCALATION_DENIED

    @pytest.mark.asyncio
    async def test_super_admin_may_mint_super_admin(self, engine, tree):
        request = _create(tree.ops.id, roles=[Role.SUPER_ADMIN])
        assert (await engine.authorize(tree.identity("admin"), request)).allowed

    @pytest.mark.asyncio
    async def test_delegation_stays_inside_scope(self, engine, tree):
        identity = tree.identity("sales_admin")
        inside = _create(tree.emea.id, roles=[Role.OU_ADMIN], administers_node_id=tree.emea.id)
        outside = _create(tree.emea.id, roles=[Role.OU_ADMIN], administers_node_id=tree.ops.id)

        assert (await engine.authorize(identity, inside)).allowed
        assert (await engine.authorize(identity, outside)).reason == ErrorCode.ESCALATION_DENIED

    @pytest.mark.asyncio
    async def test_delegation_via_attributes(self, engine, tree):
        request = _create(tree.emea.id, attributes={"isAdmin": True, "adminOf": tree.root.id})
        decision = await engine.authorize(tree.identity("sales_admin"), request)
        assert decision.reason == ErrorCode.ESCALATION_DENIED

    @pytest.mark.asyncio
    async def test_update_cannot_grant_super_admin(self, engine, tree):
        request = AccessRequest(
            AuditAction.UPDATE,
            Permission.UPDATE,
            target_id=tree.alice.id,
            attributes={"role": "SUPER_ADMIN"},
        )
        decision = await engine.authorize(tree.identity("sales_admin"), request)
        assert decision.reason == ErrorCode.ESCALATION_DENIED

    @pytest.mark.asyncio
    async def test_update_judges_merged_attributes(self, engine, store, tree):
        """A dormant adminOf outside the scope cannot be switched on."""
        carol = await store.create(
            "carol",
            NodeKind.PRINCIPAL,
            parent_id=tree.emea.id,
            attributes={"adminOf": tree.root.id},
        )
        identity = tree.identity("sales_admin")

        for attributes in ({"isAdmin": True}, {"role": "OU_ADMIN"}):
            decision = await engine.authorize(identity, _update(carol.id, attributes=attributes))
            assert decision.reason == ErrorCode.ESCALATION_DENIED
            assert decision.stage == "escalation"

        replaced = _update(carol.id, attributes={"isAdmin": True}, replace_attributes=True)
        assert (await engine.authorize(identity, replaced)).allowed

    @pytest.mark.asyncio
    async def test_update_promotion_inside_scope(self, engine, store, tree):
        dana = await store.create(
            "dana",
            NodeKind.PRINCIPAL,
            parent_id=tree.emea.id,
            attributes={"adminOf": tree.emea.id},
        )
        request = _update(dana.id, attributes={"isAdmin": True})
        assert (await engine.authorize(tree.identity("sales_admin"), request)).allowed

    @pytest.mark.asyncio
    async def test_update_refused_for_admin_of_foreign_subtree(self, engine, store, tree):
        dave = await store.create(
            "dave",
            NodeKind.PRINCIPAL,
            parent_id=tree.emea.id,
            roles=[Role.OU_ADMIN],
            administers_node_id=tree.ops.id,
        )
        # A bare update is a secret reset or a rename
        decision = await engine.authorize(tree.identity("sales_admin"), _update(dave.id))
        assert decision.reason == ErrorCode.ESCALATION_DENIED

        assert (await engine.authorize(tree.identity("admin"), _update(dave.id))).allowed

    @pytest.mark.asyncio
    async def test_update_refused_for_higher_role(self, engine, store, tree):
        chief = await store.create(
            "chief", NodeKind.PRINCIPAL, parent_id=tree.emea.id, roles=[Role.SUPER_ADMIN]
        )
        decision = await engine.authorize(tree.identity("sales_admin"), _update(chief.id))
        assert decision.reason == ErrorCode.ESCALATION_DENIED

    @pytest.mark.asyncio
    async def test_update_of_peers_and_users_inside_scope(self, engine, store, tree):
        peer = await store.create(
            "emea_admin",
            NodeKind.PRINCIPAL,
            parent_id=tree.emea.id,
            roles=[Role.OU_ADMIN],
            administers_node_id=tree.emea.id,
        )
        identity = tree.identity("sales_admin")
        for target_id in (peer.id, tree.alice.id, tree.sales_admin.id):
            request = _update(target_id, attributes={"title": "Lead"})
            assert (await engine.authorize(identity, request)).allowed

    @pytest.mark.asyncio
    async def test_ou_admin_moves_inside_subtree(self, engine, tree):
        decision = await engine.authorize(
            tree.identity("sales_admin"), _move(tree.alice.id, tree.sales.id)
        )
        assert decision.allowed

    @pytest.mark.asyncio
    async def test_ou_admin_cannot_move_administered_node(self, engine, tree):
        decision = await engine.authorize(
            tree.identity("sales_admin"), _move(tree.sales.id, tree.ops.id)
        )
        assert decision.reason == ErrorCode.ESCALATION_DENIED

    @pytest.mark.asyncio
    async def test_move_upward_out_of_scope(self, engine, tree):
        decision = await engine.authorize(
            tree.identity("sales_admin"), _move(tree.emea.id, tree.root.id)
        )
        assert decision.reason == ErrorCode.ESCALATION_DENIED

    @pytest.mark.asyncio
    async def test_move_into_foreign_subtree(self, engine, tree):
        decision = await engine.authorize(
            tree.identity("sales_admin"), _move(tree.emea.id, tree.ops.id)
        )
        assert decision.reason == ErrorCode.SCOPE_VIOLATION
        assert decision.stage == "escalation"

    @pytest.mark.asyncio
    async def test_move_missing_parent(self, engine, tree):
        decision = await engine.authorize(tree.identity("sales_admin"), _move(tree.emea.id, 999))
        assert decision.reason == ErrorCode.NOT_FOUND


class TestEnforce:
    """Denials become typed errors."""

    @pytest.mark.asyncio
    async def test_denial_raises_authorization_error(self, engine, tree):
        with pytest.raises(AuthorizationError) as exc_info:
            await engine.enforce(tree.identity("sales_admin"), _create(tree.ops.id))
        assert exc_info.value.code == ErrorCode.SCOPE_VIOLATION
        assert exc_info.value.stage == "scope"

    @pytest.mark.asyncio
    async def test_missing_node_raises_not_found(self, engine, tree):
        with pytest.raises(NotFoundError):
            await engine.enforce(tree.identity("sales_admin"), _read(999))

    @pytest.mark.asyncio
    async def test_allowed_returns_decision(self, engine, tree):
        decision = await engine.enforce(tree.identity("admin"), _move(tree.emea.id, tree.ops.id))
        assert decision.allowed
