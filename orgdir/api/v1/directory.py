"""
Directory endpoints.

Authorization happens inside DirectoryService; a DirectoryError raised
there is rendered by the application's exception handler.
"""

from typing import List, Optional

from fastapi import APIRouter, Query, status

from orgdir.api.deps import DirectoryServiceDep, OptionalIdentity
from orgdir.kernel.models.directory_node import NodeKind
from orgdir.schemas.directory import (
    NodeCreate,
    NodeMove,
    NodeResponse,
    NodeUpdate,
    PathViolationResponse,
    TreeNodeResponse,
)

router = APIRouter()


@router.post("", response_model=NodeResponse, status_code=status.HTTP_201_CREATED)
async def create_node(
    data: NodeCreate,
    identity: OptionalIdentity,
    service: DirectoryServiceDep,
):
    """Create a node under parent_id. Roots can only be created by super admins."""
    node = await service.create(
        identity,
        data.name,
        data.kind,
        parent_id=data.parent_id,
        attributes=data.attributes,
        secret=data.password,
        roles=data.roles,
        administers_node_id=data.administers_node_id,
    )
    return NodeResponse.model_validate(node)


@router.get("/tree", response_model=List[TreeNodeResponse])
async def get_tree(identity: OptionalIdentity, service: DirectoryServiceDep):
    """Nested directory tree visible to the caller."""
    forest = await service.full_tree(identity)
    return [TreeNodeResponse.from_tree(entry) for entry in forest]


@router.get("/search/flat", response_model=List[NodeResponse])
async def search_flat(
    identity: OptionalIdentity,
    service: DirectoryServiceDep,
    q: str = Query(..., min_length=1, max_length=255),
    kind: Optional[NodeKind] = None,
):
    """Search by name or email across the caller's visible directory."""
    nodes = await service.search_flat(identity, q, kind)
    return [NodeResponse.model_validate(n) for n in nodes]


@router.get("/integrity", response_model=List[PathViolationResponse])
async def check_integrity(identity: OptionalIdentity, service: DirectoryServiceDep):
    """Nodes whose stored path disagrees with their parent. Super admins only."""
    violations = await service.path_violations(identity)
    return [PathViolationResponse.from_violation(v) for v in violations]


@router.get("/scope/{root_id}", response_model=List[NodeResponse])
async def search_scope(
    root_id: int,
    identity: OptionalIdentity,
    service: DirectoryServiceDep,
    q: Optional[str] = Query(None, max_length=255),
):
    """Every node below root_id, optionally filtered by name or email."""
    nodes = await service.search_subtree(identity, root_id, q)
    return [NodeResponse.model_validate(n) for n in nodes]


@router.post("/move", response_model=NodeResponse)
async def move_node(
    data: NodeMove,
    identity: OptionalIdentity,
    service: DirectoryServiceDep,
):
    """Move a node (and its subtree) under a new parent."""
    node = await service.move(identity, data.node_id, data.new_parent_id)
    return NodeResponse.model_validate(node)


@router.get("/{node_id}", response_model=NodeResponse)
async def get_node(node_id: int, identity: OptionalIdentity, service: DirectoryServiceDep):
    node = await service.get(identity, node_id)
    return NodeResponse.model_validate(node)


@router.get("/{node_id}/ancestors", response_model=List[NodeResponse])
async def get_ancestors(
    node_id: int,
    identity: OptionalIdentity,
    service: DirectoryServiceDep,
):
    """Ancestors from the root down to the parent (breadcrumbs)."""
    nodes = await service.ancestors(identity, node_id)
    return [NodeResponse.model_validate(n) for n in nodes]


@router.patch("/{node_id}", response_model=NodeResponse)
async def update_node(
    node_id: int,
    data: NodeUpdate,
    identity: OptionalIdentity,
    service: DirectoryServiceDep,
):
    node = await service.update(
        identity,
        node_id,
        name=data.name,
        attributes=data.attributes,
        replace_attributes=data.replace_attributes,
        secret=data.password,
    )
    return NodeResponse.model_validate(node)


@router.delete("/{node_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_node(node_id: int, identity: OptionalIdentity, service: DirectoryServiceDep):
    """Always answers 501 for authorized callers."""
    await service.delete(identity, node_id)
