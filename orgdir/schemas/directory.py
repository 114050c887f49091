"""
Directory node schemas.

The credential secret is write-only: it is accepted on create/update and
never part of a response.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from orgdir.kernel.directory.directory_store import PathViolation, TreeNode
from orgdir.kernel.models.directory_node import NodeKind
from orgdir.kernel.permissions.roles import Role


class NodeCreate(BaseModel):
    """Create node request."""

    name: str = Field(..., min_length=1, max_length=255)
    kind: NodeKind = NodeKind.UNIT
    parent_id: Optional[int] = None
    attributes: Dict[str, Any] = Field(default_factory=dict)
    password: Optional[str] = Field(None, min_length=1, max_length=1024)
    roles: Optional[List[Role]] = None
    administers_node_id: Optional[int] = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Name must not be blank")
        return v


class NodeUpdate(BaseModel):
    """Update node request. Omitted fields are left alone."""

    name: Optional[str] = Field(None, min_length=1, max_length=255)
    attributes: Optional[Dict[str, Any]] = None
    replace_attributes: bool = False
    password: Optional[str] = Field(None, min_length=1, max_length=1024)


class NodeMove(BaseModel):
    """Move node request."""

    node_id: int
    new_parent_id: int


class NodeResponse(BaseModel):
    """Directory node response."""

    id: int
    name: str
    kind: NodeKind
    attributes: Dict[str, Any] = Field(default_factory=dict)
    roles: Optional[List[str]] = None
    parent_id: Optional[int] = None
    administers_node_id: Optional[int] = None
    path: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class TreeNodeResponse(NodeResponse):
    """Node with nested children."""

    children: List["TreeNodeResponse"] = Field(default_factory=list)

    @classmethod
    def from_tree(cls, entry: TreeNode) -> "TreeNodeResponse":
        node = NodeResponse.model_validate(entry.node)
        return cls(
            **node.model_dump(),
            children=[cls.from_tree(child) for child in entry.children],
        )


class PathViolationResponse(BaseModel):
    """One node whose path disagrees with its parent."""

    node_id: int
    actual: str
    expected: Optional[str] = None
    reason: str

    @classmethod
    def from_violation(cls, violation: PathViolation) -> "PathViolationResponse":
        return cls(
            node_id=violation.node_id,
            actual=violation.actual,
            expected=violation.expected,
            reason=violation.reason,
        )


TreeNodeResponse.model_rebuild()
