"""
Directory node model: one row per domain, unit, group or principal.
"""

from enum import Enum
from typing import Any, Dict, List, Optional

from sqlalchemy import ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from orgdir.kernel.models.base import Base, TimestampMixin


class NodeKind(str, Enum):
    """Kinds of directory nodes."""
    DOMAIN = "DOMAIN"
    UNIT = "UNIT"
    GROUP = "GROUP"
    PRINCIPAL = "PRINCIPAL"


class DirectoryNode(Base, TimestampMixin):
    """
    A node of the materialized-path tree.

    `path` is derived by the store and never assigned by callers.
    `credential_secret` is deferred with raiseload: loading it requires an
    explicit undefer(), which only the credential lookup does.
    """

    __tablename__ = "directory_nodes"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )
    name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
        index=True,
    )
    kind: Mapped[NodeKind] = mapped_column(
        String(20),
        default=NodeKind.UNIT,
        nullable=False,
    )
    attributes: Mapped[Dict[str, Any]] = mapped_column(
        default=dict,
        nullable=False,
    )
    credential_secret: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
        deferred=True,
        deferred_raiseload=True,
    )
    roles: Mapped[Optional[List[str]]] = mapped_column(
        nullable=True,
    )

    # Tree structure
    parent_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("directory_nodes.id"),
        nullable=True,
        index=True,
    )
    path: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
        default="",
    )

    # Elevated scope over the subtree rooted at this node
    administers_node_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("directory_nodes.id"),
        nullable=True,
    )

    __table_args__ = (
        Index("ix_directory_nodes_path", "path"),
        Index("ix_directory_nodes_parent_name", "parent_id", "name"),
    )

    # Fetch server-side timestamps after UPDATE too; lazy refresh is not
    # available under asyncio
    __mapper_args__ = {"eager_defaults": True}

    def __repr__(self) -> str:
        return f"<DirectoryNode {self.id} {self.kind} {self.name!r} path={self.path}>"

    @property
    def kind_value(self) -> str:
        """Kind as plain string (SQLite may hand back str instead of the enum)."""
        return self.kind.value if hasattr(self.kind, "value") else self.kind

    @property
    def is_principal(self) -> bool:
        return self.kind_value == NodeKind.PRINCIPAL.value
