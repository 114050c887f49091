"""
Kernel Data Models

SQLAlchemy models for the directory tree and its audit trail.
"""

from orgdir.kernel.models.base import Base, TimestampMixin
from orgdir.kernel.models.directory_node import DirectoryNode, NodeKind
from orgdir.kernel.models.audit_log import (
    AuditLog,
    AuditAction,
    AuditStatus,
    ImmutableAuditLogError,
)

__all__ = [
    # Base
    "Base",
    "TimestampMixin",
    # Directory
    "DirectoryNode",
    "NodeKind",
    # Audit
    "AuditLog",
    "AuditAction",
    "AuditStatus",
    "ImmutableAuditLogError",
]
