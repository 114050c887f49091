"""
Audit event definitions using Pydantic for validation.

An AuditEvent is what the directory service hands to an audit sink; the
sink decides how it is stored.
"""

from datetime import datetime, timezone
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from orgdir.kernel.identity.caller import CallerIdentity
from orgdir.kernel.models.audit_log import AuditAction, AuditStatus
from orgdir.kernel.models.directory_node import DirectoryNode


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AuditEvent(BaseModel):
    """One administrative action and its outcome."""

    # Who
    actor_id: int
    actor_name: str
    actor_role: str

    # What
    action: AuditAction

    # Target (absent for directory-wide reads)
    target_id: Optional[int] = None
    target_name: Optional[str] = None
    target_kind: Optional[str] = None

    # Effective path of the actor when the action ran
    scope: str

    metadata: Dict[str, Any] = Field(default_factory=dict)
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    status: AuditStatus = AuditStatus.SUCCESS
    error_message: Optional[str] = None
    timestamp: datetime = Field(default_factory=_utcnow)

    @classmethod
    def for_caller(
        cls,
        identity: CallerIdentity,
        action: AuditAction,
        scope: str,
        target: Optional[DirectoryNode] = None,
        target_id: Optional[int] = None,
        **fields: Any,
    ) -> "AuditEvent":
        """Build an event with actor and target columns filled in."""
        if target is not None:
            fields.setdefault("target_name", target.name)
            fields.setdefault("target_kind", target.kind_value)
            target_id = target.id
        return cls(
            actor_id=identity.node_id,
            actor_name=identity.name,
            actor_role=identity.role.value,
            action=action,
            target_id=target_id,
            scope=scope,
            **fields,
        )
