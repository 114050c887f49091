"""
Immutable audit log for administrative directory actions.

Records Who (actor), What (action), Target, Scope and Outcome. The table is
append-only: persisted rows cannot be updated or deleted through the ORM.
"""

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import DateTime, Index, Integer, String, Text, event, func
from sqlalchemy.orm import Mapped, mapped_column

from orgdir.kernel.models.base import Base


class AuditAction(str, Enum):
    """Administrative actions recorded in the audit log."""
    CREATE = "CREATE"
    READ = "READ"
    UPDATE = "UPDATE"
    DELETE = "DELETE"
    MOVE = "MOVE"


class AuditStatus(str, Enum):
    """Outcome of an audited action."""
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    DENIED = "DENIED"


class AuditLog(Base):
    """Append-only audit record."""

    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(
        Integer,
        primary_key=True,
        autoincrement=True,
    )

    # Who
    actor_id: Mapped[int] = mapped_column(
        Integer,
        nullable=False,
        index=True,
    )
    actor_name: Mapped[str] = mapped_column(
        String(255),
        nullable=False,
    )
    actor_role: Mapped[str] = mapped_column(
        String(50),
        nullable=False,
    )

    # What
    action: Mapped[AuditAction] = mapped_column(
        String(50),
        nullable=False,
        index=True,
    )

    # Target
    target_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        nullable=True,
        index=True,
    )
    target_name: Mapped[Optional[str]] = mapped_column(
        String(255),
        nullable=True,
    )
    target_kind: Mapped[Optional[str]] = mapped_column(
        String(50),
        nullable=True,
    )

    # Effective path of the actor when the action ran
    scope: Mapped[str] = mapped_column(
        String(1024),
        nullable=False,
    )

    # "metadata" is reserved on declarative classes
    details: Mapped[Optional[Dict[str, Any]]] = mapped_column(
        "metadata",
        nullable=True,
    )

    # Client context
    ip_address: Mapped[Optional[str]] = mapped_column(
        String(45),  # IPv6 max length
        nullable=True,
    )
    user_agent: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    # Outcome
    status: Mapped[AuditStatus] = mapped_column(
        String(20),
        default=AuditStatus.SUCCESS,
        nullable=False,
    )
    error_message: Mapped[Optional[str]] = mapped_column(
        Text,
        nullable=True,
    )

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
        nullable=False,
        index=True,
    )

    __table_args__ = (
        Index("ix_audit_logs_actor_time", "actor_id", "created_at"),
        Index("ix_audit_logs_target_time", "target_id", "created_at"),
        Index("ix_audit_logs_action_time", "action", "created_at"),
    )

    def __repr__(self) -> str:
        action = self.action.value if hasattr(self.action, "value") else self.action
        return f"<AuditLog {action} actor={self.actor_id} target={self.target_id}>"


class ImmutableAuditLogError(RuntimeError):
    """Raised when code tries to rewrite history."""


@event.listens_for(AuditLog, "before_update")
def _refuse_update(mapper, connection, target) -> None:
    raise ImmutableAuditLogError(f"Audit record {target.id} is append-only")


@event.listens_for(AuditLog, "before_delete")
def _refuse_delete(mapper, connection, target) -> None:
    raise ImmutableAuditLogError(f"Audit record {target.id} cannot be deleted")
