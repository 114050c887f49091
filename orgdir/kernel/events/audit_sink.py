"""
Audit sinks: where AuditEvents end up.

The directory service emits after its own transaction has committed, so a
sink writes in a session of its own. A failing sink must never undo or fail
an operation that already succeeded; it logs the loss loudly instead.
"""

from typing import List, Protocol, runtime_checkable

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from orgdir.kernel.events.event_types import AuditEvent
from orgdir.kernel.models.audit_log import AuditLog
from orgdir.logging_config import get_logger

logger = get_logger(__name__)


@runtime_checkable
class AuditSink(Protocol):
    """Accepts audit events."""

    async def emit(self, event: AuditEvent) -> None:
        ...


def to_record(event: AuditEvent) -> AuditLog:
    """Map an event onto an audit_logs row."""
    payload = event.model_dump(mode="json")
    return AuditLog(
        actor_id=event.actor_id,
        actor_name=event.actor_name,
        actor_role=event.actor_role,
        action=event.action.value,
        target_id=event.target_id,
        target_name=event.target_name,
        target_kind=event.target_kind,
        scope=event.scope,
        details=payload["metadata"] or None,
        ip_address=event.ip_address,
        user_agent=event.user_agent,
        status=event.status.value,
        error_message=event.error_message,
        created_at=event.timestamp,
    )


class DatabaseAuditSink:
    """
    Persists each event in its own session and transaction.

    Usage:
        sink = DatabaseAuditSink(async_session_maker)
        await sink.emit(event)
    """

    def __init__(self, session_maker: async_sessionmaker[AsyncSession]):
        self.session_maker = session_maker

    async def emit(self, event: AuditEvent) -> None:
        record = to_record(event)
        try:
            async with self.session_maker() as session:
                session.add(record)
                await session.commit()
        except SQLAlchemyError:
            logger.exception(
                "Audit event could not be persisted",
                extra={
                    "audit_action": event.action.value,
                    "audit_status": event.status.value,
                    "actor_id": event.actor_id,
                    "target_id": event.target_id,
                },
            )
            return

        logger.debug(
            "Audit event recorded",
            extra={"audit_action": event.action.value, "target_id": event.target_id},
        )


class MemoryAuditSink:
    """Keeps events in a list; for tests and local tooling."""

    def __init__(self):
        self.events: List[AuditEvent] = []

    async def emit(self, event: AuditEvent) -> None:
        self.events.append(event)
