"""
Audit trail: event model, sinks and queries.
"""

from orgdir.kernel.events.event_types import AuditEvent
from orgdir.kernel.events.audit_sink import (
    AuditSink,
    DatabaseAuditSink,
    MemoryAuditSink,
)
from orgdir.kernel.events.audit_query import AuditQueryService

__all__ = [
    "AuditEvent",
    "AuditSink",
    "DatabaseAuditSink",
    "MemoryAuditSink",
    "AuditQueryService",
]
