"""
Audit log schemas.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field

from orgdir.kernel.models.audit_log import AuditAction, AuditStatus


class AuditLogResponse(BaseModel):
    """One audit record."""

    id: int
    actor_id: int
    actor_name: str
    actor_role: str
    action: AuditAction
    target_id: Optional[int] = None
    target_name: Optional[str] = None
    target_kind: Optional[str] = None
    scope: str
    metadata: Optional[Dict[str, Any]] = Field(None, validation_alias="details")
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    status: AuditStatus
    error_message: Optional[str] = None
    created_at: datetime

    class Config:
        from_attributes = True
