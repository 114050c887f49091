"""
Audit log endpoints (OU_ADMIN and SUPER_ADMIN only).
"""

from datetime import datetime
from typing import Annotated, Dict, List

from fastapi import APIRouter, HTTPException, Query, status

from orgdir.api.deps import AuditReaderDep, DbSession
from orgdir.config import get_settings
from orgdir.kernel.directory.paths import is_descendant_or_self
from orgdir.kernel.events.audit_query import AuditQueryService
from orgdir.kernel.models.audit_log import AuditAction
from orgdir.schemas.audit import AuditLogResponse

router = APIRouter()

settings = get_settings()

Limit = Annotated[int, Query(ge=1, le=1000)]


def _render(records) -> List[AuditLogResponse]:
    return [AuditLogResponse.model_validate(r) for r in records]


@router.get("/actor/{actor_id}", response_model=List[AuditLogResponse])
async def by_actor(
    actor_id: int,
    reader: AuditReaderDep,
    db: DbSession,
    limit: Limit = settings.audit_query_limit,
):
    """Actions performed by one principal, newest first."""
    records = await AuditQueryService(db).by_actor(
        actor_id, limit=limit, within_scope=reader.within_scope
    )
    return _render(records)


@router.get("/target/{target_id}", response_model=List[AuditLogResponse])
async def by_target(
    target_id: int,
    reader: AuditReaderDep,
    db: DbSession,
    limit: Limit = settings.audit_query_limit,
):
    """History of one node, newest first."""
    records = await AuditQueryService(db).by_target(
        target_id, limit=limit, within_scope=reader.within_scope
    )
    return _render(records)


@router.get("/action/{action}", response_model=List[AuditLogResponse])
async def by_action(
    action: AuditAction,
    reader: AuditReaderDep,
    db: DbSession,
    limit: Limit = settings.audit_query_limit,
):
    records = await AuditQueryService(db).by_action(
        action, limit=limit, within_scope=reader.within_scope
    )
    return _render(records)


@router.get("/range", response_model=List[AuditLogResponse])
async def by_date_range(
    reader: AuditReaderDep,
    db: DbSession,
    start: datetime = Query(...),
    end: datetime = Query(...),
    limit: Limit = settings.audit_query_limit,
):
    if end < start:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="end must not be before start",
        )
    records = await AuditQueryService(db).by_date_range(
        start, end, limit=limit, within_scope=reader.within_scope
    )
    return _render(records)


@router.get("/scope", response_model=List[AuditLogResponse])
async def by_scope(
    reader: AuditReaderDep,
    db: DbSession,
    prefix: str = Query(..., min_length=2, max_length=1024),
    limit: Limit = settings.audit_query_limit,
):
    """Records whose scope lies under prefix (e.g. "1.2.")."""
    if reader.within_scope is not None and not is_descendant_or_self(reader.within_scope, prefix):
        if not is_descendant_or_self(prefix, reader.within_scope):
            return []
        # Prefix wider than the reader's scope: narrow it
        prefix = reader.within_scope
    records = await AuditQueryService(db).by_scope(prefix, limit=limit)
    return _render(records)


@router.get("/stats/{actor_id}", response_model=Dict[str, int])
async def actor_stats(actor_id: int, reader: AuditReaderDep, db: DbSession):
    """Number of recorded actions per action type, e.g. {"CREATE": 10, "MOVE": 3}."""
    return await AuditQueryService(db).actor_stats(actor_id, within_scope=reader.within_scope)
