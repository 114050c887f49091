"""
Read side of the audit log.
"""

from datetime import datetime
from typing import Dict, List, Optional

from sqlalchemy import desc, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from orgdir.kernel.models.audit_log import AuditAction, AuditLog


class AuditQueryService:
    """
    Queries over audit_logs, newest first.

    Every query accepts `within_scope`: when set, only records whose scope
    lies under that path are returned. OU admins are restricted this way.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _fetch(
        self,
        *criteria,
        within_scope: Optional[str] = None,
        limit: int = 100,
    ) -> List[AuditLog]:
        query = select(AuditLog).where(*criteria)
        if within_scope is not None:
            query = query.where(AuditLog.scope.startswith(within_scope, autoescape=True))
        query = query.order_by(desc(AuditLog.created_at), desc(AuditLog.id)).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def by_actor(
        self,
        actor_id: int,
        limit: int = 100,
        within_scope: Optional[str] = None,
    ) -> List[AuditLog]:
        """Actions performed by one principal."""
        return await self._fetch(
            AuditLog.actor_id == actor_id, within_scope=within_scope, limit=limit
        )

    async def by_target(
        self,
        target_id: int,
        limit: int = 100,
        within_scope: Optional[str] = None,
    ) -> List[AuditLog]:
        """History of one node."""
        return await self._fetch(
            AuditLog.target_id == target_id, within_scope=within_scope, limit=limit
        )

    async def by_action(
        self,
        action: AuditAction,
        limit: int = 100,
        within_scope: Optional[str] = None,
    ) -> List[AuditLog]:
        return await self._fetch(
            AuditLog.action == AuditAction(action).value,
            within_scope=within_scope,
            limit=limit,
        )

    async def by_date_range(
        self,
        start: datetime,
        end: datetime,
        limit: int = 100,
        within_scope: Optional[str] = None,
    ) -> List[AuditLog]:
        """Records with start <= created_at <= end."""
        return await self._fetch(
            AuditLog.created_at >= start,
            AuditLog.created_at <= end,
            within_scope=within_scope,
            limit=limit,
        )

    async def by_scope(self, scope_prefix: str, limit: int = 100) -> List[AuditLog]:
        """Records whose scope lies under scope_prefix."""
        return await self._fetch(within_scope=scope_prefix, limit=limit)

    async def actor_stats(
        self,
        actor_id: int,
        within_scope: Optional[str] = None,
    ) -> Dict[str, int]:
        """Count of actions per action type for one actor."""
        query = (
            select(AuditLog.action, func.count(AuditLog.id))
            .where(AuditLog.actor_id == actor_id)
            .group_by(AuditLog.action)
        )
        if within_scope is not None:
            query = query.where(AuditLog.scope.startswith(within_scope, autoescape=True))

        result = await self.session.execute(query)
        return {
            (action.value if hasattr(action, "value") else action): count
            for action, count in result.all()
        }
