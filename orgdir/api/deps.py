"""
FastAPI dependencies for authentication, services and database sessions.
"""

from dataclasses import dataclass
from typing import Annotated, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from orgdir.database import async_session_maker, get_db
from orgdir.kernel.directory.directory_service import DirectoryService
from orgdir.kernel.directory.directory_store import DirectoryStore
from orgdir.kernel.events.audit_sink import AuditSink, DatabaseAuditSink
from orgdir.kernel.identity.caller import CallerIdentity
from orgdir.kernel.identity.identity_service import CredentialService
from orgdir.kernel.models.audit_log import AuditAction
from orgdir.kernel.permissions.authorization import AccessRequest, AuthorizationEngine
from orgdir.kernel.permissions.roles import Permission
from orgdir.logging_config import actor_var

# Security scheme
security = HTTPBearer(auto_error=False)

DbSession = Annotated[AsyncSession, Depends(get_db)]


def get_audit_sink() -> AuditSink:
    """Audit sink writing to the audit_logs table."""
    return DatabaseAuditSink(async_session_maker)


AuditSinkDep = Annotated[AuditSink, Depends(get_audit_sink)]


async def get_current_identity_optional(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
    db: DbSession,
) -> Optional[CallerIdentity]:
    """
    Caller identity if the bearer token is valid, None otherwise.

    Directory routes use this one: the authorization engine itself turns a
    missing identity into AUTH_REQUIRED.
    """
    if not credentials:
        return None

    identity = await CredentialService(db).identity_from_token(credentials.credentials)
    if identity is not None:
        actor_var.set(identity.label)
    return identity


OptionalIdentity = Annotated[Optional[CallerIdentity], Depends(get_current_identity_optional)]


async def get_current_identity(identity: OptionalIdentity) -> CallerIdentity:
    """Caller identity or raise 401."""
    if identity is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return identity


CurrentIdentity = Annotated[CallerIdentity, Depends(get_current_identity)]


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    """Extract user agent from request."""
    return request.headers.get("User-Agent")


def get_directory_service(
    request: Request,
    db: DbSession,
    audit_sink: AuditSinkDep,
) -> DirectoryService:
    """Directory service bound to this request's session and client."""
    return DirectoryService(
        db,
        audit_sink,
        ip_address=get_client_ip(request),
        user_agent=get_user_agent(request),
    )


DirectoryServiceDep = Annotated[DirectoryService, Depends(get_directory_service)]


@dataclass(frozen=True)
class AuditReader:
    """An admin allowed to read the audit log, and the scope they may see."""

    identity: CallerIdentity
    within_scope: Optional[str]


async def require_audit_reader(identity: OptionalIdentity, db: DbSession) -> AuditReader:
    """
    Admins only. OU admins are limited to records whose scope lies inside
    their effective path; super admins see everything.
    """
    engine = AuthorizationEngine(DirectoryStore(db))
    await engine.enforce(
        identity,
        AccessRequest(action=AuditAction.READ, permission=Permission.MANAGE),
    )
    if identity.is_super_admin:
        return AuditReader(identity=identity, within_scope=None)
    return AuditReader(identity=identity, within_scope=await engine.effective_path(identity))


AuditReaderDep = Annotated[AuditReader, Depends(require_audit_reader)]
