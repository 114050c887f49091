"""
Signed identity claims for authenticated principals.

The claim is a short-lived access token. It is opaque to the authorization
engine: the caller identity is always rebuilt from the store, the claim only
proves who the caller is.
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import List, Optional

from jose import JWTError, jwt
from pydantic import BaseModel, ConfigDict, Field

from orgdir.config import get_settings


class AccessTokenPayload(BaseModel):
    """Decoded access token."""

    model_config = ConfigDict(from_attributes=True)

    sub: str  # Principal name
    id: int  # Principal node id
    role: str
    roles: List[str] = Field(default_factory=list)
    administers_node_id: Optional[int] = None
    path: str
    exp: datetime
    iat: datetime
    jti: str


class IssuedToken(BaseModel):
    """Access token returned after login."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int  # Seconds until the token expires


class JWTManager:
    """JWT creation and verification."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
        access_token_expire_minutes: Optional[int] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm
        self.access_token_expire_minutes = (
            access_token_expire_minutes or settings.access_token_expire_minutes
        )

    def create_access_token(
        self,
        node_id: int,
        name: str,
        role: str,
        path: str,
        roles: Optional[List[str]] = None,
        administers_node_id: Optional[int] = None,
        expires_delta: Optional[timedelta] = None,
    ) -> IssuedToken:
        """
        Create a signed access token.

        Args:
            node_id: Principal node id
            name: Principal name (token subject)
            role: Resolved role
            path: Principal's path at issue time
            roles: Explicit role list, if any
            administers_node_id: Administered node for OU admins
            expires_delta: Optional custom lifetime

        Returns:
            The issued token with its lifetime in seconds
        """
        now = datetime.now(timezone.utc)
        expire = now + (expires_delta or timedelta(minutes=self.access_token_expire_minutes))

        payload = {
            "sub": name,
            "id": node_id,
            "role": role,
            "roles": list(roles or []),
            "administers_node_id": administers_node_id,
            "path": path,
            "exp": expire,
            "iat": now,
            "jti": str(uuid.uuid4()),
            "type": "access",
        }

        token = jwt.encode(payload, self.secret_key, algorithm=self.algorithm)
        return IssuedToken(
            access_token=token,
            expires_in=int((expire - now).total_seconds()),
        )

    def verify_access_token(self, token: str) -> Optional[AccessTokenPayload]:
        """
        Verify and decode an access token.

        Returns:
            AccessTokenPayload if valid, None otherwise
        """
        try:
            payload = jwt.decode(
                token,
                self.secret_key,
                algorithms=[self.algorithm],
            )
        except JWTError:
            return None

        if payload.get("type") != "access":
            return None

        try:
            return AccessTokenPayload(
                sub=payload["sub"],
                id=payload["id"],
                role=payload["role"],
                roles=payload.get("roles") or [],
                administers_node_id=payload.get("administers_node_id"),
                path=payload["path"],
                exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
                iat=datetime.fromtimestamp(payload["iat"], tz=timezone.utc),
                jti=payload["jti"],
            )
        except (KeyError, TypeError, ValueError):
            return None


# Default manager instance
_jwt_manager: Optional[JWTManager] = None


def get_jwt_manager() -> JWTManager:
    """Get or create the default JWT manager."""
    global _jwt_manager
    if _jwt_manager is None:
        _jwt_manager = JWTManager()
    return _jwt_manager


def verify_access_token(token: str) -> Optional[AccessTokenPayload]:
    """Verify an access token with the default manager."""
    return get_jwt_manager().verify_access_token(token)
