"""
Authentication schemas.
"""

from typing import List, Optional

from pydantic import BaseModel, Field


class LoginRequest(BaseModel):
    """Principal login request."""

    username: str = Field(..., min_length=1, max_length=255)
    password: str = Field(..., min_length=1, max_length=1024)


class TokenResponse(BaseModel):
    """Access token issued after login."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class IdentityResponse(BaseModel):
    """The caller as the authorization engine sees them."""

    node_id: int
    name: str
    role: str
    roles: List[str] = Field(default_factory=list)
    administers_node_id: Optional[int] = None
    path: str
