"""
Authentication endpoints.
"""

from fastapi import APIRouter, HTTPException, status

from orgdir.api.deps import CurrentIdentity, DbSession
from orgdir.kernel.identity.identity_service import CredentialService
from orgdir.schemas.auth import IdentityResponse, LoginRequest, TokenResponse

router = APIRouter()


@router.post("/login", response_model=TokenResponse)
async def login(data: LoginRequest, db: DbSession):
    """
    Authenticate a principal and return an access token.
    """
    result = await CredentialService(db).authenticate(data.username, data.password)
    if not result:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid username or password",
            headers={"WWW-Authenticate": "Bearer"},
        )

    _, token = result
    return TokenResponse(
        access_token=token.access_token,
        token_type=token.token_type,
        expires_in=token.expires_in,
    )


@router.get("/me", response_model=IdentityResponse)
async def me(identity: CurrentIdentity):
    """Role, scope anchor and path of the current caller."""
    return IdentityResponse(
        node_id=identity.node_id,
        name=identity.name,
        role=identity.role.value,
        roles=[r.value for r in identity.roles],
        administers_node_id=identity.administers_node_id,
        path=identity.path,
    )
