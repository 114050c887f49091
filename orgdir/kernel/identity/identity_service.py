"""
Credential service: principal authentication and identity resolution.
"""

from typing import Optional, Tuple

from sqlalchemy.ext.asyncio import AsyncSession

from orgdir.kernel.directory.directory_store import DirectoryStore
from orgdir.kernel.identity.caller import CallerIdentity
from orgdir.kernel.identity.jwt import IssuedToken, JWTManager
from orgdir.kernel.identity.password import SecretHasher
from orgdir.kernel.models.directory_node import DirectoryNode, NodeKind
from orgdir.logging_config import get_logger

logger = get_logger(__name__)


class CredentialService:
    """
    Service for principal identity operations.

    Verifies secrets, issues access claims and turns a verified claim back
    into a CallerIdentity built from the store's current state.
    """

    def __init__(
        self,
        session: AsyncSession,
        hasher: Optional[SecretHasher] = None,
        jwt_manager: Optional[JWTManager] = None,
    ):
        self.session = session
        self.hasher = hasher or SecretHasher()
        self.jwt_manager = jwt_manager or JWTManager()
        self.store = DirectoryStore(session, self.hasher)

    async def authenticate(
        self,
        username: str,
        secret: str,
    ) -> Optional[Tuple[DirectoryNode, IssuedToken]]:
        """
        Authenticate a principal and issue an access token.

        Args:
            username: Principal name
            secret: Plain secret

        Returns:
            Tuple of (node, token) if successful, None otherwise
        """
        node = await self.store.find_principal_with_secret(username)
        if node is None or not node.credential_secret:
            logger.info("Login refused: unknown principal", extra={"principal": username})
            return None

        if not self.hasher.verify(secret, node.credential_secret):
            logger.info("Login refused: bad secret", extra={"principal": username})
            return None

        if self.hasher.needs_rehash(node.credential_secret) and not self.hasher.is_hashed(secret):
            # Flushed only; the caller's transaction commits the new hash
            await self.store.set_secret(node.id, secret)
            logger.info("Credential secret rehashed", extra={"node_id": node.id})

        identity = self.resolve_identity(node)
        token = self.jwt_manager.create_access_token(
            node_id=identity.node_id,
            name=identity.name,
            role=identity.role.value,
            path=identity.path,
            roles=[r.value for r in identity.roles],
            administers_node_id=identity.administers_node_id,
        )

        logger.info(
            "Principal authenticated",
            extra={"node_id": node.id, "role": identity.role.value},
        )
        return node, token

    @staticmethod
    def resolve_identity(node: DirectoryNode) -> CallerIdentity:
        """Build the caller identity for a principal node."""
        return CallerIdentity.from_node(node)

    async def identity_from_token(self, token: str) -> Optional[CallerIdentity]:
        """
        Verify an access token and rebuild the caller identity.

        Role, administered node and path come from the store as it is now;
        only the node id is taken from the token.
        """
        payload = self.jwt_manager.verify_access_token(token)
        if payload is None:
            return None

        node = await self.store.get(payload.id)
        if node is None or node.kind_value != NodeKind.PRINCIPAL.value:
            return None
        if node.name != payload.sub:
            # Principal renamed since the token was issued
            logger.info("Token subject no longer matches", extra={"node_id": node.id})
            return None

        return self.resolve_identity(node)
