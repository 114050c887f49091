"""
Principal credentials, access claims and caller identity.
"""

from orgdir.kernel.identity.password import SecretHasher
from orgdir.kernel.identity.jwt import AccessTokenPayload, IssuedToken, JWTManager
from orgdir.kernel.identity.caller import CallerIdentity

__all__ = [
    "SecretHasher",
    "AccessTokenPayload",
    "IssuedToken",
    "JWTManager",
    "CallerIdentity",
]
