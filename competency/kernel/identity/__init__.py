"""
Identity Core - access token verification.
"""

from competency.kernel.identity.jwt import (
    AccessTokenPayload,
    JWTVerifier,
    verify_access_token,
)

__all__ = [
    "AccessTokenPayload",
    "JWTVerifier",
    "verify_access_token",
]
