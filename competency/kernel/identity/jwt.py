"""
JWT access token verification.

Tokens are issued by the identity service; this side only checks the
signature, expiry and token type, and reads the subject and role.
"""

from datetime import datetime, timezone
from typing import Optional

from jose import JWTError, jwt
from pydantic import BaseModel

from competency.config import get_settings


class AccessTokenPayload(BaseModel):
    """JWT access token payload."""

    sub: str  # Opaque user id
    role: str = "user"
    exp: datetime
    iat: Optional[datetime] = None
    jti: Optional[str] = None


class JWTVerifier:
    """Verifies access tokens signed with the shared secret."""

    def __init__(
        self,
        secret_key: Optional[str] = None,
        algorithm: Optional[str] = None,
    ):
        settings = get_settings()
        self.secret_key = secret_key or settings.secret_key
        self.algorithm = algorithm or settings.algorithm

    def verify_access_token(self, token: str) -> Optional[AccessTokenPayload]:
        """
        Verify and decode an access token.

        Args:
            token: JWT access token

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

        # Refresh tokens are not accepted here
        if payload.get("type") != "access" or not payload.get("sub") or "exp" not in payload:
            return None

        iat = payload.get("iat")
        return AccessTokenPayload(
            sub=str(payload["sub"]),
            role=payload.get("role") or "user",
            exp=datetime.fromtimestamp(payload["exp"], tz=timezone.utc),
            iat=datetime.fromtimestamp(iat, tz=timezone.utc) if iat else None,
            jti=payload.get("jti"),
        )


def verify_access_token(token: str) -> Optional[AccessTokenPayload]:
    """Verify an access token with the configured secret."""
    return JWTVerifier().verify_access_token(token)
