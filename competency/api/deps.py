"""
FastAPI dependencies for authentication, database sessions and the
assessment service.
"""

from typing import Annotated, AsyncGenerator, Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from competency.database import async_session_maker
from competency.engines.assessment.locks import AssessmentLocks
from competency.engines.assessment.notifications import CompletionNotifier, LoggingCompletionNotifier
from competency.engines.assessment.service import AssessmentService
from competency.kernel.identity.jwt import AccessTokenPayload, verify_access_token
from competency.logging_config import user_id_var


# Security scheme
security = HTTPBearer(auto_error=False)

ADMIN_ROLE = "admin"


async def get_db() -> AsyncGenerator[AsyncSession, None]:
    """
    Dependency that yields database sessions.

    The assessment service commits its own units of work; anything left
    open when the request ends is rolled back.
    """
    async with async_session_maker() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise
        finally:
            await session.close()


DbSession = Annotated[AsyncSession, Depends(get_db)]


class AuthenticatedUser:
    """The caller as seen by this service: an opaque id and a role."""

    def __init__(self, user_id: str, role: str = "user"):
        self.id = user_id
        self.role = role

    @property
    def is_admin(self) -> bool:
        return self.role == ADMIN_ROLE

    def __repr__(self) -> str:
        return f"<AuthenticatedUser {self.id} ({self.role})>"


async def get_current_user(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> AuthenticatedUser:
    """Get current authenticated user or raise 401."""
    if not credentials:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload: Optional[AccessTokenPayload] = verify_access_token(credentials.credentials)
    if not payload:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers={"WWW-Authenticate": "Bearer"},
        )

    # Logs for the rest of the request carry the user id
    user_id_var.set(payload.sub)
    return AuthenticatedUser(payload.sub, payload.role)


CurrentUser = Annotated[AuthenticatedUser, Depends(get_current_user)]


async def require_admin(user: CurrentUser) -> AuthenticatedUser:
    """Require the current user to be an admin."""
    if not user.is_admin:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required",
        )
    return user


AdminUser = Annotated[AuthenticatedUser, Depends(require_admin)]


def get_client_ip(request: Request) -> Optional[str]:
    """Extract client IP from request."""
    forwarded = request.headers.get("X-Forwarded-For")
    if forwarded:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else None


def get_user_agent(request: Request) -> Optional[str]:
    """Extract user agent from request."""
    return request.headers.get("User-Agent")


def get_locks(request: Request) -> AssessmentLocks:
    """Process-wide keyed locks, created once with the app."""
    locks = getattr(request.app.state, "assessment_locks", None)
    if locks is None:
        locks = AssessmentLocks()
        request.app.state.assessment_locks = locks
    return locks


def get_notifier(request: Request) -> CompletionNotifier:
    notifier = getattr(request.app.state, "completion_notifier", None)
    if notifier is None:
        notifier = LoggingCompletionNotifier()
        request.app.state.completion_notifier = notifier
    return notifier


def get_assessment_service(
    db: DbSession,
    locks: Annotated[AssessmentLocks, Depends(get_locks)],
    notifier: Annotated[CompletionNotifier, Depends(get_notifier)],
) -> AssessmentService:
    return AssessmentService(db, locks=locks, notifier=notifier)


AssessmentServiceDep = Annotated[AssessmentService, Depends(get_assessment_service)]
