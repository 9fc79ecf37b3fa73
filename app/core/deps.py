"""FastAPI dependencies."""

from typing import Annotated

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session
from starlette.requests import HTTPConnection

from app.core.config import settings
from app.core.ordering import KeyedLocks
from app.core.security import token_user_id
from app.core.session_registry import SessionRegistry
from app.db.session import get_db
from app.models.user import User
from app.services.fanout_service import AlertFanoutDispatcher
from app.services.notification_service import Notifier

security = HTTPBearer(auto_error=False)


def _unauthorized(detail: str) -> HTTPException:
    return HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail=detail,
        headers={"WWW-Authenticate": "Bearer"},
    )


def user_from_token(db: Session, token: str) -> User | None:
    """Active user for a bearer token, else None. Shared by HTTP and WebSocket auth."""
    user_id = token_user_id(token)
    if user_id is None:
        return None
    user = db.get(User, user_id)
    if not user or not user.is_active:
        return None
    return user


def get_current_user(
    db: Annotated[Session, Depends(get_db)],
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(security)],
) -> User:
    """Require authenticated user. Raises 401 if not authenticated."""
    if not credentials:
        raise _unauthorized("Not authenticated")
    user = user_from_token(db, credentials.credentials)
    if not user:
        raise _unauthorized("Invalid or expired token")
    return user


def require_user(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    """Require a tracked user (role user)."""
    if current_user.is_parent:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only users can do this",
        )
    return current_user


def require_parent(current_user: Annotated[User, Depends(get_current_user)]) -> User:
    """Require a parent account."""
    if not current_user.is_parent:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only parents can do this",
        )
    return current_user


def get_session_registry(conn: HTTPConnection) -> SessionRegistry:
    return conn.app.state.session_registry


def get_notifier(conn: HTTPConnection) -> Notifier:
    return conn.app.state.notifier


def get_journey_locks(conn: HTTPConnection) -> KeyedLocks:
    return conn.app.state.journey_locks


def get_dispatcher(
    registry: Annotated[SessionRegistry, Depends(get_session_registry)],
    notifier: Annotated[Notifier, Depends(get_notifier)],
) -> AlertFanoutDispatcher:
    return AlertFanoutDispatcher(
        registry,
        notifier,
        timeout_seconds=settings.notification_timeout_seconds,
        retries=settings.notification_retries,
        backoff_seconds=settings.notification_backoff_seconds,
    )
