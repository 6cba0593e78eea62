# app/dependencies.py
import logging
from typing import Generator, Optional
from fastapi import Request, Depends, HTTPException, status
from jose import JWTError
from sqlmodel import Session
from slowapi import Limiter
from slowapi.util import get_remote_address

# Import configurations, models, and database logic
from app.config import IS_TESTING
from app.models import User
from app.database import get_db_session
from app.utils.permissions import Permission, has_any_permission
from app.utils.security import decode_access_token

logger = logging.getLogger(__name__)

# --- SHARED RESOURCES ---

limiter = Limiter(key_func=get_remote_address, default_limits=["200/minute"], enabled=not IS_TESTING)

# --- FASTAPI DEPENDENCIES ---

def get_session() -> Generator[Session, None, None]:
    """
    FastAPI dependency that provides a database session for the request.
    """
    yield from get_db_session()

def _read_token(request: Request) -> Optional[str]:
    """Takes the JWT from the access_token cookie or an Authorization: Bearer header."""
    token = request.cookies.get("access_token") or request.headers.get("authorization")
    if not token:
        return None
    # Strip Bearer prefix if present
    if token.startswith("Bearer "):
        token = token.split(" ", 1)[1]
    return token

async def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """
    Retrieves the authenticated user from the JWT token.
    Returns None for missing, invalid or expired tokens.
    """
    token = _read_token(request)
    if not token:
        return None

    try:
        payload = decode_access_token(token)
        user_id = payload.get("sub")
        if user_id is None:
            return None
        return session.get(User, int(user_id))
    except (JWTError, ValueError):
        return None

async def login_required(user: Optional[User] = Depends(get_current_user)) -> User:
    """
    Guard dependency that rejects unauthenticated requests.
    """
    if not user:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Please log in first")
    return user

def require_permission(*permissions: Permission):
    """
    Builds a guard that lets a request through when the user's role grants
    any of the given permissions.
    """
    async def guard(request: Request, user: User = Depends(login_required)) -> User:
        if not has_any_permission(user.role, permissions):
            logger.warning(f"Permission denied: {user.email} ({user.role}) -> {request.method} {request.url.path}")
            raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not have permission for this operation")
        return user
    return guard
