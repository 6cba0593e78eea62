# app/routers/users.py
import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlmodel import Session, select, func, or_, col

from app.models import User, UserRole
from app.dependencies import get_session, require_permission
from app.errors import InvalidInput, NotFound
from app.routers.auth import MIN_PASSWORD_LENGTH, user_payload
from app.schemas import UserCreate, UserUpdate
from app.utils.permissions import Permission
from app.utils.security import get_password_hash

logger = logging.getLogger(__name__)

router = APIRouter(tags=["users"])

manage_users = require_permission(Permission.USERS_MANAGE)

def _check_role(role: str) -> str:
    try:
        return UserRole(role).value
    except ValueError:
        raise InvalidInput(f"unknown role '{role}'")

def _email_taken(session: Session, email: str, exclude_id: Optional[int] = None) -> bool:
    query = select(User).where(User.email == email)
    if exclude_id is not None:
        query = query.where(User.id != exclude_id)
    return session.exec(query).first() is not None

@router.get("/api/users")
async def list_users(
    search: Optional[str] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, alias="pageSize", ge=1, le=100),
    admin: User = Depends(manage_users),
    session: Session = Depends(get_session)
):
    """Lists accounts, newest first, optionally filtered by name or email."""
    query = select(User)
    count_query = select(func.count(User.id))
    if search:
        pattern = f"%{search.strip()}%"
        condition = or_(col(User.name).like(pattern), col(User.email).like(pattern))
        query = query.where(condition)
        count_query = count_query.where(condition)

    users = session.exec(
        query.order_by(User.created_at.desc(), User.id.desc())
        .offset((max(page, 1) - 1) * page_size).limit(page_size)
    ).all()
    return {
        "users": [user_payload(u) for u in users],
        "total": session.exec(count_query).one(),
        "page": page,
        "pageSize": page_size,
    }

@router.get("/api/users/{user_id}")
async def get_user(user_id: int, admin: User = Depends(manage_users), session: Session = Depends(get_session)):
    user = session.get(User, user_id)
    if not user:
        raise NotFound("user not found")
    return user_payload(user)

@router.post("/api/users", status_code=201)
async def create_user(data: UserCreate, admin: User = Depends(manage_users), session: Session = Depends(get_session)):
    """Creates an account; emails are unique."""
    email = data.email.strip()
    if not email or not data.name.strip():
        raise InvalidInput("email and name are required")
    if len(data.password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f"the password must be at least {MIN_PASSWORD_LENGTH} characters")
    if _email_taken(session, email):
        raise InvalidInput("this email is already registered")

    user = User(
        email=email,
        name=data.name.strip(),
        hashed_password=get_password_hash(data.password),
        role=_check_role(data.role)
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    logger.info(f"Admin {admin.email} created user {user.email} ({user.role})")
    return user_payload(user)

@router.put("/api/users/{user_id}")
async def update_user(
    user_id: int,
    data: UserUpdate,
    admin: User = Depends(manage_users),
    session: Session = Depends(get_session)
):
    user = session.get(User, user_id)
    if not user:
        raise NotFound("user not found")

    if data.email is not None:
        email = data.email.strip()
        if _email_taken(session, email, exclude_id=user.id):
            raise InvalidInput("this email is already registered")
        user.email = email
    if data.name is not None:
        user.name = data.name.strip()
    if data.role is not None:
        user.role = _check_role(data.role)
    # A blank password leaves the current one unchanged
    if data.password:
        if len(data.password) < MIN_PASSWORD_LENGTH:
            raise InvalidInput(f"the password must be at least {MIN_PASSWORD_LENGTH} characters")
        user.hashed_password = get_password_hash(data.password)

    user.updated_at = datetime.now()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user_payload(user)

@router.delete("/api/users/{user_id}")
async def delete_user(user_id: int, admin: User = Depends(manage_users), session: Session = Depends(get_session)):
    """Deletes an account. Admins cannot delete themselves."""
    if user_id == admin.id:
        raise InvalidInput("you cannot delete your own account")
    user = session.get(User, user_id)
    if not user:
        raise NotFound("user not found")
    session.delete(user)
    session.commit()
    logger.info(f"Admin {admin.email} deleted user {user.email}")
    return {"success": True}
