# app/routers/auth.py
import asyncio
import logging
from datetime import datetime
from fastapi import APIRouter, Depends, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlmodel import Session, select

# Import models, dependencies, and utilities
from app.models import User
from app.dependencies import get_session, login_required, limiter
from app.errors import InvalidInput
from app.schemas import ChangePasswordRequest, LoginRequest, dump
from app.utils.permissions import get_user_permissions, role_label
from app.utils.security import verify_password, get_password_hash, needs_rehash, create_access_token
from app.config import ACCESS_TOKEN_EXPIRE_DAYS, APP_ENV, IS_TESTING

logger = logging.getLogger(__name__)

router = APIRouter(tags=["authentication"])

MIN_PASSWORD_LENGTH = 6

def user_payload(user: User) -> dict:
    """Public view of an account: no password hash, plus its permissions."""
    return dump(
        user,
        exclude={"hashed_password"},
        role_label=role_label(user.role),
        permissions=sorted(p.value for p in get_user_permissions(user.role))
    )

# --- LOGIN ROUTES ---

@router.post("/api/login")
@limiter.limit("5/minute")
async def login(
    request: Request,
    data: LoginRequest,
    session: Session = Depends(get_session)
):
    """Handles user login with rate limiting and secure cookie placement."""
    if not data.email or not data.password:
        raise InvalidInput("email and password are required")

    # Slight delay to mitigate timing attacks
    if not IS_TESTING:
        await asyncio.sleep(0.5)

    user = session.exec(select(User).where(User.email == data.email.strip())).first()

    if not user or not verify_password(data.password, user.hashed_password):
        logger.warning(f"Failed login for {data.email}")
        return JSONResponse({"error": "invalid email or password"}, status_code=401)

    # Upgrade legacy bcrypt hashes to argon2 while we have the plain password
    if needs_rehash(user.hashed_password):
        user.hashed_password = get_password_hash(data.password)

    # Update last active timestamp
    user.last_active = datetime.now()
    session.add(user)
    session.commit()
    session.refresh(user)

    token = create_access_token({"sub": str(user.id), "role": user.role})

    response = JSONResponse(jsonable_encoder({"user": user_payload(user), "token": token}))
    response.set_cookie(
        "access_token",
        f"Bearer {token}",
        httponly=True,
        secure=APP_ENV == "production",
        samesite="lax",
        max_age=ACCESS_TOKEN_EXPIRE_DAYS * 86400
    )
    logger.info(f"User {user.email} logged in")
    return response

# --- LOGOUT ROUTE ---

@router.post("/api/logout")
async def logout():
    """Logs the user out by deleting the session cookie."""
    response = JSONResponse({"success": True})
    response.delete_cookie("access_token")
    return response

# --- CURRENT USER ---

@router.get("/api/me")
async def me(user: User = Depends(login_required)):
    return user_payload(user)

@router.post("/api/users/change-password")
async def change_password(
    data: ChangePasswordRequest,
    user: User = Depends(login_required),
    session: Session = Depends(get_session)
):
    """Changes the caller's own password after checking the current one."""
    if not verify_password(data.old_password, user.hashed_password):
        raise InvalidInput("the current password is incorrect")
    if len(data.new_password) < MIN_PASSWORD_LENGTH:
        raise InvalidInput(f"the new password must be at least {MIN_PASSWORD_LENGTH} characters")

    user.hashed_password = get_password_hash(data.new_password)
    user.updated_at = datetime.now()
    session.add(user)
    session.commit()
    logger.info(f"User {user.email} changed their password")
    return {"success": True}
