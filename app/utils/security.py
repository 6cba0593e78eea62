# app/utils/security.py
import os
from datetime import datetime, timedelta
from typing import Optional
from jose import jwt
from passlib.context import CryptContext
from fastapi import UploadFile

from app.config import (
    SECRET_KEY,
    ALGORITHM,
    ACCESS_TOKEN_EXPIRE_DAYS,
    ALLOWED_UPLOAD_EXTENSIONS,
    MAX_UPLOAD_SIZE
)
from app.errors import InvalidInput

# --- PASSWORD HASHING ---
# Using Argon2 as the primary hasher with bcrypt fallback for legacy support
pwd_context = CryptContext(
    schemes=["argon2", "bcrypt"],
    deprecated="auto",
    argon2__memory_cost=65536,  # 64 MB
    argon2__time_cost=3,
    argon2__parallelism=4
)

def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verifies a plain text password against its hash."""
    return pwd_context.verify(plain_password, hashed_password)

def get_password_hash(password: str) -> str:
    """Generates a secure Argon2 hash for a password."""
    return pwd_context.hash(password)

def needs_rehash(hashed: str) -> bool:
    """Checks if a hash was created with a deprecated scheme."""
    return pwd_context.needs_update(hashed)

# --- JWT TOKEN LOGIC ---

def create_access_token(data: dict, expires_delta: Optional[timedelta] = None) -> str:
    """Creates a signed JWT access token carrying the user's id and role."""
    to_encode = data.copy()
    if expires_delta:
        expire = datetime.utcnow() + expires_delta
    else:
        expire = datetime.utcnow() + timedelta(days=ACCESS_TOKEN_EXPIRE_DAYS)

    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, SECRET_KEY, algorithm=ALGORITHM)

def decode_access_token(token: str) -> dict:
    """Decodes a token; raises jose.JWTError when it is invalid or expired."""
    return jwt.decode(token, SECRET_KEY, algorithms=[ALGORITHM])

# --- UPLOAD VALIDATION ---

def validate_spreadsheet_upload(file: UploadFile) -> str:
    """
    Validates a bulk inbound upload and returns its lower-cased extension.
    Checks:
    1. File size limits.
    2. Allowed spreadsheet extensions.
    """
    # 1. Check file size
    file.file.seek(0, 2)  # Seek to end
    file_size = file.file.tell()
    file.file.seek(0)  # Reset to start

    if file_size > MAX_UPLOAD_SIZE:
        max_mb = MAX_UPLOAD_SIZE / 1024 / 1024
        raise InvalidInput(f"File too large. Maximum size: {max_mb:.1f}MB")

    if file_size == 0:
        raise InvalidInput("Empty file uploaded")

    # 2. Check extension against whitelist
    filename = file.filename or "unnamed"
    ext = os.path.splitext(filename)[1].lower()

    if ext not in ALLOWED_UPLOAD_EXTENSIONS:
        raise InvalidInput(f"File type '{ext}' not allowed. Use .xlsx or .csv")

    return ext
