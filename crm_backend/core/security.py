"""
Password hashing & JWT helpers.

- Passwords are hashed with bcrypt directly (passlib is unmaintained
  and broken with bcrypt>=4.1).
- JWTs carry only the user id (`sub`).  Roles and permissions are
  NEVER trusted from the token; they are resolved server-side on
  every guarded request (through the permission cache).
"""

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any

import bcrypt
from fastapi import Depends
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt

from crm_backend.core.config import settings
from crm_backend.core.errors import Unauthenticated

# ── Password hashing ────────────────────────────────────────────────


def hash_password(plain: str) -> str:
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    if not hashed:
        return False
    return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))


# ── JWT ──────────────────────────────────────────────────────────────
# auto_error=False: a missing header must surface as our own
# `Unauthenticated`, not FastAPI's generic 401.
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def create_access_token(data: dict[str, Any], expires_delta: timedelta | None = None) -> str:
    to_encode = data.copy()
    expire = datetime.now(timezone.utc) + (
        expires_delta or timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    )
    to_encode.update({"exp": expire})
    return jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode & validate a JWT.  Raises `Unauthenticated` on failure."""
    try:
        return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.JWT_ALGORITHM])
    except JWTError:
        raise Unauthenticated("Invalid or expired token")


# ── Request principal ───────────────────────────────────────────────


async def get_principal_id(token: str | None = Depends(oauth2_scheme)) -> uuid.UUID:
    """
    FastAPI dependency — resolves the bearer token to a user id.

    Only identity is established here; whether that id maps to an
    active user is decided by the RBAC guards.
    """
    if not token:
        raise Unauthenticated("Authentication required")

    payload = decode_access_token(token)
    subject = payload.get("sub")
    if not subject:
        raise Unauthenticated("Invalid token payload")

    try:
        return uuid.UUID(str(subject))
    except ValueError:
        raise Unauthenticated("Invalid token payload")
