"""Password hashing, JWT bearer tokens and the current-user dependencies.

Flow Diagram — get_current_user()
=================================
::
    ┌──────────────────────┐
    │ Authorization:       │  missing / not Bearer ──▶ 401
    │ Bearer <jwt>         │
    └──────────┬───────────┘
               ▼
    ┌──────────────────────┐
    │ jwt.decode (HS256)   │  expired / bad signature ──▶ 401
    └──────────┬───────────┘
               ▼
    ┌──────────────────────┐
    │ SELECT user by "sub" │  missing / disabled ──▶ 401
    └──────────┬───────────┘
               ▼
          User instance

Key Behaviours
===============
- Passwords are stored as bcrypt hashes only.
- Tokens carry ``sub`` (username), ``roles``, ``iat`` and ``exp``.
- require_admin() answers 403 for an authenticated non-admin.
"""

import datetime
import logging

import bcrypt
import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from shortlinks.config import Settings
from shortlinks.database import get_db
from shortlinks.dependencies import ServiceManager, get_service_manager
from shortlinks.models import User, utcnow

__all__ = [
    "authenticate",
    "create_access_token",
    "create_user",
    "decode_access_token",
    "get_current_user",
    "hash_password",
    "require_admin",
    "verify_password",
]

logger = logging.getLogger(__name__)

bearer_scheme = HTTPBearer(auto_error=False)

_UNAUTHORIZED_HEADERS = {"WWW-Authenticate": "Bearer"}


def hash_password(plaintext: str) -> str:
    return bcrypt.hashpw(plaintext.encode(), bcrypt.gensalt()).decode()


def verify_password(plaintext: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(plaintext.encode(), password_hash.encode())
    except ValueError:
        # Malformed stored hash.
        return False


def create_access_token(user: User, settings: Settings, now: datetime.datetime | None = None) -> str:
    issued_at = now or utcnow()
    payload = {
        "sub": user.username,
        "roles": user.roles,
        "iat": issued_at,
        "exp": issued_at + datetime.timedelta(seconds=settings.JWT_EXPIRATION_SECONDS),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_access_token(token: str, settings: Settings) -> dict:
    """Raises jwt.InvalidTokenError (or a subclass) for any unusable token."""
    return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])


async def authenticate(db: AsyncSession, username: str, password: str) -> User | None:
    """Check credentials and stamp last_login_at. Returns None on any mismatch."""
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None or not user.is_enabled:
        return None
    if not verify_password(password, user.password_hash):
        return None
    user.last_login_at = utcnow()
    await db.commit()
    await db.refresh(user)
    return user


async def create_user(
    db: AsyncSession,
    username: str,
    password: str,
    email: str,
    is_admin: bool = False,
) -> User:
    """Create an account. Raises ValueError for blank fields or a taken username/email."""
    username, email = username.strip(), email.strip()
    if not username or not password or not email:
        raise ValueError("Username, password and email are required")
    if "@" not in email:
        raise ValueError("Invalid email address")

    existing = await db.execute(select(User.id).where((User.username == username) | (User.email == email)))
    if existing.first() is not None:
        raise ValueError(f"User '{username}' or email '{email}' already exists")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        is_admin=is_admin,
        is_enabled=True,
    )
    db.add(user)
    await db.commit()
    await db.refresh(user)
    logger.info(f"Created user: {user.username} (admin={user.is_admin})")
    return user


async def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
    db: AsyncSession = Depends(get_db),
    manager: ServiceManager = Depends(get_service_manager),
) -> User:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers=_UNAUTHORIZED_HEADERS,
        )
    try:
        payload = decode_access_token(credentials.credentials, manager.settings)
    except jwt.InvalidTokenError as exc:
        logger.info(f"Rejected bearer token: {exc}")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers=_UNAUTHORIZED_HEADERS,
        ) from exc

    username = payload.get("sub")
    result = await db.execute(select(User).where(User.username == username))
    user = result.scalar_one_or_none()
    if user is None or not user.is_enabled:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or expired token",
            headers=_UNAUTHORIZED_HEADERS,
        )
    return user


async def require_admin(user: User = Depends(get_current_user)) -> User:
    if not user.is_admin:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin privileges required")
    return user
