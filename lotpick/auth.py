"""JWT bearer auth against the user repository.

Tokens carry the user id as ``sub`` and the role; the user is reloaded on
every request so deactivation takes effect before the token expires.
"""

import datetime as dt
import logging
from typing import Any, Optional

import bcrypt
from fastapi import Depends, status
from fastapi.security import OAuth2PasswordBearer
from jose import JWTError, jwt
from passlib.context import CryptContext

from . import settings
from .deps import get_store
from .domain import AuditEvent, User, utcnow
from .errors import api_error
from .repositories.base import AuditRepository

logger = logging.getLogger("lotpick.auth")

pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/auth/login")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    try:
        return pwd_context.verify(plain_password, hashed_password)
    except ValueError:
        try:
            return bcrypt.checkpw(plain_password.encode("utf-8"), hashed_password.encode("utf-8"))
        except ValueError:
            return False


def get_password_hash(password: str) -> str:
    return pwd_context.hash(password)


def create_access_token(user: User, expires_delta: Optional[dt.timedelta] = None) -> str:
    expire = utcnow() + (expires_delta or dt.timedelta(hours=settings.JWT_EXP_HOURS))
    claims: dict[str, Any] = {"sub": user.id, "role": user.role, "exp": expire}
    return jwt.encode(claims, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


async def _audit_login(
    events: AuditRepository, username: str, user: Optional[User], detail: Optional[str]
) -> None:
    success = detail is None
    await events.record_event(
        AuditEvent(
            entity="auth",
            entity_id=username,
            action="login_success" if success else "login_failed",
            payload={"username": username, "success": success, "detail": detail},
            user_id=user.id if user else None,
        )
    )


async def authenticate(store, username: str, password: str) -> User:
    """Check credentials, audit the attempt and return the active user."""

    user = await store.get_user_by_username(username)
    if user is None or not verify_password(password, user.password_hash):
        await _audit_login(store, username, None, "Invalid credentials")
        logger.info("Failed login for %s", username)
        raise api_error(status.HTTP_401_UNAUTHORIZED, "auth.invalid_credentials", "Invalid credentials")
    if not user.active:
        await _audit_login(store, username, user, "Inactive user")
        raise api_error(status.HTTP_403_FORBIDDEN, "auth.inactive_user", "Inactive user")
    await _audit_login(store, username, user, None)
    return user


async def get_current_user(token: str = Depends(oauth2_scheme), store=Depends(get_store)) -> User:
    credentials_exception = api_error(
        status.HTTP_401_UNAUTHORIZED,
        "auth.invalid_token",
        "Invalid token",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except JWTError as exc:
        raise credentials_exception from exc
    user_id = payload.get("sub")
    if user_id is None or payload.get("role") is None:
        raise credentials_exception

    user = await store.get_user(user_id)
    if user is None or not user.active:
        raise credentials_exception
    return user
