"""User accounts, password hashing and HTTP Basic authentication."""

import logging
import secrets

import bcrypt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBasic, HTTPBasicCredentials
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from doorlink.access.models import User
from doorlink.config import settings
from doorlink.database import get_session
from doorlink.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)

_basic = HTTPBasic(realm="Doorlink", auto_error=False)

# Compared against when the username is unknown, so both paths cost one bcrypt check
_DUMMY_HASH = bcrypt.hashpw(secrets.token_bytes(16), bcrypt.gensalt(rounds=4)).decode("utf-8")


def hash_password(password: str) -> str:
    """Hash a password using bcrypt."""
    salt = bcrypt.gensalt(rounds=settings.bcrypt_rounds)
    return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    """Verify a password against its hash. Malformed hashes never match."""
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        return False


def get_user(session: Session, username: str) -> User | None:
    return session.exec(select(User).where(User.username == username)).first()


def require_user(session: Session, username: str) -> User:
    """Resolve a username or raise NotFoundError."""
    user = get_user(session, username)
    if user is None:
        raise NotFoundError(f"User not found: {username}")
    return user


def register_user(session: Session, username: str, password: str) -> User:
    """Create a user account.

    Raises:
        ConflictError: If the username is already taken.
    """
    if get_user(session, username) is not None:
        raise ConflictError("Username is already taken")

    user = User(username=username, password_hash=hash_password(password))
    session.add(user)
    try:
        session.commit()
    except IntegrityError:
        session.rollback()
        raise ConflictError("Username is already taken") from None
    session.refresh(user)
    logger.info("Registered user: %s (id=%s)", username, user.id)
    return user


def authenticate_user(session: Session, username: str, password: str) -> User | None:
    """Return the user if the credentials match, else None."""
    user = get_user(session, username)
    if user is None:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.password_hash):
        return None
    return user


def get_current_user(
    credentials: HTTPBasicCredentials | None = Depends(_basic),
    session: Session = Depends(get_session),
) -> User:
    """FastAPI dependency: the authenticated user, or 401."""
    user = None
    if credentials is not None:
        user = authenticate_user(session, credentials.username, credentials.password)
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Unauthorized",
            headers={"WWW-Authenticate": 'Basic realm="Doorlink"'},
        )
    return user
