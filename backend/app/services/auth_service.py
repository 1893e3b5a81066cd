# Overview: Service-layer operations for auth; password hashing and operator accounts.

"""
Authentication Service

WHY: Orders, sales and ledger entries are attributed to the operator who
made them. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters required
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
from flask import current_app, has_app_context

from ..extensions import db
from ..models import User
from ..models.auth import ROLE_STAFF, VALID_ROLES
from app.time_utils import utcnow


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")


def hash_password(password: str) -> str:
    """Validate, then hash with bcrypt. Returned as str for the String column."""
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12) if has_app_context() else 12
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    WHY timing-safe: bcrypt.checkpw() prevents timing attacks automatically.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        # Malformed hash in the database
        return False


def create_user(username: str, password: str, name: str | None = None, role: str = ROLE_STAFF) -> User:
    """
    Create an operator account.

    Raises:
        ValueError: username taken, or unknown role
        PasswordValidationError: password too weak
    """
    if role not in VALID_ROLES:
        raise ValueError(f"Role must be one of {', '.join(VALID_ROLES)}")

    existing = db.session.query(User).filter_by(username=username).first()
    if existing:
        raise ValueError("Username already exists")

    user = User(
        username=username,
        password_hash=hash_password(password),
        name=name or username,
        role=role,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Returns the active User for valid credentials, None otherwise.
    Updates last_login_at on success.
    """
    user = db.session.query(User).filter(
        User.username == username,
        User.is_active.is_(True),
    ).first()

    if not user or not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.username.asc()).all()
