# Overview: Service-layer operations for auth; encapsulates business logic and database work.

"""
Authentication and user administration.

WHY: Every stock movement is attributed to the user who performed it, so
each operator has their own account. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 8 characters, with at least one letter and one digit
- Session tokens managed separately (see session_service.py)
- Deactivated users cannot authenticate
"""

import logging
import re

import bcrypt
from sqlalchemy.exc import IntegrityError

from ..extensions import db
from ..models import User, StockTransaction
from ..permissions import ROLES, SUPER_ADMIN
from ..validation import ValidationError, ConflictError, NotFoundError
from stockledger.time_utils import utcnow

logger = logging.getLogger(__name__)


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""

    def __init__(self, message: str):
        super().__init__(message, field="password")


class UserNotFoundError(NotFoundError):
    """User id does not exist."""


def validate_password_strength(password: str) -> None:
    """
    Requirements:
    - Minimum 8 characters
    - At least one letter
    - At least one digit
    """
    if not isinstance(password, str) or len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Za-z]', password):
        raise PasswordValidationError("Password must contain at least one letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")


def hash_password(password: str) -> str:
    """Validate strength, then hash with bcrypt (cost 12)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    A malformed stored hash counts as a mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def normalize_roles(roles) -> list[str]:
    if roles is None:
        return []
    if isinstance(roles, str):
        roles = [roles]
    if not isinstance(roles, (list, tuple)):
        raise ValidationError("roles must be a list of role names", field="roles")
    cleaned = []
    for role in roles:
        if role not in ROLES:
            raise ValidationError(f"Unknown role: {role}", field="roles")
        if role not in cleaned:
            cleaned.append(role)
    return cleaned


def create_user(
    username: str,
    password: str,
    *,
    email: str | None = None,
    first_name: str | None = None,
    last_name: str | None = None,
    roles=None,
) -> User:
    """
    Create a user with a bcrypt-hashed password.

    Raises:
        ValidationError: missing username, unknown role
        PasswordValidationError: weak password
        ConflictError: username or email already taken
    """
    if not isinstance(username, str) or not username.strip():
        raise ValidationError("username is required", field="username")
    if email is not None and not isinstance(email, str):
        raise ValidationError("email must be a string", field="email")
    username = username.strip()
    email = email.strip() or None if email else None

    if db.session.query(User.id).filter_by(username=username).first():
        raise ConflictError(f"Username already exists: {username}")
    if email and db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError(f"Email already exists: {email}")

    user = User(
        username=username,
        email=email,
        password_hash=hash_password(password),
        first_name=first_name,
        last_name=last_name,
        roles=normalize_roles(roles),
        is_active=True,
    )
    db.session.add(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError("Username or email already exists")

    logger.info("Created user #%s %s roles=%s", user.id, user.username, user.roles)
    return user


def authenticate(username: str, password: str) -> User | None:
    """
    Return the user for valid credentials, else None.

    Inactive accounts never authenticate.
    """
    user = db.session.query(User).filter_by(username=username).first()
    if user is None or not user.is_active:
        return None
    if not verify_password(password, user.password_hash):
        return None

    user.last_login_at = utcnow()
    db.session.commit()
    return user


def get_user(user_id: int) -> User:
    user = db.session.get(User, user_id)
    if user is None:
        raise UserNotFoundError(f"User {user_id} not found")
    return user


def list_users() -> list[User]:
    return db.session.query(User).order_by(User.username.asc()).all()


def _active_super_admins(exclude_id: int) -> int:
    return sum(
        1 for u in db.session.query(User).filter(User.is_active.is_(True), User.id != exclude_id).all()
        if SUPER_ADMIN in (u.roles or [])
    )


def set_roles(user_id: int, roles) -> User:
    user = get_user(user_id)
    new_roles = normalize_roles(roles)
    if SUPER_ADMIN in (user.roles or []) and SUPER_ADMIN not in new_roles:
        if _active_super_admins(exclude_id=user.id) == 0:
            raise ConflictError("Cannot remove the last active super_admin")
    user.roles = new_roles
    db.session.commit()
    return user


def set_active(user_id: int, is_active: bool) -> User:
    """
    Activate/deactivate. Deactivation revokes every open session of the user.
    """
    from .session_service import revoke_all_user_sessions

    user = get_user(user_id)
    if not is_active and SUPER_ADMIN in (user.roles or []):
        if _active_super_admins(exclude_id=user.id) == 0:
            raise ConflictError("Cannot deactivate the last active super_admin")

    user.is_active = bool(is_active)
    db.session.commit()
    if not user.is_active:
        revoke_all_user_sessions(user.id, reason="User deactivated")
    return user


def set_password(user_id: int, password: str) -> User:
    """
    Replace a user's password and sign them out everywhere.

    Raises PasswordValidationError for weak passwords, UserNotFoundError for unknown ids.
    """
    from .session_service import revoke_all_user_sessions

    user = get_user(user_id)
    user.password_hash = hash_password(password)
    db.session.commit()
    revoke_all_user_sessions(user.id, reason="Password changed")
    logger.info("Password changed for user %s", user.username)
    return user


def delete_user(user_id: int) -> None:
    """
    Hard delete. Users referenced by ledger rows keep their history and can
    only be deactivated.
    """
    user = get_user(user_id)
    has_tx = db.session.query(StockTransaction.id).filter_by(user_id=user.id).first() is not None
    if has_tx:
        raise ConflictError(
            f"User {user.username} has recorded stock transactions; deactivate the account instead"
        )
    if SUPER_ADMIN in (user.roles or []) and _active_super_admins(exclude_id=user.id) == 0:
        raise ConflictError("Cannot delete the last active super_admin")

    db.session.delete(user)
    try:
        db.session.commit()
    except IntegrityError:
        db.session.rollback()
        raise ConflictError(f"User {user_id} is still referenced; deactivate the account instead")
    logger.info("Deleted user #%s", user_id)
