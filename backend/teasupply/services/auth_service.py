# Overview: Service-layer operations for auth; bcrypt password hashing, credential checks and user creation.

"""
Authentication Service

WHY: Every supply record, payment and stock movement is attributed to a
logged-in user. Uses bcrypt for password hashing.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor from BCRYPT_ROUNDS, default 12)
- Minimum 8 characters with upper, lower, digit and special character
- Inactive or pending accounts cannot log in
- Session tokens managed separately (see session_service.py)
"""

import re
import secrets
import string

import bcrypt
from flask import current_app

from ..errors import ConflictError, ValidationError
from ..extensions import db
from ..models import User
from ..models.auth import STATUS_ACTIVE, VALID_ROLES
from teasupply.time_utils import utcnow


GENERATED_PASSWORD_LENGTH = 12
_SPECIAL_CHARS = "!@#$%^&*"


class PasswordValidationError(ValidationError):
    """Raised when password doesn't meet strength requirements."""
    code = "weak_password"


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if len(password) < 8:
        raise PasswordValidationError("Password must be at least 8 characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def generate_password(length: int = GENERATED_PASSWORD_LENGTH) -> str:
    """Random password that always satisfies validate_password_strength."""
    pools = [string.ascii_uppercase, string.ascii_lowercase, string.digits, _SPECIAL_CHARS]
    chars = [secrets.choice(pool) for pool in pools]
    alphabet = "".join(pools)
    chars += [secrets.choice(alphabet) for _ in range(length - len(chars))]
    secrets.SystemRandom().shuffle(chars)
    return "".join(chars)


def hash_password(password: str) -> str:
    """
    Hash password using bcrypt.

    Password is validated for strength before hashing.
    """
    validate_password_strength(password)
    rounds = current_app.config.get("BCRYPT_ROUNDS", 12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), bcrypt.gensalt(rounds=rounds))
    return hashed.decode('utf-8')  # Store as string in database


def verify_password(password: str, password_hash: str) -> bool:
    """
    Verify password against bcrypt hash.

    bcrypt.checkpw() is timing-safe. A malformed stored hash counts as a
    mismatch.
    """
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def authenticate(email: str, password: str) -> User | None:
    """Return the active user matching email/password, else None."""
    user = db.session.query(User).filter_by(email=email.strip().lower()).first()
    if not user or not verify_password(password, user.password_hash):
        return None
    if user.status != STATUS_ACTIVE:
        current_app.logger.info("Login refused for %s account %s", user.status, user.id)
        return None
    user.last_login_at = utcnow()
    db.session.commit()
    return user


def create_user(name: str, email: str, password: str, role: str, **extra) -> User:
    """
    Create a user with a bcrypt password hash.

    Raises PasswordValidationError for weak passwords and ConflictError for
    a duplicate email.
    """
    if role not in VALID_ROLES:
        raise ValidationError(f"role must be one of {', '.join(VALID_ROLES)}")
    email = email.strip().lower()
    if db.session.query(User.id).filter_by(email=email).first():
        raise ConflictError(f"Email {email} is already registered")

    user = User(
        name=name.strip(),
        email=email,
        password_hash=hash_password(password),
        role=role,
        status=STATUS_ACTIVE,
        **extra,
    )
    db.session.add(user)
    db.session.commit()
    return user
