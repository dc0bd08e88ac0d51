# Overview: Admin account management and password verification.

"""
Admin Authentication Service

WHY: Every override is attributed to a named administrator. Uses bcrypt for
password hashing and enforces a minimum password policy.

SECURITY NOTES:
- Passwords hashed with bcrypt (cost factor 12)
- Minimum 12 characters, mixed case, digit and special char
- Session tokens managed separately (see session_service.py)
"""

import bcrypt
import re
from ..extensions import db
from ..models import AdminUser
from ..time_utils import utcnow
from ..validation import EMAIL_RE


MIN_PASSWORD_LENGTH = 12


class PasswordValidationError(Exception):
    """Raised when password doesn't meet strength requirements."""
    pass


class AdminAccountError(ValueError):
    """Raised for duplicate or unknown admin accounts."""
    pass


def validate_password_strength(password: str) -> None:
    """
    Validate password meets strength requirements.

    Raises PasswordValidationError if requirements not met.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")

    if not re.search(r'[A-Z]', password):
        raise PasswordValidationError("Password must contain at least one uppercase letter")

    if not re.search(r'[a-z]', password):
        raise PasswordValidationError("Password must contain at least one lowercase letter")

    if not re.search(r'\d', password):
        raise PasswordValidationError("Password must contain at least one digit")

    if not re.search(r"[!@#$%^&*(),.'\":{}|<>\-_=+?]", password):
        raise PasswordValidationError("Password must contain at least one special character")


def hash_password(password: str) -> str:
    """Hash password using bcrypt with cost factor 12 (validated first)."""
    validate_password_strength(password)
    salt = bcrypt.gensalt(rounds=12)
    hashed = bcrypt.hashpw(password.encode('utf-8'), salt)
    return hashed.decode('utf-8')


def verify_password(password: str, password_hash: str) -> bool:
    """Timing-safe bcrypt comparison. Malformed hashes never verify."""
    try:
        return bcrypt.checkpw(password.encode('utf-8'), password_hash.encode('utf-8'))
    except ValueError:
        return False


def create_admin(email: str, password: str, name: str | None = None) -> AdminUser:
    """
    Create a new administrator.

    Raises:
        AdminAccountError: invalid or duplicate email
        PasswordValidationError: password too weak
    """
    email = (email or "").strip().lower()
    if not EMAIL_RE.match(email):
        raise AdminAccountError("A valid email is required")

    existing = db.session.query(AdminUser).filter_by(email=email).first()
    if existing:
        raise AdminAccountError("An admin with this email already exists")

    admin = AdminUser(email=email, name=name, password_hash=hash_password(password))
    db.session.add(admin)
    db.session.commit()
    return admin


def set_password(email: str, password: str) -> AdminUser:
    admin = db.session.query(AdminUser).filter_by(email=(email or "").strip().lower()).first()
    if not admin:
        raise AdminAccountError("Admin not found")
    admin.password_hash = hash_password(password)
    db.session.commit()
    return admin


def authenticate(email: str, password: str) -> AdminUser | None:
    """
    Authenticate an admin by email and password.

    Returns AdminUser if credentials valid, None otherwise.
    Updates last_login_at timestamp on successful authentication.
    """
    admin = db.session.query(AdminUser).filter(
        AdminUser.email == (email or "").strip().lower(),
        AdminUser.is_active.is_(True),
    ).first()

    if not admin:
        return None

    if verify_password(password, admin.password_hash):
        admin.last_login_at = utcnow()
        db.session.commit()
        return admin

    return None
