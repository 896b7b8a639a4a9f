"""
Shop accounts: creation, password checks and role changes.

The first account ever created is the OWNER; later ones are STAFF unless
an OWNER promotes them. At least one active OWNER must remain at all
times. Passwords are bcrypt hashes (cost 12) and need 8+ characters
with an uppercase letter, a lowercase letter and a digit. Sessions live
in session_service.
"""

import re

import bcrypt

from ..errors import ConflictError, NotFoundError, ValidationError
from ..extensions import db
from ..models import AppUser, USER_ROLES
from flowershop.time_utils import utcnow

_EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
BCRYPT_ROUNDS = 12
MIN_PASSWORD_LENGTH = 8

_PASSWORD_RULES = (
    (re.compile(r"[A-Z]"), "an uppercase letter"),
    (re.compile(r"[a-z]"), "a lowercase letter"),
    (re.compile(r"[0-9]"), "a digit"),
)


class PasswordValidationError(ValidationError):
    pass


def validate_password_strength(password: str) -> None:
    if not isinstance(password, str) or len(password) < MIN_PASSWORD_LENGTH:
        raise PasswordValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    for pattern, what in _PASSWORD_RULES:
        if pattern.search(password) is None:
            raise PasswordValidationError(f"Password must contain {what}")


def hash_password(password: str) -> str:
    validate_password_strength(password)
    digest = bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt(rounds=BCRYPT_ROUNDS))
    return digest.decode("utf-8")


def verify_password(password: str, password_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
    except ValueError:
        # not a bcrypt hash
        return False


def normalize_email(email) -> str:
    if not isinstance(email, str) or not _EMAIL_RE.match(email.strip()):
        raise ValidationError("A valid email is required")
    return email.strip().lower()


def create_user(
    email: str,
    password: str,
    display_name: str | None = None,
    role: str | None = None,
) -> AppUser:
    """
    Create an account.

    The very first account is always OWNER, whatever `role` says. Later
    accounts default to STAFF.
    """
    email = normalize_email(email)

    if db.session.query(AppUser).filter_by(email=email).first():
        raise ConflictError("An account with this email already exists", details={"email": email})

    is_first = db.session.query(AppUser.id).first() is None
    if is_first:
        role = "OWNER"
    elif role is None:
        role = "STAFF"
    elif role not in USER_ROLES:
        raise ValidationError(f"role must be one of {', '.join(USER_ROLES)}")

    user = AppUser(
        email=email,
        display_name=(display_name or "").strip() or None,
        password_hash=hash_password(password),
        role=role,
        is_active=True,
    )
    db.session.add(user)
    db.session.commit()
    return user


def authenticate(email: str, password: str) -> AppUser | None:
    """
    Returns the user if credentials are valid, None otherwise.
    Updates last_login_at on success.
    """
    if not isinstance(email, str) or not isinstance(password, str):
        return None

    user = db.session.query(AppUser).filter(
        AppUser.email == email.strip().lower(),
        AppUser.is_active.is_(True),
    ).first()

    if not user:
        return None

    if verify_password(password, user.password_hash):
        user.last_login_at = utcnow()
        db.session.commit()
        return user

    return None


def _get_user(user_id: int) -> AppUser:
    user = db.session.get(AppUser, user_id)
    if not user:
        raise NotFoundError(f"User {user_id} not found", details={"user_id": user_id})
    return user


def _ensure_owner_remains(user: AppUser) -> None:
    others = db.session.query(AppUser).filter(
        AppUser.role == "OWNER",
        AppUser.is_active.is_(True),
        AppUser.id != user.id,
    ).count()
    if others == 0:
        raise ConflictError("The shop must keep at least one active OWNER")


def set_role(user_id: int, role: str) -> AppUser:
    if role not in USER_ROLES:
        raise ValidationError(f"role must be one of {', '.join(USER_ROLES)}")
    user = _get_user(user_id)
    if user.role == role:
        return user
    if user.role == "OWNER" and user.is_active:
        _ensure_owner_remains(user)

    user.role = role
    db.session.commit()
    return user


def set_active(user_id: int, is_active: bool) -> AppUser:
    """Deactivated accounts cannot log in; their open sessions are revoked on next use."""
    if not isinstance(is_active, bool):
        raise ValidationError("is_active must be a boolean")
    user = _get_user(user_id)
    if user.is_active == is_active:
        return user
    if not is_active and user.role == "OWNER":
        _ensure_owner_remains(user)

    user.is_active = is_active
    db.session.commit()
    return user


def list_users(*, page: int = 1, limit: int = 50, role: str | None = None) -> dict:
    q = db.session.query(AppUser)
    if role:
        q = q.filter(AppUser.role == role)
    total = q.count()
    rows = q.order_by(AppUser.created_at.asc(), AppUser.id.asc()).offset((page - 1) * limit).limit(limit).all()
    return {
        "data": [u.to_dict() for u in rows],
        "total": total,
        "page": page,
        "limit": limit,
        "total_pages": (total + limit - 1) // limit,
    }
