"""
Bearer sessions for logged-in shop accounts.

The client holds a random 64-hex token; the table only ever sees its
SHA-256 digest. A session dies when it is revoked, passes
SESSION_ABSOLUTE_TIMEOUT_HOURS since login, sits unused for longer than
SESSION_IDLE_TIMEOUT_HOURS, or its account is deactivated.
"""

import hashlib
import secrets
from datetime import timedelta

from flask import current_app

from ..errors import NotFoundError
from ..extensions import db
from ..models import AppUser, SessionToken
from flowershop.time_utils import utcnow


def _hours(key: str, default: int) -> timedelta:
    return timedelta(hours=current_app.config.get(key, default))


def generate_token() -> str:
    return secrets.token_hex(32)


def hash_token(token: str) -> str:
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def _live_session(token: str) -> SessionToken | None:
    return (
        db.session.query(SessionToken)
        .filter_by(token_hash=hash_token(token), is_revoked=False)
        .first()
    )


def _mark_revoked(session: SessionToken, reason: str, when=None) -> None:
    session.is_revoked = True
    session.revoked_at = when or utcnow()
    session.revoked_reason = reason


def create_session(
    user_id: int,
    user_agent: str | None = None,
    ip_address: str | None = None,
) -> tuple[SessionToken, str]:
    """Open a session for user_id and return it with the plaintext token."""
    if db.session.get(AppUser, user_id) is None:
        raise NotFoundError("User not found")

    token = generate_token()
    opened = utcnow()
    session = SessionToken(
        user_id=user_id,
        token_hash=hash_token(token),
        created_at=opened,
        last_used_at=opened,
        expires_at=opened + _hours("SESSION_ABSOLUTE_TIMEOUT_HOURS", 24),
        user_agent=user_agent[:512] if user_agent else None,
        ip_address=ip_address,
        is_revoked=False,
    )
    db.session.add(session)
    db.session.commit()
    return session, token


def validate_session(token: str) -> SessionToken | None:
    """
    Resolve a bearer token to its session, or None when it is not usable.

    Idle sessions and sessions of deactivated accounts are revoked while
    being checked. An expired session is simply refused. A usable one has
    its last_used_at moved to now.
    """
    if not token:
        return None
    session = _live_session(token)
    if session is None:
        return None

    now = utcnow()
    if now > session.expires_at:
        return None

    reason = None
    if now - session.last_used_at > _hours("SESSION_IDLE_TIMEOUT_HOURS", 8):
        reason = "Idle timeout"
    elif session.user is None or not session.user.is_active:
        reason = "User account deactivated"

    if reason:
        _mark_revoked(session, reason, now)
    else:
        session.last_used_at = now
    db.session.commit()
    return None if reason else session


def revoke_session(token: str, reason: str = "User logout") -> bool:
    session = _live_session(token)
    if session is None:
        return False
    _mark_revoked(session, reason)
    db.session.commit()
    return True


def revoke_all_user_sessions(user_id: int, reason: str = "Revoke all sessions") -> int:
    """Revoke every open session of user_id; returns how many were open."""
    now = utcnow()
    open_sessions = db.session.query(SessionToken).filter_by(user_id=user_id, is_revoked=False).all()
    for session in open_sessions:
        _mark_revoked(session, reason, now)
    db.session.commit()
    return len(open_sessions)
