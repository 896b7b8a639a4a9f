# Overview: Request and role decorators for API routes.

from functools import wraps
from flask import request, g

from .errors import AuthenticationError, PermissionDeniedError
from .routes.context import error_response
from .services import session_service


def _is_authenticated() -> bool:
    return hasattr(g, 'current_user')


def require_auth(f):
    """
    Require a valid bearer token.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated AppUser
    - g.session_token: The SessionToken row backing this request
    - g.access_token: The plaintext token (for logout)

    SECURITY: Returns 401 if:
    - No Authorization header
    - Invalid, expired, idle or revoked token
    - User account deactivated (the session is revoked on the spot)
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        auth_header = request.headers.get("Authorization")
        if not auth_header or not auth_header.startswith("Bearer "):
            return error_response(AuthenticationError("Authentication required"))

        token = auth_header.split(" ", 1)[1].strip()
        session = session_service.validate_session(token)
        if not session:
            return error_response(AuthenticationError("Invalid or expired token"))

        g.current_user = session.user
        g.session_token = session
        g.access_token = token

        return f(*args, **kwargs)

    return decorated_function


def require_role(*roles):
    """
    Require the authenticated user to hold one of `roles`.

    Must be stacked under @require_auth.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            if not _is_authenticated():
                return error_response(AuthenticationError("Authentication required"))

            user = g.current_user
            if not user.is_active:
                return error_response(PermissionDeniedError("Account is deactivated"))

            if user.role not in roles:
                return error_response(PermissionDeniedError(
                    "Permission denied",
                    details={"required_roles": list(roles), "role": user.role},
                ))

            return f(*args, **kwargs)

        return decorated_function
    return decorator


def actor_id() -> str:
    """Attribution string stored on records and audit entries."""
    return g.current_user.email
