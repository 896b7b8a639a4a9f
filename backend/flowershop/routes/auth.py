# Overview: Flask API routes for auth and user administration; parses input and returns JSON responses.

"""
Authentication API routes

- POST /api/auth/login    email + password -> bearer token
- POST /api/auth/logout   revokes the presented token
- GET  /api/auth/me       current account

User administration (OWNER only):
- GET   /api/users
- POST  /api/users
- PATCH /api/users/<id>/role
- PATCH /api/users/<id>/status
"""

from flask import Blueprint, request, jsonify, current_app, g

from ..decorators import actor_id, require_auth, require_role
from ..errors import ShopError
from ..services import auth_service
from ..services import session_service
from ..validation import parse_pagination
from .context import audit_sink, error_response, server_error


auth_bp = Blueprint("auth", __name__, url_prefix="/api/auth")
users_bp = Blueprint("users", __name__, url_prefix="/api/users")


@auth_bp.post("/login")
def login_route():
    """
    Authenticate and create a session token.
    Token must be sent as `Authorization: Bearer <token>` on protected routes.
    """
    data = request.get_json(silent=True) or {}
    email = data.get("email")
    password = data.get("password")

    if not email or not password:
        return jsonify({"error": "email and password required", "code": "VALIDATION_ERROR"}), 400

    try:
        user = auth_service.authenticate(email, password)
        if not user:
            current_app.logger.info("Failed login for %s from %s", email, request.remote_addr)
            return jsonify({"error": "Invalid credentials", "code": "AUTHENTICATION_REQUIRED"}), 401

        session, token = session_service.create_session(
            user_id=user.id,
            user_agent=request.headers.get("User-Agent"),
            ip_address=request.remote_addr,
        )
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Login failed")

    audit_sink().record(actor_id=user.email, action="LOGIN", entity_type="AppUser", entity_id=user.id)
    return jsonify({
        "user": user.to_dict(),
        "token": token,
        "expires_at": session.to_dict()["expires_at"],
    }), 200


@auth_bp.post("/logout")
@require_auth
def logout_route():
    session_service.revoke_session(g.access_token, reason="User logout")
    return jsonify({"success": True}), 200


@auth_bp.get("/me")
@require_auth
def me_route():
    return jsonify({"user": g.current_user.to_dict()}), 200


@users_bp.get("")
@require_auth
@require_role("OWNER")
def list_users_route():
    try:
        page, limit = parse_pagination(request.args, default_limit=50)
        result = auth_service.list_users(page=page, limit=limit, role=request.args.get("role") or None)
    except ShopError as e:
        return error_response(e)
    return result, 200


@users_bp.post("")
@require_auth
@require_role("OWNER")
def create_user_route():
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.create_user(
            email=data.get("email"),
            password=data.get("password"),
            display_name=data.get("display_name"),
            role=data.get("role"),
        )
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to create user")

    audit_sink().record(
        actor_id=actor_id(),
        action="CREATE_USER",
        entity_type="AppUser",
        entity_id=user.id,
        changes={"email": user.email, "role": user.role},
    )
    return {"user": user.to_dict()}, 201


@users_bp.patch("/<int:user_id>/role")
@require_auth
@require_role("OWNER")
def update_role_route(user_id: int):
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.set_role(user_id, data.get("role"))
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to update user role")

    audit_sink().record(
        actor_id=actor_id(),
        action="UPDATE_USER_ROLE",
        entity_type="AppUser",
        entity_id=user.id,
        changes={"role": user.role},
    )
    return {"user": user.to_dict()}, 200


@users_bp.patch("/<int:user_id>/status")
@require_auth
@require_role("OWNER")
def update_status_route(user_id: int):
    """Deactivating an account also revokes all of its sessions."""
    data = request.get_json(silent=True) or {}
    try:
        user = auth_service.set_active(user_id, data.get("is_active"))
        if not user.is_active:
            session_service.revoke_all_user_sessions(user.id, reason="User account deactivated")
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to update user status")

    audit_sink().record(
        actor_id=actor_id(),
        action="UPDATE_USER_STATUS",
        entity_type="AppUser",
        entity_id=user.id,
        changes={"is_active": user.is_active},
    )
    return {"user": user.to_dict()}, 200
