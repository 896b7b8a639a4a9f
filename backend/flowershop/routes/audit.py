# Overview: Flask API routes for the audit log.

from flask import Blueprint, request

from ..decorators import actor_id, require_auth, require_role
from ..errors import ShopError, ValidationError
from ..extensions import db
from ..services import audit_service
from ..validation import parse_pagination
from .context import audit_sink, error_response


audit_bp = Blueprint("audit", __name__, url_prefix="/api/audit")

CLIENT_EVENT_PREFIX = "CLIENT_"


@audit_bp.get("")
@require_auth
@require_role("OWNER")
def list_audit_route():
    """Query params: actor_id, action, entity_type, page, limit. Newest first."""
    try:
        page, limit = parse_pagination(request.args, default_limit=50)
        result = audit_service.list_events(
            db.session,
            page=page,
            limit=limit,
            actor_id=request.args.get("actor_id") or None,
            action=request.args.get("action") or None,
            entity_type=request.args.get("entity_type") or None,
        )
    except ShopError as e:
        return error_response(e)
    return result, 200


@audit_bp.get("/<entity_type>/<entity_id>")
@require_auth
@require_role("OWNER")
def entity_audit_route(entity_type: str, entity_id: str):
    events = audit_service.events_for_entity(db.session, entity_type, entity_id)
    return {"events": [event.to_dict() for event in events]}, 200


@audit_bp.post("/events")
@require_auth
def client_event_route():
    """
    Record an event observed by the client (e.g. a receipt was shared).
    The action is namespaced with CLIENT_ so it never collides with
    server-side actions.
    """
    data = request.get_json(silent=True) or {}
    try:
        action = data.get("action")
        entity_type = data.get("entity_type")
        if not isinstance(action, str) or not action.strip():
            raise ValidationError("action is required")
        if not isinstance(entity_type, str) or not entity_type.strip():
            raise ValidationError("entity_type is required")
        changes = data.get("changes")
        if changes is not None and not isinstance(changes, dict):
            raise ValidationError("changes must be an object")
    except ShopError as e:
        return error_response(e)

    action = action.strip().upper()
    if not action.startswith(CLIENT_EVENT_PREFIX):
        action = CLIENT_EVENT_PREFIX + action

    entry = audit_sink().record(
        actor_id=actor_id(),
        action=action[:64],
        entity_type=entity_type.strip()[:64],
        entity_id=data.get("entity_id"),
        changes=changes,
    )
    return {"recorded": entry is not None}, 202
