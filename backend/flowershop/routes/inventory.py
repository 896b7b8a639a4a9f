# Overview: Flask API routes for inventory and losses; parses input and returns JSON responses.

"""
Inventory management routes.

SECURITY: All routes require authentication. OWNER and STAFF both run the
shop floor, so there is no role split here.

Stock is never written by these handlers directly: every quantity change
goes through the ledger (create, correction on update, loss, loss reversal).
"""
from flask import Blueprint, request

from ..decorators import actor_id, require_auth, require_role
from ..errors import ShopError
from ..models import InventoryItem, InventoryLoss
from ..validation import (
    ModelValidationPolicy,
    parse_bool_arg,
    parse_pagination,
    validate_payload,
)
from .context import error_response, inventory_ledger, loss_recorder, server_error


inventory_bp = Blueprint("inventory", __name__, url_prefix="/api/inventory")

INVENTORY_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "quality", "quantity", "unit_price"},
    required_on_create={"name", "quality", "quantity", "unit_price"},
)

INVENTORY_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"name", "quality", "quantity", "unit_price"},
)

LOSS_POLICY = ModelValidationPolicy(
    writable_fields={"quantity", "reason", "notes"},
    required_on_create={"quantity", "reason"},
)


@inventory_bp.post("")
@require_auth
@require_role("OWNER", "STAFF")
def create_inventory_route():
    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(
            model=InventoryItem, payload=payload, policy=INVENTORY_CREATE_POLICY, partial=False
        )
        item = inventory_ledger().create_item(
            patch["name"],
            patch["quality"],
            patch["quantity"],
            patch["unit_price"],
            actor_id=actor_id(),
        )
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to create inventory item")

    return {"item": item.to_dict()}, 201


@inventory_bp.get("")
@require_auth
def list_inventory_route():
    """
    Query params: search, quality, is_active (true/false), page, limit.
    Ordered by name then quality.
    """
    try:
        page, limit = parse_pagination(request.args, default_limit=50)
        result = inventory_ledger().list_items(
            search=request.args.get("search"),
            quality=request.args.get("quality"),
            is_active=parse_bool_arg(request.args, "is_active"),
            page=page,
            limit=limit,
        )
    except ShopError as e:
        return error_response(e)
    return result, 200


@inventory_bp.get("/history")
@require_auth
def loss_history_route():
    """Loss records across all items, newest first."""
    try:
        page, limit = parse_pagination(request.args)
        result = loss_recorder().loss_history(page=page, limit=limit)
    except ShopError as e:
        return error_response(e)
    return result, 200


@inventory_bp.get("/<int:item_id>")
@require_auth
def get_inventory_route(item_id: int):
    try:
        item = inventory_ledger().get_item(item_id)
    except ShopError as e:
        return error_response(e)
    return {"item": item}, 200


@inventory_bp.put("/<int:item_id>")
@require_auth
@require_role("OWNER", "STAFF")
def update_inventory_route(item_id: int):
    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(
            model=InventoryItem, payload=payload, policy=INVENTORY_UPDATE_POLICY, partial=True
        )
        item = inventory_ledger().update_item(item_id, actor_id=actor_id(), **patch)
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to update inventory item")

    return {"item": item.to_dict()}, 200


@inventory_bp.patch("/<int:item_id>/archive")
@require_auth
@require_role("OWNER", "STAFF")
def archive_inventory_route(item_id: int):
    try:
        item = inventory_ledger().archive(item_id, actor_id=actor_id())
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to archive inventory item")

    return {"item": item.to_dict()}, 200


@inventory_bp.delete("/<int:item_id>")
@require_auth
@require_role("OWNER", "STAFF")
def delete_inventory_route(item_id: int):
    """Hard delete; 409 HAS_HISTORY when transactions reference the item."""
    try:
        inventory_ledger().delete(item_id, actor_id=actor_id())
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to delete inventory item")

    return {"success": True, "message": "Inventory item deleted successfully"}, 200


@inventory_bp.get("/<int:item_id>/losses")
@require_auth
def list_losses_route(item_id: int):
    try:
        losses = loss_recorder().list_losses(item_id)
    except ShopError as e:
        return error_response(e)
    return {"losses": [loss.to_dict() for loss in losses]}, 200


@inventory_bp.post("/<int:item_id>/loss")
@require_auth
@require_role("OWNER", "STAFF")
def record_loss_route(item_id: int):
    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(model=InventoryLoss, payload=payload, policy=LOSS_POLICY, partial=False)
        loss = loss_recorder().record_loss(
            item_id,
            patch["quantity"],
            patch["reason"],
            patch.get("notes"),
            actor_id=actor_id(),
        )
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to record inventory loss")

    return {"loss": loss.to_dict(include_item=True)}, 201


@inventory_bp.delete("/losses/<int:loss_id>")
@require_auth
@require_role("OWNER", "STAFF")
def reverse_loss_route(loss_id: int):
    try:
        restored = loss_recorder().reverse_loss(loss_id, actor_id=actor_id())
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to reverse inventory loss")

    return {"success": True, "restored_quantity": restored}, 200
