# Overview: Flask API routes for sale/expense transactions and their reports.

"""
Transaction routes.

SECURITY: All routes require authentication.

Items are fixed at creation: PUT only accepts metadata fields. To change
items, DELETE (stock is reversed) and POST again.
"""
from flask import Blueprint, request

from ..decorators import actor_id, require_auth, require_role
from ..errors import ShopError, ValidationError
from ..extensions import db
from ..models import Transaction
from ..services import reporting_service
from ..validation import (
    ModelValidationPolicy,
    parse_datetime_arg,
    parse_pagination,
    validate_payload,
)
from .context import error_response, server_error, transaction_engine


transactions_bp = Blueprint("transactions", __name__, url_prefix="/api/transactions")

TRANSACTION_CREATE_POLICY = ModelValidationPolicy(
    writable_fields={
        "type",
        "items",
        "payment_method",
        "sales_agent",
        "customer_name",
        "notes",
        "manual_total_amount",
        "ai_metadata",
    },
    required_on_create={"type"},
)

TRANSACTION_UPDATE_POLICY = ModelValidationPolicy(
    writable_fields={"payment_method", "sales_agent", "customer_name", "notes", "message_sent"},
)


@transactions_bp.post("")
@require_auth
@require_role("OWNER", "STAFF")
def create_transaction_route():
    """
    Body:
      type: SALE | EXPENSE
      items: [{inventory_item_id, quantity}]
      payment_method?: CASH | BANK_TRANSFER (default CASH)
      sales_agent?, customer_name?, notes?
      manual_total_amount?: overrides the computed total
      ai_metadata?: {user_prompt, ai_response?, confidence?, processing_time_ms?}

    409 INSUFFICIENT_STOCK names the item and the deficit; nothing is written.
    """
    payload = request.get_json(silent=True)
    try:
        patch = validate_payload(
            model=Transaction, payload=payload, policy=TRANSACTION_CREATE_POLICY, partial=False
        )
        tx = transaction_engine().create_transaction(actor_id=actor_id(), **patch)
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to create transaction")

    return {"transaction": tx.to_dict()}, 201


@transactions_bp.get("")
@require_auth
def list_transactions_route():
    """Query params: type, start_date, end_date (inclusive, ISO-8601), page, limit."""
    try:
        page, limit = parse_pagination(request.args)
        result = transaction_engine().list_transactions(
            type=request.args.get("type") or None,
            start_date=parse_datetime_arg(request.args, "start_date"),
            end_date=parse_datetime_arg(request.args, "end_date"),
            page=page,
            limit=limit,
        )
    except ShopError as e:
        return error_response(e)
    return result, 200


@transactions_bp.get("/summary")
@require_auth
def summary_route():
    try:
        summary = reporting_service.transaction_summary(
            db.session,
            start=parse_datetime_arg(request.args, "start_date"),
            end=parse_datetime_arg(request.args, "end_date"),
        )
    except ShopError as e:
        return error_response(e)
    return summary, 200


@transactions_bp.get("/analytics")
@require_auth
def analytics_route():
    period = request.args.get("period", "month")
    try:
        analytics = reporting_service.sales_analytics(db.session, period=period)
    except ShopError as e:
        return error_response(e)
    return analytics, 200


@transactions_bp.get("/<int:transaction_id>")
@require_auth
def get_transaction_route(transaction_id: int):
    try:
        tx = transaction_engine().get_transaction(transaction_id)
    except ShopError as e:
        return error_response(e)
    return {"transaction": tx.to_dict()}, 200


@transactions_bp.put("/<int:transaction_id>")
@require_auth
@require_role("OWNER", "STAFF")
def update_transaction_route(transaction_id: int):
    payload = request.get_json(silent=True)
    try:
        if isinstance(payload, dict) and "items" in payload:
            raise ValidationError("Line items cannot be edited. Delete the transaction and create it again.")
        patch = validate_payload(
            model=Transaction, payload=payload, policy=TRANSACTION_UPDATE_POLICY, partial=True
        )
        tx = transaction_engine().update_transaction(transaction_id, patch, actor_id=actor_id())
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to update transaction")

    return {"transaction": tx.to_dict()}, 200


@transactions_bp.delete("/<int:transaction_id>")
@require_auth
@require_role("OWNER", "STAFF")
def delete_transaction_route(transaction_id: int):
    try:
        transaction_engine().delete_transaction(transaction_id, actor_id=actor_id())
    except ShopError as e:
        return error_response(e)
    except Exception:
        return server_error("Failed to delete transaction")

    return {"success": True, "message": "Transaction deleted successfully"}, 200
