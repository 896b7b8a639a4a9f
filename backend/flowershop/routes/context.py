# Overview: Per-request wiring of services and the shared error responses used by route handlers.

from flask import current_app, request

from ..extensions import db
from ..services.audit_service import AuditService
from ..services.inventory_service import InventoryLedger
from ..services.loss_service import LossRecorder
from ..services.transaction_service import TransactionEngine


def audit_sink() -> AuditService:
    return AuditService(
        db.session,
        ip_address=request.remote_addr,
        user_agent=request.headers.get("User-Agent"),
    )


def inventory_ledger() -> InventoryLedger:
    return InventoryLedger(db.session, audit_sink())


def loss_recorder() -> LossRecorder:
    audit = audit_sink()
    return LossRecorder(db.session, InventoryLedger(db.session, audit), audit)


def transaction_engine() -> TransactionEngine:
    audit = audit_sink()
    return TransactionEngine(
        db.session,
        InventoryLedger(db.session, audit),
        audit,
        expense_reversal_floor_check=current_app.config.get("EXPENSE_REVERSAL_FLOOR_CHECK", False),
    )


def error_response(e):
    """ShopError -> (body, status)."""
    return e.to_dict(), e.status_code


def server_error(message: str):
    current_app.logger.exception(message)
    db.session.rollback()
    return {"error": "Internal server error", "code": "INTERNAL_ERROR"}, 500
