# Overview: Error taxonomy shared by services and routes.

"""
Every business failure raised by the services is a ShopError subclass.

Routes map them to JSON with the class status_code; the `code` string is
the stable caller-facing signal, `details` carries structured context
(e.g. the stock deficit for InsufficientStockError).
"""

from __future__ import annotations


class ShopError(Exception):
    """Base class for errors surfaced to API callers."""
    status_code = 400
    code = "ERROR"

    def __init__(self, message: str, details: dict | None = None):
        super().__init__(message)
        self.details = details or {}

    def to_dict(self) -> dict:
        return {"error": str(self), "code": self.code, "details": self.details}


class ValidationError(ShopError, ValueError):
    """400-level input problem (malformed or referentially invalid)."""
    status_code = 400
    code = "VALIDATION_ERROR"


class InsufficientStockError(ShopError):
    """Requested quantity exceeds what is on hand."""
    status_code = 409
    code = "INSUFFICIENT_STOCK"

    def __init__(self, *, item_id: int, item_label: str, requested: int, available: int):
        deficit = requested - available
        super().__init__(
            f"Insufficient inventory for {item_label}. "
            f"Available: {available}, Requested: {requested} (short by {deficit})",
            details={
                "item_id": item_id,
                "item": item_label,
                "requested": requested,
                "available": available,
                "deficit": deficit,
            },
        )
        self.item_id = item_id
        self.requested = requested
        self.available = available


class ConflictError(ShopError):
    """409-level uniqueness conflict (duplicate name/quality pair)."""
    status_code = 409
    code = "CONFLICT"


class HasHistoryError(ShopError):
    """Hard delete refused because transactions reference the item."""
    status_code = 409
    code = "HAS_HISTORY"


class NotFoundError(ShopError):
    status_code = 404
    code = "NOT_FOUND"


class PersistenceError(ShopError):
    """The unit of work failed for infrastructure reasons; nothing was applied."""
    status_code = 503
    code = "PERSISTENCE_ERROR"


class AuthenticationError(ShopError):
    status_code = 401
    code = "AUTHENTICATION_REQUIRED"


class PermissionDeniedError(ShopError):
    status_code = 403
    code = "PERMISSION_DENIED"
