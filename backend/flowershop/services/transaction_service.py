# Overview: Service-layer operations for sale/expense transactions and their stock side effects.

from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import (
    AiTransactionMetadata,
    InventoryItem,
    PAYMENT_METHODS,
    TRANSACTION_TYPES,
    Transaction,
    TransactionItem,
)
from ..money import MAX_AMOUNT_CENTS, format_cents, to_cents
from flowershop.time_utils import utcnow
from .concurrency import UnitOfWork, lock_for_update, run_with_retry
from .inventory_service import require_quantity
"""
Transaction Engine Invariants (authoritative)

Shape:
- A transaction owns its line items. Items are written once, with their
  stock deltas, and never edited. Changing items means delete + create.
- unit_price_cents on a line is a snapshot of the item price at creation.
- total_amount_cents == sum(line subtotals) unless a manual total was given.

Stock effects:
- SALE:    checked decrement per inventory item (aggregated across lines).
- EXPENSE: increment per line (stock arrives with the purchase).
- Delete applies the inverse: SALE -> increment, EXPENSE -> decrement.
  The EXPENSE inverse is unchecked unless EXPENSE_REVERSAL_FLOOR_CHECK is on.

Atomicity:
- Validation (existence, active flag, price snapshot, sufficiency) is
  finished before the unit of work opens. Inside it, header + lines +
  ledger deltas commit together; a concurrent sale that drains stock in
  between makes the conditional decrement fail and everything rolls back.
- The audit entry is written after commit and never affects the result.
"""

UPDATABLE_FIELDS = ("payment_method", "sales_agent", "customer_name", "notes", "message_sent")


@dataclass(frozen=True)
class LineDraft:
    """A fully priced line item, built before any write happens."""
    inventory_item_id: int
    item_label: str
    quantity: int
    unit_price_cents: int

    @property
    def subtotal_cents(self) -> int:
        return self.unit_price_cents * self.quantity


@dataclass(frozen=True)
class AiMetadataDraft:
    user_prompt: str
    ai_response: str | None = None
    confidence: float | None = None
    processing_time_ms: int | None = None


def _optional_text(value, field: str, max_length: int | None = None) -> str | None:
    if value is None:
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be a string")
    value = value.strip()
    if max_length is not None and len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value or None


def _require_payment_method(value) -> str:
    if value is None:
        return "CASH"
    if value not in PAYMENT_METHODS:
        raise ValidationError(
            f"payment_method must be one of {', '.join(PAYMENT_METHODS)}",
            details={"payment_method": value},
        )
    return value


def _parse_ai_metadata(raw) -> AiMetadataDraft | None:
    if raw is None:
        return None
    if isinstance(raw, AiMetadataDraft):
        return raw
    if not isinstance(raw, dict):
        raise ValidationError("ai_metadata must be an object")

    prompt = raw.get("user_prompt")
    if not isinstance(prompt, str) or not prompt.strip():
        raise ValidationError("ai_metadata.user_prompt is required")

    confidence = raw.get("confidence")
    if confidence is not None:
        if isinstance(confidence, bool) or not isinstance(confidence, (int, float)):
            raise ValidationError("ai_metadata.confidence must be a number")
        if not 0 <= confidence <= 1:
            raise ValidationError("ai_metadata.confidence must be between 0 and 1")

    processing = raw.get("processing_time_ms")
    if processing is not None:
        processing = require_quantity(processing, "ai_metadata.processing_time_ms", allow_zero=True)

    ai_response = raw.get("ai_response")
    if ai_response is not None and not isinstance(ai_response, str):
        raise ValidationError("ai_metadata.ai_response must be a string")

    return AiMetadataDraft(
        user_prompt=prompt.strip(),
        ai_response=ai_response,
        confidence=float(confidence) if confidence is not None else None,
        processing_time_ms=processing,
    )


class TransactionEngine:
    """
    Keeps Transaction/TransactionItem aggregates consistent with stock.

    Collaborators are passed in: the session, the InventoryLedger that owns
    quantities, and an optional audit sink.
    """

    def __init__(self, session, ledger, audit=None, *, expense_reversal_floor_check: bool = False):
        self.session = session
        self.ledger = ledger
        self.audit = audit
        self.expense_reversal_floor_check = expense_reversal_floor_check

    def _record(self, actor_id, action: str, entity_id, changes: dict) -> None:
        if self.audit is not None and actor_id:
            self.audit.record(
                actor_id=actor_id,
                action=action,
                entity_type="Transaction",
                entity_id=entity_id,
                changes=changes,
            )

    # ------------------------------------------------------------------
    # Create
    # ------------------------------------------------------------------

    def _build_lines(self, tx_type: str, items) -> list[LineDraft]:
        if not isinstance(items, (list, tuple)):
            raise ValidationError("items must be a list")

        requested: list[tuple[int, int]] = []
        for index, raw in enumerate(items):
            if not isinstance(raw, dict):
                raise ValidationError(f"items[{index}] must be an object")
            item_id = raw.get("inventory_item_id")
            if isinstance(item_id, bool) or not isinstance(item_id, int):
                raise ValidationError(f"items[{index}].inventory_item_id must be an integer")
            quantity = require_quantity(raw.get("quantity"), f"items[{index}].quantity")
            requested.append((item_id, quantity))

        ids = {item_id for item_id, _ in requested}
        found = {
            item.id: item
            for item in self.session.query(InventoryItem).filter(InventoryItem.id.in_(ids)).all()
        } if ids else {}

        missing = sorted(i for i in ids if i not in found)
        inactive = sorted(i for i in ids if i in found and not found[i].is_active)
        if missing or inactive:
            raise ValidationError(
                "One or more inventory items not found or inactive",
                details={"missing": missing, "inactive": inactive},
            )

        lines = [
            LineDraft(
                inventory_item_id=item_id,
                item_label=found[item_id].label,
                quantity=quantity,
                unit_price_cents=found[item_id].unit_price_cents,
            )
            for item_id, quantity in requested
        ]

        if tx_type == "SALE":
            # Same item on several lines is checked against its combined quantity
            needed: dict[int, int] = {}
            for line in lines:
                needed[line.inventory_item_id] = needed.get(line.inventory_item_id, 0) + line.quantity
            for line in lines:
                item = found[line.inventory_item_id]
                total = needed.pop(line.inventory_item_id, None)
                if total is not None and total > item.quantity:
                    raise InsufficientStockError(
                        item_id=item.id,
                        item_label=item.label,
                        requested=total,
                        available=item.quantity,
                    )
        return lines

    def create_transaction(
        self,
        *,
        type: str,
        items,
        actor_id: str,
        payment_method: str | None = None,
        sales_agent: str | None = None,
        customer_name: str | None = None,
        notes: str | None = None,
        manual_total_amount=None,
        ai_metadata=None,
    ) -> Transaction:
        if type not in TRANSACTION_TYPES:
            raise ValidationError(
                f"type must be one of {', '.join(TRANSACTION_TYPES)}",
                details={"type": type},
            )
        items = items if items is not None else []
        manual_total_cents = (
            to_cents(manual_total_amount, "manual_total_amount")
            if manual_total_amount is not None
            else None
        )
        if not items and (type == "SALE" or manual_total_cents is None):
            raise ValidationError("At least one item is required unless an expense has a manual total")

        payment_method = _require_payment_method(payment_method)
        sales_agent = _optional_text(sales_agent, "sales_agent", 120)
        customer_name = _optional_text(customer_name, "customer_name", 255)
        notes = _optional_text(notes, "notes")
        metadata = _parse_ai_metadata(ai_metadata)

        lines = self._build_lines(type, items)
        computed_total = sum(line.subtotal_cents for line in lines)
        total_cents = manual_total_cents if manual_total_cents is not None else computed_total
        if total_cents > MAX_AMOUNT_CENTS:
            raise ValidationError(f"total amount cannot exceed {format_cents(MAX_AMOUNT_CENTS)}")

        def _op():
            with UnitOfWork(self.session):
                tx = Transaction(
                    type=type,
                    total_amount_cents=total_cents,
                    payment_method=payment_method,
                    sales_agent=sales_agent,
                    customer_name=customer_name,
                    notes=notes,
                    message_sent=False,
                    created_by=actor_id,
                    created_at=utcnow(),
                )
                for line in lines:
                    tx.items.append(
                        TransactionItem(
                            inventory_item_id=line.inventory_item_id,
                            quantity=line.quantity,
                            unit_price_cents=line.unit_price_cents,
                            subtotal_cents=line.subtotal_cents,
                        )
                    )
                if metadata is not None:
                    tx.ai_metadata = AiTransactionMetadata(
                        user_prompt=metadata.user_prompt,
                        ai_response=metadata.ai_response,
                        confidence=metadata.confidence,
                        processing_time_ms=metadata.processing_time_ms,
                    )
                self.session.add(tx)

                for line in lines:
                    if type == "SALE":
                        self.ledger.reserve_and_decrement(line.inventory_item_id, line.quantity)
                    else:
                        self.ledger.increment(line.inventory_item_id, line.quantity)
            return tx

        tx = run_with_retry(_op, session=self.session)
        current_app.logger.info(
            "Created %s transaction id=%s total=%s lines=%s",
            type, tx.id, format_cents(total_cents), len(lines),
        )
        self._record(
            actor_id,
            "CREATE_TRANSACTION",
            tx.id,
            {
                "type": type,
                "total_amount": format_cents(total_cents),
                "manual_total": manual_total_cents is not None,
                "items": [
                    {"inventory_item_id": line.inventory_item_id, "quantity": line.quantity}
                    for line in lines
                ],
            },
        )
        return tx

    # ------------------------------------------------------------------
    # Delete
    # ------------------------------------------------------------------

    def delete_transaction(self, transaction_id: int, *, actor_id: str | None = None) -> None:
        tx = self.session.get(Transaction, transaction_id)
        if tx is None:
            raise NotFoundError(
                f'Transaction with ID "{transaction_id}" not found',
                details={"transaction_id": transaction_id},
            )
        snapshot = tx.to_dict()

        def _op():
            with UnitOfWork(self.session):
                target = lock_for_update(
                    self.session.query(Transaction).filter_by(id=transaction_id)
                ).first()
                if target is None:
                    raise NotFoundError(
                        f'Transaction with ID "{transaction_id}" not found',
                        details={"transaction_id": transaction_id},
                    )
                for line in list(target.items):
                    if target.type == "SALE":
                        self.ledger.increment(line.inventory_item_id, line.quantity)
                    elif self.expense_reversal_floor_check:
                        self.ledger.reserve_and_decrement(line.inventory_item_id, line.quantity)
                    else:
                        self.ledger.force_decrement(line.inventory_item_id, line.quantity)
                self.session.delete(target)

        run_with_retry(_op, session=self.session)
        current_app.logger.info("Deleted %s transaction id=%s", snapshot["type"], transaction_id)
        self._record(actor_id, "DELETE_TRANSACTION", transaction_id, {"before": snapshot})

    # ------------------------------------------------------------------
    # Metadata update
    # ------------------------------------------------------------------

    def update_transaction(self, transaction_id: int, changes: dict, *, actor_id: str | None = None) -> Transaction:
        tx = self.get_transaction(transaction_id)

        unknown = sorted(set(changes) - set(UPDATABLE_FIELDS))
        if unknown:
            raise ValidationError(
                "Only payment_method, sales_agent, customer_name, notes and message_sent can be changed",
                details={"fields": unknown},
            )

        patch = {}
        if "payment_method" in changes:
            if changes["payment_method"] is None:
                raise ValidationError("payment_method cannot be empty")
            patch["payment_method"] = _require_payment_method(changes["payment_method"])
        if "sales_agent" in changes:
            patch["sales_agent"] = _optional_text(changes["sales_agent"], "sales_agent", 120)
        if "customer_name" in changes:
            patch["customer_name"] = _optional_text(changes["customer_name"], "customer_name", 255)
        if "notes" in changes:
            patch["notes"] = _optional_text(changes["notes"], "notes")
        if "message_sent" in changes:
            if not isinstance(changes["message_sent"], bool):
                raise ValidationError("message_sent must be a boolean")
            patch["message_sent"] = changes["message_sent"]

        diff = {
            key: {"from": getattr(tx, key), "to": value}
            for key, value in patch.items()
            if getattr(tx, key) != value
        }
        if not diff:
            return tx

        def _op():
            with UnitOfWork(self.session):
                target = self.get_transaction(transaction_id)
                for key, value in patch.items():
                    setattr(target, key, value)
            return target

        tx = run_with_retry(_op, session=self.session)
        self._record(actor_id, "UPDATE_TRANSACTION", transaction_id, diff)
        return tx

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_transaction(self, transaction_id: int) -> Transaction:
        tx = self.session.get(Transaction, transaction_id)
        if tx is None:
            raise NotFoundError(
                f'Transaction with ID "{transaction_id}" not found',
                details={"transaction_id": transaction_id},
            )
        return tx

    def list_transactions(
        self,
        *,
        type: str | None = None,
        start_date=None,
        end_date=None,
        page: int = 1,
        limit: int = 20,
    ) -> dict:
        q = self.session.query(Transaction)
        if type:
            if type not in TRANSACTION_TYPES:
                raise ValidationError(f"type must be one of {', '.join(TRANSACTION_TYPES)}")
            q = q.filter(Transaction.type == type)
        if start_date is not None:
            q = q.filter(Transaction.created_at >= start_date)
        if end_date is not None:
            q = q.filter(Transaction.created_at <= end_date)

        total = q.count()
        rows = (
            q.order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "data": [row.to_dict() for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }
