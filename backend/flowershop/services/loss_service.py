# Overview: Service-layer operations for inventory losses (shrinkage) and their reversal.

from __future__ import annotations

from ..errors import InsufficientStockError, NotFoundError, ValidationError
from ..models import InventoryItem, InventoryLoss
from flowershop.time_utils import utcnow
from .concurrency import UnitOfWork, lock_for_update, run_with_retry
from .inventory_service import require_quantity


LOSS_REASONS = ("Expired", "Damaged", "Wilted", "Stolen", "Other")


class LossRecorder:
    """
    Records shrinkage and keeps the ledger in step with it.

    record_loss: loss row + checked decrement, one unit of work.
    reverse_loss: increment + loss row delete, one unit of work. Reversal has
    no upper bound; the loss itself proves the units once existed.
    """

    def __init__(self, session, ledger, audit=None):
        self.session = session
        self.ledger = ledger
        self.audit = audit

    def _record(self, actor_id, action: str, entity_id, changes: dict) -> None:
        if self.audit is not None and actor_id:
            self.audit.record(
                actor_id=actor_id,
                action=action,
                entity_type="InventoryLoss",
                entity_id=entity_id,
                changes=changes,
            )

    def record_loss(self, item_id: int, quantity, reason, notes=None, *, actor_id: str) -> InventoryLoss:
        quantity = require_quantity(quantity)
        if not isinstance(reason, str) or not reason.strip():
            raise ValidationError("reason is required", details={"known_reasons": list(LOSS_REASONS)})
        reason = reason.strip()[:64]
        if notes is not None and not isinstance(notes, str):
            raise ValidationError("notes must be a string")

        item = self.session.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError(f"Inventory item {item_id} not found", details={"item_id": item_id})
        if quantity > item.quantity:
            raise InsufficientStockError(
                item_id=item.id,
                item_label=item.label,
                requested=quantity,
                available=item.quantity,
            )

        def _op():
            with UnitOfWork(self.session):
                # Decrement first: a concurrent sale that got there before us
                # fails this step and nothing is written.
                remaining = self.ledger.reserve_and_decrement(item_id, quantity)
                loss = InventoryLoss(
                    inventory_item_id=item_id,
                    quantity=quantity,
                    reason=reason,
                    notes=notes or None,
                    recorded_by=actor_id,
                    recorded_at=utcnow(),
                )
                self.session.add(loss)
            return loss, remaining

        loss, remaining = run_with_retry(_op, session=self.session)
        self._record(
            actor_id,
            "ADD_INVENTORY_LOSS",
            loss.id,
            {
                "inventory_item_id": item_id,
                "quantity": quantity,
                "reason": reason,
                "remaining_quantity": remaining,
            },
        )
        return loss

    def reverse_loss(self, loss_id: int, *, actor_id: str | None = None) -> int:
        """Delete a loss and put its units back. Returns the restored quantity."""
        loss = self.session.get(InventoryLoss, loss_id)
        if loss is None:
            raise NotFoundError(f"Inventory loss {loss_id} not found", details={"loss_id": loss_id})
        snapshot = loss.to_dict()

        def _op():
            with UnitOfWork(self.session):
                target = lock_for_update(self.session.query(InventoryLoss).filter_by(id=loss_id)).first()
                if target is None:
                    raise NotFoundError(f"Inventory loss {loss_id} not found", details={"loss_id": loss_id})
                restored = self.ledger.increment(target.inventory_item_id, target.quantity)
                self.session.delete(target)
            return restored

        restored = run_with_retry(_op, session=self.session)
        self._record(
            actor_id,
            "REVERSE_INVENTORY_LOSS",
            loss_id,
            {"before": snapshot, "restored_quantity": restored},
        )
        return restored

    def list_losses(self, item_id: int) -> list[InventoryLoss]:
        if self.session.get(InventoryItem, item_id) is None:
            raise NotFoundError(f"Inventory item {item_id} not found", details={"item_id": item_id})
        return (
            self.session.query(InventoryLoss)
            .filter(InventoryLoss.inventory_item_id == item_id)
            .order_by(InventoryLoss.recorded_at.desc(), InventoryLoss.id.desc())
            .all()
        )

    def loss_history(self, *, page: int = 1, limit: int = 20) -> dict:
        q = self.session.query(InventoryLoss)
        total = q.count()
        rows = (
            q.order_by(InventoryLoss.recorded_at.desc(), InventoryLoss.id.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return {
            "data": [row.to_dict(include_item=True) for row in rows],
            "total": total,
            "page": page,
            "limit": limit,
            "total_pages": (total + limit - 1) // limit,
        }
