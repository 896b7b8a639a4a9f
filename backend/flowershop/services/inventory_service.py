# Overview: Service-layer operations for inventory; the ledger that owns stock quantities plus catalogue CRUD.

from __future__ import annotations

from flask import current_app
from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError

from ..errors import (
    ConflictError,
    HasHistoryError,
    InsufficientStockError,
    NotFoundError,
    ValidationError,
)
from ..models import InventoryItem, InventoryLoss, TransactionItem
from ..money import format_cents, to_cents
from .concurrency import UnitOfWork, run_with_retry
"""
Flower Shop Inventory Invariants (authoritative)

Stock model:
- InventoryItem.quantity is the stored on-hand count.
- Every change to it goes through InventoryLedger; no other module assigns
  the column.

Business invariants:
- quantity >= 0 after every checked decrement (sales, losses) and every
  manual correction.
- Decrements are a single conditional UPDATE:
      quantity = quantity - n WHERE id = :id AND quantity >= n
  so the sufficiency check and the write cannot be split by a concurrent
  writer, whatever the isolation level of the backend.
- (name, quality) is unique across active and archived rows.

Lifecycle:
- Archive (is_active=False) is the only removal for items with
  transaction history. Archiving twice is a no-op.
- Hard delete is allowed only when no TransactionItem references the
  item; its loss records go with it.

Atomicity:
- Ledger methods never commit. Callers wrap them in a UnitOfWork together
  with the rows that justify the stock change.
"""


def _require_text(value, field: str, max_length: int) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    value = value.strip()
    if len(value) > max_length:
        raise ValidationError(f"{field} must be at most {max_length} characters")
    return value


def require_quantity(value, field: str = "quantity", *, allow_zero: bool = False) -> int:
    """Stock quantities are whole units; booleans and floats like 2.5 are rejected."""
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    if not isinstance(value, int):
        raise ValidationError(f"{field} must be an integer")
    if allow_zero and value < 0:
        raise ValidationError(f"{field} must be >= 0")
    if not allow_zero and value <= 0:
        raise ValidationError(f"{field} must be > 0")
    return value


class InventoryLedger:
    """
    Single owner of InventoryItem.quantity.

    Stock methods (reserve_and_decrement, increment, force_decrement,
    set_quantity) only stage statements on the session. Catalogue methods
    (create_item, update_item, archive, delete) run their own unit of work
    and report to the audit sink after commit.
    """

    def __init__(self, session, audit=None):
        self.session = session
        self.audit = audit

    # ------------------------------------------------------------------
    # Stock mutations (no commit)
    # ------------------------------------------------------------------

    def _refreshed(self, item_id: int) -> InventoryItem | None:
        return self.session.get(InventoryItem, item_id, populate_existing=True)

    def reserve_and_decrement(self, item_id: int, quantity: int) -> int:
        """Take `quantity` units out of stock or raise InsufficientStockError. Returns the new quantity."""
        quantity = require_quantity(quantity)
        stmt = (
            update(InventoryItem)
            .where(InventoryItem.id == item_id, InventoryItem.quantity >= quantity)
            .values(quantity=InventoryItem.quantity - quantity)
        )
        result = self.session.execute(stmt, execution_options={"synchronize_session": False})

        item = self._refreshed(item_id)
        if item is None:
            raise NotFoundError(f"Inventory item {item_id} not found", details={"item_id": item_id})
        if result.rowcount == 0:
            raise InsufficientStockError(
                item_id=item.id,
                item_label=item.label,
                requested=quantity,
                available=item.quantity,
            )
        return item.quantity

    def increment(self, item_id: int, quantity: int) -> int:
        quantity = require_quantity(quantity)
        stmt = (
            update(InventoryItem)
            .where(InventoryItem.id == item_id)
            .values(quantity=InventoryItem.quantity + quantity)
        )
        result = self.session.execute(stmt, execution_options={"synchronize_session": False})
        if result.rowcount == 0:
            raise NotFoundError(f"Inventory item {item_id} not found", details={"item_id": item_id})
        return self._refreshed(item_id).quantity

    def force_decrement(self, item_id: int, quantity: int) -> int:
        """
        Decrement without the floor check.

        Only used when deleting an EXPENSE with the floor check disabled:
        the purchased units may have been sold since, so the result can be
        negative.
        """
        quantity = require_quantity(quantity)
        stmt = (
            update(InventoryItem)
            .where(InventoryItem.id == item_id)
            .values(quantity=InventoryItem.quantity - quantity)
        )
        result = self.session.execute(stmt, execution_options={"synchronize_session": False})
        if result.rowcount == 0:
            raise NotFoundError(f"Inventory item {item_id} not found", details={"item_id": item_id})

        item = self._refreshed(item_id)
        if item.quantity < 0:
            current_app.logger.warning(
                "Stock for %s (id=%s) is negative after reversing %s purchased units: %s",
                item.label, item.id, quantity, item.quantity,
            )
        return item.quantity

    def set_quantity(self, item_id: int, quantity: int) -> int:
        """Manual stock correction (physical count)."""
        quantity = require_quantity(quantity, allow_zero=True)
        stmt = update(InventoryItem).where(InventoryItem.id == item_id).values(quantity=quantity)
        result = self.session.execute(stmt, execution_options={"synchronize_session": False})
        if result.rowcount == 0:
            raise NotFoundError(f"Inventory item {item_id} not found", details={"item_id": item_id})
        return self._refreshed(item_id).quantity

    # ------------------------------------------------------------------
    # Catalogue
    # ------------------------------------------------------------------

    def _get_or_404(self, item_id: int) -> InventoryItem:
        item = self.session.get(InventoryItem, item_id)
        if item is None:
            raise NotFoundError(f"Inventory item {item_id} not found", details={"item_id": item_id})
        return item

    def _find_by_key(self, name: str, quality: str) -> InventoryItem | None:
        return (
            self.session.query(InventoryItem)
            .filter(InventoryItem.name == name, InventoryItem.quality == quality)
            .first()
        )

    def _conflict(self, name: str, quality: str) -> ConflictError:
        return ConflictError(
            f'Inventory item "{name}" with quality "{quality}" already exists',
            details={"name": name, "quality": quality},
        )

    def _record(self, actor_id, action: str, entity_id, changes: dict) -> None:
        if self.audit is not None and actor_id:
            self.audit.record(
                actor_id=actor_id,
                action=action,
                entity_type="InventoryItem",
                entity_id=entity_id,
                changes=changes,
            )

    def create_item(self, name, quality, quantity, unit_price, *, actor_id: str | None = None) -> InventoryItem:
        name = _require_text(name, "name", 120)
        quality = _require_text(quality, "quality", 64)
        quantity = require_quantity(quantity, allow_zero=True)
        unit_price_cents = to_cents(unit_price, "unit_price")

        if self._find_by_key(name, quality) is not None:
            raise self._conflict(name, quality)

        def _op():
            item = InventoryItem(
                name=name,
                quality=quality,
                quantity=quantity,
                unit_price_cents=unit_price_cents,
                is_active=True,
            )
            try:
                with UnitOfWork(self.session):
                    self.session.add(item)
            except IntegrityError:
                # Lost a race with a concurrent create of the same pair
                raise self._conflict(name, quality)
            return item

        item = run_with_retry(_op, session=self.session)
        self._record(actor_id, "CREATE_INVENTORY", item.id, {"after": item.to_dict()})
        return item

    def update_item(
        self,
        item_id: int,
        *,
        name=None,
        quality=None,
        unit_price=None,
        quantity=None,
        actor_id: str | None = None,
    ) -> InventoryItem:
        item = self._get_or_404(item_id)

        new_name = _require_text(name, "name", 120) if name is not None else item.name
        new_quality = _require_text(quality, "quality", 64) if quality is not None else item.quality
        new_price_cents = to_cents(unit_price, "unit_price") if unit_price is not None else None
        new_quantity = require_quantity(quantity, allow_zero=True) if quantity is not None else None

        if (new_name, new_quality) != (item.name, item.quality):
            existing = self._find_by_key(new_name, new_quality)
            if existing is not None and existing.id != item.id:
                raise self._conflict(new_name, new_quality)

        before = item.to_dict()

        def _op():
            try:
                with UnitOfWork(self.session):
                    target = self._get_or_404(item_id)
                    target.name = new_name
                    target.quality = new_quality
                    if new_price_cents is not None:
                        target.unit_price_cents = new_price_cents
                    if new_quantity is not None:
                        self.set_quantity(item_id, new_quantity)
            except IntegrityError:
                raise self._conflict(new_name, new_quality)
            return self._refreshed(item_id)

        item = run_with_retry(_op, session=self.session)

        after = item.to_dict()
        changes = {
            key: {"from": before[key], "to": after[key]}
            for key in ("name", "quality", "quantity", "unit_price")
            if before[key] != after[key]
        }
        if changes:
            self._record(actor_id, "UPDATE_INVENTORY", item.id, changes)
        return item

    def archive(self, item_id: int, *, actor_id: str | None = None) -> InventoryItem:
        item = self._get_or_404(item_id)
        if not item.is_active:
            return item

        def _op():
            with UnitOfWork(self.session):
                target = self._get_or_404(item_id)
                target.is_active = False
            return target

        item = run_with_retry(_op, session=self.session)
        self._record(actor_id, "ARCHIVE_INVENTORY", item.id, {"is_active": {"from": True, "to": False}})
        return item

    def delete(self, item_id: int, *, actor_id: str | None = None) -> None:
        item = self._get_or_404(item_id)

        usage = (
            self.session.query(func.count(TransactionItem.id))
            .filter(TransactionItem.inventory_item_id == item_id)
            .scalar()
        )
        if usage:
            raise HasHistoryError(
                f"Cannot delete {item.label}: it appears on {usage} transaction line(s). Archive it instead.",
                details={"item_id": item_id, "transaction_items": int(usage)},
            )
        snapshot = item.to_dict()

        def _op():
            with UnitOfWork(self.session):
                self.session.query(InventoryLoss).filter(
                    InventoryLoss.inventory_item_id == item_id
                ).delete(synchronize_session=False)
                self.session.delete(self._get_or_404(item_id))

        run_with_retry(_op, session=self.session)
        self._record(actor_id, "DELETE_INVENTORY", item_id, {"before": snapshot})

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get_item(self, item_id: int, *, recent_losses: int = 10) -> dict:
        item = self._get_or_404(item_id)
        data = item.to_dict()
        data["losses"] = [loss.to_dict() for loss in item.losses.limit(recent_losses).all()]
        return data

    def list_items(
        self,
        *,
        search: str | None = None,
        quality: str | None = None,
        is_active: bool | None = None,
        page: int = 1,
        limit: int = 50,
    ) -> dict:
        q = self.session.query(InventoryItem)
        if search:
            q = q.filter(func.lower(InventoryItem.name).contains(search.strip().lower(), autoescape=True))
        if quality:
            q = q.filter(InventoryItem.quality == quality)
        if is_active is not None:
            q = q.filter(InventoryItem.is_active == is_active)

        total = q.count()
        rows = (
            q.order_by(InventoryItem.name.asc(), InventoryItem.quality.asc())
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

    def stock_value_cents(self) -> int:
        """Value of active stock at current prices."""
        value = (
            self.session.query(
                func.coalesce(func.sum(InventoryItem.quantity * InventoryItem.unit_price_cents), 0)
            )
            .filter(InventoryItem.is_active.is_(True))
            .scalar()
        )
        return int(value or 0)


def describe_stock_value(session) -> str:
    return format_cents(InventoryLedger(session).stock_value_cents())
