from __future__ import annotations

from ..extensions import db
from ..money import format_cents, from_cents
from flowershop.time_utils import to_utc_z


class InventoryItem(db.Model):
    """
    A stock-keeping line of the shop: one flower (name) at one quality tier.

    NATURAL KEY: (name, quality) is unique across active AND archived rows,
    so an archived item still blocks re-creating the same pair.

    QUANTITY: mutated only through services.inventory_service.InventoryLedger.
    Never assign `quantity` directly from other services; the ledger is the
    single place where the non-negative floor is enforced.

    ARCHIVE vs DELETE: items with transaction history can only be archived
    (is_active=False). Archived items still render on historical
    transactions but are rejected for new ones.
    """
    __tablename__ = "inventory_items"
    __table_args__ = (
        db.UniqueConstraint("name", "quality", name="uq_inventory_items_name_quality"),
        db.Index("ix_inventory_items_active_name", "is_active", "name"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    name = db.Column(db.String(120), nullable=False)
    quality = db.Column(db.String(64), nullable=False)

    quantity = db.Column(db.Integer, nullable=False, default=0)

    # Authoritative storage in cents (frontend may only format for display)
    unit_price_cents = db.Column(db.Integer, nullable=False)

    is_active = db.Column(db.Boolean, nullable=False, default=True)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    losses = db.relationship(
        "InventoryLoss",
        back_populates="inventory_item",
        lazy="dynamic",
        order_by="InventoryLoss.recorded_at.desc()",
    )

    def __repr__(self) -> str:
        return f"<InventoryItem id={self.id} name={self.name!r} quality={self.quality!r} qty={self.quantity}>"

    @property
    def label(self) -> str:
        return f"{self.name} ({self.quality})"

    @property
    def unit_price(self):
        return from_cents(self.unit_price_cents)

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "name": self.name,
            "quality": self.quality,
            "quantity": self.quantity,
            "unit_price": format_cents(self.unit_price_cents),
            "unit_price_cents": self.unit_price_cents,
            "is_active": self.is_active,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }


class InventoryLoss(db.Model):
    """
    Shrinkage record (expired, wilted, damaged, stolen stock).

    Created together with the matching ledger decrement and deleted together
    with the matching ledger increment. Never updated in place.
    """
    __tablename__ = "inventory_losses"
    __table_args__ = (
        db.Index("ix_inventory_losses_item_recorded", "inventory_item_id", "recorded_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)
    inventory_item_id = db.Column(
        db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True
    )

    quantity = db.Column(db.Integer, nullable=False)
    reason = db.Column(db.String(64), nullable=False)
    notes = db.Column(db.Text, nullable=True)

    # Opaque actor attribution (email of the authenticated user)
    recorded_by = db.Column(db.String(255), nullable=False)
    recorded_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    inventory_item = db.relationship("InventoryItem", back_populates="losses")

    def to_dict(self, include_item: bool = False) -> dict:
        data = {
            "id": self.id,
            "inventory_item_id": self.inventory_item_id,
            "quantity": self.quantity,
            "reason": self.reason,
            "notes": self.notes,
            "recorded_by": self.recorded_by,
            "recorded_at": to_utc_z(self.recorded_at),
        }
        if include_item and self.inventory_item is not None:
            data["inventory_item"] = {
                "id": self.inventory_item.id,
                "name": self.inventory_item.name,
                "quality": self.inventory_item.quality,
            }
        return data
