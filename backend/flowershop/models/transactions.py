from __future__ import annotations

from ..extensions import db
from ..money import format_cents, from_cents
from flowershop.time_utils import to_utc_z


TRANSACTION_TYPES = ("SALE", "EXPENSE")
PAYMENT_METHODS = ("CASH", "BANK_TRANSFER")


class Transaction(db.Model):
    """
    Financial transaction header (sale or expense).

    LINE ITEMS ARE FIXED: items are written once, in the same unit of work
    that applies their stock deltas. Only metadata (payment method, agent,
    customer, notes, message_sent) may change afterwards. To change items,
    delete (which reverses stock) and create again.

    TOTAL: total_amount_cents is the sum of line subtotals unless the caller
    supplied a manual total (expenses not tied to stock, e.g. rent).
    """
    __tablename__ = "transactions"
    __table_args__ = (
        db.Index("ix_transactions_type_created", "type", "created_at"),
        {"sqlite_autoincrement": True},
    )

    id = db.Column(db.Integer, primary_key=True)

    type = db.Column(db.String(16), nullable=False, index=True)
    total_amount_cents = db.Column(db.Integer, nullable=False)
    payment_method = db.Column(db.String(32), nullable=False, default="CASH")

    sales_agent = db.Column(db.String(120), nullable=True)
    customer_name = db.Column(db.String(255), nullable=True)
    notes = db.Column(db.Text, nullable=True)
    message_sent = db.Column(db.Boolean, nullable=False, default=False)

    created_by = db.Column(db.String(255), nullable=False)

    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now(), index=True)
    updated_at = db.Column(
        db.DateTime(timezone=True),
        nullable=False,
        server_default=db.func.now(),
        onupdate=db.func.now(),
    )

    items = db.relationship(
        "TransactionItem",
        back_populates="transaction",
        cascade="all, delete-orphan",
        order_by="TransactionItem.id",
    )
    ai_metadata = db.relationship(
        "AiTransactionMetadata",
        back_populates="transaction",
        cascade="all, delete-orphan",
        uselist=False,
    )

    def __repr__(self) -> str:
        return f"<Transaction id={self.id} type={self.type} total_cents={self.total_amount_cents}>"

    @property
    def total_amount(self):
        return from_cents(self.total_amount_cents)

    def to_dict(self, include_items: bool = True) -> dict:
        data = {
            "id": self.id,
            "type": self.type,
            "total_amount": format_cents(self.total_amount_cents),
            "total_amount_cents": self.total_amount_cents,
            "payment_method": self.payment_method,
            "sales_agent": self.sales_agent,
            "customer_name": self.customer_name,
            "notes": self.notes,
            "message_sent": self.message_sent,
            "created_by": self.created_by,
            "created_at": to_utc_z(self.created_at),
            "updated_at": to_utc_z(self.updated_at),
        }
        if include_items:
            data["items"] = [item.to_dict() for item in self.items]
            data["ai_metadata"] = self.ai_metadata.to_dict() if self.ai_metadata is not None else None
        return data


class TransactionItem(db.Model):
    """Line item; unit price is a snapshot taken when the transaction was created."""
    __tablename__ = "transaction_items"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    inventory_item_id = db.Column(
        db.Integer, db.ForeignKey("inventory_items.id"), nullable=False, index=True
    )

    quantity = db.Column(db.Integer, nullable=False)
    unit_price_cents = db.Column(db.Integer, nullable=False)
    subtotal_cents = db.Column(db.Integer, nullable=False)

    transaction = db.relationship("Transaction", back_populates="items")
    inventory_item = db.relationship("InventoryItem")

    @property
    def subtotal(self):
        return from_cents(self.subtotal_cents)

    def to_dict(self) -> dict:
        item = self.inventory_item
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "inventory_item_id": self.inventory_item_id,
            "item_name": item.name if item is not None else None,
            "quality": item.quality if item is not None else None,
            "quantity": self.quantity,
            "unit_price": format_cents(self.unit_price_cents),
            "subtotal": format_cents(self.subtotal_cents),
        }


class AiTransactionMetadata(db.Model):
    """Provenance of a transaction drafted by the natural-language parser."""
    __tablename__ = "ai_transaction_metadata"
    __table_args__ = {"sqlite_autoincrement": True}

    id = db.Column(db.Integer, primary_key=True)
    transaction_id = db.Column(
        db.Integer,
        db.ForeignKey("transactions.id", ondelete="CASCADE"),
        nullable=False,
        unique=True,
    )
    user_prompt = db.Column(db.Text, nullable=False)
    ai_response = db.Column(db.Text, nullable=True)
    confidence = db.Column(db.Float, nullable=True)
    processing_time_ms = db.Column(db.Integer, nullable=True)
    created_at = db.Column(db.DateTime(timezone=True), nullable=False, server_default=db.func.now())

    transaction = db.relationship("Transaction", back_populates="ai_metadata")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "transaction_id": self.transaction_id,
            "user_prompt": self.user_prompt,
            "ai_response": self.ai_response,
            "confidence": self.confidence,
            "processing_time_ms": self.processing_time_ms,
            "created_at": to_utc_z(self.created_at),
        }
