"""
Transaction engine tests.

Verifies:
- SALE decrements and EXPENSE increments stock in the same unit of work
  as the transaction rows
- Any insufficient line aborts the whole transaction
- Delete reverses stock for both types
- Only metadata can change after creation
"""

import pytest
from sqlalchemy import update

from flowershop.errors import InsufficientStockError, NotFoundError, ValidationError
from flowershop.models import (
    AiTransactionMetadata,
    AuditLog,
    InventoryItem,
    Transaction,
    TransactionItem,
)
from flowershop.services.transaction_service import LineDraft


STAFF = "staff@flowershop.test"


def qty(db_session, item_id):
    return db_session.get(InventoryItem, item_id, populate_existing=True).quantity


def sale(engine, *lines, **kwargs):
    return engine.create_transaction(
        type="SALE",
        items=[{"inventory_item_id": item_id, "quantity": quantity} for item_id, quantity in lines],
        actor_id=STAFF,
        **kwargs,
    )


def expense(engine, *lines, **kwargs):
    return engine.create_transaction(
        type="EXPENSE",
        items=[{"inventory_item_id": item_id, "quantity": quantity} for item_id, quantity in lines],
        actor_id=STAFF,
        **kwargs,
    )


# =============================================================================
# CREATE
# =============================================================================


class TestCreateSale:

    def test_sale_totals_and_decrements(self, db_session, engine, make_item):
        rosa = make_item("Rosa", "Premium", 50, "2.50")

        tx = sale(engine, (rosa.id, 12))

        assert tx.total_amount_cents == 3000
        assert tx.to_dict()["total_amount"] == "30.00"
        assert tx.payment_method == "CASH"
        assert tx.created_by == STAFF
        assert qty(db_session, rosa.id) == 38

    def test_exact_depletion(self, db_session, engine, make_item):
        rosa = make_item(quantity=7)
        sale(engine, (rosa.id, 7))
        assert qty(db_session, rosa.id) == 0

    def test_one_over_stock_fails(self, db_session, engine, make_item):
        rosa = make_item(quantity=5)

        with pytest.raises(InsufficientStockError) as exc:
            sale(engine, (rosa.id, 6))

        assert exc.value.available == 5
        assert exc.value.requested == 6
        assert qty(db_session, rosa.id) == 5
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(TransactionItem).count() == 0

    def test_failing_line_aborts_all_lines(self, db_session, engine, make_item):
        a = make_item("Rosa", "Premium", 10)
        b = make_item("Girasol", "Premium", 1)

        with pytest.raises(InsufficientStockError) as exc:
            sale(engine, (a.id, 5), (b.id, 2))

        assert exc.value.item_id == b.id
        assert qty(db_session, a.id) == 10
        assert qty(db_session, b.id) == 1
        assert db_session.query(TransactionItem).count() == 0

    def test_line_drained_after_validation_rolls_back_staged_lines(self, db_session, engine, make_item, monkeypatch):
        a = make_item("Rosa", "Premium", 10)
        b = make_item("Girasol", "Premium", 3)
        validate = engine._build_lines

        def build_then_drain(tx_type, items):
            lines = validate(tx_type, items)
            # a concurrent sale takes every Girasol once the lines are checked
            db_session.execute(update(InventoryItem).where(InventoryItem.id == b.id).values(quantity=0))
            db_session.commit()
            return lines

        monkeypatch.setattr(engine, "_build_lines", build_then_drain)

        with pytest.raises(InsufficientStockError) as exc:
            sale(engine, (a.id, 5), (b.id, 2))

        assert exc.value.item_id == b.id
        assert exc.value.available == 0
        assert qty(db_session, a.id) == 10
        assert qty(db_session, b.id) == 0
        assert db_session.query(Transaction).count() == 0
        assert db_session.query(TransactionItem).count() == 0

    def test_duplicate_lines_are_checked_together(self, db_session, engine, make_item):
        rosa = make_item(quantity=5)

        with pytest.raises(InsufficientStockError) as exc:
            sale(engine, (rosa.id, 3), (rosa.id, 3))

        assert exc.value.requested == 6
        assert qty(db_session, rosa.id) == 5

    def test_duplicate_lines_within_stock(self, db_session, engine, make_item):
        rosa = make_item(quantity=5)
        tx = sale(engine, (rosa.id, 2), (rosa.id, 3))
        assert len(tx.items) == 2
        assert qty(db_session, rosa.id) == 0

    def test_price_is_snapshotted(self, db_session, engine, ledger, make_item):
        rosa = make_item(quantity=10, unit_price="2.50")
        tx = sale(engine, (rosa.id, 2))

        ledger.update_item(rosa.id, unit_price="9.99")

        line = db_session.get(Transaction, tx.id).items[0]
        assert line.unit_price_cents == 250
        assert line.subtotal_cents == 500

    def test_subtotals_sum_to_total(self, engine, make_item):
        a = make_item("Rosa", "Premium", 10, "2.50")
        b = make_item("Clavel", "Standard", 10, "0.80")

        tx = sale(engine, (a.id, 3), (b.id, 4))

        assert sum(line.subtotal_cents for line in tx.items) == tx.total_amount_cents == 1070

    def test_manual_total_overrides(self, engine, make_item):
        rosa = make_item(quantity=10, unit_price="2.50")
        tx = sale(engine, (rosa.id, 4), manual_total_amount="9.00")
        assert tx.total_amount_cents == 900
        assert sum(line.subtotal_cents for line in tx.items) == 1000

    def test_archived_item_rejected(self, engine, ledger, make_item):
        rosa = make_item(quantity=10)
        ledger.archive(rosa.id)

        with pytest.raises(ValidationError) as exc:
            sale(engine, (rosa.id, 1))
        assert exc.value.details["inactive"] == [rosa.id]

    def test_missing_item_rejected(self, engine):
        with pytest.raises(ValidationError) as exc:
            sale(engine, (424242, 1))
        assert exc.value.details["missing"] == [424242]

    def test_sale_requires_items(self, engine):
        with pytest.raises(ValidationError):
            engine.create_transaction(type="SALE", items=[], actor_id=STAFF, manual_total_amount="5")

    @pytest.mark.parametrize("bad", [0, -1, 1.5, "2", None])
    def test_rejects_bad_line_quantity(self, engine, make_item, bad):
        rosa = make_item(quantity=10)
        with pytest.raises(ValidationError):
            sale(engine, (rosa.id, bad))

    def test_rejects_unknown_type(self, engine, make_item):
        rosa = make_item(quantity=10)
        with pytest.raises(ValidationError):
            engine.create_transaction(
                type="REFUND", items=[{"inventory_item_id": rosa.id, "quantity": 1}], actor_id=STAFF
            )

    def test_rejects_unknown_payment_method(self, engine, make_item):
        rosa = make_item(quantity=10)
        with pytest.raises(ValidationError):
            sale(engine, (rosa.id, 1), payment_method="CARD")

    def test_ai_metadata_is_stored(self, db_session, engine, make_item):
        rosa = make_item(quantity=10)
        tx = sale(
            engine,
            (rosa.id, 2),
            ai_metadata={
                "user_prompt": "2 rosas total $5 juan",
                "ai_response": "{}",
                "confidence": 0.8,
                "processing_time_ms": 120,
            },
        )

        meta = db_session.query(AiTransactionMetadata).filter_by(transaction_id=tx.id).one()
        assert meta.user_prompt == "2 rosas total $5 juan"
        assert tx.to_dict()["ai_metadata"]["confidence"] == 0.8

    def test_ai_metadata_confidence_range(self, engine, make_item):
        rosa = make_item(quantity=10)
        with pytest.raises(ValidationError):
            sale(engine, (rosa.id, 1), ai_metadata={"user_prompt": "x", "confidence": 1.5})

    def test_create_is_audited(self, db_session, engine, make_item):
        rosa = make_item(quantity=10)
        tx = sale(engine, (rosa.id, 1))
        entry = db_session.query(AuditLog).filter_by(action="CREATE_TRANSACTION").one()
        assert entry.entity_id == str(tx.id)
        assert entry.changes["items"] == [{"inventory_item_id": rosa.id, "quantity": 1}]


class TestCreateExpense:

    def test_expense_increments_without_check(self, db_session, engine, make_item):
        rosa = make_item(quantity=5)
        expense(engine, (rosa.id, 100))
        assert qty(db_session, rosa.id) == 105

    def test_expense_with_manual_total_and_no_items(self, db_session, engine):
        tx = engine.create_transaction(
            type="EXPENSE", items=[], actor_id=STAFF, manual_total_amount="1200.00", notes="Rent"
        )
        assert tx.total_amount_cents == 120000
        assert tx.items == []

    def test_expense_without_items_or_total(self, engine):
        with pytest.raises(ValidationError):
            engine.create_transaction(type="EXPENSE", items=[], actor_id=STAFF)


# =============================================================================
# DELETE
# =============================================================================


class TestDelete:

    def test_delete_sale_restores_stock(self, db_session, engine, make_item):
        rosa = make_item(quantity=50)
        tx = sale(engine, (rosa.id, 12))
        tx_id = tx.id

        engine.delete_transaction(tx_id, actor_id=STAFF)

        assert qty(db_session, rosa.id) == 50
        assert db_session.get(Transaction, tx_id) is None
        assert db_session.query(TransactionItem).filter_by(transaction_id=tx_id).count() == 0
        with pytest.raises(NotFoundError):
            engine.get_transaction(tx_id)

    def test_delete_expense_round_trip(self, db_session, engine, make_item):
        a = make_item("Rosa", "Premium", 5)
        b = make_item("Lirio", "Premium", 0)
        tx = expense(engine, (a.id, 10), (b.id, 3))

        engine.delete_transaction(tx.id)

        assert qty(db_session, a.id) == 5
        assert qty(db_session, b.id) == 0

    def test_delete_removes_ai_metadata(self, db_session, engine, make_item):
        rosa = make_item(quantity=10)
        tx = sale(engine, (rosa.id, 1), ai_metadata={"user_prompt": "1 rosa"})

        engine.delete_transaction(tx.id)

        assert db_session.query(AiTransactionMetadata).count() == 0

    def test_expense_reversal_can_go_negative(self, db_session, engine, make_item):
        rosa = make_item(quantity=0)
        purchase = expense(engine, (rosa.id, 10))
        sale(engine, (rosa.id, 8))

        engine.delete_transaction(purchase.id)

        assert qty(db_session, rosa.id) == -8

    def test_expense_reversal_with_floor_check(self, db_session, ledger, audit, make_item):
        from flowershop.services.transaction_service import TransactionEngine

        engine = TransactionEngine(db_session, ledger, audit, expense_reversal_floor_check=True)
        rosa = make_item(quantity=0)
        purchase = expense(engine, (rosa.id, 10))
        sale(engine, (rosa.id, 8))

        with pytest.raises(InsufficientStockError):
            engine.delete_transaction(purchase.id)

        assert qty(db_session, rosa.id) == 2
        assert db_session.get(Transaction, purchase.id) is not None

    def test_delete_unknown(self, engine):
        with pytest.raises(NotFoundError):
            engine.delete_transaction(99999)


# =============================================================================
# METADATA UPDATE
# =============================================================================


class TestUpdate:

    def test_update_metadata(self, db_session, engine, make_item):
        rosa = make_item(quantity=10)
        tx = sale(engine, (rosa.id, 2))

        updated = engine.update_transaction(
            tx.id,
            {"payment_method": "BANK_TRANSFER", "customer_name": "Ana", "message_sent": True},
            actor_id=STAFF,
        )

        assert updated.payment_method == "BANK_TRANSFER"
        assert updated.customer_name == "Ana"
        assert updated.message_sent is True
        assert qty(db_session, rosa.id) == 8
        entry = db_session.query(AuditLog).filter_by(action="UPDATE_TRANSACTION").one()
        assert entry.changes["payment_method"] == {"from": "CASH", "to": "BANK_TRANSFER"}

    def test_update_rejects_items(self, engine, make_item):
        rosa = make_item(quantity=10)
        tx = sale(engine, (rosa.id, 2))
        with pytest.raises(ValidationError):
            engine.update_transaction(tx.id, {"items": []})

    def test_update_rejects_null_payment_method(self, engine, make_item):
        rosa = make_item(quantity=10)
        tx = sale(engine, (rosa.id, 2))
        with pytest.raises(ValidationError):
            engine.update_transaction(tx.id, {"payment_method": None})

    def test_noop_update_not_audited(self, db_session, engine, make_item):
        rosa = make_item(quantity=10)
        tx = sale(engine, (rosa.id, 2))
        engine.update_transaction(tx.id, {"payment_method": "CASH"}, actor_id=STAFF)
        assert db_session.query(AuditLog).filter_by(action="UPDATE_TRANSACTION").count() == 0


# =============================================================================
# READS
# =============================================================================


class TestList:

    def test_filter_by_type_newest_first(self, engine, make_item):
        rosa = make_item(quantity=10)
        first = sale(engine, (rosa.id, 1))
        expense(engine, (rosa.id, 1))
        second = sale(engine, (rosa.id, 1))

        result = engine.list_transactions(type="SALE")

        assert result["total"] == 2
        assert [row["id"] for row in result["data"]] == [second.id, first.id]

    def test_invalid_type_filter(self, engine):
        with pytest.raises(ValidationError):
            engine.list_transactions(type="GIFT")


def test_line_draft_subtotal():
    line = LineDraft(inventory_item_id=1, item_label="Rosa (Premium)", quantity=3, unit_price_cents=250)
    assert line.subtotal_cents == 750
