"""
Loss recorder tests.

Verifies:
- A loss and its stock decrement are written together or not at all
- Losses larger than stock are refused without side effects
- Reversal restores exactly the lost units and removes the record
"""

import pytest
from sqlalchemy import update

from flowershop.errors import InsufficientStockError, NotFoundError, ValidationError
from flowershop.models import AuditLog, InventoryItem, InventoryLoss
from flowershop.services.concurrency import UnitOfWork


STAFF = "staff@flowershop.test"


class TestRecordLoss:

    def test_loss_decrements_stock(self, db_session, recorder, make_item):
        item = make_item(quantity=20)

        loss = recorder.record_loss(item.id, 5, "Wilted", "left outside", actor_id=STAFF)

        assert loss.id is not None
        assert loss.quantity == 5
        assert loss.reason == "Wilted"
        assert loss.notes == "left outside"
        assert loss.recorded_by == STAFF
        assert db_session.get(InventoryItem, item.id).quantity == 15

    def test_loss_of_entire_stock(self, db_session, recorder, make_item):
        item = make_item(quantity=4)
        recorder.record_loss(item.id, 4, "Expired", actor_id=STAFF)
        assert db_session.get(InventoryItem, item.id).quantity == 0

    def test_loss_larger_than_stock_changes_nothing(self, db_session, recorder, make_item):
        item = make_item(quantity=4)

        with pytest.raises(InsufficientStockError) as exc:
            recorder.record_loss(item.id, 5, "Expired", actor_id=STAFF)

        assert exc.value.details["deficit"] == 1
        assert db_session.get(InventoryItem, item.id).quantity == 4
        assert db_session.query(InventoryLoss).count() == 0

    def test_stock_drained_after_check_writes_no_loss(self, db_session, recorder, make_item, monkeypatch):
        item = make_item(quantity=4)

        class DrainedBeforeBegin(UnitOfWork):
            def begin(self):
                # another writer empties the bin after record_loss validated it
                self.session.execute(update(InventoryItem).where(InventoryItem.id == item.id).values(quantity=0))
                self.session.commit()
                return super().begin()

        monkeypatch.setattr("flowershop.services.loss_service.UnitOfWork", DrainedBeforeBegin)

        with pytest.raises(InsufficientStockError) as exc:
            recorder.record_loss(item.id, 3, "Expired", actor_id=STAFF)

        assert exc.value.available == 0
        assert db_session.get(InventoryItem, item.id, populate_existing=True).quantity == 0
        assert db_session.query(InventoryLoss).count() == 0

    @pytest.mark.parametrize("quantity", [0, -3, 1.5])
    def test_rejects_non_positive_quantity(self, recorder, make_item, quantity):
        item = make_item(quantity=4)
        with pytest.raises(ValidationError):
            recorder.record_loss(item.id, quantity, "Damaged", actor_id=STAFF)

    def test_requires_reason(self, recorder, make_item):
        item = make_item(quantity=4)
        with pytest.raises(ValidationError):
            recorder.record_loss(item.id, 1, "  ", actor_id=STAFF)

    def test_unknown_item(self, recorder):
        with pytest.raises(NotFoundError):
            recorder.record_loss(777, 1, "Damaged", actor_id=STAFF)

    def test_loss_is_audited(self, db_session, recorder, make_item):
        item = make_item(quantity=10)
        loss = recorder.record_loss(item.id, 3, "Stolen", actor_id=STAFF)

        entry = db_session.query(AuditLog).filter_by(action="ADD_INVENTORY_LOSS").one()
        assert entry.entity_id == str(loss.id)
        assert entry.changes["remaining_quantity"] == 7


class TestReverseLoss:

    def test_reverse_restores_stock(self, db_session, recorder, make_item):
        item = make_item(quantity=20)
        loss = recorder.record_loss(item.id, 5, "Damaged", actor_id=STAFF)

        restored = recorder.reverse_loss(loss.id, actor_id=STAFF)

        assert restored == 20
        assert db_session.get(InventoryItem, item.id).quantity == 20
        assert db_session.get(InventoryLoss, loss.id) is None

    def test_reverse_after_sales_still_adds_units(self, db_session, recorder, engine, make_item):
        item = make_item(quantity=10)
        loss = recorder.record_loss(item.id, 4, "Damaged", actor_id=STAFF)
        engine.create_transaction(
            type="SALE", items=[{"inventory_item_id": item.id, "quantity": 6}], actor_id=STAFF
        )

        assert recorder.reverse_loss(loss.id) == 4

    def test_reverse_twice_fails(self, recorder, make_item):
        item = make_item(quantity=10)
        loss = recorder.record_loss(item.id, 1, "Damaged", actor_id=STAFF)
        loss_id = loss.id
        recorder.reverse_loss(loss_id)

        with pytest.raises(NotFoundError):
            recorder.reverse_loss(loss_id)


class TestLossQueries:

    def test_list_losses_newest_first(self, recorder, make_item):
        item = make_item(quantity=10)
        first = recorder.record_loss(item.id, 1, "Damaged", actor_id=STAFF)
        second = recorder.record_loss(item.id, 2, "Wilted", actor_id=STAFF)

        losses = recorder.list_losses(item.id)
        assert [loss.id for loss in losses] == [second.id, first.id]

    def test_list_losses_unknown_item(self, recorder):
        with pytest.raises(NotFoundError):
            recorder.list_losses(31337)

    def test_history_includes_item(self, recorder, make_item):
        item = make_item("Girasol", "Premium", 10)
        recorder.record_loss(item.id, 1, "Expired", actor_id=STAFF)

        history = recorder.loss_history()
        assert history["total"] == 1
        assert history["data"][0]["inventory_item"] == {
            "id": item.id,
            "name": "Girasol",
            "quality": "Premium",
        }
