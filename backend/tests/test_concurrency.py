"""
Concurrency tests.

Verifies:
- UnitOfWork commits on success and rolls back on any exception
- run_with_retry retries lock errors and maps the rest to PersistenceError
- Concurrent sales against one item never oversell
"""

import threading

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.orm import scoped_session

from flowershop import create_app
from flowershop.config import TestingConfig
from flowershop.errors import InsufficientStockError, PersistenceError, ValidationError
from flowershop.extensions import db
from flowershop.models import InventoryItem, Transaction
from flowershop.services.concurrency import UnitOfWork, run_with_retry
from flowershop.services.inventory_service import InventoryLedger
from flowershop.services.transaction_service import TransactionEngine


def _locked():
    return OperationalError("UPDATE inventory_items", {}, Exception("database is locked"))


class TestUnitOfWork:

    def test_commit_on_success(self, db_session):
        with UnitOfWork(db_session):
            db_session.add(InventoryItem(name="Rosa", quality="Premium", quantity=1, unit_price_cents=100))
        db_session.expunge_all()
        assert db_session.query(InventoryItem).count() == 1

    def test_rollback_on_error(self, db_session):
        with pytest.raises(ValidationError):
            with UnitOfWork(db_session):
                db_session.add(InventoryItem(name="Rosa", quality="Premium", quantity=1, unit_price_cents=100))
                db_session.flush()
                raise ValidationError("stop")
        assert db_session.query(InventoryItem).count() == 0

    def test_runs_on_the_flask_sqlalchemy_scoped_session(self, db_session):
        assert isinstance(db_session, scoped_session)
        db_session.query(InventoryItem).count()  # autobegins the proxied Session
        with UnitOfWork(db_session):
            db_session.add(InventoryItem(name="Clavel", quality="Standard", quantity=2, unit_price_cents=80))
        assert not db_session().in_transaction()
        assert db_session.query(InventoryItem).filter_by(name="Clavel").count() == 1

    def test_cannot_begin_twice(self, db_session):
        uow = UnitOfWork(db_session).begin()
        with pytest.raises(RuntimeError):
            uow.begin()
        uow.rollback()


class TestRunWithRetry:

    def test_retries_lock_errors(self, db_session):
        calls = {"n": 0}

        def op():
            calls["n"] += 1
            if calls["n"] < 3:
                raise _locked()
            return "done"

        assert run_with_retry(op, session=db_session, backoff_base=0) == "done"
        assert calls["n"] == 3

    def test_gives_up_after_attempts(self, db_session):
        def op():
            raise _locked()

        with pytest.raises(PersistenceError) as exc:
            run_with_retry(op, session=db_session, attempts=2, backoff_base=0)
        assert exc.value.status_code == 503

    def test_other_database_errors_are_not_retried(self, db_session):
        calls = {"n": 0}

        def op():
            calls["n"] += 1
            raise IntegrityError("INSERT", {}, Exception("constraint failed"))

        with pytest.raises(PersistenceError):
            run_with_retry(op, session=db_session, backoff_base=0)
        assert calls["n"] == 1

    def test_business_errors_pass_through(self, db_session):
        def op():
            raise ValidationError("bad input")

        with pytest.raises(ValidationError):
            run_with_retry(op, session=db_session)


# =============================================================================
# THREADED SALES ON A FILE DATABASE
# =============================================================================


@pytest.fixture
def file_app(tmp_path):
    class FileConfig(TestingConfig):
        SQLALCHEMY_DATABASE_URI = f"sqlite:///{tmp_path / 'concurrency.sqlite3'}"
        SQLALCHEMY_ENGINE_OPTIONS = {"connect_args": {"timeout": 15}}

    app = create_app(FileConfig)
    with app.app_context():
        db.create_all()
    yield app
    with app.app_context():
        db.drop_all()
        db.engine.dispose()


def test_concurrent_sales_never_oversell(file_app):
    with file_app.app_context():
        ledger = InventoryLedger(db.session)
        item_id = ledger.create_item("Rosa", "Premium", 5, "2.50").id

    workers = 10
    barrier = threading.Barrier(workers)
    outcomes = []
    lock = threading.Lock()

    def buy_one():
        with file_app.app_context():
            engine = TransactionEngine(db.session, InventoryLedger(db.session))
            barrier.wait()
            try:
                engine.create_transaction(
                    type="SALE",
                    items=[{"inventory_item_id": item_id, "quantity": 1}],
                    actor_id="staff@flowershop.test",
                )
                result = "ok"
            except InsufficientStockError:
                result = "insufficient"
            except PersistenceError:
                result = "busy"
            with lock:
                outcomes.append(result)

    threads = [threading.Thread(target=buy_one) for _ in range(workers)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    with file_app.app_context():
        remaining = db.session.get(InventoryItem, item_id).quantity
        sales = db.session.query(Transaction).count()

    assert len(outcomes) == workers
    assert remaining >= 0
    assert outcomes.count("ok") == sales == 5 - remaining
    assert "busy" in outcomes or remaining == 0
