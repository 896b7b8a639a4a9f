"""
Shared fixtures.

One app on in-memory SQLite for the whole run; every test that asks for
db_session starts from empty tables. Service fixtures are wired the way
the routes wire them.
"""

import pytest

from flowershop import create_app
from flowershop.config import TestingConfig
from flowershop.extensions import db
from flowershop.models import AppUser
from flowershop.services.audit_service import AuditService
from flowershop.services.auth_service import hash_password
from flowershop.services.inventory_service import InventoryLedger
from flowershop.services.loss_service import LossRecorder
from flowershop.services.transaction_service import TransactionEngine

PASSWORD = "Password123"


@pytest.fixture(scope="session")
def app():
    flask_app = create_app(TestingConfig)
    with flask_app.app_context():
        db.create_all()
        yield flask_app
        db.drop_all()


@pytest.fixture(scope="session")
def password_hash():
    # one bcrypt round for the whole run
    return hash_password(PASSWORD)


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def db_session(app):
    """Empty every table, restore per-test config, hand out db.session."""
    for table in reversed(db.metadata.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()
    app.config["EXPENSE_REVERSAL_FLOOR_CHECK"] = False
    app.extensions.pop("transaction_parser", None)

    yield db.session

    db.session.rollback()


def _account(session, email: str, role: str, password_hash: str) -> AppUser:
    user = AppUser(
        email=email,
        display_name=role.title(),
        password_hash=password_hash,
        role=role,
    )
    session.add(user)
    session.commit()
    return user


@pytest.fixture
def owner(db_session, password_hash):
    return _account(db_session, "owner@flowershop.test", "OWNER", password_hash)


@pytest.fixture
def staff(db_session, owner, password_hash):
    return _account(db_session, "staff@flowershop.test", "STAFF", password_hash)


def get_auth_token(client, email: str, password: str = PASSWORD) -> str | None:
    """Log in through the API; None when the login is refused."""
    resp = client.post("/api/auth/login", json={"email": email, "password": password})
    return resp.json.get("token") if resp.status_code == 200 else None


def auth_headers(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def owner_headers(client, owner):
    return auth_headers(get_auth_token(client, owner.email))


@pytest.fixture
def staff_headers(client, staff):
    return auth_headers(get_auth_token(client, staff.email))


@pytest.fixture
def audit(db_session):
    return AuditService(db_session, ip_address="127.0.0.1", user_agent="pytest")


@pytest.fixture
def ledger(db_session, audit):
    return InventoryLedger(db_session, audit)


@pytest.fixture
def recorder(db_session, ledger, audit):
    return LossRecorder(db_session, ledger, audit)


@pytest.fixture
def engine(db_session, ledger, audit):
    return TransactionEngine(db_session, ledger, audit)


@pytest.fixture
def make_item(ledger):
    """make_item("Rosa", "Premium", 50, "2.50") creates an item as the owner."""
    def _make(name="Rosa", quality="Premium", quantity=50, unit_price="2.50"):
        return ledger.create_item(name, quality, quantity, unit_price, actor_id="owner@flowershop.test")
    return _make
