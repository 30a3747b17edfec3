"""
Pytest fixtures for stock ledger backend tests.

Provides an in-memory app, per-test clean tables, users per role and
bearer-token headers.
"""

from decimal import Decimal

import pytest

from stockledger import create_app
from stockledger.extensions import db
from stockledger.models import User
from stockledger.permissions import (
    SUPER_ADMIN,
    MASTER_INVENTORY_HANDLER,
    STOCK_IN_MANAGER,
    STOCK_OUT_MANAGER,
    WEEKLY_STOCK_PLANNER,
)
from stockledger.services import products_service, session_service
from stockledger.services.auth_service import hash_password


TEST_PASSWORD = "Password123"


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_RETRY_BACKOFF': 0.0,
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='session')
def password_hash():
    """bcrypt is slow on purpose; hash the shared test password once."""
    return hash_password(TEST_PASSWORD)


@pytest.fixture(scope='function')
def make_user(db_session, password_hash):
    def _make(username: str, roles=None, is_active: bool = True) -> User:
        user = User(
            username=username,
            email=f"{username}@stock.local",
            password_hash=password_hash,
            roles=list(roles or []),
            is_active=is_active,
        )
        db_session.add(user)
        db_session.commit()
        return user
    return _make


@pytest.fixture(scope='function')
def admin_user(make_user):
    return make_user("admin", [SUPER_ADMIN])


@pytest.fixture(scope='function')
def handler_user(make_user):
    return make_user("handler", [MASTER_INVENTORY_HANDLER])


@pytest.fixture(scope='function')
def stock_in_user(make_user):
    return make_user("receiver", [STOCK_IN_MANAGER])


@pytest.fixture(scope='function')
def stock_out_user(make_user):
    return make_user("dispatcher", [STOCK_OUT_MANAGER])


@pytest.fixture(scope='function')
def planner_user(make_user):
    return make_user("planner", [WEEKLY_STOCK_PLANNER])


def auth_headers(user: User) -> dict:
    """Issue a session directly (skips bcrypt verification on every test)."""
    _, token = session_service.create_session(user_id=user.id)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture(scope='function')
def admin_headers(admin_user):
    return auth_headers(admin_user)


@pytest.fixture(scope='function')
def handler_headers(handler_user):
    return auth_headers(handler_user)


@pytest.fixture(scope='function')
def stock_in_headers(stock_in_user):
    return auth_headers(stock_in_user)


@pytest.fixture(scope='function')
def stock_out_headers(stock_out_user):
    return auth_headers(stock_out_user)


@pytest.fixture(scope='function')
def planner_headers(planner_user):
    return auth_headers(planner_user)


@pytest.fixture(scope='function')
def milk(db_session):
    """Product "Milk" stored in litres with no opening stock."""
    return products_service.create_product(patch={"name": "Milk", "unit": "l", "opening_stock": Decimal("0")})


@pytest.fixture(scope='function')
def flour(db_session):
    """Product "Flour" stored in kilograms with 10 kg on hand."""
    return products_service.create_product(patch={"name": "Flour", "unit": "kg", "opening_stock": Decimal("10")})


@pytest.fixture(scope='function')
def reload(db_session):
    """Fresh copy from the database (requests run in their own session)."""
    def _reload(model, pk):
        db_session.expire_all()
        return db_session.get(model, pk)
    return _reload
