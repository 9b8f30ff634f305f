"""
Pytest fixtures for billing core tests.

Provides the application on an in-memory database, a test client, per-test
table clearing and small factories for devices, orders and bills.
"""

from datetime import datetime, timedelta

import pytest
from cafe_billing import create_app
from cafe_billing.extensions import db
from cafe_billing.services import bill_service, device_service, order_service


T0 = datetime(2026, 10, 18, 18, 0, 0)


def at(minutes: float) -> datetime:
    """T0 plus the given number of minutes."""
    return T0 + timedelta(minutes=minutes)


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LOG_LEVEL': 'WARNING',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app, db_session):
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


@pytest.fixture(scope='function')
def playstation(db_session):
    """A console on the default tariff."""
    return device_service.create_device(name="PS5 #1", device_type="playstation", number="PS-01")


@pytest.fixture(scope='function')
def computer(db_session):
    """A PC on the default tariff."""
    return device_service.create_device(name="PC #1", device_type="computer", number="PC-01")


@pytest.fixture(scope='function')
def cafe_bill(db_session):
    return bill_service.create_bill(bill_type="cafe", customer_name="Table 4")


@pytest.fixture(scope='function')
def make_order(db_session):
    """Factory: make_order(bill_id, ("Tea", 500, 3), ...)"""
    def _make(bill_id=None, *lines):
        items = [{"name": name, "price_cents": price, "quantity": qty} for name, price, qty in lines]
        return order_service.create_order(items=items, bill_id=bill_id, now=T0)
    return _make
