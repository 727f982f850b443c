"""
Pytest fixtures for salonledger backend tests.

Provides test database setup, domain object factories, and test client.
"""

from decimal import Decimal

import pytest

from salonledger import create_app
from salonledger.extensions import db
from salonledger.models import Commission, Product
from salonledger.services import wallet_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'STOCK_NEGATIVE_POLICY': 'permissive',
    })

    with app.app_context():
        db.create_all()
        yield app
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    # Clear all data but keep schema
    meta = db.metadata
    for table in reversed(meta.sorted_tables):
        db.session.execute(table.delete())
    db.session.commit()

    yield db.session

    # Cleanup after test
    db.session.rollback()
    db.session.expunge_all()


@pytest.fixture(scope='function')
def strict_policy(app, monkeypatch):
    """Reject movements that would drive a tracked product below zero."""
    monkeypatch.setitem(app.config, 'STOCK_NEGATIVE_POLICY', 'strict')


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory for products (product CRUD is owned elsewhere)."""
    def _make(name="Shampoo 500ml", sku=None, salon_id="salon-1", is_inventory_item=True):
        product = Product(
            salon_id=salon_id,
            sku=sku,
            name=name,
            unit_price=Decimal("4500.00"),
            is_inventory_item=is_inventory_item,
        )
        db_session.add(product)
        db_session.commit()
        return product

    return _make


@pytest.fixture(scope='function')
def product(make_product):
    return make_product()


@pytest.fixture(scope='function')
def make_commission(db_session):
    """Factory for unpaid commissions with an explicit amount."""
    counter = {"n": 0}

    def _make(employee_id="emp-1", amount="1000.00", salon_id="salon-1"):
        counter["n"] += 1
        commission = Commission(
            employee_id=employee_id,
            salon_id=salon_id,
            sale_item_id=f"SI-{counter['n']}",
            sale_amount=Decimal(amount) * 10,
            commission_rate=Decimal("10"),
            amount=Decimal(amount),
            paid=False,
        )
        db_session.add(commission)
        db_session.commit()
        return commission

    return _make


@pytest.fixture(scope='function')
def funded_wallet(db_session):
    """Factory: wallet for owner_id credited with amount."""
    def _make(owner_id="emp-1", amount="10000.00"):
        wallet_service.credit(owner_id, amount, reference_type="top_up", description="Test funding")
        return wallet_service.get_wallet(owner_id)

    return _make
