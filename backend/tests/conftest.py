"""
Pytest fixtures for stockledger tests.

Provides test database setup, store/product fixtures, and test client.
"""

import pytest
from stockledger import create_app
from stockledger.config import TestConfig
from stockledger.extensions import db
from stockledger.models import Store, Product
from stockledger.services import inventory_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TestConfig)

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


@pytest.fixture(scope='function')
def store(db_session):
    """USD store."""
    store = Store(name="Main Street", code="MAIN", currency="USD")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def other_store(db_session):
    store = Store(name="Harbor", code="HARBOR", currency="EUR")
    db_session.add(store)
    db_session.commit()
    return store


@pytest.fixture(scope='function')
def product(db_session, store):
    product = Product(store_id=store.id, sku="WIDGET-001", name="Widget")
    db_session.add(product)
    db_session.commit()
    return product


@pytest.fixture(scope='function')
def make_product(db_session):
    """Factory: make_product(store, sku)."""
    def _make(store, sku, name=None, is_active=True):
        product = Product(store_id=store.id, sku=sku, name=name or sku, is_active=is_active)
        db_session.add(product)
        db_session.commit()
        return product
    return _make


@pytest.fixture(scope='function')
def receive(db_session):
    """Factory: receive(store, product, quantity, unit_cost) -> (record, layer)."""
    def _receive(store, product, quantity, unit_cost, **kwargs):
        return inventory_service.receive_stock(
            store_id=store.id,
            product_id=product.id,
            quantity=quantity,
            unit_cost=unit_cost,
            **kwargs,
        )
    return _receive
