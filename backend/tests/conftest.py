"""
Pytest fixtures for shopledger backend tests.

Provides test database setup, catalog fixtures, and test client.
"""

import pytest
from shopledger import create_app
from shopledger.extensions import db
from shopledger.models import Product
from shopledger.services.products_service import create_product


TEST_CONFIG = {
    'TESTING': True,
    'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
    'SQLALCHEMY_TRACK_MODIFICATIONS': False,
    'LOG_LEVEL': 'WARNING',
}


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(TEST_CONFIG)

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
def make_product(db_session):
    """Factory: create a catalog product with opening stock (and its history row)."""
    def _make(name="Chair", stock=10, rate_cents=1000, product_type="sales", **extra) -> Product:
        patch = {
            "name": name,
            "rate_cents": rate_cents,
            "product_type": product_type,
            "stock_quantity": stock,
        }
        patch.update(extra)
        return create_product(patch)
    return _make


@pytest.fixture(scope='function')
def chair(make_product):
    """Sales product with 5 in stock."""
    return make_product(name="Chair", stock=5, rate_cents=4000)


@pytest.fixture(scope='function')
def tent(make_product):
    """Rental product with 10 in stock."""
    return make_product(name="Tent", stock=10, rate_cents=50000, product_type="rental")


def sales_payload(items, **extra) -> dict:
    """Helper to build a minimal valid sales bill payload."""
    payload = {
        "customer_name": "Asha Rao",
        "customer_phone": "9876543210",
        "items": items,
    }
    payload.update(extra)
    return payload


def rental_payload(items, **extra) -> dict:
    """Helper to build a minimal valid rental bill payload."""
    payload = {
        "customer_name": "Ravi Kumar",
        "customer_phone": "9123456780",
        "from_date": "2024-01-01T09:00:00Z",
        "to_date": "2024-01-03T09:00:00Z",
        "items": items,
    }
    payload.update(extra)
    return payload
