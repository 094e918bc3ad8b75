"""
Pytest fixtures for stockcore backend tests.

Provides test database setup, two tenants, tenant scope fixtures and
product factories.
"""

import pytest

from stockcore import create_app
from stockcore.config import TestConfig
from stockcore.extensions import db
from stockcore.models import Organization
from stockcore.services import products_service
from stockcore.services.tenant_service import tenant_context


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    # Flask-SQLAlchemy reads the database URI at init_app, so the test
    # config has to be passed to the factory rather than applied afterwards.
    app = create_app(TestConfig)

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


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

        db.session.rollback()


@pytest.fixture(scope='function')
def org_a(db_session):
    """Create Organization A (first tenant)."""
    org = Organization(name="Org A - Acme Corp", code="ACME", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def org_b(db_session):
    """Create Organization B (second tenant)."""
    org = Organization(name="Org B - Beta Inc", code="BETA", is_active=True)
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope='function')
def tenant_a(org_a):
    """Run the test inside Organization A's scope as actor 1 (alice)."""
    with tenant_context(org_a.id, actor_id=1, actor_name="alice"):
        yield org_a


@pytest.fixture(scope='function')
def make_product(db_session):
    """
    Factory creating a product in the current tenant scope.

    Usage:
        product = make_product(sku="TEE", stock=10)
        product = make_product(sku="TEE", variants=[{"options": {"Size": "M"}, "stock": 3}])
    """
    counter = {"n": 0}

    def _make(sku=None, name=None, stock=0, retail=1000, cost=400, threshold=2, variants=None):
        counter["n"] += 1
        result = products_service.create_product(
            patch={
                "sku": sku or f"SKU-{counter['n']}",
                "name": name or f"Product {counter['n']}",
                "retail_price_cents": retail,
                "cost_price_cents": cost,
                "low_stock_threshold": threshold,
            },
            variants=variants,
            initial_stock=stock,
        )
        assert result.success, result.message
        return result.data

    return _make
