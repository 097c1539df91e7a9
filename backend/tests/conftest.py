"""
Pytest fixtures for factory ledger tests.

Provides the app (in-memory SQLite), a per-test clean database, and seed
fixtures for workers, materials and rates.
"""

import pytest

from factory_ledger import create_app
from factory_ledger.extensions import db
from factory_ledger.services import catalog_service


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'LEDGER_RETRY_BACKOFF': 0,
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


@pytest.fixture(scope='function')
def worker(db_session):
    """Piece-rate weaver."""
    return catalog_service.create_worker(name="Aye Aye", role="WEAVER")


@pytest.fixture(scope='function')
def salaried_worker(db_session):
    """Monthly supervisor enrolled in SSB."""
    return catalog_service.create_worker(
        name="Ko Min",
        role="SUPERVISOR",
        salary_type="MONTHLY",
        base_salary_cents=50000,
        is_ssb=True,
    )


@pytest.fixture(scope='function')
def yarn(db_session):
    """Cotton Yarn with 10 units on hand and no reorder threshold."""
    return catalog_service.create_inventory_item(
        name="Cotton Yarn",
        category="Yarn",
        unit="kg",
        opening_stock=10,
        cost_per_unit_cents=500,
    )


@pytest.fixture(scope='function')
def dye(db_session):
    """Indigo Dye with 40 units on hand and a minimum of 5."""
    return catalog_service.create_inventory_item(
        name="Indigo Dye",
        category="Dye",
        unit="l",
        opening_stock=40,
        min_stock_level=5,
        cost_per_unit_cents=250,
    )


@pytest.fixture(scope='function')
def weaving_rate(db_session, yarn):
    """Rate "Weaving A" consuming 0.5 Cotton Yarn per unit, paying 500 per unit."""
    return catalog_service.create_rate(
        task_name="Weaving A",
        price_per_unit_cents=500,
        materials=[{"item_id": yarn.id, "quantity_per_unit": "0.5"}],
    )


@pytest.fixture(scope='function')
def plain_rate(db_session):
    """Rate without a bill of materials."""
    return catalog_service.create_rate(task_name="Folding", price_per_unit_cents=100)
