"""Pytest configuration and fixtures for integration tests.

Integration tests run against a SQLite file in a temporary directory so that
separate connections (and threads) see real locking and commit visibility.
"""

import pytest

from configurator.catalog.store import CatalogStore
from configurator.db.database import Database
from configurator.db.seed import seed_database
from configurator.orders.service import OrderService


def pytest_collection_modifyitems(config, items):
    """Mark every test in this directory as an integration test."""
    for item in items:
        if "integration" in str(item.fspath):
            item.add_marker(pytest.mark.integration)


@pytest.fixture
def file_database(tmp_path):
    """Seeded database stored in a temporary file."""
    db = Database(f"sqlite:///{tmp_path / 'restaurant.db'}")
    db.create_all()
    seed_database(db)
    yield db
    db.dispose()


@pytest.fixture
def file_catalog_store(file_database):
    return CatalogStore(file_database)


@pytest.fixture
def file_order_service(file_database, file_catalog_store):
    return OrderService(file_database, file_catalog_store)
