"""Shared fixtures: an in-memory catalog and throwaway databases."""

from decimal import Decimal

import pytest

from configurator.catalog.catalog import CatalogSnapshot
from configurator.catalog.store import CatalogStore
from configurator.db.database import Database
from configurator.db.seed import seed_database
from configurator.models.models import BaseDish, Ingredient, Size
from configurator.orders.service import OrderService


# Ids follow the seed order
MOZZARELLA, TOMATOES, MUSHROOMS, HAM, OLIVES, TUNA, EGGS, ANCHOVIES, PARMESAN, CARROTS, POTATOES = range(1, 12)
PIZZA, PASTA, SALAD = 1, 2, 3
SMALL, MEDIUM, LARGE = 1, 2, 3


def ingredient(id, name, price, stock=None, requires=(), incompatible_with=()):
    return Ingredient(
        id=id,
        name=name,
        price=Decimal(price),
        stock=stock,
        requires=frozenset(requires),
        incompatible_with=frozenset(incompatible_with),
    )


@pytest.fixture
def sizes():
    return [
        Size(id=SMALL, label="Small", base_price=Decimal("5.00"), max_ingredients=3),
        Size(id=MEDIUM, label="Medium", base_price=Decimal("7.00"), max_ingredients=5),
        Size(id=LARGE, label="Large", base_price=Decimal("9.00"), max_ingredients=7),
    ]


@pytest.fixture
def base_dishes():
    return [BaseDish(id=PIZZA, name="pizza"), BaseDish(id=PASTA, name="pasta"), BaseDish(id=SALAD, name="salad")]


@pytest.fixture
def menu_ingredients():
    """The restaurant menu. Incompatibilities are declared in one direction only."""
    return [
        ingredient(MOZZARELLA, "mozzarella", "1.00", stock=3, requires=[TOMATOES]),
        ingredient(TOMATOES, "tomatoes", "0.50", requires=[OLIVES]),
        ingredient(MUSHROOMS, "mushrooms", "0.80", stock=3),
        ingredient(HAM, "ham", "1.20", stock=2, incompatible_with=[MUSHROOMS]),
        ingredient(OLIVES, "olives", "0.70", incompatible_with=[ANCHOVIES]),
        ingredient(TUNA, "tuna", "1.50", stock=2, requires=[OLIVES]),
        ingredient(EGGS, "eggs", "1.00", incompatible_with=[MUSHROOMS, TOMATOES]),
        ingredient(ANCHOVIES, "anchovies", "1.50", stock=1),
        ingredient(PARMESAN, "parmesan", "1.20", requires=[MOZZARELLA]),
        ingredient(CARROTS, "carrots", "0.40"),
        ingredient(POTATOES, "potatoes", "0.30"),
    ]


@pytest.fixture
def catalog(menu_ingredients, sizes, base_dishes):
    return CatalogSnapshot(menu_ingredients, sizes, base_dishes)


@pytest.fixture
def small(catalog):
    return catalog.size(SMALL)


@pytest.fixture
def medium(catalog):
    return catalog.size(MEDIUM)


@pytest.fixture
def large(catalog):
    return catalog.size(LARGE)


@pytest.fixture
def database():
    """Empty in-memory database with the schema created."""
    db = Database("sqlite://")
    db.create_all()
    yield db
    db.dispose()


@pytest.fixture
def seeded_database(database):
    seed_database(database)
    return database


@pytest.fixture
def catalog_store(seeded_database):
    return CatalogStore(seeded_database)


@pytest.fixture
def order_service(seeded_database, catalog_store):
    return OrderService(seeded_database, catalog_store)


@pytest.fixture
def ids(catalog):
    """Ingredient ids by name."""
    return {i.name: i.id for i in catalog.list_ingredients()}
