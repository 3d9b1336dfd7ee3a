"""Unit tests for the order transaction manager."""

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from configurator.catalog.store import CatalogStore
from configurator.db.tables import IngredientRow, OrderRow
from configurator.models.models import OrderStatus
from configurator.models.violations import AvailabilityChanged
from configurator.orders.service import CancellationError, CancellationReason, OrderRejectedError, OrderService


ANDREA, ELIA = 1, 2


def _stock(catalog_store):
    return catalog_store.snapshot().stock_levels()


def _order_count(database):
    with database.session_scope() as session:
        return session.scalar(select(func.count()).select_from(OrderRow))


class TestCreateOrder:
    """Test order creation."""

    def test_creates_order_and_decrements_stock(self, order_service, catalog_store, ids):
        """Test a valid order commits and takes one unit of each finite ingredient."""
        before = _stock(catalog_store)
        created = order_service.create_order(ELIA, "1_1", [ids["mozzarella"], ids["tomatoes"], ids["olives"]])

        assert created.dish_id == "1_1"
        assert created.ingredient_ids == [ids["mozzarella"], ids["tomatoes"], ids["olives"]]
        assert created.total_price == pytest.approx(7.20)
        assert created.message == "Order created successfully"

        after = _stock(catalog_store)
        assert after[ids["mozzarella"]] == before[ids["mozzarella"]] - 1
        assert after[ids["tomatoes"]] is None
        assert after[ids["olives"]] is None

    def test_order_lines_are_frozen(self, order_service, catalog_store, ids):
        """Test that later price changes do not affect history."""
        created = order_service.create_order(ELIA, "3_1", [ids["carrots"], ids["potatoes"]])

        with catalog_store.database.session_scope() as session:
            session.get(IngredientRow, ids["carrots"]).price_cents = 999

        order = next(o for o in order_service.list_orders(ELIA) if o.id == created.id)
        assert order.ingredients == ["carrots", "potatoes"]
        assert order.ingredient_prices == [0.4, 0.3]
        assert order.total_price == pytest.approx(5.70)
        assert order.status == OrderStatus.CONFIRMED

    @pytest.mark.parametrize("second_factor", [False, True])
    def test_second_factor_recorded(self, order_service, ids, second_factor):
        """Test that the order remembers whether it was placed with TOTP."""
        created = order_service.create_order(ELIA, "3_1", [ids["carrots"]], second_factor=second_factor)

        order = next(o for o in order_service.list_orders(ELIA) if o.id == created.id)
        assert order.requires_second_factor is second_factor

    def test_duplicate_ids_collapsed(self, order_service, catalog_store, ids):
        """Test that a repeated id is charged and decremented once."""
        before = _stock(catalog_store)[ids["ham"]]
        created = order_service.create_order(ELIA, "1_1", [ids["ham"], ids["ham"]])
        assert created.ingredient_ids == [ids["ham"]]
        assert created.total_price == pytest.approx(6.20)
        assert _stock(catalog_store)[ids["ham"]] == before - 1

    def test_violation_leaves_no_trace(self, order_service, seeded_database, catalog_store, ids):
        """Test a rejected order writes nothing."""
        before_stock = _stock(catalog_store)
        before_orders = _order_count(seeded_database)

        with pytest.raises(OrderRejectedError) as exc:
            order_service.create_order(ELIA, "1_3", [ids["mozzarella"]])

        assert exc.value.violation.constraint_violation == "requirements"
        assert _stock(catalog_store) == before_stock
        assert _order_count(seeded_database) == before_orders

    @pytest.mark.parametrize(
        "dish_id, names, expected",
        [
            ("7_1", [], "invalid_dish"),
            ("1_1", ["carrots", "potatoes", "eggs", "ham"], "ingredient_count"),
            ("1_3", ["eggs", "mushrooms"], "incompatibility"),
            ("1_3", ["tuna"], "requirements"),
        ],
    )
    def test_violations_reported(self, order_service, ids, dish_id, names, expected):
        """Test that each violation kind reaches the caller unchanged."""
        with pytest.raises(OrderRejectedError) as exc:
            order_service.create_order(ELIA, dish_id, [ids[n] for n in names])
        assert exc.value.violation.constraint_violation == expected

    def test_unknown_ingredient(self, order_service):
        with pytest.raises(OrderRejectedError) as exc:
            order_service.create_order(ELIA, "1_1", [404])
        assert exc.value.violation.constraint_violation == "invalid_ingredient"
        assert exc.value.violation.ingredient_id == 404

    def test_out_of_stock(self, order_service, ids):
        """Test ordering the last anchovies twice."""
        order_service.create_order(ELIA, "3_1", [ids["anchovies"]])
        with pytest.raises(OrderRejectedError) as exc:
            order_service.create_order(ELIA, "3_1", [ids["anchovies"]])
        assert exc.value.violation.constraint_violation == "availability"
        assert exc.value.violation.current_stock == 0

    def test_stale_snapshot_reports_availability_changed(self, order_service, catalog_store, ids, monkeypatch):
        """Test that stock taken after validation is caught before commit."""
        stale = catalog_store.snapshot()
        catalog_store.set_stock(ids["anchovies"], 0)
        monkeypatch.setattr(order_service, "_snapshot", lambda: stale)

        with pytest.raises(OrderRejectedError) as exc:
            order_service.create_order(ELIA, "3_1", [ids["potatoes"], ids["anchovies"]])

        violation = exc.value.violation
        assert isinstance(violation, AvailabilityChanged)
        assert violation.unavailable == ["anchovies"]
        assert violation.ingredient_ids == [ids["anchovies"]]
        assert _stock(catalog_store)[ids["anchovies"]] == 0

    def test_zero_row_decrement_rolls_back(self, order_service, seeded_database, catalog_store, ids, monkeypatch):
        """Test that a decrement losing the race aborts the whole order."""
        before_orders = _order_count(seeded_database)
        before_stock = _stock(catalog_store)
        real_decrement = CatalogStore.decrement_stock

        def lose_race_on_anchovies(session, ingredient_id):
            if ingredient_id == ids["anchovies"]:
                return False
            return real_decrement(session, ingredient_id)

        monkeypatch.setattr(CatalogStore, "decrement_stock", staticmethod(lose_race_on_anchovies))

        with pytest.raises(OrderRejectedError) as exc:
            order_service.create_order(ELIA, "3_1", [ids["ham"], ids["anchovies"]])

        assert exc.value.violation.constraint_violation == "availability_changed"
        assert exc.value.violation.unavailable == ["anchovies"]
        assert _order_count(seeded_database) == before_orders
        assert _stock(catalog_store) == before_stock


class TestCancelOrder:
    """Test order cancellation."""

    def test_requires_authentication(self, order_service):
        with pytest.raises(CancellationError) as exc:
            order_service.cancel_order(1, None, True)
        assert exc.value.reason == CancellationReason.NOT_AUTHENTICATED

    def test_requires_second_factor(self, order_service):
        """Test that the second factor is checked before ownership."""
        with pytest.raises(CancellationError) as exc:
            order_service.cancel_order(999, ANDREA, False)
        assert exc.value.reason == CancellationReason.MISSING_SECOND_FACTOR

    def test_unknown_order(self, order_service):
        with pytest.raises(CancellationError) as exc:
            order_service.cancel_order(999, ANDREA, True)
        assert exc.value.reason == CancellationReason.NOT_FOUND_OR_NOT_CANCELLABLE

    def test_someone_elses_order(self, order_service):
        """Test that another user's order looks exactly like a missing one."""
        andreas_order = order_service.list_orders(ANDREA)[0]
        with pytest.raises(CancellationError) as exc:
            order_service.cancel_order(andreas_order.id, ELIA, True)
        assert exc.value.reason == CancellationReason.NOT_FOUND_OR_NOT_CANCELLABLE
        assert str(exc.value) == "Order not found or cannot be cancelled"

    def test_cannot_cancel_twice(self, order_service, ids):
        created = order_service.create_order(ELIA, "3_1", [ids["carrots"]])
        order_service.cancel_order(created.id, ELIA, True)
        with pytest.raises(CancellationError) as exc:
            order_service.cancel_order(created.id, ELIA, True)
        assert exc.value.reason == CancellationReason.NOT_FOUND_OR_NOT_CANCELLABLE

    def test_cancel_restores_stock(self, order_service, catalog_store, ids):
        """Test that cancellation is the exact inverse of creation."""
        before = _stock(catalog_store)
        selection = [ids["tuna"], ids["olives"], ids["ham"]]
        created = order_service.create_order(ELIA, "2_2", selection)
        assert _stock(catalog_store) != before

        order_service.cancel_order(created.id, ELIA, True)

        assert _stock(catalog_store) == before
        order = next(o for o in order_service.list_orders(ELIA) if o.id == created.id)
        assert order.status == OrderStatus.CANCELLED

    def test_repeated_create_cancel_leaves_stock_unchanged(self, order_service, catalog_store, ids):
        """Test N create/cancel round trips."""
        before = _stock(catalog_store)
        selection = [ids["parmesan"], ids["mozzarella"], ids["tomatoes"], ids["olives"], ids["ham"]]
        for _ in range(5):
            created = order_service.create_order(ELIA, "1_2", selection)
            order_service.cancel_order(created.id, ELIA, True)
        assert _stock(catalog_store) == before

    def test_cancel_seeded_order_gives_stock_back(self, order_service, catalog_store, ids):
        """Test that seeded history can be cancelled like any other order."""
        before = _stock(catalog_store)
        mushrooms_order = next(o for o in order_service.list_orders(3) if o.ingredients == ["mushrooms"])
        order_service.cancel_order(mushrooms_order.id, 3, True)
        assert _stock(catalog_store)[ids["mushrooms"]] == before[ids["mushrooms"]] + 1


class TestListOrders:
    """Test order history."""

    def test_seeded_history(self, order_service):
        """Test that each demo user has two orders with frozen prices."""
        orders = order_service.list_orders(ANDREA)
        assert len(orders) == 2
        pizza = next(o for o in orders if o.dish_name == "pizza")
        assert pizza.dish_size == "Small"
        assert pizza.dish_id == "1_1"
        assert pizza.ingredients == ["mozzarella", "tomatoes", "olives"]
        assert Decimal(str(pizza.total_price)) == Decimal("7.2")
        assert pizza.requires_second_factor is True

    def test_newest_first(self, order_service, ids):
        first = order_service.create_order(ELIA, "3_1", [ids["carrots"]])
        second = order_service.create_order(ELIA, "3_1", [ids["potatoes"]])
        orders = order_service.list_orders(ELIA)
        assert [o.id for o in orders[:2]] == [second.id, first.id]

    def test_only_own_orders(self, order_service):
        assert all(o.user_id == ELIA for o in order_service.list_orders(ELIA))
        assert order_service.list_orders(404) == []


class TestServiceConstruction:
    def test_builds_its_own_store(self, seeded_database):
        service = OrderService(seeded_database)
        assert isinstance(service.catalog_store, CatalogStore)
