"""Unit tests for the interactive selection session."""

from decimal import Decimal

import pytest

from configurator.catalog.catalog import CatalogSnapshot
from configurator.models.models import DenialReason
from configurator.models.violations import Availability, AvailabilityChanged, Incompatibility
from configurator.resolver.mirror import ConfiguratorSession


@pytest.fixture
def session(catalog):
    return ConfiguratorSession(catalog)


@pytest.fixture
def small_pizza(session):
    session.select_base_dish(1)
    session.select_size(1)
    return session


class TestDishSelection:
    """Test choosing the base dish and size."""

    def test_unknown_base_dish(self, session):
        decision = session.select_base_dish(42)
        assert decision.reason == DenialReason.UNKNOWN_DISH
        assert session.base_dish_id is None
        assert session.last_error == "Base dish #42 not found"

    def test_dish_id_needs_both_parts(self, session):
        session.select_base_dish(2)
        assert session.dish_id is None
        session.select_size(3)
        assert session.dish_id == "2_3"

    def test_cannot_shrink_below_selection(self, session, ids):
        """Test that a smaller size is refused while too many ingredients are selected."""
        session.select_size(3)
        session.toggle(ids["parmesan"])
        assert len(session.selection) == 4

        decision = session.select_size(1)

        assert decision.reason == DenialReason.CAPACITY_EXCEEDED
        assert "Please remove some ingredients first." in decision.message
        assert session.size_id == 3


class TestToggle:
    """Test adding and removing ingredients."""

    def test_add_pulls_in_requirements(self, small_pizza, ids):
        """Test the mozzarella chain fills a Small pizza."""
        decision = small_pizza.toggle(ids["mozzarella"])

        assert decision.allowed
        assert small_pizza.selected_names == ["mozzarella", "tomatoes", "olives"]
        assert small_pizza.total_price == Decimal("7.20")
        assert small_pizza.last_error is None

    def test_add_before_size_refused(self, session, ids):
        decision = session.toggle(ids["ham"])
        assert decision.reason == DenialReason.NO_SIZE_SELECTED
        assert session.selection == ()

    def test_full_dish_refuses_more(self, small_pizza, ids):
        small_pizza.toggle(ids["mozzarella"])
        decision = small_pizza.toggle(ids["ham"])
        assert decision.reason == DenialReason.CAPACITY_EXCEEDED
        assert small_pizza.last_error == "Small dishes can have at most 3 ingredients"
        assert len(small_pizza.selection) == 3

    def test_chain_failure_leaves_selection_untouched(self, session, ids):
        """Test a requirement conflict deep in the chain."""
        session.select_size(3)
        session.toggle(ids["anchovies"])
        decision = session.toggle(ids["parmesan"])

        assert not decision.allowed
        assert decision.reason == DenialReason.INCOMPATIBLE
        assert decision.ingredient == "olives"
        assert "parmesan → mozzarella → tomatoes → olives" in decision.message
        assert session.selection == (ids["anchovies"],)

    def test_remove_blocked_by_dependent(self, small_pizza, ids):
        small_pizza.toggle(ids["mozzarella"])
        decision = small_pizza.toggle(ids["olives"])
        assert decision.reason == DenialReason.REQUIRED_BY_OTHERS
        assert decision.dependents == ("tomatoes",)
        assert ids["olives"] in small_pizza.selection

    def test_remove_top_down(self, small_pizza, ids):
        """Test unwinding a chain from the top."""
        small_pizza.toggle(ids["mozzarella"])
        for name in ("mozzarella", "tomatoes", "olives"):
            assert small_pizza.toggle(ids[name]).allowed
        assert small_pizza.selection == ()
        assert small_pizza.total_price == Decimal("5.00")

    def test_decision_for_does_not_mutate(self, small_pizza, ids):
        """Test tooltip decisions for selected and unselected ingredients."""
        small_pizza.toggle(ids["tomatoes"])
        before = small_pizza.selection

        assert not small_pizza.decision_for(ids["olives"]).allowed
        assert small_pizza.decision_for(ids["carrots"]).allowed
        assert small_pizza.decision_for(ids["eggs"]).reason == DenialReason.INCOMPATIBLE
        assert small_pizza.selection == before

    def test_decision_for_reports_chain_failure(self, small_pizza, ids):
        """Test that the tooltip sees failures only the expansion finds."""
        small_pizza.toggle(ids["anchovies"])
        decision = small_pizza.decision_for(ids["tuna"])
        assert decision.reason == DenialReason.INCOMPATIBLE
        assert decision.conflicts_with == ("anchovies",)


class TestOrderRequest:
    """Test building the submission payload."""

    def test_requires_dish(self, session):
        with pytest.raises(ValueError, match="Please select a dish type"):
            session.to_order_request()

    def test_requires_size(self, session):
        session.select_base_dish(1)
        with pytest.raises(ValueError, match="Please select a size"):
            session.to_order_request()

    def test_payload(self, small_pizza, ids):
        small_pizza.toggle(ids["mozzarella"])
        request = small_pizza.to_order_request()
        assert request.model_dump(by_alias=True) == {
            "dishId": "1_1",
            "ingredientIds": [ids["mozzarella"], ids["tomatoes"], ids["olives"]],
        }


class TestReconcile:
    """Test reconciling with server rejections."""

    def test_drops_unavailable_and_dependents(self, small_pizza, catalog, ids):
        """Test that losing mozzarella also drops parmesan but keeps what stands alone."""
        small_pizza.select_size(3)
        small_pizza.toggle(ids["parmesan"])
        small_pizza.toggle(ids["carrots"])
        violation = AvailabilityChanged(
            unavailable=["mozzarella"],
            ingredient_ids=[ids["mozzarella"]],
            error="No longer available: mozzarella",
        )

        removed = small_pizza.reconcile(violation, catalog.with_stock({ids["mozzarella"]: 0}))

        assert removed == ["parmesan", "mozzarella"]
        assert small_pizza.selected_names == ["tomatoes", "olives", "carrots"]
        assert small_pizza.last_error == "No longer available: mozzarella"
        assert small_pizza.catalog.ingredient(ids["mozzarella"]).stock == 0

    def test_availability_violation(self, small_pizza, ids):
        small_pizza.toggle(ids["ham"])
        violation = Availability(
            ingredient="ham", ingredient_id=ids["ham"], current_stock=0, error="ham is not available"
        )
        assert small_pizza.reconcile(violation) == ["ham"]
        assert small_pizza.selection == ()

    def test_other_violations_keep_selection(self, small_pizza, ids):
        """Test that violations without stock information change nothing but the error."""
        small_pizza.toggle(ids["carrots"])
        violation = Incompatibility(
            ingredient="carrots",
            ingredient_id=ids["carrots"],
            conflicts_with=["x"],
            error="carrots is incompatible with: x",
        )
        assert small_pizza.reconcile(violation) == []
        assert small_pizza.selection == (ids["carrots"],)
        assert small_pizza.last_error == "carrots is incompatible with: x"

    def test_refresh_drops_removed_ingredients(self, small_pizza, catalog, ids):
        """Test that a newer snapshot without an ingredient removes it from the selection."""
        small_pizza.toggle(ids["carrots"])
        small_pizza.toggle(ids["potatoes"])
        newer = CatalogSnapshot(
            [i for i in catalog.list_ingredients() if i.name != "carrots"],
            catalog.list_sizes(),
            catalog.list_base_dishes(),
        )
        small_pizza.refresh(newer)
        assert small_pizza.selection == (ids["potatoes"],)

    def test_reset(self, small_pizza, ids):
        small_pizza.toggle(ids["carrots"])
        small_pizza.reset()
        assert small_pizza.selection == ()
        assert small_pizza.dish_id is None
