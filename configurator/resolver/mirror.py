"""Interactive selection session (client-side mirror of the resolver).

Holds the dish being configured and its ingredient selection, and answers
toggle requests immediately against a locally cached catalog snapshot using
the same resolver functions as the server. It is not a trust boundary: the
server re-validates every submitted order, and when it rejects one the
session reconciles its local state with `reconcile()`.
"""

from decimal import Decimal
from typing import List, Optional, Tuple

from configurator.catalog.catalog import CatalogSnapshot
from configurator.models.models import Decision, DenialReason, DishRef, OrderRequest, Size
from configurator.models.violations import Violation
from configurator.resolver.resolver import can_add, can_remove, expand_with_requirements
from configurator.utils.logger import logger


class ConfiguratorSession:
    """Selection state for one user building one dish."""

    def __init__(self, catalog: CatalogSnapshot) -> None:
        self.catalog = catalog
        self.base_dish_id: Optional[int] = None
        self.size_id: Optional[int] = None
        self.selection: Tuple[int, ...] = ()
        self.last_error: Optional[str] = None

    @property
    def size(self) -> Optional[Size]:
        return self.catalog.size(self.size_id) if self.size_id is not None else None

    @property
    def selected_names(self) -> List[str]:
        return self.catalog.names(self.selection)

    @property
    def total_price(self) -> Decimal:
        """Size base price plus the selected ingredients, at cached prices."""
        size = self.size
        total = size.base_price if size else Decimal("0")
        for ingredient_id in self.selection:
            ingredient = self.catalog.ingredient(ingredient_id)
            if ingredient is not None:
                total += ingredient.price
        return total

    @property
    def dish_id(self) -> Optional[str]:
        if self.base_dish_id is None or self.size_id is None:
            return None
        return str(DishRef(base_dish_id=self.base_dish_id, size_id=self.size_id))

    def _record(self, decision: Decision) -> Decision:
        self.last_error = None if decision.allowed else decision.message
        return decision

    # ------------------------------------------------------------------
    # Dish selection
    # ------------------------------------------------------------------

    def select_base_dish(self, base_dish_id: int) -> Decision:
        base_dish = self.catalog.base_dish(base_dish_id)
        if base_dish is None:
            return self._record(Decision.deny(DenialReason.UNKNOWN_DISH, f"Base dish #{base_dish_id} not found"))
        self.base_dish_id = base_dish_id
        return self._record(Decision.allow())

    def select_size(self, size_id: int) -> Decision:
        """Choose a size. A size too small for the current selection is refused."""
        size = self.catalog.size(size_id)
        if size is None:
            return self._record(Decision.deny(DenialReason.UNKNOWN_DISH, f"Size #{size_id} not found"))
        if len(self.selection) > size.max_ingredients:
            return self._record(
                Decision.deny(
                    DenialReason.CAPACITY_EXCEEDED,
                    f"{size.label} dishes can have at most {size.max_ingredients} ingredients. "
                    "Please remove some ingredients first.",
                )
            )
        self.size_id = size_id
        return self._record(Decision.allow())

    # ------------------------------------------------------------------
    # Ingredient selection
    # ------------------------------------------------------------------

    def decision_for(self, ingredient_id: int) -> Decision:
        """What toggling this ingredient would do, without changing anything."""
        if ingredient_id in self.selection:
            return can_remove(ingredient_id, self.selection, self.catalog)
        decision = can_add(ingredient_id, self.selection, self.size, self.catalog)
        if not decision.allowed:
            return decision
        expansion = expand_with_requirements(ingredient_id, self.selection, self.size, self.catalog)
        if not expansion.ok:
            return Decision.deny(
                expansion.reason,
                expansion.error,
                ingredient=expansion.ingredient,
                conflicts_with=expansion.conflicts_with,
            )
        return decision

    def toggle(self, ingredient_id: int) -> Decision:
        """Remove a selected ingredient, or add one together with its requirements."""
        if ingredient_id in self.selection:
            decision = can_remove(ingredient_id, self.selection, self.catalog)
            if decision.allowed:
                self.selection = tuple(i for i in self.selection if i != ingredient_id)
            return self._record(decision)

        decision = can_add(ingredient_id, self.selection, self.size, self.catalog)
        if not decision.allowed:
            return self._record(decision)

        expansion = expand_with_requirements(ingredient_id, self.selection, self.size, self.catalog)
        if not expansion.ok:
            return self._record(
                Decision.deny(
                    expansion.reason,
                    expansion.error,
                    ingredient=expansion.ingredient,
                    conflicts_with=expansion.conflicts_with,
                )
            )
        self.selection = expansion.selection
        return self._record(decision)

    def to_order_request(self) -> OrderRequest:
        """Build the order submission payload.

        Raises:
            ValueError: If the base dish or the size has not been chosen.
        """
        if self.base_dish_id is None:
            raise ValueError("Please select a dish type")
        if self.size_id is None:
            raise ValueError("Please select a size")
        return OrderRequest(dish_id=self.dish_id, ingredient_ids=list(self.selection))

    # ------------------------------------------------------------------
    # Synchronisation with the server
    # ------------------------------------------------------------------

    def refresh(self, catalog: CatalogSnapshot) -> None:
        """Swap in a newer snapshot (e.g. after an order commits)."""
        self.catalog = catalog
        dropped = [i for i in self.selection if i not in catalog]
        if dropped:
            logger.info(f"Dropping ingredients no longer on the menu: {dropped}")
            self._drop(dropped)

    def reconcile(self, violation: Violation, catalog: Optional[CatalogSnapshot] = None) -> List[str]:
        """Bring the local selection in line with a server rejection.

        Ingredients the violation reports as unavailable are dropped, along with
        every selected ingredient that (transitively) required them, so the
        remaining selection still satisfies all requirements.

        Args:
            violation: The rejection returned by the server.
            catalog: Fresh snapshot to adopt before reconciling.

        Returns:
            Names of the ingredients removed from the selection.
        """
        if catalog is not None:
            self.catalog = catalog
        removed = self._drop(violation.unavailable_ids())
        self.last_error = violation.error
        if removed:
            logger.info(f"Reconciled selection after {violation.constraint_violation}: removed {removed}")
        return removed

    def reset(self) -> None:
        """Clear the session after a successful order."""
        self.base_dish_id = None
        self.size_id = None
        self.selection = ()
        self.last_error = None

    def _drop(self, ingredient_ids: List[int]) -> List[str]:
        doomed = {i for i in ingredient_ids if i in self.selection}
        changed = bool(doomed)
        while changed:
            changed = False
            for other in self.selection:
                if other not in doomed and self.catalog.requires(other) & doomed:
                    doomed.add(other)
                    changed = True
        removed = [self.catalog.name_of(i) for i in self.selection if i in doomed]
        self.selection = tuple(i for i in self.selection if i not in doomed)
        return removed
