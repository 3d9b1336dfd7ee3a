"""Immutable catalog snapshot consumed by the constraint resolver.

A snapshot is built once per request (server side) or per refresh (mirror
side). Requirement and incompatibility edges are keyed by ingredient id and
precomputed at construction time:

- incompatibilities are closed under symmetry, so `incompatible(a)` contains b
  whenever either a or b declares the pair;
- edges pointing at ids absent from the snapshot are dropped.
"""

from collections import defaultdict
from typing import Dict, Iterable, List, Mapping, Optional, Tuple

from configurator.models.models import BaseDish, Dish, DishRef, Ingredient, Size
from configurator.utils.logger import logger


class CatalogSnapshot:
    """Point-in-time view of base dishes, sizes and ingredients (with stock)."""

    def __init__(
        self,
        ingredients: Iterable[Ingredient],
        sizes: Iterable[Size] = (),
        base_dishes: Iterable[BaseDish] = (),
    ) -> None:
        ingredients = list(ingredients)
        known = {ingredient.id for ingredient in ingredients}

        requires: Dict[int, set] = defaultdict(set)
        incompatible: Dict[int, set] = defaultdict(set)
        for ingredient in ingredients:
            for required_id in ingredient.requires:
                if required_id not in known:
                    logger.warning(f"Dropping requirement {ingredient.name} -> #{required_id}: unknown ingredient")
                    continue
                requires[ingredient.id].add(required_id)
            for other_id in ingredient.incompatible_with:
                if other_id not in known:
                    logger.warning(f"Dropping incompatibility {ingredient.name} <-> #{other_id}: unknown ingredient")
                    continue
                incompatible[ingredient.id].add(other_id)
                incompatible[other_id].add(ingredient.id)

        self._ingredients: Dict[int, Ingredient] = {
            ingredient.id: ingredient.model_copy(
                update={
                    "requires": frozenset(requires[ingredient.id]),
                    "incompatible_with": frozenset(incompatible[ingredient.id]),
                }
            )
            for ingredient in sorted(ingredients, key=lambda i: i.name)
        }
        self._by_name: Dict[str, Ingredient] = {i.name: i for i in self._ingredients.values()}
        self._sizes: Dict[int, Size] = {s.id: s for s in sorted(sizes, key=lambda s: (s.base_price, s.id))}
        self._base_dishes: Dict[int, BaseDish] = {b.id: b for b in sorted(base_dishes, key=lambda b: b.name)}

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def ingredient(self, ingredient_id: int) -> Optional[Ingredient]:
        return self._ingredients.get(ingredient_id)

    def ingredient_by_name(self, name: str) -> Optional[Ingredient]:
        return self._by_name.get(name)

    def __contains__(self, ingredient_id: object) -> bool:
        return ingredient_id in self._ingredients

    def name_of(self, ingredient_id: int) -> str:
        ingredient = self._ingredients.get(ingredient_id)
        return ingredient.name if ingredient else f"#{ingredient_id}"

    def names(self, ingredient_ids: Iterable[int]) -> List[str]:
        return [self.name_of(i) for i in ingredient_ids]

    def requires(self, ingredient_id: int) -> frozenset:
        ingredient = self._ingredients.get(ingredient_id)
        return ingredient.requires if ingredient else frozenset()

    def incompatible(self, ingredient_id: int) -> frozenset:
        ingredient = self._ingredients.get(ingredient_id)
        return ingredient.incompatible_with if ingredient else frozenset()

    def size(self, size_id: int) -> Optional[Size]:
        return self._sizes.get(size_id)

    def base_dish(self, base_dish_id: int) -> Optional[BaseDish]:
        return self._base_dishes.get(base_dish_id)

    def get_dish(self, base_dish_id: int, size_id: int) -> Optional[Dish]:
        """Return the dish for a base dish / size pairing, or None if either is unknown."""
        base_dish = self._base_dishes.get(base_dish_id)
        size = self._sizes.get(size_id)
        if base_dish is None or size is None:
            return None
        return Dish(base_dish=base_dish, size=size)

    def dish(self, ref: DishRef) -> Optional[Dish]:
        return self.get_dish(ref.base_dish_id, ref.size_id)

    def requirement_closure(self, ingredient_id: int) -> List[int]:
        """Every ingredient reachable through `requires`, excluding the start (cycle-safe)."""
        seen = {ingredient_id}
        order: List[int] = []
        stack = list(sorted(self.requires(ingredient_id), reverse=True))
        while stack:
            current = stack.pop()
            if current in seen:
                continue
            seen.add(current)
            order.append(current)
            stack.extend(sorted(self.requires(current) - seen, reverse=True))
        return order

    # ------------------------------------------------------------------
    # Listings
    # ------------------------------------------------------------------

    def list_ingredients(self) -> List[Ingredient]:
        """Ingredients ordered by name."""
        return list(self._ingredients.values())

    def list_sizes(self) -> List[Size]:
        """Sizes ordered by base price."""
        return list(self._sizes.values())

    def list_base_dishes(self) -> List[BaseDish]:
        """Base dishes ordered by name."""
        return list(self._base_dishes.values())

    def list_dishes(self) -> List[Dish]:
        """Every base dish × size pairing, by base dish name then size price."""
        return [Dish(base_dish=b, size=s) for b in self._base_dishes.values() for s in self._sizes.values()]

    # ------------------------------------------------------------------
    # Derived snapshots
    # ------------------------------------------------------------------

    def stock_levels(self) -> Dict[int, Optional[int]]:
        return {i.id: i.stock for i in self._ingredients.values()}

    def with_stock(self, stock: Mapping[int, Optional[int]]) -> "CatalogSnapshot":
        """Copy of this snapshot with updated stock for the given ingredient ids."""
        ingredients = [
            i.model_copy(update={"stock": stock[i.id]}) if i.id in stock else i for i in self._ingredients.values()
        ]
        return CatalogSnapshot(ingredients, self._sizes.values(), self._base_dishes.values())

    def incompatible_pairs(self) -> List[Tuple[int, int]]:
        """Canonical (lower id, higher id) incompatibility pairs."""
        pairs = {
            (min(a, b), max(a, b)) for a, ingredient in self._ingredients.items() for b in ingredient.incompatible_with
        }
        return sorted(pairs)

    def __repr__(self) -> str:
        return (
            f"CatalogSnapshot(ingredients={len(self._ingredients)}, sizes={len(self._sizes)}, "
            f"base_dishes={len(self._base_dishes)})"
        )

