"""Constraint resolver for ingredient selections.

Pure, deterministic functions over a `CatalogSnapshot`. The same functions
back the interactive selection session (`configurator.resolver.mirror`) and
the authoritative order-submission check (`configurator.orders.service`), so
both sides always reach the same decision for the same snapshot.

Checks run in a fixed order and only the first failure is reported:

- `can_add`: size selected, capacity (counting everything the add would pull
  in), stock, incompatibility;
- `expand_with_requirements`: capacity, stock and incompatibility for every
  ingredient pulled in through `requires`, walking the requirement graph with
  an explicit worklist and a visited set so cycles terminate;
- `can_remove`: no other selected ingredient directly requires it;
- `validate_full_selection`: dish, count, known ids, stock, incompatibility,
  transitive requirements, and a final stock re-check against live counters.
"""

from decimal import Decimal
from typing import Iterable, List, Mapping, Optional, Sequence, Tuple, Union

from configurator.catalog.catalog import CatalogSnapshot
from configurator.models.models import Decision, DenialReason, DishRef, Expansion, Ingredient, Size, Validation
from configurator.models.violations import (
    Availability,
    AvailabilityChanged,
    Incompatibility,
    IngredientCount,
    InvalidDish,
    InvalidIngredient,
    Requirements,
)


CHAIN_ARROW = " → "


def _capacity_message(size: Size) -> str:
    return f"{size.label} dishes can have at most {size.max_ingredients} ingredients"


def _conflicts(ingredient_id: int, selection: Sequence[int], catalog: CatalogSnapshot) -> List[str]:
    """Names of selected ingredients that are incompatible with `ingredient_id`, in selection order."""
    incompatible = catalog.incompatible(ingredient_id)
    return [catalog.name_of(other) for other in selection if other in incompatible]


def can_add(
    ingredient_id: int,
    selection: Sequence[int],
    size: Optional[Size],
    catalog: CatalogSnapshot,
) -> Decision:
    """Decide whether an ingredient may be added to the current selection.

    Args:
        ingredient_id: Ingredient the user wants to add.
        selection: Currently selected ingredient ids.
        size: Selected size, or None if no size has been chosen yet.
        catalog: Snapshot to decide against.

    Returns:
        Decision: allowed, or denied with the first failing reason.
    """
    if size is None:
        return Decision.deny(DenialReason.NO_SIZE_SELECTED, "Please select a size first")

    ingredient = catalog.ingredient(ingredient_id)
    if ingredient is None:
        return Decision.deny(DenialReason.UNKNOWN_INGREDIENT, f"Ingredient #{ingredient_id} not found")

    current = list(selection)
    if ingredient_id in current:
        return Decision.allow(ingredient.name)

    # Post-expansion count: the ingredient plus every requirement not yet selected
    pulled_in = 1 + sum(1 for required in catalog.requirement_closure(ingredient_id) if required not in current)
    if len(current) + pulled_in > size.max_ingredients:
        return Decision.deny(
            DenialReason.CAPACITY_EXCEEDED,
            _capacity_message(size),
            ingredient=ingredient.name,
        )

    if not ingredient.is_available:
        return Decision.deny(
            DenialReason.UNAVAILABLE,
            f"{ingredient.name} is not available",
            ingredient=ingredient.name,
        )

    conflicts = _conflicts(ingredient_id, current, catalog)
    if conflicts:
        return Decision.deny(
            DenialReason.INCOMPATIBLE,
            f"{ingredient.name} is incompatible with: {', '.join(conflicts)}",
            ingredient=ingredient.name,
            conflicts_with=tuple(conflicts),
        )

    return Decision.allow(ingredient.name)


def _check_addition(
    ingredient: Ingredient,
    expanded: Sequence[int],
    size: Size,
    catalog: CatalogSnapshot,
) -> Optional[Tuple[DenialReason, str, Tuple[str, ...]]]:
    if len(expanded) + 1 > size.max_ingredients:
        return DenialReason.CAPACITY_EXCEEDED, f"not enough space ({_capacity_message(size)})", ()
    if not ingredient.is_available:
        return DenialReason.UNAVAILABLE, "not available", ()
    conflicts = _conflicts(ingredient.id, expanded, catalog)
    if conflicts:
        return DenialReason.INCOMPATIBLE, f"incompatible with {', '.join(conflicts)}", tuple(conflicts)
    return None


def _chain_error(chain: Tuple[str, ...], detail: str) -> str:
    if len(chain) == 1:
        return f"cannot add {chain[0]}: {detail}"
    return f"cannot add {chain[-1]} (required by chain: {CHAIN_ARROW.join(chain)}): {detail}"


def expand_with_requirements(
    ingredient_id: int,
    selection: Sequence[int],
    size: Optional[Size],
    catalog: CatalogSnapshot,
) -> Expansion:
    """Add an ingredient together with everything it transitively requires.

    Walks the requirement graph depth-first with an explicit stack. Every
    ingredient not already present is checked for capacity, stock and
    incompatibility against the selection accumulated so far. An ingredient
    seen twice (a `requires` cycle) counts as already satisfied.

    Args:
        ingredient_id: Ingredient the user wants to add.
        selection: Currently selected ingredient ids.
        size: Selected size, or None if no size has been chosen yet.
        catalog: Snapshot to resolve against.

    Returns:
        Expansion with the new selection (existing order kept, additions
        appended in traversal order), or the first failure with its chain.
    """
    if size is None:
        return Expansion(reason=DenialReason.NO_SIZE_SELECTED, error="Please select a size first")

    root = catalog.ingredient(ingredient_id)
    if root is None:
        return Expansion(reason=DenialReason.UNKNOWN_INGREDIENT, error=f"Ingredient #{ingredient_id} not found")

    expanded: List[int] = list(selection)
    present = set(expanded)
    visited = set()
    stack: List[Tuple[int, Tuple[str, ...]]] = [(ingredient_id, (root.name,))]

    while stack:
        current_id, chain = stack.pop()
        if current_id in visited:
            continue
        visited.add(current_id)
        ingredient = catalog.ingredient(current_id)

        if current_id not in present:
            failure = _check_addition(ingredient, expanded, size, catalog)
            if failure is not None:
                reason, detail, conflicts = failure
                return Expansion(
                    reason=reason,
                    ingredient=ingredient.name,
                    chain=chain,
                    conflicts_with=conflicts,
                    error=_chain_error(chain, detail),
                )
            expanded.append(current_id)
            present.add(current_id)

        # Reverse order so the lowest id is expanded first
        for required_id in sorted(ingredient.requires, reverse=True):
            if required_id not in visited:
                stack.append((required_id, chain + (catalog.name_of(required_id),)))

    return Expansion(selection=tuple(expanded), ingredient=root.name)


def can_remove(ingredient_id: int, selection: Sequence[int], catalog: CatalogSnapshot) -> Decision:
    """Decide whether an ingredient may be removed from the selection.

    Denied when another selected ingredient directly requires it. Dependents
    are never removed automatically.
    """
    name = catalog.name_of(ingredient_id)
    if ingredient_id not in selection:
        return Decision.allow(name)

    dependents = tuple(
        catalog.name_of(other)
        for other in selection
        if other != ingredient_id and ingredient_id in catalog.requires(other)
    )
    if dependents:
        return Decision.deny(
            DenialReason.REQUIRED_BY_OTHERS,
            f"Cannot remove {name} as it is required by: {', '.join(dependents)}",
            ingredient=name,
            dependents=dependents,
        )
    return Decision.allow(name)


def _is_out_of_stock(stock: Optional[int]) -> bool:
    return stock is not None and stock <= 0


def validate_full_selection(
    dish: Union[DishRef, str, None],
    ingredient_ids: Iterable[int],
    catalog: CatalogSnapshot,
    live_stock: Optional[Mapping[int, Optional[int]]] = None,
) -> Validation:
    """Authoritative check of a complete (dish, ingredients) selection.

    Args:
        dish: Dish reference or combined dish id ("<baseDishId>_<sizeId>").
        ingredient_ids: Selected ingredient ids.
        catalog: Fresh catalog snapshot.
        live_stock: Freshest stock read immediately before commit. When given,
            ingredients that ran out since `catalog` was taken are reported as
            `availability_changed`. Ids missing from the mapping count as gone.

    Returns:
        Validation with the total price, or the first violation found.
    """
    ref = dish
    if isinstance(dish, str):
        try:
            ref = DishRef.parse(dish)
        except ValueError:
            ref = None
    resolved = catalog.dish(ref) if ref is not None else None
    if resolved is None:
        return Validation(violation=InvalidDish(dish_id=str(dish), error="Invalid dish"))

    size = resolved.size
    ids = list(ingredient_ids)

    if len(ids) > size.max_ingredients:
        return Validation(
            violation=IngredientCount(
                max_allowed=size.max_ingredients,
                provided=len(ids),
                error=f"{_capacity_message(size)}, got {len(ids)}",
            )
        )

    for ingredient_id in ids:
        if ingredient_id not in catalog:
            return Validation(
                violation=InvalidIngredient(ingredient_id=ingredient_id, error=f"Invalid ingredient: {ingredient_id}")
            )

    ingredients = [catalog.ingredient(i) for i in ids]

    for ingredient in ingredients:
        if not ingredient.is_available:
            return Validation(
                violation=Availability(
                    ingredient=ingredient.name,
                    ingredient_id=ingredient.id,
                    current_stock=ingredient.stock,
                    error=f"{ingredient.name} is not available",
                )
            )

    for ingredient in ingredients:
        conflicts = _conflicts(ingredient.id, ids, catalog)
        if conflicts:
            return Validation(
                violation=Incompatibility(
                    ingredient=ingredient.name,
                    ingredient_id=ingredient.id,
                    conflicts_with=conflicts,
                    error=f"{ingredient.name} is incompatible with: {', '.join(conflicts)}",
                )
            )

    selected = set(ids)
    for ingredient in ingredients:
        missing = [catalog.name_of(r) for r in catalog.requirement_closure(ingredient.id) if r not in selected]
        if missing:
            return Validation(
                violation=Requirements(
                    ingredient=ingredient.name,
                    ingredient_id=ingredient.id,
                    missing=missing,
                    error=f"{ingredient.name} requires: {', '.join(missing)}",
                )
            )

    if live_stock is not None:
        gone = [i for i in ingredients if i.id not in live_stock or _is_out_of_stock(live_stock[i.id])]
        if gone:
            return Validation(
                violation=AvailabilityChanged(
                    unavailable=[i.name for i in gone],
                    ingredient_ids=[i.id for i in gone],
                    error=f"No longer available: {', '.join(i.name for i in gone)}",
                )
            )

    total = resolved.price + sum((i.price for i in ingredients), Decimal("0"))
    return Validation(total_price=total)
