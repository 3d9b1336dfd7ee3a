"""Catalog Store: data access for the menu and owner of the stock counters.

Reads always hit the database so the authoritative server-side checks see
current stock. Stock is only mutated through the conditioned primitives
`decrement_stock` / `increment_stock`, which run inside the caller's
transaction and report whether the row was actually changed.
"""

from decimal import Decimal
from typing import Dict, Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from configurator.catalog.catalog import CatalogSnapshot
from configurator.db.database import Database
from configurator.db.tables import (
    BaseDishRow,
    IngredientIncompatibilityRow,
    IngredientRequirementRow,
    IngredientRow,
    SizeRow,
)
from configurator.models.models import BaseDish, Dish, Ingredient, Size
from configurator.utils.logger import logger
from configurator.utils.money import from_cents, to_cents


class CatalogStore:
    """DAO for base dishes, sizes, ingredients and their constraint edges."""

    def __init__(self, database: Database) -> None:
        self.database = database

    # ------------------------------------------------------------------
    # Read interface
    # ------------------------------------------------------------------

    def snapshot(self, session: Optional[Session] = None) -> CatalogSnapshot:
        """Load a fresh catalog snapshot (current stock included)."""
        if session is not None:
            return self._load_snapshot(session)
        with self.database.session_scope() as own_session:
            return self._load_snapshot(own_session)

    def list_ingredients(self) -> List[Ingredient]:
        return self.snapshot().list_ingredients()

    def list_sizes(self) -> List[Size]:
        return self.snapshot().list_sizes()

    def list_base_dishes(self) -> List[BaseDish]:
        return self.snapshot().list_base_dishes()

    def list_dishes(self) -> List[Dish]:
        return self.snapshot().list_dishes()

    def get_dish(self, base_dish_id: int, size_id: int) -> Optional[Dish]:
        with self.database.session_scope() as session:
            base_dish = session.get(BaseDishRow, base_dish_id)
            size = session.get(SizeRow, size_id)
            if base_dish is None or size is None:
                return None
            return Dish(base_dish=_base_dish(base_dish), size=_size(size))

    def _load_snapshot(self, session: Session) -> CatalogSnapshot:
        requires: Dict[int, set] = {}
        for row in session.scalars(select(IngredientRequirementRow)):
            requires.setdefault(row.ingredient_id, set()).add(row.required_id)

        incompatible: Dict[int, set] = {}
        for row in session.scalars(select(IngredientIncompatibilityRow)):
            incompatible.setdefault(row.ingredient_id, set()).add(row.incompatible_with_id)

        ingredients = [
            Ingredient(
                id=row.id,
                name=row.name,
                price=from_cents(row.price_cents),
                stock=row.stock,
                requires=frozenset(requires.get(row.id, ())),
                incompatible_with=frozenset(incompatible.get(row.id, ())),
            )
            for row in session.scalars(select(IngredientRow))
        ]
        sizes = [_size(row) for row in session.scalars(select(SizeRow))]
        base_dishes = [_base_dish(row) for row in session.scalars(select(BaseDishRow))]
        return CatalogSnapshot(ingredients, sizes, base_dishes)

    # ------------------------------------------------------------------
    # Stock mutation boundary
    # ------------------------------------------------------------------

    @staticmethod
    def read_stock(session: Session, ingredient_ids: Iterable[int]) -> Dict[int, Optional[int]]:
        """Freshest stock for the given ids, read inside the caller's transaction."""
        ids = list(ingredient_ids)
        if not ids:
            return {}
        rows = session.execute(select(IngredientRow.id, IngredientRow.stock).where(IngredientRow.id.in_(ids)))
        return {row.id: row.stock for row in rows}

    @staticmethod
    def decrement_stock(session: Session, ingredient_id: int) -> bool:
        """Take one unit of a finite-stock ingredient.

        The update is conditioned on `stock > 0`. Returns False when no row
        changed (stock already at zero, or the ingredient is unlimited or gone).
        """
        result = session.execute(
            update(IngredientRow)
            .where(IngredientRow.id == ingredient_id, IngredientRow.stock.is_not(None), IngredientRow.stock > 0)
            .values(stock=IngredientRow.stock - 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    @staticmethod
    def increment_stock(session: Session, ingredient_id: int) -> bool:
        """Return one unit of a finite-stock ingredient. False for unlimited ingredients."""
        result = session.execute(
            update(IngredientRow)
            .where(IngredientRow.id == ingredient_id, IngredientRow.stock.is_not(None))
            .values(stock=IngredientRow.stock + 1)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount == 1

    # ------------------------------------------------------------------
    # Catalog maintenance (seeding, tests)
    # ------------------------------------------------------------------

    def add_base_dish(self, name: str) -> BaseDish:
        with self.database.session_scope() as session:
            row = BaseDishRow(name=name)
            session.add(row)
            session.flush()
            return _base_dish(row)

    def add_size(self, label: str, base_price: Decimal, max_ingredients: int) -> Size:
        with self.database.session_scope() as session:
            row = SizeRow(label=label, base_price_cents=to_cents(base_price), max_ingredients=max_ingredients)
            session.add(row)
            session.flush()
            return _size(row)

    def add_ingredient(self, name: str, price: Decimal, stock: Optional[int] = None) -> int:
        """Insert an ingredient and return its id. `stock=None` means unlimited."""
        with self.database.session_scope() as session:
            row = IngredientRow(name=name, price_cents=to_cents(price), stock=stock)
            session.add(row)
            session.flush()
            return row.id

    def add_requirement(self, ingredient_id: int, required_id: int) -> None:
        """Record that `ingredient_id` requires `required_id` (directed)."""
        with self.database.session_scope() as session:
            if session.get(IngredientRequirementRow, (ingredient_id, required_id)) is None:
                session.add(IngredientRequirementRow(ingredient_id=ingredient_id, required_id=required_id))

    def add_incompatibility(self, first_id: int, second_id: int) -> None:
        """Record that two ingredients cannot be combined (stored once, lower id first)."""
        if first_id == second_id:
            raise ValueError("An ingredient cannot be incompatible with itself")
        low, high = sorted((first_id, second_id))
        with self.database.session_scope() as session:
            if session.get(IngredientIncompatibilityRow, (low, high)) is None:
                session.add(IngredientIncompatibilityRow(ingredient_id=low, incompatible_with_id=high))

    def set_stock(self, ingredient_id: int, stock: Optional[int]) -> None:
        """Restock (or mark unlimited with None) an ingredient."""
        with self.database.session_scope() as session:
            row = session.get(IngredientRow, ingredient_id)
            if row is None:
                raise ValueError(f"Unknown ingredient id: {ingredient_id}")
            row.stock = stock
        logger.info(f"Stock for ingredient #{ingredient_id} set to {'unlimited' if stock is None else stock}")


def _size(row: SizeRow) -> Size:
    return Size(
        id=row.id,
        label=row.label,
        base_price=from_cents(row.base_price_cents),
        max_ingredients=row.max_ingredients,
    )


def _base_dish(row: BaseDishRow) -> BaseDish:
    return BaseDish(id=row.id, name=row.name)
