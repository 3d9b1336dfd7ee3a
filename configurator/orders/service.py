"""Order Transaction Manager.

Creates and cancels orders. Creation validates against a fresh catalog
snapshot, then opens a single transaction that re-reads stock, runs the final
availability check, inserts the order with its frozen ingredient lines and
decrements every finite-stock ingredient with a conditioned update. A
decrement that touches no row aborts the whole transaction and is reported as
`availability_changed`. Cancellation flips the status with a conditioned
update and restores stock in the same transaction.
"""

from enum import Enum
from typing import Iterable, List, Optional

from sqlalchemy import select, update
from sqlalchemy.orm import selectinload

from configurator.catalog.catalog import CatalogSnapshot
from configurator.catalog.store import CatalogStore
from configurator.db.database import Database
from configurator.db.tables import OrderIngredientRow, OrderRow
from configurator.models.models import CreatedOrder, DishRef, Order, OrderStatus
from configurator.models.violations import AvailabilityChanged, Violation
from configurator.resolver.resolver import validate_full_selection
from configurator.utils.logger import logger
from configurator.utils.money import from_cents, to_cents


class OrderRejectedError(Exception):
    """An order was refused because of a constraint violation."""

    def __init__(self, violation: Violation) -> None:
        super().__init__(violation.error)
        self.violation = violation


class CancellationReason(str, Enum):
    NOT_AUTHENTICATED = "not-authenticated"
    MISSING_SECOND_FACTOR = "missing-second-factor"
    NOT_FOUND_OR_NOT_CANCELLABLE = "not-found-or-not-cancellable"


CANCELLATION_MESSAGES = {
    CancellationReason.NOT_AUTHENTICATED: "Not authenticated",
    CancellationReason.MISSING_SECOND_FACTOR: "Missing TOTP authentication",
    CancellationReason.NOT_FOUND_OR_NOT_CANCELLABLE: "Order not found or cannot be cancelled",
}


class CancellationError(Exception):
    """A cancellation precondition failed."""

    def __init__(self, reason: CancellationReason) -> None:
        super().__init__(CANCELLATION_MESSAGES[reason])
        self.reason = reason


class OrderService:
    """Creates, cancels and lists orders."""

    def __init__(self, database: Database, catalog_store: Optional[CatalogStore] = None) -> None:
        self.database = database
        self.catalog_store = catalog_store or CatalogStore(database)

    def _snapshot(self) -> CatalogSnapshot:
        return self.catalog_store.snapshot()

    def create_order(
        self,
        user_id: int,
        dish_id: str,
        ingredient_ids: Iterable[int],
        second_factor: bool = False,
    ) -> CreatedOrder:
        """Validate and persist an order, taking one unit of every finite-stock ingredient.

        Args:
            user_id: Owner of the new order.
            dish_id: Combined dish id ("<baseDishId>_<sizeId>").
            ingredient_ids: Selected ingredient ids. Repeated ids count once.
            second_factor: Whether the caller's session completed TOTP. Stored
                on the order as `requires_second_factor`.

        Returns:
            CreatedOrder with the new id, echoed ids and frozen total price.

        Raises:
            OrderRejectedError: If any constraint is violated, including stock
                running out between validation and commit.
        """
        ids = list(dict.fromkeys(ingredient_ids))
        log_extra = {"user_id": user_id, "dish_id": dish_id}
        logger.info(f"Order creation started: dish {dish_id}, {len(ids)} ingredients", extra=log_extra)

        snapshot = self._snapshot()
        validation = validate_full_selection(dish_id, ids, snapshot)
        if not validation.valid:
            self._reject(validation.violation, log_extra)

        dish = snapshot.dish(dish_id if isinstance(dish_id, DishRef) else DishRef.parse(dish_id))
        ingredients = [snapshot.ingredient(i) for i in ids]

        try:
            with self.database.session_scope() as session:
                live_stock = CatalogStore.read_stock(session, ids)
                validation = validate_full_selection(dish.ref, ids, snapshot, live_stock=live_stock)
                if not validation.valid:
                    raise OrderRejectedError(validation.violation)

                order = OrderRow(
                    user_id=user_id,
                    base_dish_id=dish.base_dish.id,
                    size_id=dish.size.id,
                    dish_price_cents=to_cents(dish.price),
                    total_price_cents=to_cents(validation.total_price),
                    status=OrderStatus.CONFIRMED.value,
                    requires_second_factor=second_factor,
                )
                session.add(order)
                session.flush()
                for position, ingredient in enumerate(ingredients):
                    session.add(
                        OrderIngredientRow(
                            order_id=order.id,
                            ingredient_id=ingredient.id,
                            position=position,
                            name=ingredient.name,
                            price_cents=to_cents(ingredient.price),
                        )
                    )
                session.flush()

                # Unlimited ingredients have no counter to take from
                gone = [
                    ingredient
                    for ingredient in ingredients
                    if live_stock.get(ingredient.id) is not None
                    and not CatalogStore.decrement_stock(session, ingredient.id)
                ]
                if gone:
                    names = [ingredient.name for ingredient in gone]
                    raise OrderRejectedError(
                        AvailabilityChanged(
                            unavailable=names,
                            ingredient_ids=[ingredient.id for ingredient in gone],
                            error=f"No longer available: {', '.join(names)}",
                        )
                    )
                order_id = order.id
        except OrderRejectedError as e:
            self._reject(e.violation, log_extra)

        logger.info(
            f"Order created: {dish.name} ({dish.size.label}), total {validation.total_price}",
            extra={**log_extra, "order_id": order_id},
        )
        return CreatedOrder(
            id=order_id,
            dish_id=dish.id,
            ingredient_ids=ids,
            total_price=float(validation.total_price),
        )

    @staticmethod
    def _reject(violation: Violation, log_extra: dict) -> None:
        logger.warning(f"Order rejected ({violation.constraint_violation}): {violation.error}", extra=log_extra)
        raise OrderRejectedError(violation)

    def cancel_order(self, order_id: int, user_id: Optional[int], has_second_factor: bool) -> None:
        """Cancel a confirmed order and give its ingredients back to stock.

        Preconditions are checked in order: authenticated caller, completed
        second factor, then a confirmed order owned by the caller. The last
        check does not distinguish a missing order from someone else's or an
        already cancelled one.

        Raises:
            CancellationError: With the first failed precondition as `reason`.
        """
        if user_id is None:
            raise CancellationError(CancellationReason.NOT_AUTHENTICATED)
        log_extra = {"user_id": user_id, "order_id": order_id}
        if not has_second_factor:
            logger.warning("Order cancellation refused: second factor missing", extra=log_extra)
            raise CancellationError(CancellationReason.MISSING_SECOND_FACTOR)

        with self.database.session_scope() as session:
            result = session.execute(
                update(OrderRow)
                .where(
                    OrderRow.id == order_id,
                    OrderRow.user_id == user_id,
                    OrderRow.status == OrderStatus.CONFIRMED.value,
                )
                .values(status=OrderStatus.CANCELLED.value)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.warning("Order cancellation refused: not found or not cancellable", extra=log_extra)
                raise CancellationError(CancellationReason.NOT_FOUND_OR_NOT_CANCELLABLE)

            ingredient_ids = session.scalars(
                select(OrderIngredientRow.ingredient_id).where(OrderIngredientRow.order_id == order_id)
            ).all()
            restored = sum(1 for ingredient_id in ingredient_ids if CatalogStore.increment_stock(session, ingredient_id))

        logger.info(f"Order cancelled, {restored} stock counters restored", extra=log_extra)

    def list_orders(self, user_id: int) -> List[Order]:
        """The user's orders, newest first, with frozen prices and ingredient names."""
        with self.database.session_scope() as session:
            rows = session.scalars(
                select(OrderRow)
                .where(OrderRow.user_id == user_id)
                .options(
                    selectinload(OrderRow.lines),
                    selectinload(OrderRow.base_dish),
                    selectinload(OrderRow.size),
                )
                .order_by(OrderRow.created_at.desc(), OrderRow.id.desc())
            ).all()
            return [_order(row) for row in rows]


def _order(row: OrderRow) -> Order:
    return Order(
        id=row.id,
        user_id=row.user_id,
        dish_id=f"{row.base_dish_id}_{row.size_id}",
        dish_name=row.base_dish.name,
        dish_size=row.size.label,
        dish_price=float(from_cents(row.dish_price_cents)),
        total_price=float(from_cents(row.total_price_cents)),
        order_date=row.created_at,
        status=OrderStatus(row.status),
        ingredients=[line.name for line in row.lines],
        ingredient_prices=[float(from_cents(line.price_cents)) for line in row.lines],
        requires_second_factor=row.requires_second_factor,
    )
