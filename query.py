#!/usr/bin/env python3
"""Ad hoc runner for the Restaurant Dish Configurator.

Browse the menu and place, list or cancel orders directly against the
database, without starting the API server.

Usage:
    python query.py menu
    python query.py order u2@restaurant.com 1_1 mozzarella ham
    python query.py orders u2@restaurant.com
    python query.py --code 123456 cancel u1@restaurant.com 3
    python query.py --debug order u2@restaurant.com 2_3 tuna   # Show full JSON

Features:
- Ingredients are added one by one through the same resolver the front end
  uses, so requirements are pulled in automatically and refusals are shown
- Orders are re-validated and committed by the order service
- Cancellation needs a valid TOTP code (--code) for the user
- Debug mode to display full JSON responses
"""

import sys
from typing import List, Optional

from rich.console import Console
from rich.table import Table

from configurator.auth.users import User, UserStore, verify_totp
from configurator.catalog.store import CatalogStore
from configurator.db.database import Database, init_db
from configurator.orders.service import CancellationError, OrderRejectedError, OrderService
from configurator.resolver.mirror import ConfiguratorSession
from configurator.utils.logger import logger

console = Console()


def _require_user(users: UserStore, email: str) -> User:
    user = users.get_user_by_email(email)
    if user is None:
        console.print(f"[red]✗ Unknown user: {email}[/red]")
        sys.exit(1)
    return user


def show_menu(database: Database) -> None:
    """Print dishes and ingredients with their constraints."""
    snapshot = CatalogStore(database).snapshot()

    dishes = Table(title="Dishes")
    for column in ("Id", "Dish", "Size", "Price", "Max ingredients"):
        dishes.add_column(column)
    for dish in snapshot.list_dishes():
        dishes.add_row(dish.id, dish.name, dish.size.label, f"{dish.price:.2f}", str(dish.max_ingredients))
    console.print(dishes)

    ingredients = Table(title="Ingredients")
    for column in ("Id", "Name", "Price", "Stock", "Requires", "Incompatible with"):
        ingredients.add_column(column)
    for ingredient in snapshot.list_ingredients():
        ingredients.add_row(
            str(ingredient.id),
            ingredient.name,
            f"{ingredient.price:.2f}",
            "∞" if ingredient.is_unlimited else str(ingredient.stock),
            ", ".join(sorted(snapshot.names(ingredient.requires))),
            ", ".join(sorted(snapshot.names(ingredient.incompatible_with))),
        )
    console.print(ingredients)


def place_order(database: Database, email: str, dish_id: str, ingredient_names: List[str], debug: bool) -> None:
    """Build a selection interactively and submit it."""
    user = _require_user(UserStore(database), email)
    store = CatalogStore(database)
    session = ConfiguratorSession(store.snapshot())

    try:
        base_dish_id, size_id = (int(part) for part in dish_id.split("_"))
    except ValueError:
        console.print(f"[red]✗ Dish id must look like <baseDishId>_<sizeId>, got: {dish_id}[/red]")
        sys.exit(1)

    for decision in (session.select_base_dish(base_dish_id), session.select_size(size_id)):
        if not decision.allowed:
            console.print(f"[red]✗ {decision.message}[/red]")
            sys.exit(1)

    for name in ingredient_names:
        ingredient = session.catalog.ingredient_by_name(name)
        if ingredient is None:
            console.print(f"[yellow]⚠ Unknown ingredient skipped: {name}[/yellow]")
            continue
        if ingredient.id in session.selection:
            continue
        decision = session.toggle(ingredient.id)
        if decision.allowed:
            console.print(f"[green]✓ {name}[/green] → {', '.join(session.selected_names)}")
        else:
            console.print(f"[yellow]⚠ {decision.message}[/yellow]")

    request = session.to_order_request()
    console.print(f"Submitting {request.dish_id} with {', '.join(session.selected_names) or 'no ingredients'}")
    try:
        created = OrderService(database, store).create_order(
            user.id, request.dish_id, request.ingredient_ids, second_factor=False
        )
    except OrderRejectedError as e:
        removed = session.reconcile(e.violation, store.snapshot())
        console.print(f"[red]✗ Order rejected: {e.violation.error}[/red]")
        if removed:
            console.print(f"[yellow]Removed from selection: {', '.join(removed)}[/yellow]")
        if debug:
            console.print_json(data=e.violation.to_response())
        sys.exit(1)

    console.print(f"[green]✓ Order #{created.id} created, total {created.total_price:.2f}[/green]")
    if debug:
        console.print_json(data=created.model_dump(by_alias=True, mode="json"))


def list_orders(database: Database, email: str, debug: bool) -> None:
    user = _require_user(UserStore(database), email)
    orders = OrderService(database).list_orders(user.id)

    table = Table(title=f"Orders for {user.name or user.username}")
    for column in ("Id", "Date", "Dish", "Ingredients", "Total", "Status"):
        table.add_column(column)
    for order in orders:
        table.add_row(
            str(order.id),
            order.order_date.strftime("%Y-%m-%d %H:%M"),
            f"{order.dish_name} ({order.dish_size})",
            ", ".join(order.ingredients),
            f"{order.total_price:.2f}",
            order.status.value,
        )
    console.print(table)
    if debug:
        console.print_json(data=[order.model_dump(by_alias=True, mode="json") for order in orders])


def cancel_order(database: Database, email: str, order_id: int, code: Optional[str]) -> None:
    user = _require_user(UserStore(database), email)
    has_second_factor = code is not None and verify_totp(user.secret, code)
    try:
        OrderService(database).cancel_order(order_id, user.id, has_second_factor)
    except CancellationError as e:
        console.print(f"[red]✗ {e} ({e.reason.value})[/red]")
        sys.exit(1)
    console.print(f"[green]✓ Order #{order_id} cancelled[/green]")


def run_command(command: str, args: List[str], debug: bool = False, code: Optional[str] = None) -> None:
    """Dispatch a single command against the configured database."""
    try:
        database = init_db()
        if command == "menu":
            show_menu(database)
        elif command == "order" and len(args) >= 2:
            place_order(database, args[0], args[1], args[2:], debug)
        elif command == "orders" and len(args) == 1:
            list_orders(database, args[0], debug)
        elif command == "cancel" and len(args) == 2 and args[1].isdigit():
            cancel_order(database, args[0], int(args[1]), code)
        else:
            console.print(f"[red]✗ Invalid arguments for '{command}'[/red]")
            sys.exit(1)
    except KeyboardInterrupt:
        logger.info("\nInterrupted by user.")
        sys.exit(0)


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python query.py [--debug] [--code CODE] <menu|order|orders|cancel> [args...]")
        print("")
        print("Examples:")
        print("  python query.py menu")
        print("  python query.py order u2@restaurant.com 1_1 mozzarella ham")
        print("  python query.py orders u2@restaurant.com")
        print("  python query.py --code 123456 cancel u1@restaurant.com 3")
        sys.exit(1)

    debug_mode = False
    totp_code = None
    argv_start = 1

    while argv_start < len(sys.argv) and sys.argv[argv_start].startswith("--"):
        if sys.argv[argv_start] == "--debug":
            debug_mode = True
            argv_start += 1
        elif sys.argv[argv_start] == "--code":
            argv_start += 1
            if argv_start >= len(sys.argv):
                print("Error: --code flag requires a 6-digit TOTP code")
                sys.exit(1)
            totp_code = sys.argv[argv_start]
            argv_start += 1
        else:
            print(f"Error: Unknown flag {sys.argv[argv_start]}")
            sys.exit(1)

    if argv_start >= len(sys.argv):
        print("Error: No command provided")
        sys.exit(1)

    run_command(sys.argv[argv_start], sys.argv[argv_start + 1:], debug=debug_mode, code=totp_code)
