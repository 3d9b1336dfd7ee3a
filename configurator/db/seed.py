"""Demo data: four users, the restaurant menu and a few historical orders.

Every demo user logs in with password `pwd`. Andrea, Renato and Simone have a
TOTP secret; Elia does not. Seeding is skipped when the database already
holds users.
"""

from sqlalchemy import func, select

from configurator.auth.users import hash_password
from configurator.db.database import Database
from configurator.db.tables import (
    BaseDishRow,
    IngredientIncompatibilityRow,
    IngredientRequirementRow,
    IngredientRow,
    OrderIngredientRow,
    OrderRow,
    SizeRow,
    UserRow,
)
from configurator.utils.logger import logger
from configurator.utils.money import to_cents


DEMO_PASSWORD = "pwd"
DEMO_SALT = "72e4eeb14def3b21"
DEMO_TOTP_SECRET = "LXBSMDTMSP2I5XFXIYRGFVWSFI"

USERS = [
    ("u1@restaurant.com", "Andrea", DEMO_TOTP_SECRET),
    ("u2@restaurant.com", "Elia", None),
    ("u3@restaurant.com", "Renato", DEMO_TOTP_SECRET),
    ("u4@restaurant.com", "Simone", DEMO_TOTP_SECRET),
]

BASE_DISHES = ["pizza", "pasta", "salad"]

# (label, base price, max ingredients)
SIZES = [
    ("Small", "5.00", 3),
    ("Medium", "7.00", 5),
    ("Large", "9.00", 7),
]

# (name, price, stock); None stock means unlimited
INGREDIENTS = [
    ("mozzarella", "1.00", 3),
    ("tomatoes", "0.50", None),
    ("mushrooms", "0.80", 3),
    ("ham", "1.20", 2),
    ("olives", "0.70", None),
    ("tuna", "1.50", 2),
    ("eggs", "1.00", None),
    ("anchovies", "1.50", 1),
    ("parmesan", "1.20", None),
    ("carrots", "0.40", None),
    ("potatoes", "0.30", None),
]

REQUIREMENTS = [
    ("tomatoes", "olives"),
    ("parmesan", "mozzarella"),
    ("mozzarella", "tomatoes"),
    ("tuna", "olives"),
]

INCOMPATIBILITIES = [
    ("eggs", "mushrooms"),
    ("eggs", "tomatoes"),
    ("ham", "mushrooms"),
    ("olives", "anchovies"),
]

# (user email, base dish, size, second factor used, ingredients)
ORDERS = [
    ("u1@restaurant.com", "pizza", "Small", True, ["mozzarella", "tomatoes", "olives"]),
    ("u1@restaurant.com", "salad", "Small", True, ["eggs", "carrots"]),
    ("u2@restaurant.com", "pasta", "Medium", False, ["tuna", "olives", "parmesan", "mozzarella", "tomatoes"]),
    ("u2@restaurant.com", "pizza", "Large", False, ["ham", "eggs", "olives", "potatoes"]),
    ("u3@restaurant.com", "salad", "Small", True, ["potatoes", "anchovies"]),
    ("u3@restaurant.com", "pasta", "Small", True, ["mushrooms"]),
    ("u4@restaurant.com", "pizza", "Medium", True, ["mozzarella", "tomatoes", "olives"]),
    ("u4@restaurant.com", "pasta", "Large", True, ["eggs"]),
]


def seed_database(database: Database) -> bool:
    """Load the demo data into an empty database.

    Historical orders are inserted with frozen prices but do not consume
    stock: the seeded stock levels are the ones currently on hand.

    Returns:
        True if data was inserted, False if the database was already seeded.
    """
    with database.session_scope() as session:
        if session.scalar(select(func.count()).select_from(UserRow)):
            logger.debug("Database already seeded, skipping")
            return False

        password_hash = hash_password(DEMO_PASSWORD, DEMO_SALT)
        users = {}
        for email, name, secret in USERS:
            users[email] = UserRow(email=email, name=name, hash=password_hash, salt=DEMO_SALT, secret=secret)
        base_dishes = {name: BaseDishRow(name=name) for name in BASE_DISHES}
        sizes = {
            label: SizeRow(label=label, base_price_cents=to_cents(price), max_ingredients=max_ingredients)
            for label, price, max_ingredients in SIZES
        }
        ingredients = {
            name: IngredientRow(name=name, price_cents=to_cents(price), stock=stock)
            for name, price, stock in INGREDIENTS
        }
        session.add_all([*users.values(), *base_dishes.values(), *sizes.values(), *ingredients.values()])
        session.flush()

        for name, required in REQUIREMENTS:
            session.add(
                IngredientRequirementRow(ingredient_id=ingredients[name].id, required_id=ingredients[required].id)
            )
        for first, second in INCOMPATIBILITIES:
            low, high = sorted((ingredients[first].id, ingredients[second].id))
            session.add(IngredientIncompatibilityRow(ingredient_id=low, incompatible_with_id=high))

        for email, dish_name, size_label, used_second_factor, names in ORDERS:
            size = sizes[size_label]
            total = size.base_price_cents + sum(ingredients[n].price_cents for n in names)
            order = OrderRow(
                user_id=users[email].id,
                base_dish_id=base_dishes[dish_name].id,
                size_id=size.id,
                dish_price_cents=size.base_price_cents,
                total_price_cents=total,
                status="confirmed",
                requires_second_factor=used_second_factor,
            )
            session.add(order)
            session.flush()
            for position, name in enumerate(names):
                ingredient = ingredients[name]
                session.add(
                    OrderIngredientRow(
                        order_id=order.id,
                        ingredient_id=ingredient.id,
                        position=position,
                        name=ingredient.name,
                        price_cents=ingredient.price_cents,
                    )
                )

    logger.info(
        f"Seeded {len(USERS)} users, {len(BASE_DISHES)} base dishes, {len(SIZES)} sizes, "
        f"{len(INGREDIENTS)} ingredients and {len(ORDERS)} orders"
    )
    return True
