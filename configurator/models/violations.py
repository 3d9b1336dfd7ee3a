"""Constraint violations reported when an order is rejected.

Every violation carries a stable `constraintViolation` tag, a human-readable
`error`, and the fields a client needs to pinpoint the offending ingredients.
"""

from typing import List, Literal

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class Violation(BaseModel):
    """Base class for all order-creation violations."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    constraint_violation: str
    error: str

    def unavailable_ids(self) -> List[int]:
        """Ingredient ids this violation reports as out of stock."""
        return []

    def to_response(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


class InvalidDish(Violation):
    constraint_violation: Literal["invalid_dish"] = "invalid_dish"
    dish_id: str


class IngredientCount(Violation):
    constraint_violation: Literal["ingredient_count"] = "ingredient_count"
    max_allowed: int
    provided: int


class InvalidIngredient(Violation):
    constraint_violation: Literal["invalid_ingredient"] = "invalid_ingredient"
    ingredient_id: int


class Availability(Violation):
    constraint_violation: Literal["availability"] = "availability"
    ingredient: str
    ingredient_id: int
    current_stock: int

    def unavailable_ids(self) -> List[int]:
        return [self.ingredient_id]


class Incompatibility(Violation):
    constraint_violation: Literal["incompatibility"] = "incompatibility"
    ingredient: str
    ingredient_id: int
    conflicts_with: List[str]


class Requirements(Violation):
    constraint_violation: Literal["requirements"] = "requirements"
    ingredient: str
    ingredient_id: int
    missing: List[str]


class AvailabilityChanged(Violation):
    constraint_violation: Literal["availability_changed"] = "availability_changed"
    unavailable: List[str]
    ingredient_ids: List[int]

    def unavailable_ids(self) -> List[int]:
        return list(self.ingredient_ids)
