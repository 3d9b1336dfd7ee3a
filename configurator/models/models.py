"""Data models and schemas for the Dish Configurator service.

Defines Pydantic models for the catalog (ingredients, sizes, base dishes),
request/response validation at the HTTP boundary, and the decisions returned
by the constraint resolver. All models use Pydantic v2.
"""

import re
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, SerializeAsAny, field_validator, model_validator
from pydantic.alias_generators import to_camel

from configurator.models.violations import Violation


DISH_ID_PATTERN = re.compile(r"^(\d+)_(\d+)$")


class ApiModel(BaseModel):
    """Base for every model that crosses the HTTP boundary (camelCase on the wire)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True)


# ============================================================================
# Catalog
# ============================================================================


class Ingredient(BaseModel):
    """An ingredient with its price, stock and constraint edges.

    `requires` and `incompatible_with` hold ingredient ids. Stock is `None`
    when the ingredient is unlimited.
    """

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: Annotated[int, Field(ge=1, description="Stable ingredient identifier")]
    name: Annotated[str, Field(min_length=1, max_length=100, description="Unique ingredient name")]
    price: Annotated[Decimal, Field(ge=0, description="Unit price")]
    stock: Annotated[Optional[int], Field(None, ge=0, description="Remaining units, None for unlimited")]
    requires: Annotated[frozenset[int], Field(default_factory=frozenset, description="Ids this ingredient requires")]
    incompatible_with: Annotated[
        frozenset[int], Field(default_factory=frozenset, description="Ids this ingredient cannot be combined with")
    ]

    @model_validator(mode="after")
    def validate_not_self_incompatible(self) -> "Ingredient":
        """An ingredient can never be incompatible with itself."""
        if self.id in self.incompatible_with:
            raise ValueError(f"Ingredient {self.name} cannot be incompatible with itself")
        return self

    @property
    def is_unlimited(self) -> bool:
        return self.stock is None

    @property
    def is_available(self) -> bool:
        """True when the ingredient has unlimited or positive stock."""
        return self.stock is None or self.stock > 0


class Size(BaseModel):
    """Dish size: base price and the cap on selected ingredients."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: Annotated[int, Field(ge=1)]
    label: Annotated[str, Field(min_length=1, max_length=50)]
    base_price: Annotated[Decimal, Field(ge=0)]
    max_ingredients: Annotated[int, Field(ge=1, description="Maximum number of selected ingredients")]


class BaseDish(BaseModel):
    """Dish category independent of size (pizza, pasta, ...)."""

    model_config = ConfigDict(frozen=True, str_strip_whitespace=True)

    id: Annotated[int, Field(ge=1)]
    name: Annotated[str, Field(min_length=1, max_length=100)]


class DishRef(BaseModel):
    """Composite reference to an orderable dish: `<baseDishId>_<sizeId>`."""

    model_config = ConfigDict(frozen=True)

    base_dish_id: int
    size_id: int

    @classmethod
    def parse(cls, value: str) -> "DishRef":
        """Parse a combined dish id such as "1_2".

        Raises:
            ValueError: If the value is not two integers joined by an underscore.
        """
        match = DISH_ID_PATTERN.match(value.strip()) if isinstance(value, str) else None
        if not match:
            raise ValueError(f"Dish id must look like '<baseDishId>_<sizeId>', got: {value!r}")
        return cls(base_dish_id=int(match.group(1)), size_id=int(match.group(2)))

    def __str__(self) -> str:
        return f"{self.base_dish_id}_{self.size_id}"


class Dish(BaseModel):
    """A base dish paired with a size; the orderable unit."""

    model_config = ConfigDict(frozen=True)

    base_dish: BaseDish
    size: Size

    @property
    def ref(self) -> DishRef:
        return DishRef(base_dish_id=self.base_dish.id, size_id=self.size.id)

    @property
    def id(self) -> str:
        return str(self.ref)

    @property
    def name(self) -> str:
        return self.base_dish.name

    @property
    def price(self) -> Decimal:
        return self.size.base_price

    @property
    def max_ingredients(self) -> int:
        return self.size.max_ingredients


class OrderStatus(str, Enum):
    CONFIRMED = "confirmed"
    CANCELLED = "cancelled"


class Order(ApiModel):
    """Historical view of an order. Prices and ingredient names are frozen at creation."""

    model_config = ConfigDict(frozen=True)

    id: int
    user_id: int
    dish_id: str
    dish_name: str
    dish_size: str
    dish_price: float
    total_price: float
    order_date: datetime
    status: OrderStatus
    ingredients: List[str] = Field(default_factory=list)
    ingredient_prices: List[float] = Field(default_factory=list)
    requires_second_factor: bool = True


# ============================================================================
# Resolver results
# ============================================================================


class DenialReason(str, Enum):
    """Why an interactive add or remove was refused."""

    NO_SIZE_SELECTED = "no-size-selected"
    CAPACITY_EXCEEDED = "capacity-exceeded"
    UNAVAILABLE = "unavailable"
    INCOMPATIBLE = "incompatible"
    REQUIRED_BY_OTHERS = "required-by-others"
    UNKNOWN_INGREDIENT = "unknown-ingredient"
    UNKNOWN_DISH = "unknown-dish"


class Decision(BaseModel):
    """Outcome of `can_add` / `can_remove`."""

    model_config = ConfigDict(frozen=True)

    allowed: bool
    reason: Optional[DenialReason] = None
    ingredient: Optional[str] = None
    conflicts_with: Tuple[str, ...] = ()
    dependents: Tuple[str, ...] = ()
    message: Optional[str] = None

    @classmethod
    def allow(cls, ingredient: Optional[str] = None) -> "Decision":
        return cls(allowed=True, ingredient=ingredient)

    @classmethod
    def deny(cls, reason: DenialReason, message: str, **details) -> "Decision":
        return cls(allowed=False, reason=reason, message=message, **details)


class Expansion(BaseModel):
    """Outcome of `expand_with_requirements`.

    On success `selection` is the fully expanded selection. On failure it is
    None and `chain` lists ingredient names from the requested ingredient down
    to the one that could not be added.
    """

    model_config = ConfigDict(frozen=True)

    selection: Optional[Tuple[int, ...]] = None
    reason: Optional[DenialReason] = None
    ingredient: Optional[str] = None
    chain: Tuple[str, ...] = ()
    conflicts_with: Tuple[str, ...] = ()
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.selection is not None

    @property
    def added(self) -> int:
        return len(self.selection) if self.selection is not None else 0


class Validation(BaseModel):
    """Outcome of `validate_full_selection`: a total price or the first violation."""

    model_config = ConfigDict(frozen=True)

    total_price: Optional[Decimal] = None
    violation: Optional[SerializeAsAny[Violation]] = None

    @property
    def valid(self) -> bool:
        return self.violation is None


# ============================================================================
# HTTP boundary
# ============================================================================


class OrderRequest(ApiModel):
    """Order creation input: `{dishId: "<baseDishId>_<sizeId>", ingredientIds: [int]}`."""

    dish_id: Annotated[str, Field(min_length=3, max_length=41, description="Combined dish id, e.g. '1_2'")]
    ingredient_ids: Annotated[
        List[Annotated[int, Field(ge=1)]],
        Field(max_length=100, description="Selected ingredient ids (no duplicates)"),
    ]

    @field_validator("dish_id")
    @classmethod
    def validate_dish_id(cls, value: str) -> str:
        """Reject dish ids that are not `<int>_<int>`."""
        DishRef.parse(value)
        return value

    @field_validator("ingredient_ids")
    @classmethod
    def validate_unique_ingredients(cls, value: List[int]) -> List[int]:
        """Each ingredient can appear at most once in an order."""
        if len(set(value)) != len(value):
            raise ValueError("ingredientIds must not contain duplicates")
        return value

    @property
    def dish_ref(self) -> DishRef:
        return DishRef.parse(self.dish_id)


class CreatedOrder(ApiModel):
    """Order creation output."""

    id: int
    dish_id: str
    ingredient_ids: List[int]
    total_price: float
    message: str = "Order created successfully"


class LoginRequest(ApiModel):
    username: Annotated[str, Field(min_length=3, max_length=254, description="User email")]
    password: Annotated[str, Field(min_length=1, max_length=200)]


class TotpRequest(ApiModel):
    code: Annotated[str, Field(pattern=r"^\d{6}$", description="6-digit TOTP code")]


class UserInfo(ApiModel):
    """Client-safe view of the logged-in user."""

    id: int
    username: str
    name: Optional[str] = None
    can_do_totp: bool = False
    is_totp: bool = False


class IngredientOut(ApiModel):
    """Ingredient as listed to clients: constraint edges resolved to names."""

    id: int
    name: str
    price: float
    availability: Optional[int] = None
    requires: List[str] = Field(default_factory=list)
    incompatible: List[str] = Field(default_factory=list)


class SizeOut(ApiModel):
    id: int
    label: str
    base_price: float
    max_ingredients: int


class DishOut(ApiModel):
    id: str
    name: str
    size: str
    price: float
    max_ingredients: int
    base_dish_id: int
    size_id: int

    @classmethod
    def from_dish(cls, dish: Dish) -> "DishOut":
        return cls(
            id=dish.id,
            name=dish.name,
            size=dish.size.label,
            price=float(dish.price),
            max_ingredients=dish.max_ingredients,
            base_dish_id=dish.base_dish.id,
            size_id=dish.size.id,
        )
