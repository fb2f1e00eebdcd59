"""Invoice line item models.

An item is priced in exactly one of two modes:

- regular: quantity x price
- buyback: gram x buyback_rate (precious metal bought back by weight)

Each mode is its own model. Fields of the other mode are forbidden rather
than defaulted to zero, so they can never leak into a sum. Prices and rates
are whole currency units (int); gram is a Decimal.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Union
from uuid import UUID, uuid4

from pydantic import BaseModel, Field

from core.errors import IncompatibleModeError, ItemValidationError
from core.money import round_money
from utils.timezone import now_utc


class ItemMode(str, Enum):
    """Pricing mode shared by every item on one invoice."""

    REGULAR = "regular"
    BUYBACK = "buyback"


class _ItemBase(BaseModel):
    """Fields common to both item modes."""

    id: UUID = Field(default_factory=uuid4)
    description: str = Field(..., min_length=1, max_length=500)
    created_at: datetime = Field(default_factory=now_utc)
    updated_at: datetime = Field(default_factory=now_utc)

    model_config = {"extra": "forbid"}


class RegularItem(_ItemBase):
    """Item priced as quantity x unit price."""

    mode: Literal["regular"] = "regular"
    quantity: int = Field(..., ge=1)
    price: int = Field(..., ge=0)

    @property
    def subtotal(self) -> int:
        return self.quantity * self.price

    @property
    def line_amount(self) -> int:
        """Amount this item contributes to the invoice subtotal."""
        return self.subtotal


class BuybackItem(_ItemBase):
    """Item priced by weight: gram x rate per gram."""

    mode: Literal["buyback"] = "buyback"
    gram: Decimal = Field(..., gt=0)
    buyback_rate: int = Field(..., ge=0)

    @property
    def total(self) -> int:
        return round_money(self.gram * self.buyback_rate)

    @property
    def line_amount(self) -> int:
        """Amount this item contributes to the invoice subtotal."""
        return self.total


Item = Annotated[Union[RegularItem, BuybackItem], Field(discriminator="mode")]


def item_mode(item: RegularItem | BuybackItem) -> ItemMode:
    return ItemMode(item.mode)


# =============================================================================
# FIELD CHECKS
# =============================================================================


def _checked_description(description: str | None) -> str:
    if description is None or not description.strip():
        raise ItemValidationError("description", "Description is required")
    description = description.strip()
    if len(description) > 500:
        raise ItemValidationError("description", "Description must be at most 500 characters")
    return description


def _checked_quantity(quantity: int | None) -> int:
    if quantity is None:
        raise ItemValidationError("quantity", "Quantity is required for regular items")
    if quantity < 1:
        raise ItemValidationError("quantity", "Quantity must be at least 1")
    return quantity


def _checked_price(price: int | None) -> int:
    if price is None:
        raise ItemValidationError("price", "Price is required for regular items")
    if price < 0:
        raise ItemValidationError("price", "Price must not be negative")
    return price


def _checked_gram(gram: Decimal | None) -> Decimal:
    if gram is None:
        raise ItemValidationError("gram", "Gram is required for buyback items")
    if not gram.is_finite() or gram <= 0:
        raise ItemValidationError("gram", "Gram must be greater than 0")
    return gram


def _checked_rate(rate: int | None) -> int:
    if rate is None or rate <= 0:
        raise ItemValidationError(
            "buyback_rate",
            "Buyback rate per gram is required. Set it in settings or on the item.",
        )
    return rate


# =============================================================================
# INPUT / UPDATE
# =============================================================================


class ItemInput(BaseModel):
    """
    Raw item form input.

    Carries the fields of both modes because a form does. Only the fields of
    the selected mode are read by to_item(); the rest are dropped.
    """

    mode: ItemMode = ItemMode.REGULAR
    description: str | None = None
    quantity: int | None = None
    price: int | None = None
    gram: Decimal | None = None
    buyback_rate: int | None = None

    def to_item(self, default_buyback_rate: int = 0) -> RegularItem | BuybackItem:
        """
        Validate and build the item for the selected mode.

        Args:
            default_buyback_rate: Rate per gram used when the input has none

        Raises:
            ItemValidationError: Naming the first field that failed
        """
        description = _checked_description(self.description)

        if self.mode == ItemMode.BUYBACK:
            rate = self.buyback_rate if self.buyback_rate is not None else default_buyback_rate
            return BuybackItem(
                description=description,
                gram=_checked_gram(self.gram),
                buyback_rate=_checked_rate(rate),
            )

        return RegularItem(
            description=description,
            quantity=_checked_quantity(self.quantity),
            price=_checked_price(self.price),
        )


_REGULAR_FIELDS = {"quantity", "price"}
_BUYBACK_FIELDS = {"gram", "buyback_rate"}


class ItemUpdate(BaseModel):
    """Fields that can be updated on an item. All optional."""

    description: str | None = None
    quantity: int | None = None
    price: int | None = None
    gram: Decimal | None = None
    buyback_rate: int | None = None

    def apply_to(self, item: RegularItem | BuybackItem) -> RegularItem | BuybackItem:
        """
        Return a copy of item with these updates merged in.

        Raises:
            IncompatibleModeError: If a field of the other mode is set
            ItemValidationError: If a merged field fails its check
        """
        updates = self.model_dump(exclude_none=True)
        if not updates:
            return item

        if isinstance(item, RegularItem):
            if updates.keys() & _BUYBACK_FIELDS:
                raise IncompatibleModeError(ItemMode.REGULAR.value, ItemMode.BUYBACK.value)
            merged = {
                "description": _checked_description(updates.get("description", item.description)),
                "quantity": _checked_quantity(updates.get("quantity", item.quantity)),
                "price": _checked_price(updates.get("price", item.price)),
            }
        else:
            if updates.keys() & _REGULAR_FIELDS:
                raise IncompatibleModeError(ItemMode.BUYBACK.value, ItemMode.REGULAR.value)
            merged = {
                "description": _checked_description(updates.get("description", item.description)),
                "gram": _checked_gram(updates.get("gram", item.gram)),
                "buyback_rate": _checked_rate(updates.get("buyback_rate", item.buyback_rate)),
            }

        merged["updated_at"] = now_utc()
        return item.model_copy(update=merged)
