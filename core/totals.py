"""
Invoice totals calculator.

Pure function of its inputs. Tax applies to the item subtotal only, never to
shipping. The only rounding step is round_money on the tax amount (and on a
buyback line inside the item model), so a total recomputed later always
matches the one that was shown.
"""

from decimal import Decimal
from typing import Iterable, Protocol

from pydantic import BaseModel

from core.money import round_money

_HUNDRED = Decimal(100)


class PricedLine(Protocol):
    """Anything with a line amount: RegularItem or BuybackItem."""

    @property
    def line_amount(self) -> int: ...


class Totals(BaseModel):
    """Calculator output. Copied verbatim onto the invoice and the renderer."""

    subtotal: int
    shipping_cost: int
    tax_amount: int
    total: int

    model_config = {"frozen": True}


def compute_totals(
    items: Iterable[PricedLine],
    shipping_cost: int,
    tax_enabled: bool,
    tax_percentage: Decimal | int,
) -> Totals:
    """
    Compute invoice totals.

    Args:
        items: Items in any order; an empty iterable gives a zero subtotal
        shipping_cost: Shipping in whole units (caller rejects negatives)
        tax_enabled: Whether tax is charged at all
        tax_percentage: Percentage of the subtotal charged as tax

    Returns:
        Totals with total = subtotal + shipping_cost + tax_amount
    """
    subtotal = sum(item.line_amount for item in items)

    if tax_enabled:
        tax_amount = round_money(Decimal(subtotal) * Decimal(tax_percentage) / _HUNDRED)
    else:
        tax_amount = 0

    return Totals(
        subtotal=subtotal,
        shipping_cost=shipping_cost,
        tax_amount=tax_amount,
        total=subtotal + shipping_cost + tax_amount,
    )
