"""
pricing.py - Discounted cost of commercial paper

Commercial paper is sold at a discount to par:

    cost = amount * par * (1 - discount)

The result is an exact Decimal (see the context set in core.py). It is never
rounded, because the same figure is debited from the buyer and credited to the
sellers, and the two sides must agree to the last digit.
"""

from __future__ import annotations
from decimal import Decimal
from typing import Union

from .core import to_decimal


Number = Union[int, float, Decimal]


def cost_of_purchase(amount: Number, par: Number, discount: Number) -> Decimal:
    """
    Cost of `amount` papers with face value `par` sold at `discount`.

    Example:
        cost_of_purchase(10, Decimal("1000"), Decimal("0.05")) == Decimal("9500.00")
    """
    return to_decimal(amount) * (to_decimal(par) * (Decimal("1") - to_decimal(discount)))
