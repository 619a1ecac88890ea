"""
validation.py - Business rules for issue, purchase and offer orders

Every rule is a pure predicate returning an (is_valid, reason) tuple. The
order-level validators run every rule and collect all the failures, so a
single rejected order reports everything that is wrong with it at once.

    validate_issue_order(order, caller)                 -> [messages]
    validate_purchase_order(order, buyer, paper, caller) -> [messages]
    validate_offer_order(order, holding, caller)         -> [messages]

An empty list means the order is acceptable.
"""

from __future__ import annotations
from decimal import Decimal
from typing import List, Optional, Tuple

from .core import (
    CommercialPaper, Company, IssueOrder, OfferOrder, PaperOwnership, PurchaseOrder,
    CUSIP_LENGTH, MIN_MATURITY_DAYS, MAX_MATURITY_DAYS,
)
from .pricing import cost_of_purchase


Check = Tuple[bool, str]

_OK: Check = (True, "")


# =============================================================================
# ISSUANCE RULES
# =============================================================================

def validate_cusip(cusip: str) -> Check:
    if cusip is None or len(cusip) != CUSIP_LENGTH:
        return False, f"CUSIP must be {CUSIP_LENGTH} characters long"
    return _OK


def validate_par(par: Decimal) -> Check:
    if not par.is_finite() or par <= 0:
        return False, "Par value must be greater than 0"
    return _OK


def validate_quantity_issued(quantity_issued: int) -> Check:
    if isinstance(quantity_issued, bool) or not isinstance(quantity_issued, int):
        return False, "Quantity issued must be a whole number"
    if quantity_issued <= 0:
        return False, "Quantity issued must be greater than 0"
    return _OK


def validate_discount(discount: Decimal) -> Check:
    if not discount.is_finite() or not (0 < discount < 1):
        return False, "Discount must be greater than 0% and less than 100%"
    return _OK


def validate_maturity(maturity: int) -> Check:
    """Maturity is a whole number of days in [1, 270]."""
    if isinstance(maturity, bool) or not isinstance(maturity, int):
        return False, "Maturity must be a whole number of days"
    if not (MIN_MATURITY_DAYS <= maturity <= MAX_MATURITY_DAYS):
        return False, f"Maturity must be at least {MIN_MATURITY_DAYS} day and less than {MAX_MATURITY_DAYS} days"
    return _OK


# =============================================================================
# IDENTITY
# =============================================================================

ISSUE_ACTION = "issue commercial paper"
PURCHASE_ACTION = "purchase commercial paper"
OFFER_ACTION = "offer commercial paper for sale"


def validate_participant_is_caller(
    participant: str,
    caller: Optional[str],
    action: str = ISSUE_ACTION,
) -> Check:
    """
    A company may only issue, buy or offer paper for itself.

    `caller` is the identity the request was authenticated as; None means the
    identity is not associated with any company. `action` names what was
    refused in that case.
    """
    if caller is None:
        return False, f"Identity is not associated with any participant, cannot {action}"
    if participant != caller:
        return False, "A participant can only issue or purchase commercial paper for itself"
    return _OK


# =============================================================================
# PURCHASE RULES
# =============================================================================

def validate_quantity_purchased(quantity: int) -> Check:
    # No rule yet: PurchaseOrder already rejects non-positive quantities.
    return _OK


def validate_quantity_for_sale(quantity: int, quantity_for_sale: int) -> Check:
    if quantity_for_sale > quantity:
        return False, "Quantity for sale must be less than or equal to the quantity purchased"
    return _OK


def validate_balance(buyer: Company, quantity: int, paper: CommercialPaper) -> Check:
    """The buyer must be able to pay for the whole order."""
    cost = cost_of_purchase(quantity, paper.par, paper.discount)
    if cost > buyer.balance:
        return False, (
            f"Buyer does not have sufficient funds to purchase paper, "
            f"balance = ${buyer.balance}, cost = ${cost}"
        )
    return _OK


# =============================================================================
# ORDER VALIDATORS
# =============================================================================

def _collect(checks: List[Check]) -> List[str]:
    return [reason for is_valid, reason in checks if not is_valid]


def validate_issue_order(order: IssueOrder, caller: Optional[str]) -> List[str]:
    """Run every issuance rule and return the failure messages."""
    return _collect([
        validate_cusip(order.cusip),
        validate_par(order.par),
        validate_quantity_issued(order.quantity_issued),
        validate_discount(order.discount),
        validate_maturity(order.maturity),
        validate_participant_is_caller(order.issuer, caller),
    ])


def validate_purchase_order(
    order: PurchaseOrder,
    buyer: Company,
    paper: CommercialPaper,
    caller: Optional[str],
) -> List[str]:
    """Run every purchase rule and return the failure messages."""
    return _collect([
        validate_participant_is_caller(order.buyer, caller, PURCHASE_ACTION),
        validate_quantity_purchased(order.quantity),
        validate_quantity_for_sale(order.quantity, order.quantity_for_sale),
        validate_balance(buyer, order.quantity, paper),
    ])


def validate_offer_order(
    order: OfferOrder,
    holding: Optional[PaperOwnership],
    caller: Optional[str],
) -> List[str]:
    """
    Rules for changing a resale offer.

    The owner must hold the paper and may offer between 0 and the quantity it
    holds.
    """
    checks = [validate_participant_is_caller(order.owner, caller, OFFER_ACTION)]
    if isinstance(order.quantity_for_sale, bool) or not isinstance(order.quantity_for_sale, int):
        checks.append((False, "Quantity for sale must be a whole number"))
    elif order.quantity_for_sale < 0:
        checks.append((False, "Quantity for sale cannot be negative"))
    elif holding is None:
        checks.append((False, f"{order.owner} does not own any {order.paper}"))
    elif order.quantity_for_sale > holding.quantity:
        checks.append((False, "Quantity for sale must be less than or equal to the quantity owned"))
    return _collect(checks)
