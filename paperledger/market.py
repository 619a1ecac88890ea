"""
market.py - Supply Inspection and Resale Offers

Read helpers over the ownership records of a paper, and the one operation an
owner has outside of a purchase: changing how many of its papers it offers
for resale.
"""

from __future__ import annotations
from dataclasses import replace
from typing import Optional, Tuple

from .allocation import SupplySnapshot, summarize_supply
from .core import (
    LedgerView, OfferOrder, PaperOwnership,
    RecordChange, PendingTransaction, TransactionOrigin, OriginType, OrderResult,
    RECORD_TYPE_OWNERSHIP,
    build_transaction, ownership_id, paper_of, ownerships_of,
    LedgerError, ValidationError,
)
from .ledger import Ledger
from .validation import validate_offer_order


def get_ownerships(view: LedgerView, cusip: str) -> Tuple[PaperOwnership, ...]:
    """All holdings of a paper, in creation order."""
    return ownerships_of(view, cusip)


def get_holdings(view: LedgerView, owner: str) -> Tuple[PaperOwnership, ...]:
    """All holdings of a company, in creation order."""
    return view.query(RECORD_TYPE_OWNERSHIP, owner=owner)


def get_available_for_sale(view: LedgerView, cusip: str, buyer: Optional[str] = None) -> SupplySnapshot:
    """
    Liquidity of a paper as the allocation engine would see it.

    With a buyer, that buyer's own offer is excluded from the supply.
    """
    paper = paper_of(view, cusip)
    return summarize_supply(paper, ownerships_of(view, cusip), buyer)


def compute_offer(view: LedgerView, order: OfferOrder, caller: Optional[str]) -> PendingTransaction:
    """
    Plan a change to the quantity an owner offers for resale.

    Returns an empty PendingTransaction when the offer is unchanged.

    Raises:
        RecordNotFound: The paper does not exist
        ValidationError: The order breaks an offer rule
    """
    paper_of(view, order.paper)
    record_id = ownership_id(order.owner, order.paper)
    holding = (
        view.get(RECORD_TYPE_OWNERSHIP, record_id)
        if view.exists(RECORD_TYPE_OWNERSHIP, record_id) else None
    )

    errors = validate_offer_order(order, holding, caller)
    if errors:
        raise ValidationError(errors)

    origin = TransactionOrigin(OriginType.OFFER, order.owner, order.paper)
    if holding.quantity_for_sale == order.quantity_for_sale:
        return build_transaction(view, [], origin=origin)
    return build_transaction(
        view,
        [RecordChange(old=holding, new=replace(holding, quantity_for_sale=order.quantity_for_sale))],
        origin=origin,
    )


def offer_for_sale(ledger: Ledger, order: OfferOrder, caller: Optional[str]) -> OrderResult:
    """Offer (or withdraw) papers for resale on behalf of `caller`."""
    try:
        pending = compute_offer(ledger, order, caller)
    except LedgerError as e:
        return OrderResult.from_error(e)
    return ledger.submit(pending)
