"""
allocation.py - Purchase Allocation and Settlement

A purchase is sourced from two kinds of sellers:

    1. The issuer's unallocated remainder: papers issued but never bought,
       quantity_issued - sum(ownership.quantity). Always drawn from first.
    2. Other owners' resale offers (ownership.quantity_for_sale), in the order
       the ledger returns ownership records, which is creation order.

=== PIPELINE ===

    summarize_supply(paper, ownerships, buyer) -> SupplySnapshot
    allocate(snapshot, quantity)               -> (SourceAllocation, ...)
    compute_settlement_moves(...)              -> [Move, ...]
    compute_purchase(view, order, caller)      -> PendingTransaction

The first three are pure functions over plain values. compute_purchase reads
the ledger once and returns every ownership change and cash move as one
PendingTransaction; nothing is written until the ledger executes it, so a
purchase that fails at any step leaves the ledger untouched.

Settlement is zero-sum: the buyer pays each seller cost(amount) for the
papers taken from it, so the buyer's debit is exactly the sum of the sellers'
credits, and equals cost(quantity).
"""

from __future__ import annotations
from dataclasses import dataclass, replace
from decimal import Decimal
from typing import Iterable, List, Optional, Tuple

from .core import (
    LedgerView, CommercialPaper, PaperOwnership, PurchaseOrder,
    Move, RecordChange, PendingTransaction, TransactionOrigin, OriginType, OrderResult,
    build_transaction, paper_of, company_of, ownerships_of,
    LedgerError, ValidationError, InsufficientSupply, SettlementError,
)
from .ledger import Ledger
from .pricing import cost_of_purchase
from .validation import validate_purchase_order


# =============================================================================
# PLAN TYPES
# =============================================================================

@dataclass(frozen=True, slots=True)
class SupplySnapshot:
    """
    What is available to a buyer at the moment of planning.

    Attributes:
        paper: The paper being bought
        buyer_holding: The buyer's own ownership record, if any
        sellers: Other owners offering papers for resale, in query order
        total_owned: Papers held in all ownership records (buyer's included)
        unpurchased: Issuer's unallocated remainder
        total_for_sale: unpurchased + every other owner's offer
    """
    paper: CommercialPaper
    buyer_holding: Optional[PaperOwnership]
    sellers: Tuple[PaperOwnership, ...]
    total_owned: int
    unpurchased: int
    total_for_sale: int


@dataclass(frozen=True, slots=True)
class SourceAllocation:
    """
    Papers taken from one seller.

    `ownership` is the seller's record as planned against, or None when the
    papers come from the issuer's unallocated remainder.
    """
    seller: str
    amount: int
    ownership: Optional[PaperOwnership] = None

    @property
    def from_issuer(self) -> bool:
        return self.ownership is None


# =============================================================================
# PURE FUNCTIONS
# =============================================================================

def summarize_supply(
    paper: CommercialPaper,
    ownerships: Iterable[PaperOwnership],
    buyer: str,
) -> SupplySnapshot:
    """
    Partition the ownership records of `paper` and total what is for sale.

    The buyer's own record never counts as supply; its quantity still counts
    towards total_owned.
    """
    buyer_holding = None
    sellers: List[PaperOwnership] = []
    total_owned = 0
    offered = 0

    for ownership in ownerships:
        if ownership.owner == buyer:
            buyer_holding = ownership
        else:
            offered += ownership.quantity_for_sale
            if ownership.quantity_for_sale > 0:
                sellers.append(ownership)
        total_owned += ownership.quantity

    unpurchased = paper.quantity_issued - total_owned
    return SupplySnapshot(
        paper=paper,
        buyer_holding=buyer_holding,
        sellers=tuple(sellers),
        total_owned=total_owned,
        unpurchased=unpurchased,
        total_for_sale=unpurchased + offered,
    )


def allocate(snapshot: SupplySnapshot, quantity: int) -> Tuple[SourceAllocation, ...]:
    """
    Decide where each of `quantity` papers comes from. Pure function.

    The issuer's remainder is drawn first, then each seller in turn, taking
    min(still needed, offered) from each until nothing is needed.

    Raises:
        InsufficientSupply: If quantity exceeds snapshot.total_for_sale
        SettlementError: If the sources run out before quantity is covered

    Example:
        remainder 5, alice offers 10, bob offers 10, quantity 12
        -> (issuer, 5), (alice, 7)
    """
    if quantity > snapshot.total_for_sale:
        raise InsufficientSupply(
            f"Attempting to purchase {quantity} papers but only "
            f"{snapshot.total_for_sale} are available for purchase"
        )

    needed = quantity
    allocations: List[SourceAllocation] = []

    from_issuer = min(needed, snapshot.unpurchased)
    if from_issuer > 0:
        allocations.append(SourceAllocation(snapshot.paper.issuer, from_issuer))
        needed -= from_issuer

    for seller in snapshot.sellers:
        if needed == 0:
            break
        amount = min(needed, seller.quantity_for_sale)
        allocations.append(SourceAllocation(seller.owner, amount, seller))
        needed -= amount

    if needed > 0:
        raise SettlementError("Could not find enough papers to purchase, cancelling transaction")

    return tuple(allocations)


def compute_seller_changes(allocations: Iterable[SourceAllocation]) -> List[RecordChange]:
    """
    Reduce each selling owner's holding and offer by the amount taken.

    A holding that reaches zero is removed rather than kept as an empty row.
    """
    changes = []
    for allocation in allocations:
        ownership = allocation.ownership
        if ownership is None:
            continue
        remaining = ownership.quantity - allocation.amount
        if remaining > 0:
            changes.append(RecordChange(
                old=ownership,
                new=replace(
                    ownership,
                    quantity=remaining,
                    quantity_for_sale=ownership.quantity_for_sale - allocation.amount,
                ),
            ))
        else:
            changes.append(RecordChange(old=ownership, new=None))
    return changes


def compute_buyer_change(snapshot: SupplySnapshot, order: PurchaseOrder) -> RecordChange:
    """Add the purchase to the buyer's holding, creating it on a first purchase."""
    holding = snapshot.buyer_holding
    if holding is None:
        return RecordChange(old=None, new=PaperOwnership(
            paper=snapshot.paper.cusip,
            owner=order.buyer,
            quantity=order.quantity,
            quantity_for_sale=order.quantity_for_sale,
        ))
    return RecordChange(old=holding, new=replace(
        holding,
        quantity=holding.quantity + order.quantity,
        quantity_for_sale=holding.quantity_for_sale + order.quantity_for_sale,
    ))


def compute_settlement_moves(
    paper: CommercialPaper,
    buyer: str,
    allocations: Iterable[SourceAllocation],
) -> List[Move]:
    """
    One cash move from the buyer to each seller, for the cost of its papers.

    Papers the buyer sources from itself (an issuer buying its own remainder)
    cost nothing net and produce no move.
    """
    moves = []
    for allocation in allocations:
        if allocation.seller == buyer:
            continue
        source = "issue" if allocation.from_issuer else "resale"
        moves.append(Move(
            cost_of_purchase(allocation.amount, paper.par, paper.discount),
            buyer,
            allocation.seller,
            f"purchase_{paper.cusip}_{source}",
        ))
    return moves


def _check_zero_sum(
    paper: CommercialPaper,
    buyer: str,
    quantity: int,
    allocations: Tuple[SourceAllocation, ...],
    moves: List[Move],
) -> None:
    self_sourced = sum(a.amount for a in allocations if a.seller == buyer)
    paid = sum((m.quantity for m in moves), Decimal("0"))
    owed = cost_of_purchase(quantity - self_sourced, paper.par, paper.discount)
    if paid != owed:
        raise SettlementError(f"Settlement of {paper.cusip} does not balance: paid {paid}, owed {owed}")


# =============================================================================
# PURCHASE
# =============================================================================

def compute_purchase(
    view: LedgerView,
    order: PurchaseOrder,
    caller: Optional[str],
) -> PendingTransaction:
    """
    Plan a purchase: every ownership change and cash move, as one transaction.

    Args:
        view: Read-only ledger access
        order: What to buy and how much of it to re-offer
        caller: Identity the request is made under (None if unresolved)

    Returns:
        PendingTransaction with, in order: seller holding updates/removals,
        the buyer's holding update/creation, and buyer -> seller cash moves.

    Raises:
        RecordNotFound: Paper or buyer does not exist
        ValidationError: One or more purchase rules failed (all reported)
        InsufficientSupply: Not enough papers for sale
        SettlementError: The plan cannot be completed
    """
    paper = paper_of(view, order.paper)
    buyer = company_of(view, order.buyer)

    errors = validate_purchase_order(order, buyer, paper, caller)
    if errors:
        raise ValidationError(errors)

    snapshot = summarize_supply(paper, ownerships_of(view, paper.cusip), order.buyer)
    allocations = allocate(snapshot, order.quantity)

    changes = compute_seller_changes(allocations)
    changes.append(compute_buyer_change(snapshot, order))
    moves = compute_settlement_moves(paper, order.buyer, allocations)
    _check_zero_sum(paper, order.buyer, order.quantity, allocations, moves)

    return build_transaction(
        view, changes, moves,
        origin=TransactionOrigin(OriginType.PURCHASE, order.buyer, paper.cusip),
        reads=[paper, buyer],
    )


def purchase(ledger: Ledger, order: PurchaseOrder, caller: Optional[str]) -> OrderResult:
    """
    Buy commercial paper for `caller`.

    Returns an OrderResult; a rejected purchase has written nothing.

    Example:
        result = purchase(ledger, PurchaseOrder("alice", "ACME00001", 10), caller="alice")
        if not result.ok:
            print(result.error_kind, result.errors)
    """
    try:
        pending = compute_purchase(ledger, order, caller)
    except LedgerError as e:
        return OrderResult.from_error(e)
    return ledger.submit(pending)
