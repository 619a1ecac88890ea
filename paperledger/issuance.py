"""
issuance.py - Issuing Commercial Paper

Issuing creates the CommercialPaper record and nothing else. No ownership
record is written: the whole issue is the issuer's unallocated remainder
until it is bought (see allocation.py).
"""

from __future__ import annotations
from typing import Optional

from .core import (
    LedgerView, CommercialPaper, IssueOrder,
    RecordChange, PendingTransaction, TransactionOrigin, OriginType, OrderResult,
    RECORD_TYPE_PAPER,
    build_transaction, company_of,
    LedgerError, ValidationError, RecordAlreadyExists,
)
from .ledger import Ledger
from .validation import validate_issue_order


def compute_issuance(
    view: LedgerView,
    order: IssueOrder,
    caller: Optional[str],
) -> PendingTransaction:
    """
    Plan the issuance of a new paper.

    Raises:
        ValidationError: One or more issuance rules failed (all reported)
        RecordNotFound: The issuer is not a registered company
        RecordAlreadyExists: The CUSIP is already issued
    """
    errors = validate_issue_order(order, caller)
    if errors:
        raise ValidationError(errors)

    company_of(view, order.issuer)
    if view.exists(RECORD_TYPE_PAPER, order.cusip):
        raise RecordAlreadyExists(f"Commercial paper {order.cusip} already issued")

    paper = CommercialPaper(
        cusip=order.cusip,
        par=order.par,
        quantity_issued=order.quantity_issued,
        discount=order.discount,
        maturity=order.maturity,
        issuer=order.issuer,
        issued_timestamp=order.issued_timestamp,
    )
    return build_transaction(
        view, [RecordChange(old=None, new=paper)],
        origin=TransactionOrigin(OriginType.ISSUANCE, order.issuer, order.cusip),
    )


def issue(ledger: Ledger, order: IssueOrder, caller: Optional[str]) -> OrderResult:
    """Issue commercial paper on behalf of `caller`."""
    try:
        pending = compute_issuance(ledger, order, caller)
    except LedgerError as e:
        return OrderResult.from_error(e)
    return ledger.submit(pending)
