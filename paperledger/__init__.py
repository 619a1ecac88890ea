"""
paperledger - Commercial Paper Issuance and Trading Ledger

Companies issue commercial paper, buy it from the issuer's unsold inventory
and from each other, and offer what they hold for resale. Every operation is
planned against a read-only view and applied to the ledger as one atomic
transaction.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from paperledger import (
        Ledger, Company, IssueOrder, PurchaseOrder, issue, purchase,
    )

    ledger = Ledger("main", initial_time=datetime(2025, 1, 2))
    ledger.add(Company("acme", Decimal("0")))
    ledger.add(Company("alice", Decimal("1000000")))

    issue(ledger, IssueOrder(
        cusip="ACME00001", par=Decimal("1000"), quantity_issued=100,
        discount=Decimal("0.05"), maturity=90, issuer="acme",
        issued_timestamp=ledger.current_time,
    ), caller="acme")

    result = purchase(ledger, PurchaseOrder("alice", "ACME00001", 10), caller="alice")
    assert result.ok
"""

# Core types
from .core import (
    LedgerView,
    CommercialPaper,
    PaperOwnership,
    Company,
    Record,
    IssueOrder,
    PurchaseOrder,
    OfferOrder,
    Move,
    RecordChange,
    PendingTransaction,
    Transaction,
    TransactionOrigin,
    OriginType,
    ExecuteResult,
    ErrorKind,
    OrderResult,
    build_transaction,
    ownership_id,
    to_decimal,
    LedgerError,
    ValidationError,
    InsufficientSupply,
    SettlementError,
    RecordNotFound,
    RecordAlreadyExists,
    RECORD_TYPE_PAPER,
    RECORD_TYPE_OWNERSHIP,
    RECORD_TYPE_COMPANY,
    CUSIP_LENGTH,
    MIN_MATURITY_DAYS,
    MAX_MATURITY_DAYS,
)

# Ledger
from .ledger import Ledger

# Pricing
from .pricing import cost_of_purchase

# Validation
from .validation import (
    validate_cusip,
    validate_par,
    validate_quantity_issued,
    validate_discount,
    validate_maturity,
    validate_participant_is_caller,
    validate_quantity_purchased,
    validate_quantity_for_sale,
    validate_balance,
    validate_issue_order,
    validate_purchase_order,
    validate_offer_order,
)

# Issuance
from .issuance import compute_issuance, issue

# Allocation and settlement
from .allocation import (
    SupplySnapshot,
    SourceAllocation,
    summarize_supply,
    allocate,
    compute_seller_changes,
    compute_buyer_change,
    compute_settlement_moves,
    compute_purchase,
    purchase,
)

# Market
from .market import (
    get_ownerships,
    get_holdings,
    get_available_for_sale,
    compute_offer,
    offer_for_sale,
)


__all__ = [
    # Core
    'LedgerView',
    'CommercialPaper',
    'PaperOwnership',
    'Company',
    'Record',
    'IssueOrder',
    'PurchaseOrder',
    'OfferOrder',
    'Move',
    'RecordChange',
    'PendingTransaction',
    'Transaction',
    'TransactionOrigin',
    'OriginType',
    'ExecuteResult',
    'ErrorKind',
    'OrderResult',
    'build_transaction',
    'ownership_id',
    'to_decimal',
    'LedgerError',
    'ValidationError',
    'InsufficientSupply',
    'SettlementError',
    'RecordNotFound',
    'RecordAlreadyExists',
    'RECORD_TYPE_PAPER',
    'RECORD_TYPE_OWNERSHIP',
    'RECORD_TYPE_COMPANY',
    'CUSIP_LENGTH',
    'MIN_MATURITY_DAYS',
    'MAX_MATURITY_DAYS',
    # Ledger
    'Ledger',
    # Pricing
    'cost_of_purchase',
    # Validation
    'validate_cusip',
    'validate_par',
    'validate_quantity_issued',
    'validate_discount',
    'validate_maturity',
    'validate_participant_is_caller',
    'validate_quantity_purchased',
    'validate_quantity_for_sale',
    'validate_balance',
    'validate_issue_order',
    'validate_purchase_order',
    'validate_offer_order',
    # Issuance
    'compute_issuance',
    'issue',
    # Allocation
    'SupplySnapshot',
    'SourceAllocation',
    'summarize_supply',
    'allocate',
    'compute_seller_changes',
    'compute_buyer_change',
    'compute_settlement_moves',
    'compute_purchase',
    'purchase',
    # Market
    'get_ownerships',
    'get_holdings',
    'get_available_for_sale',
    'compute_offer',
    'offer_for_sale',
]
