"""
Core types and pure functions for the commercial paper ledger.

This module provides the foundational data structures and protocols:
1. Protocols: LedgerView for read-only ledger access
2. Immutable records: CommercialPaper, PaperOwnership, Company
3. Orders: IssueOrder, PurchaseOrder, OfferOrder
4. Immutable mutation types: Move, RecordChange, PendingTransaction, Transaction
5. Exceptions: LedgerError and domain-specific error types
6. Results: ExecuteResult, ErrorKind, OrderResult

All functions in this module are pure and operate on read-only views.
No function can mutate ledger state directly.
"""

from __future__ import annotations
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_EVEN, getcontext
from enum import Enum
import hashlib
from typing import (
    List, Optional, Any, Protocol, Tuple, Union,
    runtime_checkable,
)


# ============================================================================
# DECIMAL CONTEXT CONFIGURATION
# ============================================================================
#
# Cash amounts are Decimal and are never quantized. With 50 digits of
# precision, the product of an integer quantity, a par value and a discount
# factor is exact for any realistic inputs, so the sum of per-seller costs
# equals the cost of the whole purchase to the last digit.
#
# PRECONDITION: No other code should modify the global Decimal context.
#
_LEDGER_DECIMAL_CONTEXT = getcontext()
_LEDGER_DECIMAL_CONTEXT.prec = 50
_LEDGER_DECIMAL_CONTEXT.rounding = ROUND_HALF_EVEN


# ============================================================================
# CONSTANTS
# ============================================================================

# Record kinds (strings, not enum, matching the ledger's wire names).
RECORD_TYPE_PAPER = "COMMERCIAL_PAPER"
RECORD_TYPE_OWNERSHIP = "PAPER_OWNERSHIP"
RECORD_TYPE_COMPANY = "COMPANY"

RECORD_TYPES = (RECORD_TYPE_PAPER, RECORD_TYPE_OWNERSHIP, RECORD_TYPE_COMPANY)

# Issuance rules
CUSIP_LENGTH = 9
MIN_MATURITY_DAYS = 1
MAX_MATURITY_DAYS = 270

DEFAULT_LEDGER_TIME = datetime(1970, 1, 1)


def to_decimal(value: Any) -> Decimal:
    """Convert a numeric value to Decimal, going through str() for floats."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True, slots=True)
class CommercialPaper:
    """
    An issued commercial paper instrument.

    Attributes:
        cusip: Unique 9-character identifier.
        par: Face value of one paper.
        quantity_issued: Number of papers issued.
        discount: Discount rate applied to par, in (0, 1).
        maturity: Days to maturity, 1 to 270.
        issuer: Name of the issuing company.
        issued_timestamp: When the paper was issued.
    """
    cusip: str
    par: Decimal
    quantity_issued: int
    discount: Decimal
    maturity: int
    issuer: str
    issued_timestamp: datetime

    kind = RECORD_TYPE_PAPER

    def __post_init__(self):
        object.__setattr__(self, 'par', to_decimal(self.par))
        object.__setattr__(self, 'discount', to_decimal(self.discount))

    @property
    def record_id(self) -> str:
        return self.cusip


def ownership_id(owner: str, paper: str) -> str:
    """Identifier of the ownership record for (owner, paper)."""
    return f"{owner},{paper}"


@dataclass(frozen=True, slots=True)
class PaperOwnership:
    """
    How much of a paper a company holds and how much it offers for resale.

    A record with quantity 0 is never stored; it is removed instead.
    """
    paper: str
    owner: str
    quantity: int
    quantity_for_sale: int = 0

    kind = RECORD_TYPE_OWNERSHIP

    @property
    def record_id(self) -> str:
        return ownership_id(self.owner, self.paper)


@dataclass(frozen=True, slots=True)
class Company:
    """A participant with a signed cash balance."""
    name: str
    balance: Decimal = Decimal("0")

    kind = RECORD_TYPE_COMPANY

    def __post_init__(self):
        if not self.name or not self.name.strip():
            raise ValueError("Company name cannot be empty")
        object.__setattr__(self, 'balance', to_decimal(self.balance))

    @property
    def record_id(self) -> str:
        return self.name


Record = Union[CommercialPaper, PaperOwnership, Company]


# ============================================================================
# ORDERS
# ============================================================================

@dataclass(frozen=True, slots=True)
class IssueOrder:
    """
    Request to issue a new commercial paper.

    Only numeric types are normalised here. Business rules are checked by
    validate_issue_order() so that every violation is reported together.
    """
    cusip: str
    par: Decimal
    quantity_issued: int
    discount: Decimal
    maturity: int
    issuer: str
    issued_timestamp: datetime

    def __post_init__(self):
        object.__setattr__(self, 'par', to_decimal(self.par))
        object.__setattr__(self, 'discount', to_decimal(self.discount))


@dataclass(frozen=True, slots=True)
class PurchaseOrder:
    """
    Request to buy `quantity` papers and immediately re-offer
    `quantity_for_sale` of them for resale.
    """
    buyer: str
    paper: str
    quantity: int
    quantity_for_sale: int = 0

    def __post_init__(self):
        if isinstance(self.quantity, bool) or not isinstance(self.quantity, int):
            raise ValueError(f"quantity must be an integer, got {type(self.quantity)}")
        if isinstance(self.quantity_for_sale, bool) or not isinstance(self.quantity_for_sale, int):
            raise ValueError(
                f"quantity_for_sale must be an integer, got {type(self.quantity_for_sale)}"
            )
        if self.quantity <= 0:
            raise ValueError(f"quantity must be positive, got {self.quantity}")
        if self.quantity_for_sale < 0:
            raise ValueError(f"quantity_for_sale cannot be negative, got {self.quantity_for_sale}")


@dataclass(frozen=True, slots=True)
class OfferOrder:
    """Request to change how much of an existing holding is offered for resale."""
    owner: str
    paper: str
    quantity_for_sale: int


# ============================================================================
# PROTOCOLS
# ============================================================================

@runtime_checkable
class LedgerView(Protocol):
    """
    Read-only interface to ledger state.

    Planning functions (compute_issuance, compute_purchase, compute_offer)
    accept a LedgerView and never mutate it. The Ledger class implements this
    protocol; tests use FakeView.
    """

    @property
    def current_time(self) -> datetime:
        """Return the current logical time of the ledger."""
        ...

    @property
    def version(self) -> int:
        """Return the number of transactions applied so far."""
        ...

    def get(self, kind: str, record_id: str) -> Record:
        """
        Return the record of the given kind and id.

        Raises RecordNotFound if it does not exist.
        """
        ...

    def exists(self, kind: str, record_id: str) -> bool:
        """Return True if a record of the given kind and id exists."""
        ...

    def query(self, kind: str, **equals: Any) -> Tuple[Record, ...]:
        """
        Return all records of a kind whose attributes equal the given values.

        Records are returned in creation order.
        """
        ...


# ============================================================================
# ENUMS
# ============================================================================

class ExecuteResult(Enum):
    """
    Outcome of a transaction execution attempt.

    APPLIED: Transaction was validated and applied to the ledger.
    ALREADY_APPLIED: Transaction intent was previously processed (idempotent behavior).
    REJECTED: Transaction failed validation; nothing was written.
    """
    APPLIED = "applied"
    ALREADY_APPLIED = "already_applied"
    REJECTED = "rejected"


class ErrorKind(Enum):
    """Why an order was rejected."""
    VALIDATION = "validation"
    INSUFFICIENT_SUPPLY = "insufficient_supply"
    LEDGER = "ledger"


class OriginType(Enum):
    """Classification of where a transaction originated."""
    ISSUANCE = "issuance"
    PURCHASE = "purchase"
    OFFER = "offer"
    SYSTEM = "system"       # Direct record maintenance (add/update/remove)


# ============================================================================
# EXCEPTIONS
# ============================================================================

class LedgerError(Exception):
    """Base exception for all ledger-related errors."""
    pass


class ValidationError(LedgerError):
    """Raised when an order violates one or more business rules."""

    def __init__(self, errors: List[str]):
        self.errors: Tuple[str, ...] = tuple(errors)
        super().__init__("; ".join(self.errors))


class InsufficientSupply(LedgerError):
    """Raised when more papers are requested than are available for purchase."""
    pass


class SettlementError(LedgerError):
    """Raised when a settlement cannot be completed; nothing is committed."""
    pass


class RecordNotFound(LedgerError):
    """Raised when a record does not exist in the ledger."""
    pass


class RecordAlreadyExists(LedgerError):
    """Raised when adding a record whose id is already taken."""
    pass


# ============================================================================
# TRANSACTION ORIGIN
# ============================================================================

@dataclass(frozen=True, slots=True)
class TransactionOrigin:
    """
    Immutable record of a transaction's origin for audit purposes.

    Attributes:
        origin_type: What kind of operation produced the transaction
        source_id: Who requested it (caller identity or "system")
        paper: CUSIP of the paper involved (if applicable)
    """
    origin_type: OriginType
    source_id: str
    paper: Optional[str] = None

    def __repr__(self) -> str:
        parts = [f"{self.origin_type.value}:{self.source_id}"]
        if self.paper:
            parts.append(f"paper={self.paper}")
        return f"Origin({', '.join(parts)})"


# ============================================================================
# MUTATIONS
# ============================================================================

@dataclass(frozen=True, slots=True)
class Move:
    """
    A cash transfer between two companies.

    Attributes:
        quantity: Amount to transfer (finite and non-zero).
        source: Company debited.
        dest: Company credited.
        contract_id: Identifier of the operation generating this move.
    """
    quantity: Decimal
    source: str
    dest: str
    contract_id: str

    def __post_init__(self):
        if not self.source or not self.source.strip():
            raise ValueError("Move source cannot be empty")
        if not self.dest or not self.dest.strip():
            raise ValueError("Move dest cannot be empty")
        if not self.contract_id or not self.contract_id.strip():
            raise ValueError("Move contract_id cannot be empty")
        if not isinstance(self.quantity, Decimal):
            raise ValueError(f"Move quantity must be Decimal, got {type(self.quantity)}")
        if not self.quantity.is_finite():
            raise ValueError(f"Move quantity must be finite, got {self.quantity}")
        if self.quantity == 0:
            raise ValueError("Move quantity is zero")
        if self.source == self.dest:
            raise ValueError("Source and dest must be different")

    def __repr__(self) -> str:
        return f"Move({self.quantity}: {self.source}→{self.dest})"


@dataclass(frozen=True, slots=True)
class RecordChange:
    """
    Replacement of one ledger record, with the snapshot it was computed from.

    old=None creates the record, new=None removes it. The ledger rejects the
    change if the stored record no longer equals `old`.
    """
    old: Optional[Record]
    new: Optional[Record]

    def __post_init__(self):
        if self.old is None and self.new is None:
            raise ValueError("RecordChange needs an old or a new record")
        if self.old is not None and self.new is not None:
            if self.old.kind != self.new.kind:
                raise ValueError("RecordChange cannot change a record's kind")
            if self.old.record_id != self.new.record_id:
                raise ValueError("RecordChange cannot change a record's id")

    @property
    def kind(self) -> str:
        return (self.new if self.new is not None else self.old).kind

    @property
    def record_id(self) -> str:
        return (self.new if self.new is not None else self.old).record_id

    @property
    def action(self) -> str:
        if self.old is None:
            return "add"
        if self.new is None:
            return "remove"
        return "update"

    def __repr__(self) -> str:
        return f"RecordChange({self.action} {self.kind}:{self.record_id})"


def _normalize_decimal(d: Decimal) -> str:
    """Canonical string for a Decimal: Decimal("1.0") and Decimal("1.00") both become "1"."""
    normalized = d.normalize()
    if normalized == normalized.to_integral_value():
        return str(int(normalized))
    return format(normalized, 'f')


def _canonicalize(value: Any) -> str:
    """
    Produce a canonical string representation of a value for hashing.

    Records are serialised field by field so that equal records hash equally
    regardless of how their Decimals were written.
    """
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, Decimal):
        return f"D:{_normalize_decimal(value)}"
    if isinstance(value, (int, float)):
        return f"N:{value}"
    if isinstance(value, str):
        return f"S:{value}"
    if isinstance(value, datetime):
        return f"T:{value.isoformat()}"
    if isinstance(value, (CommercialPaper, PaperOwnership, Company)):
        fields = ",".join(
            f"{name}={_canonicalize(getattr(value, name))}"
            for name in value.__dataclass_fields__
        )
        return f"{value.kind}({fields})"
    return f"R:{repr(value)}"


def _compute_intent_id(
    moves: Tuple[Move, ...],
    changes: Tuple[RecordChange, ...],
    origin: TransactionOrigin,
    basis_version: int,
) -> str:
    """
    Compute a deterministic content hash for a transaction's intent.

    Same moves, changes, origin and basis version always produce the same
    intent_id, which the ledger uses to detect duplicate execution. The basis
    version keeps an identical plan made against a later ledger state from
    being mistaken for a retry.
    """
    content_parts = [
        f"origin:{origin.origin_type.value}:{origin.source_id}",
        f"basis:{basis_version}",
    ]
    if origin.paper:
        content_parts.append(f"paper:{origin.paper}")

    for m in sorted(moves, key=lambda m: (m.source, m.dest, m.contract_id, _normalize_decimal(m.quantity))):
        content_parts.append(
            f"move:{_normalize_decimal(m.quantity)}|{m.source}|{m.dest}|{m.contract_id}"
        )

    for c in sorted(changes, key=lambda c: (c.kind, c.record_id)):
        content_parts.append(
            f"change:{c.kind}|{c.record_id}|{_canonicalize(c.old)}|{_canonicalize(c.new)}"
        )

    content = "|".join(content_parts)
    return hashlib.sha256(content.encode()).hexdigest()[:16]


@dataclass(frozen=True, slots=True)
class PendingTransaction:
    """
    A batch of record changes and cash moves before execution - represents INTENT.

    Created by the planning functions and submitted to the ledger, which
    applies all of it or none of it.

    Attributes:
        changes: Record creations, updates and removals
        moves: Cash transfers between companies
        origin: Who/what created this transaction and why
        timestamp: When this pending transaction was created
        basis_version: Ledger version the changes were planned against
        reads: Records the plan depends on without changing them; the ledger
               rejects the plan if any of them has changed since
        intent_id: Content-addressable hash of the transaction intent (auto-computed)
    """
    changes: Tuple[RecordChange, ...]
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    basis_version: int = 0
    reads: Tuple[Record, ...] = ()
    intent_id: str = field(default="")

    def __post_init__(self):
        if not self.intent_id:
            object.__setattr__(
                self, 'intent_id',
                _compute_intent_id(self.moves, self.changes, self.origin, self.basis_version),
            )

    def is_empty(self) -> bool:
        """Return True if this pending transaction has no changes and no moves."""
        return not self.changes and not self.moves

    def __repr__(self) -> str:
        return f"PendingTransaction({len(self.changes)} changes, {len(self.moves)} moves, {self.origin})"


def build_transaction(
    view: LedgerView,
    changes: List[RecordChange],
    moves: Optional[List[Move]] = None,
    origin: Optional[TransactionOrigin] = None,
    reads: Optional[List[Record]] = None,
) -> PendingTransaction:
    """
    Build a PendingTransaction stamped with the view's current time.

    Args:
        view: Read-only ledger view (provides current_time)
        changes: Record changes to include
        moves: Optional cash moves
        origin: Transaction origin (defaults to a SYSTEM origin)
        reads: Records the plan was decided on but does not change
    """
    if origin is None:
        origin = TransactionOrigin(OriginType.SYSTEM, "system")
    return PendingTransaction(
        changes=tuple(changes),
        moves=tuple(moves or ()),
        origin=origin,
        timestamp=view.current_time,
        basis_version=view.version,
        reads=tuple(reads or ()),
    )


@dataclass(frozen=True, slots=True)
class Transaction:
    """
    An executed, immutable record of ledger state changes - represents FACT.

    Attributes:
        changes: Record changes applied
        moves: Cash transfers applied
        origin: Who/what created this transaction and why
        timestamp: When the PendingTransaction was created
        intent_id: Content hash from PendingTransaction (for idempotency)
        exec_id: Unique execution identifier (ledger + sequence + time)
        ledger_name: Name of the ledger that executed this
        execution_time: When this was executed and logged
        sequence_number: Monotonic sequence within the ledger (for ordering)
        basis_version: Ledger version the changes were planned against
    """
    changes: Tuple[RecordChange, ...]
    moves: Tuple[Move, ...]
    origin: TransactionOrigin
    timestamp: datetime
    intent_id: str
    exec_id: str
    ledger_name: str
    execution_time: datetime
    sequence_number: int
    basis_version: int = 0

    def __post_init__(self):
        if not self.changes and not self.moves:
            raise ValueError("Transaction must have changes or moves")

    def __repr__(self) -> str:
        w = 100  # Inner content width
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines = [
            "",
            f"┌{bar}┐",
            f"│{pad(' Transaction: ' + self.exec_id)}│",
            f"├{bar}┤",
            f"│{pad('   intent_id      : ' + self.intent_id)}│",
            f"│{pad('   timestamp      : ' + str(self.timestamp))}│",
            f"│{pad('   ledger_name    : ' + self.ledger_name)}│",
            f"│{pad('   execution_time : ' + str(self.execution_time))}│",
            f"│{pad('   sequence       : ' + str(self.sequence_number))}│",
            f"│{pad('   origin         : ' + str(self.origin))}│",
            f"├{bar}┤",
            f"│{pad(' Changes (' + str(len(self.changes)) + '):')}│",
        ]
        for i, change in enumerate(self.changes):
            lines.append(f"│{pad(f'   [{i}] {change.action} {change.kind}:{change.record_id}')}│")
            if change.new is not None:
                lines.append(f"│{pad(f'       {change.new!r}')}│")
        if self.moves:
            lines.append(f"├{bar}┤")
            lines.append(f"│{pad(' Moves (' + str(len(self.moves)) + '):')}│")
            for i, move in enumerate(self.moves):
                lines.append(f"│{pad(f'   [{i}] {move.quantity}: {move.source} → {move.dest}')}│")
        lines.append(f"└{bar}┘")
        return "\n".join(lines)


# ============================================================================
# ORDER RESULTS
# ============================================================================

@dataclass(frozen=True, slots=True)
class OrderResult:
    """
    Outcome of an issue, purchase or offer order.

    Attributes:
        status: APPLIED, ALREADY_APPLIED or REJECTED
        error_kind: Why the order was rejected (None unless REJECTED)
        errors: Every human-readable rejection message
        transaction: The pending transaction that was submitted, if planning succeeded
    """
    status: ExecuteResult
    error_kind: Optional[ErrorKind] = None
    errors: Tuple[str, ...] = ()
    transaction: Optional[PendingTransaction] = None

    @property
    def ok(self) -> bool:
        return self.status != ExecuteResult.REJECTED

    @classmethod
    def rejected(
        cls,
        kind: ErrorKind,
        errors: Tuple[str, ...],
        transaction: Optional[PendingTransaction] = None,
    ) -> OrderResult:
        return cls(ExecuteResult.REJECTED, kind, tuple(errors), transaction)

    @classmethod
    def from_error(cls, error: LedgerError) -> OrderResult:
        """Translate a planning error into a rejected result."""
        if isinstance(error, ValidationError):
            return cls.rejected(ErrorKind.VALIDATION, error.errors)
        if isinstance(error, InsufficientSupply):
            return cls.rejected(ErrorKind.INSUFFICIENT_SUPPLY, (str(error),))
        return cls.rejected(ErrorKind.LEDGER, (str(error),))


# ============================================================================
# VIEW HELPERS
# ============================================================================

def paper_of(view: LedgerView, cusip: str) -> CommercialPaper:
    return view.get(RECORD_TYPE_PAPER, cusip)


def company_of(view: LedgerView, name: str) -> Company:
    return view.get(RECORD_TYPE_COMPANY, name)


def ownerships_of(view: LedgerView, cusip: str) -> Tuple[PaperOwnership, ...]:
    return view.query(RECORD_TYPE_OWNERSHIP, paper=cusip)

