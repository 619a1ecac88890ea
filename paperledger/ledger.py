"""
ledger.py - Stateful Record Ledger for Commercial Paper

The Ledger class is the central state manager of the system. It stores the
typed records (papers, ownerships, companies) and is the only module that
mutates them.

Key responsibilities:
    - Implements the LedgerView protocol for safe read-only access by planning functions
    - Executes PendingTransactions atomically (every change and move, or nothing)
    - Rejects plans computed from a stale snapshot (optimistic concurrency)
    - Enforces the record invariants: no zero ownership rows, offers within
      holdings, and never more paper owned than issued
    - Always validates and always logs, enabling clone_at() and replay()
"""

from __future__ import annotations
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Set, Tuple

from .core import (
    # Types
    Record, CommercialPaper, PaperOwnership,
    Move, RecordChange, PendingTransaction, Transaction,
    TransactionOrigin, OriginType, ExecuteResult, ErrorKind, OrderResult,
    build_transaction,
    # Constants
    RECORD_TYPES, RECORD_TYPE_PAPER, RECORD_TYPE_OWNERSHIP, RECORD_TYPE_COMPANY,
    DEFAULT_LEDGER_TIME,
    # Exceptions
    LedgerError, SettlementError, RecordNotFound, RecordAlreadyExists,
)


RecordKey = Tuple[str, str]


class Ledger:
    """
    Transactional store of commercial paper records with a full audit trail.

    Implements the LedgerView protocol, so it can be passed to the planning
    functions (compute_issuance, compute_purchase, compute_offer), which only
    read from it.

    Design Principles:
        - Always validates: every transaction is checked against the current
          records before anything is written.
        - Always logs: every applied transaction is recorded, so historical
          states can be rebuilt with clone_at() and replay().
        - Query order is creation order: records are kept in insertion order;
          updating a record keeps its position.

    Thread Safety:
        Not thread-safe. Each thread should maintain its own Ledger instance.
        Plans computed concurrently against the same version are still safe:
        only the first to execute is applied, the others are rejected as stale.

    Example:
        ledger = Ledger("main")
        ledger.add(Company("acme", Decimal("0")))
        ledger.add(Company("alice", Decimal("100000")))

        issue(ledger, IssueOrder("ACME00001", 1000, 100, "0.05", 90, "acme", t), caller="acme")
        purchase(ledger, PurchaseOrder("alice", "ACME00001", 10), caller="alice")
    """

    def __init__(
        self,
        name: str,
        initial_time: Optional[datetime] = None,
        verbose: bool = True,
    ):
        """
        Create a ledger.

        Args:
            name: Ledger identifier
            initial_time: Starting time for the ledger (default: 1970-01-01)
            verbose: Print every applied and rejected transaction (default: True)
        """
        self.name = name
        self.records: Dict[str, Dict[str, Record]] = {kind: {} for kind in RECORD_TYPES}
        self.seen_intent_ids: Set[str] = set()  # For idempotency (content-based)
        self.transaction_log: List[Transaction] = []
        self.last_rejection: Optional[str] = None
        self._current_time: datetime = initial_time or DEFAULT_LEDGER_TIME
        self.verbose = verbose
        # Monotonic sequence counter for execution ordering
        self._next_sequence: int = 0

    # ========================================================================
    # LedgerView PROTOCOL IMPLEMENTATION (read-only methods)
    # ========================================================================

    @property
    def current_time(self) -> datetime:
        """Current logical time of the ledger."""
        return self._current_time

    @property
    def version(self) -> int:
        """Number of transactions applied so far."""
        return self._next_sequence

    def _table(self, kind: str) -> Dict[str, Record]:
        if kind not in self.records:
            raise LedgerError(f"Unknown record kind: {kind}")
        return self.records[kind]

    def get(self, kind: str, record_id: str) -> Record:
        """
        Get a record by kind and id.

        Raises:
            RecordNotFound: If no such record exists
        """
        record = self._table(kind).get(record_id)
        if record is None:
            raise RecordNotFound(f"{kind} {record_id} not found")
        return record

    def exists(self, kind: str, record_id: str) -> bool:
        return record_id in self._table(kind)

    def query(self, kind: str, **equals: Any) -> Tuple[Record, ...]:
        """
        Return the records of a kind whose attributes equal the given values.

        Records are returned in creation order, which is the order the
        allocation engine uses to pick sellers.

        Example:
            ledger.query(RECORD_TYPE_OWNERSHIP, paper="ACME00001")
        """
        return tuple(
            record for record in self._table(kind).values()
            if all(getattr(record, attr) == value for attr, value in equals.items())
        )

    def list_companies(self) -> List[str]:
        """List all company names in creation order."""
        return list(self.records[RECORD_TYPE_COMPANY])

    def list_papers(self) -> List[str]:
        """List all issued CUSIPs in issuance order."""
        return list(self.records[RECORD_TYPE_PAPER])

    def get_balance(self, company: str) -> Decimal:
        """Cash balance of a company."""
        return self.get(RECORD_TYPE_COMPANY, company).balance

    # ========================================================================
    # CONSERVATION
    # ========================================================================

    def total_cash(self) -> Decimal:
        """
        Sum of all company balances.

        Companies are summed in sorted order for a deterministic accumulation.
        """
        companies = self.records[RECORD_TYPE_COMPANY]
        return sum((companies[name].balance for name in sorted(companies)), Decimal("0"))

    def total_owned(self, cusip: str) -> int:
        """Number of papers of `cusip` held in ownership records."""
        return sum(o.quantity for o in self.query(RECORD_TYPE_OWNERSHIP, paper=cusip))

    def unallocated(self, cusip: str) -> int:
        """Papers of `cusip` not yet sold by the issuer."""
        paper = self.get(RECORD_TYPE_PAPER, cusip)
        return paper.quantity_issued - self.total_owned(cusip)

    def verify_conservation(self, expected_cash: Optional[Decimal] = None) -> Dict[str, Any]:
        """
        Verify the conservation laws of the ledger.

        For every paper, the quantity held in ownership records must not
        exceed the quantity issued, and no ownership record may be empty or
        offer more than it holds. Optionally, the total cash held by all
        companies must equal `expected_cash` exactly.

        Returns:
            Dict with keys:
            - 'valid': bool - True if all conservation laws hold
            - 'cash_total': Decimal - Current sum of company balances
            - 'supplies': Dict[str, int] - Owned quantity for each paper
            - 'discrepancies': List[Dict] - Details of any violations

        Example:
            initial = ledger.total_cash()
            purchase(ledger, order, caller="alice")
            result = ledger.verify_conservation(expected_cash=initial)
            assert result['valid'], result['discrepancies']
        """
        discrepancies: List[Dict[str, Any]] = []
        supplies: Dict[str, int] = {}

        for cusip, paper in self.records[RECORD_TYPE_PAPER].items():
            owned = self.total_owned(cusip)
            supplies[cusip] = owned
            if owned > paper.quantity_issued:
                discrepancies.append({
                    'paper': cusip,
                    'issued': paper.quantity_issued,
                    'owned': owned,
                    'error': 'more paper owned than issued',
                })

        for record_id, ownership in self.records[RECORD_TYPE_OWNERSHIP].items():
            if ownership.quantity <= 0:
                discrepancies.append({'ownership': record_id, 'error': 'empty ownership record'})
            if not 0 <= ownership.quantity_for_sale <= ownership.quantity:
                discrepancies.append({'ownership': record_id, 'error': 'offer exceeds holding'})

        cash_total = self.total_cash()
        if expected_cash is not None and cash_total != expected_cash:
            discrepancies.append({
                'expected': expected_cash,
                'actual': cash_total,
                'difference': cash_total - expected_cash,
                'error': 'cash not conserved',
            })

        return {
            'valid': len(discrepancies) == 0,
            'cash_total': cash_total,
            'supplies': supplies,
            'discrepancies': discrepancies,
        }

    # ========================================================================
    # TIME MANAGEMENT
    # ========================================================================

    def advance_time(self, new_time: datetime) -> None:
        """
        Advance the ledger's logical clock. Time can only move forward.

        Raises:
            ValueError: If new_time is before the current time
        """
        if new_time < self._current_time:
            raise ValueError(
                f"Cannot move time backwards: {new_time} < {self._current_time}"
            )
        self._current_time = new_time

    # ========================================================================
    # RECORD MAINTENANCE (Mutating)
    # ========================================================================

    def add(self, record: Record) -> None:
        """
        Add a new record.

        Raises:
            RecordAlreadyExists: If a record with the same kind and id exists
            LedgerError: If the record breaks a ledger invariant
        """
        if self.exists(record.kind, record.record_id):
            raise RecordAlreadyExists(f"{record.kind} {record.record_id} already exists")
        self._maintain(RecordChange(old=None, new=record))

    def update(self, record: Record) -> None:
        """
        Replace an existing record with a new version.

        Raises:
            RecordNotFound: If the record does not exist
            LedgerError: If the new version breaks a ledger invariant
        """
        current = self.get(record.kind, record.record_id)
        self._maintain(RecordChange(old=current, new=record))

    def remove(self, record: Record) -> None:
        """
        Remove a record.

        Raises:
            RecordNotFound: If the record does not exist
        """
        current = self.get(record.kind, record.record_id)
        self._maintain(RecordChange(old=current, new=None))

    def _maintain(self, change: RecordChange) -> None:
        """Execute a single record change and raise if it is rejected."""
        pending = build_transaction(
            self, [change],
            origin=TransactionOrigin(OriginType.SYSTEM, "system"),
        )
        if self.execute(pending) == ExecuteResult.REJECTED:
            raise LedgerError(self.last_rejection)

    # ========================================================================
    # TRANSACTION EXECUTION (Mutating)
    # ========================================================================

    def _generate_exec_id(self, sequence: int) -> str:
        """
        Generate a unique execution ID.

        Format: exec:{ledger_name}:{sequence:012d}:{timestamp_micros}
        """
        micros = int(self._current_time.timestamp() * 1_000_000)
        return f"exec:{self.name}:{sequence:012d}:{micros}"

    def execute(self, pending: PendingTransaction) -> ExecuteResult:
        """
        Execute a PendingTransaction atomically.

        All changes and moves succeed together or nothing is written.
        Execution is idempotent: a pending transaction with the same intent_id
        will not be applied twice.

        Args:
            pending: PendingTransaction to execute

        Returns:
            ExecuteResult.APPLIED if successful
            ExecuteResult.ALREADY_APPLIED if transaction was already executed
            ExecuteResult.REJECTED if validation failed (see last_rejection)

        Raises:
            SettlementError: If a write fails part way; every record touched
                             so far has been restored.
        """
        if pending.is_empty():
            return ExecuteResult.APPLIED

        # Idempotency check based on intent_id (content hash)
        if pending.intent_id in self.seen_intent_ids:
            if self.verbose:
                print(f"⚠️  ALREADY_APPLIED: intent_id={pending.intent_id}")
            return ExecuteResult.ALREADY_APPLIED

        valid, reason = self._validate_pending(pending)
        if not valid:
            self.last_rejection = reason
            if self.verbose:
                print(f"✗ REJECTED: {reason}")
            return ExecuteResult.REJECTED

        sequence = self._next_sequence
        tx = Transaction(
            changes=pending.changes,
            moves=pending.moves,
            origin=pending.origin,
            timestamp=pending.timestamp,
            intent_id=pending.intent_id,
            exec_id=self._generate_exec_id(sequence),
            ledger_name=self.name,
            execution_time=self._current_time,
            sequence_number=sequence,
            basis_version=pending.basis_version,
        )

        self._apply(tx)

        # Log transaction (always - audit trail is mandatory)
        self._next_sequence += 1
        self.transaction_log.append(tx)
        self.seen_intent_ids.add(pending.intent_id)

        if self.verbose:
            self._print_tx_result(tx, "APPLIED", "✓")
        return ExecuteResult.APPLIED

    def submit(self, pending: PendingTransaction) -> OrderResult:
        """Execute a planned order and report the outcome as an OrderResult."""
        try:
            result = self.execute(pending)
        except SettlementError as e:
            return OrderResult.rejected(ErrorKind.LEDGER, (str(e),), pending)
        if result == ExecuteResult.REJECTED:
            return OrderResult.rejected(ErrorKind.LEDGER, (self.last_rejection,), pending)
        return OrderResult(result, transaction=pending)

    def _print_tx_result(self, tx: Transaction, result: str, icon: str) -> None:
        """Print transaction details followed by a result line."""
        lines = repr(tx).split('\n')
        w = 100
        bar = "─" * w

        def pad(text: str) -> str:
            if len(text) > w:
                return text[:w-3] + "..."
            return text + " " * (w - len(text))

        lines[-1] = f"├{bar}┤"
        lines.append(f"│{pad(' ' + icon + ' ' + result)}│")
        lines.append(f"└{bar}┘")
        print("\n".join(lines))

    def _validate_pending(self, pending: PendingTransaction) -> Tuple[bool, str]:
        """
        Validate a pending transaction against the current records.

        Checks performed:
        1. Timestamp validation (transaction must not be from the future)
        2. Each record is changed at most once
        3. Snapshot check: each change's old record, and each record the plan
           read, equals the stored one
        4. Record invariants on the proposed state
        5. Moves reference companies that exist after the changes
        6. Supply: owned quantity never exceeds quantity issued

        Returns:
            Tuple of (success: bool, reason: str)
        """
        if pending.timestamp > self._current_time:
            return False, "future timestamp"

        proposed: Dict[RecordKey, Optional[Record]] = {}
        for change in pending.changes:
            if change.kind not in self.records:
                return False, f"unknown record kind: {change.kind}"
            key = (change.kind, change.record_id)
            if key in proposed:
                return False, f"multiple changes to {change.kind} {change.record_id}"
            proposed[key] = change.new

            current = self.records[change.kind].get(change.record_id)
            if change.old is None and current is not None:
                return False, f"{change.kind} {change.record_id} already exists"
            if change.old is not None and current != change.old:
                return False, f"stale {change.kind} {change.record_id}: ledger changed since planning"

        for record in pending.reads:
            if self.records[record.kind].get(record.record_id) != record:
                return False, f"stale {record.kind} {record.record_id}: ledger changed since planning"

        def lookup(kind: str, record_id: str) -> Optional[Record]:
            if (kind, record_id) in proposed:
                return proposed[(kind, record_id)]
            return self.records[kind].get(record_id)

        touched_papers: Set[str] = set()
        for change in pending.changes:
            new = change.new
            if isinstance(new, PaperOwnership):
                if isinstance(new.quantity, bool) or not isinstance(new.quantity, int) or new.quantity <= 0:
                    return False, f"ownership {new.record_id} must hold a positive quantity"
                if not 0 <= new.quantity_for_sale <= new.quantity:
                    return False, f"ownership {new.record_id} offers {new.quantity_for_sale} of {new.quantity}"
                if lookup(RECORD_TYPE_PAPER, new.paper) is None:
                    return False, f"paper not issued: {new.paper}"
                if lookup(RECORD_TYPE_COMPANY, new.owner) is None:
                    return False, f"company not registered: {new.owner}"
            elif isinstance(new, CommercialPaper):
                if lookup(RECORD_TYPE_COMPANY, new.issuer) is None:
                    return False, f"company not registered: {new.issuer}"
            if change.kind == RECORD_TYPE_OWNERSHIP:
                touched_papers.add((change.new or change.old).paper)
            elif change.kind == RECORD_TYPE_PAPER:
                touched_papers.add(change.record_id)

        for move in pending.moves:
            if lookup(RECORD_TYPE_COMPANY, move.source) is None:
                return False, f"company not registered: {move.source}"
            if lookup(RECORD_TYPE_COMPANY, move.dest) is None:
                return False, f"company not registered: {move.dest}"

        for cusip in sorted(touched_papers):
            paper = lookup(RECORD_TYPE_PAPER, cusip)
            owned = 0
            for record_id in set(self.records[RECORD_TYPE_OWNERSHIP]) | {
                rid for kind, rid in proposed if kind == RECORD_TYPE_OWNERSHIP
            }:
                ownership = lookup(RECORD_TYPE_OWNERSHIP, record_id)
                if ownership is not None and ownership.paper == cusip:
                    owned += ownership.quantity
            issued = paper.quantity_issued if paper is not None else 0
            if owned > issued:
                return False, f"{cusip}: {owned} owned > {issued} issued"

        return True, ""

    def _write_record(self, kind: str, record_id: str, record: Optional[Record]) -> None:
        """Store or delete a single record. The only place records are written."""
        if record is None:
            del self.records[kind][record_id]
        else:
            self.records[kind][record_id] = record

    def _apply(self, tx: Transaction) -> None:
        """
        Apply all record changes, then all moves, of a validated transaction.

        The tables touched are backed up first; if any write raises, they are
        restored as a whole (preserving creation order) and the failure is
        re-raised as a SettlementError.
        """
        touched = {change.kind for change in tx.changes}
        if tx.moves:
            touched.add(RECORD_TYPE_COMPANY)
        backup = {kind: dict(self.records[kind]) for kind in touched}

        try:
            for change in tx.changes:
                self._write_record(change.kind, change.record_id, change.new)
            for move in tx.moves:
                self._execute_move(move)
        except Exception as e:
            for kind, table in backup.items():
                self.records[kind] = table
            raise SettlementError(f"settlement of {tx.intent_id} failed, rolled back: {e}") from e

    def _execute_move(self, move: Move) -> None:
        """Debit the source company and credit the destination company."""
        companies = self.records[RECORD_TYPE_COMPANY]
        source = companies[move.source]
        self._write_record(
            RECORD_TYPE_COMPANY, move.source, replace(source, balance=source.balance - move.quantity)
        )
        dest = companies[move.dest]
        self._write_record(
            RECORD_TYPE_COMPANY, move.dest, replace(dest, balance=dest.balance + move.quantity)
        )

    # ========================================================================
    # LEDGER OPERATIONS
    # ========================================================================

    def clone(self) -> Ledger:
        """
        Create an independent copy of this ledger.

        Records are immutable, so copying the tables is enough; modifications
        to the clone never affect the original, and vice versa.
        """
        cloned = Ledger.__new__(Ledger)
        cloned.name = self.name
        cloned._current_time = self._current_time
        cloned.verbose = self.verbose
        cloned.records = {kind: dict(table) for kind, table in self.records.items()}
        cloned.seen_intent_ids = self.seen_intent_ids.copy()
        cloned.transaction_log = list(self.transaction_log)
        cloned.last_rejection = self.last_rejection
        cloned._next_sequence = self._next_sequence
        return cloned

    def clone_at(self, target_time: datetime) -> Ledger:
        """
        Reconstruct this ledger as it existed at a past time.

        The state is rebuilt by replaying every transaction executed at or
        before target_time, which also reproduces the creation order of
        records (and therefore the seller order of later purchases).

        Raises:
            ValueError: If target_time is in the future
        """
        if target_time > self._current_time:
            raise ValueError(f"Target time {target_time} is in the future")
        cloned = self._replay_log(
            (tx for tx in self.transaction_log if tx.execution_time <= target_time),
            name=self.name,
        )
        cloned._current_time = target_time
        return cloned

    def replay(self) -> Ledger:
        """
        Create a new ledger by re-executing the whole transaction log.

        Every record reaches the ledger through a logged transaction (add()
        and friends included), so the replayed ledger holds the same records,
        in the same order, as this one.

        Raises:
            LedgerError: If a logged transaction is rejected during replay
        """
        replayed = self._replay_log(self.transaction_log, name=f"{self.name}_replayed")
        if self._current_time > replayed._current_time:
            replayed.advance_time(self._current_time)
        return replayed

    def _replay_log(self, transactions: Iterable[Transaction], name: str) -> Ledger:
        new_ledger = Ledger(name=name, initial_time=DEFAULT_LEDGER_TIME, verbose=False)
        for tx in transactions:
            if tx.execution_time > new_ledger._current_time:
                new_ledger.advance_time(tx.execution_time)
            pending = PendingTransaction(
                changes=tx.changes,
                moves=tx.moves,
                origin=tx.origin,
                timestamp=tx.timestamp,
                basis_version=tx.basis_version,
            )
            if new_ledger.execute(pending) != ExecuteResult.APPLIED:
                raise LedgerError(f"Replay failed at tx {tx.exec_id}: {new_ledger.last_rejection}")
        new_ledger.verbose = self.verbose
        return new_ledger
