"""
test_ledger.py - Unit tests for ledger.py

Tests:
- Ledger creation and time management
- Record maintenance: add / update / remove and query order
- Transaction execution (validation, idempotency, rejection)
- Rollback when a write fails part way
- clone(), clone_at() and replay()
- Conservation checks and verbose output
"""

import pytest
from datetime import timedelta
from decimal import Decimal

from paperledger import (
    Ledger, Company, PaperOwnership, Move, RecordChange, PendingTransaction,
    TransactionOrigin, OriginType, ExecuteResult, ErrorKind, PurchaseOrder,
    build_transaction, compute_purchase,
    LedgerError, SettlementError, RecordNotFound, RecordAlreadyExists,
    RECORD_TYPE_COMPANY, RECORD_TYPE_OWNERSHIP,
)
from tests.conftest import buy, ledger_snapshot, make_paper, START, CUSIP, PRICE


def _records(ledger: Ledger):
    return {kind: list(table.items()) for kind, table in ledger.records.items()}


class TestLedgerCreation:
    """Tests for Ledger initialization."""

    def test_create_ledger(self):
        ledger = Ledger("test", verbose=False)
        assert ledger.name == "test"
        assert ledger.version == 0
        assert ledger.list_companies() == []

    def test_create_with_initial_time(self):
        ledger = Ledger("test", initial_time=START, verbose=False)
        assert ledger.current_time == START


class TestTimeManagement:

    def test_advance_time(self, empty_ledger):
        later = START + timedelta(days=1)
        empty_ledger.advance_time(later)
        assert empty_ledger.current_time == later

    def test_advance_time_backwards_raises(self, empty_ledger):
        with pytest.raises(ValueError, match="backwards"):
            empty_ledger.advance_time(START - timedelta(seconds=1))


class TestRecordMaintenance:
    """add / update / remove go through logged transactions."""

    def test_add_and_get(self, empty_ledger):
        empty_ledger.add(Company("acme", Decimal("5")))
        assert empty_ledger.get(RECORD_TYPE_COMPANY, "acme") == Company("acme", Decimal("5"))
        assert empty_ledger.exists(RECORD_TYPE_COMPANY, "acme")
        assert empty_ledger.get_balance("acme") == Decimal("5")

    def test_add_is_logged(self, empty_ledger):
        empty_ledger.add(Company("acme"))
        assert len(empty_ledger.transaction_log) == 1
        assert empty_ledger.transaction_log[0].origin.origin_type == OriginType.SYSTEM
        assert empty_ledger.version == 1

    def test_add_duplicate_raises(self, ledger):
        with pytest.raises(RecordAlreadyExists):
            ledger.add(Company("acme"))

    def test_get_missing_raises(self, empty_ledger):
        with pytest.raises(RecordNotFound):
            empty_ledger.get(RECORD_TYPE_COMPANY, "nobody")

    def test_unknown_kind_raises(self, empty_ledger):
        with pytest.raises(LedgerError, match="Unknown record kind"):
            empty_ledger.get("WIDGET", "x")

    def test_update_missing_raises(self, empty_ledger):
        with pytest.raises(RecordNotFound):
            empty_ledger.update(Company("acme", Decimal("1")))

    def test_remove(self, ledger):
        ledger.remove(Company("carol"))
        assert not ledger.exists(RECORD_TYPE_COMPANY, "carol")

    def test_query_returns_creation_order(self, empty_ledger):
        for name in ("zed", "amy", "mo"):
            empty_ledger.add(Company(name))
        assert empty_ledger.list_companies() == ["zed", "amy", "mo"]

    def test_update_keeps_position(self, empty_ledger):
        for name in ("zed", "amy", "mo"):
            empty_ledger.add(Company(name))
        empty_ledger.update(Company("zed", Decimal("100")))
        assert [c.name for c in empty_ledger.query(RECORD_TYPE_COMPANY)] == ["zed", "amy", "mo"]

    def test_query_filters_on_attributes(self, issued_ledger):
        buy(issued_ledger, "alice", 5)
        buy(issued_ledger, "bob", 5)
        assert [o.owner for o in issued_ledger.query(RECORD_TYPE_OWNERSHIP, owner="bob")] == ["bob"]

    def test_ownership_for_unissued_paper_rejected(self, ledger):
        with pytest.raises(LedgerError, match="paper not issued"):
            ledger.add(PaperOwnership(CUSIP, "alice", 5))

    def test_ownership_for_unknown_company_rejected(self, issued_ledger):
        with pytest.raises(LedgerError, match="company not registered"):
            issued_ledger.add(PaperOwnership(CUSIP, "zed", 5))

    def test_empty_ownership_rejected(self, issued_ledger):
        with pytest.raises(LedgerError, match="positive quantity"):
            issued_ledger.add(PaperOwnership(CUSIP, "alice", 0))

    def test_offer_above_holding_rejected(self, issued_ledger):
        with pytest.raises(LedgerError, match="offers 6 of 5"):
            issued_ledger.add(PaperOwnership(CUSIP, "alice", 5, 6))

    def test_ownership_above_issue_rejected(self, issued_ledger):
        with pytest.raises(LedgerError, match="101 owned > 100 issued"):
            issued_ledger.add(PaperOwnership(CUSIP, "alice", 101))

    def test_shrinking_issue_below_holdings_rejected(self, issued_ledger):
        buy(issued_ledger, "alice", 60)
        with pytest.raises(LedgerError, match="60 owned > 50 issued"):
            issued_ledger.update(make_paper(quantity_issued=50))

    def test_removing_paper_with_holders_rejected(self, issued_ledger):
        buy(issued_ledger, "alice", 1)
        with pytest.raises(LedgerError, match="owned > 0 issued"):
            issued_ledger.remove(make_paper())

    def test_paper_for_unknown_issuer_rejected(self, empty_ledger):
        with pytest.raises(LedgerError, match="company not registered: acme"):
            empty_ledger.add(make_paper())


class TestTransactionExecution:

    def _pay(self, ledger, amount="10", source="alice", dest="bob"):
        return build_transaction(ledger, [], [Move(Decimal(amount), source, dest, "test")])

    def test_execute_move(self, ledger):
        assert ledger.execute(self._pay(ledger)) == ExecuteResult.APPLIED
        assert ledger.get_balance("alice") == Decimal("999990")
        assert ledger.get_balance("bob") == Decimal("1000010")

    def test_balances_may_go_negative(self, ledger):
        ledger.execute(self._pay(ledger, amount="5", source="acme", dest="alice"))
        assert ledger.get_balance("acme") == Decimal("-5")

    def test_reject_changed_read_record(self, ledger):
        alice = ledger.get(RECORD_TYPE_COMPANY, "alice")
        pending = build_transaction(
            ledger, [], [Move(Decimal("10"), "alice", "bob", "test")], reads=[alice],
        )
        ledger.execute(self._pay(ledger, amount="1", source="alice", dest="carol"))
        before = ledger_snapshot(ledger)

        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.last_rejection == f"stale {RECORD_TYPE_COMPANY} alice: ledger changed since planning"
        assert ledger_snapshot(ledger) == before

    def test_unchanged_read_record_applies(self, ledger):
        pending = build_transaction(
            ledger, [], [Move(Decimal("10"), "alice", "bob", "test")],
            reads=[ledger.get(RECORD_TYPE_COMPANY, "alice")],
        )
        ledger.execute(self._pay(ledger, amount="1", source="bob", dest="carol"))
        assert ledger.execute(pending) == ExecuteResult.APPLIED

    def test_empty_transaction_is_noop(self, ledger):
        before = ledger_snapshot(ledger)
        assert ledger.execute(build_transaction(ledger, [])) == ExecuteResult.APPLIED
        assert ledger_snapshot(ledger) == before

    def test_idempotency(self, ledger):
        pending = self._pay(ledger)
        assert ledger.execute(pending) == ExecuteResult.APPLIED
        assert ledger.execute(pending) == ExecuteResult.ALREADY_APPLIED
        assert ledger.get_balance("bob") == Decimal("1000010")
        assert len(ledger.transaction_log) == 5

    def test_same_payment_planned_later_is_applied(self, ledger):
        ledger.execute(self._pay(ledger))
        assert ledger.execute(self._pay(ledger)) == ExecuteResult.APPLIED
        assert ledger.get_balance("bob") == Decimal("1000020")

    def test_reject_future_timestamp(self, ledger):
        pending = PendingTransaction(
            (), (Move(Decimal("1"), "alice", "bob", "t"),),
            TransactionOrigin(OriginType.SYSTEM, "test"), START + timedelta(days=1),
        )
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert ledger.last_rejection == "future timestamp"

    def test_reject_unknown_company_in_move(self, ledger):
        before = ledger_snapshot(ledger)
        assert ledger.execute(self._pay(ledger, dest="zed")) == ExecuteResult.REJECTED
        assert "company not registered: zed" in ledger.last_rejection
        assert ledger_snapshot(ledger) == before

    def test_reject_two_changes_to_one_record(self, ledger):
        alice = ledger.get(RECORD_TYPE_COMPANY, "alice")
        pending = build_transaction(ledger, [
            RecordChange(alice, Company("alice", Decimal("1"))),
            RecordChange(alice, Company("alice", Decimal("2"))),
        ])
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "multiple changes" in ledger.last_rejection

    def test_reject_add_over_existing(self, ledger):
        pending = build_transaction(ledger, [RecordChange(None, Company("alice"))])
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "already exists" in ledger.last_rejection

    def test_reject_stale_snapshot(self, ledger):
        stale = Company("alice", Decimal("123"))
        pending = build_transaction(ledger, [RecordChange(stale, Company("alice", Decimal("0")))])
        assert ledger.execute(pending) == ExecuteResult.REJECTED
        assert "stale" in ledger.last_rejection
        assert ledger.get_balance("alice") == Decimal("1000000")

    def test_rejection_does_not_advance_version(self, ledger):
        version = ledger.version
        ledger.execute(self._pay(ledger, dest="zed"))
        assert ledger.version == version

    def test_submit_reports_rejection_as_ledger_error(self, ledger):
        result = ledger.submit(self._pay(ledger, dest="zed"))
        assert result.error_kind == ErrorKind.LEDGER
        assert result.errors == (ledger.last_rejection,)


class TestRollback:
    """A write that fails part way leaves no trace."""

    @staticmethod
    def _fail_on_write(monkeypatch, ledger, n):
        original = ledger._write_record
        calls = {'count': 0}

        def flaky(kind, record_id, record):
            calls['count'] += 1
            if calls['count'] == n:
                raise RuntimeError("disk full")
            original(kind, record_id, record)

        monkeypatch.setattr(ledger, "_write_record", flaky)

    @pytest.mark.parametrize("failing_write", [1, 2, 3])
    def test_failed_purchase_restores_everything(self, issued_ledger, monkeypatch, failing_write):
        before = ledger_snapshot(issued_ledger)
        # buyer holding, buyer debit, issuer credit
        self._fail_on_write(monkeypatch, issued_ledger, failing_write)

        result = buy(issued_ledger, "alice", 10)

        assert result.status == ExecuteResult.REJECTED
        assert result.error_kind == ErrorKind.LEDGER
        assert "rolled back" in result.errors[0]
        assert ledger_snapshot(issued_ledger) == before

    def test_execute_raises_settlement_error_with_cause(self, issued_ledger, monkeypatch):
        pending = compute_purchase(issued_ledger, PurchaseOrder("alice", CUSIP, 10), "alice")
        self._fail_on_write(monkeypatch, issued_ledger, 2)
        with pytest.raises(SettlementError) as exc:
            issued_ledger.execute(pending)
        assert isinstance(exc.value.__cause__, RuntimeError)

    def test_retry_after_failure_succeeds(self, issued_ledger, monkeypatch):
        pending = compute_purchase(issued_ledger, PurchaseOrder("alice", CUSIP, 10), "alice")
        self._fail_on_write(monkeypatch, issued_ledger, 3)
        with pytest.raises(SettlementError):
            issued_ledger.execute(pending)
        monkeypatch.undo()

        assert issued_ledger.execute(pending) == ExecuteResult.APPLIED
        assert issued_ledger.get_balance("alice") == Decimal("1000000") - 10 * PRICE

    def test_rollback_keeps_creation_order(self, issued_ledger, monkeypatch):
        buy(issued_ledger, "carol", 5, for_sale=5)
        buy(issued_ledger, "alice", 5)
        order_before = list(issued_ledger.records[RECORD_TYPE_OWNERSHIP])
        self._fail_on_write(monkeypatch, issued_ledger, 2)
        buy(issued_ledger, "bob", 95)
        assert list(issued_ledger.records[RECORD_TYPE_OWNERSHIP]) == order_before


class TestCloneAndReplay:

    @pytest.fixture
    def history(self, issued_ledger):
        """alice buys at +1h, bob at +2h, clock left at +3h."""
        issued_ledger.advance_time(START + timedelta(hours=1))
        buy(issued_ledger, "alice", 30, for_sale=10)
        issued_ledger.advance_time(START + timedelta(hours=2))
        buy(issued_ledger, "bob", 80)
        issued_ledger.advance_time(START + timedelta(hours=3))
        return issued_ledger

    def test_clone_is_independent(self, history):
        cloned = history.clone()
        # Everything is sold; bob re-offers some in the clone only
        cloned.update(PaperOwnership(CUSIP, "bob", 80, 5))
        assert buy(cloned, "carol", 1).ok
        assert cloned.exists(RECORD_TYPE_OWNERSHIP, "carol,ACME00001")
        assert not history.exists(RECORD_TYPE_OWNERSHIP, "carol,ACME00001")
        assert history.get(RECORD_TYPE_OWNERSHIP, "bob,ACME00001").quantity_for_sale == 0
        assert len(cloned.transaction_log) == len(history.transaction_log) + 2

    def test_clone_at_reconstructs_past(self, history):
        past = history.clone_at(START + timedelta(hours=1, minutes=30))
        assert past.current_time == START + timedelta(hours=1, minutes=30)
        assert past.query(RECORD_TYPE_OWNERSHIP) == (PaperOwnership(CUSIP, "alice", 30, 10),)
        assert past.get_balance("bob") == Decimal("1000000")
        assert past.unallocated(CUSIP) == 70

    def test_clone_at_before_issue(self, history):
        past = history.clone_at(START - timedelta(seconds=1))
        assert past.list_papers() == []
        assert past.list_companies() == []

    def test_clone_at_can_continue_executing(self, history):
        past = history.clone_at(START + timedelta(hours=1, minutes=30))
        assert buy(past, "carol", 70).ok
        assert past.unallocated(CUSIP) == 0

    def test_clone_at_future_raises(self, history):
        with pytest.raises(ValueError, match="future"):
            history.clone_at(START + timedelta(days=1))

    def test_replay_reconstructs_state_and_order(self, history):
        replayed = history.replay()
        assert replayed.name == "test_replayed"
        assert _records(replayed) == _records(history)
        assert replayed.version == history.version
        assert replayed.current_time == history.current_time

    def test_replay_preserves_seller_order(self, issued_ledger):
        buy(issued_ledger, "carol", 10, for_sale=10)
        buy(issued_ledger, "alice", 10, for_sale=10)
        replayed = issued_ledger.replay()
        buy(issued_ledger, "bob", 85)
        buy(replayed, "bob", 85)
        assert _records(replayed) == _records(issued_ledger)


class TestConservation:

    def test_purchases_conserve_cash(self, issued_ledger):
        initial = issued_ledger.total_cash()
        buy(issued_ledger, "alice", 30, for_sale=10)
        buy(issued_ledger, "bob", 75)
        result = issued_ledger.verify_conservation(expected_cash=initial)
        assert result['valid'], result['discrepancies']
        assert result['supplies'] == {CUSIP: 100}

    def test_cash_mismatch_reported(self, ledger):
        result = ledger.verify_conservation(expected_cash=Decimal("1"))
        assert not result['valid']
        assert result['discrepancies'][0]['error'] == 'cash not conserved'

    def test_tampered_records_reported(self, issued_ledger):
        bad = PaperOwnership(CUSIP, "alice", 200, 300)
        issued_ledger.records[RECORD_TYPE_OWNERSHIP][bad.record_id] = bad
        errors = {d['error'] for d in issued_ledger.verify_conservation()['discrepancies']}
        assert errors == {'more paper owned than issued', 'offer exceeds holding'}

    def test_unallocated(self, issued_ledger):
        buy(issued_ledger, "alice", 30)
        assert issued_ledger.total_owned(CUSIP) == 30
        assert issued_ledger.unallocated(CUSIP) == 70


class TestVerboseOutput:

    def test_applied_transaction_is_printed(self, capsys):
        ledger = Ledger("loud", START, verbose=True)
        ledger.add(Company("acme"))
        out = capsys.readouterr().out
        assert "Transaction: exec:loud:" in out
        assert "✓ APPLIED" in out

    def test_rejection_is_printed(self, capsys):
        ledger = Ledger("loud", START, verbose=True)
        ledger.add(Company("acme"))
        with pytest.raises(LedgerError):
            ledger.add(PaperOwnership(CUSIP, "acme", 1))
        assert "✗ REJECTED: paper not issued" in capsys.readouterr().out

    def test_duplicate_is_printed(self, capsys):
        ledger = Ledger("loud", START, verbose=True)
        pending = build_transaction(ledger, [RecordChange(None, Company("acme"))])
        ledger.execute(pending)
        ledger.execute(pending)
        assert "ALREADY_APPLIED" in capsys.readouterr().out

    def test_quiet_ledger_prints_nothing(self, capsys, issued_ledger):
        buy(issued_ledger, "alice", 1)
        assert capsys.readouterr().out == ""
