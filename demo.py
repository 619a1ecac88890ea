#!/usr/bin/env python3
"""
demo.py - Interactive Tutorial: Commercial Paper on the Ledger, Step by Step

This is a pedagogical demonstration of how commercial paper is issued, bought
and resold. Each step builds on the previous one. Press Enter to advance.

WHAT YOU'LL LEARN:
  1-4:   Foundation      - The empty ledger, companies, issuing, a first purchase
  5-8:   Core Mechanics  - Conservation, rejections, resale, atomicity
  9-11:  Safety          - Idempotency, stale plans, the transaction log
  12-14: Time Travel     - Historical reconstruction, replay, a random market

Run:
    python demo.py           # Interactive mode (press Enter for each step)
    python demo.py --quick   # Run all steps without pausing
"""

from dataclasses import dataclass
from datetime import datetime, timedelta
from decimal import Decimal
import random
import sys

from paperledger import (
    # Core classes
    Ledger, Company, IssueOrder, PurchaseOrder, OfferOrder,
    # Operations
    issue, purchase, offer_for_sale, compute_purchase,
    get_available_for_sale, cost_of_purchase,
    # Results
    ExecuteResult, SettlementError,
    RECORD_TYPE_OWNERSHIP,
)


# ============================================================================
# CONFIGURATION
# ============================================================================

@dataclass
class DemoConfig:
    """Configuration for the tutorial. Modify these to experiment."""
    start_time: datetime = datetime(2025, 1, 2, 9, 0, 0)

    # Initial funding
    issuer_initial_cash: Decimal = Decimal("0")
    buyer_initial_cash: Decimal = Decimal("1000000.00")

    # Paper terms
    cusip: str = "ACME00001"
    par: Decimal = Decimal("1000")
    discount: Decimal = Decimal("0.05")
    quantity_issued: int = 100
    maturity_days: int = 90

    # Random market (Step 14)
    random_orders: int = 500
    random_seed: int = 42


CONFIG = DemoConfig()

# Global state for interactive mode
QUICK_MODE = "--quick" in sys.argv


def wait_for_enter():
    """Pause for user input unless in quick mode."""
    if not QUICK_MODE:
        input("\n[Press Enter to continue...]")


def step_header(number: int, title: str, objective: str):
    """Print a step header with learning objective."""
    print(f"\n{'='*70}")
    print(f"STEP {number}: {title}")
    print(f"{'='*70}")
    print(f"\nObjective: {objective}\n")


def section_header(text: str):
    """Print a section header within a step."""
    print(f"\n--- {text} ---\n")


def show_holdings(ledger: Ledger):
    for o in ledger.query(RECORD_TYPE_OWNERSHIP, paper=CONFIG.cusip):
        print(f"  {o.owner:<8} holds {o.quantity:>4}, offers {o.quantity_for_sale:>4}")
    print(f"  {'(issuer)':<8} unsold {ledger.unallocated(CONFIG.cusip):>4}")


def show_balances(ledger: Ledger):
    for name in ledger.list_companies():
        print(f"  {name:<8} ${ledger.get_balance(name):>14,}")


# ============================================================================
# PHASE 1: FOUNDATION (Steps 1-4)
# ============================================================================

def step_01_empty_ledger():
    """Create an empty ledger and understand its initial state."""
    step_header(1, "The Empty Ledger",
        "Understand that a ledger starts as a clean slate with only time.")

    print("""
    The ledger keeps three kinds of records:

    1. COMPANY          - A participant and its cash balance
    2. COMMERCIAL_PAPER - An issued paper: par, discount, quantity, maturity
    3. PAPER_OWNERSHIP  - How much of a paper a company holds and offers for resale

    Every change to a record goes through a logged transaction.
    """)

    wait_for_enter()

    print(">>> ledger = Ledger('tutorial', initial_time=datetime(2025, 1, 2, 9, 0))")
    ledger = Ledger(name="tutorial", initial_time=CONFIG.start_time, verbose=True)

    section_header("Initial State")
    print(f"Ledger name:     {ledger.name}")
    print(f"Current time:    {ledger.current_time}")
    print(f"Companies:       {ledger.list_companies()}")
    print(f"Papers:          {ledger.list_papers()}")
    print(f"Transaction log: {len(ledger.transaction_log)} entries")
    return ledger


def step_02_register_companies(ledger: Ledger):
    """Add the issuer and the buyers."""
    step_header(2, "Registering Companies",
        "Companies are records too: adding one is a logged transaction.")

    print(">>> ledger.add(Company('acme', Decimal('0')))")
    ledger.add(Company("acme", CONFIG.issuer_initial_cash))
    ledger.verbose = False
    for name in ("alice", "bob", "carol"):
        print(f">>> ledger.add(Company('{name}', Decimal('{CONFIG.buyer_initial_cash}')))")
        ledger.add(Company(name, CONFIG.buyer_initial_cash))

    section_header("Balances")
    show_balances(ledger)
    print(f"\nTransaction log: {len(ledger.transaction_log)} entries")
    return ledger


def step_03_issue_paper(ledger: Ledger):
    """Issue commercial paper."""
    step_header(3, "Issuing Commercial Paper",
        "Issuing creates the paper record. Nobody owns any of it yet.")

    print(f"""
>>> issue(ledger, IssueOrder(
...     cusip="{CONFIG.cusip}", par=Decimal("{CONFIG.par}"), quantity_issued={CONFIG.quantity_issued},
...     discount=Decimal("{CONFIG.discount}"), maturity={CONFIG.maturity_days}, issuer="acme",
...     issued_timestamp=ledger.current_time,
... ), caller="acme")
""")
    ledger.verbose = True
    result = issue(ledger, IssueOrder(
        cusip=CONFIG.cusip, par=CONFIG.par, quantity_issued=CONFIG.quantity_issued,
        discount=CONFIG.discount, maturity=CONFIG.maturity_days, issuer="acme",
        issued_timestamp=ledger.current_time,
    ), caller="acme")
    ledger.verbose = False
    print(f"\nResult: {result.status}")

    section_header("Key Insight")
    price = cost_of_purchase(1, CONFIG.par, CONFIG.discount)
    print(f"""
    No ownership record was created. All {ledger.unallocated(CONFIG.cusip)} papers are the
    issuer's unallocated remainder: issued minus everything owned.

    One paper costs par * (1 - discount) = {CONFIG.par} * (1 - {CONFIG.discount}) = ${price}
    """)
    return ledger


def step_04_first_purchase(ledger: Ledger):
    """Buy from the issuer."""
    step_header(4, "A First Purchase",
        "Buying from the issuer creates the buyer's holding and pays the issuer.")

    print('>>> purchase(ledger, PurchaseOrder("alice", "ACME00001", 30), caller="alice")')
    ledger.verbose = True
    result = purchase(ledger, PurchaseOrder("alice", CONFIG.cusip, 30), caller="alice")
    ledger.verbose = False
    print(f"\nResult: {result.status}")

    section_header("Holdings")
    show_holdings(ledger)
    section_header("Balances")
    show_balances(ledger)
    return ledger


# ============================================================================
# PHASE 2: CORE MECHANICS (Steps 5-8)
# ============================================================================

def step_05_conservation(ledger: Ledger):
    """Prove that cash and paper are conserved."""
    step_header(5, "Conservation",
        "Purchases move cash and papers around; they never create either.")

    result = ledger.verify_conservation(expected_cash=CONFIG.issuer_initial_cash + 3 * CONFIG.buyer_initial_cash)
    print(">>> ledger.verify_conservation(expected_cash=...)")
    print(f"valid:      {result['valid']}")
    print(f"cash_total: ${result['cash_total']:,}")
    print(f"supplies:   {result['supplies']}")
    print(f"""
    cash:  the buyer's debit equals the sellers' credits, to the last digit.
    paper: owned ({ledger.total_owned(CONFIG.cusip)}) + unsold ({ledger.unallocated(CONFIG.cusip)}) = issued ({CONFIG.quantity_issued})
    """)
    return ledger


def step_06_rejections(ledger: Ledger):
    """Orders that break the rules are rejected with every reason."""
    step_header(6, "Rejected Orders",
        "A rejected order changes nothing and reports everything that was wrong.")

    section_header("Not enough papers")
    print('>>> purchase(ledger, PurchaseOrder("bob", "ACME00001", 80), caller="bob")')
    result = purchase(ledger, PurchaseOrder("bob", CONFIG.cusip, 80), caller="bob")
    print(f"status:     {result.status}")
    print(f"error_kind: {result.error_kind}")
    print(f"errors:     {list(result.errors)}")

    section_header("Several rules broken at once")
    ledger.add(Company("dave", Decimal("100")))
    print('>>> purchase(ledger, PurchaseOrder("dave", "ACME00001", 10, quantity_for_sale=20), caller="bob")')
    result = purchase(ledger, PurchaseOrder("dave", CONFIG.cusip, 10, 20), caller="bob")
    print(f"error_kind: {result.error_kind}")
    for error in result.errors:
        print(f"  - {error}")

    section_header("Holdings (unchanged)")
    show_holdings(ledger)
    return ledger


def step_07_resale(ledger: Ledger):
    """Offer papers for resale and buy them."""
    step_header(7, "Resale",
        "Owners offer papers; buyers draw on the issuer first, then on offers.")

    print('>>> offer_for_sale(ledger, OfferOrder("alice", "ACME00001", 10), caller="alice")')
    offer_for_sale(ledger, OfferOrder("alice", CONFIG.cusip, 10), caller="alice")
    snapshot = get_available_for_sale(ledger, CONFIG.cusip, buyer="bob")
    print(f"\nAvailable to bob: {snapshot.unpurchased} unsold + offers = {snapshot.total_for_sale}")

    print('\n>>> purchase(ledger, PurchaseOrder("bob", "ACME00001", 75), caller="bob")')
    result = purchase(ledger, PurchaseOrder("bob", CONFIG.cusip, 75), caller="bob")
    section_header("Where the cash went")
    for move in result.transaction.moves:
        print(f"  {move.source} -> {move.dest}: ${move.quantity:,} ({move.contract_id})")

    section_header("Holdings")
    show_holdings(ledger)
    return ledger


def step_08_atomicity(ledger: Ledger):
    """A settlement that breaks part way is rolled back."""
    step_header(8, "Atomicity (All-or-Nothing)",
        "If any write fails mid-settlement, every record is restored.")

    before = {name: ledger.get_balance(name) for name in ledger.list_companies()}
    pending = compute_purchase(ledger, PurchaseOrder("carol", CONFIG.cusip, 5), "carol")

    original = ledger._write_record
    writes = []

    def failing_write(kind, record_id, record):
        writes.append(record_id)
        if len(writes) == 3:
            raise OSError("storage unavailable")
        original(kind, record_id, record)

    ledger._write_record = failing_write
    try:
        ledger.execute(pending)
    except SettlementError as e:
        print(f"SettlementError: {e}")
    finally:
        del ledger._write_record

    after = {name: ledger.get_balance(name) for name in ledger.list_companies()}
    print(f"\nWrites attempted before the failure: {writes}")
    print(f"Balances unchanged: {before == after}")
    print(f"Carol holds paper:  {ledger.exists(RECORD_TYPE_OWNERSHIP, 'carol,' + CONFIG.cusip)}")
    return ledger, pending


# ============================================================================
# PHASE 3: SAFETY (Steps 9-11)
# ============================================================================

def step_09_idempotency(ledger: Ledger, pending):
    """Retrying the same plan settles it exactly once."""
    step_header(9, "Idempotency",
        "The same planned purchase can be retried safely.")

    print(f">>> ledger.execute(pending)   # intent_id={pending.intent_id}")
    print(f"{ledger.execute(pending)}")
    print(">>> ledger.execute(pending)   # again")
    print(f"{ledger.execute(pending)}")
    section_header("Holdings")
    show_holdings(ledger)
    return ledger


def step_10_stale_plans(ledger: Ledger):
    """Plans computed from outdated records are rejected."""
    step_header(10, "Stale Plans",
        "Two buyers racing for the same offer: the second plan is rejected.")

    offer_for_sale(ledger, OfferOrder("bob", CONFIG.cusip, 10), caller="bob")
    plan_alice = compute_purchase(ledger, PurchaseOrder("alice", CONFIG.cusip, 6), "alice")
    plan_carol = compute_purchase(ledger, PurchaseOrder("carol", CONFIG.cusip, 6), "carol")

    print(f"alice's plan: {ledger.execute(plan_alice)}")
    print(f"carol's plan: {ledger.execute(plan_carol)}")
    print(f"reason:       {ledger.last_rejection}")

    print("\nCarol plans again against the current records:")
    result = purchase(ledger, PurchaseOrder("carol", CONFIG.cusip, 4), caller="carol")
    print(f"carol's new plan: {result.status}")
    section_header("Holdings")
    show_holdings(ledger)
    return ledger


def step_11_transaction_log(ledger: Ledger):
    """The log is the source of truth."""
    step_header(11, "The Transaction Log",
        "Every applied change is logged in order, with its origin.")

    for tx in ledger.transaction_log:
        print(f"  [{tx.sequence_number:>2}] {tx.execution_time}  {tx.origin}  "
              f"{len(tx.changes)} changes, {len(tx.moves)} moves")
    return ledger


# ============================================================================
# PHASE 4: TIME TRAVEL (Steps 12-14)
# ============================================================================

def step_12_time_travel(ledger: Ledger):
    """Rebuild the ledger as it was in the past."""
    step_header(12, "Time Travel",
        "clone_at() replays the log up to a point in time.")

    checkpoint = ledger.current_time
    ledger.advance_time(checkpoint + timedelta(days=1))
    offer_for_sale(ledger, OfferOrder("bob", CONFIG.cusip, 5), caller="bob")
    purchase(ledger, PurchaseOrder("alice", CONFIG.cusip, 2), caller="alice")

    print(f">>> past = ledger.clone_at({checkpoint})")
    past = ledger.clone_at(checkpoint)
    section_header("Then")
    show_holdings(past)
    section_header("Now")
    show_holdings(ledger)
    return ledger


def step_13_replay(ledger: Ledger):
    """Replaying the whole log rebuilds the same records, in the same order."""
    step_header(13, "Replay",
        "Same log, same records: the seller queue is rebuilt exactly.")

    replayed = ledger.replay()
    same = all(
        list(replayed.records[kind].items()) == list(ledger.records[kind].items())
        for kind in ledger.records
    )
    print(f"Replayed ledger: {replayed.name}")
    print(f"Identical records, identical order: {same}")
    return ledger


def step_14_random_market():
    """Hammer a fresh market with random orders and check conservation."""
    step_header(14, "A Random Market",
        f"{CONFIG.random_orders} random orders; conservation holds after each.")

    rng = random.Random(CONFIG.random_seed)
    names = ["acme", "alice", "bob", "carol", "dave"]
    ledger = Ledger("market", CONFIG.start_time, verbose=False)
    for name in names:
        ledger.add(Company(name, Decimal("250000")))
    issue(ledger, IssueOrder(
        CONFIG.cusip, Decimal("987.65"), 400, Decimal("0.0425"), 180, "acme", CONFIG.start_time,
    ), caller="acme")
    initial = ledger.total_cash()

    outcomes = {status: 0 for status in ExecuteResult}
    for _ in range(CONFIG.random_orders):
        actor = rng.choice(names)
        if rng.random() < 0.7:
            quantity = rng.randint(1, 50)
            order = PurchaseOrder(actor, CONFIG.cusip, quantity, rng.randint(0, quantity))
            result = purchase(ledger, order, caller=actor)
        else:
            result = offer_for_sale(ledger, OfferOrder(actor, CONFIG.cusip, rng.randint(0, 30)), caller=actor)
        outcomes[result.status] += 1
        check = ledger.verify_conservation(expected_cash=initial)
        assert check['valid'], check['discrepancies']

    for status, count in outcomes.items():
        print(f"  {status.value:<16} {count}")
    print(f"\nCash total: ${ledger.total_cash():,} (started at ${initial:,})")
    show_holdings(ledger)


def main():
    """Run the complete tutorial."""
    print("=" * 70)
    print("       COMMERCIAL PAPER LEDGER - INTERACTIVE TUTORIAL")
    print("=" * 70)
    print("""
    PHASES:
      1-4:   Foundation      - Empty ledger, companies, issuing, first purchase
      5-8:   Core Mechanics  - Conservation, rejections, resale, atomicity
      9-11:  Safety          - Idempotency, stale plans, transaction log
      12-14: Time Travel     - clone_at, replay, random market
    """)

    if QUICK_MODE:
        print("Running in QUICK mode (no pauses)")
    else:
        print("Running in INTERACTIVE mode (press Enter to advance)")

    wait_for_enter()

    ledger = step_01_empty_ledger()
    wait_for_enter()
    ledger = step_02_register_companies(ledger)
    wait_for_enter()
    ledger = step_03_issue_paper(ledger)
    wait_for_enter()
    ledger = step_04_first_purchase(ledger)
    wait_for_enter()

    ledger = step_05_conservation(ledger)
    wait_for_enter()
    ledger = step_06_rejections(ledger)
    wait_for_enter()
    ledger = step_07_resale(ledger)
    wait_for_enter()
    ledger, pending = step_08_atomicity(ledger)
    wait_for_enter()

    ledger = step_09_idempotency(ledger, pending)
    wait_for_enter()
    ledger = step_10_stale_plans(ledger)
    wait_for_enter()
    ledger = step_11_transaction_log(ledger)
    wait_for_enter()

    ledger = step_12_time_travel(ledger)
    wait_for_enter()
    ledger = step_13_replay(ledger)
    wait_for_enter()
    step_14_random_market()

    print("\n" + "=" * 70)
    print("       TUTORIAL COMPLETE!")
    print("=" * 70)
    print("""
    Next steps:
      - See paperledger/allocation.py for how purchases are sourced
      - Run tests: pytest tests/
    """)


if __name__ == "__main__":
    main()
