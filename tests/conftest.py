"""
conftest.py - Shared pytest fixtures for paperledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Ledgers with registered companies (empty, with an issued paper)
- Order builders with sensible defaults
- Snapshot helpers for "nothing changed" assertions
"""

import pytest
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict

from paperledger import (
    Ledger, Company, CommercialPaper, IssueOrder, PurchaseOrder,
    issue, purchase,
)


START = datetime(2025, 1, 2, 9, 0)

CUSIP = "ACME00001"
PAR = Decimal("1000")
DISCOUNT = Decimal("0.05")
PRICE = Decimal("950")  # PAR * (1 - DISCOUNT)


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def issue_order(**overrides) -> IssueOrder:
    """An IssueOrder for ACME00001 by acme, with any field overridden."""
    fields = dict(
        cusip=CUSIP,
        par=PAR,
        quantity_issued=100,
        discount=DISCOUNT,
        maturity=90,
        issuer="acme",
        issued_timestamp=START,
    )
    fields.update(overrides)
    return IssueOrder(**fields)


def make_paper(**overrides) -> CommercialPaper:
    fields = dict(
        cusip=CUSIP,
        par=PAR,
        quantity_issued=100,
        discount=DISCOUNT,
        maturity=90,
        issuer="acme",
        issued_timestamp=START,
    )
    fields.update(overrides)
    return CommercialPaper(**fields)


def buy(ledger: Ledger, buyer: str, quantity: int, for_sale: int = 0, cusip: str = CUSIP):
    """Purchase on behalf of the buyer itself."""
    return purchase(ledger, PurchaseOrder(buyer, cusip, quantity, for_sale), caller=buyer)


def make_ledger() -> Ledger:
    """Ledger with an issuer (acme) and three funded buyers."""
    ledger = Ledger("test", START, verbose=False)
    ledger.add(Company("acme", Decimal("0")))
    ledger.add(Company("alice", Decimal("1000000")))
    ledger.add(Company("bob", Decimal("1000000")))
    ledger.add(Company("carol", Decimal("1000000")))
    return ledger


def make_issued_ledger() -> Ledger:
    """As make_ledger(), with 100 papers of ACME00001 issued by acme, none sold."""
    ledger = make_ledger()
    result = issue(ledger, issue_order(), caller="acme")
    assert result.ok, result.errors
    return ledger


def ledger_snapshot(ledger: Ledger) -> Dict[str, Any]:
    """Everything observable about a ledger's records, for equality checks."""
    return {
        'records': {kind: list(table.items()) for kind, table in ledger.records.items()},
        'log_length': len(ledger.transaction_log),
        'version': ledger.version,
    }


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def empty_ledger():
    """Fresh ledger with no records."""
    return Ledger("test", START, verbose=False)


@pytest.fixture
def ledger():
    """Ledger with an issuer (acme) and three funded buyers."""
    return make_ledger()


@pytest.fixture
def issued_ledger():
    """Ledger with 100 papers of ACME00001 issued by acme, none sold."""
    return make_issued_ledger()
