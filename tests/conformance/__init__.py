"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the commercial paper ledger.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. conservation.py - Cash and paper supply are conserved
2. atomicity.py - All-or-nothing order semantics
3. idempotency.py - Duplicate execution handling
4. determinism.py - Reproducible allocation and replay
5. concurrency.py - Plans computed from stale state are rejected

These tests use hypothesis for property-based testing.
"""
