"""
Conformance Test Suite

Normative behavior of the loan accrual engine, checked as properties over
randomly generated event ledgers.

The tests are organized by invariant:
1. determinism.py - Input order never changes state or accruals
2. tiling.py - Segments cover each period exactly, without gaps
3. conservation.py - Period totals equal segment sums; principal roll-forward
4. idempotency.py - Recomputation is stable; one interest charge per period
5. commitment_identity.py - undrawn == max(0, commitment - principal)

These tests use hypothesis for property-based testing.
"""
