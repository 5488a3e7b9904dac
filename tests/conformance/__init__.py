"""
Conformance Test Suite

This suite defines the NORMATIVE behavior of the lendpool risk engine.
Any compliant implementation MUST pass these tests.

The tests are organized by invariant:
1. index_accrual.py - Indices never decrease; accrual is idempotent within a second
2. rounding.py - Share conversions never round in the user's favor
3. health_monotonicity.py - Initial <= Maintenance <= Equity; wider bands lower health
4. liquidation_bounds.py - Repay, seize and split bounds; liquidations never hurt health
5. balance_slots.py - Sixteen slots, unique banks, no empty stored balances
6. operation_atomicity.py - Rejected operations leave no trace
7. operation_determinism.py - Same operations, same final state
8. pool_conservation.py - Vaults and share totals stay consistent

These tests use hypothesis for property-based testing.
"""
