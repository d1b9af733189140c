"""
Conformance Test Suite

Property-based checks of the invariants every token session must keep:
1. conservation.py - supply accounting, destruction-only supply changes,
   the accumulator bound
2. atomicity.py - rejected and failed operations leave no trace

These tests use hypothesis for property-based testing.
"""
