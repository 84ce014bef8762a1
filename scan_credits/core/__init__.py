"""
Core modules for Scan Credits.

This package contains the credit accounting logic: operation costs,
admission policy, gated debits and billing reconciliation.
"""
