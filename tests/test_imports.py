# test_imports.py
"""Smoke test that the public modules import."""


def test_public_modules_import():
    from scan_credits.billing import StripeBillingProvider
    from scan_credits.core.debit import DebitExecutor
    from scan_credits.core.reconciler import GrantReconciler
    from scan_credits.sdk import ScanOrchestrator
    from scan_credits.storage.repository import BalanceStore

    assert all([StripeBillingProvider, DebitExecutor, GrantReconciler, ScanOrchestrator, BalanceStore])
