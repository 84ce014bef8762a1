"""
Billing provider integrations.
"""

from .stripe_provider import StripeBillingProvider

__all__ = ["StripeBillingProvider"]
