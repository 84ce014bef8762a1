"""
Exception types for credit accounting.

Admission denials are not exceptions; see ``core.quota.DenialReason``.
"""

from typing import Optional


class ScanCreditsError(Exception):
    """Base class for all scan credits errors."""


class StorageUnavailable(ScanCreditsError):
    """Raised when the balance store cannot confirm a read or write.

    Callers must treat the operation as not committed.
    """


class MalformedEvent(ScanCreditsError):
    """Raised when a billing event lacks the metadata needed to grant credits."""

    def __init__(self, message: str, session_id: Optional[str] = None):
        super().__init__(message)
        self.session_id = session_id


class SignatureVerificationFailed(ScanCreditsError):
    """Raised when a webhook payload fails the provider's authenticity check."""


class AnalysisFailed(ScanCreditsError):
    """Raised when the analysis provider returns an unusable response."""
