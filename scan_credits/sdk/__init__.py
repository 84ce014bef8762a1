"""
SDK for Scan Credits.

Provides the credit-gated document scan entry point.
"""

from .analyzer import AnalysisResult, Analyzer
from .scanner import ScanOrchestrator

__all__ = ["AnalysisResult", "Analyzer", "ScanOrchestrator"]
