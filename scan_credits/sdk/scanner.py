"""
Scan orchestration.

Composes admission, the analysis call and the debit into one scan request.
"""

import logging
from typing import Union

from .analyzer import AnalysisResult, Analyzer
from ..core.catalog import OperationKind
from ..core.debit import DebitExecutor, GatedResult

logger = logging.getLogger(__name__)


class ScanOrchestrator:
    """Entry point for a user's scan request.

    The user is charged only if the analysis succeeds.
    """

    def __init__(self, executor: DebitExecutor, analyzer: Analyzer):
        self.executor = executor
        self.analyzer = analyzer

    def scan(
        self,
        user_id: str,
        document_text: str,
        operation_kind: Union[OperationKind, str] = OperationKind.BASIC,
        document_name: str = ""
    ) -> GatedResult[AnalysisResult]:
        """Analyze a document and charge for it.

        Args:
            user_id: Verified user identifier
            document_text: Extracted document text (required)
            operation_kind: Scan tier
            document_name: Stored as the usage entry label

        Returns:
            DENIED result, or COMPLETED result with the AnalysisResult

        Raises:
            ValueError: If user_id or document_text is empty
            Analysis errors: Propagated without modification, nothing charged
        """
        if not user_id:
            raise ValueError("user_id is required and cannot be empty")
        if not document_text or not document_text.strip():
            raise ValueError("document_text is required and cannot be empty")

        result = self.executor.execute_gated(
            user_id,
            operation_kind,
            lambda: self.analyzer.analyze(document_text, operation_kind),
            label=document_name
        )
        if result.ok:
            logger.info("Scan %s completed for user %s (debit recorded: %s)",
                        result.kind.value, user_id, result.debit_recorded)
        return result
