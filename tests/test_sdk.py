"""
Unit tests for SDK layer.

Tests the analysis client and the credit-gated scan orchestrator.
"""

import os
import shutil
import tempfile
from unittest.mock import Mock, patch

import pytest

from scan_credits.core.catalog import OperationKind
from scan_credits.core.debit import DebitExecutor, GatedStatus
from scan_credits.core.quota import DenialReason
from scan_credits.errors import AnalysisFailed
from scan_credits.sdk.analyzer import DEFAULT_MODEL, OPENROUTER_BASE_URL, AnalysisResult, Analyzer
from scan_credits.sdk.scanner import ScanOrchestrator
from scan_credits.storage.repository import BalanceStore, initialize_schema


def create_response(content="{\"riskScore\": 42}", response_id="gen_123"):
    """Create a mock chat completion response."""
    response = Mock()
    response.id = response_id
    response.model = DEFAULT_MODEL
    response.choices = [Mock()]
    response.choices[0].message.content = content
    return response


class TestAnalyzer:
    """Test Analyzer client wrapper."""

    @patch('scan_credits.sdk.analyzer.OpenAI')
    def test_init_uses_openrouter(self, mock_openai_class):
        analyzer = Analyzer(api_key="or_key")

        assert analyzer.model == DEFAULT_MODEL
        mock_openai_class.assert_called_once_with(
            api_key="or_key",
            base_url=OPENROUTER_BASE_URL,
            timeout=120.0
        )

    def test_init_missing_model(self):
        with pytest.raises(ValueError, match="model is required"):
            Analyzer(model="")

    @patch('scan_credits.sdk.analyzer.OpenAI')
    def test_analyze_success(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = create_response()
        mock_openai_class.return_value = mock_client

        result = Analyzer(api_key="or_key").analyze("Invoice text", "deep")

        assert result == AnalysisResult(
            content="{\"riskScore\": 42}",
            model=DEFAULT_MODEL,
            operation_kind=OperationKind.DEEP,
            response_id="gen_123"
        )
        _, kwargs = mock_client.chat.completions.create.call_args
        assert kwargs["model"] == DEFAULT_MODEL
        assert kwargs["messages"][-1] == {"role": "user", "content": "Invoice text"}
        assert "Deep Scan" in kwargs["messages"][0]["content"]

    @patch('scan_credits.sdk.analyzer.OpenAI')
    def test_analyze_empty_response(self, mock_openai_class):
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = create_response(content="")
        mock_openai_class.return_value = mock_client

        with pytest.raises(AnalysisFailed, match="empty"):
            Analyzer(api_key="or_key").analyze("Invoice text", "basic")

    @patch('scan_credits.sdk.analyzer.OpenAI')
    def test_analyze_no_choices(self, mock_openai_class):
        response = create_response()
        response.choices = []
        mock_client = Mock()
        mock_client.chat.completions.create.return_value = response
        mock_openai_class.return_value = mock_client

        with pytest.raises(AnalysisFailed, match="no choices"):
            Analyzer(api_key="or_key").analyze("Invoice text", "basic")

    @patch('scan_credits.sdk.analyzer.OpenAI')
    def test_analyze_unknown_kind(self, mock_openai_class):
        with pytest.raises(ValueError, match="Unknown operation kind"):
            Analyzer(api_key="or_key").analyze("Invoice text", "mega")


class TestScanOrchestrator:
    """Test credit-gated scans end to end with a mocked analyzer."""

    def setup_method(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.db_path = os.path.join(self.temp_dir, "test.db")
        initialize_schema(self.db_path)
        self.store = BalanceStore(self.db_path)
        self.analyzer = Mock(spec=Analyzer)
        self.analysis = AnalysisResult(
            content="ok", model=DEFAULT_MODEL, operation_kind=OperationKind.BASIC
        )
        self.orchestrator = ScanOrchestrator(DebitExecutor(self.store), self.analyzer)

    def teardown_method(self):
        """Clean up test environment."""
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_successful_scan_is_charged(self):
        self.analyzer.analyze.return_value = self.analysis

        result = self.orchestrator.scan("user_1", "Invoice text", "basic", document_name="inv.pdf")

        assert result.ok
        assert result.value is self.analysis
        self.analyzer.analyze.assert_called_once_with("Invoice text", "basic")
        record = self.store.get_balance("user_1")
        assert record.balance == 2
        assert record.usage_history[0].label == "inv.pdf"

    def test_failed_analysis_not_charged(self):
        self.analyzer.analyze.side_effect = AnalysisFailed("Analysis response is empty")

        with pytest.raises(AnalysisFailed):
            self.orchestrator.scan("user_1", "Invoice text", "basic")

        assert self.store.get_balance("user_1").balance == 3

    def test_denied_scan_skips_analysis(self):
        result = self.orchestrator.scan("user_1", "Invoice text", OperationKind.ULTRA)

        assert result.status == GatedStatus.DENIED
        assert result.denial == DenialReason.INSUFFICIENT_BALANCE
        self.analyzer.analyze.assert_not_called()

    def test_empty_document_rejected(self):
        with pytest.raises(ValueError, match="document_text is required"):
            self.orchestrator.scan("user_1", "   ")
        self.analyzer.analyze.assert_not_called()

    def test_missing_user_rejected(self):
        with pytest.raises(ValueError, match="user_id is required"):
            self.orchestrator.scan("", "Invoice text")
