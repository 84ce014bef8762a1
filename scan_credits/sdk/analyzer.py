"""
Document analysis client.

Calls an OpenAI-compatible chat completions endpoint (OpenRouter by default).
The accounting core only cares whether a call succeeded.
"""

from dataclasses import dataclass
from typing import Optional, Union

from openai import OpenAI

from ..config.loader import ENV_OPENROUTER_API_KEY, env_secret
from ..core.catalog import OPERATION_COSTS, OperationKind, resolve_operation_kind
from ..errors import AnalysisFailed

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "anthropic/claude-3.5-sonnet"


@dataclass(frozen=True)
class AnalysisResult:
    """Raw analysis returned by the provider."""
    content: str
    model: str
    operation_kind: OperationKind
    response_id: Optional[str] = None


class Analyzer:
    """Thin wrapper over the chat completions API.

    Provider failures (timeouts, HTTP errors) propagate unchanged.
    """

    def __init__(
        self,
        model: str = DEFAULT_MODEL,
        api_key: Optional[str] = None,
        base_url: str = OPENROUTER_BASE_URL,
        timeout: float = 120.0
    ):
        """Initialize the analyzer.

        Args:
            model: Model identifier understood by the endpoint
            api_key: API key (defaults to OPENROUTER_API_KEY)
            base_url: OpenAI-compatible endpoint
            timeout: Request timeout in seconds

        Raises:
            ValueError: If model is missing/empty
        """
        if not model or not model.strip():
            raise ValueError("model is required and cannot be empty")

        self.model = model
        self.client = OpenAI(
            api_key=api_key or env_secret(ENV_OPENROUTER_API_KEY),
            base_url=base_url,
            timeout=timeout
        )

    def analyze(self, document_text: str, operation_kind: Union[OperationKind, str]) -> AnalysisResult:
        """Run a compliance analysis of the document.

        Args:
            document_text: Extracted document text
            operation_kind: Scan tier, selects the depth of analysis

        Returns:
            AnalysisResult with the model's raw output

        Raises:
            ValueError: If the operation kind is unknown
            AnalysisFailed: If the response has no content
            OpenAI API errors: Propagated without modification
        """
        kind = resolve_operation_kind(operation_kind)
        if kind is None:
            raise ValueError(f"Unknown operation kind: {operation_kind}")
        cost = OPERATION_COSTS[kind]

        response = self.client.chat.completions.create(
            model=self.model,
            messages=[
                {
                    "role": "system",
                    "content": (
                        f"You are a compliance analyst performing a {cost.name}: "
                        f"{cost.description}. Cover: {', '.join(cost.features)}."
                    )
                },
                {"role": "user", "content": document_text},
            ]
        )

        if not response.choices:
            raise AnalysisFailed("Analysis response has no choices")
        content = response.choices[0].message.content
        if not content:
            raise AnalysisFailed("Analysis response is empty")

        return AnalysisResult(
            content=content,
            model=getattr(response, "model", None) or self.model,
            operation_kind=kind,
            response_id=getattr(response, "id", None)
        )
