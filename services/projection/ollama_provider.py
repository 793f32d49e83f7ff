"""Ollama-based projection provider for self-hosted LLM inference.

Keeps business figures on-premises. Requires an Ollama server
(default localhost:11434). See: https://ollama.ai/
"""

import json
import logging
import re
from typing import Any

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from services.projection.base import ProjectionProvider
from services.projection.schema import (
    BusinessSnapshot,
    HistoryPoint,
    NarrativeResult,
    ProjectionPoint,
    ProjectionResult,
)
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class OllamaProjectionProvider(ProjectionProvider):
    """Ollama-based projection provider.

    Supports models like Qwen2.5, Llama3, Mistral.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize Ollama projection provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._base_url = settings.ollama_base_url
        self._model = settings.ollama_model
        self._client = httpx.Client(timeout=120.0)  # LLMs can be slow

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'ollama'
        """
        return "ollama"

    def is_available(self) -> bool:
        """Check if Ollama server is running and model is available.

        Returns:
            True if Ollama server responds and model is loaded
        """
        try:
            response = self._client.get(f"{self._base_url}/api/tags")
            if response.status_code != 200:
                return False
            models = response.json().get("models", [])
            model_names = [m.get("name", "").split(":")[0] for m in models]
            return self._model.split(":")[0] in model_names
        except httpx.HTTPError:
            return False

    def project_sales(self, history: list[HistoryPoint], periods: int) -> ProjectionResult:
        """Project monthly sales using Ollama.

        Args:
            history: Actual monthly totals, oldest first
            periods: Number of future months

        Returns:
            ProjectionResult with points or error
        """
        try:
            response_text = self._call_ollama_with_retry(
                self._build_projection_prompt(history, periods)
            )
            payload = self._parse_json_response(response_text)
            points = [ProjectionPoint(**point) for point in payload.get("points", [])]
            if not points:
                return ProjectionResult(
                    success=False,
                    error="Empty projection in Ollama response",
                    provider=self.provider_name,
                )
            return ProjectionResult(points=points, success=True, provider=self.provider_name)

        except json.JSONDecodeError as e:
            logger.warning(f"Failed to parse JSON from Ollama response: {e}")
            return ProjectionResult(
                success=False,
                error=f"JSON parsing failed: {str(e)}",
                provider=self.provider_name,
            )
        except Exception as e:
            logger.error(f"Ollama projection failed: {e}")
            return ProjectionResult(
                success=False,
                error=f"Projection failed: {str(e)}",
                provider=self.provider_name,
            )

    def generate_narrative(
        self, snapshot: BusinessSnapshot, instruction: str | None = None
    ) -> NarrativeResult:
        """Write a Markdown strategy report using Ollama.

        Args:
            snapshot: Current business figures
            instruction: Optional user request to focus the report

        Returns:
            NarrativeResult with Markdown or error
        """
        focus = instruction.strip() if instruction else "Propose a strategy for next month."
        prompt = (
            f"You are a financial analyst. Analyze these figures of {snapshot.company_name} "
            f"(amounts in CLP):\n{snapshot.model_dump_json(indent=2)}\n\n"
            f"Request: {focus}\nAnswer in professional Markdown, in Spanish."
        )
        try:
            markdown = self._call_ollama_with_retry(prompt, num_predict=2048)
        except Exception as e:
            logger.error(f"Ollama narrative failed: {e}")
            return NarrativeResult(
                success=False, error=f"Narrative failed: {str(e)}", provider=self.provider_name
            )

        if not markdown.strip():
            return NarrativeResult(
                success=False,
                error="Empty narrative in Ollama response",
                provider=self.provider_name,
            )
        return NarrativeResult(markdown=markdown, success=True, provider=self.provider_name)

    @retry(
        retry=retry_if_exception_type((httpx.HTTPError, httpx.TimeoutException)),
        wait=wait_exponential_jitter(initial=1, max=30),
        stop=stop_after_attempt(3),
        reraise=True,
    )
    def _call_ollama_with_retry(self, prompt: str, num_predict: int = 1024) -> str:
        """Call Ollama API with retry logic for transient errors.

        Args:
            prompt: Prompt for the LLM
            num_predict: Max tokens to generate

        Returns:
            Raw response text from Ollama

        Raises:
            httpx.HTTPError: After all retry attempts exhausted
        """
        response = self._client.post(
            f"{self._base_url}/api/generate",
            json={
                "model": self._model,
                "prompt": prompt,
                "stream": False,
                "options": {
                    "temperature": 0,  # Deterministic output
                    "num_predict": num_predict,
                },
            },
        )
        response.raise_for_status()
        result: str = response.json().get("response", "")
        return result

    def _parse_json_response(self, response_text: str) -> dict[str, Any]:
        """Extract and parse JSON from LLM response.

        Handles common LLM quirks like markdown code blocks.

        Args:
            response_text: Raw LLM response

        Returns:
            Parsed JSON dict

        Raises:
            json.JSONDecodeError: If no valid JSON found
        """
        json_match = re.search(r"```(?:json)?\s*([\s\S]*?)```", response_text)
        if json_match:
            result: dict[str, Any] = json.loads(json_match.group(1).strip())
            return result

        json_match = re.search(r"\{[\s\S]*\}", response_text)
        if json_match:
            result = json.loads(json_match.group(0))
            return result

        result = json.loads(response_text.strip())
        return result

    def _build_projection_prompt(self, history: list[HistoryPoint], periods: int) -> str:
        """Build prompt for a JSON sales projection.

        Args:
            history: Actual monthly totals
            periods: Number of future months

        Returns:
            Formatted prompt string
        """
        schema = (
            '{"points": [{"label": "YYYY-MM", "actual_value": number|null, '
            '"projected_value": number}]}'
        )
        rows = "\n".join(f"{h.label}: {h.total}" for h in history) or "(no sales yet)"

        return f"""You are a sales forecasting assistant. Return ONLY valid JSON.

SCHEMA:
{schema}

HISTORY (YYYY-MM: gross sales in CLP):
{rows}

INSTRUCTIONS:
- First the last 3 actual months, with actual_value equal to projected_value
- Then {periods} future month(s) with actual_value null
- Whole pesos, no explanation

OUTPUT:"""
