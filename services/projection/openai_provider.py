"""OpenAI-based projection provider.

Uses OpenAI function calling for structured sales projections and a plain
chat completion for Markdown narratives.

Includes retry logic with exponential backoff for transient API errors.
"""

import json
import os
from typing import Any

from openai import OpenAI
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

SYSTEM_PROMPT = "You are a financial analyst for a small Chilean business. Amounts are CLP."


class OpenAIProjectionProvider(ProjectionProvider):
    """OpenAI-based projection provider.

    Requires OPENAI_API_KEY environment variable.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize OpenAI projection provider.

        Args:
            settings: Application settings
        """
        super().__init__(settings)
        self._client: OpenAI | None = None

    @property
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier 'openai'
        """
        return "openai"

    def is_available(self) -> bool:
        """Check if OpenAI API key is configured.

        Returns:
            True if OPENAI_API_KEY environment variable is set
        """
        return os.getenv("OPENAI_API_KEY") is not None

    def project_sales(self, history: list[HistoryPoint], periods: int) -> ProjectionResult:
        """Project monthly sales using OpenAI function calling.

        Args:
            history: Actual monthly totals, oldest first
            periods: Number of future months

        Returns:
            ProjectionResult with points or error, provider='openai'
        """
        if not self.is_available():
            return ProjectionResult(
                success=False,
                error="OPENAI_API_KEY environment variable not set",
                provider=self.provider_name,
            )

        try:
            self._ensure_client()
            response = self._call_openai_with_retry(
                self._build_projection_prompt(history, periods),
                functions=[self._get_projection_schema()],
                function_call={"name": "project_sales"},
            )

            message = response.choices[0].message
            if message.function_call is None:
                return ProjectionResult(
                    success=False,
                    error="No function call in API response",
                    provider=self.provider_name,
                )

            payload = json.loads(message.function_call.arguments)
            points = [ProjectionPoint(**point) for point in payload.get("points", [])]
            if not points:
                return ProjectionResult(
                    success=False,
                    error="Empty projection in API response",
                    provider=self.provider_name,
                )

            return ProjectionResult(points=points, success=True, provider=self.provider_name)

        except Exception as e:
            return ProjectionResult(
                success=False,
                error=f"Projection failed: {str(e)}",
                provider=self.provider_name,
            )

    def generate_narrative(
        self, snapshot: BusinessSnapshot, instruction: str | None = None
    ) -> NarrativeResult:
        """Write a Markdown strategy report using OpenAI.

        Args:
            snapshot: Current business figures
            instruction: Optional user request to focus the report

        Returns:
            NarrativeResult with Markdown or error, provider='openai'
        """
        if not self.is_available():
            return NarrativeResult(
                success=False,
                error="OPENAI_API_KEY environment variable not set",
                provider=self.provider_name,
            )

        try:
            self._ensure_client()
            response = self._call_openai_with_retry(
                self._build_narrative_prompt(snapshot, instruction)
            )
            content = response.choices[0].message.content
            if not content or not content.strip():
                return NarrativeResult(
                    success=False,
                    error="Empty narrative in API response",
                    provider=self.provider_name,
                )
            return NarrativeResult(markdown=content, success=True, provider=self.provider_name)

        except Exception as e:
            return NarrativeResult(
                success=False,
                error=f"Narrative failed: {str(e)}",
                provider=self.provider_name,
            )

    def _ensure_client(self) -> None:
        api_key = os.getenv("OPENAI_API_KEY")
        if self._client is None or self._client.api_key != api_key:
            self._client = OpenAI(api_key=api_key)

    @retry(
        retry=retry_if_exception_type((Exception,)),  # Retry on transient errors
        wait=wait_exponential_jitter(initial=1, max=60),  # Exponential backoff with jitter
        stop=stop_after_attempt(3),  # Max 3 attempts
        reraise=True,  # Re-raise exception after max attempts
    )
    def _call_openai_with_retry(self, prompt: str, **kwargs: Any) -> Any:
        """Call OpenAI API with retry logic for transient errors.

        Args:
            prompt: User prompt
            **kwargs: Extra chat.completions.create arguments (functions, function_call)

        Returns:
            OpenAI API response

        Raises:
            Exception: After all retry attempts are exhausted
        """
        if self._client is None:
            raise RuntimeError("OpenAI client not initialized")

        return self._client.chat.completions.create(  # type: ignore[call-overload]
            model=self.settings.openai_model,
            messages=[
                {"role": "system", "content": SYSTEM_PROMPT},
                {"role": "user", "content": prompt},
            ],
            temperature=0,
            **kwargs,
        )

    def _build_projection_prompt(self, history: list[HistoryPoint], periods: int) -> str:
        """Build prompt for a monthly sales projection.

        Args:
            history: Actual monthly totals
            periods: Number of future months

        Returns:
            Prompt string
        """
        rows = "\n".join(f"{h.label}: {h.total}" for h in history) or "(no sales yet)"
        return f"""Monthly gross sales history (YYYY-MM: total):
{rows}

Project monthly gross sales for the next {periods} month(s).
Include the last 3 actual months first for context, with actual_value equal to
projected_value. Future months have actual_value null.
Use YYYY-MM labels and whole pesos."""

    def _build_narrative_prompt(self, snapshot: BusinessSnapshot, instruction: str | None) -> str:
        """Build prompt for a strategy report.

        Args:
            snapshot: Business figures
            instruction: Optional user focus

        Returns:
            Prompt string
        """
        figures = snapshot.model_dump_json(indent=2)
        focus = instruction.strip() if instruction else "Propose a strategy for next month."
        return f"""Analyze the business figures of {snapshot.company_name}:
{figures}

Provide: 1. Real profitability analysis. 2. Items to restock or liquidate.
3. Cash flow outlook. 4. Growth advice.
Request: {focus}
Format: professional Markdown, in Spanish."""

    def _get_projection_schema(self) -> dict[str, Any]:
        """Get OpenAI function calling schema for a projection.

        Returns:
            Function definition dict for OpenAI API
        """
        return {
            "name": "project_sales",
            "description": "Monthly sales projection with actual context months",
            "parameters": {
                "type": "object",
                "properties": {
                    "points": {
                        "type": "array",
                        "items": {
                            "type": "object",
                            "properties": {
                                "label": {"type": "string"},
                                "actual_value": {"type": ["number", "null"]},
                                "projected_value": {"type": "number"},
                            },
                            "required": ["label", "projected_value"],
                        },
                    }
                },
                "required": ["points"],
            },
        }
