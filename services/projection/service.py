"""Projection service with deterministic fallback.

Calls the configured provider and, when it returns an error or raises,
answers with the local provider's result instead. Callers always get a
usable result.
"""

import logging
from collections.abc import Callable
from typing import TypeVar

from prometheus_client import Counter

from services.projection.base import ProjectionProvider
from services.projection.factory import create_projection_provider
from services.projection.local_provider import LocalProjectionProvider
from services.projection.schema import (
    PROJECTION_HORIZONS,
    BusinessSnapshot,
    HistoryPoint,
    NarrativeResult,
    ProjectionResult,
)
from services.shared.config import Settings
from services.shared.errors import ExternalServiceError, ValidationError

logger = logging.getLogger(__name__)

ResultT = TypeVar("ResultT", ProjectionResult, NarrativeResult)

projection_requests_total = Counter(
    "projection_requests_total",
    "Total projection and narrative requests",
    ["provider", "operation", "status"],  # status: success, failed
)

projection_fallbacks_total = Counter(
    "projection_fallbacks_total",
    "Requests answered by the deterministic fallback",
    ["provider", "operation"],
)


def periods_for_horizon(horizon: str) -> int:
    """Number of months for a horizon label (1m, 3m, 6m, 1y).

    Raises:
        ValidationError: If horizon is unknown
    """
    try:
        return PROJECTION_HORIZONS[horizon]
    except KeyError:
        available = ", ".join(PROJECTION_HORIZONS)
        raise ValidationError(f"Unknown horizon '{horizon}'. Available: {available}") from None


class ProjectionService:
    """Projection and narrative facade over a provider plus local fallback."""

    def __init__(
        self,
        settings: Settings,
        provider: ProjectionProvider | None = None,
    ) -> None:
        """Initialize service.

        Args:
            settings: Application settings
            provider: Primary provider (created from settings if None)
        """
        self.settings = settings
        self.provider = provider or create_projection_provider(settings)
        self.fallback = LocalProjectionProvider(settings)

    def project(self, history: list[HistoryPoint], horizon: str) -> ProjectionResult:
        """Project sales for a horizon label.

        Args:
            history: Actual monthly totals, oldest first
            horizon: One of 1m, 3m, 6m, 1y

        Returns:
            ProjectionResult (fallback_used=True when the local model answered)

        Raises:
            ValidationError: If horizon is unknown
        """
        return self.project_sales(history, periods_for_horizon(horizon))

    def project_sales(self, history: list[HistoryPoint], periods: int) -> ProjectionResult:
        """Project sales for a number of months, falling back on failure."""
        name = self.provider.provider_name
        try:
            result = self._primary(lambda: self.provider.project_sales(history, periods))
        except ExternalServiceError as e:
            projection_requests_total.labels(name, "projection", "failed").inc()
            if name == self.fallback.provider_name:
                return ProjectionResult(success=False, error=str(e), provider=name)

            logger.warning(f"Projection provider '{name}' failed, using local model: {e}")
            projection_fallbacks_total.labels(name, "projection").inc()
            fallback = self.fallback.project_sales(history, periods)
            return fallback.model_copy(update={"fallback_used": True, "error": str(e)})

        projection_requests_total.labels(name, "projection", "success").inc()
        return result

    def narrative(
        self, snapshot: BusinessSnapshot, instruction: str | None = None
    ) -> NarrativeResult:
        """Write a business report, falling back to the Markdown template on failure."""
        name = self.provider.provider_name
        try:
            result = self._primary(
                lambda: self.provider.generate_narrative(snapshot, instruction)
            )
        except ExternalServiceError as e:
            projection_requests_total.labels(name, "narrative", "failed").inc()
            if name == self.fallback.provider_name:
                return NarrativeResult(success=False, error=str(e), provider=name)

            logger.warning(f"Narrative provider '{name}' failed, using template: {e}")
            projection_fallbacks_total.labels(name, "narrative").inc()
            fallback = self.fallback.generate_narrative(snapshot, instruction)
            return fallback.model_copy(update={"fallback_used": True, "error": str(e)})

        projection_requests_total.labels(name, "narrative", "success").inc()
        return result

    def _primary(self, call: Callable[[], ResultT]) -> ResultT:
        """Run a call against the configured provider.

        Raises:
            ExternalServiceError: If the call raises or reports failure
        """
        try:
            result = call()
        except Exception as e:
            raise ExternalServiceError(str(e)) from e
        if not result.success:
            raise ExternalServiceError(result.error or "Provider returned no result")
        return result
