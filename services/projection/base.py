"""Abstract base class for projection providers.

Enables switching between a cloud LLM, a self-hosted LLM and a
deterministic local model behind one interface.

Based on Strategy Pattern:
https://refactoring.guru/design-patterns/strategy/python
"""

from abc import ABC, abstractmethod

from services.projection.schema import (
    BusinessSnapshot,
    HistoryPoint,
    NarrativeResult,
    ProjectionResult,
)
from services.shared.config import Settings


class ProjectionProvider(ABC):
    """Interface for sales projection and narrative providers.

    Implementations return result models with success/error set instead of
    raising, so callers can fall back without try/except around every call.
    """

    def __init__(self, settings: Settings) -> None:
        """Initialize provider with settings.

        Args:
            settings: Application settings
        """
        self.settings = settings

    @abstractmethod
    def project_sales(self, history: list[HistoryPoint], periods: int) -> ProjectionResult:
        """Project monthly gross sales.

        Args:
            history: Actual monthly totals, oldest first
            periods: Number of future months to project

        Returns:
            ProjectionResult with context and projected points, or error
        """
        pass

    @abstractmethod
    def generate_narrative(
        self, snapshot: BusinessSnapshot, instruction: str | None = None
    ) -> NarrativeResult:
        """Write a Markdown report about the business figures.

        Args:
            snapshot: Current business figures
            instruction: Optional user request to focus the report

        Returns:
            NarrativeResult with Markdown body, or error
        """
        pass

    @abstractmethod
    def is_available(self) -> bool:
        """Check if this provider is available/configured.

        Returns:
            True if provider can be used, False otherwise
        """
        pass

    @property
    @abstractmethod
    def provider_name(self) -> str:
        """Get provider name for logging/metrics.

        Returns:
            Provider identifier (e.g., 'openai', 'local')
        """
        pass
