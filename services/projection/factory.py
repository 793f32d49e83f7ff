"""Factory for creating projection providers based on configuration.

Implements Factory Pattern for provider selection with registry pattern for extensibility.

Based on:
- Factory Pattern: https://refactoring.guru/design-patterns/factory-method/python
- Registry Pattern: Python Cookbook 3rd Edition, Recipe 9.22
"""

import logging

from services.projection.base import ProjectionProvider
from services.projection.local_provider import LocalProjectionProvider
from services.projection.ollama_provider import OllamaProjectionProvider
from services.projection.openai_provider import OpenAIProjectionProvider
from services.shared.config import Settings

logger = logging.getLogger(__name__)


class ProviderRegistry:
    """Registry of available projection providers.

    Maintains a mapping of provider names to their implementation classes.
    Supports runtime registration of new providers.
    """

    _providers: dict[str, type[ProjectionProvider]] = {
        "openai": OpenAIProjectionProvider,
        "ollama": OllamaProjectionProvider,
        "local": LocalProjectionProvider,
    }

    @classmethod
    def register(cls, name: str, provider_class: type[ProjectionProvider]) -> None:
        """Register a new provider.

        Args:
            name: Provider identifier (must match Settings.projection_provider)
            provider_class: Provider class implementing ProjectionProvider interface
        """
        cls._providers[name] = provider_class
        logger.info(f"Registered projection provider: {name}")

    @classmethod
    def get_provider_class(cls, name: str) -> type[ProjectionProvider]:
        """Get provider class by name.

        Args:
            name: Provider identifier

        Returns:
            Provider class implementing ProjectionProvider

        Raises:
            ValueError: If provider not found in registry
        """
        if name not in cls._providers:
            available = ", ".join(cls._providers.keys())
            raise ValueError(
                f"Unknown projection provider: '{name}'. Available providers: {available}"
            )
        return cls._providers[name]

    @classmethod
    def list_providers(cls) -> list[str]:
        """List all registered provider names.

        Returns:
            List of provider names
        """
        return list(cls._providers.keys())


def create_projection_provider(settings: Settings) -> ProjectionProvider:
    """Create the projection provider named by settings.projection_provider.

    Logs a warning if the provider is not available (e.g., missing API key);
    ProjectionService falls back to the local provider in that case.

    Args:
        settings: Application settings with projection_provider field

    Returns:
        Configured projection provider instance

    Raises:
        ValueError: If configured provider is unknown
    """
    provider_name = settings.projection_provider
    provider_class = ProviderRegistry.get_provider_class(provider_name)
    provider = provider_class(settings)

    if not provider.is_available():
        logger.warning(
            f"Projection provider '{provider_name}' is not fully available. "
            f"Check configuration (e.g., API keys, server URL)."
        )

    logger.info(f"Created projection provider: {provider_name}")
    return provider
