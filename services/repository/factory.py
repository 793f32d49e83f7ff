"""Factory for creating the configured repository backend."""

import logging

from services.repository.base import DocumentRepository
from services.repository.events import ChangeFeed
from services.repository.memory import InMemoryRepository
from services.repository.sql import SqlRepository
from services.shared.config import Settings

logger = logging.getLogger(__name__)


def create_repository(
    settings: Settings, change_feed: ChangeFeed | None = None
) -> DocumentRepository:
    """Create the repository selected by settings.repository_backend.

    Args:
        settings: Application settings
        change_feed: Shared change feed (a new one if None)

    Returns:
        Repository instance

    Raises:
        ValueError: If the configured backend is unknown
        PersistenceError: If the SQL database cannot be initialized
    """
    backend = settings.repository_backend
    if backend == "memory":
        repository: DocumentRepository = InMemoryRepository(change_feed)
    elif backend == "sql":
        repository = SqlRepository(settings.database_url, change_feed)
    else:
        raise ValueError(f"Unknown repository backend: '{backend}'. Available: memory, sql")

    logger.info(f"Created repository backend: {backend}")
    return repository
