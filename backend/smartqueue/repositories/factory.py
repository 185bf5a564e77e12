"""Select the repository implementation once, at startup."""

import logging

from smartqueue.config import Settings
from smartqueue.database import create_engine
from smartqueue.exceptions import ValidationError
from smartqueue.repositories.base import Repository
from smartqueue.repositories.memory import InMemoryRepository
from smartqueue.repositories.sql import SqlRepository

logger = logging.getLogger(__name__)


def build_repository(settings: Settings) -> Repository:
    """
    Build the store named by `settings.storage_backend`.

    Args:
        settings: Application settings

    Returns:
        An unstarted repository; call `await repo.start()` before use.
    """
    backend = settings.storage_backend.lower()

    if backend == "memory":
        logger.info("Using in-memory storage")
        return InMemoryRepository()

    if backend == "sql":
        logger.info("Using SQL storage")
        engine = create_engine(settings.async_database_url, echo=settings.debug)
        return SqlRepository(engine)

    raise ValidationError(f"Unknown storage backend: {settings.storage_backend}", backend)
