from smartqueue.repositories.base import Repository
from smartqueue.repositories.memory import InMemoryRepository
from smartqueue.repositories.sql import SqlRepository
from smartqueue.repositories.factory import build_repository

__all__ = [
    "Repository",
    "InMemoryRepository",
    "SqlRepository",
    "build_repository",
]
