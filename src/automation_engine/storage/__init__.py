"""Run stores"""

from .repository import RunStore, InMemoryRunStore
from .sqlalchemy_repository import DatabaseManager, SQLAlchemyRunStore

__all__ = [
    "RunStore",
    "InMemoryRunStore",
    "DatabaseManager",
    "SQLAlchemyRunStore"
]
