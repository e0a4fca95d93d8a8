"""
Persistence Module

Attempt log and progress storage adapters.
"""

from app.infrastructure.persistence.base import GradingStore, GradingUnitOfWork
from app.infrastructure.persistence.memory import InMemoryGradingStore
from app.infrastructure.persistence.sql import SqlAlchemyGradingStore

__all__ = [
    "GradingStore",
    "GradingUnitOfWork",
    "InMemoryGradingStore",
    "SqlAlchemyGradingStore",
]
