"""
Repository pattern: data access abstraction, decouples service layer from database session.
"""

from .base import BaseRepository, IRepository
from .query import Query, QueryDescriptor, TrackingMode
from .registry import RepositoryRegistry
from .tracking import ChangeTrackingContext, MutationIntent
from .unit_of_work import UnitOfWork

__all__ = [
    "BaseRepository",
    "ChangeTrackingContext",
    "IRepository",
    "MutationIntent",
    "Query",
    "QueryDescriptor",
    "RepositoryRegistry",
    "TrackingMode",
    "UnitOfWork",
]
