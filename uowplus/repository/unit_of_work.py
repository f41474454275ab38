"""
Unit of Work: owns one change-tracking context, caches one repository per
entity type, and draws the transaction boundaries.

A UnitOfWork is one transactional scope over one connection. It is not safe
for concurrent use: callers must await its operations (and those of its
repositories) one at a time.
"""

from contextlib import asynccontextmanager
from typing import Dict, Optional, Type, TypeVar
from sqlmodel import SQLModel
from sqlmodel.ext.asyncio.session import AsyncSession

from uowplus.logging.logger import get_logger
from .base import BaseRepository
from .registry import RepositoryRegistry
from .tracking import ChangeTrackingContext

T = TypeVar("T", bound=SQLModel)

logger = get_logger("uowplus.unit_of_work")


class UnitOfWork:
    """Manages related repositories with a shared session and transaction commit/rollback."""

    def __init__(self, session: Optional[AsyncSession] = None, registry: Optional[RepositoryRegistry] = None):
        """Initialize UnitOfWork; session must be provided (e.g. UnitOfWork.from_session())."""
        if session is None:
            raise ValueError("Session must be provided. Use UnitOfWork.from_session() or pass session explicitly.")

        self.context = ChangeTrackingContext(session)
        self.registry = registry if registry is not None else RepositoryRegistry()
        self._repositories: Dict[Type[SQLModel], BaseRepository] = {}

    @classmethod
    async def from_session(cls, session: AsyncSession, registry: Optional[RepositoryRegistry] = None) -> "UnitOfWork":
        """Create UnitOfWork from an existing session."""
        return cls(session=session, registry=registry)

    @property
    def session(self) -> AsyncSession:
        return self.context.session

    @property
    def is_disposed(self) -> bool:
        return self.context.is_disposed

    @property
    def in_transaction(self) -> bool:
        return self.context.in_transaction

    @property
    def has_changes(self) -> bool:
        return self.context.has_changes

    def repository(self, model: Type[T]) -> BaseRepository[T]:
        """Get the repository for model, building and caching it on first access."""
        self.context.ensure_open()
        repository = self._repositories.get(model)
        if repository is None:
            repository = self.registry.build(model, self.context)
            self._repositories[model] = repository
            logger.debug(f"Registered {type(repository).__name__} for {model.__name__}")
        return repository

    get_repository = repository

    async def begin_transaction(self) -> None:
        """Open a transaction; later saves stay inside it until commit or rollback."""
        await self.context.begin()

    async def commit_transaction(self) -> None:
        await self.context.commit()

    async def rollback_transaction(self) -> None:
        await self.context.rollback()

    @asynccontextmanager
    async def transaction(self):
        """Commit on success, roll back on error. Cancellation is left to the caller."""
        await self.begin_transaction()
        try:
            yield self
        except Exception:
            if self.in_transaction:
                await self.rollback_transaction()
            raise
        await self.commit_transaction()

    async def save(self) -> int:
        """Flush every staged change of every repository, all or nothing."""
        return await self.context.flush()

    async def dispose(self) -> None:
        """Release the session; uncommitted work is rolled back. Idempotent."""
        if self.context.is_disposed:
            return
        self._repositories.clear()
        await self.context.dispose()
        logger.debug("Unit of work disposed")

    async def __aenter__(self):
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.dispose()
