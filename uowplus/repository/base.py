"""
Repository abstract base class and generic implementation.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from typing import Generic, TypeVar, Optional, List, Type, Any, ClassVar
from sqlalchemy import inspect as sa_inspect
from sqlmodel import SQLModel

from uowplus.exceptions.errors import InvalidOperation, RepositoryError, UnitOfWorkError
from uowplus.logging.logger import get_logger
from .query import Query, QueryDescriptor, TrackingMode, compose, count_statement, exists_statement
from .tracking import ChangeTrackingContext, MutationIntent

T = TypeVar("T", bound=SQLModel)

logger = get_logger("uowplus.repository")


class IRepository(ABC, Generic[T]):
    """Repository interface; defines standard data access API."""

    @abstractmethod
    def create(self, entity: T) -> T:
        """Stage entity as Added."""
        pass

    @abstractmethod
    def update(self, entity: T) -> T:
        """Stage entity as Modified."""
        pass

    @abstractmethod
    def delete(self, entity: T) -> T:
        """Stage entity as Deleted."""
        pass

    @abstractmethod
    async def get_entity(self, descriptor: Optional[QueryDescriptor] = None) -> Optional[T]:
        """First match, or None."""
        pass

    @abstractmethod
    async def get_all(self, descriptor: Optional[QueryDescriptor] = None) -> List[T]:
        """All matches."""
        pass

    @abstractmethod
    def get_query(self, descriptor: Optional[QueryDescriptor] = None) -> Query[T]:
        """Composed, unexecuted query (skip/take ignored)."""
        pass

    @abstractmethod
    async def exists(self, predicate: Any = None) -> bool:
        """Whether any row matches predicate; False when predicate is None."""
        pass


class BaseRepository(IRepository[T]):
    """
    Generic repository over one SQLModel table model.

    Mutations are staged on the shared change-tracking context and reach the
    database only when the owning ``UnitOfWork`` saves. Reads all go through
    ``compose``.

    Subclasses declare their entity type and take only the context::

        class OrderRepository(BaseRepository[Order]):
            model = Order
    """

    model: ClassVar[Optional[Type[SQLModel]]] = None

    def __init__(self, context: ChangeTrackingContext, model: Optional[Type[T]] = None):
        """Initialize repository with the shared context and model."""
        if context is None:
            raise ValueError("Change-tracking context must be provided.")
        model = model or type(self).model
        if model is None:
            raise TypeError(f"{type(self).__name__} does not declare an entity type")
        self.context = context
        self.model = model

    @property
    def entity_name(self) -> str:
        return self.model.__name__

    @contextmanager
    def _translate_errors(self, operation: str):
        self.context.ensure_open()
        try:
            yield
        except UnitOfWorkError:
            raise
        except Exception as exc:
            logger.error(f"{operation} failed for {self.entity_name}: {exc}")
            raise RepositoryError(self.entity_name, operation, exc) from exc

    # --- staging ---

    def _stage(self, entity: T, intent: MutationIntent, operation: str) -> T:
        self.context.ensure_open()
        if entity is None:
            raise InvalidOperation(f"{operation} requires an entity, got None")
        with self._translate_errors(operation):
            if not isinstance(entity, self.model):
                raise TypeError(
                    f"expected {self.entity_name}, got {type(entity).__name__}"
                )
            self.context.attach(entity, intent)
        return entity

    def create(self, entity: T) -> T:
        """Stage entity as Added; nothing is written until save."""
        return self._stage(entity, MutationIntent.ADDED, "create")

    def update(self, entity: T) -> T:
        """Stage entity as Modified."""
        return self._stage(entity, MutationIntent.MODIFIED, "update")

    def delete(self, entity: T) -> T:
        """Stage entity as Deleted."""
        return self._stage(entity, MutationIntent.DELETED, "delete")

    # --- reads ---

    async def _fetch(self, statement, tracking: TrackingMode, operation: str, first: bool = False):
        with self._translate_errors(operation):
            return await self.context.fetch(statement, tracking, first=first)

    async def _scalar(self, statement, operation: str):
        with self._translate_errors(operation):
            return await self.context.scalar(statement)

    async def get_entity(self, descriptor: Optional[QueryDescriptor] = None) -> Optional[T]:
        """First entity matching descriptor, or None when nothing matches."""
        descriptor = descriptor or QueryDescriptor()
        with self._translate_errors("get_entity"):
            statement = compose(self.model, descriptor)
        return await self._fetch(statement, descriptor.tracking, "get_entity", first=True)

    async def get_all(self, descriptor: Optional[QueryDescriptor] = None) -> List[T]:
        """Every entity matching descriptor (empty list when none)."""
        descriptor = descriptor or QueryDescriptor()
        with self._translate_errors("get_all"):
            statement = compose(self.model, descriptor)
        return await self._fetch(statement, descriptor.tracking, "get_all")

    def get_query(self, descriptor: Optional[QueryDescriptor] = None) -> Query[T]:
        """Includes, predicate and tracking applied; pagination left to the caller."""
        descriptor = descriptor or QueryDescriptor()
        with self._translate_errors("get_query"):
            statement = compose(self.model, descriptor, paginate=False)
        return Query(self, statement, descriptor.tracking)

    async def exists(self, predicate: Any = None) -> bool:
        """
        Whether any row matches predicate.

        A missing predicate means "nothing to check" and returns False without
        querying, whatever the table holds.
        """
        self.context.ensure_open()
        if predicate is None:
            return False
        with self._translate_errors("exists"):
            statement = exists_statement(compose(self.model, QueryDescriptor(predicate=predicate)))
        return bool(await self._scalar(statement, "exists"))

    async def count(self, descriptor: Optional[QueryDescriptor] = None) -> int:
        """Count entities matching descriptor (pagination applies)."""
        with self._translate_errors("count"):
            statement = count_statement(compose(self.model, descriptor))
        return await self._scalar(statement, "count")

    async def get_by_id(self, id: Any, tracking: TrackingMode = TrackingMode.TRACKED) -> Optional[T]:
        """Get entity by its single-column primary key, whatever the column is called."""
        with self._translate_errors("get_by_id"):
            key_columns = sa_inspect(self.model).primary_key
            if len(key_columns) != 1:
                raise TypeError(f"{self.entity_name} has a composite primary key")
            descriptor = QueryDescriptor(predicate=key_columns[0] == id, tracking=tracking)
        return await self.get_entity(descriptor)

    async def find_one(self, **filters) -> Optional[T]:
        """Find one entity by filters (e.g. number='A-1')."""
        return await self.get_entity(QueryDescriptor(filters=filters))

    async def find_all(self, **filters) -> List[T]:
        """Find entities by filters."""
        return await self.get_all(QueryDescriptor(filters=filters))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.entity_name}>"
