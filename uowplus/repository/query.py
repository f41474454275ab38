"""
Query composition: the Query Descriptor value and the single pipeline that
turns it into a SQLAlchemy ``Select``.

Every read in the repository layer goes through ``compose`` so that
``get_entity``, ``get_all``, ``get_query`` and ``count`` filter identically:

    includes -> predicate / filters -> ordering -> skip -> take

Tracking mode is not part of the statement. It is applied when the statement
is executed, after pagination, so it never changes which rows are selected.
"""

from collections.abc import Mapping
from dataclasses import dataclass, replace
from enum import Enum
from typing import Any, Callable, Generic, List, Optional, Tuple, TypeVar, Union, TYPE_CHECKING

from sqlalchemy import and_, func
from sqlalchemy.orm import QueryableAttribute, selectinload
from sqlmodel import SQLModel, select

if TYPE_CHECKING:
    from .base import BaseRepository

T = TypeVar("T", bound=SQLModel)

# Relationship attribute, attribute name, or a Select -> Select transformation
Include = Union[str, QueryableAttribute, Callable[[Any], Any]]


def _non_negative(name: str, value: int) -> int:
    if value < 0:
        raise ValueError(f"{name} must be non-negative, got {value}")
    return value


class TrackingMode(str, Enum):
    """Whether returned instances are attached to the change-tracking context."""
    TRACKED = "tracked"
    UNTRACKED = "untracked"


@dataclass(frozen=True, eq=False)
class QueryDescriptor:
    """
    Immutable description of a read.

    Build it as a plain literal::

        QueryDescriptor(predicate=Order.status == "open", take=10)

    or fluently; every builder returns a new descriptor::

        QueryDescriptor().include(Order.lines).where(Order.id == 5).as_no_tracking()

    ``take == 0`` means unbounded.
    """

    predicate: Optional[Any] = None
    filters: Tuple[Tuple[str, Any], ...] = ()
    includes: Tuple[Include, ...] = ()
    ordering: Tuple[Any, ...] = ()
    skip: int = 0
    take: int = 0
    tracking: TrackingMode = TrackingMode.TRACKED

    def __post_init__(self):
        _non_negative("skip", self.skip)
        _non_negative("take", self.take)
        filters = self.filters.items() if isinstance(self.filters, Mapping) else self.filters
        object.__setattr__(self, "filters", tuple(tuple(item) for item in filters))
        object.__setattr__(self, "includes", tuple(self.includes))
        object.__setattr__(self, "ordering", tuple(self.ordering))
        object.__setattr__(self, "tracking", TrackingMode(self.tracking))

    @property
    def tracked(self) -> bool:
        return self.tracking is TrackingMode.TRACKED

    def where(self, *clauses) -> "QueryDescriptor":
        """AND the given clauses onto the predicate."""
        predicate = self.predicate
        for clause in clauses:
            predicate = clause if predicate is None else and_(predicate, clause)
        return replace(self, predicate=predicate)

    def filter_by(self, **filters) -> "QueryDescriptor":
        """Equality filters by column name (e.g. ``number="A-1"``)."""
        return replace(self, filters=self.filters + tuple(filters.items()))

    def include(self, *directives: Include) -> "QueryDescriptor":
        return replace(self, includes=self.includes + directives)

    def order_by(self, *clauses) -> "QueryDescriptor":
        return replace(self, ordering=self.ordering + clauses)

    def offset(self, skip: int) -> "QueryDescriptor":
        return replace(self, skip=skip)

    def limit(self, take: int) -> "QueryDescriptor":
        return replace(self, take=take)

    def paginate(self, skip: int = 0, take: int = 0) -> "QueryDescriptor":
        return replace(self, skip=skip, take=take)

    def as_no_tracking(self) -> "QueryDescriptor":
        return replace(self, tracking=TrackingMode.UNTRACKED)

    def as_tracking(self) -> "QueryDescriptor":
        return replace(self, tracking=TrackingMode.TRACKED)


def apply_include(statement, directive: Include, model):
    """Apply one eager-load directive to ``statement``."""
    if isinstance(directive, str):
        directive = getattr(model, directive)
    if isinstance(directive, QueryableAttribute):
        return statement.options(selectinload(directive))
    if callable(directive):
        return directive(statement)
    raise TypeError(f"Unsupported include directive: {directive!r}")


def _column(model, name: str):
    attribute = getattr(model, name, None)
    if not isinstance(attribute, QueryableAttribute):
        raise AttributeError(f"{model.__name__} has no mapped attribute {name!r}")
    return attribute


def compose(model, descriptor: Optional[QueryDescriptor] = None, paginate: bool = True):
    """Build the ``Select`` for ``descriptor`` over ``model``."""
    if descriptor is None:
        descriptor = QueryDescriptor()

    statement = select(model)
    for directive in descriptor.includes:
        statement = apply_include(statement, directive, model)

    if descriptor.predicate is not None:
        statement = statement.where(descriptor.predicate)
    for name, value in descriptor.filters:
        statement = statement.where(_column(model, name) == value)

    if descriptor.ordering:
        statement = statement.order_by(*descriptor.ordering)

    if paginate:
        if descriptor.skip > 0:
            statement = statement.offset(descriptor.skip)
        if descriptor.take > 0:
            statement = statement.limit(descriptor.take)
    return statement


def count_statement(statement):
    return select(func.count()).select_from(statement.order_by(None).subquery())


def exists_statement(statement):
    return select(statement.exists())


class Query(Generic[T]):
    """
    Composed but unexecuted read returned by ``get_query``.

    Includes, predicate and tracking mode are already applied. Further
    composition returns a new ``Query``; nothing touches the store until one
    of ``all``/``first``/``count``/``exists`` is awaited. Execution goes back
    through the owning repository, so disposal checks and error translation
    still apply.
    """

    def __init__(self, repository: "BaseRepository[T]", statement, tracking: TrackingMode):
        self._repository = repository
        self.statement = statement
        self.tracking = tracking

    def _derive(self, statement=None, tracking: Optional[TrackingMode] = None) -> "Query[T]":
        return Query(
            self._repository,
            self.statement if statement is None else statement,
            self.tracking if tracking is None else tracking,
        )

    def where(self, *clauses) -> "Query[T]":
        return self._derive(self.statement.where(*clauses))

    def order_by(self, *clauses) -> "Query[T]":
        return self._derive(self.statement.order_by(*clauses))

    def offset(self, skip: int) -> "Query[T]":
        return self._derive(self.statement.offset(_non_negative("skip", skip)))

    def limit(self, take: int) -> "Query[T]":
        return self._derive(self.statement.limit(_non_negative("take", take)))

    def options(self, *options) -> "Query[T]":
        return self._derive(self.statement.options(*options))

    def as_no_tracking(self) -> "Query[T]":
        return self._derive(tracking=TrackingMode.UNTRACKED)

    async def all(self) -> List[T]:
        return await self._repository._fetch(self.statement, self.tracking, "get_query")

    async def first(self) -> Optional[T]:
        return await self._repository._fetch(self.statement, self.tracking, "get_query", first=True)

    async def count(self) -> int:
        return await self._repository._scalar(count_statement(self.statement), "get_query")

    async def exists(self) -> bool:
        return bool(await self._repository._scalar(exists_statement(self.statement), "get_query"))

    def __repr__(self) -> str:
        return f"<Query {self._repository.entity_name} tracking={self.tracking.value}>"
