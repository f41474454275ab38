"""
Typed repository registry: entity type -> repository class.

Populated through explicit ``register`` calls. A Unit of Work asks it to
``build`` the repository for a model: the registered override if there is
one, otherwise a plain ``BaseRepository`` bound to the shared context.
"""

from typing import Dict, Iterable, Optional, Type

from sqlmodel import SQLModel

from uowplus.exceptions.errors import InvalidOperation
from .base import BaseRepository
from .tracking import ChangeTrackingContext


class RepositoryRegistry:
    """Explicit mapping of entity types to specialised repository classes."""

    def __init__(self, repositories: Iterable[Type[BaseRepository]] = ()):
        self._overrides: Dict[Type[SQLModel], Type[BaseRepository]] = {}
        for repository_class in repositories:
            self.register(repository_class)

    def register(self, repository_class: Type[BaseRepository], model: Optional[Type[SQLModel]] = None):
        """Register ``repository_class`` for ``model`` (default: its declared ``model``). Usable as a decorator."""
        if not (isinstance(repository_class, type) and issubclass(repository_class, BaseRepository)):
            raise TypeError(f"{repository_class!r} is not a BaseRepository subclass")
        model = model or repository_class.model
        if model is None:
            raise InvalidOperation(f"{repository_class.__name__} does not declare an entity type")
        self._overrides[model] = repository_class
        return repository_class

    def resolve(self, model: Type[SQLModel]) -> Optional[Type[BaseRepository]]:
        return self._overrides.get(model)

    def build(self, model: Type[SQLModel], context: ChangeTrackingContext) -> BaseRepository:
        repository_class = self._overrides.get(model)
        if repository_class is None:
            return BaseRepository(context, model)
        if repository_class.model is None:
            return repository_class(context, model)
        return repository_class(context)

    def __contains__(self, model) -> bool:
        return model in self._overrides

    def __len__(self) -> int:
        return len(self._overrides)
