"""
FastAPI wiring: one call registers the Unit of Work for an application,
and two dependencies hand out request-scoped instances of it.

    registry = add_unit_of_work(app, driver.session_factory, OrderRepository)

    @router.get("/")
    async def list_orders(uow: UnitOfWork = Depends(get_uow)): ...
"""

from typing import AsyncIterator, Callable, Type

from fastapi import Depends, FastAPI, Request
from sqlmodel import SQLModel

from uowplus.exceptions.errors import InvalidOperation
from .base import BaseRepository
from .registry import RepositoryRegistry
from .unit_of_work import UnitOfWork


def add_unit_of_work(
    app: FastAPI,
    session_factory: Callable,
    *repositories: Type[BaseRepository],
) -> RepositoryRegistry:
    """Register a session factory and the specialised repositories on ``app``."""
    registry = RepositoryRegistry(repositories)
    app.state.uow_session_factory = session_factory
    app.state.uow_registry = registry
    return registry


async def get_uow(request: Request) -> AsyncIterator[UnitOfWork]:
    """Dependency: one UnitOfWork per request, disposed once the request is done."""
    state = request.app.state
    session_factory = getattr(state, "uow_session_factory", None)
    if session_factory is None:
        raise InvalidOperation("add_unit_of_work() has not been called for this application")

    uow = UnitOfWork(session=session_factory(), registry=state.uow_registry)
    try:
        yield uow
    finally:
        await uow.dispose()


def repository_dependency(model: Type[SQLModel]) -> Callable[..., BaseRepository]:
    """Dependency factory: the request's repository for ``model``."""
    def _get_repository(uow: UnitOfWork = Depends(get_uow)) -> BaseRepository:
        return uow.repository(model)
    return _get_repository
