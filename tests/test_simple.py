"""
Simple test cases to verify test configuration.
"""
import pytest
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncEngine
from apps.orders.models import Order
from apps.orders.repository import OrderRepository
from uowplus.exceptions.errors import InvalidOperation
from uowplus.repository.registration import add_unit_of_work, get_uow, repository_dependency
from uowplus.repository.unit_of_work import UnitOfWork

@pytest.mark.asyncio
async def test_app_exists(client: AsyncClient):
    """Test that app exists."""
    assert client is not None

@pytest.mark.asyncio
async def test_database_connection(engine: AsyncEngine):
    """Test that the test database answers."""
    async with engine.connect() as conn:
        result = await conn.execute(text("SELECT 1"))
        assert result.scalar() == 1

@pytest.mark.asyncio
async def test_unit_of_work_fixture(uow: UnitOfWork):
    """Test that the unit of work fixture is usable."""
    assert not uow.is_disposed
    assert not uow.in_transaction
    assert not uow.has_changes


@pytest.mark.asyncio
async def test_repository_dependency(session_factory, sample_orders):
    """Test a route can take a repository straight from the request's unit of work."""
    app = FastAPI()
    add_unit_of_work(app, session_factory, OrderRepository)

    @app.get("/orders/count")
    async def count_orders(repo=Depends(repository_dependency(Order))):
        return {"repository": type(repo).__name__, "count": await repo.count()}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        response = await ac.get("/orders/count")
    assert response.json() == {"repository": "OrderRepository", "count": 10}


@pytest.mark.asyncio
async def test_get_uow_requires_registration():
    """Test get_uow fails loudly on an app that was never registered."""
    app = FastAPI()

    @app.get("/")
    async def index(uow: UnitOfWork = Depends(get_uow)):
        return {}

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        with pytest.raises(InvalidOperation):
            await ac.get("/")
