"""Test config and shared fixtures."""
import os

# Point the app at SQLite before settings are loaded
os.environ.setdefault("DB_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("LOG_LEVEL", "WARNING")

import pytest
from datetime import datetime, timezone
from typing import AsyncGenerator, List
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import AsyncEngine

from main import app
from apps.orders.models import Order, OrderLine, OrderStatus
from apps.orders.repository import OrderRepository
from uowplus.database.sql_driver import SQLDriver
from uowplus.repository.registration import add_unit_of_work
from uowplus.repository.registry import RepositoryRegistry
from uowplus.repository.unit_of_work import UnitOfWork


SEED_SIZE = 10


def seeded_status(i: int) -> OrderStatus:
    """Every third seeded order is PAID, the rest OPEN."""
    return OrderStatus.PAID if i % 3 == 0 else OrderStatus.OPEN


@pytest.fixture
async def driver(tmp_path) -> AsyncGenerator[SQLDriver, None]:
    """Fresh SQLite file per test; each session gets its own connection."""
    async with SQLDriver(f"sqlite+aiosqlite:///{tmp_path / 'orders.db'}") as driver:
        yield driver


@pytest.fixture
def engine(driver: SQLDriver) -> AsyncEngine:
    return driver.engine


@pytest.fixture
def session_factory(driver: SQLDriver):
    return driver.session_factory


@pytest.fixture
def registry() -> RepositoryRegistry:
    return RepositoryRegistry([OrderRepository])


@pytest.fixture
async def uow(session_factory, registry) -> AsyncGenerator[UnitOfWork, None]:
    """Unit of work under test; disposed after the test."""
    async with UnitOfWork(session_factory(), registry) as uow:
        yield uow


@pytest.fixture
def new_uow(session_factory, registry):
    """Factory for independent units of work, e.g. to check what was committed."""
    def _make() -> UnitOfWork:
        return UnitOfWork(session_factory(), registry)
    return _make


@pytest.fixture
async def sample_orders(session_factory) -> List[Order]:
    """Seed orders 1..10 (created on consecutive days); order 1 has two lines."""
    orders = [
        Order(
            id=i,
            number=f"A-{i:03d}",
            customer=f"customer-{i % 3}",
            status=seeded_status(i),
            created_at=datetime(2024, 1, i, tzinfo=timezone.utc),
        )
        for i in range(1, SEED_SIZE + 1)
    ]
    async with session_factory() as session:
        session.add_all(orders)
        session.add(OrderLine(order_id=1, sku="SKU-1", quantity=2, unit_price=9.5))
        session.add(OrderLine(order_id=1, sku="SKU-2", quantity=1, unit_price=20.0))
        await session.commit()
    return orders


@pytest.fixture
async def client(session_factory) -> AsyncGenerator[AsyncClient, None]:
    """Create test client bound to the test database."""
    add_unit_of_work(app, session_factory, OrderRepository)

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


async def committed_numbers(new_uow) -> List[str]:
    """Order numbers visible to a brand-new unit of work."""
    async with new_uow() as check:
        return sorted(o.number for o in await check.repository(Order).get_all())
