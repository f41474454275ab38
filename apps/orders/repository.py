"""Order module repository implementation."""

from typing import Optional, List
from uowplus.repository.base import BaseRepository
from uowplus.repository.query import QueryDescriptor
from .models import Order, OrderStatus


class OrderRepository(BaseRepository[Order]):
    """Order repository."""

    model = Order

    async def get_by_number(self, number: str, with_lines: bool = False) -> Optional[Order]:
        """Find order by its number."""
        descriptor = QueryDescriptor().filter_by(number=number)
        if with_lines:
            descriptor = descriptor.include(Order.lines)
        return await self.get_entity(descriptor)

    def _by_status(self, status: Optional[OrderStatus]) -> QueryDescriptor:
        descriptor = QueryDescriptor()
        if status:
            descriptor = descriptor.where(Order.status == status)
        return descriptor

    async def list_by_status(
        self,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        take: int = 20
    ) -> List[Order]:
        """List orders, newest first, read-only (optional status filter)."""
        descriptor = (
            self._by_status(status)
            .order_by(Order.created_at.desc(), Order.id.desc())
            .paginate(skip=skip, take=take)
            .as_no_tracking()
        )
        return await self.get_all(descriptor)

    async def count_by_status(self, status: Optional[OrderStatus] = None) -> int:
        """Count orders (optional status filter)."""
        return await self.count(self._by_status(status))
