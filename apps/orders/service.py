from typing import Any, Dict, List, Optional, Tuple
from uowplus.logging.logger import get_logger
from uowplus.exceptions.handler import BusinessException
from uowplus.exceptions.errors import TransactionError
from uowplus.repository.unit_of_work import UnitOfWork
from uowplus.repository.query import QueryDescriptor
from .models import Order, OrderLine, OrderStatus
from .repository import OrderRepository

logger = get_logger("order_service")

def serialize_order(order: Order, with_lines: bool = False) -> Dict[str, Any]:
    data = order.model_dump(mode="json")
    if with_lines:
        data["lines"] = [line.model_dump(mode="json") for line in order.lines]
    return data

class OrderService:
    def __init__(self, uow: UnitOfWork):
        """Initialize Order Service with UnitOfWork."""
        self.uow = uow

    @property
    def orders(self) -> OrderRepository:
        return self.uow.repository(Order)

    async def place_order(self, number: str, customer: str, lines: List[Dict[str, Any]]) -> Order:
        """
        Create an order and its lines in one transaction.

        The order is saved first so its id is known for the lines; both saves
        commit together or not at all.
        """
        if await self.orders.exists(Order.number == number):
            raise BusinessException("Order number already exists", code=4001)

        try:
            async with self.uow.transaction():
                order = self.orders.create(Order(number=number, customer=customer))
                await self.uow.save()

                line_repo = self.uow.repository(OrderLine)
                for line in lines:
                    line_repo.create(OrderLine(order_id=order.id, **line))
                await self.uow.save()
        except TransactionError as e:
            logger.error(f"Failed to place order {number}: {str(e)}")
            raise BusinessException("Failed to place order: data conflict", code=400)

        logger.info(f"Order {number} placed for {customer} with {len(lines)} line(s)")
        return await self.get_order(order.id)

    async def get_order(self, order_id: int) -> Order:
        """Get order with its lines (read-only)."""
        descriptor = (
            QueryDescriptor(predicate=Order.id == order_id)
            .include(Order.lines)
            .as_no_tracking()
        )
        order = await self.orders.get_entity(descriptor)
        if order is None:
            raise BusinessException("Order not found", code=404)
        return order

    async def list_orders(
        self,
        status: Optional[OrderStatus] = None,
        skip: int = 0,
        take: int = 20
    ) -> Tuple[List[Order], int]:
        """List orders newest first; returns (items, total)."""
        items = await self.orders.list_by_status(status, skip=skip, take=take)
        total = await self.orders.count_by_status(status)
        return items, total

    async def cancel_order(self, order_id: int) -> Order:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise BusinessException("Order not found", code=404)
        if order.status == OrderStatus.CANCELLED:
            raise BusinessException("Order already cancelled", code=4002)

        order.status = OrderStatus.CANCELLED
        self.orders.update(order)
        await self.uow.save()
        logger.info(f"Order {order.number} cancelled")
        return order

    async def delete_order(self, order_id: int) -> None:
        order = await self.orders.get_by_id(order_id)
        if order is None:
            raise BusinessException("Order not found", code=404)

        self.orders.delete(order)
        await self.uow.save()
        logger.info(f"Order {order.number} deleted")
