from typing import List, Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, Field
from uowplus.repository.registration import get_uow
from uowplus.repository.unit_of_work import UnitOfWork
from uowplus.response import ResponseModel
from ..models import OrderStatus
from ..service import OrderService, serialize_order

router = APIRouter()

class OrderLineSchema(BaseModel):
    sku: str = Field(min_length=1, max_length=64)
    quantity: int = Field(default=1, gt=0)
    unit_price: float = Field(default=0.0, ge=0)

class PlaceOrderSchema(BaseModel):
    number: str = Field(min_length=1, max_length=32)
    customer: str = Field(min_length=1, max_length=255)
    lines: List[OrderLineSchema] = []

def get_order_service(uow: UnitOfWork = Depends(get_uow)) -> OrderService:
    """Dependency: create OrderService."""
    return OrderService(uow)

@router.post("")
async def place_order(
    data: PlaceOrderSchema,
    service: OrderService = Depends(get_order_service)
):
    """Place an order with its lines."""
    order = await service.place_order(
        data.number, data.customer, [line.model_dump() for line in data.lines]
    )
    return ResponseModel.success(data=serialize_order(order, with_lines=True))

@router.get("")
async def list_orders(
    status: Optional[OrderStatus] = None,
    skip: int = Query(default=0, ge=0),
    take: int = Query(default=20, ge=1, le=100),
    service: OrderService = Depends(get_order_service)
):
    """List orders, newest first."""
    items, total = await service.list_orders(status, skip=skip, take=take)
    return ResponseModel.page([serialize_order(o) for o in items], total, skip, take)

@router.get("/{order_id}")
async def get_order(
    order_id: int,
    service: OrderService = Depends(get_order_service)
):
    """Get one order with its lines."""
    order = await service.get_order(order_id)
    return ResponseModel.success(data=serialize_order(order, with_lines=True))

@router.post("/{order_id}/cancel")
async def cancel_order(
    order_id: int,
    service: OrderService = Depends(get_order_service)
):
    order = await service.cancel_order(order_id)
    return ResponseModel.success(data=serialize_order(order))

@router.delete("/{order_id}")
async def delete_order(
    order_id: int,
    service: OrderService = Depends(get_order_service)
):
    await service.delete_order(order_id)
    return ResponseModel.success(data={"id": order_id})
