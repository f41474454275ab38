from sqlmodel import SQLModel, Field, Relationship
from typing import List, Optional
from datetime import datetime, timezone
from enum import Enum

class OrderStatus(str, Enum):
    """Order status enum."""
    OPEN = "OPEN"
    PAID = "PAID"
    CANCELLED = "CANCELLED"

class Order(SQLModel, table=True):
    __tablename__ = "orders"

    id: Optional[int] = Field(default=None, primary_key=True)
    number: str = Field(unique=True, index=True, max_length=32, description="Human-facing order number")
    customer: str = Field(index=True, max_length=255)
    status: OrderStatus = Field(default=OrderStatus.OPEN, index=True)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    lines: List["OrderLine"] = Relationship(
        back_populates="order",
        sa_relationship_kwargs={"cascade": "all, delete-orphan"},
    )

class OrderLine(SQLModel, table=True):
    __tablename__ = "order_lines"

    id: Optional[int] = Field(default=None, primary_key=True)
    order_id: int = Field(foreign_key="orders.id", index=True)
    sku: str = Field(max_length=64)
    quantity: int = Field(default=1)
    unit_price: float = Field(default=0.0)

    order: Optional[Order] = Relationship(back_populates="lines")
