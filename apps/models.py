"""
Model registration: import every table model here so SQLModel.metadata knows
about it before tables are created.
"""
from apps.orders.models import Order, OrderLine

__all__ = ["Order", "OrderLine"]
