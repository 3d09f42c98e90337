"""Order domain exports."""
from .entity import Order, OrderItem, OrderStatus
from .repository import OrderRepository

__all__ = ["Order", "OrderItem", "OrderStatus", "OrderRepository"]
