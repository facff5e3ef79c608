from pharmacy_store.models.product import Product
from pharmacy_store.models.order import (
    Order,
    OrderItem,
    OrderEvent,
    OrderStatus,
    PaymentStatus,
    PaymentMethod,
    InventoryState,
)
from pharmacy_store.models.order_sequence import OrderSequence
from pharmacy_store.models.stock_movement import StockMovement

__all__ = [
    "Product",
    "Order",
    "OrderItem",
    "OrderEvent",
    "OrderStatus",
    "PaymentStatus",
    "PaymentMethod",
    "InventoryState",
    "OrderSequence",
    "StockMovement",
]
