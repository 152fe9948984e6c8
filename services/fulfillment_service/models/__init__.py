"""Fulfillment Service models package."""

from services.fulfillment_service.models.enums import (
    OrderLogAction,
    OrderStatus,
    PaymentStatus,
    ShippingType,
    StockMovementReason,
)
from services.fulfillment_service.models.inventory import (
    Product,
    ProductStock,
    StockMovement,
)
from services.fulfillment_service.models.orders import Order, OrderItem, OrderLogEntry

__all__ = [
    "Order",
    "OrderItem",
    "OrderLogAction",
    "OrderLogEntry",
    "OrderStatus",
    "PaymentStatus",
    "Product",
    "ProductStock",
    "ShippingType",
    "StockMovement",
    "StockMovementReason",
]
