"""Fulfillment service routers package."""

from services.fulfillment_service.routers.orders import router as orders_router
from services.fulfillment_service.routers.shipping import router as shipping_router
from services.fulfillment_service.routers.webhooks import router as webhooks_router

__all__ = [
    "orders_router",
    "shipping_router",
    "webhooks_router",
]
