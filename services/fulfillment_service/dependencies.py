"""FastAPI dependencies for outbound collaborators (overridable in tests)."""

from services.fulfillment_service.gateway_client import PaymentGatewayClient
from services.fulfillment_service.services.notifications import (
    NotificationDispatcher,
)
from services.fulfillment_service.services.shipping import ShippingOrchestrator


def get_payment_gateway() -> PaymentGatewayClient:
    return PaymentGatewayClient()


def get_shipping_orchestrator() -> ShippingOrchestrator:
    return ShippingOrchestrator()


def get_notification_dispatcher() -> NotificationDispatcher:
    return NotificationDispatcher()
