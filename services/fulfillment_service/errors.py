"""Error taxonomy for the fulfillment pipeline."""

from typing import Optional


class FulfillmentError(Exception):
    """Base exception for fulfillment pipeline errors."""

    def __init__(self, message: str, **context):
        self.message = message
        self.context = context
        super().__init__(message)


class AuthenticationError(FulfillmentError):
    """Webhook signature missing or invalid."""


class UpstreamUnavailable(FulfillmentError):
    """The payment gateway could not be reached or answered non-2xx."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message, status_code=status_code)


class OrderNotFound(FulfillmentError):
    """No order matches the payment's external reference or preference id."""


class ProductNotFound(FulfillmentError):
    """A line item references a product the catalog does not have."""


class SizeNotFound(FulfillmentError):
    """The product has no stock record for the requested size."""


class InsufficientStock(FulfillmentError):
    """On-hand quantity is lower than the requested quantity."""

    def __init__(self, product_id, size: str, requested: int, available: int):
        self.product_id = product_id
        self.size = size
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_id} size {size}: "
            f"requested {requested}, available {available}",
            product_id=str(product_id),
            size=size,
            requested=requested,
            available=available,
        )


class InvalidTransition(FulfillmentError):
    """The event does not match a legal edge from the order's current status."""

    def __init__(self, current, target):
        self.current = current
        self.target = target
        super().__init__(
            f"Illegal order transition {current} -> {target}",
            current=str(current),
            target=str(target),
        )


class ShippingFailed(FulfillmentError):
    """Shipment creation failed after exhausting every attempt."""

    def __init__(self, last_error: str, attempts: int = 0):
        self.last_error = last_error
        self.attempts = attempts
        super().__init__(
            f"Shipment creation failed after {attempts} attempts: {last_error}",
            attempts=attempts,
        )


class NotificationFailed(FulfillmentError):
    """A customer or operator notification could not be delivered."""
