"""Order lifecycle: which status changes are legal."""

from typing import Optional

from services.fulfillment_service.errors import InvalidTransition
from services.fulfillment_service.models import OrderStatus, PaymentStatus

# pending -> paid -> shipped -> delivered, cancelled from pending or paid.
ALLOWED_TRANSITIONS: dict[OrderStatus, frozenset[OrderStatus]] = {
    OrderStatus.PENDING: frozenset({OrderStatus.PAID, OrderStatus.CANCELLED}),
    OrderStatus.PAID: frozenset({OrderStatus.SHIPPED, OrderStatus.CANCELLED}),
    OrderStatus.SHIPPED: frozenset({OrderStatus.DELIVERED}),
    OrderStatus.DELIVERED: frozenset(),
    OrderStatus.CANCELLED: frozenset(),
}

# Gateway statuses the pipeline understands, normalized to our payment status.
GATEWAY_PAYMENT_STATUSES: dict[str, PaymentStatus] = {
    "approved": PaymentStatus.APPROVED,
    "pending": PaymentStatus.PENDING,
    "in_process": PaymentStatus.PENDING,
    "in_mediation": PaymentStatus.PENDING,
    "authorized": PaymentStatus.PENDING,
    "rejected": PaymentStatus.REJECTED,
    "cancelled": PaymentStatus.CANCELLED,
}

# Order status a payment status drives the order to, when it drives one at all.
ORDER_STATUS_FOR_PAYMENT: dict[PaymentStatus, OrderStatus] = {
    PaymentStatus.APPROVED: OrderStatus.PAID,
    PaymentStatus.REJECTED: OrderStatus.CANCELLED,
    PaymentStatus.CANCELLED: OrderStatus.CANCELLED,
}


def can_transition(current: OrderStatus, target: OrderStatus) -> bool:
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def ensure_transition(current: OrderStatus, target: OrderStatus) -> None:
    """Raise InvalidTransition unless ``current -> target`` is a legal edge."""
    if not can_transition(current, target):
        raise InvalidTransition(current.value, target.value)


def normalize_payment_status(gateway_status: Optional[str]) -> Optional[PaymentStatus]:
    return GATEWAY_PAYMENT_STATUSES.get((gateway_status or "").lower())
