"""Fire-and-forget customer and operator notifications."""

from typing import Awaitable, Optional, Sequence

from libs.common.config import get_settings
from libs.common.emails import orders as order_emails
from libs.common.logging import get_logger
from services.fulfillment_service.errors import NotificationFailed
from services.fulfillment_service.models import Order
from services.fulfillment_service.schemas import ShipmentResult
from services.fulfillment_service.services.shipping import ShippableItem

logger = get_logger(__name__)


def order_reference(order: Order) -> str:
    return str(order.id).split("-")[0].upper()


class NotificationDispatcher:
    """Sends order emails; a failed send is logged and reported as ``False``."""

    async def _dispatch(self, kind: str, order: Order, send: Awaitable[bool]) -> bool:
        try:
            return bool(await send)
        except Exception as e:
            failure = NotificationFailed(
                f"{kind} notification for order {order.id} failed: {e}",
                order_id=str(order.id),
            )
            logger.error(
                failure.message,
                extra={"extra_fields": {"kind": kind, **failure.context}},
            )
            return False

    async def order_confirmed(
        self,
        order: Order,
        items: Sequence[ShippableItem],
        payment_id: Optional[str] = None,
        fallback_email: Optional[str] = None,
    ) -> bool:
        """Sent to the order's customer, or to the payer when the order has no email."""
        if not items:
            return False
        return await self._dispatch(
            "order_confirmed",
            order,
            order_emails.send_order_confirmation_email(
                to_email=order.customer_email or fallback_email,
                customer_name=order.customer_name,
                order_reference=order_reference(order),
                items=[(i.name, i.size, i.quantity) for i in items],
                total=order.total,
                payment_id=payment_id or order.payment_id,
                tracking_number=order.tracking_number,
                shipping_provider=order.shipping_provider,
            ),
        )

    async def shipment_created(self, order: Order, result: ShipmentResult) -> bool:
        return await self._dispatch(
            "shipment_created",
            order,
            order_emails.send_tracking_email(
                to_email=order.customer_email,
                customer_name=order.customer_name,
                order_reference=order_reference(order),
                tracking_number=result.tracking_number,
                shipping_provider=result.provider,
                estimated_delivery=result.estimated_delivery,
            ),
        )

    async def payment_rejected(self, order: Order) -> bool:
        return await self._dispatch(
            "payment_rejected",
            order,
            order_emails.send_payment_rejected_email(
                to_email=order.customer_email,
                customer_name=order.customer_name,
                order_reference=order_reference(order),
                payment_status=order.payment_status.value,
            ),
        )

    async def shipping_failed(self, order: Order, result: ShipmentResult) -> bool:
        return await self._dispatch(
            "shipping_failed",
            order,
            order_emails.send_shipping_failed_alert(
                to_email=get_settings().ADMIN_EMAIL,
                order_reference=order_reference(order),
                error=result.error or "unknown error",
                attempts=result.attempts,
            ),
        )
