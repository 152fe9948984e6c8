"""Payment reconciliation: apply a gateway payment to its order exactly once.

Flow for an approved payment:
    1. resolve the order (external reference, then preference id)
    2. idempotency check (same payment id already approved -> no-op)
    3. pending -> paid, committed before any side effect; of two racing
       deliveries only the one that wins this update goes on
    4. decrement stock per line item, skipping items that fail
    5. create the shipment when the order ships by carrier
    6. notify (never fails the webhook)
"""

import uuid
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.fulfillment_service.errors import (
    FulfillmentError,
    ProductNotFound,
    SizeNotFound,
)
from services.fulfillment_service.models import (
    Order,
    OrderLogAction,
    OrderStatus,
    PaymentStatus,
    Product,
)
from services.fulfillment_service.schemas import (
    GatewayLineItem,
    GatewayPayment,
    ShipmentResult,
)
from services.fulfillment_service.services.notifications import (
    NotificationDispatcher,
)
from services.fulfillment_service.services.order_store import OrderStore, parse_uuid
from services.fulfillment_service.services.shipping import (
    ShippableItem,
    ShippingOrchestrator,
)
from services.fulfillment_service.services.state_machine import (
    ORDER_STATUS_FOR_PAYMENT,
    can_transition,
    normalize_payment_status,
)
from services.fulfillment_service.services.stock_ledger import StockLedger
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

_LOG_ACTION_FOR_STATUS = {
    PaymentStatus.APPROVED: OrderLogAction.PAYMENT_APPROVED,
    PaymentStatus.PENDING: OrderLogAction.PAYMENT_PENDING,
    PaymentStatus.REJECTED: OrderLogAction.PAYMENT_REJECTED,
    PaymentStatus.CANCELLED: OrderLogAction.PAYMENT_CANCELLED,
}


@dataclass
class SkippedItem:
    label: str
    reason: str


@dataclass
class ReconcileOutcome:
    """What a webhook delivery did; returned to the router for the ack body."""

    result: str
    order_id: Optional[uuid.UUID] = None
    processed: list[ShippableItem] = field(default_factory=list)
    skipped: list[SkippedItem] = field(default_factory=list)
    shipment: Optional[ShipmentResult] = None

    def as_response(self) -> dict:
        body = {"received": True, "result": self.result}
        if self.order_id is not None:
            body["order_id"] = str(self.order_id)
        if self.processed or self.skipped:
            body["items_processed"] = len(self.processed)
            body["items_skipped"] = len(self.skipped)
        if self.shipment is not None:
            body["shipment_created"] = self.shipment.success
        return body


class PaymentReconciler:
    def __init__(
        self,
        db: AsyncSession,
        *,
        orchestrator: Optional[ShippingOrchestrator] = None,
        notifier: Optional[NotificationDispatcher] = None,
    ):
        self.db = db
        self.orders = OrderStore(db)
        self.ledger = StockLedger(db)
        self.orchestrator = orchestrator or ShippingOrchestrator()
        self.notifier = notifier or NotificationDispatcher()

    async def reconcile(self, payment: GatewayPayment) -> ReconcileOutcome:
        log_fields = {
            "payment_id": payment.id,
            "payment_status": payment.status,
            "external_reference": payment.external_reference,
            "preference_id": payment.preference_id,
        }

        order = await self.orders.find_for_payment(payment)
        if order is None:
            logger.warning(
                "No order for payment %s, acknowledging",
                payment.id,
                extra={"extra_fields": log_fields},
            )
            return ReconcileOutcome(result="order_not_found")

        # IDEMPOTENCY CHECK: this exact payment was already applied
        if (
            order.payment_id == payment.id
            and order.payment_status == PaymentStatus.APPROVED
        ):
            logger.info(
                "Payment %s already applied to order %s, skipping",
                payment.id,
                order.id,
                extra={"extra_fields": log_fields},
            )
            return ReconcileOutcome(result="duplicate", order_id=order.id)

        status = normalize_payment_status(payment.status)
        if status == PaymentStatus.APPROVED:
            return await self._apply_approved(order, payment)
        if status == PaymentStatus.PENDING:
            return await self._apply_pending(order, payment)
        if status in (PaymentStatus.REJECTED, PaymentStatus.CANCELLED):
            return await self._apply_rejected(order, payment, status)

        logger.info(
            "Payment %s has unhandled status %r, acknowledging",
            payment.id,
            payment.status,
            extra={"extra_fields": log_fields},
        )
        return ReconcileOutcome(result="ignored", order_id=order.id)

    # ------------------------------------------------------------------
    # Dispatch by gateway status
    # ------------------------------------------------------------------

    async def _apply_approved(
        self, order: Order, payment: GatewayPayment
    ) -> ReconcileOutcome:
        if not can_transition(order.status, OrderStatus.PAID):
            if order.status == OrderStatus.CANCELLED:
                logger.error(
                    "Approved payment %s for cancelled order %s needs manual review",
                    payment.id,
                    order.id,
                )
            return self._stale(order, payment)

        applied = await self.orders.transition(
            order,
            OrderStatus.PAID,
            action=OrderLogAction.PAYMENT_APPROVED,
            note=f"Payment {payment.id} approved ({payment.transaction_amount})",
            payment_status=PaymentStatus.APPROVED,
            payment_id=payment.id,
            paid_at=payment.date_approved or utc_now(),
        )
        if not applied:
            return self._stale(order, payment)

        outcome = ReconcileOutcome(result="approved", order_id=order.id)
        await self._reserve_stock(order, payment, outcome)

        if self.orchestrator.should_ship(order):
            if outcome.processed:
                outcome.shipment = await self._ship(order, outcome.processed)
            else:
                logger.warning(
                    "Order %s has no reserved items, shipment not created", order.id
                )

        await self.notifier.order_confirmed(
            order, outcome.processed, payment.id, fallback_email=payment.payer_email
        )
        return outcome

    async def _apply_pending(
        self, order: Order, payment: GatewayPayment
    ) -> ReconcileOutcome:
        if order.status != OrderStatus.PENDING:
            return self._stale(order, payment)
        if (
            order.payment_status == PaymentStatus.PENDING
            and order.payment_id == payment.id
        ):
            return ReconcileOutcome(result="duplicate", order_id=order.id)

        applied = await self.orders.record_payment_status(
            order,
            action=OrderLogAction.PAYMENT_PENDING,
            note=f"Payment {payment.id} {payment.status}",
            payment_status=PaymentStatus.PENDING,
            payment_id=payment.id,
        )
        if not applied:
            return self._stale(order, payment)
        return ReconcileOutcome(result="pending", order_id=order.id)

    async def _apply_rejected(
        self, order: Order, payment: GatewayPayment, status: PaymentStatus
    ) -> ReconcileOutcome:
        # A late failure for an earlier attempt must not undo a newer approval.
        if (
            order.payment_status == PaymentStatus.APPROVED
            and order.payment_id != payment.id
        ):
            return self._stale(order, payment)

        target = ORDER_STATUS_FOR_PAYMENT[status]
        if not can_transition(order.status, target):
            return self._stale(order, payment)

        applied = await self.orders.transition(
            order,
            target,
            action=_LOG_ACTION_FOR_STATUS[status],
            note=f"Payment {payment.id} {payment.status}",
            payment_status=status,
            payment_id=payment.id,
        )
        if not applied:
            return self._stale(order, payment)

        await self.notifier.payment_rejected(order)
        return ReconcileOutcome(result=status.value, order_id=order.id)

    def _stale(self, order: Order, payment: GatewayPayment) -> ReconcileOutcome:
        logger.warning(
            "Ignoring stale payment event %s (%s) for order %s in status %s",
            payment.id,
            payment.status,
            order.id,
            order.status.value,
            extra={
                "extra_fields": {
                    "order_payment_id": order.payment_id,
                    "order_payment_status": order.payment_status.value,
                }
            },
        )
        return ReconcileOutcome(result="stale", order_id=order.id)

    # ------------------------------------------------------------------
    # Stock
    # ------------------------------------------------------------------

    def _lines_for(self, order: Order, payment: GatewayPayment) -> list[GatewayLineItem]:
        if payment.items:
            return payment.items
        # Gateway sent no items; fall back to what checkout recorded.
        return [
            GatewayLineItem(
                id=str(item.product_id) if item.product_id else None,
                title=item.product_name,
                quantity=item.quantity,
                unit_price=Decimal(item.unit_price),
                size=item.size,
            )
            for item in order.items
        ]

    async def _reserve_stock(
        self, order: Order, payment: GatewayPayment, outcome: ReconcileOutcome
    ) -> None:
        order_id = order.id
        for line in self._lines_for(order, payment):
            try:
                product = await self._resolve_product(line)
                size = self._resolve_size(line, product, order)
                await self.ledger.decrement(
                    product.id,
                    size,
                    line.quantity,
                    reference_type="order",
                    reference_id=str(order.id),
                )
            except FulfillmentError as e:
                logger.warning(
                    "Skipping line item %s for order %s: %s",
                    line.label,
                    order.id,
                    e.message,
                    extra={"extra_fields": {"payment_id": payment.id}},
                )
                outcome.skipped.append(SkippedItem(label=line.label, reason=e.message))
                continue
            except Exception as e:
                # The order is already paid; remaining lines must still be reserved.
                await self.db.rollback()
                await self.db.refresh(order)
                logger.error(
                    "Line item %s for order %s failed unexpectedly: %s",
                    line.label,
                    order_id,
                    e,
                    exc_info=True,
                    extra={"extra_fields": {"payment_id": payment.id}},
                )
                outcome.skipped.append(SkippedItem(label=line.label, reason=str(e)))
                continue

            outcome.processed.append(
                ShippableItem(
                    name=product.name,
                    size=size,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    weight_kg=product.weight_kg,
                )
            )

    async def _resolve_product(self, line: GatewayLineItem) -> Product:
        """By id when the item carries one of ours, else by exact title."""
        product = None
        product_id = parse_uuid(line.id)
        if product_id is not None:
            product = await self.db.get(Product, product_id)
        if product is None and line.title:
            result = await self.db.execute(
                select(Product).where(Product.name == line.title).limit(1)
            )
            product = result.scalar_one_or_none()
        if product is None:
            raise ProductNotFound(f"Product not found for item {line.label}")
        return product

    def _resolve_size(
        self, line: GatewayLineItem, product: Product, order: Order
    ) -> str:
        if line.size:
            return line.size

        for item in order.items:
            if item.size and (
                item.product_id == product.id or item.product_name == product.name
            ):
                return item.size

        sizes = product.sizes or []
        if not sizes:
            raise SizeNotFound(f"Product {product.name} has no sizes configured")
        logger.warning(
            "No size given for %s on order %s, using %s",
            line.label,
            order.id,
            sizes[0],
        )
        return sizes[0]

    # ------------------------------------------------------------------
    # Shipping
    # ------------------------------------------------------------------

    async def _ship(self, order: Order, items: list[ShippableItem]) -> ShipmentResult:
        request = self.orchestrator.build_request(order, items)
        result = await self.orchestrator.create_shipment(request, order.shipping_method)

        if not result.success:
            # Payment and stock stay as they are; an operator picks this up.
            logger.error(
                "Order %s paid but shipment failed: %s",
                order.id,
                result.error,
                extra={"extra_fields": {"attempts": result.attempts}},
            )
            await self.orders.append_log(
                order,
                OrderLogAction.SHIPMENT_FAILED,
                note=result.error,
                new_value={"provider": result.provider, "attempts": result.attempts},
            )
            await self.notifier.shipping_failed(order, result)
            return result

        applied = await self.orders.transition(
            order,
            OrderStatus.SHIPPED,
            action=OrderLogAction.SHIPMENT_CREATED,
            note=f"{result.provider} {result.tracking_number}"
            + (f" ({result.estimated_delivery})" if result.estimated_delivery else ""),
            tracking_number=result.tracking_number,
            shipping_provider=result.provider,
        )
        if not applied:
            logger.error(
                "Shipment %s created but order %s moved on; tracking not stored",
                result.tracking_number,
                order.id,
            )
            return result

        await self.notifier.shipment_created(order, result)
        return result
