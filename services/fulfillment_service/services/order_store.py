"""Order lookup, optimistic status updates and the append-only order log."""

import uuid
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.fulfillment_service.errors import OrderNotFound
from services.fulfillment_service.models import (
    Order,
    OrderLogAction,
    OrderLogEntry,
    OrderStatus,
)
from services.fulfillment_service.schemas import GatewayPayment
from services.fulfillment_service.services.state_machine import ensure_transition
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

SNAPSHOT_FIELDS = (
    "status",
    "payment_status",
    "payment_id",
    "paid_at",
    "tracking_number",
    "shipping_provider",
)


def _jsonable(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, (Decimal, uuid.UUID)):
        return str(value)
    return value


def snapshot(order: Order) -> dict:
    """Fields this pipeline owns, as a JSON-safe dict for the order log."""
    return {name: _jsonable(getattr(order, name)) for name in SNAPSHOT_FIELDS}


def parse_uuid(value: Optional[str]) -> Optional[uuid.UUID]:
    if not value:
        return None
    try:
        return uuid.UUID(str(value))
    except ValueError:
        return None


class OrderStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Lookup
    # ------------------------------------------------------------------

    async def get(self, order_id: uuid.UUID) -> Order:
        order = await self.db.get(Order, order_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found", order_id=str(order_id))
        return order

    async def find_for_payment(self, payment: GatewayPayment) -> Optional[Order]:
        """Resolve the order a payment belongs to.

        The external reference (our order id, set at checkout) wins; the
        gateway preference id is the fallback.
        """
        order_id = parse_uuid(payment.external_reference)
        if order_id is not None:
            order = await self.db.get(Order, order_id)
            if order is not None:
                return order

        if payment.preference_id:
            result = await self.db.execute(
                select(Order)
                .where(Order.payment_preference_id == payment.preference_id)
                .order_by(Order.created_at.desc())
                .limit(1)
            )
            return result.scalar_one_or_none()
        return None

    async def find_by_tracking_number(self, tracking_number: str) -> Optional[Order]:
        result = await self.db.execute(
            select(Order).where(Order.tracking_number == tracking_number).limit(1)
        )
        return result.scalar_one_or_none()

    async def history(self, order_id: uuid.UUID) -> list[OrderLogEntry]:
        result = await self.db.execute(
            select(OrderLogEntry)
            .where(OrderLogEntry.order_id == order_id)
            .order_by(OrderLogEntry.created_at.asc())
        )
        return list(result.scalars().all())

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def transition(
        self,
        order: Order,
        target: OrderStatus,
        *,
        action: OrderLogAction,
        note: Optional[str] = None,
        actor: str = "system",
        **changes: Any,
    ) -> bool:
        """Move ``order`` to ``target`` if nobody moved it first.

        The UPDATE is keyed on the status we read, so of two racing
        deliveries only one can win; the loser gets ``False`` and writes
        nothing. Raises InvalidTransition for edges the lifecycle forbids.
        """
        ensure_transition(order.status, target)
        now = utc_now()
        values = {"status": target, "status_changed_at": now, **changes}
        return await self._conditional_update(
            order, values, action=action, note=note, actor=actor, now=now
        )

    async def record_payment_status(
        self,
        order: Order,
        *,
        action: OrderLogAction,
        note: Optional[str] = None,
        actor: str = "system",
        **changes: Any,
    ) -> bool:
        """Update payment sub-state without moving the order status."""
        return await self._conditional_update(
            order, changes, action=action, note=note, actor=actor, now=utc_now()
        )

    async def append_log(
        self,
        order: Order,
        action: OrderLogAction,
        *,
        note: Optional[str] = None,
        new_value: Optional[dict] = None,
        actor: str = "system",
    ) -> OrderLogEntry:
        """Record an event that changed no order field (e.g. a failed shipment)."""
        entry = OrderLogEntry(
            order_id=order.id,
            action=action.value,
            previous_value=snapshot(order),
            new_value=new_value,
            note=note,
            actor=actor,
        )
        self.db.add(entry)
        await self.db.commit()
        return entry

    async def _conditional_update(
        self,
        order: Order,
        values: dict,
        *,
        action: OrderLogAction,
        note: Optional[str],
        actor: str,
        now: datetime,
    ) -> bool:
        expected_status = order.status
        previous = snapshot(order)

        result = await self.db.execute(
            update(Order)
            .where(Order.id == order.id, Order.status == expected_status)
            .values(updated_at=now, **values)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.commit()
            logger.warning(
                "Order %s changed concurrently (expected status %s), update skipped",
                order.id,
                expected_status.value,
                extra={"extra_fields": {"action": action.value}},
            )
            return False

        new_value = {
            **previous,
            **{k: _jsonable(v) for k, v in values.items() if k in SNAPSHOT_FIELDS},
        }
        self.db.add(
            OrderLogEntry(
                order_id=order.id,
                action=action.value,
                previous_value=previous,
                new_value=new_value,
                note=note,
                actor=actor,
            )
        )
        await self.db.commit()
        await self.db.refresh(order)

        logger.info(
            "Order %s %s: %s -> %s",
            order.id,
            action.value,
            previous["status"],
            new_value["status"],
            extra={"extra_fields": {"payment_id": new_value.get("payment_id")}},
        )
        return True
