"""Order history (audit log) endpoint."""

import uuid

from fastapi import APIRouter, Depends, HTTPException, status
from libs.db.session import get_async_db
from services.fulfillment_service.errors import OrderNotFound
from services.fulfillment_service.schemas import (
    OrderHistoryResponse,
    OrderLogEntryResponse,
)
from services.fulfillment_service.services.order_store import OrderStore
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/orders", tags=["orders"])


@router.get("/{order_id}/history", response_model=OrderHistoryResponse)
async def get_order_history(
    order_id: uuid.UUID,
    db: AsyncSession = Depends(get_async_db),
):
    """Return the order's state and its append-only log, oldest first."""
    store = OrderStore(db)
    try:
        order = await store.get(order_id)
    except OrderNotFound as e:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        ) from e

    entries = await store.history(order_id)
    return OrderHistoryResponse(
        order_id=order.id,
        status=order.status,
        payment_status=order.payment_status,
        tracking_number=order.tracking_number,
        entries=[OrderLogEntryResponse.model_validate(e) for e in entries],
    )
