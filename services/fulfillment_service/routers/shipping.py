"""Shipment tracking endpoint."""

from fastapi import APIRouter, Depends
from libs.db.session import get_async_db
from services.fulfillment_service.dependencies import get_shipping_orchestrator
from services.fulfillment_service.schemas import TrackingResponse
from services.fulfillment_service.services.order_store import OrderStore
from services.fulfillment_service.services.shipping import ShippingOrchestrator
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/shipping", tags=["shipping"])


@router.get("/tracking/{tracking_number}", response_model=TrackingResponse)
async def get_tracking(
    tracking_number: str,
    db: AsyncSession = Depends(get_async_db),
    orchestrator: ShippingOrchestrator = Depends(get_shipping_orchestrator),
):
    """Carrier status for a tracking number; ``desconocido`` when unavailable."""
    order = await OrderStore(db).find_by_tracking_number(tracking_number)
    provider = order.shipping_provider if order else None

    info = await orchestrator.track(tracking_number, provider)
    return TrackingResponse(
        tracking_number=info.tracking_number,
        provider=info.provider,
        status=info.status,
        estimated_delivery=info.estimated_delivery,
        events=info.events,
    )
