"""Simulated carrier for providers without a live integration."""

import secrets
import time
from decimal import Decimal

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.fulfillment_service.schemas import (
    CarrierShipment,
    ShipmentRequest,
    TrackingInfo,
)

logger = get_logger(__name__)

SIMULATED_COST_RATE = Decimal("0.10")


def estimated_delivery_for(method: str) -> str:
    return "1-2 días hábiles" if "express" in (method or "").lower() else "3-5 días hábiles"


class SimulatedCarrier:
    """Issues ``TRACK-...`` numbers locally, charging 10% of declared value."""

    def __init__(self, provider: str):
        self._provider = provider

    @property
    def provider(self) -> str:
        return self._provider

    async def create_shipment(
        self, request: ShipmentRequest, method: str
    ) -> CarrierShipment:
        tracking_number = (
            f"TRACK-{int(time.time() * 1000)}-{secrets.token_hex(3).upper()}"
        )
        logger.warning(
            "Carrier %s has no live integration, shipment simulated: %s",
            self.provider,
            tracking_number,
            extra={"extra_fields": {"order_id": str(request.order_id)}},
        )
        return CarrierShipment(
            tracking_number=tracking_number,
            provider=self.provider,
            estimated_delivery=estimated_delivery_for(method),
            cost=(Decimal(request.declared_value) * SIMULATED_COST_RATE).quantize(
                Decimal("0.01")
            ),
        )

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        return TrackingInfo(
            tracking_number=tracking_number,
            provider=self.provider,
            status="en_transito",
            estimated_delivery="3-5 días hábiles",
            events=[
                {
                    "status": "en_transito",
                    "location": "Centro de distribución",
                    "timestamp": utc_now().isoformat(),
                }
            ],
        )
