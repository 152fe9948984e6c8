"""Carrier client protocol shared by every shipping provider."""

from typing import Optional, Protocol, runtime_checkable

from services.fulfillment_service.schemas import (
    CarrierShipment,
    ShipmentRequest,
    TrackingInfo,
)


class CarrierError(Exception):
    """A carrier call failed (network, timeout, non-2xx, malformed body)."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response_data: Optional[dict] = None,
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


@runtime_checkable
class CarrierClient(Protocol):
    """Protocol for shipping carriers.

    ``create_shipment`` raises on any failure; retrying is the
    orchestrator's job, not the client's.
    """

    @property
    def provider(self) -> str:
        ...

    async def create_shipment(
        self, request: ShipmentRequest, method: str
    ) -> CarrierShipment:
        ...

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        ...
