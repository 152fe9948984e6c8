"""
Envíopack API client.

Envíopack aggregates several Argentine carriers behind one API; the store
uses it whenever credentials are configured.
"""

from decimal import Decimal
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.fulfillment_service.carriers.base import CarrierError
from services.fulfillment_service.schemas import (
    CarrierShipment,
    ShipmentRequest,
    TrackingInfo,
)

logger = get_logger(__name__)

ENVIOPACK_PROVIDER = "Envíopack"
MIN_WEIGHT_KG = Decimal("0.1")


class EnviopackClient:
    """Async client for Envíopack shipment creation and tracking."""

    provider = ENVIOPACK_PROVIDER

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_secret: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.api_key = api_key or settings.ENVIOPACK_API_KEY
        self.api_secret = api_secret or settings.ENVIOPACK_API_SECRET
        if not self.api_key or not self.api_secret:
            raise ValueError("ENVIOPACK_API_KEY and ENVIOPACK_API_SECRET are required")
        self.base_url = (base_url or settings.ENVIOPACK_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {self.api_key}",
            "X-API-Secret": self.api_secret,
            "Content-Type": "application/json",
        }

    async def _request(
        self, method: str, endpoint: str, json_data: Optional[dict] = None
    ) -> dict:
        url = f"{self.base_url}{endpoint}"
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(
                    method, url, headers=self._headers, json=json_data
                )
        except httpx.HTTPError as e:
            raise CarrierError(f"Envíopack unreachable: {e}") from e

        try:
            data = response.json()
        except ValueError:
            data = {}

        if not response.is_success:
            message = data.get("message") if isinstance(data, dict) else None
            logger.error(f"Envíopack API error: {response.status_code} - {message}")
            raise CarrierError(
                f"Envíopack API error: {message or response.reason_phrase}",
                status_code=response.status_code,
                response_data=data if isinstance(data, dict) else {},
            )
        if not isinstance(data, dict):
            raise CarrierError("Envíopack returned an unexpected body")
        return data

    async def create_shipment(
        self, request: ShipmentRequest, method: str
    ) -> CarrierShipment:
        address = request.address
        payload = {
            "codigo_postal": request.postal_code,
            "peso": float(max(request.weight_kg, MIN_WEIGHT_KG)),
            "precio": float(request.declared_value),
            "provincia": address.province,
            "direccion": {
                "calle": address.street,
                "numero": address.number,
                "piso_depto": address.floor_unit,
                "localidad": address.city,
                "provincia": address.province,
            },
            "cliente": {
                "nombre": request.customer_name,
                "email": request.customer_email,
                "telefono": request.customer_phone,
            },
            "metodo": method,
        }
        data = await self._request("POST", "/envios", json_data=payload)

        tracking_number = data.get("tracking_number") or data.get("trackingNumber")
        if not tracking_number:
            raise CarrierError("Envíopack response is missing a tracking number")

        cost = data.get("cost", data.get("precio"))
        return CarrierShipment(
            tracking_number=str(tracking_number),
            provider=self.provider,
            estimated_delivery=data.get("estimated_delivery")
            or data.get("estimatedDelivery"),
            cost=Decimal(str(cost)) if cost is not None else None,
        )

    async def get_tracking(self, tracking_number: str) -> TrackingInfo:
        data = await self._request("GET", f"/envios/{tracking_number}")
        events = data.get("events") or []
        return TrackingInfo(
            tracking_number=tracking_number,
            provider=self.provider,
            status=data.get("status") or "en_transito",
            estimated_delivery=data.get("estimated_delivery"),
            events=[e for e in events if isinstance(e, dict)],
        )
