"""
Payment gateway client (Mercado Pago compatible).

Only the payment-detail read is used by the pipeline: webhook notifications
carry nothing but an id, so the authoritative record is always fetched.
"""

from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.fulfillment_service.errors import UpstreamUnavailable
from services.fulfillment_service.schemas import GatewayPayment

logger = get_logger(__name__)


class PaymentGatewayClient:
    """Async client for the gateway's payments API."""

    def __init__(
        self,
        access_token: Optional[str] = None,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.access_token = access_token or settings.PAYMENT_GATEWAY_ACCESS_TOKEN
        self.base_url = (base_url or settings.PAYMENT_GATEWAY_BASE_URL).rstrip("/")
        self.timeout = timeout or settings.UPSTREAM_TIMEOUT_SECONDS
        self._transport = transport
        self._headers = {
            "Authorization": f"Bearer {self.access_token}",
            "Accept": "application/json",
        }

    async def _request(self, method: str, endpoint: str) -> dict:
        """Make an async request to the gateway, mapping every failure."""
        url = f"{self.base_url}{endpoint}"

        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                response = await client.request(method, url, headers=self._headers)
        except httpx.HTTPError as e:
            logger.error(
                "Payment gateway unreachable: %s",
                e,
                extra={"extra_fields": {"endpoint": endpoint}},
            )
            raise UpstreamUnavailable(f"Payment gateway unreachable: {e}") from e

        if not response.is_success:
            try:
                data = response.json()
            except ValueError:
                data = {"raw": response.text[:500]}
            logger.error(
                "Payment gateway error: %s - %s",
                response.status_code,
                data.get("message") if isinstance(data, dict) else data,
            )
            raise UpstreamUnavailable(
                f"Payment gateway answered {response.status_code}",
                status_code=response.status_code,
                response_data=data if isinstance(data, dict) else {"data": data},
            )

        try:
            data = response.json()
        except ValueError as e:
            raise UpstreamUnavailable(
                "Payment gateway returned a non-JSON body",
                status_code=response.status_code,
            ) from e

        if not isinstance(data, dict):
            raise UpstreamUnavailable(
                "Payment gateway returned an unexpected body",
                status_code=response.status_code,
            )
        return data

    async def get_payment(self, payment_id: str) -> GatewayPayment:
        """
        Fetch the full payment record for a webhook notification.

        Raises:
            UpstreamUnavailable: network error, timeout or non-2xx answer.
        """
        data = await self._request("GET", f"/v1/payments/{payment_id}")
        payment = GatewayPayment.from_payload(data)
        if not payment.id:
            payment.id = str(payment_id)
        return payment
