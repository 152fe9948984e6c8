"""Shipment creation with bounded retries and linear backoff."""

import asyncio
from dataclasses import dataclass
from decimal import Decimal
from typing import Awaitable, Callable, Iterable, Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.fulfillment_service.carriers import (
    CarrierClient,
    provider_for_method,
    select_carrier,
)
from services.fulfillment_service.models import Order, ShippingType
from services.fulfillment_service.schemas import (
    ShipmentAddress,
    ShipmentRequest,
    ShipmentResult,
    TrackingInfo,
)

logger = get_logger(__name__)

POSTAL_CODE_MIN_LENGTH = 4
POSTAL_CODE_MAX_LENGTH = 8


@dataclass
class ShippableItem:
    """A line item that made it through stock reservation."""

    name: str
    size: str
    quantity: int
    unit_price: Decimal
    weight_kg: Optional[Decimal] = None


def is_valid_postal_code(postal_code: Optional[str]) -> bool:
    code = (postal_code or "").strip()
    return POSTAL_CODE_MIN_LENGTH <= len(code) <= POSTAL_CODE_MAX_LENGTH


class ShippingOrchestrator:
    def __init__(
        self,
        carrier_factory: Callable[[Optional[str]], CarrierClient] = select_carrier,
        max_attempts: Optional[int] = None,
        backoff_seconds: Optional[float] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        settings = get_settings()
        self.carrier_factory = carrier_factory
        self.max_attempts = max_attempts or settings.SHIPPING_MAX_ATTEMPTS
        self.backoff_seconds = (
            settings.SHIPPING_BACKOFF_SECONDS
            if backoff_seconds is None
            else backoff_seconds
        )
        self._sleep = sleep

    @staticmethod
    def should_ship(order: Order) -> bool:
        """Only carrier-delivered, paid-for shipping to a known postal code."""
        return (
            order.shipping_type != ShippingType.PICKUP
            and Decimal(order.shipping_cost or 0) > 0
            and bool((order.address_postal_code or "").strip())
        )

    @staticmethod
    def build_request(order: Order, items: Iterable[ShippableItem]) -> ShipmentRequest:
        default_weight = Decimal(str(get_settings().DEFAULT_ITEM_WEIGHT_KG))
        weight = Decimal("0")
        declared_value = Decimal("0")
        for item in items:
            unit_weight = (
                Decimal(item.weight_kg) if item.weight_kg is not None else default_weight
            )
            weight += unit_weight * item.quantity
            declared_value += Decimal(item.unit_price) * item.quantity

        postal_code = (order.address_postal_code or "").strip()
        return ShipmentRequest(
            order_id=order.id,
            postal_code=postal_code,
            weight_kg=weight,
            declared_value=declared_value,
            address=ShipmentAddress(
                street=order.address_street,
                number=order.address_number,
                floor_unit=order.address_floor_unit,
                postal_code=postal_code,
                city=order.address_city,
                province=order.address_province,
                country=order.address_country,
            ),
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
        )

    async def create_shipment(
        self, request: ShipmentRequest, method: Optional[str]
    ) -> ShipmentResult:
        """
        Create a shipment with the carrier matching ``method``.

        Any exception from the carrier (network, timeout, non-2xx) is retried
        up to ``max_attempts`` times, sleeping ``attempt * backoff_seconds``
        between attempts. Never raises: exhaustion comes back as a result with
        ``success=False``; call ``raise_for_failure()`` to turn it into
        ShippingFailed.
        """
        provider = provider_for_method(method)

        if not is_valid_postal_code(request.postal_code):
            logger.warning(
                "Shipment for order %s not attempted: invalid postal code %r",
                request.order_id,
                request.postal_code,
            )
            return ShipmentResult(
                success=False,
                provider=provider,
                error=f"Invalid postal code: {request.postal_code!r}",
            )

        carrier: Optional[CarrierClient] = None
        last_error: Optional[Exception] = None

        for attempt in range(1, self.max_attempts + 1):
            logger.info(
                "Creating shipment for order %s with %s (attempt %d/%d)",
                request.order_id,
                provider,
                attempt,
                self.max_attempts,
            )
            try:
                if carrier is None:
                    carrier = self.carrier_factory(method)
                shipment = await carrier.create_shipment(request, method or "")
            except Exception as e:
                last_error = e
                logger.warning(
                    "Shipment attempt %d/%d for order %s failed: %s",
                    attempt,
                    self.max_attempts,
                    request.order_id,
                    e,
                )
                if attempt < self.max_attempts:
                    await self._sleep(attempt * self.backoff_seconds)
                continue

            logger.info(
                "Shipment created for order %s: %s %s",
                request.order_id,
                shipment.provider,
                shipment.tracking_number,
            )
            return ShipmentResult(
                success=True,
                provider=shipment.provider,
                tracking_number=shipment.tracking_number,
                estimated_delivery=shipment.estimated_delivery,
                cost=shipment.cost,
                attempts=attempt,
                retries=attempt - 1,
            )

        logger.error(
            "Shipment for order %s failed after %d attempts: %s",
            request.order_id,
            self.max_attempts,
            last_error,
        )
        return ShipmentResult(
            success=False,
            provider=carrier.provider if carrier is not None else provider,
            error=str(last_error) if last_error else "Unknown shipping error",
            attempts=self.max_attempts,
            retries=self.max_attempts - 1,
        )

    async def track(
        self, tracking_number: str, provider: Optional[str] = None
    ) -> TrackingInfo:
        """Current carrier status; never raises (``desconocido`` on failure)."""
        try:
            carrier = self.carrier_factory(provider)
            return await carrier.get_tracking(tracking_number)
        except Exception as e:
            logger.error("Tracking lookup for %s failed: %s", tracking_number, e)
            return TrackingInfo(
                tracking_number=tracking_number,
                provider=provider or provider_for_method(provider),
                status="desconocido",
            )
