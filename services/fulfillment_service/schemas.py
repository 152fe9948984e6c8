"""Pydantic schemas and value objects for the fulfillment service."""

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from libs.common.datetime_utils import parse_iso_datetime
from pydantic import BaseModel, ConfigDict, Field
from services.fulfillment_service.errors import ShippingFailed
from services.fulfillment_service.models import OrderStatus, PaymentStatus

SIZE_PREFIX = "Talle:"


# ============================================================================
# WEBHOOK ENVELOPE
# ============================================================================


class WebhookData(BaseModel):
    model_config = ConfigDict(extra="ignore", coerce_numbers_to_str=True)

    id: Optional[str] = None


class WebhookEnvelope(BaseModel):
    """Notification body posted by the gateway: ``{type, data: {id}}``."""

    model_config = ConfigDict(extra="ignore")

    type: Optional[str] = None
    data: WebhookData = Field(default_factory=WebhookData)

    @property
    def is_payment(self) -> bool:
        return self.type == "payment" and bool(self.data.id)


# ============================================================================
# GATEWAY PAYMENT RECORD
# ============================================================================


def _str_or_none(value: Any) -> Optional[str]:
    if value is None:
        return None
    text = str(value).strip()
    return text or None


def _to_decimal(value: Any, default: str = "0") -> Decimal:
    try:
        return Decimal(str(value)) if value is not None else Decimal(default)
    except (InvalidOperation, ValueError):
        return Decimal(default)


def _to_int(value: Any, default: int = 1) -> int:
    try:
        parsed = int(value)
    except (TypeError, ValueError):
        return default
    return parsed if parsed > 0 else default


def parse_size(description: Optional[str]) -> Optional[str]:
    """Extract ``M`` from a description like ``"Talle: M"``."""
    if not description or SIZE_PREFIX not in description:
        return None
    size = description.split(SIZE_PREFIX, 1)[1].strip()
    return size or None


@dataclass
class GatewayLineItem:
    """One ``additional_info.items[]`` entry of a gateway payment."""

    id: Optional[str]
    title: Optional[str]
    quantity: int
    unit_price: Decimal
    size: Optional[str] = None

    @classmethod
    def from_payload(cls, raw: dict) -> "GatewayLineItem":
        return cls(
            id=_str_or_none(raw.get("id")),
            title=_str_or_none(raw.get("title")),
            quantity=_to_int(raw.get("quantity")),
            unit_price=_to_decimal(raw.get("unit_price")),
            size=parse_size(raw.get("description")),
        )

    @property
    def label(self) -> str:
        return self.title or self.id or "<unknown item>"


@dataclass
class GatewayPayment:
    """Authoritative payment record fetched from the gateway.

    Built field by field with defaults so missing or oddly typed keys in the
    third-party payload never surface as ``KeyError`` deep in the pipeline.
    """

    id: str
    status: str
    preference_id: Optional[str] = None
    external_reference: Optional[str] = None
    transaction_amount: Decimal = Decimal("0")
    payer_email: Optional[str] = None
    date_approved: Optional[datetime] = None
    items: list[GatewayLineItem] = field(default_factory=list)

    @classmethod
    def from_payload(cls, raw: dict) -> "GatewayPayment":
        additional_info = raw.get("additional_info") or {}
        payer = raw.get("payer") or additional_info.get("payer") or {}
        raw_items = additional_info.get("items") or []
        return cls(
            id=str(raw.get("id") or ""),
            status=str(raw.get("status") or "").lower(),
            preference_id=_str_or_none(raw.get("preference_id")),
            external_reference=_str_or_none(raw.get("external_reference")),
            transaction_amount=_to_decimal(raw.get("transaction_amount")),
            payer_email=_str_or_none(payer.get("email")),
            date_approved=parse_iso_datetime(raw.get("date_approved")),
            items=[
                GatewayLineItem.from_payload(item)
                for item in raw_items
                if isinstance(item, dict)
            ],
        )


# ============================================================================
# SHIPMENTS
# ============================================================================


@dataclass
class ShipmentAddress:
    street: Optional[str]
    number: Optional[str]
    floor_unit: Optional[str]
    postal_code: str
    city: Optional[str]
    province: Optional[str]
    country: Optional[str] = "Argentina"


@dataclass
class ShipmentRequest:
    """Normalized input for every carrier client."""

    order_id: uuid.UUID
    postal_code: str
    weight_kg: Decimal
    declared_value: Decimal
    address: ShipmentAddress
    customer_name: str
    customer_email: str
    customer_phone: Optional[str] = None


@dataclass
class CarrierShipment:
    """What a single successful carrier call returns."""

    tracking_number: str
    provider: str
    estimated_delivery: Optional[str] = None
    cost: Optional[Decimal] = None


@dataclass
class ShipmentResult:
    """Outcome of ShippingOrchestrator.create_shipment.

    ``retries`` counts the failed attempts before the final one, so a first
    attempt success reports 0 and a success on attempt 3 reports 2.
    When every attempt fails, ``retries`` is ``attempts - 1`` rather than the
    configured attempt count.
    """

    success: bool
    provider: str
    tracking_number: Optional[str] = None
    estimated_delivery: Optional[str] = None
    cost: Optional[Decimal] = None
    error: Optional[str] = None
    attempts: int = 0
    retries: int = 0

    def raise_for_failure(self) -> None:
        if not self.success:
            raise ShippingFailed(self.error or "unknown error", attempts=self.attempts)


@dataclass
class TrackingInfo:
    tracking_number: str
    provider: str
    status: str
    events: list[dict] = field(default_factory=list)
    estimated_delivery: Optional[str] = None


# ============================================================================
# RESPONSE SCHEMAS
# ============================================================================


class OrderLogEntryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: str
    previous_value: Optional[dict] = None
    new_value: Optional[dict] = None
    note: Optional[str] = None
    actor: str
    created_at: datetime


class OrderHistoryResponse(BaseModel):
    order_id: uuid.UUID
    status: OrderStatus
    payment_status: PaymentStatus
    tracking_number: Optional[str] = None
    entries: list[OrderLogEntryResponse]


class TrackingResponse(BaseModel):
    tracking_number: str
    provider: str
    status: str
    estimated_delivery: Optional[str] = None
    events: list[dict] = []
