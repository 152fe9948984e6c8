"""
Model factories for creating valid test data.

Every factory produces a valid, insertable SQLAlchemy model instance.
Override any field via kwargs.

Usage:
    order = OrderFactory.create(shipping_cost=Decimal("0"))
    db_session.add(order)
    await db_session.commit()
"""

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _uuid() -> uuid.UUID:
    return uuid.uuid4()


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _unique_email() -> str:
    return f"test-{uuid.uuid4().hex[:8]}@test.com"


# ---------------------------------------------------------------------------
# Catalog / inventory
# ---------------------------------------------------------------------------


class ProductFactory:
    @staticmethod
    def create(**overrides):
        from services.fulfillment_service.models import Product

        defaults = {
            "id": _uuid(),
            "name": f"Remera {uuid.uuid4().hex[:6]}",
            "sizes": ["S", "M", "L"],
            "weight_kg": Decimal("0.300"),
        }
        defaults.update(overrides)
        return Product(**defaults)


class ProductStockFactory:
    @staticmethod
    def create(product_id, size: str = "M", quantity: int = 10, **overrides):
        from services.fulfillment_service.models import ProductStock

        defaults = {
            "id": _uuid(),
            "product_id": product_id,
            "size": size,
            "quantity": quantity,
        }
        defaults.update(overrides)
        return ProductStock(**defaults)


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


class OrderFactory:
    @staticmethod
    def create(**overrides):
        from services.fulfillment_service.models import (
            Order,
            OrderStatus,
            PaymentStatus,
            ShippingType,
        )

        subtotal = Decimal(overrides.pop("subtotal", Decimal("10000.00")))
        discount = Decimal(overrides.pop("discount", Decimal("0")))
        shipping_cost = Decimal(overrides.pop("shipping_cost", Decimal("1500.00")))

        defaults = {
            "id": _uuid(),
            "customer_name": "Ana Test",
            "customer_email": _unique_email(),
            "customer_phone": "+54 11 5555-0000",
            "address_street": "Av. Corrientes",
            "address_number": "1234",
            "address_floor_unit": "3B",
            "address_postal_code": "C1043",
            "address_city": "Buenos Aires",
            "address_province": "CABA",
            "address_country": "Argentina",
            "subtotal": subtotal,
            "discount": discount,
            "shipping_cost": shipping_cost,
            "total": subtotal - discount + shipping_cost,
            "shipping_type": ShippingType.STANDARD,
            "shipping_method": "Envíopack Estándar",
            "status": OrderStatus.PENDING,
            "status_changed_at": _now(),
            "payment_status": PaymentStatus.PENDING,
            "payment_preference_id": f"pref-{uuid.uuid4().hex[:10]}",
            "created_at": _now(),
            "updated_at": _now(),
        }
        defaults.update(overrides)
        return Order(**defaults)


class OrderItemFactory:
    @staticmethod
    def create(order_id, product, size: str = "M", quantity: int = 1, **overrides):
        from services.fulfillment_service.models import OrderItem

        unit_price = Decimal(overrides.pop("unit_price", Decimal("5000.00")))
        defaults = {
            "id": _uuid(),
            "order_id": order_id,
            "product_id": product.id,
            "product_name": product.name,
            "size": size,
            "quantity": quantity,
            "unit_price": unit_price,
            "subtotal": unit_price * quantity,
        }
        defaults.update(overrides)
        return OrderItem(**defaults)


# ---------------------------------------------------------------------------
# Gateway payloads
# ---------------------------------------------------------------------------


def gateway_item(
    product=None,
    *,
    size: Optional[str] = "M",
    quantity: int = 1,
    unit_price: float = 5000.0,
    **overrides,
) -> dict:
    item = {
        "id": str(product.id) if product is not None else str(_uuid()),
        "title": product.name if product is not None else "Producto inexistente",
        "quantity": quantity,
        "unit_price": unit_price,
    }
    if size:
        item["description"] = f"Talle: {size}"
    item.update(overrides)
    return item


def gateway_payment(
    order=None,
    *,
    payment_id: str = "1001",
    status: str = "approved",
    items: Optional[list] = None,
    amount: float = 11500.0,
    **overrides,
) -> dict:
    """Payload shaped like ``GET /v1/payments/{id}``."""
    payload = {
        "id": int(payment_id) if payment_id.isdigit() else payment_id,
        "status": status,
        "preference_id": order.payment_preference_id if order is not None else None,
        "external_reference": str(order.id) if order is not None else None,
        "transaction_amount": amount,
        "date_approved": "2026-03-01T12:00:00.000-03:00",
        "payer": {"email": order.customer_email if order is not None else None},
        "additional_info": {"items": items or []},
    }
    payload.update(overrides)
    return payload
