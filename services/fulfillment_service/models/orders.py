"""Order models: orders, line items and the append-only order history."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.fulfillment_service.models.enums import (
    OrderStatus,
    PaymentStatus,
    ShippingType,
    enum_values,
)
from services.fulfillment_service.models.inventory import JSONType
from sqlalchemy import CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, Text, Uuid, event
from sqlalchemy.orm import Mapped, mapped_column, relationship

# ============================================================================
# ORDER MODELS
# ============================================================================


class Order(Base):
    """Orders created by checkout and driven by payment webhooks."""

    __tablename__ = "fulfillment_orders"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)

    # Customer
    customer_name: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    customer_phone: Mapped[Optional[str]] = mapped_column(String(50), nullable=True)

    # Shipping address (all null for pickup-in-store)
    address_street: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    address_number: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    address_floor_unit: Mapped[Optional[str]] = mapped_column(
        String(50), nullable=True
    )
    address_postal_code: Mapped[Optional[str]] = mapped_column(
        String(20), nullable=True
    )
    address_city: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    address_province: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    address_country: Mapped[str] = mapped_column(
        String(100), default="Argentina", server_default="Argentina"
    )

    # Pricing
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    discount: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    shipping_cost: Mapped[Decimal] = mapped_column(
        Numeric(12, 2), default=0, server_default="0"
    )
    total: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    # Shipping
    shipping_type: Mapped[ShippingType] = mapped_column(
        SAEnum(
            ShippingType,
            values_callable=enum_values,
            name="fulfillment_shipping_type_enum",
        ),
        default=ShippingType.STANDARD,
        server_default="standard",
    )
    shipping_method: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    shipping_provider: Mapped[Optional[str]] = mapped_column(
        String(100), nullable=True
    )
    tracking_number: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )

    # Order lifecycle
    status: Mapped[OrderStatus] = mapped_column(
        SAEnum(
            OrderStatus,
            values_callable=enum_values,
            name="fulfillment_order_status_enum",
        ),
        default=OrderStatus.PENDING,
        server_default="pending",
    )
    status_changed_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    # Payment sub-state
    payment_status: Mapped[PaymentStatus] = mapped_column(
        SAEnum(
            PaymentStatus,
            values_callable=enum_values,
            name="fulfillment_payment_status_enum",
        ),
        default=PaymentStatus.PENDING,
        server_default="pending",
    )
    payment_id: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )
    payment_preference_id: Mapped[Optional[str]] = mapped_column(
        String(100), index=True, nullable=True
    )
    paid_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        CheckConstraint(
            "tracking_number IS NULL OR status IN ('shipped', 'delivered')",
            name="tracking_only_when_shipped",
        ),
        CheckConstraint(
            "ABS(total - (subtotal - COALESCE(discount, 0)"
            " + COALESCE(shipping_cost, 0))) < 0.01",
            name="consistent_order_total",
        ),
    )

    # Relationships
    items = relationship(
        "OrderItem",
        back_populates="order",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="OrderItem.position",
    )

    def __repr__(self):
        return f"<Order {self.id} status={self.status}>"


class OrderItem(Base):
    """Order line items (snapshot at checkout time)."""

    __tablename__ = "fulfillment_order_items"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("fulfillment_orders.id", ondelete="CASCADE"),
        nullable=False,
    )
    position: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    product_id: Mapped[Optional[uuid.UUID]] = mapped_column(Uuid, nullable=True)
    product_name: Mapped[str] = mapped_column(String(255), nullable=False)
    size: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)

    quantity: Mapped[int] = mapped_column(Integer, nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    subtotal: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    __table_args__ = (CheckConstraint("quantity > 0", name="positive_item_quantity"),)

    order = relationship("Order", back_populates="items")

    def __repr__(self):
        return f"<OrderItem {self.product_name} qty={self.quantity}>"


# ============================================================================
# ORDER HISTORY
# ============================================================================


class OrderLogEntry(Base):
    """Immutable audit record of an order state change."""

    __tablename__ = "fulfillment_order_logs"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    order_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("fulfillment_orders.id", ondelete="RESTRICT"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    previous_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    new_value: Mapped[Optional[dict]] = mapped_column(JSONType, nullable=True)
    note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    actor: Mapped[str] = mapped_column(String(100), default="system", nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    __table_args__ = (
        Index("ix_fulfillment_order_logs_order_created", "order_id", "created_at"),
    )

    def __repr__(self):
        return f"<OrderLogEntry {self.action} order={self.order_id}>"


@event.listens_for(OrderLogEntry, "before_update")
def _refuse_log_update(mapper, connection, target):
    raise ValueError("Order log entries are append-only")


@event.listens_for(OrderLogEntry, "before_delete")
def _refuse_log_delete(mapper, connection, target):
    raise ValueError("Order log entries are append-only")
