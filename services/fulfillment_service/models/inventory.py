"""Catalog and inventory models: per-size stock and its audit trail."""

import uuid
from datetime import datetime
from decimal import Decimal
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.db.base import Base
from services.fulfillment_service.models.enums import StockMovementReason, enum_values
from sqlalchemy import JSON, CheckConstraint, DateTime
from sqlalchemy import Enum as SAEnum
from sqlalchemy import ForeignKey, Integer, Numeric, String, Text, UniqueConstraint, Uuid
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

JSONType = JSON().with_variant(JSONB(), "postgresql")


# ============================================================================
# PRODUCT
# ============================================================================


class Product(Base):
    """Catalog product as seen by the fulfillment pipeline.

    The catalog screens own the rest of the product record; the pipeline only
    needs identity, the name (fallback match for gateway line items), the
    configured size labels and a shipping weight.
    """

    __tablename__ = "store_products"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    # Ordered size labels, e.g. ["S", "M", "L"]; the first is the fallback size.
    sizes: Mapped[list] = mapped_column(JSONType, default=list, nullable=False)
    weight_kg: Mapped[Optional[Decimal]] = mapped_column(Numeric(8, 3), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    stock = relationship(
        "ProductStock", back_populates="product", cascade="all, delete-orphan"
    )

    def __repr__(self):
        return f"<Product {self.name}>"


# ============================================================================
# STOCK
# ============================================================================


class ProductStock(Base):
    """Quantity on hand for one (product, size).

    Written only through StockLedger; never assign ``quantity`` directly.
    """

    __tablename__ = "store_product_stock"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_products.id", ondelete="CASCADE"),
        nullable=False,
    )
    size: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[int] = mapped_column(
        Integer, default=0, server_default="0", nullable=False
    )

    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now, onupdate=utc_now
    )

    __table_args__ = (
        UniqueConstraint("product_id", "size", name="unique_product_size"),
        CheckConstraint("quantity >= 0", name="non_negative_stock"),
    )

    product = relationship("Product", back_populates="stock")

    def __repr__(self):
        return f"<ProductStock product={self.product_id} size={self.size} qty={self.quantity}>"


class StockMovement(Base):
    """Append-only audit trail for stock changes."""

    __tablename__ = "store_stock_movements"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    product_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("store_products.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    size: Mapped[str] = mapped_column(String(20), nullable=False)

    reason: Mapped[StockMovementReason] = mapped_column(
        SAEnum(
            StockMovementReason,
            values_callable=enum_values,
            name="store_stock_movement_reason_enum",
        ),
        nullable=False,
    )
    delta: Mapped[int] = mapped_column(
        Integer, nullable=False
    )  # Positive = add, negative = subtract
    quantity_after: Mapped[int] = mapped_column(Integer, nullable=False)

    actor: Mapped[str] = mapped_column(String(100), default="system", nullable=False)
    reference_type: Mapped[Optional[str]] = mapped_column(
        String(30), nullable=True
    )  # order, manual
    reference_id: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utc_now
    )

    def __repr__(self):
        return f"<StockMovement {self.reason} delta={self.delta}>"
