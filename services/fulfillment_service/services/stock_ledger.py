"""Per-size stock ledger: atomic decrement/increment with an audit trail.

Every mutation is a single conditional UPDATE (compare-and-set on the
current quantity) followed by a movement row and a commit. The UPDATE is the
first write of the transaction, and the row lock it takes serializes
concurrent decrements for the same (product, size), so the quantity can
never go negative or be decremented twice for one sale.
"""

import uuid
from typing import Optional

from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.fulfillment_service.errors import (
    InsufficientStock,
    ProductNotFound,
    SizeNotFound,
)
from services.fulfillment_service.models import (
    Product,
    ProductStock,
    StockMovement,
    StockMovementReason,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


class StockLedger:
    """Owns every write to ``store_product_stock``."""

    def __init__(self, db: AsyncSession):
        self.db = db

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def get_quantity(self, product_id: uuid.UUID, size: str) -> Optional[int]:
        result = await self.db.execute(
            select(ProductStock.quantity).where(
                ProductStock.product_id == product_id, ProductStock.size == size
            )
        )
        return result.scalar_one_or_none()

    async def stock_levels(self, product_id: uuid.UUID) -> dict[str, int]:
        """Size label -> quantity on hand for one product."""
        result = await self.db.execute(
            select(ProductStock.size, ProductStock.quantity).where(
                ProductStock.product_id == product_id
            )
        )
        return {size: quantity for size, quantity in result.all()}

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def decrement(
        self,
        product_id: uuid.UUID,
        size: str,
        quantity: int,
        *,
        actor: str = "system",
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
    ) -> StockMovement:
        """Take ``quantity`` units of ``size`` off the shelf for a sale.

        Raises:
            InsufficientStock: on-hand quantity is lower than requested.
            SizeNotFound: the product has no stock record for ``size``.
            ProductNotFound: the product does not exist.
        Nothing is written when any of these is raised.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")

        result = await self.db.execute(
            update(ProductStock)
            .where(
                ProductStock.product_id == product_id,
                ProductStock.size == size,
                ProductStock.quantity >= quantity,
            )
            .values(quantity=ProductStock.quantity - quantity, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            # Nothing was written; end the transaction without expiring loaded objects.
            await self.db.commit()
            raise await self._decrement_failure(product_id, size, quantity)

        return await self._record_movement(
            product_id=product_id,
            size=size,
            delta=-quantity,
            reason=StockMovementReason.SALE,
            actor=actor,
            reference_type=reference_type,
            reference_id=reference_id,
        )

    async def increment(
        self,
        product_id: uuid.UUID,
        size: str,
        quantity: int,
        *,
        reason: StockMovementReason = StockMovementReason.RESTOCK,
        actor: str = "system",
        reference_type: Optional[str] = None,
        reference_id: Optional[str] = None,
        notes: Optional[str] = None,
    ) -> StockMovement:
        """Put units back (restock, return, manual adjustment).

        A size listed on the product but without a stock row yet gets one.
        """
        if quantity <= 0:
            raise ValueError("quantity must be positive")
        if reason == StockMovementReason.SALE:
            raise ValueError("sales only decrement stock")

        result = await self.db.execute(
            update(ProductStock)
            .where(ProductStock.product_id == product_id, ProductStock.size == size)
            .values(quantity=ProductStock.quantity + quantity, updated_at=utc_now())
            .execution_options(synchronize_session=False)
        )
        if result.rowcount != 1:
            await self.db.commit()
            product = await self.db.get(Product, product_id)
            if product is None:
                raise ProductNotFound(f"Product {product_id} not found")
            if size not in (product.sizes or []):
                raise SizeNotFound(f"Size {size} not offered for product {product_id}")
            self.db.add(
                ProductStock(product_id=product_id, size=size, quantity=quantity)
            )
            await self.db.flush()

        return await self._record_movement(
            product_id=product_id,
            size=size,
            delta=quantity,
            reason=reason,
            actor=actor,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
        )

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _record_movement(
        self,
        *,
        product_id: uuid.UUID,
        size: str,
        delta: int,
        reason: StockMovementReason,
        actor: str,
        reference_type: Optional[str],
        reference_id: Optional[str],
        notes: Optional[str] = None,
    ) -> StockMovement:
        # The row is write-locked by our UPDATE, so this read is our own result.
        quantity_after = await self.get_quantity(product_id, size)

        movement = StockMovement(
            product_id=product_id,
            size=size,
            reason=reason,
            delta=delta,
            quantity_after=quantity_after,
            actor=actor,
            reference_type=reference_type,
            reference_id=reference_id,
            notes=notes,
        )
        self.db.add(movement)
        await self.db.commit()

        logger.info(
            "Stock %s for product %s size %s: delta=%d now=%d",
            reason.value,
            product_id,
            size,
            delta,
            quantity_after,
        )
        return movement

    async def _decrement_failure(
        self, product_id: uuid.UUID, size: str, quantity: int
    ) -> Exception:
        available = await self.get_quantity(product_id, size)
        if available is not None:
            return InsufficientStock(product_id, size, quantity, available)
        product = await self.db.get(Product, product_id)
        if product is None:
            return ProductNotFound(f"Product {product_id} not found")
        return SizeNotFound(f"No stock record for product {product_id} size {size}")
