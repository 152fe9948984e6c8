"""Unit tests for table-level constraints on fulfillment orders."""

from decimal import Decimal

import pytest
from services.fulfillment_service.models import Order
from sqlalchemy.exc import IntegrityError

from tests.factories import OrderFactory


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_total_must_match_its_components(db_session):
    db_session.add(OrderFactory.create(total=Decimal("1.00")))

    with pytest.raises(IntegrityError):
        await db_session.commit()
    await db_session.rollback()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_discounted_order_total_is_accepted(db_session):
    order = OrderFactory.create(
        subtotal=Decimal("10000.00"),
        discount=Decimal("1000.00"),
        shipping_cost=Decimal("1500.00"),
    )
    db_session.add(order)
    await db_session.commit()

    stored = await db_session.get(Order, order.id)
    assert stored.total == Decimal("10500.00")
