"""Unit tests for NotificationDispatcher."""

from decimal import Decimal

import pytest
from services.fulfillment_service.schemas import ShipmentResult
from services.fulfillment_service.services.notifications import (
    NotificationDispatcher,
    order_reference,
)
from services.fulfillment_service.services.shipping import ShippableItem

from tests.factories import OrderFactory

ITEMS = [ShippableItem(name="Remera", size="M", quantity=2, unit_price=Decimal("5000"))]


@pytest.mark.unit
def test_order_reference_is_first_uuid_segment():
    order = OrderFactory.create()
    reference = order_reference(order)

    assert reference == str(order.id)[:8].upper()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_confirmation_lists_items(emails):
    order = OrderFactory.create()

    sent = await NotificationDispatcher().order_confirmed(order, ITEMS, "1001")

    assert sent is True
    [message] = emails.sent
    assert message["to_email"] == order.customer_email
    assert "Remera" in message["body"]
    assert "1001" in message["body"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_falls_back_to_payer_email(emails):
    order = OrderFactory.create(customer_email="")

    sent = await NotificationDispatcher().order_confirmed(
        order, ITEMS, "1001", fallback_email="payer@test.com"
    )

    assert sent is True
    [message] = emails.sent
    assert message["to_email"] == "payer@test.com"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_customer_email_preferred_over_payer_email(emails):
    order = OrderFactory.create()

    await NotificationDispatcher().order_confirmed(
        order, ITEMS, "1001", fallback_email="payer@test.com"
    )

    [message] = emails.sent
    assert message["to_email"] == order.customer_email


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_skipped_without_items(emails):
    sent = await NotificationDispatcher().order_confirmed(OrderFactory.create(), [])

    assert sent is False
    assert emails.sent == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_tracking_email(emails):
    order = OrderFactory.create()
    result = ShipmentResult(
        success=True,
        provider="OCA",
        tracking_number="TRACK-9",
        estimated_delivery="1-2 días hábiles",
    )

    assert await NotificationDispatcher().shipment_created(order, result)
    assert "TRACK-9" in emails.sent[0]["body"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shipping_failure_goes_to_operator(emails):
    result = ShipmentResult(success=False, provider="OCA", error="timeout", attempts=3)

    await NotificationDispatcher().shipping_failed(OrderFactory.create(), result)

    [message] = emails.sent
    assert message["to_email"] == "ops@test.com"
    assert "timeout" in message["body"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_send_failure_is_reported_not_raised(emails):
    emails.error = ConnectionError("smtp unreachable")

    sent = await NotificationDispatcher().order_confirmed(
        OrderFactory.create(), ITEMS
    )

    assert sent is False
