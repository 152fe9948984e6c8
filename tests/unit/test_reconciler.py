"""Unit tests for PaymentReconciler.

Every delivery runs in its own session (as each webhook request does in
production); assertions read through another fresh session.
"""

import asyncio
import uuid
from decimal import Decimal

import pytest
from services.fulfillment_service.models import (
    Order,
    OrderLogAction,
    OrderLogEntry,
    OrderStatus,
    PaymentStatus,
    ProductStock,
    ShippingType,
    StockMovement,
)
from services.fulfillment_service.schemas import GatewayPayment
from services.fulfillment_service.services.notifications import (
    NotificationDispatcher,
)
from services.fulfillment_service.services.reconciler import PaymentReconciler
from services.fulfillment_service.services.shipping import ShippingOrchestrator
from services.fulfillment_service.services.stock_ledger import StockLedger
from sqlalchemy import func, select
from sqlalchemy.exc import OperationalError

from tests.factories import (
    OrderFactory,
    OrderItemFactory,
    ProductFactory,
    ProductStockFactory,
    gateway_item,
    gateway_payment,
)

# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


async def _seed_product(db, stock=None, **overrides):
    product = ProductFactory.create(**overrides)
    db.add(product)
    for size, quantity in (stock or {"M": 5}).items():
        db.add(ProductStockFactory.create(product.id, size=size, quantity=quantity))
    await db.commit()
    return product


async def _seed_order(db, items=(), **overrides):
    """Insert an order plus ``(product, size, quantity)`` line items."""
    order = OrderFactory.create(**overrides)
    db.add(order)
    for position, (product, size, quantity) in enumerate(items):
        db.add(
            OrderItemFactory.create(
                order.id, product, size=size, quantity=quantity, position=position
            )
        )
    await db.commit()
    return order


async def _reconcile(session_factory, orchestrator, payload):
    async with session_factory() as session:
        reconciler = PaymentReconciler(
            session, orchestrator=orchestrator, notifier=NotificationDispatcher()
        )
        return await reconciler.reconcile(GatewayPayment.from_payload(payload))


async def _load_order(session_factory, order_id) -> Order:
    async with session_factory() as session:
        return await session.get(Order, order_id)


async def _quantity(session_factory, product_id, size):
    async with session_factory() as session:
        result = await session.execute(
            select(ProductStock.quantity).where(
                ProductStock.product_id == product_id, ProductStock.size == size
            )
        )
        return result.scalar_one_or_none()


async def _count(session_factory, model, *criteria):
    async with session_factory() as session:
        result = await session.execute(
            select(func.count()).select_from(model).where(*criteria)
        )
        return result.scalar_one()


async def _log_actions(session_factory, order_id):
    async with session_factory() as session:
        result = await session.execute(
            select(OrderLogEntry.action)
            .where(OrderLogEntry.order_id == order_id)
            .order_by(OrderLogEntry.created_at)
        )
        return list(result.scalars().all())


# ---------------------------------------------------------------------------
# Approved payments
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approved_payment_pays_reserves_and_ships(
    db_session, session_factory, orchestrator, carrier, emails
):
    product = await _seed_product(db_session, {"M": 5})
    order = await _seed_order(db_session, [(product, "M", 2)])
    payload = gateway_payment(order, items=[gateway_item(product, quantity=2)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert len(outcome.processed) == 1
    assert outcome.skipped == []
    assert outcome.shipment.success
    assert outcome.as_response()["shipment_created"] is True

    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.SHIPPED
    assert stored.payment_status == PaymentStatus.APPROVED
    assert stored.payment_id == "1001"
    assert stored.paid_at is not None
    assert stored.tracking_number == "TEST-1"
    assert stored.shipping_provider == "Envíopack"
    assert await _quantity(session_factory, product.id, "M") == 3

    assert await _log_actions(session_factory, order.id) == [
        OrderLogAction.PAYMENT_APPROVED.value,
        OrderLogAction.SHIPMENT_CREATED.value,
    ]

    assert carrier.requests[0].postal_code == "C1043"
    assert emails.subjects() == [
        f"Tu pedido #{str(order.id).split('-')[0].upper()} está en camino",
        f"Confirmación de compra - Pedido #{str(order.id).split('-')[0].upper()}",
    ]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_order_found_by_preference_id(
    db_session, session_factory, orchestrator
):
    product = await _seed_product(db_session)
    order = await _seed_order(db_session)
    payload = gateway_payment(
        order, items=[gateway_item(product)], external_reference=None
    )

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert outcome.order_id == order.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redelivered_approval_is_a_no_op(
    db_session, session_factory, orchestrator, carrier, emails
):
    product = await _seed_product(db_session, {"M": 5})
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(product, quantity=2)])

    first = await _reconcile(session_factory, orchestrator, payload)
    second = await _reconcile(session_factory, orchestrator, payload)

    assert first.result == "approved"
    assert second.result == "duplicate"
    assert await _quantity(session_factory, product.id, "M") == 3
    assert await _count(
        session_factory, StockMovement, StockMovement.product_id == product.id
    ) == 1
    assert carrier.calls == 1
    assert (await _log_actions(session_factory, order.id)).count(
        OrderLogAction.PAYMENT_APPROVED.value
    ) == 1
    assert len(emails.sent) == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_deliveries_apply_once(
    db_session, session_factory, orchestrator, carrier
):
    product = await _seed_product(db_session, {"M": 5})
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(product, quantity=2)])

    outcomes = await asyncio.gather(
        _reconcile(session_factory, orchestrator, payload),
        _reconcile(session_factory, orchestrator, payload),
    )

    results = sorted(o.result for o in outcomes)
    assert results[0] == "approved"
    assert results[1] in ("duplicate", "stale")
    assert await _quantity(session_factory, product.id, "M") == 3
    assert carrier.calls == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_failed_line_items_do_not_block_the_rest(
    db_session, session_factory, orchestrator
):
    in_stock = await _seed_product(db_session, {"M": 5})
    scarce = await _seed_product(db_session, {"M": 1})
    order = await _seed_order(db_session)
    payload = gateway_payment(
        order,
        items=[
            gateway_item(in_stock, quantity=1),
            gateway_item(None),
            gateway_item(scarce, quantity=3),
        ],
    )

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert [item.name for item in outcome.processed] == [in_stock.name]
    assert [item.label for item in outcome.skipped] == [
        "Producto inexistente",
        scarce.name,
    ]
    assert "Insufficient stock" in outcome.skipped[1].reason
    assert outcome.as_response()["items_skipped"] == 2

    assert await _quantity(session_factory, in_stock.id, "M") == 4
    assert await _quantity(session_factory, scarce.id, "M") == 1
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.SHIPPED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_database_error_on_one_line_does_not_block_the_rest(
    db_session, session_factory, orchestrator, monkeypatch
):
    first = await _seed_product(db_session, {"M": 5})
    second = await _seed_product(db_session, {"M": 5})
    order = await _seed_order(db_session)
    payload = gateway_payment(
        order, items=[gateway_item(first), gateway_item(second)]
    )

    decrement = StockLedger.decrement
    calls = []

    async def flaky_decrement(self, *args, **kwargs):
        calls.append(args)
        if len(calls) == 1:
            raise OperationalError(
                "UPDATE store_product_stock", {}, Exception("connection lost")
            )
        return await decrement(self, *args, **kwargs)

    monkeypatch.setattr(StockLedger, "decrement", flaky_decrement)

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert [item.name for item in outcome.processed] == [second.name]
    assert [item.label for item in outcome.skipped] == [first.name]
    assert "connection lost" in outcome.skipped[0].reason

    assert await _quantity(session_factory, first.id, "M") == 5
    assert await _quantity(session_factory, second.id, "M") == 4
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.SHIPPED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_no_reserved_items_means_no_shipment(
    db_session, session_factory, orchestrator, carrier, emails
):
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(None)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert outcome.shipment is None
    assert carrier.calls == 0
    # Nothing was reserved, so there is nothing to confirm.
    assert emails.sent == []
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.PAID


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pickup_orders_are_not_shipped(
    db_session, session_factory, orchestrator, carrier
):
    product = await _seed_product(db_session)
    order = await _seed_order(
        db_session, shipping_type=ShippingType.PICKUP, shipping_cost=Decimal("0")
    )
    payload = gateway_payment(order, items=[gateway_item(product)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert outcome.shipment is None
    assert carrier.calls == 0
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.PAID
    assert stored.tracking_number is None


# ---------------------------------------------------------------------------
# Shipping outcomes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shipment_succeeds_after_retries(
    db_session, session_factory, orchestrator, carrier, sleeper
):
    carrier.failures = 2
    product = await _seed_product(db_session)
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(product)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.shipment.success
    assert outcome.shipment.retries == 2
    assert sleeper.delays == [1.0, 2.0]
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.SHIPPED
    assert stored.tracking_number == "TEST-3"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_shipment_failure_leaves_order_paid_and_alerts_operator(
    db_session, session_factory, orchestrator, carrier, emails
):
    carrier.failures = 10
    product = await _seed_product(db_session, {"M": 5})
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(product)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert not outcome.shipment.success
    assert outcome.shipment.attempts == 3
    assert outcome.as_response()["shipment_created"] is False

    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.PAID
    assert stored.payment_status == PaymentStatus.APPROVED
    assert stored.tracking_number is None
    assert await _quantity(session_factory, product.id, "M") == 4
    assert await _log_actions(session_factory, order.id) == [
        OrderLogAction.PAYMENT_APPROVED.value,
        OrderLogAction.SHIPMENT_FAILED.value,
    ]

    alerts = [m for m in emails.sent if m["to_email"] == "ops@test.com"]
    assert len(alerts) == 1
    assert alerts[0]["subject"].startswith("[ALERTA]")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_carrier_factory_error_leaves_order_paid_and_alerts_operator(
    db_session, session_factory, sleeper, emails
):
    def broken_factory(method):
        raise ValueError("carrier credentials missing")

    orchestrator = ShippingOrchestrator(
        carrier_factory=broken_factory,
        max_attempts=3,
        backoff_seconds=1.0,
        sleep=sleeper,
    )
    product = await _seed_product(db_session, {"M": 5})
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(product)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert not outcome.shipment.success
    assert outcome.shipment.error == "carrier credentials missing"

    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.PAID
    assert stored.tracking_number is None
    assert await _quantity(session_factory, product.id, "M") == 4
    assert await _log_actions(session_factory, order.id) == [
        OrderLogAction.PAYMENT_APPROVED.value,
        OrderLogAction.SHIPMENT_FAILED.value,
    ]
    alerts = [m for m in emails.sent if m["to_email"] == "ops@test.com"]
    assert len(alerts) == 1


# ---------------------------------------------------------------------------
# Item and size resolution
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_falls_back_to_order_items_when_gateway_sends_none(
    db_session, session_factory, orchestrator
):
    product = await _seed_product(db_session, {"M": 5, "L": 5})
    order = await _seed_order(db_session, [(product, "L", 2)])
    payload = gateway_payment(order, items=[])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert len(outcome.processed) == 1
    assert await _quantity(session_factory, product.id, "L") == 3
    assert await _quantity(session_factory, product.id, "M") == 5


@pytest.mark.asyncio
@pytest.mark.unit
async def test_size_taken_from_order_item_when_description_lacks_it(
    db_session, session_factory, orchestrator
):
    product = await _seed_product(db_session, {"M": 5, "L": 5})
    order = await _seed_order(db_session, [(product, "L", 1)])
    payload = gateway_payment(order, items=[gateway_item(product, size=None)])

    await _reconcile(session_factory, orchestrator, payload)

    assert await _quantity(session_factory, product.id, "L") == 4


@pytest.mark.asyncio
@pytest.mark.unit
async def test_size_defaults_to_first_offered_size(
    db_session, session_factory, orchestrator
):
    product = await _seed_product(db_session, {"S": 5, "M": 5})
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(product, size=None)])

    await _reconcile(session_factory, orchestrator, payload)

    assert await _quantity(session_factory, product.id, "S") == 4


@pytest.mark.asyncio
@pytest.mark.unit
async def test_product_matched_by_title_when_id_is_foreign(
    db_session, session_factory, orchestrator
):
    product = await _seed_product(db_session, {"M": 5})
    order = await _seed_order(db_session)
    payload = gateway_payment(
        order, items=[gateway_item(product, id="MLA-123456")]
    )

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert len(outcome.processed) == 1
    assert await _quantity(session_factory, product.id, "M") == 4


# ---------------------------------------------------------------------------
# Pending / rejected / stale
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pending_payment_records_sub_state_only(
    db_session, session_factory, orchestrator, carrier
):
    product = await _seed_product(db_session)
    order = await _seed_order(db_session)
    payload = gateway_payment(
        order, status="in_process", items=[gateway_item(product)]
    )

    first = await _reconcile(session_factory, orchestrator, payload)
    second = await _reconcile(session_factory, orchestrator, payload)

    assert first.result == "pending"
    assert second.result == "duplicate"
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.PENDING
    assert stored.payment_status == PaymentStatus.PENDING
    assert stored.payment_id == "1001"
    assert await _quantity(session_factory, product.id, "M") == 5
    assert carrier.calls == 0
    assert await _log_actions(session_factory, order.id) == [
        OrderLogAction.PAYMENT_PENDING.value
    ]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_pending_after_paid_is_stale(db_session, session_factory, orchestrator):
    order = await _seed_order(
        db_session,
        status=OrderStatus.PAID,
        payment_status=PaymentStatus.APPROVED,
        payment_id="2002",
    )
    payload = gateway_payment(order, payment_id="1001", status="pending")

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "stale"
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.PAID
    assert stored.payment_id == "2002"


@pytest.mark.asyncio
@pytest.mark.unit
async def test_rejected_payment_cancels_pending_order(
    db_session, session_factory, orchestrator, emails
):
    product = await _seed_product(db_session)
    order = await _seed_order(db_session)
    payload = gateway_payment(order, status="rejected", items=[gateway_item(product)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "rejected"
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.CANCELLED
    assert stored.payment_status == PaymentStatus.REJECTED
    assert await _quantity(session_factory, product.id, "M") == 5
    assert len(emails.sent) == 1
    assert emails.sent[0]["to_email"] == order.customer_email


@pytest.mark.asyncio
@pytest.mark.unit
async def test_late_rejection_does_not_undo_shipment(
    db_session, session_factory, orchestrator, emails
):
    order = await _seed_order(
        db_session,
        status=OrderStatus.SHIPPED,
        payment_status=PaymentStatus.APPROVED,
        payment_id="2002",
        tracking_number="TRACK-1",
        shipping_provider="OCA",
    )
    payload = gateway_payment(order, payment_id="1001", status="rejected")

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "stale"
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.SHIPPED
    assert stored.payment_status == PaymentStatus.APPROVED
    assert stored.tracking_number == "TRACK-1"
    assert await _log_actions(session_factory, order.id) == []
    assert emails.sent == []


@pytest.mark.asyncio
@pytest.mark.unit
async def test_approval_for_cancelled_order_is_stale(
    db_session, session_factory, orchestrator, carrier
):
    product = await _seed_product(db_session)
    order = await _seed_order(
        db_session,
        status=OrderStatus.CANCELLED,
        payment_status=PaymentStatus.REJECTED,
        payment_id="0999",
    )
    payload = gateway_payment(order, items=[gateway_item(product)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "stale"
    assert await _quantity(session_factory, product.id, "M") == 5
    assert carrier.calls == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_order_is_acknowledged(session_factory, orchestrator):
    payload = gateway_payment(
        None, external_reference=str(uuid.uuid4()), preference_id="pref-unknown"
    )

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "order_not_found"
    assert outcome.as_response() == {"received": True, "result": "order_not_found"}


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unhandled_gateway_status_is_ignored(
    db_session, session_factory, orchestrator
):
    order = await _seed_order(db_session)
    payload = gateway_payment(order, status="refunded")

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "ignored"
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.PENDING


@pytest.mark.asyncio
@pytest.mark.unit
async def test_email_failure_does_not_fail_reconciliation(
    db_session, session_factory, orchestrator, emails
):
    emails.error = RuntimeError("smtp down")
    product = await _seed_product(db_session)
    order = await _seed_order(db_session)
    payload = gateway_payment(order, items=[gateway_item(product)])

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    stored = await _load_order(session_factory, order.id)
    assert stored.status == OrderStatus.SHIPPED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_confirmation_goes_to_payer_when_order_has_no_email(
    db_session, session_factory, orchestrator, emails
):
    product = await _seed_product(db_session)
    order = await _seed_order(db_session, customer_email="")
    payload = gateway_payment(
        order, items=[gateway_item(product)], payer={"email": "payer@test.com"}
    )

    outcome = await _reconcile(session_factory, orchestrator, payload)

    assert outcome.result == "approved"
    assert "payer@test.com" in [m["to_email"] for m in emails.sent]
