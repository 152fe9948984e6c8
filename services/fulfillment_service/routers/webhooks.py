"""Payment gateway webhook endpoint."""

from fastapi import APIRouter, Depends, HTTPException, Request, status
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.fulfillment_service.dependencies import (
    get_notification_dispatcher,
    get_payment_gateway,
    get_shipping_orchestrator,
)
from services.fulfillment_service.errors import (
    AuthenticationError,
    UpstreamUnavailable,
)
from services.fulfillment_service.gateway_client import PaymentGatewayClient
from services.fulfillment_service.services.notifications import (
    NotificationDispatcher,
)
from services.fulfillment_service.services.reconciler import PaymentReconciler
from services.fulfillment_service.services.shipping import ShippingOrchestrator
from services.fulfillment_service.services.webhook_gateway import WebhookGateway
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


@router.post("/payments")
async def payment_webhook(
    request: Request,
    db: AsyncSession = Depends(get_async_db),
    gateway_client: PaymentGatewayClient = Depends(get_payment_gateway),
    orchestrator: ShippingOrchestrator = Depends(get_shipping_orchestrator),
    notifier: NotificationDispatcher = Depends(get_notification_dispatcher),
):
    """
    Payment gateway webhook (no auth; verified by X-Signature when a secret
    is configured).

    Always 200 once the event is understood, including duplicates, unknown
    orders and stale events. 401 on a bad signature, 502 when the payment
    detail cannot be fetched so the gateway redelivers.
    """
    raw = await request.body()
    signature = request.headers.get("x-signature")

    webhook = WebhookGateway(
        gateway_client,
        PaymentReconciler(db, orchestrator=orchestrator, notifier=notifier),
    )
    try:
        return await webhook.handle(raw, signature)
    except AuthenticationError as e:
        logger.warning(
            "Rejected webhook: %s",
            e.message,
            extra={"extra_fields": {"client": request.client.host if request.client else None}},
        )
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        ) from e
    except UpstreamUnavailable as e:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail="Payment gateway unavailable, retry later",
        ) from e
