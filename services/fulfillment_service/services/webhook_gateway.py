"""Webhook ingestion: authenticate, parse, fetch the payment, reconcile."""

import hashlib
import hmac
import json
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from pydantic import ValidationError
from services.fulfillment_service.errors import AuthenticationError
from services.fulfillment_service.gateway_client import PaymentGatewayClient
from services.fulfillment_service.schemas import WebhookEnvelope
from services.fulfillment_service.services.reconciler import PaymentReconciler

logger = get_logger(__name__)


def compute_signature(raw_body: bytes, secret: str) -> str:
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: Optional[str], secret: str) -> None:
    """Raise AuthenticationError unless ``signature`` is the body's HMAC-SHA256."""
    if not signature:
        raise AuthenticationError("Missing webhook signature")
    provided = signature.strip().lower()
    if provided.startswith("sha256="):
        provided = provided[len("sha256=") :]
    expected = compute_signature(raw_body, secret)
    if not hmac.compare_digest(expected, provided):
        raise AuthenticationError("Invalid webhook signature")


class WebhookGateway:
    def __init__(
        self,
        gateway_client: PaymentGatewayClient,
        reconciler: PaymentReconciler,
        secret: Optional[str] = None,
    ):
        self.gateway_client = gateway_client
        self.reconciler = reconciler
        self.secret = (
            get_settings().PAYMENT_WEBHOOK_SECRET if secret is None else secret
        )

    async def handle(self, raw_body: bytes, signature: Optional[str]) -> dict:
        """
        Process one webhook delivery and return the acknowledgement body.

        Raises:
            AuthenticationError: secret configured and signature missing or wrong.
            UpstreamUnavailable: the payment detail could not be fetched; the
                caller answers 5xx so the gateway redelivers.
        """
        if self.secret:
            verify_signature(raw_body, signature, self.secret)
        else:
            logger.warning(
                "PAYMENT_WEBHOOK_SECRET not set - accepting unsigned webhook"
            )

        try:
            envelope = WebhookEnvelope.model_validate(
                json.loads(raw_body.decode("utf-8") or "{}")
            )
        except (ValueError, ValidationError) as e:
            logger.warning("Unparseable webhook body acknowledged: %s", e)
            return {"received": True, "result": "malformed"}

        if not envelope.is_payment:
            logger.info(
                "Ignoring webhook of type %s",
                envelope.type,
                extra={"extra_fields": {"event_id": envelope.data.id}},
            )
            return {"received": True, "result": "ignored"}

        payment = await self.gateway_client.get_payment(envelope.data.id)
        logger.info(
            "Payment %s fetched with status %s",
            payment.id,
            payment.status,
            extra={
                "extra_fields": {
                    "preference_id": payment.preference_id,
                    "external_reference": payment.external_reference,
                }
            },
        )

        outcome = await self.reconciler.reconcile(payment)
        return outcome.as_response()
