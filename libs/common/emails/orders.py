"""
Order and shipping email templates.
"""

from decimal import Decimal
from html import escape
from typing import Optional, Sequence

from libs.common.emails.core import send_email

_STYLE = """
        body { font-family: -apple-system, BlinkMacSystemFont, 'Segoe UI', Roboto, sans-serif; line-height: 1.6; color: #333; }
        .container { max-width: 600px; margin: 0 auto; padding: 20px; }
        .header { background: #111827; color: white; padding: 24px; border-radius: 12px 12px 0 0; }
        .content { background: #f8fafc; padding: 24px; border-radius: 0 0 12px 12px; }
        .details { background: white; padding: 16px; border-radius: 8px; margin: 16px 0; border-left: 4px solid #111827; }
        .footer { text-align: center; color: #64748b; font-size: 14px; margin-top: 20px; }
"""


def _money(amount) -> str:
    return f"${Decimal(amount or 0):,.2f}"


def _wrap_html(title: str, inner: str) -> str:
    return f"""
<!DOCTYPE html>
<html>
<head>
    <style>{_STYLE}</style>
</head>
<body>
    <div class="container">
        <div class="header">
            <h1 style="margin: 0;">{escape(title)}</h1>
        </div>
        <div class="content">
            {inner}
        </div>
    </div>
</body>
</html>
"""


async def send_order_confirmation_email(
    to_email: str,
    customer_name: str,
    order_reference: str,
    items: Sequence[tuple[str, str, int]],
    total,
    payment_id: Optional[str] = None,
    tracking_number: Optional[str] = None,
    shipping_provider: Optional[str] = None,
) -> bool:
    """
    Send the purchase confirmation once a payment is approved.

    ``items`` is ``(name, size, quantity)`` for each line that was reserved.
    """
    subject = f"Confirmación de compra - Pedido #{order_reference}"

    lines = "\n".join(
        f"- {name} - Talle: {size} - Cantidad: {quantity}"
        for name, size, quantity in items
    )
    tracking_text = (
        f"\nTu envío ya fue despachado con {shipping_provider}. "
        f"Número de seguimiento: {tracking_number}\n"
        if tracking_number
        else "\nTe contactaremos pronto para coordinar el envío.\n"
    )
    body = f"""Hola {customer_name},

¡Gracias por tu compra! Tu pedido fue confirmado.

{lines}

Total: {_money(total)}
Pago ID: {payment_id or "-"}
{tracking_text}
"""

    item_html = "".join(
        f"<li><strong>{escape(name)}</strong> - Talle: {escape(size)}, "
        f"Cantidad: {quantity}</li>"
        for name, size, quantity in items
    )
    tracking_html = (
        f"<p>Tu envío ya fue despachado con {escape(shipping_provider or '')}. "
        f"Número de seguimiento: <strong>{escape(tracking_number)}</strong></p>"
        if tracking_number
        else "<p>Te contactaremos pronto para coordinar el envío.</p>"
    )
    html_body = _wrap_html(
        "¡Gracias por tu compra!",
        f"""
            <p>Hola {escape(customer_name)},</p>
            <p>Tu pedido fue confirmado:</p>
            <div class="details"><ul>{item_html}</ul></div>
            <p><strong>Total:</strong> {_money(total)}</p>
            <p><strong>Pago ID:</strong> {escape(payment_id or "-")}</p>
            {tracking_html}
        """,
    )

    return await send_email(
        to_email=to_email, subject=subject, body=body, html_body=html_body
    )


async def send_tracking_email(
    to_email: str,
    customer_name: str,
    order_reference: str,
    tracking_number: str,
    shipping_provider: str,
    estimated_delivery: Optional[str] = None,
) -> bool:
    """
    Tell the customer their shipment exists and how to follow it.
    """
    subject = f"Tu pedido #{order_reference} está en camino"
    eta = estimated_delivery or "a confirmar"

    body = f"""Hola {customer_name},

Tu pedido fue despachado.

Transportista: {shipping_provider}
Número de seguimiento: {tracking_number}
Entrega estimada: {eta}
"""

    html_body = _wrap_html(
        "Tu pedido está en camino",
        f"""
            <p>Hola {escape(customer_name)},</p>
            <div class="details">
                <p>Transportista: <strong>{escape(shipping_provider)}</strong></p>
                <p>Número de seguimiento: <strong>{escape(tracking_number)}</strong></p>
                <p>Entrega estimada: {escape(eta)}</p>
            </div>
        """,
    )

    return await send_email(
        to_email=to_email, subject=subject, body=body, html_body=html_body
    )


async def send_payment_rejected_email(
    to_email: str,
    customer_name: str,
    order_reference: str,
    payment_status: str,
) -> bool:
    subject = f"No pudimos procesar el pago del pedido #{order_reference}"
    body = f"""Hola {customer_name},

El pago de tu pedido #{order_reference} fue {payment_status}.
El pedido quedó cancelado y no se realizó ningún cobro.

Podés volver a intentarlo desde la tienda cuando quieras.
"""
    return await send_email(to_email=to_email, subject=subject, body=body)


async def send_shipping_failed_alert(
    to_email: str,
    order_reference: str,
    error: str,
    attempts: int,
) -> bool:
    """
    Operator alert: the order is paid and stock is committed, but no carrier
    shipment could be created. Needs manual follow-up.
    """
    subject = f"[ALERTA] Envío no creado para el pedido #{order_reference}"
    body = f"""El pedido #{order_reference} está pagado pero no se pudo crear el envío.

Intentos: {attempts}
Último error: {error}

El pago y el stock ya fueron aplicados; crear el envío manualmente.
"""
    return await send_email(to_email=to_email, subject=subject, body=body)
