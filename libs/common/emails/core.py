"""
Core email sending utilities over SMTP.
"""

import asyncio
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


def _deliver(
    host: str,
    port: int,
    username: str,
    password: str,
    sender_email: str,
    to_email: str,
    message: str,
    timeout: float,
) -> None:
    with smtplib.SMTP(host, port, timeout=timeout) as server:
        server.starttls()
        server.login(username, password)
        server.sendmail(sender_email, to_email, message)


async def send_email(
    to_email: str,
    subject: str,
    body: str,
    html_body: Optional[str] = None,
    from_email: Optional[str] = None,
    from_name: Optional[str] = None,
) -> bool:
    """
    Send an email over SMTP.

    Args:
        to_email: Recipient email address
        subject: Email subject line
        body: Plain text body
        html_body: Optional HTML body (if not provided, plain text is used)
        from_email: Sender email (defaults to DEFAULT_FROM_EMAIL)
        from_name: Sender name (defaults to DEFAULT_FROM_NAME)

    Returns:
        True if the email was handed to the SMTP server, False when SMTP is
        not configured.

    Raises:
        smtplib.SMTPException / OSError on delivery failures; callers that
        must not fail (notifications) catch these themselves.
    """
    settings = get_settings()

    if not settings.SMTP_PASSWORD or not settings.SMTP_USERNAME:
        logger.warning("SMTP credentials not configured - email not sent")
        logger.info(f"Would have sent email to {to_email}: {subject}")
        logger.debug(f"Email body: {body[:200]}...")
        return False

    sender_email = from_email or settings.DEFAULT_FROM_EMAIL
    sender_name = from_name or settings.DEFAULT_FROM_NAME

    if html_body:
        msg = MIMEMultipart("alternative")
        msg.attach(MIMEText(body, "plain"))
        msg.attach(MIMEText(html_body, "html"))
    else:
        msg = MIMEText(body, "plain")

    msg["Subject"] = subject
    msg["From"] = f"{sender_name} <{sender_email}>"
    msg["To"] = to_email

    logger.info(f"Sending email to {to_email}: {subject}")

    # smtplib is blocking; keep it off the event loop.
    await asyncio.to_thread(
        _deliver,
        settings.SMTP_HOST,
        settings.SMTP_PORT,
        settings.SMTP_USERNAME,
        settings.SMTP_PASSWORD,
        sender_email,
        to_email,
        msg.as_string(),
        settings.UPSTREAM_TIMEOUT_SECONDS,
    )

    logger.info(f"Email sent successfully to {to_email}")
    return True
