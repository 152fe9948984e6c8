"""
Email package.

Modules:
- core: send_email (SMTP delivery, no-op when SMTP is not configured)
- orders: order confirmation, tracking, payment rejection and operator alerts
"""
