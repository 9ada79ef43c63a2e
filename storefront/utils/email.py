import smtplib
from email.message import EmailMessage

import structlog

from storefront.core.config import settings

logger = structlog.get_logger()


def _send_email_smtp(msg: EmailMessage) -> None:
    """
    Send an email message over SMTP.
    This is intended to be called from Celery workers, not request handlers.
    """
    with smtplib.SMTP(settings.SMTP_HOST, settings.SMTP_PORT, timeout=30) as server:
        server.ehlo()
        server.starttls()
        server.ehlo()
        if settings.SMTP_USER and settings.SMTP_PASSWORD:
            server.login(settings.SMTP_USER, settings.SMTP_PASSWORD)
        server.send_message(msg)


def queue_order_confirmation_email(receipt) -> None:
    """
    Queue the order confirmation email on the Celery worker.

    Raises when the broker rejects the task so the caller can record the
    failure; the order itself is unaffected.
    """
    from storefront.tasks.email_tasks import send_order_confirmation

    result = send_order_confirmation.delay(receipt.to_payload())
    logger.info(
        "order_confirmation_queued",
        order_id=receipt.order_id,
        task_id=result.id,
    )
