from celery import Task
from celery.utils.log import get_task_logger
from email.message import EmailMessage
from typing import Optional

from storefront.core.celery_app import celery_app
from storefront.core.config import settings
from storefront.services.side_effects import OrderReceipt
from storefront.utils.email import _send_email_smtp
from storefront.utils.email_templates import (
    order_confirmation_subject,
    order_confirmation_template,
    order_confirmation_text,
)

logger = get_task_logger(__name__)


class EmailTask(Task):
    """
    Base email task with retries and backoff.
    Prevents email loss on temporary SMTP failures.
    """
    autoretry_for = (Exception,)
    retry_kwargs = {"max_retries": 3}
    retry_backoff = True
    retry_backoff_max = 600  # 10 minutes
    retry_jitter = True
    acks_late = True  # retry if worker crashes


def build_email(
    *,
    to: str,
    subject: str,
    text: str,
    html: Optional[str] = None,
    from_email: Optional[str] = None,
) -> EmailMessage:
    msg = EmailMessage()
    msg["Subject"] = subject
    msg["From"] = from_email or f"{settings.EMAILS_FROM_NAME} <{settings.EMAILS_FROM_EMAIL}>"
    msg["To"] = to
    msg.set_content(text)

    if html:
        msg.add_alternative(html, subtype="html")

    return msg


def build_order_confirmation(receipt: OrderReceipt) -> EmailMessage:
    return build_email(
        to=receipt.buyer_email,
        subject=order_confirmation_subject(receipt),
        text=order_confirmation_text(receipt),
        html=order_confirmation_template(receipt),
        from_email=settings.EMAILS_FROM_ORDERS or None,
    )


# The receipt travels as a payload so the worker never re-reads the order.
@celery_app.task(base=EmailTask, bind=True)
def send_order_confirmation(self, receipt_payload: dict):
    receipt = OrderReceipt.from_payload(receipt_payload)
    try:
        _send_email_smtp(build_order_confirmation(receipt))
        logger.info("order_confirmation_sent order_id=%s", receipt.order_id)
    except Exception as exc:
        logger.exception("order_confirmation_error order_id=%s", receipt.order_id)
        raise self.retry(exc=exc)
