from typing import Optional

import structlog
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from storefront.models.payment import Payment, PaymentProvider, PaymentStatus
from storefront.services.results import PaymentAlreadyRecorded

logger = structlog.get_logger()


class PaymentLedger:
    """Payments keyed by (provider, provider_ref); at most one order per payment."""

    def __init__(self, db: Session):
        self.db = db

    def find_existing_order_for(self, provider: PaymentProvider, provider_ref: str) -> Optional[str]:
        payment = (
            self.db.query(Payment)
            .filter(Payment.provider == provider, Payment.provider_ref == provider_ref)
            .first()
        )
        return payment.order_id if payment else None

    def record(
        self,
        order_id: str,
        provider: PaymentProvider,
        provider_ref: str,
        amount_cents: int,
        currency: str,
        status: PaymentStatus = PaymentStatus.SUCCEEDED,
    ) -> Payment:
        """
        Insert-only. Flushes immediately so a duplicate (provider, provider_ref)
        surfaces here as PaymentAlreadyRecorded; the caller owns the rollback.
        """
        payment = Payment(
            order_id=order_id,
            provider=provider,
            provider_ref=provider_ref,
            amount_cents=amount_cents,
            currency=currency,
            status=status,
        )
        self.db.add(payment)
        try:
            self.db.flush()
        except IntegrityError as exc:
            logger.warning(
                "payment_already_recorded",
                provider=provider.value,
                provider_ref=provider_ref,
                order_id=order_id,
            )
            raise PaymentAlreadyRecorded(provider.value, provider_ref) from exc
        return payment
