# payment_service.py
"""
Payment service simulation used by the storefront checkout.

- One capture routine per payment method variant (cash/PayPal/card/bank).
- Card payments are declined once the card has expired.
- Refund API for compensating rollback when an order cannot be committed
  after its payment was approved.

NOTE: This is *mock* code; no real gateways are called.
"""

from __future__ import annotations

import logging
from datetime import date, datetime, UTC
from decimal import Decimal
from typing import Callable, Optional, Tuple, assert_never

from storefront.models import (
    BankTransfer,
    Cash,
    CardPayment,
    Invoice,
    PaymentMethod,
    Paypal,
    payment_label,
)

logger = logging.getLogger(__name__)


def _reference(prefix: str) -> str:
    return f"{prefix}-{int(datetime.now(UTC).timestamp() * 1000)}"


class PaymentService:
    """Captures invoice totals through the method the customer picked.

    Args:
        today: Clock used for card expiry checks; defaults to ``date.today``.
    """

    def __init__(self, today: Optional[Callable[[], date]] = None) -> None:
        self._today = today or date.today

    def _capture_card(self, card: CardPayment, amount: Decimal) -> Tuple[bool, str]:
        if card.expiry < self._today():
            logger.warning(
                "Card declined",
                extra={"extra": {"reason": "expired", "expiry": card.expiry.isoformat(), "amount": str(amount)}},
            )
            return False, "Card authorization failed (card expired)"
        return True, _reference("TXN")

    def _capture(self, payment: PaymentMethod, amount: Decimal) -> Tuple[bool, str]:
        if isinstance(payment, Cash):
            # Collected on pickup or delivery
            return True, _reference("CASH")
        elif isinstance(payment, Paypal):
            return True, _reference("PAYPAL")
        elif isinstance(payment, CardPayment):
            return self._capture_card(payment, amount)
        elif isinstance(payment, BankTransfer):
            return True, _reference("BANK")
        else:
            assert_never(payment)

    def capture(self, invoice: Invoice) -> Tuple[bool, str]:
        """Attempt to take payment for an invoice.

        Returns:
            ``(approved, reference)`` on success or ``(False, reason)``.
        """
        if invoice.total < 0:
            return False, "Invalid invoice total"
        if invoice.total == 0:
            # Free orders skip the gateway
            approved, ref_or_reason = True, _reference("FREE")
        else:
            approved, ref_or_reason = self._capture(invoice.payment, invoice.total)
        logger.info(
            "Payment capture",
            extra={
                "user_email": invoice.customer_email,
                "extra": {
                    "order_id": invoice.order_id,
                    "method": payment_label(invoice.payment),
                    "amount": str(invoice.total),
                    "approved": approved,
                },
            },
        )
        return approved, ref_or_reason

    def refund_payment(self, reference: str, amount: Decimal) -> Tuple[bool, str]:
        """
        Mock refund used for compensating rollback (e.g., DB commit fails
        *after* payment approval). Always succeeds here.
        """
        logger.warning("Refunding payment", extra={"extra": {"reference": reference, "amount": str(amount)}})
        return True, f"REFUND-{reference}"
