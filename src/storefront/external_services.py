"""
Mock external service integrations for invoice e-mail and shipping.

In a real system these classes would call a mail provider and a courier
API.  Here they only log the call so the side effect is visible in the
application log, and report success.
"""

from __future__ import annotations

import logging
import time

from storefront.models import DeliveryMethod, Invoice, describe_delivery

logger = logging.getLogger(__name__)


class EmailService:
    """Simulate sending the invoice to the customer."""

    def send_invoice(self, invoice: Invoice) -> bool:
        logger.info(
            f"Emailing invoice for order {invoice.order_id}",
            extra={
                "user_email": invoice.customer_email,
                "extra": {"order_id": invoice.order_id, "invoice": invoice.render()},
            },
        )
        return True


class ShippingService:
    """Simulate handing a confirmed order over to fulfillment.

    Pickup orders are prepared in store; postal orders get a pseudo
    tracking number.
    """

    def start_delivery(self, order_id: int, delivery: DeliveryMethod) -> bool:
        tracking_number = f"SHIP-{int(time.time() * 1000)}"
        logger.info(
            f"Starting delivery for order {order_id}",
            extra={
                "extra": {
                    "order_id": order_id,
                    "delivery": describe_delivery(delivery),
                    "tracking_number": tracking_number,
                }
            },
        )
        return True
