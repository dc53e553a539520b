import helpers  # noqa: F401  (path bootstrap)

import unittest
from datetime import date
from decimal import Decimal

from storefront.errors import AuthorizationError
from storefront.external_services import EmailService, ShippingService
from storefront.models import (
    Account,
    BankTransfer,
    CardPayment,
    Cash,
    Invoice,
    InvoiceLine,
    Paypal,
    PickupInStore,
    PostalDelivery,
    Role,
)
from storefront.payment_service import PaymentService
from storefront.session import UserSession


def _account(role=Role.CUSTOMER, phone="0412345678"):
    return Account("carol@example.com", phone, "hash", role, "2026-01-01T00:00:00+00:00")


class TestUserSession(unittest.TestCase):
    def setUp(self):
        self.session = UserSession()

    def test_signed_out_session_has_no_role(self):
        self.assertFalse(self.session.is_user_signed_in)
        self.assertIsNone(self.session.role)
        for role in Role:
            self.assertFalse(self.session.is_user_in_role(role))
        with self.assertRaises(AuthorizationError):
            self.session.authenticated_user

    def test_sign_in_and_out(self):
        self.session.sign_in(_account(Role.STAFF))
        self.assertTrue(self.session.is_user_in_role(Role.STAFF))
        self.assertFalse(self.session.is_user_in_role(Role.ADMIN))
        self.session.sign_out()
        self.assertFalse(self.session.is_user_signed_in)

    def test_refresh_replaces_cached_account(self):
        self.session.sign_in(_account())
        self.session.refresh(_account(phone="0499999999"))
        self.assertEqual(self.session.authenticated_user.phone, "0499999999")


def _invoice(payment, price="2.50", quantity=2):
    return Invoice(
        order_id=7,
        customer_email="carol@example.com",
        lines=(InvoiceLine(1, "Apple", quantity, Decimal(price)),),
        delivery=PickupInStore(),
        payment=payment,
    )


class TestPaymentService(unittest.TestCase):
    def setUp(self):
        self.service = PaymentService(today=lambda: date(2026, 10, 19))

    def test_every_method_is_approved(self):
        cases = [
            (Cash(), "CASH-"),
            (Paypal("carol@example.com"), "PAYPAL-"),
            (CardPayment("4111111111111111", "123", date(2027, 1, 31)), "TXN-"),
            (BankTransfer("062-000", "12345678"), "BANK-"),
        ]
        for payment, prefix in cases:
            with self.subTest(payment=payment):
                approved, reference = self.service.capture(_invoice(payment))
                self.assertTrue(approved)
                self.assertTrue(reference.startswith(prefix))

    def test_expired_card_is_declined(self):
        card = CardPayment("4111111111111111", "123", date(2026, 9, 30))
        with self.assertLogs("storefront.payment_service", level="WARNING") as logs:
            approved, reason = self.service.capture(_invoice(card))
        self.assertFalse(approved)
        self.assertIn("expired", reason)
        record = logs.records[0]
        self.assertEqual(record.getMessage(), "Card declined")
        self.assertEqual(record.extra["amount"], "5.00")

    def test_zero_total_is_approved_without_charging(self):
        expired_card = CardPayment("4111111111111111", "123", date(2026, 9, 30))
        for payment in (Cash(), expired_card):
            with self.subTest(payment=payment):
                approved, reference = self.service.capture(_invoice(payment, price="0.00"))
                self.assertTrue(approved)
                self.assertTrue(reference.startswith("FREE-"))

    def test_negative_total_is_rejected(self):
        approved, reason = self.service.capture(_invoice(Cash(), price="-1.00"))
        self.assertFalse(approved)
        self.assertEqual(reason, "Invalid invoice total")

    def test_refund(self):
        ok, reference = self.service.refund_payment("TXN-1", Decimal("5.00"))
        self.assertTrue(ok)
        self.assertEqual(reference, "REFUND-TXN-1")


class TestInvoiceAndServices(unittest.TestCase):
    def test_invoice_render(self):
        invoice = Invoice(
            order_id=3,
            customer_email="carol@example.com",
            lines=(InvoiceLine(1, "Apple", 3, Decimal("0.80")), InvoiceLine(2, "Bread", 1, Decimal("4.50"))),
            delivery=PostalDelivery(12, "Baker St", "2000", "4"),
            payment=Paypal("carol@example.com"),
        )
        self.assertEqual(invoice.total, Decimal("6.90"))
        text = invoice.render()
        self.assertIn("Total: 6.90 AUD", text)
        self.assertIn("4/12 Baker St 2000", text)
        self.assertIn("PayPal (carol@example.com)", text)

    def test_mock_services_report_success(self):
        invoice = _invoice(Cash())
        self.assertTrue(EmailService().send_invoice(invoice))
        self.assertTrue(ShippingService().start_delivery(invoice.order_id, invoice.delivery))


if __name__ == "__main__":
    unittest.main()
