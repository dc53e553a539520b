import helpers  # noqa: F401  (path bootstrap)

import sqlite3
import unittest
from datetime import date
from decimal import Decimal
from unittest import mock

from helpers import Store, fresh_db, remove_db, scripted_console
from storefront.checkout import CheckoutWorkflow
from storefront.metrics import CHECKOUT_OUTCOMES_TOTAL, RECONCILIATION_PROBLEMS_TOTAL
from storefront.models import CardPayment, Order, OrderStatus, PostalDelivery
from storefront.payment_service import PaymentService

EMAIL = "carol@example.com"


class CheckoutTestCase(unittest.TestCase):
    """Real DAOs against a temp SQLite file, console driven by scripted lines."""

    def setUp(self):
        self.db_path = fresh_db()
        self.store = Store(self.db_path)
        self.store.seed_accounts()
        self.apple = self.store.add_product("Apple", "0.80", 10)
        self.bread = self.store.add_product("Bread", "4.50", 3)
        self.payment_service = PaymentService(today=lambda: date(2026, 10, 19))

    def tearDown(self):
        remove_db(self.db_path)

    def workflow(self, lines):
        view, handler, self.out = scripted_console(lines)
        return CheckoutWorkflow(view, handler, self.store.products, self.store.orders, self.payment_service)

    def stored_draft(self, **quantities):
        order = Order(customer_email=EMAIL)
        for name, quantity in quantities.items():
            order.set_line(getattr(self, name), quantity)
        order_id = self.store.orders.create_order(order)
        self.assertIsNotNone(order_id)
        return self.store.orders.get_order(order_id)

    @property
    def output(self):
        return self.out.getvalue()


class TestNewOrder(CheckoutTestCase):
    def test_repeated_product_keeps_last_quantity(self):
        workflow = self.workflow([f"{self.apple}-2", "", f"{self.apple}-5", "q"])
        self.assertTrue(workflow.start_new_order(EMAIL))
        stored = self.store.orders.get_unconfirmed_order(EMAIL)
        self.assertEqual(stored.quantities(), {self.apple: 5})
        self.assertIn(f"Quantity of product ID [{self.apple}] changed to 5", self.output)

    def test_malformed_pairs_are_reprompted(self):
        workflow = self.workflow(["banana", "", f"{self.bread}-0", "", f"{self.bread}-1", "Q"])
        self.assertTrue(workflow.start_new_order(EMAIL))
        self.assertEqual(self.output.count("Input must be a pair of hyphen-separated numbers"), 2)
        self.assertEqual(self.store.orders.get_unconfirmed_order(EMAIL).quantities(), {self.bread: 1})

    def test_reconciliation_reports_every_problem_and_stores_nothing(self):
        self.store.products.update_stock(self.apple, 5)
        self.store.products.update_stock(self.bread, 0)
        unknown_before = RECONCILIATION_PROBLEMS_TOTAL.value(kind="unknown_product")
        workflow = self.workflow(
            [f"{self.apple}-3", "", f"{self.bread}-1", "", "999-1", "q"]
        )
        self.assertFalse(workflow.start_new_order(EMAIL))
        self.assertIn("The following product IDs do not exist: 999", self.output)
        self.assertIn(
            f"Invalid purchase quantity for product with ID [{self.bread}] (only 0 are available)",
            self.output,
        )
        self.assertNotIn(f"product with ID [{self.apple}]", self.output)
        self.assertIn("Ordered items are invalid", self.output)
        self.assertIsNone(self.store.orders.get_unconfirmed_order(EMAIL))
        self.assertEqual(RECONCILIATION_PROBLEMS_TOTAL.value(kind="unknown_product"), unknown_before + 1)

    def test_no_items(self):
        workflow = self.workflow(["", "q"])
        self.assertFalse(workflow.start_new_order(EMAIL))
        self.assertIn("No items added to order", self.output)

    def test_second_draft_refused(self):
        self.stored_draft(apple=1)
        workflow = self.workflow([])
        self.assertFalse(workflow.start_new_order(EMAIL))
        self.assertIn("You already have a pending order", self.output)

    def test_storage_failure_reported(self):
        workflow = self.workflow([f"{self.apple}-1", "q"])
        with mock.patch.object(self.store.orders, "create_order", return_value=None):
            self.assertFalse(workflow.start_new_order(EMAIL))
        self.assertIn("Failed to process order", self.output)
        self.assertIsNone(self.store.orders.get_unconfirmed_order(EMAIL))

    def test_unreadable_draft_blocks_a_new_order(self):
        failures_before = CHECKOUT_OUTCOMES_TOTAL.value(outcome="storage_failure")
        workflow = self.workflow([])
        with mock.patch.object(self.store.orders, "_connect", side_effect=sqlite3.OperationalError("disk I/O error")):
            self.assertFalse(workflow.start_new_order(EMAIL))
        self.assertIn("Failed to process order", self.output)
        self.assertNotIn("Enter the product ID and quantity", self.output)
        self.assertEqual(CHECKOUT_OUTCOMES_TOTAL.value(outcome="storage_failure"), failures_before + 1)


class TestEditOrder(CheckoutTestCase):
    def test_remove_and_update_lines(self):
        order = self.stored_draft(apple=2, bread=1)
        workflow = self.workflow([f"{self.bread}", f"{self.apple}-4", "q"])
        self.assertTrue(workflow.edit_order(order))
        self.assertEqual(self.store.orders.get_order(order.id).quantities(), {self.apple: 4})

    def test_removing_unknown_line_is_refused(self):
        order = self.stored_draft(apple=2)
        workflow = self.workflow(["42"])
        self.assertFalse(workflow.edit_order(order))
        self.assertIn("cannot be removed because they are not in the order: 42", self.output)
        self.assertEqual(self.store.orders.get_order(order.id).quantities(), {self.apple: 2})

    def test_removing_every_line_deletes_the_order(self):
        order = self.stored_draft(apple=2, bread=1)
        workflow = self.workflow([f"{self.apple}, {self.bread}", "", "q"])
        self.assertTrue(workflow.edit_order(order))
        self.assertIn("No items left in the order", self.output)
        self.assertIsNone(self.store.orders.get_unconfirmed_order(EMAIL))

    def test_edit_exceeding_stock_keeps_stored_order(self):
        order = self.stored_draft(apple=2)
        workflow = self.workflow(["", f"{self.bread}-4", "q"])
        self.assertFalse(workflow.edit_order(order))
        self.assertIn("(only 3 are available)", self.output)
        self.assertEqual(self.store.orders.get_order(order.id).quantities(), {self.apple: 2})

    def test_delete_then_no_existing_order(self):
        order = self.stored_draft(apple=1)
        workflow = self.workflow([])
        self.assertTrue(workflow.delete_order(order))
        self.assertIsNone(workflow.existing_order(EMAIL))


class TestConfirmOrder(CheckoutTestCase):
    def test_pickup_and_cash_never_ask_for_details(self):
        order = self.stored_draft(apple=2, bread=1)
        confirmed_before = CHECKOUT_OUTCOMES_TOTAL.value(outcome="confirmed")
        workflow = self.workflow(["P", "A"])
        self.assertTrue(workflow.confirm_order(order))
        self.assertNotIn("Enter your address number", self.output)
        self.assertNotIn("Enter your card number", self.output)
        self.assertIn("Total: 6.10 AUD", self.output)
        self.assertIn("Order successfully placed", self.output)

        self.assertEqual(self.store.orders.get_order(order.id).status, OrderStatus.IN_DELIVERY)
        self.assertEqual(self.store.products.get_product(self.apple).inventory_count, 8)
        self.assertEqual(self.store.products.get_product(self.bread).inventory_count, 2)
        payment = self.store.payments.get_payment_for_order(order.id)
        self.assertEqual((payment.method, payment.amount), ("Cash", Decimal("6.10")))
        self.assertEqual(CHECKOUT_OUTCOMES_TOTAL.value(outcome="confirmed"), confirmed_before + 1)

    def test_free_order_is_confirmed(self):
        self.sample = self.store.add_product("Sample", "0.00", 5)
        order = self.stored_draft(sample=1)
        workflow = self.workflow(["P", "A"])
        self.assertTrue(workflow.confirm_order(order))
        self.assertIn("Total: 0.00 AUD", self.output)
        self.assertNotIn("An error occurred whilst processing your order", self.output)
        self.assertEqual(self.store.orders.get_order(order.id).status, OrderStatus.IN_DELIVERY)
        self.assertEqual(self.store.products.get_product(self.sample).inventory_count, 4)
        payment = self.store.payments.get_payment_for_order(order.id)
        self.assertEqual(payment.amount, Decimal("0.00"))
        self.assertTrue(payment.reference.startswith("FREE-"))

    def test_sentinel_during_postal_entry_returns_to_delivery_choice(self):
        order = self.stored_draft(apple=1)
        workflow = self.workflow(["D", "12", "?", "q", "P", "A"])
        self.assertTrue(workflow.confirm_order(order))
        self.assertEqual(self.output.count("Please select a delivery method"), 2)
        self.assertIn("Street name is invalid.", self.output)
        self.assertIn("Delivery: Pick up at store", self.output)

    def test_postal_delivery_fields(self):
        workflow = self.workflow(["D", "12", "Baker St", "2000", ""])
        self.assertEqual(workflow.ask_delivery_method(), PostalDelivery(12, "Baker St", "2000", None))

    def test_card_payment_fields(self):
        workflow = self.workflow(["C", "4111 1111 1111 1111", "123", "12/2099"])
        self.assertEqual(
            workflow.ask_payment_method(),
            CardPayment("4111111111111111", "123", date(2099, 12, 31)),
        )

    def test_sentinel_during_payment_entry_returns_to_payment_choice(self):
        workflow = self.workflow(["B", "1", "q", "A"])
        workflow.ask_payment_method()
        self.assertEqual(self.output.count("Please select a payment method"), 2)

    def test_declined_payment_leaves_order_unconfirmed(self):
        self.payment_service = PaymentService(today=lambda: date(2100, 1, 1))
        order = self.stored_draft(apple=1)
        workflow = self.workflow(["P", "C", "4111111111111111", "123", "12/99"])
        self.assertFalse(workflow.confirm_order(order))
        self.assertIn("Card authorization failed (card expired)", self.output)
        self.assertIn("An error occurred whilst processing your order", self.output)
        self.assertEqual(self.store.orders.get_order(order.id).status, OrderStatus.UNCONFIRMED)
        self.assertEqual(self.store.products.get_product(self.apple).inventory_count, 10)

    def test_failed_commit_refunds_payment(self):
        order = self.stored_draft(apple=1)
        workflow = self.workflow(["P", "A"])
        with mock.patch.object(self.store.orders, "confirm_order", return_value=False), \
                mock.patch.object(self.payment_service, "refund_payment",
                                  wraps=self.payment_service.refund_payment) as refund:
            self.assertFalse(workflow.confirm_order(order))
        refund.assert_called_once()
        self.assertEqual(self.store.orders.get_order(order.id).status, OrderStatus.UNCONFIRMED)
        self.assertIsNone(self.store.payments.get_payment_for_order(order.id))

    def test_product_removed_from_catalogue_blocks_confirmation(self):
        order = self.stored_draft(apple=1, bread=1)
        self.store.products.delete_product(self.bread)
        workflow = self.workflow([])
        self.assertFalse(workflow.confirm_order(order))
        self.assertIn(f"The following product IDs do not exist: {self.bread}", self.output)


if __name__ == "__main__":
    unittest.main()
