"""Order assembly and checkout.

A customer has at most one unconfirmed (draft) order.  The workflow
collects ``<product id>-<quantity>`` pairs into a disconnected copy of
the draft, reconciles it with the live inventory and only then writes it
in a single transaction.  Confirming a draft asks for a delivery and a
payment method, builds an invoice, e-mails it and captures the payment.

Nothing here holds a lock between prompts: stock is re-read before every
commit, and the confirmation commit decrements stock conditionally.
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from storefront import validation
from storefront.console import ABORTED, SENTINEL_KEY, ConsoleInputHandler, ConsoleView, Valid
from storefront.dao import OrderDAO, ProductDAO
from storefront.errors import StorageError, ValidationError
from storefront.external_services import EmailService, ShippingService
from storefront.metrics import CHECKOUT_OUTCOMES_TOTAL, RECONCILIATION_PROBLEMS_TOTAL
from storefront.models import (
    BankTransfer,
    CardPayment,
    Cash,
    DeliveryMethod,
    Order,
    PaymentMethod,
    Paypal,
    PickupInStore,
    PostalDelivery,
    Product,
    Reconciliation,
    build_invoice,
    payment_label,
    reconcile_lines,
)

logger = logging.getLogger(__name__)


class CheckoutStage(str, Enum):
    NO_ORDER = "NoOrder"
    ASSEMBLING = "Assembling"
    VALIDATING = "Validating"
    EDITING = "Editing"
    CONFIRMING = "Confirming"
    FULFILLED = "Fulfilled"
    ABORTED = "Aborted"


class FieldSpec(NamedTuple):
    """One validated field of a delivery or payment form."""

    prompt: str
    validate: Callable[[str], bool]
    convert: Callable[[str], Any]
    error: str
    conversion_error: Optional[str] = None


_POSTAL_FIELDS = (
    FieldSpec("Enter your address number", validation.validate_digits, validation.to_int,
              "Street number is invalid."),
    FieldSpec("Enter your address street name", validation.validate_street_name, validation.to_stripped,
              "Street name is invalid."),
    FieldSpec("Enter your postal code", validation.validate_postal_code, validation.to_stripped,
              "Postal code is invalid."),
    FieldSpec("Enter your apartment number (if applicable)", validation.validate_apartment_number,
              validation.to_apartment_number, "Apartment number is invalid."),
)

_PAYPAL_FIELDS = (
    FieldSpec("Enter your PayPal email or phone number:", validation.validate_paypal_handle,
              validation.to_stripped, "PayPal username is invalid."),
)

_CARD_FIELDS = (
    FieldSpec("Enter your card number:", validation.validate_card_number, validation.to_card_number,
              "Card number is invalid.", "Card number could not be read."),
    FieldSpec("Enter your card CVC:", validation.validate_cvc, validation.to_stripped,
              "Card CVC is invalid."),
    FieldSpec("Enter your card expiry date (MM/YY):", validation.validate_card_expiry_date,
              validation.to_card_expiry_date, "Card Expiry Date is invalid.",
              "Card Expiry Date could not be read. Use MM/YY."),
)

_BANK_FIELDS = (
    FieldSpec("Enter your BSB:", validation.validate_bsb, validation.to_bsb, "BSB is invalid.",
              "BSB could not be read. Use the form 062-000."),
    FieldSpec("Enter your account number:", validation.validate_account_number, validation.to_stripped,
              "Account number is invalid."),
)


class CheckoutWorkflow:
    """Drives draft creation, editing, deletion and confirmation."""

    def __init__(
        self,
        view: ConsoleView,
        input_handler: ConsoleInputHandler,
        products: ProductDAO,
        orders: OrderDAO,
        payment_service,
        email_service: Optional[EmailService] = None,
        shipping_service: Optional[ShippingService] = None,
    ) -> None:
        self._view = view
        self._input = input_handler
        self._products = products
        self._orders = orders
        self._payments = payment_service
        self._email = email_service or EmailService()
        self._shipping = shipping_service or ShippingService()

    def _stage(self, stage: CheckoutStage, order: Order) -> None:
        logger.info(
            f"Checkout stage {stage.value}",
            extra={"user_email": order.customer_email, "extra": {"stage": stage.value, "order_id": order.id}},
        )

    def _abort(self, order: Order, outcome: str) -> bool:
        self._stage(CheckoutStage.ABORTED, order)
        CHECKOUT_OUTCOMES_TOTAL.inc(outcome=outcome)
        return False

    # ---- Fetch ----

    def existing_order(self, customer_email: str) -> Optional[Order]:
        """Return the customer's draft order read fresh from storage."""
        return self._orders.get_unconfirmed_order(customer_email)

    def view_order(self, order: Order) -> None:
        self._view.info(f"Pending order [{order.id}]")
        self._view.info(f"Creation date: {order.created_at}")
        self._view.info("Items:")
        for line in order.lines:
            name = line.product_name or "<no longer in the catalogue>"
            self._view.info(f"ID [{line.product_id}] {name} - Quantity: {line.quantity}")

    # ---- Line editing ----

    def collect_lines(self, order: Order, prompt: str = "Enter the product ID and quantity") -> None:
        """Read ``<product id>-<quantity>`` pairs into ``order`` until the sentinel key.

        A product entered again replaces its earlier quantity.
        """
        self._view.info(
            "Type the list of product ID - quantity pairs of items you'd like to purchase. "
            f"Type [{SENTINEL_KEY}] when you are finished."
        )
        self._view.info("For example: type '1-2' to order 2 of the product with ID 1")
        while True:
            result = self._input.try_ask_text(
                validation.validate_hyphen_separated_number_pair,
                validation.to_hyphen_separated_int_pair,
                prompt,
                "Input must be a pair of hyphen-separated numbers with a positive quantity",
            )
            if isinstance(result, Valid):
                product_id, quantity = result.value
                if order.set_line(product_id, quantity):
                    self._view.info(f"Quantity of product ID [{product_id}] changed to {quantity}")
                else:
                    self._view.info(f"Added {quantity} of product ID [{product_id}]")
            if not self._input.ask_continue("finish"):
                break

    # ---- Reconciliation ----

    def reconcile(self, order: Order) -> Optional[Reconciliation]:
        """Compare the order with the current stock of the products it references.

        Returns None when the stock could not be read.
        """
        stock_levels = self._products.get_stock_levels(order.product_ids())
        if stock_levels is None:
            return None
        return reconcile_lines(order.quantities(), stock_levels)

    def _check(self, order: Order, reconciliation: Optional[Reconciliation]) -> bool:
        self._stage(CheckoutStage.VALIDATING, order)
        if reconciliation is None:
            self._view.error("Failed to check the inventory")
            return self._abort(order, "storage_failure")
        try:
            reconciliation.raise_if_invalid()
        except ValidationError as ex:
            for _ in reconciliation.unknown_ids:
                RECONCILIATION_PROBLEMS_TOTAL.inc(kind="unknown_product")
            for _ in reconciliation.insufficient:
                RECONCILIATION_PROBLEMS_TOTAL.inc(kind="insufficient_stock")
            self._view.errors(ex.problems)
            self._view.error("Ordered items are invalid")
            return self._abort(order, "rejected")
        return True

    # ---- Commit ----

    def start_new_order(self, customer_email: str) -> bool:
        """Assemble, validate and store a new draft order."""
        order = Order(customer_email=customer_email)
        try:
            pending = self.existing_order(customer_email)
        except StorageError:
            self._view.error("Failed to process order")
            return self._abort(order, "storage_failure")
        if pending is not None:
            self._view.error("You already have a pending order")
            return False
        self._stage(CheckoutStage.ASSEMBLING, order)
        self.collect_lines(order)
        if not order.lines:
            self._view.info("No items added to order")
            return self._abort(order, "empty")
        if not self._check(order, self.reconcile(order)):
            return False
        self._view.info("Saving new order")
        order_id = self._orders.create_order(order)
        if order_id is None:
            self._view.error("Failed to process order")
            return self._abort(order, "storage_failure")
        order.id = order_id
        CHECKOUT_OUTCOMES_TOTAL.inc(outcome="created")
        self._view.info(f"Order [{order_id}] saved")
        return True

    def edit_order(self, order: Order) -> bool:
        """Remove and update lines of an existing draft and store the result."""
        self._stage(CheckoutStage.EDITING, order)
        result = self._input.try_ask_text(
            validation.validate_comma_separated_number_list,
            validation.to_comma_separated_int_list,
            "Enter a comma separated list of IDs of products to be removed. "
            "Press [Enter] if you do not wish to remove any product",
            "Invalid input. Please type in a list of comma-separated product IDs or press [Enter]",
        )
        if not isinstance(result, Valid):
            return self._abort(order, "invalid_input")
        to_remove: List[int] = result.value
        current_ids = set(order.product_ids())
        not_in_order = [pid for pid in to_remove if pid not in current_ids]
        if not_in_order:
            self._view.error(
                "The following product IDs cannot be removed because they are not in the order: "
                + ", ".join(str(pid) for pid in not_in_order)
            )
            return self._abort(order, "invalid_input")
        order.remove_lines(set(to_remove))

        self.collect_lines(order, "Enter the product ID and new quantity")
        remaining_ids = set(order.product_ids())
        removed = [pid for pid in to_remove if pid not in remaining_ids]
        if not order.lines:
            self._view.info("No items left in the order")
            return self.delete_order(order)
        if not self._check(order, self.reconcile(order)):
            return False
        if not self._orders.update_order(order, removed):
            self._view.error("Failed to process order")
            return self._abort(order, "storage_failure")
        CHECKOUT_OUTCOMES_TOTAL.inc(outcome="updated")
        self._view.info(f"Order [{order.id}] updated")
        return True

    def delete_order(self, order: Order) -> bool:
        self._view.info(f"Erasing order [{order.id}]")
        if order.id is None or not self._orders.delete_order(order.id):
            self._view.error("Failed to delete the order")
            return False
        CHECKOUT_OUTCOMES_TOTAL.inc(outcome="deleted")
        return True

    def restart_order(self, order: Order) -> bool:
        """Delete the current draft and assemble a new one."""
        if not self.delete_order(order):
            return False
        return self.start_new_order(order.customer_email)

    # ---- Confirmation ----

    def confirm_order(self, order: Order) -> bool:
        """Choose delivery and payment, invoice the order and take payment.

        On success the order moves into delivery.  On a declined payment
        or a failed commit the order stays unconfirmed; a payment that was
        already captured is refunded.
        """
        self._stage(CheckoutStage.CONFIRMING, order)
        if order.id is None or not order.lines:
            self._view.error("The order has no items")
            return self._abort(order, "empty")
        products: Optional[Dict[int, Product]] = self._products.get_products(order.product_ids())
        reconciliation = None
        if products is not None:
            stock_levels = {pid: p.inventory_count for pid, p in products.items()}
            reconciliation = reconcile_lines(order.quantities(), stock_levels)
        if not self._check(order, reconciliation):
            return False

        delivery = self.ask_delivery_method()
        payment = self.ask_payment_method()
        invoice = build_invoice(order, products, delivery, payment)
        self._view.info(invoice.render())
        self._email.send_invoice(invoice)

        approved, ref_or_reason = self._payments.capture(invoice)
        if not approved:
            self._view.error(ref_or_reason)
            self._view.info("An error occurred whilst processing your order")
            return self._abort(order, "payment_declined")

        if not self._orders.confirm_order(order, payment_label(payment), ref_or_reason, invoice.total):
            self._payments.refund_payment(ref_or_reason, invoice.total)
            self._view.info("An error occurred whilst processing your order")
            return self._abort(order, "storage_failure")

        self._shipping.start_delivery(order.id, delivery)
        self._stage(CheckoutStage.FULFILLED, order)
        CHECKOUT_OUTCOMES_TOTAL.inc(outcome="confirmed")
        self._view.info("Order successfully placed")
        return True

    def _ask_fields(self, fields, return_to: str) -> Optional[List[Any]]:
        """Ask each field until valid; None if the user typed the sentinel key."""
        values: List[Any] = []
        for spec in fields:
            result = self._input.ask_until_valid(
                spec.validate,
                spec.convert,
                spec.prompt,
                spec.error,
                spec.conversion_error,
                abort_action=f"return to {return_to}",
            )
            if result is ABORTED:
                return None
            values.append(result.value)
        return values

    def ask_delivery_method(self) -> DeliveryMethod:
        while True:
            choice = self._input.ask_option(
                {"P": "Pick up at store", "D": "Postal delivery"},
                "Please select a delivery method",
            )
            if choice == "P":
                return PickupInStore()
            values = self._ask_fields(_POSTAL_FIELDS, "delivery options")
            if values is not None:
                street_number, street_name, postal_code, apartment = values
                return PostalDelivery(street_number, street_name, postal_code, apartment)

    def ask_payment_method(self) -> PaymentMethod:
        while True:
            choice = self._input.ask_option(
                {"P": "Paypal", "A": "Cash", "B": "Bank Transfer", "C": "Credit Card"},
                "Please select a payment method",
            )
            if choice == "A":
                return Cash()
            if choice == "P":
                values = self._ask_fields(_PAYPAL_FIELDS, "payment options")
                if values is not None:
                    return Paypal(*values)
            elif choice == "C":
                values = self._ask_fields(_CARD_FIELDS, "payment options")
                if values is not None:
                    return CardPayment(*values)
            elif choice == "B":
                values = self._ask_fields(_BANK_FIELDS, "payment options")
                if values is not None:
                    return BankTransfer(*values)
