"""Screens of the interactive storefront.

Each state exposes :meth:`AppState.run`, which keeps the user on the
screen for as many rounds as needed and finally returns exactly one
:class:`Transition` naming the next state.  States that need a role check
it on entry with :meth:`AppState.require_role`; a mismatch signs the
session out and sends the user back to the main menu.

State instances are created once and reused for every visit, so they only
keep references to injected collaborators.
"""

from __future__ import annotations

import logging
from decimal import Decimal
from enum import Enum
from typing import List, NamedTuple, Optional, assert_never

from storefront import validation
from storefront.checkout import CheckoutWorkflow
from storefront.console import ConsoleInputHandler, ConsoleView
from storefront.dao import AccountDAO, OrderDAO, PaymentDAO, ProductDAO
from storefront.errors import StorageError
from storefront.metrics import AUTHORIZATION_FAILURES_TOTAL
from storefront.models import Account, OrderStatus, Product, Role
from storefront.session import UserSession

logger = logging.getLogger(__name__)


class StateName(str, Enum):
    MAIN_MENU = "MainMenu"
    BROWSING = "Browsing"
    SIGN_IN = "SignIn"
    CUSTOMER_PROFILE = "CustomerProfile"
    STAFF_PROFILE = "StaffProfile"
    ADMIN_PROFILE = "AdminProfile"
    MANAGE_INVENTORY = "ManageInventory"
    ORDERING = "Ordering"
    SALES_DATA = "SalesData"
    EXIT = "Exit"


class Transition(NamedTuple):
    source: StateName
    target: StateName


def profile_state_for(role: Role) -> StateName:
    if role is Role.CUSTOMER:
        return StateName.CUSTOMER_PROFILE
    elif role is Role.STAFF:
        return StateName.STAFF_PROFILE
    elif role is Role.ADMIN:
        return StateName.ADMIN_PROFILE
    else:
        assert_never(role)


def show_product(view: ConsoleView, product: Product) -> None:
    view.info("")
    view.info(f"ID [{product.id}] - Availability: {product.inventory_count}")
    view.info(f"{product.name} - {product.price:.2f} AUD")
    if product.description:
        view.info(product.description)


def show_products(view: ConsoleView, products: List[Product]) -> None:
    view.info(f"Displaying {len(products)} product(s):")
    for product in products:
        show_product(view, product)


def _non_empty(text: str) -> bool:
    return bool(text.strip())


class AppState:
    """Base class of all screens."""

    name: StateName
    title: str = "page"

    def __init__(self, session: UserSession, view: ConsoleView, input_handler: ConsoleInputHandler) -> None:
        self._session = session
        self._view = view
        self._input = input_handler

    def run(self) -> Transition:
        raise NotImplementedError

    def transition(self, target: StateName) -> Transition:
        return Transition(self.name, target)

    def require_role(self, *roles: Role) -> Optional[Transition]:
        """Return None when the session holds one of ``roles``.

        Otherwise report the error, sign out and return the transition to
        the main menu that ``run`` must hand back.
        """
        if any(self._session.is_user_in_role(role) for role in roles):
            return None
        logger.warning(
            f"Invalid access to {self.name.value}",
            extra={"state": self.name.value, "extra": {"role": getattr(self._session.role, "value", None)}},
        )
        AUTHORIZATION_FAILURES_TOTAL.inc(state=self.name.value)
        self._view.error(f"Invalid access to {self.title}")
        self._view.info("Signing out")
        self._session.sign_out()
        return self.transition(StateName.MAIN_MENU)


# ------------------------------------------------------------------------------
# Public screens
# ------------------------------------------------------------------------------

class MainMenuState(AppState):
    name = StateName.MAIN_MENU
    title = "main menu"

    def _role_shortcut(self) -> Optional[tuple[str, str, StateName]]:
        role = self._session.role
        if role is None:
            return None
        elif role is Role.CUSTOMER:
            return "O", "Manage your order", StateName.ORDERING
        elif role is Role.STAFF:
            return "P", "Staff profile", StateName.STAFF_PROFILE
        elif role is Role.ADMIN:
            return "P", "Admin profile", StateName.ADMIN_PROFILE
        else:
            assert_never(role)

    def run(self) -> Transition:
        self._view.info("")
        self._view.info("-- All Your Healthy Foods Storefront --")
        if self._session.is_user_signed_in:
            self._view.info(f"Signed in as {self._session.authenticated_user.email}")
        choices = {
            "B": "Browse the catalogue",
            "S": "Account" if self._session.is_user_signed_in else "Sign in or register",
        }
        shortcut = self._role_shortcut()
        if shortcut is not None:
            choices[shortcut[0]] = shortcut[1]
        choices["X"] = "Exit"

        choice = self._input.ask_option(choices)
        if choice == "B":
            return self.transition(StateName.BROWSING)
        if choice == "S":
            return self.transition(StateName.SIGN_IN)
        if shortcut is not None and choice == shortcut[0]:
            return self.transition(shortcut[2])
        return self.transition(StateName.EXIT)


class BrowsingState(AppState):
    name = StateName.BROWSING
    title = "catalogue"

    def __init__(self, session, view, input_handler, products: ProductDAO) -> None:
        super().__init__(session, view, input_handler)
        self._products = products

    def run(self) -> Transition:
        show_products(self._view, self._products.list_products())
        while True:
            choice = self._input.ask_option(
                {
                    "S": "Search products by name",
                    "A": "Show all products",
                    "O": "Order products",
                    "E": "Exit to Main Menu",
                }
            )
            if choice == "S":
                keyword = self._input.ask_text("Enter a keyword").strip()
                show_products(self._view, self._products.list_products(keyword))
            elif choice == "A":
                show_products(self._view, self._products.list_products())
            elif choice == "O":
                if not self._session.is_user_signed_in:
                    self._view.error("Please sign in to place an order")
                    return self.transition(StateName.SIGN_IN)
                if not self._session.is_user_in_role(Role.CUSTOMER):
                    self._view.error("Only customer accounts can place orders")
                    continue
                return self.transition(StateName.ORDERING)
            else:
                return self.transition(StateName.MAIN_MENU)


class SignInState(AppState):
    name = StateName.SIGN_IN
    title = "sign in page"

    def __init__(self, session, view, input_handler, accounts: AccountDAO) -> None:
        super().__init__(session, view, input_handler)
        self._accounts = accounts

    def run(self) -> Transition:
        while True:
            if self._session.is_user_signed_in:
                target = self._signed_in_options()
            else:
                target = self._signed_out_options()
            if target is not None:
                return self.transition(target)

    def _signed_out_options(self) -> Optional[StateName]:
        choice = self._input.ask_option(
            {
                "S": "Sign in with an existing account",
                "C": "Create a new customer account",
                "F": "Forgot password",
                "E": "Exit to Main Menu",
            }
        )
        if choice == "S":
            self._sign_in()
        elif choice == "C":
            self._create_customer_account()
        elif choice == "F":
            self._reset_password()
        else:
            return StateName.MAIN_MENU
        return None

    def _signed_in_options(self) -> Optional[StateName]:
        role = self._session.authenticated_user.role
        choice = self._input.ask_option(
            {
                "S": "Sign Out",
                "V": f"View {role.value.lower()} profile",
                "E": "Exit to Main Menu",
            }
        )
        if choice == "S":
            self._session.sign_out()
            self._view.info("Signed out successfully")
            return None
        if choice == "V":
            return profile_state_for(role)
        return StateName.MAIN_MENU

    def _sign_in(self) -> None:
        email = self._input.ask_text("Enter account email").strip()
        password = self._input.ask_text("Enter password")
        if not email:
            self._view.error("Email must not be empty")
            return
        if not password:
            self._view.error("Password must not be empty")
            return
        if self._accounts.get_account(email) is None:
            self._view.error(f"No account with the email '{email}' exists")
            return
        account = self._accounts.authenticate(email, password)
        if account is None:
            self._view.error("Incorrect password")
            return
        self._session.sign_in(account)
        self._view.info("Successfully signed in")

    def _create_customer_account(self) -> None:
        email = self._input.ask_text("Choose your email").strip()
        phone = self._input.ask_text("Choose your phone number").strip()
        password = self._input.ask_text("Choose your password")
        problems = validation.validate_account_details(email, phone, password)
        if problems:
            self._view.errors(problems)
            return
        if not self._accounts.register_account(email, phone, password, Role.CUSTOMER):
            self._view.error(
                "Failed to register new customer account. Perhaps an account with this email already exists?"
            )
            return
        account = self._accounts.get_account(email)
        if account is None:
            self._view.error("Failed to read back the new account")
            return
        self._session.sign_in(account)
        self._view.info("Successfully signed in")

    def _reset_password(self) -> None:
        email = self._input.ask_until_valid(
            _non_empty, validation.to_stripped, "Enter the email of your account", "Email cannot be empty"
        ).value
        if self._accounts.get_account(email) is None:
            self._view.error(f"No account with the email '{email}' exists")
            return
        # the reset code is e-mailed out of band and not checked here
        self._input.ask_text("Enter the reset code sent to your email")
        new_password = self._input.ask_until_valid(
            lambda text: len(text) >= validation.MIN_PASSWORD_LENGTH,
            str,
            "Enter your new password",
            f"Password must be at least {validation.MIN_PASSWORD_LENGTH} characters long",
        ).value
        if not self._accounts.update_account(email, password=new_password):
            self._view.error("Failed to update the account password")
            return
        account = self._accounts.get_account(email)
        if account is None:
            self._view.error("Failed to update the account password")
            return
        self._session.sign_in(account)
        self._view.info("Successfully signed in")


# ------------------------------------------------------------------------------
# Profiles
# ------------------------------------------------------------------------------

class CustomerProfileState(AppState):
    name = StateName.CUSTOMER_PROFILE
    title = "customer page"

    def __init__(self, session, view, input_handler, accounts: AccountDAO, orders: OrderDAO) -> None:
        super().__init__(session, view, input_handler)
        self._accounts = accounts
        self._orders = orders

    def run(self) -> Transition:
        refused = self.require_role(Role.CUSTOMER)
        if refused is not None:
            return refused
        while True:
            account = self._session.authenticated_user
            self._view.info("Customer Profile")
            self._view.info(f"Email: {account.email}")
            self._view.info(f"Phone: {account.phone}")
            self._view.info(f"Registration Date: {account.registered_at}")
            choice = self._input.ask_option(
                {
                    "V": "View orders",
                    "C": "Change account details",
                    "O": "Manage your pending order",
                    "E": "Exit to Main Menu",
                }
            )
            if choice == "V":
                self._view_orders(account)
            elif choice == "C":
                if not self._change_account_details(account):
                    return self.transition(StateName.MAIN_MENU)
            elif choice == "O":
                return self.transition(StateName.ORDERING)
            else:
                return self.transition(StateName.MAIN_MENU)

    def _view_orders(self, account: Account) -> None:
        orders = self._orders.list_orders_for_customer(account.email)
        if not orders:
            self._view.info("You have no orders")
            return
        for order in orders:
            self._view.info(f"Order [{order.id}] - {order.created_at} - {order.status.value}")
            for line in order.lines:
                name = line.product_name or "<no longer in the catalogue>"
                self._view.info(f"    ID [{line.product_id}] {name} x {line.quantity}")

    def _change_account_details(self, account: Account) -> bool:
        """Edit phone and/or password; False if the session had to be ended."""
        new_phone = self._input.ask_text(
            "Enter your new phone number or press enter if you do not want to change your phone number"
        ).strip()
        new_password = self._input.ask_text(
            "Enter your new password or press enter if you do not want to change your password"
        )
        if not new_phone and not new_password:
            self._view.info("No details changed")
            return True
        if self._accounts.get_account(account.email) is None:
            self._view.error("Unable to find customer account")
            self._view.info("Signing out")
            self._session.sign_out()
            return False
        problems = validation.validate_account_details(
            account.email, new_phone or account.phone, new_password or "x" * validation.MIN_PASSWORD_LENGTH
        )
        if problems:
            self._view.errors(problems)
            return True
        updated = self._accounts.update_account(account.email, phone=new_phone, password=new_password)
        refreshed = self._accounts.get_account(account.email) if updated else None
        if refreshed is None:
            self._view.error("Failed to change customer details.")
            return True
        self._session.refresh(refreshed)
        self._view.info("Successfully changed customer details")
        return True


class StaffProfileState(AppState):
    name = StateName.STAFF_PROFILE
    title = "staff page"

    def run(self) -> Transition:
        refused = self.require_role(Role.STAFF)
        if refused is not None:
            return refused
        account = self._session.authenticated_user
        self._view.info("Staff Profile")
        self._view.info(f"Email: {account.email}")
        choice = self._input.ask_option(
            {
                "I": "Manage inventory",
                "V": "View Sales Data",
                "E": "Exit to Main Menu",
            }
        )
        if choice == "I":
            return self.transition(StateName.MANAGE_INVENTORY)
        if choice == "V":
            return self.transition(StateName.SALES_DATA)
        return self.transition(StateName.MAIN_MENU)


class AdminProfileState(AppState):
    name = StateName.ADMIN_PROFILE
    title = "admin page"

    def __init__(self, session, view, input_handler, accounts: AccountDAO) -> None:
        super().__init__(session, view, input_handler)
        self._accounts = accounts

    def run(self) -> Transition:
        refused = self.require_role(Role.ADMIN)
        if refused is not None:
            return refused
        while True:
            choice = self._input.ask_option(
                {
                    "V": "View all staff accounts",
                    "A": "Alter a staff account",
                    "C": "Create a new staff account",
                    "I": "Manage inventory",
                    "S": "View Sales Data",
                    "E": "Exit to Main Menu",
                }
            )
            if choice == "V":
                self._view_staff_accounts()
            elif choice == "A":
                self._change_staff_account_details()
            elif choice == "C":
                self._create_staff_account()
            elif choice == "I":
                return self.transition(StateName.MANAGE_INVENTORY)
            elif choice == "S":
                return self.transition(StateName.SALES_DATA)
            else:
                return self.transition(StateName.MAIN_MENU)

    def _view_staff_accounts(self) -> None:
        staff_accounts = self._accounts.list_accounts(Role.STAFF)
        self._view.info(f"Displaying {len(staff_accounts)} staff member(s)")
        for staff in staff_accounts:
            self._view.info(f"Email: {staff.email} - Phone: {staff.phone} - Registration Date: {staff.registered_at}")

    def _create_staff_account(self) -> None:
        email = self._input.ask_text("Enter the staff member's email").strip()
        phone = self._input.ask_text("Enter the staff member's phone number").strip()
        password = self._input.ask_text("Enter the account password")
        problems = validation.validate_account_details(email, phone, password)
        if problems:
            self._view.errors(problems)
            return
        if not self._accounts.register_account(email, phone, password, Role.STAFF):
            self._view.error(
                "Failed to register new staff account. Perhaps an account with this email already exists?"
            )
            return
        self._view.info("Successfully created staff account")

    def _change_staff_account_details(self) -> None:
        email = self._input.ask_text("Enter the email of the staff").strip()
        new_phone = self._input.ask_text(
            "Enter the staff member's new phone number or press enter if you do not want to change their phone number"
        ).strip()
        new_password = self._input.ask_text(
            "Enter the staff member's new password or press enter if you do not want to change their password"
        )
        if not email:
            self._view.error("Email cannot be empty")
            return
        if not new_phone and not new_password:
            self._view.info("No details changed")
            return
        staff = self._accounts.get_account(email)
        if staff is None or staff.role is not Role.STAFF:
            self._view.error(f"Unable to find staff account with email '{email}'")
            return
        problems = validation.validate_account_details(
            email, new_phone or staff.phone, new_password or "x" * validation.MIN_PASSWORD_LENGTH
        )
        if problems:
            self._view.errors(problems)
            return
        if not self._accounts.update_account(email, phone=new_phone, password=new_password):
            self._view.error("Failed to change staff member details.")
            return
        self._view.info("Successfully changed staff member details")


# ------------------------------------------------------------------------------
# Staff and admin tools
# ------------------------------------------------------------------------------

class ManageInventoryState(AppState):
    name = StateName.MANAGE_INVENTORY
    title = "inventory page"

    def __init__(self, session, view, input_handler, products: ProductDAO) -> None:
        super().__init__(session, view, input_handler)
        self._products = products

    def run(self) -> Transition:
        refused = self.require_role(Role.STAFF, Role.ADMIN)
        if refused is not None:
            return refused
        show_products(self._view, self._products.list_products())
        while True:
            choice = self._input.ask_option(
                {
                    "C": "Add a New Product to the catalogue",
                    "U": "Update a Products Price",
                    "Q": "Update a Products Quantity",
                    "D": "Delete a Product from the catalogue",
                    "L": "List all products",
                    "E": "Exit to Main Menu",
                }
            )
            if choice == "C":
                self._create_product()
            elif choice == "U":
                self._update_product_price()
            elif choice == "Q":
                self._update_product_quantity()
            elif choice == "D":
                self._delete_product()
            elif choice == "L":
                show_products(self._view, self._products.list_products())
            else:
                return self.transition(StateName.MAIN_MENU)

    def _ask_product_id(self) -> int:
        return self._input.ask_until_valid(
            validation.validate_positive_int,
            validation.to_int,
            "Please type the ID of the product",
            "Invalid input. Input must be a valid product ID",
            "Invalid input. The product ID could not be read as a number",
        ).value

    def _ask_price(self) -> Decimal:
        return self._input.ask_until_valid(
            validation.validate_price,
            validation.to_price,
            "Please type the price of the product",
            "Invalid input. Input must be a valid price such as 4.50",
            "Invalid input. The price could not be read as an amount",
        ).value

    def _ask_quantity(self) -> int:
        return self._input.ask_until_valid(
            validation.validate_count,
            validation.to_int,
            "Please type the quantity of the product",
            "Invalid input. Input must be a whole number",
            "Invalid input. The quantity could not be read as a number",
        ).value

    def _create_product(self) -> None:
        name = self._input.ask_until_valid(
            _non_empty, validation.to_stripped, "Enter the name of the product", "Product name cannot be empty"
        ).value
        description = self._input.ask_text("Enter the description of the product").strip()
        price = self._ask_price()
        inventory_count = self._ask_quantity()
        product_id = self._products.add_product(name, description, price, inventory_count)
        if product_id is None:
            self._view.error("Failed to add the product")
            return
        self._view.info(f"Added product with ID {product_id}.")

    def _update_product_price(self) -> None:
        product_id = self._ask_product_id()
        price = self._ask_price()
        if self._products.get_product(product_id) is None:
            self._view.error("Could not find product with that ID.")
            return
        if not self._products.update_price(product_id, price):
            self._view.error("Failed to update the product")
            return
        show_product(self._view, self._products.get_product(product_id))

    def _update_product_quantity(self) -> None:
        product_id = self._ask_product_id()
        inventory_count = self._ask_quantity()
        if self._products.get_product(product_id) is None:
            self._view.error("Could not find product with that ID.")
            return
        if not self._products.update_stock(product_id, inventory_count):
            self._view.error("Failed to update the product")
            return
        show_product(self._view, self._products.get_product(product_id))

    def _delete_product(self) -> None:
        product_id = self._ask_product_id()
        if self._products.get_product(product_id) is None:
            self._view.error("Could not find product with that ID.")
            return
        if not self._products.delete_product(product_id):
            self._view.error("Failed to delete the product")
            return
        self._view.info(f"Deleted product with ID {product_id}.")


class SalesDataState(AppState):
    name = StateName.SALES_DATA
    title = "sales data page"

    def __init__(self, session, view, input_handler, payments: PaymentDAO, orders: OrderDAO) -> None:
        super().__init__(session, view, input_handler)
        self._payments = payments
        self._orders = orders

    def run(self) -> Transition:
        refused = self.require_role(Role.STAFF, Role.ADMIN)
        if refused is not None:
            return refused
        records = self._payments.list_payments()
        self._view.info(f"Displaying {len(records)} confirmed order(s)")
        total = Decimal("0.00")
        for record in records:
            total += record.amount
            self._view.info(
                f"Order [{record.order_id}] - {record.customer_email} - {record.method} - "
                f"{record.amount:.2f} AUD - {record.timestamp}"
            )
        self._view.info(f"Total sales: {total:.2f} AUD")
        pending = self._orders.list_orders(OrderStatus.UNCONFIRMED)
        self._view.info(f"{len(pending)} order(s) not yet confirmed")
        self._input.ask_option({"B": "Back to profile"})
        return self.transition(profile_state_for(self._session.authenticated_user.role))


# ------------------------------------------------------------------------------
# Ordering
# ------------------------------------------------------------------------------

class OrderingState(AppState):
    name = StateName.ORDERING
    title = "ordering page"

    def __init__(self, session, view, input_handler, workflow: CheckoutWorkflow) -> None:
        super().__init__(session, view, input_handler)
        self._workflow = workflow

    def run(self) -> Transition:
        refused = self.require_role(Role.CUSTOMER)
        if refused is not None:
            return refused
        email = self._session.authenticated_user.email
        while True:
            # always re-read: a failed commit leaves nothing trustworthy in memory
            try:
                order = self._workflow.existing_order(email)
            except StorageError:
                self._view.error("Unable to read your orders right now. Please try again later.")
                return self.transition(StateName.BROWSING)
            choices = {"B": "Back to Browsing"}
            if order is not None:
                choices.update(
                    {
                        "V": "View Order",
                        "E": "Edit Order",
                        "D": "Delete existing order and make a new one",
                        "C": "Confirm Order",
                    }
                )
                choice = self._input.ask_option(choices)
                if choice == "V":
                    self._workflow.view_order(order)
                elif choice == "E":
                    self._workflow.edit_order(order)
                elif choice == "D":
                    self._workflow.restart_order(order)
                elif choice == "C":
                    self._workflow.confirm_order(order)
                else:
                    return self.transition(StateName.BROWSING)
            else:
                self._view.info("You have no pending order")
                choices["A"] = "Add Order"
                choice = self._input.ask_option(choices)
                if choice == "A":
                    self._workflow.start_new_order(email)
                else:
                    return self.transition(StateName.BROWSING)
