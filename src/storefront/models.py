"""Domain models shared by the persistence layer, the states and checkout."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, UTC
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional, Set, Tuple, Union, assert_never

from storefront.errors import ValidationError


class Role(str, Enum):
    CUSTOMER = "Customer"
    STAFF = "Staff"
    ADMIN = "Admin"


class OrderStatus(str, Enum):
    UNCONFIRMED = "Unconfirmed"
    IN_DELIVERY = "InDelivery"


@dataclass
class Account:
    email: str
    phone: str
    password_hash: str
    role: Role
    registered_at: str


@dataclass
class Product:
    id: int
    name: str
    description: str
    price: Decimal
    inventory_count: int


@dataclass
class OrderLine:
    product_id: int
    quantity: int
    # Filled in when an order is read back from storage
    product_name: Optional[str] = None
    unit_price: Optional[Decimal] = None


@dataclass
class Order:
    """An order and its lines.

    Instances are disconnected copies of what is stored; they are never
    written back implicitly.
    """

    customer_email: str
    id: Optional[int] = None
    created_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())
    status: OrderStatus = OrderStatus.UNCONFIRMED
    lines: List[OrderLine] = field(default_factory=list)

    def set_line(self, product_id: int, quantity: int) -> bool:
        """Set the quantity for a product, replacing any previous value.

        Returns True when an existing line was updated and False when a
        new line was appended.
        """
        if quantity <= 0:
            raise ValueError("Quantity must be positive")
        for line in self.lines:
            if line.product_id == product_id:
                line.quantity = quantity
                return True
        self.lines.append(OrderLine(product_id=product_id, quantity=quantity))
        return False

    def remove_lines(self, product_ids: Set[int]) -> None:
        self.lines = [line for line in self.lines if line.product_id not in product_ids]

    def product_ids(self) -> List[int]:
        return [line.product_id for line in self.lines]

    def quantities(self) -> Dict[int, int]:
        return {line.product_id: line.quantity for line in self.lines}


@dataclass
class Reconciliation:
    """Result of comparing order lines with the live inventory."""

    unknown_ids: List[int] = field(default_factory=list)
    # product id -> units actually available
    insufficient: Dict[int, int] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.unknown_ids and not self.insufficient

    @property
    def problems(self) -> List[str]:
        messages: List[str] = []
        if self.unknown_ids:
            ids = ", ".join(str(pid) for pid in self.unknown_ids)
            messages.append(f"The following product IDs do not exist: {ids}")
        for product_id, available in self.insufficient.items():
            messages.append(
                f"Invalid purchase quantity for product with ID [{product_id}] "
                f"(only {available} are available)"
            )
        return messages

    def raise_if_invalid(self) -> None:
        if not self.ok:
            raise ValidationError(self.problems)


def reconcile_lines(quantities: Dict[int, int], stock_levels: Dict[int, int]) -> Reconciliation:
    """Check requested quantities against the stock of the referenced products.

    Product ids missing from ``stock_levels`` are reported once as unknown
    and excluded from the quantity check.
    """
    result = Reconciliation()
    for product_id, quantity in quantities.items():
        if product_id not in stock_levels:
            result.unknown_ids.append(product_id)
        elif quantity > stock_levels[product_id]:
            result.insufficient[product_id] = stock_levels[product_id]
    return result


# ------------------------------------------------------------------------------
# Delivery methods
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class PickupInStore:
    pass


@dataclass(frozen=True)
class PostalDelivery:
    street_number: int
    street_name: str
    postal_code: str
    apartment: Optional[str] = None


DeliveryMethod = Union[PickupInStore, PostalDelivery]


def describe_delivery(delivery: DeliveryMethod) -> str:
    if isinstance(delivery, PickupInStore):
        return "Pick up at store"
    elif isinstance(delivery, PostalDelivery):
        unit = f"{delivery.apartment}/" if delivery.apartment else ""
        return f"Postal delivery to {unit}{delivery.street_number} {delivery.street_name} {delivery.postal_code}"
    else:
        assert_never(delivery)


# ------------------------------------------------------------------------------
# Payment methods
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class Cash:
    pass


@dataclass(frozen=True)
class Paypal:
    handle: str


@dataclass(frozen=True)
class CardPayment:
    card_number: str
    cvc: str
    expiry: date


@dataclass(frozen=True)
class BankTransfer:
    bsb: str
    account_number: str


PaymentMethod = Union[Cash, Paypal, CardPayment, BankTransfer]


def payment_label(payment: PaymentMethod) -> str:
    if isinstance(payment, Cash):
        return "Cash"
    elif isinstance(payment, Paypal):
        return "Paypal"
    elif isinstance(payment, CardPayment):
        return "Card"
    elif isinstance(payment, BankTransfer):
        return "BankTransfer"
    else:
        assert_never(payment)


def describe_payment(payment: PaymentMethod) -> str:
    if isinstance(payment, Cash):
        return "Cash"
    elif isinstance(payment, Paypal):
        return f"PayPal ({payment.handle})"
    elif isinstance(payment, CardPayment):
        return f"Card ending in {payment.card_number[-4:]}"
    elif isinstance(payment, BankTransfer):
        return f"Bank transfer from {payment.bsb} {payment.account_number}"
    else:
        assert_never(payment)


# ------------------------------------------------------------------------------
# Invoice
# ------------------------------------------------------------------------------

@dataclass(frozen=True)
class InvoiceLine:
    product_id: int
    name: str
    quantity: int
    unit_price: Decimal

    @property
    def total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class Invoice:
    order_id: int
    customer_email: str
    lines: Tuple[InvoiceLine, ...]
    delivery: DeliveryMethod
    payment: PaymentMethod
    issued_at: str = field(default_factory=lambda: datetime.now(UTC).isoformat())

    @property
    def total(self) -> Decimal:
        return sum((line.total for line in self.lines), Decimal("0.00"))

    def render(self) -> str:
        receipt_lines = [f"Invoice for order [{self.order_id}]", f"Customer: {self.customer_email}"]
        for ln in self.lines:
            receipt_lines.append(
                f" - {ln.name} x {ln.quantity} @ {ln.unit_price:.2f} = {ln.total:.2f}"
            )
        receipt_lines.append(f"Total: {self.total:.2f} AUD")
        receipt_lines.append(f"Delivery: {describe_delivery(self.delivery)}")
        receipt_lines.append(f"Payment Method: {describe_payment(self.payment)}")
        return "\n".join(receipt_lines)


def build_invoice(
    order: Order,
    products: Dict[int, Product],
    delivery: DeliveryMethod,
    payment: PaymentMethod,
) -> Invoice:
    """Combine an order with the current catalogue prices and chosen methods."""
    if order.id is None:
        raise ValueError("Only stored orders can be invoiced")
    lines = tuple(
        InvoiceLine(
            product_id=line.product_id,
            name=products[line.product_id].name,
            quantity=line.quantity,
            unit_price=products[line.product_id].price,
        )
        for line in order.lines
    )
    return Invoice(
        order_id=order.id,
        customer_email=order.customer_email,
        lines=lines,
        delivery=delivery,
        payment=payment,
    )
