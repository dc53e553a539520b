"""
Data access layer for accounts, the product catalogue, orders and payments.

Every operation opens its own short-lived SQLite connection and closes it
when done; nothing holds a connection or a lock between user prompts.
Storage failures are logged here and surfaced to callers as ``False``,
``None`` or an empty result, never as raw ``sqlite3`` exceptions.
"""

from __future__ import annotations

import hashlib
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, UTC
from decimal import Decimal
from typing import Dict, Iterable, Iterator, List, Optional

from storefront.config import resolve_db_path
from storefront.errors import StorageError
from storefront.models import Account, Order, OrderLine, OrderStatus, Product, Role

logger = logging.getLogger(__name__)

_SCHEMA_VERSION = 1

_SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS Account (
    email TEXT PRIMARY KEY,
    phone TEXT NOT NULL,
    password_hash TEXT NOT NULL,
    role TEXT NOT NULL,
    registered_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS Product (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    name TEXT NOT NULL,
    description TEXT NOT NULL DEFAULT '',
    price TEXT NOT NULL,
    inventory_count INTEGER NOT NULL CHECK (inventory_count >= 0)
);

CREATE TABLE IF NOT EXISTS CustomerOrder (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    customer_email TEXT NOT NULL,
    created_at TEXT NOT NULL,
    status TEXT NOT NULL,
    FOREIGN KEY (customer_email) REFERENCES Account(email)
);

-- No foreign key to Product: lines of a deleted product must still be
-- readable so reconciliation can report them.
CREATE TABLE IF NOT EXISTS OrderLine (
    order_id INTEGER NOT NULL,
    product_id INTEGER NOT NULL,
    quantity INTEGER NOT NULL CHECK (quantity > 0),
    PRIMARY KEY (order_id, product_id),
    FOREIGN KEY (order_id) REFERENCES CustomerOrder(id) ON DELETE CASCADE
);

CREATE TABLE IF NOT EXISTS Payment (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    order_id INTEGER NOT NULL,
    method TEXT NOT NULL,
    reference TEXT NOT NULL,
    amount TEXT NOT NULL,
    status TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    FOREIGN KEY (order_id) REFERENCES CustomerOrder(id) ON DELETE CASCADE
);
"""

# ------------------------------------------------------------------------------
# Connection management
# ------------------------------------------------------------------------------

def _ensure_parent_dir(path: str) -> None:
    parent = os.path.dirname(os.path.abspath(path))
    if parent and not os.path.exists(parent):
        os.makedirs(parent, exist_ok=True)


def _apply_schema_if_needed(conn: sqlite3.Connection) -> None:
    (ver,) = conn.execute("PRAGMA user_version;").fetchone()
    if int(ver) >= _SCHEMA_VERSION:
        return
    conn.executescript(_SCHEMA_SQL)
    conn.execute(f"PRAGMA user_version = {_SCHEMA_VERSION};")


def _new_connection(db_path: str) -> sqlite3.Connection:
    """Open a connection with foreign keys enforced and a busy timeout.

    Raises:
        sqlite3.Error: If the database cannot be opened.
    """
    _ensure_parent_dir(db_path)
    conn = sqlite3.connect(db_path, timeout=10.0)
    try:
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON;")
        conn.execute("PRAGMA busy_timeout = 10000;")
        _apply_schema_if_needed(conn)
    except sqlite3.Error:
        conn.close()
        raise
    return conn


@contextmanager
def scoped_connection(db_path: Optional[str] = None) -> Iterator[sqlite3.Connection]:
    """Yield a connection that is closed as soon as the block exits."""
    conn = _new_connection(db_path or resolve_db_path())
    try:
        yield conn
    finally:
        conn.close()


def hash_password(password: str) -> str:
    return hashlib.sha256(password.encode("utf-8")).hexdigest()


class _StaleOrderError(Exception):
    """Raised inside a transaction to roll it back when data moved underneath."""


# ------------------------------------------------------------------------------
# Base DAO
# ------------------------------------------------------------------------------

class BaseDAO:
    """Base class for all DAOs.

    ``db_path`` is resolved on every call when not given explicitly, so
    changing ``STOREFRONT_DB_PATH`` takes effect immediately.
    """

    def __init__(self, db_path: Optional[str] = None) -> None:
        self._db_path = db_path
        # Create the schema eagerly so a broken database fails at startup
        with self._connect():
            pass

    def _connect(self):
        return scoped_connection(self._db_path)

    @staticmethod
    def _log_failure(action: str, ex: Exception, **context: object) -> None:
        logger.error(f"{action} failed: {ex}", extra={"extra": context})


# ------------------------------------------------------------------------------
# Account DAO
# ------------------------------------------------------------------------------

def _account_from_row(row: sqlite3.Row) -> Account:
    return Account(
        email=row["email"],
        phone=row["phone"],
        password_hash=row["password_hash"],
        role=Role(row["role"]),
        registered_at=row["registered_at"],
    )


class AccountDAO(BaseDAO):
    """Data Access Object for the Account table."""

    def register_account(self, email: str, phone: str, password: str, role: Role) -> bool:
        """Insert a new account; False if the email is taken or storage fails."""
        ts = datetime.now(UTC).isoformat()
        try:
            with self._connect() as conn, conn:
                conn.execute(
                    "INSERT INTO Account (email, phone, password_hash, role, registered_at)"
                    " VALUES (?, ?, ?, ?, ?);",
                    (email, phone, hash_password(password), role.value, ts),
                )
            return True
        except sqlite3.IntegrityError:
            logger.warning("Account already exists", extra={"user_email": email})
            return False
        except sqlite3.Error as ex:
            self._log_failure("Account registration", ex, email=email)
            return False

    def get_account(self, email: str) -> Optional[Account]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM Account WHERE email = ?;", (email,)).fetchone()
        except sqlite3.Error as ex:
            self._log_failure("Account lookup", ex, email=email)
            return None
        return _account_from_row(row) if row else None

    def authenticate(self, email: str, password: str) -> Optional[Account]:
        account = self.get_account(email)
        if account is None or account.password_hash != hash_password(password):
            return None
        return account

    def update_account(
        self, email: str, phone: Optional[str] = None, password: Optional[str] = None
    ) -> bool:
        """Change the phone number and/or password of an account."""
        assignments: List[str] = []
        params: List[object] = []
        if phone:
            assignments.append("phone = ?")
            params.append(phone)
        if password:
            assignments.append("password_hash = ?")
            params.append(hash_password(password))
        if not assignments:
            return False
        params.append(email)
        try:
            with self._connect() as conn, conn:
                cur = conn.execute(
                    f"UPDATE Account SET {', '.join(assignments)} WHERE email = ?;", params
                )
            return cur.rowcount > 0
        except sqlite3.Error as ex:
            self._log_failure("Account update", ex, email=email)
            return False

    def list_accounts(self, role: Role) -> List[Account]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM Account WHERE role = ? ORDER BY registered_at;", (role.value,)
                ).fetchall()
        except sqlite3.Error as ex:
            self._log_failure("Account listing", ex, role=role.value)
            return []
        return [_account_from_row(r) for r in rows]

    def count_accounts(self, role: Role) -> int:
        try:
            with self._connect() as conn:
                (count,) = conn.execute("SELECT COUNT(*) FROM Account WHERE role = ?;", (role.value,)).fetchone()
        except sqlite3.Error as ex:
            self._log_failure("Account count", ex, role=role.value)
            return 0
        return count


# ------------------------------------------------------------------------------
# Product DAO
# ------------------------------------------------------------------------------

def _product_from_row(row: sqlite3.Row) -> Product:
    return Product(
        id=row["id"],
        name=row["name"],
        description=row["description"],
        price=Decimal(row["price"]),
        inventory_count=row["inventory_count"],
    )


def _placeholders(count: int) -> str:
    return ", ".join("?" for _ in range(count))


class ProductDAO(BaseDAO):
    """DAO for Product records, the catalogue and its inventory counts."""

    def add_product(self, name: str, description: str, price: Decimal, inventory_count: int) -> Optional[int]:
        try:
            with self._connect() as conn, conn:
                cur = conn.execute(
                    "INSERT INTO Product (name, description, price, inventory_count)"
                    " VALUES (?, ?, ?, ?);",
                    (name, description, str(price), inventory_count),
                )
            return cur.lastrowid
        except sqlite3.Error as ex:
            self._log_failure("Product insert", ex, name=name)
            return None

    def get_product(self, product_id: int) -> Optional[Product]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM Product WHERE id = ?;", (product_id,)).fetchone()
        except sqlite3.Error as ex:
            self._log_failure("Product lookup", ex, product_id=product_id)
            return None
        return _product_from_row(row) if row else None

    def get_products(self, product_ids: Iterable[int]) -> Optional[Dict[int, Product]]:
        """Return the existing products among ``product_ids`` keyed by id."""
        ids = list(product_ids)
        if not ids:
            return {}
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    f"SELECT * FROM Product WHERE id IN ({_placeholders(len(ids))});", ids
                ).fetchall()
        except sqlite3.Error as ex:
            self._log_failure("Product lookup", ex, product_ids=ids)
            return None
        return {r["id"]: _product_from_row(r) for r in rows}

    def list_products(self, keyword: Optional[str] = None) -> List[Product]:
        query = "SELECT * FROM Product"
        params: List[object] = []
        if keyword:
            query += " WHERE name LIKE ? OR description LIKE ?"
            params = [f"%{keyword}%", f"%{keyword}%"]
        try:
            with self._connect() as conn:
                rows = conn.execute(query + " ORDER BY id;", params).fetchall()
        except sqlite3.Error as ex:
            self._log_failure("Product listing", ex)
            return []
        return [_product_from_row(r) for r in rows]

    def get_stock_levels(self, product_ids: Iterable[int]) -> Optional[Dict[int, int]]:
        """Return the inventory count of each existing product among ``product_ids``.

        Ids absent from the catalogue are absent from the result.  None
        means the lookup itself failed.
        """
        products = self.get_products(product_ids)
        if products is None:
            return None
        return {pid: p.inventory_count for pid, p in products.items()}

    def update_price(self, product_id: int, price: Decimal) -> bool:
        try:
            with self._connect() as conn, conn:
                cur = conn.execute(
                    "UPDATE Product SET price = ? WHERE id = ?;", (str(price), product_id)
                )
            return cur.rowcount > 0
        except sqlite3.Error as ex:
            self._log_failure("Product price update", ex, product_id=product_id)
            return False

    def update_stock(self, product_id: int, inventory_count: int) -> bool:
        try:
            with self._connect() as conn, conn:
                cur = conn.execute(
                    "UPDATE Product SET inventory_count = ? WHERE id = ?;",
                    (inventory_count, product_id),
                )
            return cur.rowcount > 0
        except sqlite3.Error as ex:
            self._log_failure("Product stock update", ex, product_id=product_id)
            return False

    def delete_product(self, product_id: int) -> bool:
        try:
            with self._connect() as conn, conn:
                cur = conn.execute("DELETE FROM Product WHERE id = ?;", (product_id,))
            return cur.rowcount > 0
        except sqlite3.Error as ex:
            self._log_failure("Product delete", ex, product_id=product_id)
            return False


# ------------------------------------------------------------------------------
# Order DAO
# ------------------------------------------------------------------------------

@dataclass
class PaymentRecord:
    order_id: int
    customer_email: str
    method: str
    reference: str
    amount: Decimal
    status: str
    timestamp: str


class OrderDAO(BaseDAO):
    """DAO for the CustomerOrder and OrderLine tables."""

    def _load_order(self, conn: sqlite3.Connection, row: sqlite3.Row) -> Order:
        line_rows = conn.execute(
            "SELECT l.product_id, l.quantity, p.name, p.price FROM OrderLine l"
            " LEFT JOIN Product p ON p.id = l.product_id"
            " WHERE l.order_id = ? ORDER BY l.rowid;",
            (row["id"],),
        ).fetchall()
        lines = [
            OrderLine(
                product_id=r["product_id"],
                quantity=r["quantity"],
                product_name=r["name"],
                unit_price=Decimal(r["price"]) if r["price"] is not None else None,
            )
            for r in line_rows
        ]
        return Order(
            id=row["id"],
            customer_email=row["customer_email"],
            created_at=row["created_at"],
            status=OrderStatus(row["status"]),
            lines=lines,
        )

    def get_unconfirmed_order(self, customer_email: str) -> Optional[Order]:
        """Return the most recent unconfirmed order of a customer, if any.

        Raises:
            StorageError: If the lookup failed.
        """
        try:
            with self._connect() as conn:
                row = conn.execute(
                    "SELECT * FROM CustomerOrder WHERE customer_email = ? AND status = ?"
                    " ORDER BY created_at DESC, id DESC LIMIT 1;",
                    (customer_email, OrderStatus.UNCONFIRMED.value),
                ).fetchone()
                return self._load_order(conn, row) if row else None
        except sqlite3.Error as ex:
            self._log_failure("Unconfirmed order lookup", ex, customer_email=customer_email)
            raise StorageError("Unconfirmed order lookup") from ex

    def get_order(self, order_id: int) -> Optional[Order]:
        try:
            with self._connect() as conn:
                row = conn.execute("SELECT * FROM CustomerOrder WHERE id = ?;", (order_id,)).fetchone()
                return self._load_order(conn, row) if row else None
        except sqlite3.Error as ex:
            self._log_failure("Order lookup", ex, order_id=order_id)
            return None

    def list_orders_for_customer(self, customer_email: str) -> List[Order]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM CustomerOrder WHERE customer_email = ? ORDER BY created_at, id;",
                    (customer_email,),
                ).fetchall()
                return [self._load_order(conn, r) for r in rows]
        except sqlite3.Error as ex:
            self._log_failure("Order listing", ex, customer_email=customer_email)
            return []

    def list_orders(self, status: OrderStatus) -> List[Order]:
        try:
            with self._connect() as conn:
                rows = conn.execute(
                    "SELECT * FROM CustomerOrder WHERE status = ? ORDER BY created_at, id;",
                    (status.value,),
                ).fetchall()
                return [self._load_order(conn, r) for r in rows]
        except sqlite3.Error as ex:
            self._log_failure("Order listing", ex, status=status.value)
            return []

    def create_order(self, order: Order) -> Optional[int]:
        """Persist the order header and all of its lines in one transaction."""
        try:
            with self._connect() as conn, conn:
                cur = conn.execute(
                    "INSERT INTO CustomerOrder (customer_email, created_at, status) VALUES (?, ?, ?);",
                    (order.customer_email, order.created_at, order.status.value),
                )
                order_id = cur.lastrowid
                conn.executemany(
                    "INSERT INTO OrderLine (order_id, product_id, quantity) VALUES (?, ?, ?);",
                    [(order_id, ln.product_id, ln.quantity) for ln in order.lines],
                )
            return order_id
        except sqlite3.Error as ex:
            self._log_failure("Order insert", ex, customer_email=order.customer_email)
            return None

    def update_order(self, order: Order, removed_product_ids: Iterable[int] = ()) -> bool:
        """Persist edited lines of an unconfirmed order in one transaction.

        Lines for ``removed_product_ids`` are deleted and every line of
        ``order`` is inserted or has its quantity replaced.
        """
        if order.id is None:
            raise ValueError("Cannot update an order that was never stored")
        try:
            with self._connect() as conn, conn:
                cur = conn.execute(
                    "UPDATE CustomerOrder SET status = ? WHERE id = ? AND status = ?;",
                    (order.status.value, order.id, OrderStatus.UNCONFIRMED.value),
                )
                if cur.rowcount == 0:
                    raise _StaleOrderError(f"order {order.id} is no longer unconfirmed")
                conn.executemany(
                    "DELETE FROM OrderLine WHERE order_id = ? AND product_id = ?;",
                    [(order.id, pid) for pid in removed_product_ids],
                )
                conn.executemany(
                    "INSERT INTO OrderLine (order_id, product_id, quantity) VALUES (?, ?, ?)"
                    " ON CONFLICT(order_id, product_id) DO UPDATE SET quantity = excluded.quantity;",
                    [(order.id, ln.product_id, ln.quantity) for ln in order.lines],
                )
            return True
        except (sqlite3.Error, _StaleOrderError) as ex:
            self._log_failure("Order update", ex, order_id=order.id)
            return False

    def delete_order(self, order_id: int) -> bool:
        """Delete an unconfirmed order together with its lines."""
        try:
            with self._connect() as conn, conn:
                cur = conn.execute(
                    "DELETE FROM CustomerOrder WHERE id = ? AND status = ?;",
                    (order_id, OrderStatus.UNCONFIRMED.value),
                )
            return cur.rowcount > 0
        except sqlite3.Error as ex:
            self._log_failure("Order delete", ex, order_id=order_id)
            return False

    def confirm_order(
        self, order: Order, method: str, reference: str, amount: Decimal
    ) -> bool:
        """Move an order into delivery, take its stock and record its payment.

        Everything happens in one transaction.  Stock is only decremented
        where enough is left; if any product fell short since validation
        the whole transaction is rolled back and False is returned.
        """
        ts = datetime.now(UTC).isoformat()
        try:
            with self._connect() as conn, conn:
                for ln in order.lines:
                    cur = conn.execute(
                        "UPDATE Product SET inventory_count = inventory_count - ?"
                        " WHERE id = ? AND inventory_count >= ?;",
                        (ln.quantity, ln.product_id, ln.quantity),
                    )
                    if cur.rowcount == 0:
                        raise _StaleOrderError(f"insufficient stock for product {ln.product_id}")
                cur = conn.execute(
                    "UPDATE CustomerOrder SET status = ? WHERE id = ? AND status = ?;",
                    (OrderStatus.IN_DELIVERY.value, order.id, OrderStatus.UNCONFIRMED.value),
                )
                if cur.rowcount == 0:
                    raise _StaleOrderError(f"order {order.id} is no longer unconfirmed")
                conn.execute(
                    "INSERT INTO Payment (order_id, method, reference, amount, status, timestamp)"
                    " VALUES (?, ?, ?, ?, ?, ?);",
                    (order.id, method, reference, str(amount), "Approved", ts),
                )
            return True
        except (sqlite3.Error, _StaleOrderError) as ex:
            self._log_failure("Order confirmation", ex, order_id=order.id)
            return False


# ------------------------------------------------------------------------------
# Payment DAO
# ------------------------------------------------------------------------------

class PaymentDAO(BaseDAO):
    """Read access to payments recorded when orders are confirmed."""

    _SELECT = (
        "SELECT p.order_id, o.customer_email, p.method, p.reference, p.amount, p.status, p.timestamp"
        " FROM Payment p JOIN CustomerOrder o ON o.id = p.order_id"
    )

    @staticmethod
    def _from_row(row: sqlite3.Row) -> PaymentRecord:
        return PaymentRecord(
            order_id=row["order_id"],
            customer_email=row["customer_email"],
            method=row["method"],
            reference=row["reference"],
            amount=Decimal(row["amount"]),
            status=row["status"],
            timestamp=row["timestamp"],
        )

    def get_payment_for_order(self, order_id: int) -> Optional[PaymentRecord]:
        try:
            with self._connect() as conn:
                row = conn.execute(self._SELECT + " WHERE p.order_id = ? LIMIT 1;", (order_id,)).fetchone()
        except sqlite3.Error as ex:
            self._log_failure("Payment lookup", ex, order_id=order_id)
            return None
        return self._from_row(row) if row else None

    def list_payments(self) -> List[PaymentRecord]:
        try:
            with self._connect() as conn:
                rows = conn.execute(self._SELECT + " ORDER BY p.timestamp, p.id;").fetchall()
        except sqlite3.Error as ex:
            self._log_failure("Payment listing", ex)
            return []
        return [self._from_row(r) for r in rows]
