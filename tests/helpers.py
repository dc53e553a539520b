# --- path/bootstrap (keep this at the very top) ---
from pathlib import Path
import sys

ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

if SRC.is_dir() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))
# --- end path/bootstrap ---

import io
import os
import tempfile
from decimal import Decimal
from typing import Iterable, Tuple

from storefront.console import ConsoleInputHandler, ConsoleView
from storefront.dao import AccountDAO, OrderDAO, PaymentDAO, ProductDAO
from storefront.models import Role


def fresh_db() -> str:
    """
    Create a fresh temporary DB file and point STOREFRONT_DB_PATH at it so
    every test runs against its own isolated database.
    """
    tmp = tempfile.NamedTemporaryFile(delete=False, suffix=".db")
    tmp.close()
    os.environ["STOREFRONT_DB_PATH"] = tmp.name
    return tmp.name


def remove_db(path: str) -> None:
    for candidate in (path, path + "-journal"):
        try:
            os.unlink(candidate)
        except FileNotFoundError:
            pass


class ScriptedInput:
    """Feeds prepared answers to the input handler, one per prompt."""

    def __init__(self, lines: Iterable[str]):
        self._lines = iter(lines)

    def __call__(self) -> str:
        try:
            return next(self._lines)
        except StopIteration:
            raise EOFError("scripted input exhausted") from None


def scripted_console(lines: Iterable[str]) -> Tuple[ConsoleView, ConsoleInputHandler, io.StringIO]:
    out = io.StringIO()
    view = ConsoleView(out)
    return view, ConsoleInputHandler(view, ScriptedInput(lines)), out


class Store:
    """All DAOs bound to one database file."""

    def __init__(self, db_path: str):
        self.accounts = AccountDAO(db_path)
        self.products = ProductDAO(db_path)
        self.orders = OrderDAO(db_path)
        self.payments = PaymentDAO(db_path)

    def seed_accounts(self) -> None:
        self.accounts.register_account("carol@example.com", "0412345678", "secret", Role.CUSTOMER)
        self.accounts.register_account("sam@example.com", "0498765432", "secret", Role.STAFF)
        self.accounts.register_account("ada@example.com", "0400000000", "secret", Role.ADMIN)

    def add_product(self, name: str, price: str, stock: int) -> int:
        product_id = self.products.add_product(name, f"Fresh {name.lower()}", Decimal(price), stock)
        assert product_id is not None
        return product_id
