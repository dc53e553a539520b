import helpers  # noqa: F401  (path bootstrap)

import logging
import tempfile
import unittest
from decimal import Decimal

from helpers import Store, fresh_db, remove_db, scripted_console
from storefront.cli import bootstrap_admin
from storefront.config import Settings
from storefront.controller import AppController, build_controller
from storefront.errors import ConfigurationError
from storefront.metrics import STATE_TRANSITIONS_TOTAL, generate_metrics_text
from storefront.models import Role
from storefront.states import AppState, StateName, Transition


class _LostState(AppState):
    name = StateName.MAIN_MENU

    def run(self):
        return Transition(self.name, "Nowhere")


class TestAppController(unittest.TestCase):
    def setUp(self):
        self.db_path = fresh_db()
        self.store = Store(self.db_path)
        self.settings = Settings(
            db_path=self.db_path,
            log_dir=tempfile.gettempdir(),
            log_level=logging.INFO,
            admin_email="root@storefront.local",
            admin_password="admin",
        )

    def tearDown(self):
        remove_db(self.db_path)

    def controller(self, lines):
        view, handler, self.out = scripted_console(lines)
        return build_controller(self.settings, view, handler)

    def test_missing_state_is_a_configuration_error(self):
        controller = self.controller([])
        states = dict(controller._states)
        del states[StateName.SALES_DATA]
        with self.assertRaises(ConfigurationError) as ctx:
            AppController(states)
        self.assertIn("SalesData", str(ctx.exception))

    def test_unknown_target_is_fatal(self):
        controller = self.controller([])
        states = dict(controller._states)
        session = states[StateName.MAIN_MENU]._session
        view, handler, _ = scripted_console([])
        states[StateName.MAIN_MENU] = _LostState(session, view, handler)
        with self.assertRaises(ConfigurationError):
            AppController(states).step()

    def test_run_until_exit(self):
        before = STATE_TRANSITIONS_TOTAL.value(source="MainMenu", target="Browsing")
        controller = self.controller(["B", "E", "X"])
        controller.run()
        self.assertEqual(STATE_TRANSITIONS_TOTAL.value(source="MainMenu", target="Browsing"), before + 1)
        self.assertIn('state_transitions_total{source="Browsing",target="MainMenu"}', generate_metrics_text())

    def test_customer_journey(self):
        self.store.accounts.register_account("carol@example.com", "0412345678", "secret", Role.CUSTOMER)
        apple = self.store.add_product("Apple", "0.80", 10)
        controller = self.controller(
            [
                "S", "S", "carol@example.com", "secret", "E",   # sign in, back to main menu
                "O", "A", f"{apple}-2", "q",                    # draft order
                "C", "P", "A",                                  # confirm: pickup, cash
                "B", "E",                                       # browsing, main menu
                "S", "S", "E",                                  # sign out
                "X",
            ]
        )
        controller.run()
        self.assertIn("Order successfully placed", self.out.getvalue())
        self.assertEqual(self.store.products.get_product(apple).inventory_count, 8)
        payments = self.store.payments.list_payments()
        self.assertEqual([(p.customer_email, p.amount) for p in payments], [("carol@example.com", Decimal("1.60"))])

    def test_build_states_covers_every_screen(self):
        controller = self.controller([])
        self.assertEqual(set(controller._states), set(StateName) - {StateName.EXIT})
        self.assertIs(controller.current, StateName.MAIN_MENU)


class TestBootstrapAdmin(unittest.TestCase):
    def setUp(self):
        self.db_path = fresh_db()
        self.store = Store(self.db_path)

    def tearDown(self):
        remove_db(self.db_path)

    def test_created_once(self):
        settings = Settings(self.db_path, tempfile.gettempdir(), logging.INFO, "root@storefront.local", "admin")
        self.assertTrue(bootstrap_admin(self.store.accounts, settings))
        self.assertFalse(bootstrap_admin(self.store.accounts, settings))
        admin = self.store.accounts.authenticate("root@storefront.local", "admin")
        self.assertIs(admin.role, Role.ADMIN)


if __name__ == "__main__":
    unittest.main()
