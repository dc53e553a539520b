"""Application controller: runs the current state and follows its transitions."""

from __future__ import annotations

import logging
from typing import Dict, Mapping, Optional

from storefront.checkout import CheckoutWorkflow
from storefront.config import Settings
from storefront.console import ConsoleInputHandler, ConsoleView
from storefront.dao import AccountDAO, OrderDAO, PaymentDAO, ProductDAO
from storefront.errors import ConfigurationError
from storefront.external_services import EmailService, ShippingService
from storefront.metrics import STATE_TRANSITIONS_TOTAL
from storefront.payment_service import PaymentService
from storefront.session import UserSession
from storefront.states import (
    AdminProfileState,
    AppState,
    BrowsingState,
    CustomerProfileState,
    MainMenuState,
    ManageInventoryState,
    OrderingState,
    SalesDataState,
    SignInState,
    StaffProfileState,
    StateName,
    Transition,
)

logger = logging.getLogger(__name__)


class AppController:
    """Owns the state registry and the current state.

    Every :class:`StateName` other than ``EXIT`` must have a registered
    state; a transition to ``EXIT`` ends :meth:`run`.
    """

    def __init__(self, states: Mapping[StateName, AppState], start: StateName = StateName.MAIN_MENU) -> None:
        missing = [name.value for name in StateName if name is not StateName.EXIT and name not in states]
        if missing:
            raise ConfigurationError(f"No state registered for: {', '.join(missing)}")
        for name, state in states.items():
            if state.name is not name:
                raise ConfigurationError(f"State {state.name.value} registered as {name.value}")
        self._states: Dict[StateName, AppState] = dict(states)
        self._current = self._resolve(start)

    @property
    def current(self) -> StateName:
        return self._current.name

    def _resolve(self, name: object) -> AppState:
        try:
            return self._states[name]  # type: ignore[index]
        except KeyError:
            raise ConfigurationError(f"Unknown state '{name}'") from None

    def step(self) -> bool:
        """Run the current state once; False when the application should stop."""
        state = self._current
        transition = state.run()
        if not isinstance(transition, Transition):
            raise ConfigurationError(f"State {state.name.value} finished without a transition")
        target = getattr(transition.target, "value", transition.target)
        STATE_TRANSITIONS_TOTAL.inc(source=state.name.value, target=str(target))
        logger.info(
            f"Transition {state.name.value} -> {target}",
            extra={"state": state.name.value, "extra": {"target": target}},
        )
        if transition.target is StateName.EXIT:
            return False
        self._current = self._resolve(transition.target)
        return True

    def run(self) -> None:
        while self.step():
            pass


def build_states(
    session: UserSession,
    view: ConsoleView,
    input_handler: ConsoleInputHandler,
    accounts: AccountDAO,
    products: ProductDAO,
    orders: OrderDAO,
    payments: PaymentDAO,
    workflow: CheckoutWorkflow,
) -> Dict[StateName, AppState]:
    common = (session, view, input_handler)
    states = [
        MainMenuState(*common),
        BrowsingState(*common, products),
        SignInState(*common, accounts),
        CustomerProfileState(*common, accounts, orders),
        StaffProfileState(*common),
        AdminProfileState(*common, accounts),
        ManageInventoryState(*common, products),
        OrderingState(*common, workflow),
        SalesDataState(*common, payments, orders),
    ]
    return {state.name: state for state in states}


def build_controller(
    settings: Settings,
    view: Optional[ConsoleView] = None,
    input_handler: Optional[ConsoleInputHandler] = None,
    payment_service: Optional[PaymentService] = None,
) -> AppController:
    """Wire DAOs, services and states against ``settings.db_path``."""
    view = view or ConsoleView()
    input_handler = input_handler or ConsoleInputHandler(view)
    accounts = AccountDAO(settings.db_path)
    products = ProductDAO(settings.db_path)
    orders = OrderDAO(settings.db_path)
    payments = PaymentDAO(settings.db_path)
    workflow = CheckoutWorkflow(
        view,
        input_handler,
        products,
        orders,
        payment_service or PaymentService(),
        EmailService(),
        ShippingService(),
    )
    session = UserSession()
    states = build_states(session, view, input_handler, accounts, products, orders, payments, workflow)
    return AppController(states)
