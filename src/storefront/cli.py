"""
Command-line entry point for the storefront.

Loads the settings, configures logging, makes sure an administrator
account exists and then hands the console over to the state machine.
Keeping this wiring out of the states keeps them testable with scripted
input.
"""

import logging

from storefront.config import Settings, load_settings
from storefront.controller import build_controller
from storefront.dao import AccountDAO
from storefront.errors import ConfigurationError
from storefront.logging_config import configure_logging
from storefront.metrics import generate_metrics_text
from storefront.models import Role

logger = logging.getLogger(__name__)


def bootstrap_admin(accounts: AccountDAO, settings: Settings) -> bool:
    """Create the configured admin account when no admin exists yet.

    Returns True if an account was created.
    """
    if accounts.count_accounts(Role.ADMIN) > 0:
        return False
    created = accounts.register_account(
        settings.admin_email, "0000000000", settings.admin_password, Role.ADMIN
    )
    if created:
        logger.warning("Created bootstrap admin account", extra={"user_email": settings.admin_email})
    return created


def main() -> None:
    settings = load_settings()
    configure_logging(settings.log_dir, settings.log_level)
    bootstrap_admin(AccountDAO(settings.db_path), settings)
    try:
        controller = build_controller(settings)
        controller.run()
        print("Exiting application.")
    except (KeyboardInterrupt, EOFError):
        print("\nInterrupted by user. Exiting.")
    except ConfigurationError:
        logger.critical("Invalid application wiring", exc_info=True)
        raise
    finally:
        logger.info("Metrics at shutdown", extra={"extra": {"metrics": generate_metrics_text()}})


if __name__ == "__main__":
    main()
