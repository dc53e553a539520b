"""Authentication context for the single user of the process."""

from __future__ import annotations

import logging
from typing import Optional

from storefront.errors import AuthorizationError
from storefront.models import Account, Role

logger = logging.getLogger(__name__)


class UserSession:
    """Holds the signed-in account, if any.

    The role is always read from the account, so a signed-out session has
    no role.  Credentials are checked by the caller before ``sign_in``.
    """

    def __init__(self) -> None:
        self._account: Optional[Account] = None

    def sign_in(self, account: Account) -> None:
        self._account = account
        logger.info("Signed in", extra={"user_email": account.email, "extra": {"role": account.role.value}})

    def sign_out(self) -> None:
        if self._account is not None:
            logger.info("Signed out", extra={"user_email": self._account.email})
        self._account = None

    @property
    def is_user_signed_in(self) -> bool:
        return self._account is not None

    @property
    def role(self) -> Optional[Role]:
        return self._account.role if self._account is not None else None

    def is_user_in_role(self, role: Role) -> bool:
        return self._account is not None and self._account.role is role

    @property
    def authenticated_user(self) -> Account:
        if self._account is None:
            raise AuthorizationError("read the authenticated user")
        return self._account

    def refresh(self, account: Account) -> None:
        """Replace the cached account after its details were edited."""
        if self._account is not None and self._account.email == account.email:
            self._account = account
