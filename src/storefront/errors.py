"""Custom exceptions for the storefront application."""

from __future__ import annotations

from typing import Iterable


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    pass


class UserInputError(StorefrontError, ValueError):
    """Raised when a user supplied token cannot be converted."""

    def __init__(self, token: str, reason: str | None = None):
        self.token = token
        msg = f"Invalid input: {token!r}"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class ValidationError(StorefrontError):
    """Raised when a fully formed object breaks one or more domain rules.

    All problems are collected before raising so callers can report the
    complete list in one pass.
    """

    def __init__(self, problems: Iterable[str]):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems))


class AuthorizationError(StorefrontError):
    """Raised when an operation needs a signed-in user and there is none."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"No user is signed in ({action})")


class ConfigurationError(StorefrontError):
    """Raised when the navigation states are wired incorrectly.

    This is a programming defect and is never recovered from.
    """

    pass


class StorageError(StorefrontError):
    """Raised when a read whose empty result is meaningful fails."""

    def __init__(self, action: str):
        self.action = action
        super().__init__(f"{action} failed")
