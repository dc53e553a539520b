"""Top‑level package for the storefront application.

This package exposes the navigation state machine via :mod:`controller`
and :mod:`states`, the order checkout workflow via :mod:`checkout`, the
data access layer via :mod:`dao` and a mock payment gateway in
:mod:`payment_service`.
"""

__version__ = "0.1.0"
