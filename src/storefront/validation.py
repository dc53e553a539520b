"""Validation and conversion helpers for user entered tokens.

Every token type comes as a pair of pure functions: ``validate_*`` returns
True when the text is acceptable and ``to_*`` converts it.  Converters are
only meant to be called after the matching validator succeeded; they raise
:class:`~storefront.errors.UserInputError` when they cannot convert anyway.
"""

from __future__ import annotations

import calendar
import re
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import List, Optional, Tuple

from storefront.errors import UserInputError

DIGITS_REGEX = r"^\d+$"
STREET_NAME_REGEX = r"^[A-Za-z][A-Za-z .'-]{1,63}$"
POSTAL_CODE_REGEX = r"^\d{4}$"
APARTMENT_NO_REGEX = r"^([A-Za-z0-9][A-Za-z0-9/-]{0,9})?$"
CVC_REGEX = r"^\d{3,4}$"
EMAIL_REGEX = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"
PHONE_REGEX = r"^\+?\d{8,15}$"
BSB_REGEX = r"^(\d{3})-?(\d{3})$"
ACCOUNT_NUMBER_REGEX = r"^\d{6,10}$"
NUMBER_PAIR_REGEX = r"^(\d+)\s*-\s*(\d+)$"
NUMBER_LIST_REGEX = r"^\d+(\s*,\s*\d+)*$"
EXPIRY_DATE_REGEX = r"^(\d{1,2})/(\d{2}|\d{4})$"
PRICE_REGEX = r"^\d+(\.\d{1,2})?$"

MIN_PASSWORD_LENGTH = 4


def _matches(pattern: str, text: str) -> bool:
    return re.match(pattern, text.strip()) is not None


# ------------------------------------------------------------------------------
# Order entry
# ------------------------------------------------------------------------------

def validate_hyphen_separated_number_pair(text: str) -> bool:
    """Accept ``<product id>-<quantity>`` with a positive quantity."""
    match = re.match(NUMBER_PAIR_REGEX, text.strip())
    return match is not None and int(match.group(2)) > 0


def to_hyphen_separated_int_pair(text: str) -> Tuple[int, int]:
    match = re.match(NUMBER_PAIR_REGEX, text.strip())
    if match is None:
        raise UserInputError(text, "expected <product id>-<quantity>")
    product_id, quantity = int(match.group(1)), int(match.group(2))
    if quantity <= 0:
        raise UserInputError(text, "quantity must be positive")
    return product_id, quantity


def validate_comma_separated_number_list(text: str) -> bool:
    """Accept a comma separated list of ids; an empty string is an empty list."""
    stripped = text.strip()
    return not stripped or re.match(NUMBER_LIST_REGEX, stripped) is not None


def to_comma_separated_int_list(text: str) -> List[int]:
    stripped = text.strip()
    if not stripped:
        return []
    if re.match(NUMBER_LIST_REGEX, stripped) is None:
        raise UserInputError(text, "expected a comma separated list of numbers")
    values: List[int] = []
    for part in stripped.split(","):
        value = int(part)
        if value not in values:
            values.append(value)
    return values


def validate_positive_int(text: str) -> bool:
    return _matches(DIGITS_REGEX, text) and int(text) > 0


def validate_count(text: str) -> bool:
    return _matches(DIGITS_REGEX, text)


def to_int(text: str) -> int:
    try:
        return int(text.strip())
    except ValueError as ex:
        raise UserInputError(text, "expected a whole number") from ex


def validate_price(text: str) -> bool:
    return _matches(PRICE_REGEX, text)


def to_price(text: str) -> Decimal:
    try:
        price = Decimal(text.strip())
    except InvalidOperation as ex:
        raise UserInputError(text, "expected a price") from ex
    if price < 0:
        raise UserInputError(text, "price cannot be negative")
    return price.quantize(Decimal("0.01"))


# ------------------------------------------------------------------------------
# Delivery details
# ------------------------------------------------------------------------------

def validate_digits(text: str) -> bool:
    return _matches(DIGITS_REGEX, text)


def validate_street_name(text: str) -> bool:
    return _matches(STREET_NAME_REGEX, text)


def validate_postal_code(text: str) -> bool:
    return _matches(POSTAL_CODE_REGEX, text)


def validate_apartment_number(text: str) -> bool:
    return _matches(APARTMENT_NO_REGEX, text)


def to_apartment_number(text: str) -> Optional[str]:
    stripped = text.strip()
    return stripped or None


# ------------------------------------------------------------------------------
# Payment details
# ------------------------------------------------------------------------------

def _luhn_checksum_ok(digits: str) -> bool:
    total = 0
    for index, char in enumerate(reversed(digits)):
        value = int(char)
        if index % 2 == 1:
            value *= 2
            if value > 9:
                value -= 9
        total += value
    return total % 10 == 0


def _normalise_card_number(text: str) -> str:
    return re.sub(r"[\s-]", "", text)


def validate_card_number(text: str) -> bool:
    """Accept 13 to 19 digits (spaces or hyphens allowed) passing the Luhn check."""
    digits = _normalise_card_number(text)
    return re.match(r"^\d{13,19}$", digits) is not None and _luhn_checksum_ok(digits)


def to_card_number(text: str) -> str:
    digits = _normalise_card_number(text)
    if not validate_card_number(digits):
        raise UserInputError(text, "not a card number")
    return digits


def validate_cvc(text: str) -> bool:
    return _matches(CVC_REGEX, text)


def _parse_expiry(text: str) -> Optional[date]:
    match = re.match(EXPIRY_DATE_REGEX, text.strip())
    if match is None:
        return None
    month = int(match.group(1))
    year = int(match.group(2))
    if not 1 <= month <= 12:
        return None
    if year < 100:
        year += 2000
    # a card is valid until the last day of its expiry month
    return date(year, month, calendar.monthrange(year, month)[1])


def validate_card_expiry_date(text: str, today: Optional[date] = None) -> bool:
    """Accept ``MM/YY`` or ``MM/YYYY`` that has not passed yet."""
    expiry = _parse_expiry(text)
    if expiry is None:
        return False
    return expiry >= (today or date.today())


def to_card_expiry_date(text: str) -> date:
    expiry = _parse_expiry(text)
    if expiry is None:
        raise UserInputError(text, "expected MM/YY")
    return expiry


def validate_bsb(text: str) -> bool:
    return _matches(BSB_REGEX, text)


def to_bsb(text: str) -> str:
    match = re.match(BSB_REGEX, text.strip())
    if match is None:
        raise UserInputError(text, "expected a BSB such as 062-000")
    return f"{match.group(1)}-{match.group(2)}"


def validate_account_number(text: str) -> bool:
    return _matches(ACCOUNT_NUMBER_REGEX, text)


def validate_email(text: str) -> bool:
    return _matches(EMAIL_REGEX, text)


def validate_phone(text: str) -> bool:
    return _matches(PHONE_REGEX, text)


def validate_paypal_handle(text: str) -> bool:
    return validate_email(text) or validate_phone(text)


def to_stripped(text: str) -> str:
    return text.strip()


# ------------------------------------------------------------------------------
# Accounts
# ------------------------------------------------------------------------------

def validate_account_details(email: str, phone: str, password: str) -> List[str]:
    """Return every problem with the given account details.

    An empty list means the details are acceptable.
    """
    problems: List[str] = []
    if not validate_email(email):
        problems.append(f"'{email}' is not a valid email address")
    if not validate_phone(phone):
        problems.append(f"'{phone}' is not a valid phone number")
    if len(password) < MIN_PASSWORD_LENGTH:
        problems.append(f"Password must be at least {MIN_PASSWORD_LENGTH} characters long")
    return problems
