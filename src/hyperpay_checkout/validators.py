"""
Input validation for checkout operations.

Every validator raises InvalidArgument naming the offending field, so the
dispatcher can report it back to the host unchanged.
"""
from __future__ import annotations

import re
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable, Optional, Pattern

from hyperpay_checkout.exceptions import InvalidArgument
from hyperpay_checkout.models import CardBrand, CardDetails

EMAIL_PATTERN: Pattern[str] = re.compile(
    r"^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$"
)
CURRENCY_PATTERN: Pattern[str] = re.compile(r"^[A-Z]{3}$")
CVV_PATTERN: Pattern[str] = re.compile(r"^[0-9]{3,4}$")
DIGITS_PATTERN: Pattern[str] = re.compile(r"[0-9]+")

MIN_PAN_LENGTH = 12
MAX_PAN_LENGTH = 19

# Prefixes checked in order; MADA BINs overlap Visa/Mastercard ranges.
BIN_RANGES: list[tuple[CardBrand, tuple[str, ...]]] = [
    (CardBrand.MADA, ("440647", "440795", "446404", "457865", "588845", "636120", "968208")),
    (CardBrand.AMEX, ("34", "37")),
    (CardBrand.MASTER, tuple(str(p) for p in range(51, 56)) + tuple(str(p) for p in range(2221, 2721))),
    (CardBrand.VISA, ("4",)),
]


def validate_non_empty(value: Any, field_name: str) -> str:
    """Require a non-blank string; returns it stripped."""
    if value is None:
        raise InvalidArgument(f"{field_name} is required", field=field_name)
    if not isinstance(value, str):
        raise InvalidArgument(f"{field_name} must be a string", field=field_name)
    value = value.strip()
    if not value:
        raise InvalidArgument(f"{field_name} cannot be empty", field=field_name)
    return value


def validate_amount(value: Any, field_name: str = "amount") -> Decimal:
    """Require a finite amount greater than zero."""
    if value is None or isinstance(value, bool):
        raise InvalidArgument(f"{field_name} is required", field=field_name)
    try:
        amount = value if isinstance(value, Decimal) else Decimal(str(value))
    except (InvalidOperation, ValueError):
        raise InvalidArgument(f"{field_name} must be a number", field=field_name) from None
    if not amount.is_finite():
        raise InvalidArgument(f"{field_name} must be finite", field=field_name)
    if amount <= 0:
        raise InvalidArgument(f"{field_name} must be greater than zero", field=field_name)
    return amount


def validate_currency(
    value: Any,
    supported: Optional[Iterable[str]] = None,
    field_name: str = "currency",
) -> str:
    """Require a recognized ISO 4217 three-letter code."""
    code = validate_non_empty(value, field_name).upper()
    if not CURRENCY_PATTERN.match(code):
        raise InvalidArgument(f"{field_name} must be a 3-letter code", field=field_name)
    if supported is not None and code not in set(supported):
        raise InvalidArgument(f"Unsupported currency: {code}", field=field_name)
    return code


def validate_email(value: Any, field_name: str = "customerEmail") -> str:
    email = validate_non_empty(value, field_name)
    if len(email) > 254 or not EMAIL_PATTERN.match(email):
        raise InvalidArgument(f"{field_name} is not a valid email address", field=field_name)
    return email.lower()


def is_ascii_digits(value: str) -> bool:
    """True for a non-empty run of ASCII 0-9."""
    return DIGITS_PATTERN.fullmatch(value) is not None


def normalize_card_number(card_number: str) -> str:
    return card_number.replace(" ", "").replace("-", "")


def luhn_valid(card_number: str) -> bool:
    """Validate a card number with the Luhn (mod 10) checksum."""
    number = normalize_card_number(card_number)
    if not is_ascii_digits(number):
        return False

    digits = [int(d) for d in number]
    for i in range(len(digits) - 2, -1, -2):
        digits[i] *= 2
        if digits[i] > 9:
            digits[i] -= 9

    return sum(digits) % 10 == 0


def detect_card_brand(card_number: str) -> CardBrand:
    """Detect the card brand from its BIN prefix."""
    number = normalize_card_number(card_number)
    for brand, prefixes in BIN_RANGES:
        if any(number.startswith(p) for p in prefixes):
            return brand
    return CardBrand.UNKNOWN


def validate_card_details(card: Any, enforce_luhn: bool = True) -> CardDetails:
    """
    Check card details are minimally valid and return a normalized copy.

    Holder name, number, expiry and CVV are required. The number must be
    12-19 digits once spaces and dashes are stripped and, unless disabled,
    pass the Luhn check.
    """
    if not isinstance(card, CardDetails):
        raise InvalidArgument("cardDetails is required", field="cardDetails")

    holder_name = validate_non_empty(card.holder_name, "holderName")
    number = normalize_card_number(validate_non_empty(card.card_number, "cardNumber"))
    if not is_ascii_digits(number) or not MIN_PAN_LENGTH <= len(number) <= MAX_PAN_LENGTH:
        raise InvalidArgument("cardNumber must be 12-19 digits", field="cardNumber")
    if enforce_luhn and not luhn_valid(number):
        raise InvalidArgument("cardNumber failed the Luhn check", field="cardNumber")

    month_raw = validate_non_empty(card.expiry_month, "expiryMonth")
    if not is_ascii_digits(month_raw) or not 1 <= int(month_raw) <= 12:
        raise InvalidArgument("expiryMonth must be between 1 and 12", field="expiryMonth")

    year = validate_non_empty(card.expiry_year, "expiryYear")
    if not is_ascii_digits(year) or len(year) not in (2, 4):
        raise InvalidArgument("expiryYear must be 2 or 4 digits", field="expiryYear")

    cvv = validate_non_empty(card.cvv, "cvv")
    if not CVV_PATTERN.fullmatch(cvv):
        raise InvalidArgument("cvv must be 3 or 4 digits", field="cvv")

    brand = card.brand or detect_card_brand(number).value

    return CardDetails(
        holder_name=holder_name,
        card_number=number,
        expiry_month=month_raw.zfill(2),
        expiry_year=year,
        cvv=cvv,
        brand=brand,
    )
