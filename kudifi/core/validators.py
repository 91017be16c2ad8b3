import re
from decimal import Decimal, InvalidOperation
from typing import Optional

from kudifi.core.errors import ValidationError

PIN_RE = re.compile(r"^\d{4}$")
AMOUNT_RE = re.compile(r"^\d+(\.\d+)?$")
PHONE_INPUT_RE = re.compile(r"^\+?\d{9,15}$")
NON_DIGITS_RE = re.compile(r"\D")

# E.164 allows at most 15 digits including the country code
MIN_PHONE_DIGITS = 10
MAX_PHONE_DIGITS = 15


def is_pin(token: str) -> bool:
    return bool(PIN_RE.match(token or ""))


def validate_pin(token: str) -> str:
    if not is_pin(token):
        raise ValidationError("PIN must be exactly 4 digits")
    return token


def sanitize_phone_number(raw: str, country_code: str = "233") -> str:
    """
    Canonical identity for a phone number: "+" followed by digits.

    - non-digits are dropped ("+233 54-123" -> "23354123")
    - a "00" international prefix is removed
    - a single local leading "0" becomes the country code
    - anything else is assumed to already carry its country code

    Idempotent: the output never starts with "+0", so a second pass is a no-op.
    """
    digits = NON_DIGITS_RE.sub("", raw or "")
    if not digits:
        return ""
    if digits.startswith("00"):
        digits = digits.lstrip("0")
    elif digits.startswith("0"):
        digits = f"{country_code}{digits[1:]}"
    return f"+{digits}" if digits else ""


def validate_phone_number(raw: str, country_code: str = "233") -> str:
    token = (raw or "").strip()
    if not PHONE_INPUT_RE.match(token):
        raise ValidationError("Invalid phone number")
    canonical = sanitize_phone_number(token, country_code)
    if not (MIN_PHONE_DIGITS <= len(canonical) - 1 <= MAX_PHONE_DIGITS):
        raise ValidationError("Invalid phone number")
    return canonical


def validate_amount(raw: str, ceiling: Decimal, decimals: Optional[int] = None) -> Decimal:
    """
    Parse a plain decimal amount typed on a keypad.
    Rejects signs, exponents, zero, anything above the ceiling, and more
    fractional digits than the token can represent.
    """
    token = (raw or "").strip()
    if not AMOUNT_RE.match(token):
        raise ValidationError("Amount must be a number")
    try:
        amount = Decimal(token)
    except InvalidOperation as e:
        raise ValidationError("Amount must be a number") from e
    if amount <= 0:
        raise ValidationError("Amount must be greater than zero")
    if amount > Decimal(ceiling):
        raise ValidationError(f"Amount must not exceed {ceiling}")
    if decimals is not None and "." in token and len(token.split(".", 1)[1]) > decimals:
        raise ValidationError(f"Use at most {decimals} decimal places")
    return amount
