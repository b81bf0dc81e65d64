"""Normalization of wallet identifiers to the formats JazzCash accepts."""
import re

_NON_DIGITS = re.compile(r"\D")


class NormalizationError(ValueError):
    """Raised when an identifier cannot be normalized."""

    pass


def _digits(value: str) -> str:
    return _NON_DIGITS.sub("", value or "")


def normalize_phone_number(phone: str) -> str:
    """
    Normalize a Pakistani mobile number to the 11-digit ``03XXXXXXXXX`` form.

    Accepted shapes (after stripping non-digits):
    - 11 digits starting with 0: unchanged
    - 12 digits starting with 92: country code replaced by 0
    - 13 digits starting with 92: country code replaced by 0, trailing digit dropped
    - 10 digits: leading 0 added

    Raises:
        NormalizationError: For any other shape
    """
    digits = _digits(phone)
    if not digits:
        raise NormalizationError("phone number contains no digits")

    if len(digits) == 11 and digits.startswith("0"):
        return digits
    if len(digits) == 12 and digits.startswith("92"):
        return "0" + digits[2:]
    if len(digits) == 13 and digits.startswith("92"):
        return "0" + digits[2:12]
    if len(digits) == 10:
        return "0" + digits

    raise NormalizationError(f"invalid phone number format: {phone}")


def normalize_cnic_last6(cnic: str) -> str:
    """
    Return the last six digits of a CNIC.

    Raises:
        NormalizationError: If fewer than six digits remain
    """
    digits = _digits(cnic)
    if not digits:
        raise NormalizationError("CNIC contains no digits")
    if len(digits) < 6:
        raise NormalizationError("CNIC must have at least 6 digits")
    return digits[-6:]
