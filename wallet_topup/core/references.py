"""Bill and transaction reference generation."""
import secrets
from datetime import datetime, timezone
from typing import Optional
from zoneinfo import ZoneInfo

REFERENCE_ALPHABET = "ABCDEFGHJKMNPQRSTUVWXYZ23456789"
BILL_PREFIX = "BILL"
TXN_PREFIX = "GIKITU"
SUFFIX_LENGTH = 3
GATEWAY_TIMEZONE = "Asia/Karachi"


def random_base32(length: int) -> str:
    """Random string from the unambiguous reference alphabet."""
    return "".join(secrets.choice(REFERENCE_ALPHABET) for _ in range(length))


def generate_bill_ref_no(now: Optional[datetime] = None) -> str:
    """``BILL`` + unix timestamp + 3 random characters."""
    now = now or datetime.now(timezone.utc)
    return f"{BILL_PREFIX}{int(now.timestamp())}{random_base32(SUFFIX_LENGTH)}"


def generate_txn_ref_no(
    now: Optional[datetime] = None, timezone_name: str = GATEWAY_TIMEZONE
) -> str:
    """
    ``GIKITU`` + YYYYMMDD + 3 random characters.

    The date is taken in the gateway timezone so it agrees with pp_TxnDateTime.
    Naive datetimes are treated as UTC.
    """
    now = now or datetime.now(timezone.utc)
    if now.tzinfo is None:
        now = now.replace(tzinfo=timezone.utc)
    local_date = now.astimezone(ZoneInfo(timezone_name)).strftime("%Y%m%d")
    return f"{TXN_PREFIX}{local_date}{random_base32(SUFFIX_LENGTH)}"
