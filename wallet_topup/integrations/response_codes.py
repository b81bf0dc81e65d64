"""
JazzCash response code tables.

Both lookups are total: every string maps to a status and to a message.
"""
from enum import Enum
from typing import Dict, FrozenSet


class GatewayStatus(str, Enum):
    """Classification of a JazzCash response code."""

    PENDING = "PENDING"
    SUCCESS = "SUCCESS"
    FAILED = "FAILED"
    UNKNOWN = "UNKNOWN"


SUCCESS_CODES: FrozenSet[str] = frozenset({"000", "121", "200"})

FAILURE_CODES: FrozenSet[str] = frozenset(
    {"101", "105", "110", "111", "112", "115", "118", "199", "999"}
)

PENDING_CODES: FrozenSet[str] = frozenset({"157", "124", "210"})

RESPONSE_MESSAGES: Dict[str, str] = {
    # Success
    "000": "Transaction completed successfully",
    "121": "Transaction confirmed successfully",
    "200": "Transaction approved",
    # MWallet
    "024": "Incorrect MPIN. Please try again with the correct MPIN",
    "001": "Transaction limit exceeded. Please contact your bank",
    "002": "Account not found. Please verify your account details",
    "003": "Account is inactive. Please contact JazzCash support",
    "004": "Insufficient balance. Please add funds to your account",
    # Card
    "415": "3D Secure verification failed. Please check your 3D Secure ID",
    "416": "CVV verification failed. Please check your CVV and try again",
    "424": "Incorrect CVV. Please enter the correct CVV and try again",
    "102": "Card is blocked. Please contact your bank",
    "404": "Card has expired. Please use a valid card",
    "405": "Insufficient balance on card. Please check your card balance",
    "419": "Card is not enrolled in 3D Secure. Please contact your bank to activate 3D Secure",
    # Common
    "101": "Invalid merchant credentials",
    "105": "Transaction exceeds limit. Please contact support",
    "110": "Invalid transaction value",
    "111": "Transaction not allowed",
    "112": "Transaction was cancelled",
    "115": "Security verification failed. Please try again",
    "116": "Transaction has expired. Please initiate a new transaction",
    "134": "Transaction timed out. Please try again",
    "999": "Transaction failed due to a technical issue. Please try again later",
    # Pending
    "157": "Transaction is pending. Please wait for confirmation",
    "124": "Order is pending. Waiting for payment confirmation",
    "210": "Authorization pending. Please wait",
    # User cancellation
    "410": "Transaction was cancelled by you",
    "412": "Transaction was cancelled by you",
    # Maintenance
    "127": "Service is temporarily under maintenance. Please try again later",
    "118": "Service is temporarily under maintenance. Please try again later",
}


def classify_response_code(code: str) -> GatewayStatus:
    """
    Map a JazzCash response code to a GatewayStatus.

    Known tables are consulted first; any other three-character code in the
    4xx range is a failure; everything else, including an empty code, is
    UNKNOWN and needs reconciliation.
    """
    if code in SUCCESS_CODES:
        return GatewayStatus.SUCCESS
    if code in FAILURE_CODES:
        return GatewayStatus.FAILED
    if code in PENDING_CODES:
        return GatewayStatus.PENDING
    if len(code) == 3 and code[0] == "4":
        return GatewayStatus.FAILED
    return GatewayStatus.UNKNOWN


def user_message_for(code: str) -> str:
    """Human-readable message for a response code."""
    message = RESPONSE_MESSAGES.get(code)
    if message is not None:
        return message
    if code:
        return f"Transaction failed with code: {code}. Please contact support"
    return "Transaction failed. Please try again"
