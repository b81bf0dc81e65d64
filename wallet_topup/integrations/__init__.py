"""JazzCash gateway integration."""
from .card_callback import CardCallback, CardCallbackError, parse_and_verify_card_callback
from .jazzcash_client import (
    CardInitiateRequest,
    CardRedirect,
    GatewayDecodeError,
    GatewayError,
    GatewayIntegrityError,
    GatewayResult,
    GatewayTransportError,
    InquiryRequest,
    JazzCashClient,
    WalletInitiateRequest,
    gateway_timestamps,
)
from .response_codes import GatewayStatus, classify_response_code, user_message_for
from .secure_hash import SecureHashCodec, SignatureError

__all__ = [
    "CardCallback",
    "CardCallbackError",
    "CardInitiateRequest",
    "CardRedirect",
    "GatewayDecodeError",
    "GatewayError",
    "GatewayIntegrityError",
    "GatewayResult",
    "GatewayStatus",
    "GatewayTransportError",
    "InquiryRequest",
    "JazzCashClient",
    "SecureHashCodec",
    "SignatureError",
    "WalletInitiateRequest",
    "classify_response_code",
    "gateway_timestamps",
    "parse_and_verify_card_callback",
    "user_message_for",
]
