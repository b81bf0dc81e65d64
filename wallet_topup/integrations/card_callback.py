"""
Card return-URL callback parsing.

The hosted card page posts its result back to the merchant's return URL.
Those fields are only trusted after pp_SecureHash verifies.
"""
from dataclasses import dataclass
from typing import Any, Dict, Mapping

import structlog

from wallet_topup.monitoring.metrics import metrics

from .response_codes import GatewayStatus, classify_response_code, user_message_for
from .secure_hash import SecureHashCodec, SignatureError

logger = structlog.get_logger(__name__)


class CardCallbackError(Exception):
    """Raised when a card callback cannot be trusted or is incomplete."""

    pass


@dataclass(frozen=True)
class CardCallback:
    """Verified card callback."""

    txn_ref_no: str
    response_code: str
    response_message: str
    rrn: str
    status: GatewayStatus
    fields: Dict[str, str]

    @property
    def user_message(self) -> str:
        return user_message_for(self.response_code)


def parse_and_verify_card_callback(
    codec: SecureHashCodec, form: Mapping[str, Any]
) -> CardCallback:
    """
    Verify and parse the fields posted to the card return URL.

    Args:
        codec: Codec holding the merchant integrity salt
        form: Posted form fields

    Returns:
        CardCallback: Parsed callback

    Raises:
        CardCallbackError: If the hash does not verify or the reference is missing
    """
    try:
        codec.verify(form)
    except SignatureError as e:
        metrics.record_signature_failure("card_callback")
        logger.warning("card_callback_signature_invalid", error=str(e))
        raise CardCallbackError(f"card callback rejected: {e}") from e

    fields = {key: "" if value is None else str(value) for key, value in form.items()}
    txn_ref_no = fields.get("pp_TxnRefNo", "")
    if not txn_ref_no:
        raise CardCallbackError("card callback is missing pp_TxnRefNo")

    response_code = fields.get("pp_ResponseCode", "")
    callback = CardCallback(
        txn_ref_no=txn_ref_no,
        response_code=response_code,
        response_message=fields.get("pp_ResponseMessage", ""),
        rrn=fields.get("pp_RetreivalReferenceNo", ""),
        status=classify_response_code(response_code),
        fields=fields,
    )

    logger.info(
        "card_callback_verified",
        txn_ref_no=txn_ref_no,
        response_code=response_code,
        status=callback.status.value,
    )
    return callback
