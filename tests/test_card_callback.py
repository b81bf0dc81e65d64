"""
Unit tests for card return-URL callback verification.
"""
import pytest

from wallet_topup.integrations.card_callback import (
    CardCallbackError,
    parse_and_verify_card_callback,
)
from wallet_topup.integrations.jazzcash_client import JazzCashClient
from wallet_topup.integrations.response_codes import GatewayStatus
from wallet_topup.integrations.secure_hash import SecureHashCodec

from tests.conftest import signed


def callback_form(codec: SecureHashCodec, code: str = "000") -> dict:
    return signed(
        codec,
        {
            "pp_TxnRefNo": "GIKITU20250106ABC",
            "pp_ResponseCode": code,
            "pp_ResponseMessage": "Thank you for Using JazzCash",
            "pp_RetreivalReferenceNo": "250106123456",
            "pp_Amount": "50000",
        },
    )


class TestCardCallback:
    """Test suite for parse_and_verify_card_callback."""

    @pytest.mark.unit
    def test_valid_callback(self, codec: SecureHashCodec) -> None:
        """Test a signed callback is parsed."""
        callback = parse_and_verify_card_callback(codec, callback_form(codec))

        assert callback.txn_ref_no == "GIKITU20250106ABC"
        assert callback.response_code == "000"
        assert callback.response_message == "Thank you for Using JazzCash"
        assert callback.rrn == "250106123456"
        assert callback.status is GatewayStatus.SUCCESS
        assert callback.fields["pp_Amount"] == "50000"
        assert callback.user_message == "Transaction completed successfully"

    @pytest.mark.unit
    def test_failed_callback_classified(self, codec: SecureHashCodec) -> None:
        """Test card failure codes classify as FAILED."""
        callback = parse_and_verify_card_callback(codec, callback_form(codec, code="424"))

        assert callback.status is GatewayStatus.FAILED

    @pytest.mark.unit
    def test_tampered_callback_rejected(self, codec: SecureHashCodec) -> None:
        """Test a modified callback is rejected."""
        form = callback_form(codec, code="101")
        form["pp_ResponseCode"] = "000"

        with pytest.raises(CardCallbackError, match="rejected"):
            parse_and_verify_card_callback(codec, form)

    @pytest.mark.unit
    def test_unsigned_callback_rejected(self, codec: SecureHashCodec) -> None:
        """Test a callback without pp_SecureHash is rejected."""
        with pytest.raises(CardCallbackError):
            parse_and_verify_card_callback(codec, {"pp_TxnRefNo": "GIKITU1"})

    @pytest.mark.unit
    def test_missing_reference_rejected(self, codec: SecureHashCodec) -> None:
        """Test a signed callback must carry pp_TxnRefNo."""
        form = signed(codec, {"pp_ResponseCode": "000"})

        with pytest.raises(CardCallbackError, match="pp_TxnRefNo"):
            parse_and_verify_card_callback(codec, form)

    @pytest.mark.unit
    @pytest.mark.asyncio
    async def test_client_delegates_to_parser(
        self, gateway_client: JazzCashClient, codec: SecureHashCodec
    ) -> None:
        """Test JazzCashClient.parse_card_callback uses the merchant salt."""
        callback = gateway_client.parse_card_callback(callback_form(codec))

        assert callback.txn_ref_no == "GIKITU20250106ABC"
