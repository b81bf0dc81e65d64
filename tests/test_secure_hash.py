"""
Unit tests for pp_SecureHash signing and verification.
"""
import hashlib
import hmac
import random

import pytest

from wallet_topup.integrations.secure_hash import (
    SECURE_HASH_FIELD,
    SecureHashCodec,
    SignatureError,
)

SALT = "testsalt123"


def reference_hash(message: str) -> str:
    return hmac.new(SALT.encode(), message.encode(), hashlib.sha256).hexdigest().upper()


class TestSign:
    """Test suite for SecureHashCodec.sign."""

    @pytest.mark.unit
    def test_sign_known_vector(self) -> None:
        """Test values are joined in key order behind the salt."""
        codec = SecureHashCodec(SALT)
        fields = {
            "pp_TxnRefNo": "GIKITU20250106ABC",
            "pp_Amount": "50000",
            "pp_MerchantID": "MC10001",
        }

        expected = reference_hash(f"{SALT}&50000&MC10001&GIKITU20250106ABC")
        assert codec.sign(fields) == expected

    @pytest.mark.unit
    def test_sign_is_uppercase_hex(self) -> None:
        """Test signature encoding."""
        signature = SecureHashCodec(SALT).sign({"pp_Amount": "100"})

        assert len(signature) == 64
        assert signature == signature.upper()
        int(signature, 16)

    @pytest.mark.unit
    def test_sign_independent_of_insertion_order(self) -> None:
        """Test the signature depends only on the set of pairs."""
        codec = SecureHashCodec(SALT)
        items = [(f"pp_Field{i}", f"value{i}") for i in range(12)]
        baseline = codec.sign(dict(items))

        rng = random.Random(7)
        for _ in range(20):
            shuffled = items[:]
            rng.shuffle(shuffled)
            assert codec.sign(dict(shuffled)) == baseline

    @pytest.mark.unit
    def test_sign_ignores_secure_hash_field(self) -> None:
        """Test presence or value of pp_SecureHash does not change the signature."""
        codec = SecureHashCodec(SALT)
        fields = {"pp_Amount": "100", "pp_TxnRefNo": "T1"}

        baseline = codec.sign(fields)
        assert codec.sign({**fields, SECURE_HASH_FIELD: "ABC"}) == baseline
        assert codec.sign({**fields, SECURE_HASH_FIELD: ""}) == baseline

    @pytest.mark.unit
    def test_sign_filters_prefixes_and_empty_values(self) -> None:
        """Test only non-empty pp_/ppmpf_ fields are signed."""
        codec = SecureHashCodec(SALT)
        fields = {
            "pp_Amount": "100",
            "pp_BankID": "",
            "ppmpf_1": "extra",
            "merchant_note": "ignored",
            "PP_Amount": "ignored",
        }

        assert codec.sign(fields) == reference_hash(f"{SALT}&100&extra")

    @pytest.mark.unit
    def test_sign_empty_field_set(self) -> None:
        """Test sign({}) is defined and deterministic."""
        codec = SecureHashCodec(SALT)

        assert codec.sign({}) == codec.sign({})
        assert codec.sign({}) == reference_hash(f"{SALT}&")

    @pytest.mark.unit
    def test_sorting_is_by_byte_value(self) -> None:
        """Test uppercase keys sort before lowercase keys."""
        codec = SecureHashCodec(SALT)
        fields = {"pp_amount": "lower", "pp_Amount": "upper", "pp_TxnType": "type"}

        assert codec.sign(fields) == reference_hash(f"{SALT}&upper&type&lower")

    @pytest.mark.unit
    def test_empty_salt_rejected(self) -> None:
        """Test codec requires an integrity salt."""
        with pytest.raises(ValueError, match="Integrity salt is required"):
            SecureHashCodec("")


class TestVerify:
    """Test suite for SecureHashCodec.verify."""

    @pytest.mark.unit
    def test_verify_valid_payload(self) -> None:
        """Test a correctly signed payload verifies."""
        codec = SecureHashCodec(SALT)
        payload = {"pp_ResponseCode": "000", "pp_TxnRefNo": "T1"}
        payload[SECURE_HASH_FIELD] = codec.sign(payload)

        codec.verify(payload)

    @pytest.mark.unit
    def test_verify_missing_hash(self) -> None:
        """Test a payload without pp_SecureHash is rejected."""
        with pytest.raises(SignatureError, match="missing"):
            SecureHashCodec(SALT).verify({"pp_ResponseCode": "000"})

    @pytest.mark.unit
    def test_verify_non_string_hash(self) -> None:
        """Test a non-string pp_SecureHash is treated as missing."""
        with pytest.raises(SignatureError, match="missing"):
            SecureHashCodec(SALT).verify({"pp_ResponseCode": "000", SECURE_HASH_FIELD: 123})

    @pytest.mark.unit
    def test_verify_detects_every_single_character_mutation(self) -> None:
        """Test flipping any character of the signature fails verification."""
        codec = SecureHashCodec(SALT)
        payload = {"pp_ResponseCode": "157", "pp_TxnRefNo": "T2"}
        signature = codec.sign(payload)

        for position, char in enumerate(signature):
            replacement = "0" if char != "0" else "1"
            mutated = signature[:position] + replacement + signature[position + 1:]
            with pytest.raises(SignatureError, match="mismatch"):
                codec.verify({**payload, SECURE_HASH_FIELD: mutated})

    @pytest.mark.unit
    def test_verify_detects_tampered_field(self) -> None:
        """Test changing a signed value fails verification."""
        codec = SecureHashCodec(SALT)
        payload = {"pp_ResponseCode": "157", "pp_TxnRefNo": "T2"}
        payload[SECURE_HASH_FIELD] = codec.sign(payload)

        payload["pp_ResponseCode"] = "000"
        with pytest.raises(SignatureError):
            codec.verify(payload)

    @pytest.mark.unit
    def test_verify_renders_non_string_values(self) -> None:
        """Test JSON numbers and booleans are rendered to strings before hashing."""
        codec = SecureHashCodec(SALT)
        signature = codec.sign({"pp_Amount": "50000", "pp_IsRegistered": "true"})

        codec.verify(
            {"pp_Amount": 50000, "pp_IsRegistered": True, SECURE_HASH_FIELD: signature}
        )
        codec.verify(
            {"pp_Amount": 50000.0, "pp_IsRegistered": True, SECURE_HASH_FIELD: signature}
        )

        fractional = codec.sign({"pp_Amount": "500.5"})
        codec.verify({"pp_Amount": 500.5, SECURE_HASH_FIELD: fractional})

    @pytest.mark.unit
    def test_verify_with_other_salt_fails(self) -> None:
        """Test a payload signed with another salt is rejected."""
        payload = {"pp_ResponseCode": "000"}
        payload[SECURE_HASH_FIELD] = SecureHashCodec("other-salt").sign(payload)

        with pytest.raises(SignatureError):
            SecureHashCodec(SALT).verify(payload)
