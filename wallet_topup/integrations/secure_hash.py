"""
JazzCash pp_SecureHash computation and verification.

Canonical form:
1. keep keys starting with ``pp_`` or ``ppmpf_``
2. drop ``pp_SecureHash`` and empty values
3. sort keys by byte value, join the *values* with ``&``
4. prefix ``<salt>&`` and HMAC-SHA256 with the salt as key
5. uppercase hex
"""
import hashlib
import hmac
from typing import Any, Dict, Mapping

SECURE_HASH_FIELD = "pp_SecureHash"
SIGNED_PREFIXES = ("pp_", "ppmpf_")


class SignatureError(Exception):
    """Raised when a gateway payload fails pp_SecureHash verification."""

    pass


def _as_field_value(value: Any) -> str:
    """Render a decoded JSON value the way the gateway serialized it."""
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


class SecureHashCodec:
    """
    Signs and verifies JazzCash field sets with the merchant integrity salt.
    """

    def __init__(self, integrity_salt: str):
        if not integrity_salt:
            raise ValueError("Integrity salt is required")
        self._salt = integrity_salt

    def canonicalize(self, fields: Mapping[str, str]) -> Dict[str, str]:
        """Return the key-sorted subset of ``fields`` that takes part in signing."""
        signed = {
            key: value
            for key, value in fields.items()
            if key.startswith(SIGNED_PREFIXES) and key != SECURE_HASH_FIELD and value != ""
        }
        # Python sorts str by code point, which matches byte order for ASCII keys
        return {key: signed[key] for key in sorted(signed)}

    def sign(self, fields: Mapping[str, str]) -> str:
        """
        Compute pp_SecureHash for a field set.

        Args:
            fields: Field name to string value

        Returns:
            str: 64-character uppercase hex HMAC-SHA256
        """
        message = "&".join(self.canonicalize(fields).values())
        salted_message = f"{self._salt}&{message}"
        digest = hmac.new(
            self._salt.encode("utf-8"),
            salted_message.encode("utf-8"),
            hashlib.sha256,
        ).hexdigest()
        return digest.upper()

    def verify(self, payload: Mapping[str, Any]) -> None:
        """
        Verify the pp_SecureHash carried by a gateway payload.

        Args:
            payload: Decoded response or callback fields

        Raises:
            SignatureError: If the hash is missing or does not match
        """
        received = payload.get(SECURE_HASH_FIELD)
        if not isinstance(received, str) or not received:
            raise SignatureError(f"missing {SECURE_HASH_FIELD} in payload")

        fields = {
            key: _as_field_value(value)
            for key, value in payload.items()
            if key != SECURE_HASH_FIELD
        }
        expected = self.sign(fields)

        if not hmac.compare_digest(received.encode("utf-8"), expected.encode("utf-8")):
            raise SignatureError("pp_SecureHash mismatch")
