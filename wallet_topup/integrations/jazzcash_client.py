"""
JazzCash API client.

Implements:
- Typed request records with a total conversion to pp_* field sets
- Signed JSON exchange with a bounded per-call timeout
- Fail-closed pp_SecureHash verification of every response
- Response code classification
"""
import time
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, Mapping, Optional, Tuple
from zoneinfo import ZoneInfo

import httpx
import structlog

from wallet_topup.config import Settings, get_settings
from wallet_topup.monitoring.metrics import metrics

from .card_callback import CardCallback, parse_and_verify_card_callback
from .response_codes import GatewayStatus, classify_response_code, user_message_for
from .secure_hash import SECURE_HASH_FIELD, SecureHashCodec, SignatureError

logger = structlog.get_logger(__name__)

FIELD_VERSION = "pp_Version"
FIELD_TXN_TYPE = "pp_TxnType"
FIELD_LANGUAGE = "pp_Language"
FIELD_MERCHANT_ID = "pp_MerchantID"
FIELD_PASSWORD = "pp_Password"
FIELD_AMOUNT = "pp_Amount"
FIELD_BILL_REFERENCE = "pp_BillReference"
FIELD_TXN_REF_NO = "pp_TxnRefNo"
FIELD_DESCRIPTION = "pp_Description"
FIELD_MOBILE_NUMBER = "pp_MobileNumber"
FIELD_CNIC = "pp_CNIC"
FIELD_TXN_DATETIME = "pp_TxnDateTime"
FIELD_TXN_EXPIRY_DATETIME = "pp_TxnExpiryDateTime"
FIELD_RETURN_URL = "pp_ReturnURL"
FIELD_RESPONSE_CODE = "pp_ResponseCode"
FIELD_RESPONSE_MESSAGE = "pp_ResponseMessage"
FIELD_PAYMENT_RESPONSE_CODE = "pp_PaymentResponseCode"
FIELD_RRN = "pp_RetreivalReferenceNo"  # gateway's spelling

GATEWAY_DATETIME_FORMAT = "%Y%m%d%H%M%S"
TXN_EXPIRY = timedelta(hours=24)


class GatewayError(Exception):
    """Base exception for JazzCash exchanges."""

    def __init__(self, message: str, operation: str):
        super().__init__(message)
        self.operation = operation


class GatewayTransportError(GatewayError):
    """Connection failure, timeout or non-200 HTTP status."""

    pass


class GatewayDecodeError(GatewayError):
    """Response body was not a JSON object."""

    pass


class GatewayIntegrityError(GatewayError):
    """Response pp_SecureHash was missing or did not verify."""

    pass


@dataclass(frozen=True)
class WalletInitiateRequest:
    """MWallet (CNIC) debit request."""

    amount_paisa: int
    bill_ref_id: str
    txn_ref_no: str
    description: str
    mobile_number: str
    cnic_last6: str
    txn_datetime: str
    txn_expiry_datetime: str

    def to_fields(self, merchant_id: str, password: str) -> Dict[str, str]:
        return {
            FIELD_VERSION: "2.0",
            FIELD_TXN_TYPE: "MWALLET",
            FIELD_LANGUAGE: "EN",
            FIELD_MERCHANT_ID: merchant_id,
            FIELD_PASSWORD: password,
            FIELD_AMOUNT: str(self.amount_paisa),
            FIELD_BILL_REFERENCE: self.bill_ref_id,
            FIELD_TXN_REF_NO: self.txn_ref_no,
            FIELD_DESCRIPTION: self.description,
            FIELD_MOBILE_NUMBER: self.mobile_number,
            FIELD_CNIC: self.cnic_last6,
            FIELD_TXN_DATETIME: self.txn_datetime,
            FIELD_TXN_EXPIRY_DATETIME: self.txn_expiry_datetime,
        }


@dataclass(frozen=True)
class CardInitiateRequest:
    """Hosted card page request; signed and handed to the browser."""

    amount_paisa: int
    bill_ref_id: str
    txn_ref_no: str
    description: str
    return_url: str
    txn_datetime: str
    txn_expiry_datetime: str

    def to_fields(self, merchant_id: str, password: str) -> Dict[str, str]:
        return {
            FIELD_VERSION: "1.1",
            FIELD_TXN_TYPE: "CARDPAYMENT",
            FIELD_LANGUAGE: "EN",
            FIELD_MERCHANT_ID: merchant_id,
            FIELD_PASSWORD: password,
            FIELD_AMOUNT: str(self.amount_paisa),
            FIELD_BILL_REFERENCE: self.bill_ref_id,
            FIELD_TXN_REF_NO: self.txn_ref_no,
            FIELD_DESCRIPTION: self.description,
            FIELD_RETURN_URL: self.return_url,
            FIELD_TXN_DATETIME: self.txn_datetime,
            FIELD_TXN_EXPIRY_DATETIME: self.txn_expiry_datetime,
        }


@dataclass(frozen=True)
class InquiryRequest:
    """Status inquiry for a previously submitted transaction."""

    txn_ref_no: str

    def to_fields(self, merchant_id: str, password: str) -> Dict[str, str]:
        return {
            FIELD_TXN_REF_NO: self.txn_ref_no,
            FIELD_MERCHANT_ID: merchant_id,
            FIELD_PASSWORD: password,
        }


@dataclass(frozen=True)
class GatewayResult:
    """Classified outcome of a verified JazzCash response."""

    status: GatewayStatus
    response_code: str
    message: str
    rrn: str = ""
    payment_response_code: str = ""
    raw: Mapping[str, Any] = field(default_factory=dict)

    @property
    def status_code(self) -> str:
        """The code the status was derived from."""
        return self.payment_response_code or self.response_code


@dataclass(frozen=True)
class CardRedirect:
    """Form the browser must POST to the hosted card page."""

    post_url: str
    fields: Dict[str, str]
    return_url: str


def format_gateway_datetime(moment: datetime) -> str:
    """Render a datetime as YYYYMMDDHHMMSS."""
    return moment.strftime(GATEWAY_DATETIME_FORMAT)


def gateway_timestamps(now: datetime, timezone_name: str) -> Tuple[str, str]:
    """
    Issue and expiry stamps in gateway local time.

    Args:
        now: Aware or UTC-naive current time
        timezone_name: IANA zone the gateway expects (PKT)

    Returns:
        Tuple[str, str]: (pp_TxnDateTime, pp_TxnExpiryDateTime)
    """
    zone = ZoneInfo(timezone_name)
    if now.tzinfo is None:
        now = now.replace(tzinfo=ZoneInfo("UTC"))
    local_now = now.astimezone(zone)
    return (
        format_gateway_datetime(local_now),
        format_gateway_datetime(local_now + TXN_EXPIRY),
    )


def _string_field(payload: Mapping[str, Any], key: str) -> str:
    value = payload.get(key)
    return value if isinstance(value, str) else ""


class JazzCashClient:
    """
    Client for the JazzCash REST API and hosted card page.

    Features:
    - One signed POST per call, no retries
    - Separate wallet and inquiry endpoints
    - Responses are never consumed before their hash verifies
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        """
        Initialize JazzCash client.

        Args:
            settings: Optional settings (defaults to environment settings)
            http_client: Optional preconfigured httpx client
        """
        self.settings = settings or get_settings()
        self.codec = SecureHashCodec(self.settings.jazzcash_integrity_salt)
        self.timeout = httpx.Timeout(self.settings.jazzcash_timeout_seconds)
        self._owns_http_client = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=self.timeout)

        logger.info(
            "jazzcash_client_initialized",
            merchant_id=self.settings.jazzcash_merchant_id,
            sandbox=self.settings.is_sandbox,
        )

    def _signed(self, fields: Dict[str, str]) -> Dict[str, str]:
        signed = dict(fields)
        signed[SECURE_HASH_FIELD] = self.codec.sign(fields)
        return signed

    async def _post_signed(
        self, operation: str, url: str, fields: Dict[str, str]
    ) -> Dict[str, Any]:
        """
        POST a signed field set and return the verified response payload.

        Raises:
            GatewayTransportError: On connection errors, timeouts or non-200
            GatewayDecodeError: If the body is not a JSON object
            GatewayIntegrityError: If pp_SecureHash does not verify
        """
        body = self._signed(fields)
        txn_ref_no = fields.get(FIELD_TXN_REF_NO)
        logger.debug("gateway_request", operation=operation, txn_ref_no=txn_ref_no, fields=body)
        start_time = time.time()

        try:
            response = await self._http.post(url, json=body, timeout=self.timeout)
        except httpx.HTTPError as e:
            metrics.record_gateway_call(operation, "error", time.time() - start_time)
            logger.error(
                "gateway_transport_error",
                operation=operation,
                txn_ref_no=txn_ref_no,
                error=str(e),
                error_type=type(e).__name__,
            )
            raise GatewayTransportError(f"{operation} request failed: {e}", operation) from e

        duration = time.time() - start_time

        if response.status_code != httpx.codes.OK:
            metrics.record_gateway_call(operation, "error", duration)
            logger.error(
                "gateway_http_status_error",
                operation=operation,
                txn_ref_no=txn_ref_no,
                status_code=response.status_code,
            )
            raise GatewayTransportError(
                f"{operation} API returned status {response.status_code}", operation
            )

        try:
            payload = response.json()
        except ValueError as e:
            metrics.record_gateway_call(operation, "error", duration)
            logger.error("gateway_decode_error", operation=operation, txn_ref_no=txn_ref_no)
            raise GatewayDecodeError(
                f"failed to decode {operation} response: {e}", operation
            ) from e

        if not isinstance(payload, dict):
            metrics.record_gateway_call(operation, "error", duration)
            raise GatewayDecodeError(f"{operation} response is not a JSON object", operation)

        try:
            self.codec.verify(payload)
        except SignatureError as e:
            metrics.record_gateway_call(operation, "error", duration)
            metrics.record_signature_failure("response")
            logger.error(
                "gateway_signature_invalid",
                operation=operation,
                txn_ref_no=txn_ref_no,
                error=str(e),
            )
            raise GatewayIntegrityError(
                f"{operation} response hash verification failed: {e}", operation
            ) from e

        metrics.record_gateway_call(operation, "verified", duration)
        return payload

    @staticmethod
    def _map_response(payload: Mapping[str, Any], use_payment_code: bool) -> GatewayResult:
        response_code = _string_field(payload, FIELD_RESPONSE_CODE)
        payment_code = (
            _string_field(payload, FIELD_PAYMENT_RESPONSE_CODE) if use_payment_code else ""
        )
        status_code = payment_code or response_code

        return GatewayResult(
            status=classify_response_code(status_code),
            response_code=response_code,
            payment_response_code=payment_code,
            message=user_message_for(status_code),
            rrn=_string_field(payload, FIELD_RRN),
            raw=dict(payload),
        )

    async def submit_wallet(self, request: WalletInitiateRequest) -> GatewayResult:
        """
        Submit an MWallet debit.

        Args:
            request: Wallet initiation record

        Returns:
            GatewayResult: Classified by pp_ResponseCode
        """
        logger.info(
            "submitting_wallet_transaction",
            txn_ref_no=request.txn_ref_no,
            amount_paisa=request.amount_paisa,
        )

        fields = request.to_fields(
            self.settings.jazzcash_merchant_id, self.settings.jazzcash_password
        )
        payload = await self._post_signed(
            "wallet", self.settings.jazzcash_wallet_payment_url, fields
        )
        result = self._map_response(payload, use_payment_code=False)

        logger.info(
            "wallet_transaction_response",
            txn_ref_no=request.txn_ref_no,
            response_code=result.response_code,
            status=result.status.value,
            rrn=result.rrn,
        )
        return result

    def initiate_card(self, request: CardInitiateRequest) -> CardRedirect:
        """
        Build the signed form for the hosted card page.

        No network call is made; the browser posts these fields.
        """
        fields = request.to_fields(
            self.settings.jazzcash_merchant_id, self.settings.jazzcash_password
        )
        logger.info("card_redirect_prepared", txn_ref_no=request.txn_ref_no)
        return CardRedirect(
            post_url=self.settings.jazzcash_card_payment_url,
            fields=self._signed(fields),
            return_url=request.return_url,
        )

    async def inquiry(self, txn_ref_no: str) -> GatewayResult:
        """
        Ask the gateway for the current status of a transaction.

        Args:
            txn_ref_no: Transaction reference sent at initiation

        Returns:
            GatewayResult: Classified by pp_PaymentResponseCode, falling back
            to pp_ResponseCode
        """
        fields = InquiryRequest(txn_ref_no=txn_ref_no).to_fields(
            self.settings.jazzcash_merchant_id, self.settings.jazzcash_password
        )
        payload = await self._post_signed(
            "inquiry", self.settings.jazzcash_status_inquiry_url, fields
        )
        result = self._map_response(payload, use_payment_code=True)

        logger.info(
            "inquiry_response",
            txn_ref_no=txn_ref_no,
            response_code=result.response_code,
            payment_response_code=result.payment_response_code,
            status=result.status.value,
        )
        return result

    def parse_card_callback(self, form: Mapping[str, Any]) -> CardCallback:
        """Verify and parse fields posted to the card return URL."""
        return parse_and_verify_card_callback(self.codec, form)

    async def aclose(self) -> None:
        """Close the underlying HTTP client if this instance created it."""
        if self._owns_http_client:
            await self._http.aclose()
