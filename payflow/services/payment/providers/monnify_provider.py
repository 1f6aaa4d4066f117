# payflow/services/payment/providers/monnify_provider.py
"""
Monnify gateway adapter.

One adapter backs CARD, TRANSFER, VIRTUAL_ACCOUNT and MONNIFY (hosted
checkout). Every call goes through `_request`, which attaches the cached
bearer token, enforces the timeout, and unwraps the
`{requestSuccessful, responseCode, responseMessage, responseBody}` envelope.

Charges are never retried here; a failed charge is reported to the caller.
The only automatic repeat is a single re-send after a 401, once the cached
token has been dropped, since the provider did not process that request.
"""
import hashlib
import hmac
import logging
import time
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, Optional

import httpx

from payflow.core.config import settings
from payflow.core.logging import payment_logger
from payflow.schemas.payment import (
    BankTransferDetails,
    CardDetails,
    PaymentMethod,
    TransactionStatus,
    VirtualAccountDetails,
)
from ..exceptions import GatewayError, ValidationError
from ..provider_interface import (
    CARD_STATUS_MAP,
    AccountDetails,
    BVNDetails,
    ChargeRequest,
    ChargeResult,
    DisbursementRequest,
    DisbursementResult,
    GatewayAdapter,
    GatewayFeature,
    RefundRequest,
    RefundResult,
    SecondFactorKind,
    SecondFactorRequest,
    TransactionQueryResult,
)

COLLECTION_CHANNEL = "API_NOTIFICATION"


@dataclass
class MonnifyConfig:
    base_url: str
    api_key: str
    secret_key: str
    contract_code: str
    webhook_secret: str
    source_account_number: str = ""
    timeout: float = 10.0
    disbursement_timeout: float = 15.0
    token_ttl: int = 300
    redirect_url: str = "http://localhost:3000/payment-callback"
    currency: str = "NGN"

    @classmethod
    def from_settings(cls) -> "MonnifyConfig":
        return cls(
            base_url=settings.MONNIFY_BASE_URL,
            api_key=settings.MONNIFY_API_KEY,
            secret_key=settings.MONNIFY_SECRET_KEY,
            contract_code=settings.MONNIFY_CONTRACT_CODE,
            webhook_secret=settings.MONNIFY_WEBHOOK_SECRET,
            source_account_number=settings.MONNIFY_SOURCE_ACCOUNT_NUMBER,
            timeout=settings.MONNIFY_TIMEOUT_SECONDS,
            disbursement_timeout=settings.MONNIFY_DISBURSEMENT_TIMEOUT_SECONDS,
            token_ttl=settings.MONNIFY_TOKEN_TTL_SECONDS,
            redirect_url=f"{settings.FRONTEND_URL}/payment-callback",
            currency=settings.DEFAULT_CURRENCY,
        )


def payment_label(payment_type: str) -> str:
    return "Wallet Top-Up" if payment_type == "wallet_topup" else payment_type


class MonnifyProvider(GatewayAdapter):
    """Gateway adapter for Monnify."""

    FEATURES = {
        GatewayFeature.CARD,
        GatewayFeature.BANK_TRANSFER,
        GatewayFeature.VIRTUAL_ACCOUNT,
        GatewayFeature.THREE_D_SECURE,
        GatewayFeature.DISBURSEMENT,
        GatewayFeature.REFUNDS,
        GatewayFeature.BVN_LOOKUP,
        GatewayFeature.WEBHOOKS,
    }

    def __init__(
        self,
        config: MonnifyConfig,
        logger: logging.Logger = payment_logger,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.logger = logger
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expires_at = 0.0

        self._charge_handlers = {
            PaymentMethod.CARD: self._charge_card,
            PaymentMethod.TRANSFER: self._charge_bank_transfer,
            PaymentMethod.VIRTUAL_ACCOUNT: self._charge_checkout,
            PaymentMethod.MONNIFY: self._charge_checkout,
        }

    @property
    def code(self) -> str:
        return "monnify"

    @property
    def name(self) -> str:
        return "Monnify"

    # ------------------------------------------------------------------ #
    # Transport
    # ------------------------------------------------------------------ #

    def _client(self, timeout: Optional[float] = None) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.config.base_url,
            timeout=timeout or self.config.timeout,
            transport=self._transport,
        )

    def _invalidate_token(self) -> None:
        self._access_token = None
        self._token_expires_at = 0.0

    async def _get_access_token(self) -> str:
        """Return the cached bearer token, logging in again once it expires."""
        if self._access_token and time.monotonic() < self._token_expires_at:
            return self._access_token

        path = "/api/v1/auth/login"
        try:
            async with self._client() as client:
                response = await client.post(
                    path, auth=(self.config.api_key, self.config.secret_key)
                )
        except httpx.HTTPError as e:
            self.logger.error(f"Monnify authentication failed: {e}")
            raise GatewayError("Unable to authenticate with Monnify", retryable=True) from e

        body = self._unwrap(response, path)
        token = body.get("accessToken")
        if not token:
            raise GatewayError("Monnify auth response missing access token")

        expires_in = int(body.get("expiresIn") or self.config.token_ttl)
        self._access_token = token
        self._token_expires_at = time.monotonic() + min(expires_in, self.config.token_ttl)
        return token

    def _unwrap(self, response: httpx.Response, path: str) -> Dict[str, Any]:
        """
        Check the response envelope and return its body.

        A failed envelope is a failure whatever the HTTP status says.
        """
        try:
            envelope = response.json()
        except ValueError as e:
            raise GatewayError(
                f"Monnify returned a non-JSON response ({response.status_code}) for {path}"
            ) from e

        if not isinstance(envelope, dict):
            raise GatewayError(f"Monnify returned an unexpected response for {path}")

        response_code = str(envelope.get("responseCode"))
        if not envelope.get("requestSuccessful") or response_code != "0":
            message = envelope.get("responseMessage") or f"Monnify rejected request to {path}"
            raise GatewayError(message, response_code=response_code)

        return envelope.get("responseBody") or {}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
        timeout: Optional[float] = None,
        reference: Optional[str] = None,
        _auth_retry: bool = True,
    ) -> Dict[str, Any]:
        token = await self._get_access_token()
        headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

        try:
            async with self._client(timeout) as client:
                response = await client.request(
                    method, path, json=json, params=params, headers=headers
                )
        except httpx.TimeoutException as e:
            self.logger.error(f"Monnify {method} {path} timed out (ref={reference})")
            raise GatewayError(f"Gateway request timed out: {path}", retryable=True) from e
        except httpx.HTTPError as e:
            self.logger.error(f"Monnify {method} {path} failed (ref={reference}): {e}")
            raise GatewayError(f"Gateway request failed: {path}", retryable=True) from e

        if response.status_code == 401 and _auth_retry:
            self.logger.warning("Monnify token rejected, re-authenticating")
            self._invalidate_token()
            return await self._request(
                method,
                path,
                json=json,
                params=params,
                timeout=timeout,
                reference=reference,
                _auth_retry=False,
            )

        try:
            return self._unwrap(response, path)
        except GatewayError as e:
            self.logger.error(
                f"Monnify {method} {path} rejected (ref={reference}, "
                f"code={e.response_code}): {e.message}"
            )
            raise

    # ------------------------------------------------------------------ #
    # Charges
    # ------------------------------------------------------------------ #

    async def initiate_charge(self, request: ChargeRequest) -> ChargeResult:
        handler = self._charge_handlers.get(request.payment_method)
        if handler is None:
            raise GatewayError(
                f"Monnify does not handle payment method {request.payment_method.value}"
            )
        return await handler(request)

    def _init_payload(self, request: ChargeRequest) -> Dict[str, Any]:
        if request.payment_type == "wallet_topup":
            description = "Wallet Top-Up"
        else:
            description = f"{request.payment_type} Payment"
        return {
            "amount": float(request.amount),
            "customerName": request.customer_name,
            "customerEmail": request.customer_email,
            "paymentReference": request.transaction_ref,
            "paymentDescription": description,
            "currencyCode": self.config.currency,
            "contractCode": self.config.contract_code,
            "redirectUrl": self.config.redirect_url,
            "paymentMethods": ["ACCOUNT_TRANSFER"],
            "metaData": {
                "paymentMethod": request.payment_method.value,
                "paymentType": request.payment_type,
                "ipAddress": request.client_ip or "unknown",
            },
        }

    async def _charge_card(self, request: ChargeRequest) -> ChargeResult:
        if not request.card:
            raise ValidationError("Card details are required for card payments")

        body = await self._request(
            "POST",
            "/api/v1/merchant/cards/charge",
            json={
                "transactionReference": request.transaction_ref,
                "collectionChannel": COLLECTION_CHANNEL,
                "card": request.card,
                "deviceInformation": request.device_information or {},
            },
            reference=request.transaction_ref,
        )
        return self._card_result(body, request.transaction_ref)

    def _card_result(self, body: Dict[str, Any], transaction_ref: str) -> ChargeResult:
        provider_status = body.get("status")
        status = CARD_STATUS_MAP.get(provider_status)
        if status is None:
            raise GatewayError(f"Card charge failed with status: {provider_status}")

        authorized = body.get("authorizedAmount")
        channel = CardDetails(
            provider_status=provider_status,
            payment_reference=body.get("paymentReference"),
            token_id=body.get("tokenId"),
            secure3d_data=body.get("secure3dData"),
            authorized_amount=Decimal(str(authorized)) if authorized is not None else None,
        )
        self.logger.info(f"Card charge {transaction_ref}: provider status {provider_status}")
        return ChargeResult(
            status=status,
            channel=channel,
            provider_reference=body.get("paymentReference"),
            redirect_url=(body.get("secure3dData") or {}).get("redirectUrl"),
        )

    async def _charge_bank_transfer(self, request: ChargeRequest) -> ChargeResult:
        body = await self._request(
            "POST",
            "/api/v1/merchant/bank-transfer/init-payment",
            json=self._init_payload(request),
            reference=request.transaction_ref,
        )
        account = await self.get_reserved_account(request.transaction_ref)

        if account.account_type == "TEMPORARY":
            expiration = (datetime.now(timezone.utc) + timedelta(hours=24)).isoformat()
        else:
            expiration = "N/A"

        channel = BankTransferDetails(
            account_reference=account.account_reference or request.transaction_ref,
            account_number=account.account_number,
            bank_name=account.bank_name,
            account_expiration=expiration,
            narration=f"{request.payment_type} Payment - {request.transaction_ref}",
            transfer_amount=str(request.amount),
            payment_reference=body.get("paymentReference"),
            checkout_url=body.get("checkoutUrl"),
        )
        return ChargeResult(
            status=TransactionStatus.PENDING,
            channel=channel,
            provider_reference=channel.account_reference,
            redirect_url=body.get("checkoutUrl"),
        )

    async def _charge_checkout(self, request: ChargeRequest) -> ChargeResult:
        body = await self._request(
            "POST",
            "/api/v1/merchant/transactions/init-transaction",
            json=self._init_payload(request),
            reference=request.transaction_ref,
        )
        account = await self.get_reserved_account(request.transaction_ref)

        channel = VirtualAccountDetails(
            account_reference=account.account_reference or request.transaction_ref,
            account_number=account.account_number,
            bank_name=account.bank_name,
            note=f"{payment_label(request.payment_type)} Payment",
            amount=str(request.amount),
            payment_reference=body.get("paymentReference"),
            checkout_url=body.get("checkoutUrl"),
        )
        return ChargeResult(
            status=TransactionStatus.PENDING,
            channel=channel,
            provider_reference=channel.account_reference,
            redirect_url=body.get("checkoutUrl"),
        )

    async def authorize_second_factor(self, request: SecondFactorRequest) -> ChargeResult:
        reference = request.payment_reference or request.transaction_ref

        if request.kind == SecondFactorKind.OTP:
            if not request.token_id or not request.token:
                raise ValidationError("tokenId and OTP are required for OTP authorization")
            body = await self._request(
                "POST",
                "/api/v1/merchant/cards/otp/authorize",
                json={
                    "transactionReference": reference,
                    "collectionChannel": COLLECTION_CHANNEL,
                    "tokenId": request.token_id,
                    "token": request.token,
                },
                reference=request.transaction_ref,
            )
        else:
            if not request.card:
                raise ValidationError("Card details are required for 3DS authorization")
            body = await self._request(
                "POST",
                "/api/v1/sdk/cards/secure-3d/authorize",
                json={
                    "transactionReference": reference,
                    "collectionChannel": COLLECTION_CHANNEL,
                    "card": request.card,
                    "apiKey": self.config.api_key,
                },
                reference=request.transaction_ref,
            )

        return self._card_result(body, request.transaction_ref)

    # ------------------------------------------------------------------ #
    # Queries and settlement
    # ------------------------------------------------------------------ #

    async def query_status(self, transaction_ref: str) -> TransactionQueryResult:
        body = await self._request(
            "GET",
            "/api/v1/merchant/transactions/query",
            params={"transactionReference": transaction_ref},
            reference=transaction_ref,
        )
        amount = body.get("amount", body.get("amountPaid"))
        if body.get("paymentStatus") is None or amount is None:
            raise GatewayError("Transaction query response missing status or amount")

        return TransactionQueryResult(
            transaction_ref=transaction_ref,
            provider_status=body["paymentStatus"],
            amount=Decimal(str(amount)),
            payment_reference=body.get("paymentReference"),
            raw=body,
        )

    async def disburse(self, request: DisbursementRequest) -> DisbursementResult:
        body = await self._request(
            "POST",
            "/api/v2/disbursements/single",
            json={
                "amount": float(request.amount),
                "reference": request.reference,
                "narration": request.narration,
                "destinationBankCode": request.destination_bank_code,
                "destinationAccountNumber": request.destination_account_number,
                "currency": self.config.currency,
                "sourceAccountNumber": self.config.source_account_number,
            },
            timeout=self.config.disbursement_timeout,
            reference=request.reference,
        )
        return DisbursementResult(
            reference=body.get("reference", request.reference),
            status=body.get("status", "PENDING"),
        )

    async def get_reserved_account(self, account_reference: str) -> AccountDetails:
        body = await self._request(
            "GET",
            f"/api/v2/bank-transfer/reserved-accounts/{account_reference}",
            reference=account_reference,
        )
        account_number = body.get("accountNumber")
        bank_name = body.get("bankName")
        if not account_number and body.get("accounts"):
            first = body["accounts"][0]
            account_number = first.get("accountNumber")
            bank_name = first.get("bankName")

        if not account_number or not bank_name:
            raise GatewayError("Reserved account response missing accountNumber or bankName")

        return AccountDetails(
            account_number=account_number,
            bank_name=bank_name,
            account_reference=body.get("accountReference", account_reference),
            account_type=body.get("reservedAccountType"),
        )

    async def get_merchant_account(self) -> AccountDetails:
        body = await self._request("GET", "/api/v1/merchant/account")
        if not body.get("accountNumber") or not body.get("bankName"):
            raise GatewayError("Merchant account response missing accountNumber or bankName")
        return AccountDetails(
            account_number=body["accountNumber"], bank_name=body["bankName"]
        )

    async def refund(self, request: RefundRequest) -> RefundResult:
        body = await self._request(
            "POST",
            "/api/v1/refunds/initiate",
            json={
                "transactionReference": request.transaction_ref,
                "refundAmount": float(request.amount),
                "refundReference": request.refund_reference,
                "refundReason": request.narration,
            },
            reference=request.transaction_ref,
        )
        return RefundResult(
            refund_reference=body.get("refundReference", request.refund_reference),
            refund_status=body.get("refundStatus", "PENDING"),
        )

    async def lookup_bvn(
        self, *, bvn: str, account_number: str, bank_code: str
    ) -> BVNDetails:
        body = await self._request(
            "POST",
            "/api/v1/vas/bvn-details",
            json={"bvn": bvn},
        )
        if not body.get("firstName") or not body.get("lastName"):
            raise GatewayError("BVN lookup response missing name fields")
        return BVNDetails(first_name=body["firstName"], last_name=body["lastName"], raw=body)

    # ------------------------------------------------------------------ #
    # Webhooks
    # ------------------------------------------------------------------ #

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        """HMAC-SHA512 of the raw body, keyed by the webhook secret."""
        if not signature:
            return False
        if not self.config.webhook_secret:
            self.logger.error("MONNIFY_WEBHOOK_SECRET not configured; rejecting webhook")
            return False

        expected = hmac.new(
            self.config.webhook_secret.encode("utf-8"), payload, hashlib.sha512
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    def supports_feature(self, feature: GatewayFeature) -> bool:
        return feature in self.FEATURES
