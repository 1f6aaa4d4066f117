# payflow/services/payment/providers/pay_on_delivery.py
"""
Local adapter for pay-on-delivery.

Nothing leaves the service: the charge is a confirmation code the customer
reads out on delivery, and the payment stays PENDING until settled.
"""
import logging
import secrets
from typing import Optional

from payflow.core.logging import payment_logger
from payflow.schemas.payment import PayOnDeliveryDetails, TransactionStatus
from ..exceptions import GatewayError, ValidationError
from ..provider_interface import (
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
    SecondFactorRequest,
    TransactionQueryResult,
)


def generate_confirmation_code() -> str:
    """Six-digit numeric code."""
    return f"{100000 + secrets.randbelow(900000)}"


class PayOnDeliveryAdapter(GatewayAdapter):
    def __init__(self, logger: logging.Logger = payment_logger):
        self.logger = logger

    @property
    def code(self) -> str:
        return "pay_on_delivery"

    @property
    def name(self) -> str:
        return "PayOnDelivery"

    @property
    def is_remote(self) -> bool:
        return False

    def validate_classification(
        self,
        *,
        product_type: Optional[str],
        service_type: Optional[str],
        is_wallet_top_up: bool,
    ) -> None:
        if service_type == "electricity":
            raise ValidationError("Pay on delivery is not available for electricity payments")
        if is_wallet_top_up or product_type == "wallet_topup":
            raise ValidationError("Pay on delivery is not available for wallet top-ups")

    async def initiate_charge(self, request: ChargeRequest) -> ChargeResult:
        code = generate_confirmation_code()
        self.logger.info(f"Pay-on-delivery payment {request.transaction_ref} registered")
        return ChargeResult(
            status=TransactionStatus.PENDING,
            channel=PayOnDeliveryDetails(confirmation_code=code),
        )

    def _unsupported(self, operation: str):
        return GatewayError(f"Pay on delivery does not support {operation}")

    async def authorize_second_factor(self, request: SecondFactorRequest) -> ChargeResult:
        raise self._unsupported("second-factor authorization")

    async def query_status(self, transaction_ref: str) -> TransactionQueryResult:
        raise self._unsupported("status queries")

    async def disburse(self, request: DisbursementRequest) -> DisbursementResult:
        raise self._unsupported("disbursement")

    async def get_reserved_account(self, account_reference: str) -> AccountDetails:
        raise self._unsupported("account lookup")

    async def get_merchant_account(self) -> AccountDetails:
        raise self._unsupported("account lookup")

    async def refund(self, request: RefundRequest) -> RefundResult:
        raise self._unsupported("refunds")

    async def lookup_bvn(
        self, *, bvn: str, account_number: str, bank_code: str
    ) -> BVNDetails:
        raise self._unsupported("BVN lookup")

    def verify_webhook_signature(self, payload: bytes, signature: Optional[str]) -> bool:
        return False

    def supports_feature(self, feature: GatewayFeature) -> bool:
        return False
