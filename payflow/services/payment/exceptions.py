# payflow/services/payment/exceptions.py
"""
Domain errors raised by the payment engine.

Every error carries a stable `code`, a caller-safe `message`, and whether an
outer flow may retry it. Provider payloads and secrets never go into the
message.
"""
from typing import Optional


class PaymentError(Exception):
    """Base exception for payment errors."""

    default_code = "payment_error"

    def __init__(self, message: str, code: Optional[str] = None, retryable: bool = False):
        self.code = code or self.default_code
        self.message = message
        self.retryable = retryable
        super().__init__(message)


class ValidationError(PaymentError):
    default_code = "validation_error"


class VoucherInvalidError(ValidationError):
    default_code = "voucher_invalid"


class ConfigurationError(PaymentError):
    default_code = "configuration_error"


class RecipientResolutionError(PaymentError):
    default_code = "recipient_resolution_failed"


class GatewayError(PaymentError):
    default_code = "gateway_error"

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        retryable: bool = False,
        response_code: Optional[str] = None,
    ):
        self.response_code = response_code
        super().__init__(message, code=code, retryable=retryable)


class AmountMismatchError(PaymentError):
    default_code = "amount_mismatch"


class IdempotencyConflict(PaymentError):
    """A payment already exists for the transaction reference."""

    default_code = "idempotency_conflict"

    def __init__(self, transaction_ref: str):
        self.transaction_ref = transaction_ref
        super().__init__(f"Payment already exists for transaction: {transaction_ref}")


class PaymentNotFoundError(PaymentError):
    default_code = "payment_not_found"


class RefundIneligibleError(PaymentError):
    default_code = "refund_ineligible"


class CancellationIneligibleError(PaymentError):
    default_code = "cancellation_ineligible"

    def __init__(self, status: str):
        self.status = status
        super().__init__(f"Cannot cancel payment in {status} status")


class WebhookSignatureError(PaymentError):
    default_code = "invalid_signature"


class BVNVerificationError(PaymentError):
    default_code = "bvn_verification_failed"
