# payflow/api/errors.py
import logging

from fastapi import Request, status
from fastapi.responses import JSONResponse

from payflow.services.payment.exceptions import (
    AmountMismatchError,
    BVNVerificationError,
    CancellationIneligibleError,
    ConfigurationError,
    GatewayError,
    IdempotencyConflict,
    PaymentError,
    PaymentNotFoundError,
    RecipientResolutionError,
    RefundIneligibleError,
    ValidationError,
    WebhookSignatureError,
)

logger = logging.getLogger(__name__)

# Most specific first; subclasses inherit their parent's status.
ERROR_STATUS_CODES = (
    (WebhookSignatureError, status.HTTP_400_BAD_REQUEST),
    (ValidationError, status.HTTP_400_BAD_REQUEST),
    (BVNVerificationError, status.HTTP_400_BAD_REQUEST),
    (PaymentNotFoundError, status.HTTP_404_NOT_FOUND),
    (CancellationIneligibleError, status.HTTP_409_CONFLICT),
    (RefundIneligibleError, status.HTTP_409_CONFLICT),
    (IdempotencyConflict, status.HTTP_409_CONFLICT),
    (AmountMismatchError, status.HTTP_409_CONFLICT),
    (RecipientResolutionError, status.HTTP_502_BAD_GATEWAY),
    (GatewayError, status.HTTP_502_BAD_GATEWAY),
    (ConfigurationError, status.HTTP_503_SERVICE_UNAVAILABLE),
)


def status_code_for(error: PaymentError) -> int:
    for error_type, status_code in ERROR_STATUS_CODES:
        if isinstance(error, error_type):
            return status_code
    return status.HTTP_500_INTERNAL_SERVER_ERROR


async def payment_error_handler(request: Request, exc: PaymentError) -> JSONResponse:
    status_code = status_code_for(exc)
    logger.warning(f"{request.method} {request.url.path} failed ({exc.code}): {exc.message}")
    return JSONResponse(
        status_code=status_code,
        content={"status": "failed", "code": exc.code, "message": exc.message},
    )
