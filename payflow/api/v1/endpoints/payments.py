# payflow/api/v1/endpoints/payments.py
from datetime import datetime
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from redis import Redis
from sqlalchemy.orm import Session

from payflow.api import deps
from payflow.db.session import get_db
from payflow.schemas.payment import (
    Authorize3DSInput,
    AuthorizeOtpInput,
    BillPaymentInput,
    BVNVerificationInput,
    BVNVerificationResult,
    PaymentMethod,
    PaymentMethodStatus,
    PaymentResult,
    ProcessPaymentInput,
    RefundInput,
    TransactionHistory,
    TransactionStatus,
)
from payflow.schemas.token import TokenPayload
from payflow.services.notifications import NotificationService
from payflow.services.payment.gateway_factory import GatewayFactory
from payflow.services.payment.management_service import PaymentManagementService
from payflow.services.payment.payment_service import PaymentService
from payflow.services.payment.verification_service import PaymentVerificationService

router = APIRouter(tags=["Payments"])


@router.post(
    "/payments",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_payment(
    payment_in: ProcessPaymentInput,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    notifier: NotificationService = Depends(deps.get_notifier),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """
    Start a payment for a product, a fuel/gas service or a wallet top-up.
    Re-submitting the same transactionRef returns the stored payment.
    """
    service = PaymentService(db, gateway_factory=gateways, notifier=notifier)
    return await service.process_payment(
        payment_in.model_copy(update={"user_id": current_user.sub})
    )


@router.post(
    "/payments/bill",
    response_model=PaymentResult,
    status_code=status.HTTP_201_CREATED,
)
async def initiate_bill_payment(
    bill_in: BillPaymentInput,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    notifier: NotificationService = Depends(deps.get_notifier),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Pay an electricity bill; the response carries the electricity token once settled."""
    service = PaymentService(db, gateway_factory=gateways, notifier=notifier)
    return await service.process_bill_payment(
        bill_in.model_copy(update={"user_id": current_user.sub})
    )


@router.get("/payments/history", response_model=TransactionHistory)
def get_transaction_history(
    page: int = Query(1),
    limit: int = Query(10),
    start_date: Optional[datetime] = Query(None, alias="startDate"),
    end_date: Optional[datetime] = Query(None, alias="endDate"),
    payment_status: Optional[TransactionStatus] = Query(None, alias="status"),
    payment_method: Optional[PaymentMethod] = Query(None, alias="paymentMethod"),
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    service = PaymentManagementService(db, gateway_factory=gateways)
    return service.get_transaction_history(
        user_id=current_user.sub,
        page=page,
        limit=limit,
        start_date=start_date,
        end_date=end_date,
        status=payment_status,
        payment_method=payment_method,
    )


@router.get("/payments/methods/{method}/status", response_model=PaymentMethodStatus)
def check_payment_method_status(
    method: PaymentMethod,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    service = PaymentManagementService(db, gateway_factory=gateways)
    return service.check_payment_method_status(method)


@router.post("/payments/bvn/verify", response_model=BVNVerificationResult)
async def verify_bvn(
    bvn_in: BVNVerificationInput,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Verify the caller's BVN and link the bank account on a name match."""
    service = PaymentManagementService(db, gateway_factory=gateways)
    return await service.verify_bvn(user_id=current_user.sub, input_data=bvn_in)


@router.post("/payments/{transactionRef}/card/otp", response_model=PaymentResult)
async def authorize_card_otp(
    transactionRef: str,
    otp_in: AuthorizeOtpInput,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    service = PaymentService(db, gateway_factory=gateways)
    return await service.authorize_card_otp(
        transaction_ref=transactionRef, user_id=current_user.sub, token=otp_in.token
    )


@router.post("/payments/{transactionRef}/card/3ds", response_model=PaymentResult)
async def authorize_card_3ds(
    transactionRef: str,
    secure_in: Authorize3DSInput,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    service = PaymentService(db, gateway_factory=gateways)
    return await service.authorize_card_3ds(
        transaction_ref=transactionRef, user_id=current_user.sub, card=secure_in.card
    )


@router.get("/payments/{transactionRef}/verify", response_model=PaymentResult)
async def verify_payment(
    transactionRef: str,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    redis: Redis = Depends(deps.get_redis),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Reconcile a payment against the gateway. Settled payments are returned as stored."""
    service = PaymentVerificationService(db, gateway_factory=gateways, redis=redis)
    return await service.verify_payment(transactionRef)


@router.post("/payments/{transactionRef}/refund", response_model=PaymentResult)
async def refund_payment(
    transactionRef: str,
    refund_in: RefundInput,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    notifier: NotificationService = Depends(deps.get_notifier),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    service = PaymentManagementService(db, gateway_factory=gateways, notifier=notifier)
    return await service.process_refund(
        transaction_ref=transactionRef,
        user_id=current_user.sub,
        amount=refund_in.amount,
        narration=refund_in.narration,
    )


@router.post("/payments/{transactionRef}/cancel", response_model=PaymentResult)
def cancel_payment(
    transactionRef: str,
    db: Session = Depends(get_db),
    gateways: GatewayFactory = Depends(deps.get_gateways),
    notifier: NotificationService = Depends(deps.get_notifier),
    current_user: TokenPayload = Depends(deps.get_current_user),
):
    """Cancel one of the caller's payments while it is still pending."""
    service = PaymentManagementService(db, gateway_factory=gateways, notifier=notifier)
    return service.cancel_payment(transaction_ref=transactionRef, user_id=current_user.sub)
