# payflow/services/payment/management_service.py
import logging
import re
import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.logging import payment_logger
from payflow.models.payment import CANCELLABLE_STATUSES, REFUNDABLE_STATUSES
from payflow.schemas.payment import (
    BVNVerificationInput,
    BVNVerificationResult,
    PaymentDetails,
    PaymentMethod,
    PaymentMethodStatus,
    PaymentResult,
    RefundInfo,
    TransactionHistory,
    TransactionHistoryItem,
    TransactionStatus,
)
from payflow.services.notifications import NotificationService, get_notification_service
from .exceptions import (
    BVNVerificationError,
    CancellationIneligibleError,
    PaymentError,
    PaymentNotFoundError,
    RefundIneligibleError,
    ValidationError,
)
from .fee_calculator import to_money
from .gateway_factory import GatewayFactory, get_gateway_factory
from .payment_service import payment_result, validate_amount, validate_user_id
from .provider_interface import GatewayFeature, RefundRequest

BVN_PATTERN = re.compile(r"^[0-9]{11}$")
ACCOUNT_NUMBER_PATTERN = re.compile(r"^[0-9]{10}$")
MAX_HISTORY_LIMIT = 100


def mask(value: str) -> str:
    return f"****{value[-4:]}"


class PaymentManagementService:
    """
    Lifecycle operations outside the initiation path: refunds, cancellation,
    BVN-based bank linking, history and method availability.
    """

    def __init__(
        self,
        db: Session,
        *,
        gateway_factory: Optional[GatewayFactory] = None,
        notifier: Optional[NotificationService] = None,
        logger: logging.Logger = payment_logger,
    ):
        self.db = db
        self.gateways = gateway_factory or get_gateway_factory()
        self.notifier = notifier or get_notification_service()
        self.logger = logger

    # ------------------------------------------------------------------ #
    # Refunds
    # ------------------------------------------------------------------ #

    async def process_refund(
        self,
        *,
        transaction_ref: str,
        user_id: str,
        amount,
        narration: Optional[str] = None,
    ) -> PaymentResult:
        """
        Refund a FAILED or CANCELLED payment through its provider.

        The REFUND status, the refund metadata and the REFUND_INITIATED audit
        entry are committed together.
        """
        validate_user_id(user_id)
        amount = validate_amount(amount)

        payment = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
        if payment is None:
            raise PaymentNotFoundError(f"Payment not found for transaction: {transaction_ref}")

        self.logger.info(f"Initiating refund of {amount} for transaction: {transaction_ref}")
        try:
            if payment.status not in REFUNDABLE_STATUSES:
                raise RefundIneligibleError(
                    f"Cannot refund transaction {transaction_ref}: status is {payment.status}"
                )
            gateway = self.gateways.get_registered(PaymentMethod(payment.payment_method))
            provider = payment.provider
            if (
                provider is None
                or not gateway.is_remote
                or not provider.supports_refund
                or (provider.name or "").lower() != gateway.name.lower()
                or not gateway.supports_feature(GatewayFeature.REFUNDS)
            ):
                raise RefundIneligibleError(
                    f"Refunds are not supported for {payment.payment_method} payments"
                )
            if to_money(amount) > to_money(payment.amount):
                raise ValidationError("Refund amount cannot exceed the payment amount")
            if not payment.monnify_ref:
                raise RefundIneligibleError(
                    f"Gateway payment reference missing for transaction: {transaction_ref}"
                )

            result = await gateway.refund(
                RefundRequest(
                    transaction_ref=payment.monnify_ref,
                    refund_reference=f"REF-{uuid.uuid4()}",
                    amount=to_money(amount),
                    narration=narration or f"Refund for transaction {transaction_ref}",
                )
            )
        except PaymentError as e:
            self.logger.error(f"Refund for {transaction_ref} failed: {e.message}")
            crud.audit_log.log_action(
                self.db,
                action="REFUND_FAILED",
                entity_type="Payment",
                entity_id=payment.id,
                user_id=user_id,
                details={"transactionRef": transaction_ref, "amount": float(amount), "error": e.message},
            )
            raise

        details = PaymentDetails.from_storage(payment.payment_details)
        details.refund = RefundInfo(
            refund_reference=result.refund_reference,
            refund_status=result.refund_status,
            refund_amount=to_money(amount),
        )
        changed = crud.payment.transition_status(
            self.db,
            payment_id=payment.id,
            from_statuses=[payment.status],
            to_status=TransactionStatus.REFUND.value,
            payment_details=details.to_storage(),
            commit=False,
        )
        if not changed:
            # Provider accepted the refund but the row moved; record it.
            self.db.rollback()
            crud.audit_log.log_action(
                self.db,
                action="REFUND_FAILED",
                entity_type="Payment",
                entity_id=payment.id,
                user_id=user_id,
                details={
                    "transactionRef": transaction_ref,
                    "refundReference": result.refund_reference,
                    "error": "Payment status changed during refund",
                },
            )
            raise RefundIneligibleError(
                f"Payment {transaction_ref} changed status during refund"
            )

        crud.audit_log.log_action(
            self.db,
            action="REFUND_INITIATED",
            entity_type="Payment",
            entity_id=payment.id,
            user_id=user_id,
            details={
                "transactionRef": transaction_ref,
                "paymentReference": payment.monnify_ref,
                "amount": float(amount),
                "refundReference": result.refund_reference,
                "refundStatus": result.refund_status,
            },
            commit=False,
        )
        self.db.commit()
        self.db.refresh(payment)

        self.logger.info(
            f"Refund initiated for {transaction_ref}: {result.refund_reference} ({result.refund_status})"
        )
        self.notifier.send_transactional_message(
            "PAYMENT_REFUNDED",
            [payment.user_id],
            {
                "transactionRef": transaction_ref,
                "refundReference": result.refund_reference,
                "amount": float(amount),
            },
        )
        return payment_result(payment)

    # ------------------------------------------------------------------ #
    # BVN
    # ------------------------------------------------------------------ #

    async def verify_bvn(self, *, user_id: str, input_data: BVNVerificationInput) -> BVNVerificationResult:
        """
        Verify a user's BVN and link the bank account.

        A name mismatch (case-insensitive) fails the verification and never
        links the account.
        """
        validate_user_id(user_id)
        if not BVN_PATTERN.match(input_data.bvn or ""):
            raise ValidationError("Invalid BVN: must be 11 digits")
        if not ACCOUNT_NUMBER_PATTERN.match(input_data.account_number or ""):
            raise ValidationError("Invalid account number: must be 10 digits")
        if not input_data.bank_code:
            raise ValidationError("Bank code is required")

        user = crud.user.get(self.db, id=user_id)
        if user is None:
            raise ValidationError("User not found")
        if not user.first_name or not user.last_name:
            raise ValidationError("User missing required details: first and last name must be set")

        verification = crud.bvn_verification.create(
            self.db,
            obj_in={
                "user_id": user_id,
                "masked_bvn": mask(input_data.bvn),
                "account_number": input_data.account_number,
                "bank_code": input_data.bank_code,
                "status": "PENDING",
            },
        )
        self.logger.info(
            f"Initiating BVN verification {verification.id} for user {user_id}, "
            f"account {mask(input_data.account_number)}"
        )

        try:
            details = await self.gateways.get_settlement_gateway().lookup_bvn(
                bvn=input_data.bvn,
                account_number=input_data.account_number,
                bank_code=input_data.bank_code,
            )
        except PaymentError as e:
            self._fail_bvn(verification, user_id, e.message)
            raise BVNVerificationError(f"BVN verification failed: {e.message}") from e

        if (
            details.first_name.strip().lower() != user.first_name.strip().lower()
            or details.last_name.strip().lower() != user.last_name.strip().lower()
        ):
            self._fail_bvn(verification, user_id, "BVN name mismatch")
            raise BVNVerificationError("BVN name does not match user details")

        bank_account_linked = details.raw.get("accountNumber") == input_data.account_number

        crud.bvn_verification.set_status(
            self.db, verification=verification, status="COMPLETED", commit=False
        )
        crud.user.mark_bvn_verified(self.db, user=user)
        crud.bank_account.upsert(
            self.db,
            user_id=user_id,
            account_number=input_data.account_number,
            bank_code=input_data.bank_code,
            bank_name=details.raw.get("bankName"),
        )
        crud.audit_log.log_action(
            self.db,
            action="BVN_VERIFIED",
            entity_type="BVNVerification",
            entity_id=verification.id,
            user_id=user_id,
            details={
                "bvn": mask(input_data.bvn),
                "accountNumber": mask(input_data.account_number),
                "bankCode": input_data.bank_code,
                "bankAccountLinked": bank_account_linked,
            },
            commit=False,
        )
        self.db.commit()

        self.logger.info(f"BVN verified for user {user_id} (bank account linked: {bank_account_linked})")
        return BVNVerificationResult(
            verified=True,
            bank_account_linked=bank_account_linked,
            verification_id=verification.id,
        )

    def _fail_bvn(self, verification, user_id: str, reason: str) -> None:
        self.logger.warning(f"BVN verification {verification.id} failed: {reason}")
        crud.bvn_verification.set_status(
            self.db,
            verification=verification,
            status="FAILED",
            failure_reason=reason,
            commit=False,
        )
        crud.audit_log.log_action(
            self.db,
            action="BVN_VERIFICATION_FAILED",
            entity_type="BVNVerification",
            entity_id=verification.id,
            user_id=user_id,
            details={"error": reason},
            commit=False,
        )
        self.db.commit()

    # ------------------------------------------------------------------ #
    # Cancellation
    # ------------------------------------------------------------------ #

    def cancel_payment(self, *, transaction_ref: str, user_id: str) -> PaymentResult:
        validate_user_id(user_id)

        payment = crud.payment.get_for_user(
            self.db, transaction_ref=transaction_ref, user_id=user_id
        )
        if payment is None:
            raise PaymentNotFoundError(f"Payment not found for transaction: {transaction_ref}")

        previous_status = payment.status
        changed = previous_status in CANCELLABLE_STATUSES and crud.payment.transition_status(
            self.db,
            payment_id=payment.id,
            from_statuses=[previous_status],
            to_status=TransactionStatus.CANCELLED.value,
            commit=False,
        )
        if not changed:
            self.db.rollback()
            self.db.refresh(payment)
            error = CancellationIneligibleError(payment.status)
            self.logger.warning(f"Cancellation of {transaction_ref} rejected: {error.message}")
            crud.audit_log.log_action(
                self.db,
                action="PAYMENT_CANCELLATION_FAILED",
                entity_type="Payment",
                entity_id=payment.id,
                user_id=user_id,
                details={"transactionRef": transaction_ref, "error": error.message},
            )
            raise error

        crud.audit_log.log_action(
            self.db,
            action="PAYMENT_CANCELLED",
            entity_type="Payment",
            entity_id=payment.id,
            user_id=user_id,
            details={"transactionRef": transaction_ref, "previousStatus": previous_status},
            commit=False,
        )
        self.db.commit()
        self.db.refresh(payment)

        self.logger.info(f"Payment cancelled: {transaction_ref} (was {previous_status})")
        self.notifier.send_transactional_message(
            "PAYMENT_CANCELLED",
            [user_id],
            {"transactionRef": transaction_ref, "previousStatus": previous_status},
        )
        return payment_result(payment)

    # ------------------------------------------------------------------ #
    # Queries
    # ------------------------------------------------------------------ #

    def get_transaction_history(
        self,
        *,
        user_id: str,
        page: int = 1,
        limit: int = 10,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        status: Optional[TransactionStatus] = None,
        payment_method: Optional[PaymentMethod] = None,
    ) -> TransactionHistory:
        validate_user_id(user_id)
        if page < 1:
            raise ValidationError("Page must be greater than 0")
        if limit < 1 or limit > MAX_HISTORY_LIMIT:
            raise ValidationError(f"Limit must be between 1 and {MAX_HISTORY_LIMIT}")

        items, total = crud.payment.get_history(
            self.db,
            user_id=user_id,
            skip=(page - 1) * limit,
            limit=limit,
            start_date=start_date,
            end_date=end_date,
            status=status.value if status else None,
            payment_method=payment_method.value if payment_method else None,
        )
        return TransactionHistory(
            transactions=[
                TransactionHistoryItem(
                    id=item.id,
                    transaction_ref=item.transaction_ref,
                    amount=item.amount,
                    status=item.status,
                    payment_method=item.payment_method,
                    product_type=item.product_type,
                    service_type=item.service_type,
                    provider=item.provider.name if item.provider else None,
                    payment_details=item.payment_details,
                    created_at=item.created_at,
                    updated_at=item.updated_at,
                )
                for item in items
            ],
            total=total,
            page=page,
            limit=limit,
        )

    def check_payment_method_status(self, payment_method: PaymentMethod) -> PaymentMethodStatus:
        """
        Report whether a method can be used right now. A method whose config
        points at the wrong gateway is reported disabled.
        """
        config = crud.payment_config.get_by_method(self.db, payment_method=payment_method.value)
        if config is None:
            return PaymentMethodStatus(payment_method=payment_method.value, is_enabled=False)

        is_enabled = bool(config.is_enabled) and self.gateways.gateway_matches(
            payment_method, config
        )
        if config.is_enabled and not is_enabled:
            self.logger.warning(
                f"Payment method {payment_method.value} enabled with mismatched gateway {config.gateway}"
            )
        return PaymentMethodStatus(
            payment_method=payment_method.value,
            is_enabled=is_enabled,
            gateway=config.gateway,
            last_updated=config.updated_at,
            updated_by=config.updated_by,
        )
