# payflow/services/payment/verification_service.py
"""
Payment verification: on-demand polling and gateway webhooks.

Both entry points converge on `_apply_gateway_result`, which only moves a
payment out of a verifiable status with a guarded update, so a poll and a
webhook racing on the same reference cannot both transition it.
"""
import json
import logging
from decimal import Decimal
from typing import Any, Dict, Optional, Tuple

from redis import Redis
from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.config import settings
from payflow.core.logging import payment_logger
from payflow.models.payment import Payment
from payflow.schemas.payment import PaymentMethod, PaymentResult, TransactionStatus
from .exceptions import (
    ConfigurationError,
    PaymentError,
    PaymentNotFoundError,
    ValidationError,
    WebhookSignatureError,
)
from .fee_calculator import to_money
from .gateway_factory import GatewayFactory, get_gateway_factory
from .payment_service import payment_result
from .provider_interface import map_query_status
from .webhook_retry import WebhookRetryScheduler

# Statuses a gateway report may still move. Terminal statuses, CANCELLED
# and PENDING_MANUAL are left to operators and the management flows.
VERIFIABLE_STATUSES = (
    TransactionStatus.PENDING.value,
    TransactionStatus.PENDING_DELIVERY.value,
    TransactionStatus.FAILED.value,
)

WEBHOOK_MARKER_PREFIX = "monnifyWebhook"
WEBHOOK_LOCK_PREFIX = "monnifyWebhookLock"
WEBHOOK_LOCK_SECONDS = 60


def webhook_marker_key(transaction_ref: str) -> str:
    return f"{WEBHOOK_MARKER_PREFIX}:{transaction_ref}"


class PaymentVerificationService:
    def __init__(
        self,
        db: Session,
        *,
        gateway_factory: Optional[GatewayFactory] = None,
        redis: Optional[Redis] = None,
        retry_scheduler: Optional[WebhookRetryScheduler] = None,
        logger: logging.Logger = payment_logger,
    ):
        self.db = db
        self.gateways = gateway_factory or get_gateway_factory()
        if redis is None:
            from payflow.db.redis import redis_client as redis
        self.redis = redis
        self.retry_scheduler = retry_scheduler or WebhookRetryScheduler(logger=logger)
        self.logger = logger

    # ------------------------------------------------------------------ #
    # Poll
    # ------------------------------------------------------------------ #

    async def verify_payment(self, transaction_ref: str) -> PaymentResult:
        """
        Reconcile a payment against the gateway.

        Terminal payments are returned as stored without a gateway call.
        Every other verification is audited, even when nothing changes.
        """
        payment = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
        if payment is None:
            raise PaymentNotFoundError(f"Payment not found for transaction: {transaction_ref}")

        if payment.is_terminal:
            self.logger.info(f"Payment {transaction_ref} already {payment.status}; skipping gateway")
            return payment_result(payment)

        gateway = self.gateways.get_registered(PaymentMethod(payment.payment_method))
        if not gateway.is_remote:
            self._audit(
                payment,
                "PAYMENT_VERIFIED",
                {
                    "transactionRef": transaction_ref,
                    "status": payment.status,
                    "amount": float(payment.amount),
                    "paymentMethod": payment.payment_method,
                },
            )
            self.db.commit()
            return payment_result(payment)

        try:
            provider = payment.provider
            if provider is None or (provider.name or "").lower() != gateway.name.lower():
                raise ConfigurationError(
                    f"Invalid payment provider for {gateway.name} verification"
                )
            query = await gateway.query_status(transaction_ref)
        except PaymentError as e:
            self.logger.error(f"Verification of {transaction_ref} failed: {e.message}")
            self.db.rollback()
            self._audit(
                payment,
                "PAYMENT_VERIFICATION_FAILED",
                {"transactionRef": transaction_ref, "error": e.message},
            )
            self.db.commit()
            raise

        status, _ = self._apply_gateway_result(
            payment,
            reported_status=query.status,
            reported_amount=query.amount,
            source="Monnify",
        )
        self._audit(
            payment,
            "PAYMENT_VERIFIED",
            {
                "transactionRef": transaction_ref,
                "status": status,
                "providerStatus": query.provider_status,
                "amount": float(payment.amount),
                "paymentMethod": payment.payment_method,
            },
        )
        self.db.commit()
        self.db.refresh(payment)

        self.logger.info(f"Verified payment {transaction_ref}: {status}")
        return payment_result(payment)

    # ------------------------------------------------------------------ #
    # Webhook
    # ------------------------------------------------------------------ #

    async def verify_webhook(self, raw_body: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Apply a gateway webhook.

        The signature is checked over the raw body before anything is
        parsed. Repeat deliveries are short-circuited by a processed marker.
        Processing failures are audited, scheduled for re-verification via
        the poll path and re-raised.
        """
        gateway = self.gateways.get_settlement_gateway()
        if not signature:
            self.logger.warning("Webhook received without signature")
            raise WebhookSignatureError("Missing webhook signature")
        if not gateway.verify_webhook_signature(raw_body, signature):
            self.logger.warning("Webhook received with invalid signature")
            raise WebhookSignatureError("Invalid webhook signature")

        data = self._parse_webhook(raw_body)
        transaction_ref = data.get("transactionReference")
        provider_status = data.get("paymentStatus")
        if not transaction_ref or not provider_status:
            raise ValidationError(
                "Missing transactionReference or paymentStatus in webhook payload"
            )

        marker_key = webhook_marker_key(transaction_ref)
        lock_key = f"{WEBHOOK_LOCK_PREFIX}:{transaction_ref}"
        try:
            if self.redis.get(marker_key):
                self.logger.info(f"Webhook already processed for {transaction_ref}")
                return {"status": "already_processed", "transactionReference": transaction_ref}

            if not self.redis.set(lock_key, "1", nx=True, ex=WEBHOOK_LOCK_SECONDS):
                self.logger.info(f"Webhook for {transaction_ref} is being processed elsewhere")
                return {"status": "in_progress", "transactionReference": transaction_ref}

            try:
                status = self._process_webhook(transaction_ref, provider_status, data)
            finally:
                self.redis.delete(lock_key)

            self.redis.setex(marker_key, settings.WEBHOOK_MARKER_TTL_SECONDS, "processed")
        except Exception as e:
            self._handle_webhook_failure(transaction_ref, data, e)
            raise

        self.logger.info(f"Webhook processed: {transaction_ref} - Status: {status}")
        return {
            "status": "processed",
            "transactionReference": transaction_ref,
            "paymentStatus": status,
        }

    def _parse_webhook(self, raw_body: bytes) -> Dict[str, Any]:
        try:
            payload = json.loads(raw_body)
        except ValueError:
            raise ValidationError("Invalid webhook payload")
        if not isinstance(payload, dict):
            raise ValidationError("Invalid webhook payload")
        # Monnify nests transaction fields under eventData
        event_data = payload.get("eventData")
        if isinstance(event_data, dict):
            return {"eventType": payload.get("eventType"), **event_data}
        return payload

    def _process_webhook(
        self, transaction_ref: str, provider_status: str, data: Dict[str, Any]
    ) -> str:
        payment = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
        if payment is None:
            raise PaymentNotFoundError(f"Payment not found for webhook: {transaction_ref}")

        if payment.status == TransactionStatus.COMPLETED.value:
            self.logger.info(f"Payment already completed: {transaction_ref}")
            return payment.status

        reported_amount = data.get("amountPaid", data.get("amount"))
        status, changed = self._apply_gateway_result(
            payment,
            reported_status=map_query_status(provider_status),
            reported_amount=reported_amount,
            source="Webhook",
        )
        if changed:
            self._audit(
                payment,
                "WEBHOOK_UPDATE",
                {
                    "transactionRef": transaction_ref,
                    "status": status,
                    "providerStatus": provider_status,
                    "amount": reported_amount,
                    "eventType": data.get("eventType"),
                    "paymentMethod": payment.payment_method,
                },
                actor_type="webhook",
            )
        self.db.commit()
        return status

    def _handle_webhook_failure(
        self, transaction_ref: str, data: Dict[str, Any], error: Exception
    ) -> None:
        message = error.message if isinstance(error, PaymentError) else str(error)
        self.logger.error(f"Webhook processing error for {transaction_ref}: {message}")
        self.db.rollback()

        payment = crud.payment.get_by_transaction_ref(self.db, transaction_ref=transaction_ref)
        if payment is not None:
            self._audit(
                payment,
                "WEBHOOK_FAILED",
                {"transactionRef": transaction_ref, "error": message, "webhookData": data},
                actor_type="webhook",
            )
            self.db.commit()

        self.retry_scheduler.schedule(self.db, transaction_ref=transaction_ref, error=message)

    # ------------------------------------------------------------------ #
    # Shared transition logic
    # ------------------------------------------------------------------ #

    def _apply_gateway_result(
        self,
        payment: Payment,
        *,
        reported_status: TransactionStatus,
        reported_amount,
        source: str,
    ) -> Tuple[str, bool]:
        """
        Stage the status a gateway report implies. Does not commit.

        A reported amount that differs from the stored amount forces
        PENDING_MANUAL and raises one fraud alert. Returns the resulting
        status and whether this call moved the payment.
        """
        current = payment.status
        if current not in VERIFIABLE_STATUSES:
            return current, False

        target = reported_status
        mismatch = reported_amount is not None and to_money(reported_amount) != to_money(
            payment.amount
        )
        if mismatch:
            self.logger.warning(
                f"Amount mismatch on {payment.transaction_ref}: "
                f"Database={payment.amount}, {source}={reported_amount}"
            )
            target = TransactionStatus.PENDING_MANUAL

        changed = crud.payment.transition_status(
            self.db,
            payment_id=payment.id,
            from_statuses=[current],
            to_status=target.value,
            commit=False,
        )
        if not changed:
            self.db.refresh(payment)
            return payment.status, False

        if mismatch and crud.fraud_alert.get_by_payment(self.db, payment_id=payment.id) is None:
            crud.fraud_alert.add_amount_mismatch(
                self.db,
                payment=payment,
                reported_amount=Decimal(str(reported_amount)),
                source=source,
            )
        return target.value, True

    def _audit(
        self, payment: Payment, action: str, details: dict, actor_type: str = "system"
    ) -> None:
        crud.audit_log.log_action(
            self.db,
            action=action,
            entity_type="Payment",
            entity_id=payment.id,
            user_id=payment.user_id,
            actor_type=actor_type,
            details=details,
            commit=False,
        )
