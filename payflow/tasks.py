# payflow/tasks.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone

from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.config import settings
from payflow.db.session import SessionLocal
from payflow.services.payment.verification_service import PaymentVerificationService
from payflow.services.payment.webhook_retry import WebhookRetryScheduler, backoff_seconds
from payflow.worker import celery_app

logger = logging.getLogger(__name__)


@celery_app.task
def retry_webhook_verification(retry_id: str):
    """
    Re-verify a payment whose webhook failed, through the poll path.

    Each failure pushes the next attempt out (base, 2*base, ...) until the
    attempt budget is spent; the row is then marked exhausted and audited.
    """
    db: Session = SessionLocal()
    try:
        retry = crud.webhook_retry.get(db, id=retry_id)
        if retry is None or not retry.is_retryable:
            logger.info(f"Webhook retry {retry_id} is no longer pending; skipping")
            return False

        now = datetime.now(timezone.utc)
        if retry.next_attempt_at and retry.next_attempt_at > now + timedelta(seconds=5):
            # Enqueued twice (countdown and sweep); the later copy will run it.
            logger.info(f"Webhook retry {retry_id} not due until {retry.next_attempt_at}; skipping")
            return False

        transaction_ref = retry.transaction_ref
        service = PaymentVerificationService(db)
        try:
            result = asyncio.run(service.verify_payment(transaction_ref))
        except Exception as e:
            db.rollback()
            message = getattr(e, "message", str(e))
            delay = backoff_seconds(retry.attempt_count + 2)
            retry = crud.webhook_retry.record_failure(
                db, retry=retry, error=message, delay_seconds=delay
            )
            logger.error(
                f"Webhook re-verification {retry.attempt_count}/{retry.max_attempts} "
                f"for {transaction_ref} failed: {message}"
            )
            if retry.status == "exhausted":
                _audit_exhausted(db, transaction_ref, retry.attempt_count, message)
            else:
                WebhookRetryScheduler().enqueue(retry, delay)
            return False

        crud.webhook_retry.mark_succeeded(db, retry=retry)
        logger.info(f"Webhook re-verification for {transaction_ref} succeeded: {result.status.value}")
        return True

    finally:
        db.close()


def _audit_exhausted(db: Session, transaction_ref: str, attempts: int, error: str) -> None:
    payment = crud.payment.get_by_transaction_ref(db, transaction_ref=transaction_ref)
    crud.audit_log.log_action(
        db,
        action="WEBHOOK_RETRY_EXHAUSTED",
        entity_type="Payment",
        entity_id=payment.id if payment else None,
        user_id=payment.user_id if payment else None,
        actor_type="system",
        details={"transactionRef": transaction_ref, "attempts": attempts, "lastError": error},
    )
    logger.error(f"Webhook retries exhausted for {transaction_ref} after {attempts} attempts")


@celery_app.task
def requeue_due_webhook_retries():
    """
    Beat task: re-enqueue pending retries whose attempt time passed more than
    a grace period ago, i.e. whose countdown task was lost.
    """
    db: Session = SessionLocal()
    try:
        cutoff = datetime.now(timezone.utc) - timedelta(
            seconds=settings.WEBHOOK_RETRY_SWEEP_GRACE_SECONDS
        )
        due = crud.webhook_retry.get_due(db, now=cutoff)
        for retry in due:
            retry_webhook_verification.apply_async(args=[retry.id])
        if due:
            logger.info(f"Re-enqueued {len(due)} overdue webhook retries")
        return len(due)
    finally:
        db.close()
