# payflow/services/payment/webhook_retry.py
import logging

from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.config import settings
from payflow.core.logging import payment_logger
from payflow.models.webhook_retry import WebhookRetry


def backoff_seconds(attempt: int, base: int = None) -> int:
    """Delay before attempt `attempt` (1-based): base, 2*base, 3*base..."""
    base = settings.WEBHOOK_RETRY_BASE_DELAY_SECONDS if base is None else base
    return base * max(1, attempt)


class WebhookRetryScheduler:
    """
    Records a failed webhook on the retry ledger and enqueues a poll-path
    re-verification. The ledger row survives worker restarts; the beat sweep
    re-enqueues anything left pending.
    """

    def __init__(
        self,
        max_attempts: int = None,
        logger: logging.Logger = payment_logger,
    ):
        self.max_attempts = max_attempts or settings.WEBHOOK_MAX_RETRIES
        self.logger = logger

    def schedule(self, db: Session, *, transaction_ref: str, error: str) -> WebhookRetry:
        delay = backoff_seconds(1)
        retry = crud.webhook_retry.schedule(
            db,
            transaction_ref=transaction_ref,
            delay_seconds=delay,
            max_attempts=self.max_attempts,
            error=error,
        )
        self.enqueue(retry, delay)
        return retry

    def enqueue(self, retry: WebhookRetry, delay_seconds: int) -> None:
        # Imported here: the task module imports the services package.
        from payflow.tasks import retry_webhook_verification

        retry_webhook_verification.apply_async(args=[retry.id], countdown=delay_seconds)
        self.logger.info(
            f"Scheduled webhook re-verification for {retry.transaction_ref} "
            f"in {delay_seconds}s (attempt {retry.attempt_count + 1}/{retry.max_attempts})"
        )
