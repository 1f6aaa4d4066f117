# payflow/crud/crud_webhook_retry.py
from typing import List, Optional
from datetime import datetime, timezone, timedelta
from sqlalchemy.orm import Session

from payflow.crud.base import CRUDBase
from payflow.models.webhook_retry import WebhookRetry


class CRUDWebhookRetry(CRUDBase[WebhookRetry]):
    """CRUD operations for the webhook retry ledger."""

    def get_by_transaction_ref(
        self, db: Session, *, transaction_ref: str
    ) -> Optional[WebhookRetry]:
        return (
            db.query(self.model)
            .filter(self.model.transaction_ref == transaction_ref)
            .first()
        )

    def schedule(
        self,
        db: Session,
        *,
        transaction_ref: str,
        delay_seconds: int,
        max_attempts: int,
        error: str,
    ) -> WebhookRetry:
        """
        Create (or re-arm) the retry row for a transaction.

        A row that already succeeded or exhausted its attempts is re-armed
        with a fresh attempt budget, since a new webhook failure is a new
        reconciliation episode.
        """
        now = datetime.now(timezone.utc)
        retry = self.get_by_transaction_ref(db, transaction_ref=transaction_ref)
        if retry is None:
            retry = WebhookRetry(
                transaction_ref=transaction_ref,
                status="pending",
                attempt_count=0,
                max_attempts=max_attempts,
            )
        elif retry.status != "pending":
            retry.status = "pending"
            retry.attempt_count = 0
            retry.max_attempts = max_attempts

        retry.last_error = error
        retry.next_attempt_at = now + timedelta(seconds=delay_seconds)
        retry.updated_at = now

        db.add(retry)
        db.commit()
        db.refresh(retry)
        return retry

    def record_failure(
        self, db: Session, *, retry: WebhookRetry, error: str, delay_seconds: int
    ) -> WebhookRetry:
        """Count a failed attempt and push the next one out."""
        now = datetime.now(timezone.utc)
        retry.attempt_count += 1
        retry.last_error = error
        retry.updated_at = now

        if retry.max_retries_exceeded:
            retry.status = "exhausted"
            retry.next_attempt_at = None
        else:
            retry.next_attempt_at = now + timedelta(seconds=delay_seconds)

        db.add(retry)
        db.commit()
        db.refresh(retry)
        return retry

    def mark_succeeded(self, db: Session, *, retry: WebhookRetry) -> WebhookRetry:
        retry.attempt_count += 1
        retry.status = "succeeded"
        retry.next_attempt_at = None
        retry.updated_at = datetime.now(timezone.utc)
        db.add(retry)
        db.commit()
        db.refresh(retry)
        return retry

    def get_due(
        self, db: Session, *, now: Optional[datetime] = None, limit: int = 100
    ) -> List[WebhookRetry]:
        """Get pending retries whose next attempt time has passed."""
        now = now or datetime.now(timezone.utc)
        return (
            db.query(self.model)
            .filter(
                self.model.status == "pending",
                self.model.next_attempt_at <= now,
            )
            .order_by(self.model.next_attempt_at)
            .limit(limit)
            .all()
        )


webhook_retry = CRUDWebhookRetry(WebhookRetry)
