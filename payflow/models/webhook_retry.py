# payflow/models/webhook_retry.py
from sqlalchemy import Column, String, DateTime, Integer, Text, text
from payflow.db.base_class import Base
import uuid


class WebhookRetry(Base):
    """Durable ledger of pending webhook reconciliation attempts."""

    __tablename__ = "webhook_retries"

    id = Column(
        String, primary_key=True, default=lambda: f"whr_{uuid.uuid4().hex[:12]}"
    )
    transaction_ref = Column(String(255), unique=True, nullable=False, index=True)

    status = Column(String(20), nullable=False, server_default="pending")
    # Values: 'pending', 'succeeded', 'exhausted'

    attempt_count = Column(Integer, server_default="0", nullable=False)
    max_attempts = Column(Integer, server_default="3", nullable=False)
    next_attempt_at = Column(DateTime(timezone=True), nullable=True, index=True)
    last_error = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)

    @property
    def is_retryable(self) -> bool:
        """Check if another attempt may be scheduled."""
        return self.status == "pending" and self.attempt_count < self.max_attempts

    @property
    def max_retries_exceeded(self) -> bool:
        return self.attempt_count >= self.max_attempts
