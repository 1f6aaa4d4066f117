# payflow/models/audit_log.py
from sqlalchemy import Column, String, DateTime, text
from sqlalchemy.dialects.postgresql import JSONB
from payflow.db.base_class import Base
import uuid


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id = Column(
        String, primary_key=True, default=lambda: f"aud_{uuid.uuid4().hex[:12]}"
    )

    # What happened
    action = Column(String(100), nullable=False, index=True)
    # Values: 'PAYMENT_INITIATED', 'PAYMENT_FAILED', 'CARD_CHARGE_INITIATED',
    #         'REFUND_INITIATED', 'WEBHOOK_UPDATE', 'PAYMENT_VERIFIED', etc.

    # Who did it
    user_id = Column(String, nullable=True)
    actor_type = Column(String(50), nullable=False, server_default="user")  # 'user', 'system', 'webhook'

    # What was affected
    entity_type = Column(String(50), nullable=False)  # 'Payment', 'VOUCHER', 'User'
    entity_id = Column(String, nullable=True)

    details = Column(JSONB, nullable=True)

    # Immutable timestamp
    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
