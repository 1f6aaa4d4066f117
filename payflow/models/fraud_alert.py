# payflow/models/fraud_alert.py
from sqlalchemy import Column, String, DateTime, Text, Numeric, ForeignKey, text
from payflow.db.base_class import Base
import uuid


class FraudAlert(Base):
    __tablename__ = "fraud_alerts"

    id = Column(
        String, primary_key=True, default=lambda: f"frd_{uuid.uuid4().hex[:12]}"
    )
    type = Column(String(50), nullable=False)  # 'AMOUNT_MISMATCH'
    entity_type = Column(String(50), nullable=False, server_default="Payment")
    # One alert per payment
    entity_id = Column(String, ForeignKey("payments.id"), unique=True, nullable=False)
    user_id = Column(String, nullable=True)
    reason = Column(Text, nullable=False)

    expected_amount = Column(Numeric(14, 2), nullable=True)
    reported_amount = Column(Numeric(14, 2), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
