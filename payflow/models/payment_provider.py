# payflow/models/payment_provider.py
from sqlalchemy import Column, String, DateTime, Boolean, text
from payflow.db.base_class import Base
import uuid


class PaymentProvider(Base):
    __tablename__ = "payment_providers"

    id = Column(
        String, primary_key=True, default=lambda: f"prv_{uuid.uuid4().hex[:12]}"
    )
    name = Column(String(100), unique=True, nullable=False)  # 'Monnify'
    supports_refund = Column(Boolean, server_default=text("false"), nullable=False)
    is_active = Column(Boolean, server_default=text("true"), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
