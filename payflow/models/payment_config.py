# payflow/models/payment_config.py
from sqlalchemy import Column, String, DateTime, Boolean, text
from payflow.db.base_class import Base
import uuid


class PaymentConfig(Base):
    """Per-method availability switch. A missing row means disabled."""

    __tablename__ = "payment_configs"

    id = Column(
        String, primary_key=True, default=lambda: f"pcf_{uuid.uuid4().hex[:12]}"
    )
    payment_method = Column(String(50), unique=True, nullable=False)
    is_enabled = Column(Boolean, server_default=text("false"), nullable=False)
    gateway = Column(String(50), nullable=True)  # 'monnify', None for local methods
    updated_by = Column(String, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
