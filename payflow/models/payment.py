# payflow/models/payment.py
from sqlalchemy import Column, String, DateTime, Numeric, ForeignKey, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import relationship
from payflow.db.base_class import Base
import uuid

TERMINAL_STATUSES = ("COMPLETED", "CONFIRMED", "REFUND")
CANCELLABLE_STATUSES = ("PENDING", "PENDING_DELIVERY", "PENDING_MANUAL")
REFUNDABLE_STATUSES = ("FAILED", "CANCELLED")


class Payment(Base):
    __tablename__ = "payments"

    id = Column(
        String, primary_key=True, default=lambda: f"pay_{uuid.uuid4().hex[:12]}"
    )
    # External reference; unique and never reassigned
    transaction_ref = Column(String(255), unique=True, nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    # Financial
    amount = Column(Numeric(14, 2), nullable=False)  # Final total charged
    requested_amount = Column(Numeric(14, 2), nullable=False)  # Base amount before fees

    payment_method = Column(String(50), nullable=False)
    # Values: 'CARD', 'TRANSFER', 'VIRTUAL_ACCOUNT', 'MONNIFY', 'PAY_ON_DELIVERY'

    status = Column(String(50), nullable=False, server_default="PENDING", index=True)
    # Values: 'PENDING', 'COMPLETED', 'CONFIRMED', 'FAILED', 'CANCELLED',
    #         'PENDING_MANUAL', 'PENDING_DELIVERY', 'REFUND'

    # Classification (mutually exclusive)
    product_type = Column(String(50), nullable=True)
    service_type = Column(String(50), nullable=True)
    meter_number = Column(String(20), nullable=True)

    # Gateway
    provider_id = Column(String, ForeignKey("payment_providers.id"), nullable=True)
    monnify_ref = Column(String(255), nullable=True)

    # Serialized PaymentDetails envelope (see schemas.payment)
    payment_details = Column(JSONB, server_default="{}", nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)

    provider = relationship("PaymentProvider")
    voucher_usage = relationship("VoucherUsage", back_populates="payment", uselist=False)

    @property
    def is_terminal(self) -> bool:
        """Check if verification may no longer change this payment."""
        return self.status in TERMINAL_STATUSES

    @property
    def is_cancellable(self) -> bool:
        return self.status in CANCELLABLE_STATUSES

    @property
    def is_refundable(self) -> bool:
        """Check if payment can be refunded."""
        return self.status in REFUNDABLE_STATUSES
