# payflow/models/voucher.py
from sqlalchemy import Column, String, DateTime, Integer, Boolean, Numeric, ForeignKey, text
from sqlalchemy.orm import relationship
from payflow.db.base_class import Base
import uuid


class Voucher(Base):
    __tablename__ = "vouchers"

    id = Column(
        String, primary_key=True, default=lambda: f"vch_{uuid.uuid4().hex[:12]}"
    )
    code = Column(String(64), unique=True, nullable=False, index=True)

    # Discount
    type = Column(String(20), nullable=False)  # 'PERCENTAGE' or 'FIXED'
    discount = Column(Numeric(14, 2), nullable=False)
    applies_to = Column(String(20), nullable=False)  # 'PRODUCT' or 'SERVICE'

    # Constraints
    is_active = Column(Boolean, server_default=text("true"), nullable=False)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    valid_until = Column(DateTime(timezone=True), nullable=False)
    uses = Column(Integer, server_default="0", nullable=False)
    max_uses = Column(Integer, nullable=True)
    max_uses_per_user = Column(Integer, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)

    usages = relationship("VoucherUsage", back_populates="voucher")

    @property
    def is_exhausted(self) -> bool:
        return self.max_uses is not None and self.uses >= self.max_uses


class VoucherUsage(Base):
    __tablename__ = "voucher_usages"

    id = Column(
        String, primary_key=True, default=lambda: f"vcu_{uuid.uuid4().hex[:12]}"
    )
    voucher_id = Column(String, ForeignKey("vouchers.id"), nullable=False, index=True)
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    # One redemption per payment
    payment_id = Column(String, ForeignKey("payments.id"), unique=True, nullable=False)
    discount = Column(Numeric(14, 2), nullable=False)

    used_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)

    voucher = relationship("Voucher", back_populates="usages")
    payment = relationship("Payment", back_populates="voucher_usage")
