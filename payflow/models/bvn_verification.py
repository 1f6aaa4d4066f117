# payflow/models/bvn_verification.py
from sqlalchemy import Column, String, DateTime, ForeignKey, Text, text
from payflow.db.base_class import Base
import uuid


class BVNVerification(Base):
    __tablename__ = "bvn_verifications"

    id = Column(
        String, primary_key=True, default=lambda: f"bvn_{uuid.uuid4().hex[:12]}"
    )
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    masked_bvn = Column(String(20), nullable=False)  # '****1234'
    account_number = Column(String(10), nullable=False)
    bank_code = Column(String(20), nullable=False)
    status = Column(String(20), nullable=False, server_default="PENDING")
    # Values: 'PENDING', 'COMPLETED', 'FAILED'
    failure_reason = Column(Text, nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
