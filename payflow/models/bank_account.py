# payflow/models/bank_account.py
from sqlalchemy import Column, String, DateTime, ForeignKey, UniqueConstraint, text
from sqlalchemy.orm import relationship
from payflow.db.base_class import Base
import uuid


class BankAccount(Base):
    __tablename__ = "bank_accounts"
    __table_args__ = (UniqueConstraint("user_id", "account_number"),)

    id = Column(
        String, primary_key=True, default=lambda: f"bnk_{uuid.uuid4().hex[:12]}"
    )
    user_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)
    account_number = Column(String(10), nullable=False)
    bank_code = Column(String(20), nullable=False)
    bank_name = Column(String(255), nullable=True)
    card_type = Column(String(50), nullable=False, server_default="BANK_ACCOUNT")

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
    updated_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)

    user = relationship("User", back_populates="bank_accounts")
