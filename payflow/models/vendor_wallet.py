# payflow/models/vendor_wallet.py
from sqlalchemy import Column, String, DateTime, ForeignKey, text
from sqlalchemy.orm import relationship
from payflow.db.base_class import Base
import uuid


class VendorWallet(Base):
    __tablename__ = "vendor_wallets"

    id = Column(
        String, primary_key=True, default=lambda: f"wal_{uuid.uuid4().hex[:12]}"
    )
    user_id = Column(String, ForeignKey("users.id"), unique=True, nullable=False)

    # Reserved account references at the gateway (split settlement)
    item_account_reference = Column(String(255), nullable=True)
    delivery_account_reference = Column(String(255), nullable=True)
    bank_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)

    owner = relationship("User", back_populates="wallet")
