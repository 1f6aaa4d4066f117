# payflow/models/user.py
from sqlalchemy import Column, String, DateTime, Boolean, text
from sqlalchemy.orm import relationship
from payflow.db.base_class import Base


class User(Base):
    __tablename__ = "users"

    id = Column(String, primary_key=True)  # UUID issued by the identity service
    email = Column(String(255), nullable=True)
    first_name = Column(String(100), nullable=True)
    last_name = Column(String(100), nullable=True)
    bvn_verified = Column(Boolean, server_default=text("false"), nullable=False)

    created_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)

    wallet = relationship("VendorWallet", back_populates="owner", uselist=False)
    bank_accounts = relationship("BankAccount", back_populates="user")
