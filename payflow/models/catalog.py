# payflow/models/catalog.py
from sqlalchemy import Column, String, ForeignKey
from sqlalchemy.orm import relationship
from payflow.db.base_class import Base
import uuid


class Product(Base):
    __tablename__ = "products"

    id = Column(
        String, primary_key=True, default=lambda: f"prd_{uuid.uuid4().hex[:12]}"
    )
    name = Column(String(255), nullable=False)
    owner_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    owner = relationship("User")


class Service(Base):
    __tablename__ = "services"

    id = Column(
        String, primary_key=True, default=lambda: f"svc_{uuid.uuid4().hex[:12]}"
    )
    name = Column(String(255), nullable=False)
    service_type = Column(String(50), nullable=False)  # 'gas', 'petrol', 'diesel'
    provider_id = Column(String, ForeignKey("users.id"), nullable=False, index=True)

    provider = relationship("User")
