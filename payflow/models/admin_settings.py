# payflow/models/admin_settings.py
from sqlalchemy import Column, String, DateTime, Numeric, text
from payflow.db.base_class import Base
import uuid


class AdminSettings(Base):
    __tablename__ = "admin_settings"

    id = Column(
        String, primary_key=True, default=lambda: f"ads_{uuid.uuid4().hex[:12]}"
    )
    default_service_charge = Column(Numeric(14, 2), server_default="0", nullable=False)
    default_topup_charge = Column(Numeric(14, 2), server_default="0", nullable=False)
    default_vat_rate = Column(Numeric(6, 4), server_default="0", nullable=False)  # 0.075 for 7.5%

    updated_at = Column(DateTime(timezone=True), server_default=text("now()"), nullable=False)
