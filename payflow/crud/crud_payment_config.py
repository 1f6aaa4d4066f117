# payflow/crud/crud_payment_config.py
from typing import Optional
from sqlalchemy import func
from sqlalchemy.orm import Session

from payflow.crud.base import CRUDBase
from payflow.models.payment_config import PaymentConfig
from payflow.models.payment_provider import PaymentProvider
from payflow.models.admin_settings import AdminSettings


class CRUDPaymentConfig(CRUDBase[PaymentConfig]):
    def get_by_method(self, db: Session, *, payment_method: str) -> Optional[PaymentConfig]:
        return (
            db.query(self.model)
            .filter(self.model.payment_method == payment_method)
            .first()
        )


class CRUDPaymentProvider(CRUDBase[PaymentProvider]):
    def get_by_name(self, db: Session, *, name: str) -> Optional[PaymentProvider]:
        """Case-insensitive lookup by provider name."""
        return (
            db.query(self.model)
            .filter(func.lower(self.model.name) == name.lower())
            .first()
        )


class CRUDAdminSettings(CRUDBase[AdminSettings]):
    def get_current(self, db: Session) -> Optional[AdminSettings]:
        return db.query(self.model).order_by(self.model.updated_at.desc()).first()


payment_config = CRUDPaymentConfig(PaymentConfig)
payment_provider = CRUDPaymentProvider(PaymentProvider)
admin_settings = CRUDAdminSettings(AdminSettings)
