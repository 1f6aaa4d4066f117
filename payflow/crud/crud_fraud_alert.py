# payflow/crud/crud_fraud_alert.py
from decimal import Decimal
from typing import Optional
from sqlalchemy.orm import Session

from payflow.crud.base import CRUDBase
from payflow.models.fraud_alert import FraudAlert
from payflow.models.payment import Payment


class CRUDFraudAlert(CRUDBase[FraudAlert]):
    def get_by_payment(self, db: Session, *, payment_id: str) -> Optional[FraudAlert]:
        return (
            db.query(self.model)
            .filter(self.model.entity_id == payment_id)
            .first()
        )

    def add_amount_mismatch(
        self,
        db: Session,
        *,
        payment: Payment,
        reported_amount: Decimal,
        source: str,
    ) -> FraudAlert:
        """Stage an AMOUNT_MISMATCH alert for a payment. Does not commit."""
        alert = FraudAlert(
            type="AMOUNT_MISMATCH",
            entity_type="Payment",
            entity_id=payment.id,
            user_id=payment.user_id,
            reason=(
                f"Payment amount mismatch: Database={payment.amount}, "
                f"{source}={reported_amount}"
            ),
            expected_amount=payment.amount,
            reported_amount=reported_amount,
        )
        db.add(alert)
        return alert


fraud_alert = CRUDFraudAlert(FraudAlert)
