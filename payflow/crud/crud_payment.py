# payflow/crud/crud_payment.py
from typing import Any, Dict, Iterable, List, Optional, Tuple
from datetime import datetime, timezone
from sqlalchemy.orm import Session, joinedload

from payflow.crud.base import CRUDBase
from payflow.models.payment import Payment


class CRUDPayment(CRUDBase[Payment]):
    """CRUD operations for Payment model."""

    def get_by_transaction_ref(
        self, db: Session, *, transaction_ref: str
    ) -> Optional[Payment]:
        """Get a payment by its external transaction reference."""
        return (
            db.query(self.model)
            .filter(self.model.transaction_ref == transaction_ref)
            .first()
        )

    def get_for_user(
        self, db: Session, *, transaction_ref: str, user_id: str
    ) -> Optional[Payment]:
        return (
            db.query(self.model)
            .filter(
                self.model.transaction_ref == transaction_ref,
                self.model.user_id == user_id,
            )
            .first()
        )

    def add_pending(self, db: Session, *, obj_in: Dict[str, Any]) -> Payment:
        """
        Stage a new PENDING payment in the current transaction.

        The caller commits, so voucher redemption can share the same unit.
        """
        db_obj = Payment(status="PENDING", **obj_in)
        db.add(db_obj)
        db.flush()
        return db_obj

    def update_details(
        self,
        db: Session,
        *,
        payment: Payment,
        payment_details: Optional[dict] = None,
        status: Optional[str] = None,
        monnify_ref: Optional[str] = None,
        commit: bool = True,
    ) -> Payment:
        """Merge gateway artifacts into a payment."""
        if payment_details is not None:
            payment.payment_details = payment_details
        if status:
            payment.status = status
        if monnify_ref:
            payment.monnify_ref = monnify_ref
        payment.updated_at = datetime.now(timezone.utc)

        db.add(payment)
        if commit:
            db.commit()
            db.refresh(payment)
        return payment

    def transition_status(
        self,
        db: Session,
        *,
        payment_id: str,
        from_statuses: Iterable[str],
        to_status: str,
        payment_details: Optional[dict] = None,
        commit: bool = True,
    ) -> bool:
        """
        Move a payment to `to_status` only if it is still in one of
        `from_statuses`. Returns False when another writer got there first.
        """
        values = {"status": to_status, "updated_at": datetime.now(timezone.utc)}
        if payment_details is not None:
            values["payment_details"] = payment_details

        updated = (
            db.query(self.model)
            .filter(
                self.model.id == payment_id,
                self.model.status.in_(list(from_statuses)),
            )
            .update(values, synchronize_session=False)
        )
        if commit:
            db.commit()
        return updated == 1

    def get_history(
        self,
        db: Session,
        *,
        user_id: str,
        skip: int = 0,
        limit: int = 10,
        start_date: Optional[datetime] = None,
        end_date: Optional[datetime] = None,
        status: Optional[str] = None,
        payment_method: Optional[str] = None,
    ) -> Tuple[List[Payment], int]:
        """Get a user's payments, newest first, with the unpaginated total."""
        query = db.query(self.model).filter(self.model.user_id == user_id)

        if start_date:
            query = query.filter(self.model.created_at >= start_date)
        if end_date:
            query = query.filter(self.model.created_at <= end_date)
        if status:
            query = query.filter(self.model.status == status)
        if payment_method:
            query = query.filter(self.model.payment_method == payment_method)

        total = query.count()
        items = (
            query.options(joinedload(self.model.provider))
            .order_by(self.model.created_at.desc())
            .offset(skip)
            .limit(limit)
            .all()
        )
        return items, total


payment = CRUDPayment(Payment)
