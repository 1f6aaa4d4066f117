# payflow/crud/crud_voucher.py
from decimal import Decimal
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy import or_
from sqlalchemy.orm import Session

from payflow.crud.base import CRUDBase
from payflow.models.voucher import Voucher, VoucherUsage


class CRUDVoucher(CRUDBase[Voucher]):
    """CRUD operations for Voucher model."""

    def get_by_code(self, db: Session, *, code: str) -> Optional[Voucher]:
        return db.query(self.model).filter(self.model.code == code).first()

    def count_user_usages(self, db: Session, *, voucher_id: str, user_id: str) -> int:
        return (
            db.query(VoucherUsage)
            .filter(
                VoucherUsage.voucher_id == voucher_id,
                VoucherUsage.user_id == user_id,
            )
            .count()
        )

    def claim_use(self, db: Session, *, voucher_id: str) -> bool:
        """
        Increment the use counter if the voucher still has capacity.

        Single conditional UPDATE; two concurrent claims on the last use
        cannot both match. Does not commit.
        """
        claimed = (
            db.query(self.model)
            .filter(
                self.model.id == voucher_id,
                self.model.is_active.is_(True),
                or_(self.model.max_uses.is_(None), self.model.uses < self.model.max_uses),
            )
            .update(
                {
                    "uses": self.model.uses + 1,
                    "updated_at": datetime.now(timezone.utc),
                },
                synchronize_session=False,
            )
        )
        return claimed == 1

    def add_usage(
        self,
        db: Session,
        *,
        voucher_id: str,
        user_id: str,
        payment_id: str,
        discount: Decimal,
    ) -> VoucherUsage:
        """Stage a redemption record in the current transaction."""
        usage = VoucherUsage(
            voucher_id=voucher_id,
            user_id=user_id,
            payment_id=payment_id,
            discount=discount,
        )
        db.add(usage)
        return usage


voucher = CRUDVoucher(Voucher)
