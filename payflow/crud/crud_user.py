# payflow/crud/crud_user.py
from typing import Optional
from datetime import datetime, timezone
from sqlalchemy.orm import Session

from payflow.crud.base import CRUDBase
from payflow.models.user import User
from payflow.models.bank_account import BankAccount
from payflow.models.bvn_verification import BVNVerification


class CRUDUser(CRUDBase[User]):
    def mark_bvn_verified(self, db: Session, *, user: User) -> User:
        """Flag the user as BVN-verified. Does not commit."""
        user.bvn_verified = True
        db.add(user)
        return user


class CRUDBankAccount(CRUDBase[BankAccount]):
    def upsert(
        self,
        db: Session,
        *,
        user_id: str,
        account_number: str,
        bank_code: str,
        bank_name: Optional[str] = None,
    ) -> BankAccount:
        """Create or refresh a linked bank account. Does not commit."""
        account = (
            db.query(self.model)
            .filter(
                self.model.user_id == user_id,
                self.model.account_number == account_number,
            )
            .first()
        )
        if account:
            account.bank_code = bank_code
            account.bank_name = bank_name or account.bank_name
            account.updated_at = datetime.now(timezone.utc)
        else:
            account = BankAccount(
                user_id=user_id,
                account_number=account_number,
                bank_code=bank_code,
                bank_name=bank_name,
                card_type="BANK_ACCOUNT",
            )
        db.add(account)
        return account


class CRUDBVNVerification(CRUDBase[BVNVerification]):
    def set_status(
        self,
        db: Session,
        *,
        verification: BVNVerification,
        status: str,
        failure_reason: Optional[str] = None,
        commit: bool = True,
    ) -> BVNVerification:
        verification.status = status
        verification.failure_reason = failure_reason
        verification.updated_at = datetime.now(timezone.utc)
        db.add(verification)
        if commit:
            db.commit()
        return verification


user = CRUDUser(User)
bank_account = CRUDBankAccount(BankAccount)
bvn_verification = CRUDBVNVerification(BVNVerification)
