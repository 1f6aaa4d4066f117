# payflow/services/payment/voucher_service.py
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from payflow import crud
from payflow.core.logging import payment_logger
from payflow.models.voucher import Voucher
from payflow.schemas.payment import DiscountType, VoucherContext
from .exceptions import ValidationError, VoucherInvalidError
from .fee_calculator import to_money

VOUCHER_CODE_PATTERN = re.compile(r"^[A-Z0-9-]+$")


@dataclass
class AppliedVoucher:
    voucher: Voucher
    code: str
    discount: Decimal


class VoucherService:
    """
    Validates a voucher code against a transaction context and prices the
    discount. Redemption itself (the use counter) happens atomically with
    the payment insert, in the orchestrator.
    """

    def __init__(self, db: Session, logger: logging.Logger = payment_logger):
        self.db = db
        self.logger = logger

    def validate(
        self,
        *,
        user_id: str,
        code: str,
        context: VoucherContext,
        amount: Decimal,
    ) -> AppliedVoucher:
        """
        Return the applicable discount or raise VoucherInvalidError.

        An invalid or inapplicable code always fails the request.
        """
        if not code or not VOUCHER_CODE_PATTERN.match(code):
            raise ValidationError("Invalid voucher code format")
        if amount <= 0:
            raise ValidationError("Amount must be positive")

        try:
            voucher = crud.voucher.get_by_code(self.db, code=code)
            reason = self._rejection_reason(voucher, user_id=user_id, context=context)
            if reason:
                raise VoucherInvalidError(f"Invalid or inapplicable voucher: {reason}")

            if voucher.type == DiscountType.PERCENTAGE.value:
                discount = Decimal(str(voucher.discount)) / Decimal("100") * amount
            else:
                discount = Decimal(str(voucher.discount))
            discount = to_money(min(discount, amount))

        except VoucherInvalidError as e:
            self.logger.warning(
                f"Voucher {code} rejected for user {user_id}: {e.message}"
            )
            crud.audit_log.log_action(
                self.db,
                action="VOUCHER_VALIDATION_FAILED",
                entity_type="VOUCHER",
                entity_id=None,
                user_id=user_id,
                details={"voucherCode": code, "context": context.value, "error": e.message},
            )
            raise

        crud.audit_log.log_action(
            self.db,
            action="VOUCHER_VALIDATED",
            entity_type="VOUCHER",
            entity_id=voucher.id,
            user_id=user_id,
            details={"voucherCode": code, "discount": float(discount), "context": context.value},
        )
        self.logger.info(f"Voucher {code} validated for user {user_id}: discount {discount}")
        return AppliedVoucher(voucher=voucher, code=code, discount=discount)

    def _rejection_reason(
        self, voucher: Optional[Voucher], *, user_id: str, context: VoucherContext
    ) -> Optional[str]:
        if voucher is None:
            return "not found"

        now = datetime.now(timezone.utc)
        if not voucher.is_active:
            return "inactive"
        if voucher.valid_from > now or voucher.valid_until < now:
            return "outside validity window"
        if voucher.is_exhausted:
            return "usage limit reached"
        if voucher.applies_to != context.value:
            return f"not applicable to {context.value} transactions"
        if voucher.max_uses_per_user is not None:
            used = crud.voucher.count_user_usages(
                self.db, voucher_id=voucher.id, user_id=user_id
            )
            if used >= voucher.max_uses_per_user:
                return "per-user limit reached"
        return None
