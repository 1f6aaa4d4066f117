"""
Fee calculation for payments.

Fee model:
- adjusted_amount = max(0, base_amount - voucher_discount)
- wallet top-ups pay the top-up charge, everything else pays the service fee
- vat = adjusted_amount * vat_rate
- total_amount = adjusted_amount + (topup_charge or service_fee) + vat

Amounts are Decimal and rounded half-up to two places. Input validation
(negative or non-numeric base amounts) happens in the orchestrator.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP

TWO_PLACES = Decimal("0.01")


def to_money(value) -> Decimal:
    """Coerce a number to a two-place Decimal."""
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


@dataclass
class AdminRates:
    service_charge: Decimal
    topup_charge: Decimal
    vat_rate: Decimal  # fraction, 0.075 for 7.5%

    @classmethod
    def from_settings(cls, admin_settings) -> "AdminRates":
        """Build rates from an AdminSettings row; a missing row means zero rates."""
        if admin_settings is None:
            return cls(Decimal("0"), Decimal("0"), Decimal("0"))
        return cls(
            service_charge=Decimal(str(admin_settings.default_service_charge or 0)),
            topup_charge=Decimal(str(admin_settings.default_topup_charge or 0)),
            vat_rate=Decimal(str(admin_settings.default_vat_rate or 0)),
        )


@dataclass
class FeeBreakdown:
    adjusted_amount: Decimal
    service_fee: Decimal
    topup_charge: Decimal
    vat: Decimal
    total_amount: Decimal


class FeeCalculator:
    """Pure fee/VAT/top-up computation."""

    def calculate(
        self,
        base_amount,
        voucher_discount,
        is_wallet_top_up: bool,
        rates: AdminRates,
    ) -> FeeBreakdown:
        base = Decimal(str(base_amount))
        discount = Decimal(str(voucher_discount or 0))

        adjusted = max(Decimal("0"), base - discount)

        if is_wallet_top_up:
            service_fee = Decimal("0")
            topup_charge = max(Decimal("0"), rates.topup_charge)
            charge = topup_charge
        else:
            service_fee = max(Decimal("0"), rates.service_charge)
            topup_charge = Decimal("0")
            charge = service_fee

        vat = adjusted * max(Decimal("0"), rates.vat_rate)
        total = adjusted + charge + vat

        return FeeBreakdown(
            adjusted_amount=to_money(adjusted),
            service_fee=to_money(service_fee),
            topup_charge=to_money(topup_charge),
            vat=to_money(vat),
            total_amount=to_money(total),
        )


fee_calculator = FeeCalculator()
