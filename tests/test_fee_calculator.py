"""
Tests for the payment fee calculator.

Verifies that FeeCalculator correctly:
- Adds the service fee and VAT to ordinary payments
- Charges the top-up fee (and no service fee) on wallet top-ups
- Never lets a voucher drive the adjusted amount below zero
- Rounds every component half-up to two places
- Builds rates from the AdminSettings row, with zero rates when it is missing
"""

from decimal import Decimal
from unittest.mock import MagicMock

from payflow.services.payment.fee_calculator import (
    AdminRates,
    FeeCalculator,
    to_money,
)


class TestFeeCalculator:
    """Tests for FeeCalculator.calculate."""

    def setup_method(self):
        """Service charge 50, top-up charge 100, VAT 7.5%."""
        self.calculator = FeeCalculator()
        self.rates = AdminRates(
            service_charge=Decimal("50"),
            topup_charge=Decimal("100"),
            vat_rate=Decimal("0.075"),
        )

    # ------------------------------------------------------------------ #
    # Ordinary payments
    # ------------------------------------------------------------------ #

    def test_transfer_payment_total(self):
        """1000 + 50 service fee + 75 VAT = 1125.00."""
        result = self.calculator.calculate(Decimal("1000"), Decimal("0"), False, self.rates)

        assert result.adjusted_amount == Decimal("1000.00")
        assert result.service_fee == Decimal("50.00")
        assert result.topup_charge == Decimal("0.00")
        assert result.vat == Decimal("75.00")
        assert result.total_amount == Decimal("1125.00")

    def test_voucher_discount_reduces_vat_base(self):
        """VAT is charged on the discounted amount, the service fee is not discounted."""
        result = self.calculator.calculate(Decimal("1000"), Decimal("200"), False, self.rates)

        assert result.adjusted_amount == Decimal("800.00")
        assert result.vat == Decimal("60.00")
        assert result.total_amount == Decimal("910.00")

    def test_discount_larger_than_base_clamps_to_zero(self):
        """A voucher worth more than the purchase leaves only the fee."""
        result = self.calculator.calculate(Decimal("100"), Decimal("250"), False, self.rates)

        assert result.adjusted_amount == Decimal("0.00")
        assert result.vat == Decimal("0.00")
        assert result.total_amount == Decimal("50.00")

    def test_accepts_plain_numbers(self):
        """Floats and ints are coerced through their string form."""
        result = self.calculator.calculate(1000, None, False, self.rates)

        assert result.total_amount == Decimal("1125.00")

    # ------------------------------------------------------------------ #
    # Wallet top-ups
    # ------------------------------------------------------------------ #

    def test_wallet_topup_uses_topup_charge(self):
        """Top-ups pay the top-up charge instead of the service fee."""
        result = self.calculator.calculate(Decimal("1000"), Decimal("0"), True, self.rates)

        assert result.service_fee == Decimal("0.00")
        assert result.topup_charge == Decimal("100.00")
        assert result.vat == Decimal("75.00")
        assert result.total_amount == Decimal("1175.00")

    # ------------------------------------------------------------------ #
    # Rounding and rates
    # ------------------------------------------------------------------ #

    def test_vat_rounds_half_up(self):
        """333.33 * 7.5% = 24.99975, rounded to 25.00."""
        result = self.calculator.calculate(Decimal("333.33"), Decimal("0"), False, self.rates)

        assert result.vat == Decimal("25.00")
        assert result.total_amount == Decimal("408.33")

    def test_negative_rates_are_treated_as_zero(self):
        """A misconfigured negative rate never reduces the total."""
        rates = AdminRates(Decimal("-10"), Decimal("-10"), Decimal("-0.5"))
        result = self.calculator.calculate(Decimal("100"), Decimal("0"), False, rates)

        assert result.total_amount == Decimal("100.00")

    def test_rates_from_missing_settings_are_zero(self):
        """No AdminSettings row means no fees."""
        rates = AdminRates.from_settings(None)

        assert rates.service_charge == Decimal("0")
        assert rates.topup_charge == Decimal("0")
        assert rates.vat_rate == Decimal("0")

    def test_rates_from_settings_row(self):
        """Rates are read from the AdminSettings columns."""
        row = MagicMock(
            default_service_charge=Decimal("50.00"),
            default_topup_charge=Decimal("20.00"),
            default_vat_rate=Decimal("0.0750"),
        )
        rates = AdminRates.from_settings(row)

        assert rates.service_charge == Decimal("50.00")
        assert rates.topup_charge == Decimal("20.00")
        assert rates.vat_rate == Decimal("0.0750")

    def test_to_money_quantizes(self):
        """to_money rounds to two places."""
        assert to_money(1127.505) == Decimal("1127.51")
        assert to_money("10") == Decimal("10.00")
