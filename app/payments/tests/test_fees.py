"""
Tests for the fee policy.

Covers the canonical formula, minimum fees, rounding, the transaction
window and profile-derived policies.
"""

from decimal import Decimal

import pytest

from payments.exceptions import FeeValidationError
from payments.fees import (
    FeePolicy,
    calculate_order_total,
    round_money,
    to_decimal,
)
from payments.gateways import PROFILES


# =============================================================================
# FeePolicy.compute
# =============================================================================


class TestFeePolicyCompute:
    """Tests for FeePolicy.compute with the default rates."""

    def test_standard_order(self):
        """Should add 5% platform and 2.9% processing on top of the subtotal."""
        breakdown = FeePolicy().compute(Decimal("20.00"))

        assert breakdown.subtotal == Decimal("20.00")
        assert breakdown.platform_fee == Decimal("1.00")
        assert breakdown.processing_fee == Decimal("0.58")
        assert breakdown.total == Decimal("21.58")
        assert breakdown.seller_amount == Decimal("20.00")

    def test_round_hundred(self):
        breakdown = FeePolicy().compute(Decimal("100.00"))

        assert breakdown.platform_fee == Decimal("5.00")
        assert breakdown.processing_fee == Decimal("2.90")
        assert breakdown.total == Decimal("107.90")

    def test_minimum_fee_applies_to_each_fee(self):
        """Small orders pay the 0.30 floor on both fees."""
        breakdown = FeePolicy().compute(Decimal("5.00"))

        assert breakdown.platform_fee == Decimal("0.30")
        assert breakdown.processing_fee == Decimal("0.30")
        assert breakdown.total == Decimal("5.60")

    def test_total_is_sum_of_parts(self):
        breakdown = FeePolicy().compute(Decimal("123.45"))

        assert breakdown.total == (
            breakdown.subtotal + breakdown.platform_fee + breakdown.processing_fee
        )
        assert breakdown.total_fees == breakdown.platform_fee + breakdown.processing_fee

    def test_processing_fee_rounds_half_up(self):
        """2.9% of 50.00 is 1.45 exactly; 2.9% of 15.50 is 0.4495 -> 0.45."""
        assert FeePolicy().compute(Decimal("50.00")).processing_fee == Decimal("1.45")
        assert FeePolicy().compute(Decimal("15.50")).processing_fee == Decimal("0.45")

    def test_accepts_int_and_string_amounts(self):
        assert FeePolicy().compute(20).total == Decimal("21.58")
        assert FeePolicy().compute("20").total == Decimal("21.58")

    def test_currency_is_lowercased(self):
        assert FeePolicy().compute(Decimal("20.00"), "USD").currency == "usd"

    def test_as_dict_serialises_strings(self):
        data = FeePolicy().compute(Decimal("20.00")).as_dict()

        assert data == {
            "subtotal": "20.00",
            "platform_fee": "1.00",
            "processing_fee": "0.58",
            "total": "21.58",
            "seller_amount": "20.00",
            "currency": "usd",
        }


# =============================================================================
# Transaction Window
# =============================================================================


class TestTransactionWindow:
    """Tests for the [min_transaction, max_transaction] bounds."""

    def test_bounds_are_inclusive(self):
        policy = FeePolicy()

        assert policy.compute(Decimal("1.00")).subtotal == Decimal("1.00")
        assert policy.compute(Decimal("10000.00")).subtotal == Decimal("10000.00")

    @pytest.mark.parametrize("amount", ["0.99", "10000.01", "250000"])
    def test_outside_window_rejected(self, amount):
        with pytest.raises(FeeValidationError) as exc_info:
            FeePolicy().compute(Decimal(amount))

        assert exc_info.value.error_code == "AMOUNT_OUT_OF_RANGE"
        assert "amount" in exc_info.value.details

    @pytest.mark.parametrize("amount", ["0", "-5.00"])
    def test_non_positive_rejected(self, amount):
        with pytest.raises(FeeValidationError) as exc_info:
            FeePolicy().compute(Decimal(amount))

        assert exc_info.value.error_code == "INVALID_AMOUNT"

    def test_unparseable_amount_rejected(self):
        with pytest.raises(FeeValidationError):
            FeePolicy().compute("twenty")

    def test_custom_window(self):
        policy = FeePolicy(min_transaction=Decimal("10.00"), max_transaction=Decimal("50.00"))

        with pytest.raises(FeeValidationError):
            policy.compute(Decimal("9.99"))
        assert policy.compute(Decimal("50.00")).subtotal == Decimal("50.00")


# =============================================================================
# Profiles
# =============================================================================


class TestProfilePolicies:
    """Tests for FeePolicy.from_profile."""

    def test_development_profile_uses_one_percent(self):
        policy = FeePolicy.from_profile(PROFILES["development"])
        breakdown = policy.compute(Decimal("20.00"))

        assert policy.platform_rate == Decimal("0.01")
        assert breakdown.platform_fee == Decimal("0.30")
        assert breakdown.total == Decimal("20.88")

    def test_production_profile_raises_ceiling(self):
        policy = FeePolicy.from_profile(PROFILES["production"])

        assert policy.max_transaction == Decimal("25000.00")
        assert policy.compute(Decimal("20000.00")).platform_fee == Decimal("1000.00")


# =============================================================================
# calculate_order_total and helpers
# =============================================================================


class TestCalculateOrderTotal:
    def test_explicit_rates(self):
        breakdown = calculate_order_total(1000, 2, Decimal("0.05"), Decimal("0.03"))

        assert breakdown.subtotal == Decimal("2000.00")
        assert breakdown.platform_fee == Decimal("100.00")
        assert breakdown.processing_fee == Decimal("60.00")
        assert breakdown.total == Decimal("2160.00")

    def test_no_minimum_fee(self):
        breakdown = calculate_order_total(Decimal("1.00"), 1, Decimal("0.05"), Decimal("0.029"))

        assert breakdown.platform_fee == Decimal("0.05")
        assert breakdown.processing_fee == Decimal("0.03")

    def test_quantity_must_be_positive(self):
        with pytest.raises(FeeValidationError):
            calculate_order_total(Decimal("10.00"), 0, Decimal("0.05"), Decimal("0.03"))


class TestMoneyHelpers:
    def test_round_money_half_up(self):
        assert round_money(Decimal("0.145")) == Decimal("0.15")
        assert round_money(Decimal("2.675")) == Decimal("2.68")
        assert round_money(Decimal("0.144")) == Decimal("0.14")

    def test_floats_go_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")
        assert round_money(0.1) == Decimal("0.10")

    @pytest.mark.parametrize("value", ["NaN", "sNaN", "Infinity", "-inf", float("nan"), Decimal("Infinity")])
    def test_non_finite_rejected(self, value):
        with pytest.raises(FeeValidationError) as exc_info:
            to_decimal(value)

        assert exc_info.value.error_code == "INVALID_AMOUNT"
