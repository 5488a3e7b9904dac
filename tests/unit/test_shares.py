"""
test_shares.py - Unit tests for share conversion and index accrual

Tests:
- Rounding direction of every amount/share conversion
- Elapsed-time computation and clamping
- Index compounding, including the fee split
- Next-timestamp bookkeeping
"""

import pytest
from datetime import datetime, timedelta
from decimal import Decimal

from lendpool import MathOverflow, SECONDS_PER_YEAR, amount_to_shares, calculate_accrual, compound_index
from lendpool.shares import (
    asset_amount,
    asset_shares_for_deposit,
    asset_shares_for_withdraw,
    calculate_elapsed_seconds,
    liability_amount,
    liability_shares_for_borrow,
    liability_shares_for_repay,
    next_accrual_timestamp,
)
from tests.fake_oracle import T0, rate_config


THIRD = Decimal("3")
ULP = Decimal("1e-18")


# ============================================================================
# CONVERSIONS
# ============================================================================

class TestConversions:
    """Each conversion rounds toward the pool."""

    def test_deposit_shares_round_down(self):
        assert asset_shares_for_deposit(Decimal("1"), THIRD) == Decimal("0.333333333333333333")

    def test_withdraw_shares_round_up(self):
        assert asset_shares_for_withdraw(Decimal("1"), THIRD) == Decimal("0.333333333333333334")

    def test_borrow_shares_round_up(self):
        assert liability_shares_for_borrow(Decimal("1"), THIRD) == Decimal("0.333333333333333334")

    def test_repay_shares_round_down(self):
        assert liability_shares_for_repay(Decimal("1"), THIRD) == Decimal("0.333333333333333333")

    def test_asset_amount_rounds_down(self):
        shares = Decimal("0.333333333333333333")
        assert asset_amount(shares, Decimal("1.000000000000000001")) == Decimal("0.333333333333333333")

    def test_liability_amount_rounds_up(self):
        shares = Decimal("0.333333333333333333")
        assert liability_amount(shares, Decimal("1.000000000000000001")) == Decimal("0.333333333333333334")

    def test_exact_conversions_are_exact(self):
        assert asset_shares_for_deposit(Decimal("100"), Decimal("1.25")) == Decimal("80")
        assert liability_shares_for_borrow(Decimal("100"), Decimal("1.25")) == Decimal("80")

    def test_deposit_then_claim_never_exceeds_deposit(self):
        index = Decimal("1.123456789012345678")
        amount = Decimal("987.654321")
        shares = asset_shares_for_deposit(amount, index)
        assert asset_amount(shares, index) <= amount

    def test_borrow_then_owe_never_below_borrow(self):
        index = Decimal("1.123456789012345678")
        amount = Decimal("987.654321")
        shares = liability_shares_for_borrow(amount, index)
        assert liability_amount(shares, index) >= amount

    def test_non_positive_index_rejected(self):
        with pytest.raises(MathOverflow):
            amount_to_shares(Decimal("1"), Decimal("0"), round_up=False)

    def test_coarser_places(self):
        assert asset_shares_for_deposit(Decimal("1"), THIRD, places=9) == Decimal("0.333333333")


# ============================================================================
# ELAPSED TIME
# ============================================================================

class TestElapsedSeconds:
    """Tests for calculate_elapsed_seconds and next_accrual_timestamp."""

    def test_whole_seconds(self):
        later = T0 + timedelta(seconds=90, milliseconds=700)
        assert calculate_elapsed_seconds(T0, later, SECONDS_PER_YEAR) == (90, False)

    def test_same_instant_is_zero(self):
        assert calculate_elapsed_seconds(T0, T0, SECONDS_PER_YEAR) == (0, False)

    def test_backwards_is_zero(self):
        assert calculate_elapsed_seconds(T0, T0 - timedelta(hours=1), SECONDS_PER_YEAR) == (0, False)

    def test_clamped_to_max_interval(self):
        later = T0 + timedelta(days=10)
        assert calculate_elapsed_seconds(T0, later, 3600) == (3600, True)

    def test_next_timestamp_keeps_sub_second_remainder(self):
        now = T0 + timedelta(seconds=5, milliseconds=400)
        assert next_accrual_timestamp(T0, now, 5, False) == T0 + timedelta(seconds=5)

    def test_clamped_next_timestamp_is_now(self):
        now = T0 + timedelta(days=10)
        assert next_accrual_timestamp(T0, now, 3600, True) == now


# ============================================================================
# COMPOUNDING
# ============================================================================

class TestCompoundIndex:
    """Tests for compound_index."""

    def test_one_year_simple_growth(self):
        assert compound_index(Decimal("1"), Decimal("0.1"), SECONDS_PER_YEAR,
                              SECONDS_PER_YEAR, round_up=True) == Decimal("1.1")

    def test_zero_elapsed_is_unchanged(self):
        assert compound_index(Decimal("1.5"), Decimal("0.1"), 0, SECONDS_PER_YEAR, True) == Decimal("1.5")

    def test_zero_rate_is_unchanged(self):
        assert compound_index(Decimal("1.5"), Decimal("0"), 3600, SECONDS_PER_YEAR, True) == Decimal("1.5")

    def test_rounding_direction(self):
        up = compound_index(Decimal("1"), Decimal("0.1"), 1, SECONDS_PER_YEAR, round_up=True)
        down = compound_index(Decimal("1"), Decimal("0.1"), 1, SECONDS_PER_YEAR, round_up=False)
        assert up - down == ULP
        assert down >= Decimal("1")

    def test_tiny_rate_never_decreases(self):
        index = Decimal("1.000000000000000001")
        assert compound_index(index, Decimal("1e-30"), 1, SECONDS_PER_YEAR, round_up=False) >= index


class TestCalculateAccrual:
    """Tests for calculate_accrual on a 40%-utilized bank."""

    def test_one_year_without_fees(self):
        """u=40% gives borrow 5.5% and lend 2.2%."""
        result = calculate_accrual(
            Decimal("1"), Decimal("1"), Decimal("1000"), Decimal("400"),
            rate_config(), SECONDS_PER_YEAR, SECONDS_PER_YEAR,
        )
        assert result.borrow_index == Decimal("1.055")
        assert result.deposit_index == Decimal("1.022")
        assert result.insurance_fees == 0
        assert result.group_fees == 0
        assert result.elapsed_seconds == SECONDS_PER_YEAR
        assert result.rates.utilization == Decimal("0.4")

    def test_one_year_with_fees(self):
        """
        Borrow interest 22 on 400; 5% each to insurance and group (1.1 each),
        lenders get 22 - 2.2 = 19.8 on 1000.
        """
        config = rate_config(insurance_fee_fraction=Decimal("0.05"),
                             group_fee_fraction=Decimal("0.05"))
        result = calculate_accrual(
            Decimal("1"), Decimal("1"), Decimal("1000"), Decimal("400"),
            config, SECONDS_PER_YEAR, SECONDS_PER_YEAR,
        )
        assert result.borrow_index == Decimal("1.055")
        assert result.deposit_index == Decimal("1.0198")
        assert result.insurance_fees == Decimal("1.1")
        assert result.group_fees == Decimal("1.1")

    def test_zero_elapsed_returns_inputs(self):
        result = calculate_accrual(
            Decimal("1.2"), Decimal("1.3"), Decimal("1000"), Decimal("400"),
            rate_config(), 0, SECONDS_PER_YEAR,
        )
        assert result.deposit_index == Decimal("1.2")
        assert result.borrow_index == Decimal("1.3")
        assert result.elapsed_seconds == 0
        assert result.insurance_fees == 0

    def test_empty_bank_accrues_base_rate_on_borrow_index_only(self):
        result = calculate_accrual(
            Decimal("1"), Decimal("1"), Decimal("0"), Decimal("0"),
            rate_config(), SECONDS_PER_YEAR, SECONDS_PER_YEAR,
        )
        assert result.borrow_index == Decimal("1.01")
        assert result.deposit_index == Decimal("1")

    def test_borrow_growth_covers_lender_growth(self):
        """Interest owed by borrowers is at least what lenders are credited."""
        result = calculate_accrual(
            Decimal("1"), Decimal("1"), Decimal("1000"), Decimal("777"),
            rate_config(), 86_400, SECONDS_PER_YEAR,
        )
        owed = Decimal("777") * (result.borrow_index - 1)
        credited = Decimal("1000") * (result.deposit_index - 1)
        assert owed >= credited
