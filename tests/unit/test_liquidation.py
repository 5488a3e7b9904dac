"""
test_liquidation.py - Unit tests for liquidation sizing and post-checks

Reference case: a stable-coin collateral bank with a 50% maintenance
weight holds 1600 tokens against 1000 USDC of debt, so maintenance health
is 800 / 1000 = 0.8. Bonus 5%, insurance cut 3%.
"""

import pytest
from decimal import Decimal

from lendpool import (
    AccountHealthy,
    Balance,
    HealthCheckFailed,
    HealthReport,
    IllegalLiquidation,
    InsufficientCollateral,
    InvalidAmount,
    PriceQuote,
    RequirementType,
    calculate_health,
    calculate_liquidation_plan,
    calculate_restore_amount,
    create_account,
)
from lendpool.account import set_balance
from lendpool.liquidation import check_liquidation_eligibility, check_liquidation_outcome
from tests.fake_oracle import T0, make_bank


K = Decimal("2")
CLOSE_FACTOR = Decimal("0.5")
UNIT = PriceQuote(Decimal("1"), Decimal("0"), T0)


def setup(collateral="1600", debt="1000", weight_init="0.4", weight_maint="0.5"):
    stable = make_bank("stable", asset_weight_init=Decimal(weight_init),
                       asset_weight_maint=Decimal(weight_maint))
    usdc = make_bank("usdc")
    account = create_account("alice", "core")
    account = set_balance(account, Balance("stable", asset_shares=Decimal(collateral)))
    account = set_balance(account, Balance("usdc", liability_shares=Decimal(debt)))
    banks = {"stable": stable, "usdc": usdc}
    report = calculate_health(account, banks, {"stable": UNIT, "usdc": UNIT},
                              RequirementType.MAINTENANCE, K)
    return report, usdc, stable


def plan(nominated, report, usdc, stable, outstanding="1000", available="1600"):
    return calculate_liquidation_plan(
        Decimal(nominated), Decimal(outstanding), Decimal(available),
        report, usdc, stable, UNIT, UNIT, CLOSE_FACTOR, K,
    )


def report_with(health, account_id="x", liabilities="1"):
    return HealthReport(account_id, RequirementType.MAINTENANCE, Decimal(health),
                        Decimal(liabilities), Decimal(health), ())


# ============================================================================
# ELIGIBILITY
# ============================================================================

class TestEligibility:

    def test_unhealthy_account_is_eligible(self):
        report, _, _ = setup()
        assert report.health_factor == Decimal("0.8")
        check_liquidation_eligibility(report)

    def test_healthy_account_rejected(self):
        with pytest.raises(AccountHealthy):
            check_liquidation_eligibility(report_with("1"))

    def test_account_without_debt_rejected(self):
        report = HealthReport("x", RequirementType.MAINTENANCE, Decimal("0"), Decimal("0"),
                              Decimal("Infinity"), ())
        with pytest.raises(AccountHealthy):
            check_liquidation_eligibility(report)

    def test_needs_maintenance_report(self):
        report = HealthReport("x", RequirementType.INITIAL, Decimal("0"), Decimal("1"),
                              Decimal("0"), ())
        with pytest.raises(ValueError):
            check_liquidation_eligibility(report)


# ============================================================================
# SIZING
# ============================================================================

class TestSizing:
    """Tests for calculate_liquidation_plan."""

    def test_hundred_dollar_split(self):
        """$100 repaid: $105 seized, $102 to the liquidator, $3 to insurance."""
        result = plan("100", *setup())
        assert result.repay_amount == Decimal("100")
        assert result.repaid_value == Decimal("100")
        assert result.seized_amount == Decimal("105")
        assert result.liquidator_amount == Decimal("102")
        assert result.insurance_amount == Decimal("3")
        assert result.health_before == Decimal("0.8")

    def test_restore_amount(self):
        """Each repaid token removes 1 of liability and 1.05 * 0.5 of collateral."""
        report, usdc, stable = setup()
        restore = calculate_restore_amount(report, usdc, stable, UNIT, UNIT, K)
        assert restore == Decimal("421.052631578947368421")

    def test_repay_capped_by_restore(self):
        result = plan("1000", *setup())
        assert result.repay_amount == Decimal("421.052631578947368421")
        assert result.max_close_amount == Decimal("500")

    def test_restore_not_applicable_falls_back_to_close_factor(self):
        """With full collateral weight each repaid token removes more collateral than debt."""
        report, usdc, stable = setup(collateral="900", weight_init="1", weight_maint="1")
        assert calculate_restore_amount(report, usdc, stable, UNIT, UNIT, K) is None
        result = plan("2000", report, usdc, stable, available="900")
        assert result.restore_amount is None
        assert result.repay_amount == Decimal("500")
        assert result.seized_amount == Decimal("525")

    def test_repay_capped_by_outstanding(self):
        result = plan("100", *setup(), outstanding="40")
        assert result.repay_amount == Decimal("20")

    def test_zero_nomination_rejected(self):
        with pytest.raises(InvalidAmount):
            plan("0", *setup())

    def test_sub_unit_shortfall_counts_as_healthy(self):
        """Restoring a 2e-19 shortfall needs less than one unit of USDC."""
        _, usdc, stable = setup()
        with pytest.raises(AccountHealthy):
            plan("100", report_with("0.9999999999999999998"), usdc, stable)

    def test_insufficient_collateral(self):
        with pytest.raises(InsufficientCollateral):
            plan("100", *setup(), available="104.99")

    def test_split_uses_collateral_price(self):
        """Collateral at $2: $100 repaid seizes 52.5 tokens."""
        report, usdc, stable = setup()
        two = PriceQuote(Decimal("2"), Decimal("0"), T0)
        result = calculate_liquidation_plan(
            Decimal("100"), Decimal("1000"), Decimal("1600"),
            report, usdc, stable, UNIT, two, CLOSE_FACTOR, K,
        )
        assert result.liquidator_amount == Decimal("51")
        assert result.insurance_amount == Decimal("1.5")
        assert result.seized_amount == Decimal("52.5")

    def test_seized_never_exceeds_bonus_adjusted_value(self):
        report, usdc, stable = setup()
        third = PriceQuote(Decimal("3"), Decimal("0"), T0)
        result = calculate_liquidation_plan(
            Decimal("77.7"), Decimal("1000"), Decimal("1600"),
            report, usdc, stable, UNIT, third, CLOSE_FACTOR, K,
        )
        assert result.seized_amount * 3 <= result.repaid_value * Decimal("1.05")


# ============================================================================
# POST-CHECKS
# ============================================================================

class TestOutcome:

    def test_improvement_accepted(self):
        check_liquidation_outcome(report_with("0.8"), report_with("0.9"), report_with("2"))

    def test_equal_health_accepted(self):
        check_liquidation_outcome(report_with("0.8"), report_with("0.8"), report_with("1"))

    def test_worse_liquidatee_rejected(self):
        with pytest.raises(IllegalLiquidation):
            check_liquidation_outcome(report_with("0.8"), report_with("0.79"), report_with("2"))

    def test_unhealthy_liquidator_rejected(self):
        with pytest.raises(HealthCheckFailed):
            check_liquidation_outcome(report_with("0.8"), report_with("0.9"),
                                      report_with("0.99", account_id="liq"))
