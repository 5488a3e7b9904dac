"""
liquidation.py - Sizing and post-checks for liquidations

A liquidator repays part of an unhealthy account's debt on one bank and
receives collateral from another bank at a bonus. This module decides how
much may be repaid and how the seized collateral is split; the engine
applies the resulting plan to both balance sheets and then runs the
post-checks defined here.

Sizing (tokens of the liability asset):

    repay = min(nominated,
                outstanding,
                close_factor * outstanding,
                restore)

    restore = (L - C) / (l - a)       only when l > a

    where C, L are the liquidatee's Maintenance-weighted collateral and
    liability values, and per token repaid
        l = liability_price_high * liability_weight_maint
        a = (liability_price * (1 + bonus) / collateral_price)
            * collateral_price_low * asset_weight_maint

Settlement (point prices):

    repaid_value   = repay * liability_price
    seized         = repaid_value * (1 + bonus) / collateral_price
    to insurance   = repaid_value * insurance_fee_cut / collateral_price
    to liquidator  = seized - to insurance

Example: bonus 5%, insurance cut 3%, $100 repaid
    -> $105 seized, $102 to the liquidator, $3 to insurance
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Optional

from .bank import Bank
from .core import (
    FIXED_POINT_PLACES, ONE, ZERO,
    AccountHealthy, HealthCheckFailed, IllegalLiquidation, InsufficientCollateral,
    InvalidAmount, RequirementType,
    div_fixed, mul_fixed, round_down,
)
from .oracle import PriceQuote
from .risk import HealthReport


@dataclass(frozen=True, slots=True)
class LiquidationPlan:
    """
    Amounts for one liquidation, all in tokens except repaid_value.

    restore_amount is None when repaying this liability cannot lift the
    account back to health 1.0 through this collateral.
    """
    repay_amount: Decimal
    repaid_value: Decimal
    seized_amount: Decimal
    liquidator_amount: Decimal
    insurance_amount: Decimal
    max_close_amount: Decimal
    restore_amount: Optional[Decimal]
    health_before: Decimal


# ============================================================================
# ELIGIBILITY
# ============================================================================

def check_liquidation_eligibility(report: HealthReport) -> None:
    """
    Raises:
        AccountHealthy: If the account has no debt or Maintenance health >= 1.
    """
    if report.requirement != RequirementType.MAINTENANCE:
        raise ValueError(f"eligibility needs a MAINTENANCE report, got {report.requirement}")
    if not report.has_liabilities or report.health_factor >= ONE:
        raise AccountHealthy(
            f"account {report.account_id} maintenance health is {report.health_factor}"
        )


# ============================================================================
# SIZING
# ============================================================================

def calculate_restore_amount(
    report: HealthReport,
    liability_bank: Bank,
    collateral_bank: Bank,
    liability_quote: PriceQuote,
    collateral_quote: PriceQuote,
    k: Decimal,
    places: int = FIXED_POINT_PLACES,
) -> Optional[Decimal]:
    """
    Repayment that brings Maintenance health back to exactly 1.0.

    Returns None when each repaid token removes no more weighted liability
    than weighted collateral, in which case no finite repayment restores
    health and the bound does not apply.
    """
    bonus = collateral_bank.config.liquidation_bonus
    liability_per_token = (liability_quote.price_high(k)
                           * liability_bank.config.liability_weight_maint)
    seized_per_token = liability_quote.price * (ONE + bonus) / collateral_quote.price
    collateral_per_token = (seized_per_token * collateral_quote.price_low(k)
                            * collateral_bank.config.asset_weight_maint)

    gap = liability_per_token - collateral_per_token
    if gap <= 0:
        return None
    shortfall = report.total_liability_value - report.total_collateral_value
    if shortfall <= 0:
        return ZERO
    return div_fixed(shortfall, gap, False, places)


def calculate_liquidation_plan(
    nominated_amount: Decimal,
    outstanding_liability: Decimal,
    available_collateral: Decimal,
    report: HealthReport,
    liability_bank: Bank,
    collateral_bank: Bank,
    liability_quote: PriceQuote,
    collateral_quote: PriceQuote,
    close_factor: Decimal,
    k: Decimal,
    places: int = FIXED_POINT_PLACES,
) -> LiquidationPlan:
    """
    Size a liquidation and split the seized collateral.

    The liquidation bonus and the insurance cut are the collateral bank's:
    riskier collateral is sold at a deeper discount.

    Args:
        nominated_amount: Tokens of debt the liquidator offers to repay
        outstanding_liability: Tokens the liquidatee owes the liability bank
        available_collateral: Tokens the liquidatee holds in the collateral bank
        report: Liquidatee's Maintenance report before settlement

    Raises:
        AccountHealthy: If the Maintenance shortfall is worth less than one
            unit of the liability asset at `places`.
        InvalidAmount: If the bounded repayment rounds to zero.
        InsufficientCollateral: If the collateral cannot cover the seizure.
    """
    max_close = round_down(close_factor * outstanding_liability, places)
    restore = calculate_restore_amount(
        report, liability_bank, collateral_bank, liability_quote, collateral_quote, k, places
    )

    if restore is not None and round_down(restore, places) == 0:
        raise AccountHealthy(
            f"maintenance shortfall of {report.shortfall} is below one unit of "
            f"{liability_bank.bank_id}"
        )

    repay = min(nominated_amount, outstanding_liability, max_close)
    if restore is not None:
        repay = min(repay, restore)
    repay = round_down(repay, places)
    if repay <= 0:
        raise InvalidAmount(
            f"liquidation of {nominated_amount} bounds to zero "
            f"(outstanding {outstanding_liability}, restore {restore})"
        )

    bonus = collateral_bank.config.liquidation_bonus
    cut = collateral_bank.config.insurance_fee_cut
    repaid_value = mul_fixed(repay, liability_quote.price, False, places)
    liquidator_value = repaid_value * (ONE + bonus - cut)
    insurance_value = repaid_value * cut

    liquidator_amount = div_fixed(liquidator_value, collateral_quote.price, False, places)
    insurance_amount = div_fixed(insurance_value, collateral_quote.price, False, places)
    seized = liquidator_amount + insurance_amount

    if seized > available_collateral:
        raise InsufficientCollateral(
            f"seizing {seized} of {collateral_bank.bank_id} needs more than the "
            f"{available_collateral} available"
        )

    return LiquidationPlan(
        repay_amount=repay,
        repaid_value=repaid_value,
        seized_amount=seized,
        liquidator_amount=liquidator_amount,
        insurance_amount=insurance_amount,
        max_close_amount=max_close,
        restore_amount=restore,
        health_before=report.health_factor,
    )


# ============================================================================
# POST-CHECKS
# ============================================================================

def check_liquidation_outcome(
    liquidatee_before: HealthReport,
    liquidatee_after: HealthReport,
    liquidator_after: HealthReport,
) -> None:
    """
    Raises:
        IllegalLiquidation: If the liquidatee's Maintenance health fell.
        HealthCheckFailed: If the liquidator ends below Initial health 1.0.
    """
    if liquidatee_after.health_factor < liquidatee_before.health_factor:
        raise IllegalLiquidation(
            f"liquidation would lower {liquidatee_after.account_id} maintenance health "
            f"from {liquidatee_before.health_factor} to {liquidatee_after.health_factor}"
        )
    if liquidator_after.health_factor < ONE:
        raise HealthCheckFailed(
            f"liquidator {liquidator_after.account_id} initial health "
            f"{liquidator_after.health_factor} < 1 after liquidation"
        )
