"""
risk.py - Weighted valuation and health factors

For one account and one weight regime:

    asset value      = amount * price_low  * asset_weight
    liability value  = amount * price_high * liability_weight
    health_factor    = sum(asset values) / sum(liability values)
                       (+Infinity with no liabilities)

price_low/price_high come from the quote's confidence band (see oracle.py),
so collateral is never valued above what the feed is confident in and debt
never below. Asset values round down and liability values round up.

Regimes:
    INITIAL      gates withdraw and borrow: the result must keep health >= 1
    MAINTENANCE  health < 1 makes the account liquidatable
    EQUITY       unit weights; zero asset value with debt means bankruptcy

All functions are pure and take banks and quotes explicitly.
"""

from __future__ import annotations
from dataclasses import dataclass
from decimal import Decimal
from typing import Mapping, Tuple

from .account import Account, Balance, active_balances
from .bank import Bank
from .core import (
    FIXED_POINT_PLACES, INFINITY, ONE, ZERO,
    HealthCheckFailed, InvalidBank, RequirementType, StalePrice,
    check_fixed, mul_fixed,
)
from .oracle import PriceQuote
from .shares import asset_amount, liability_amount


@dataclass(frozen=True, slots=True)
class BalanceValuation:
    """Weighted valuation of one balance under one regime."""
    bank_id: str
    asset_amount: Decimal
    liability_amount: Decimal
    price: Decimal          # price_low for assets, price_high for liabilities
    weight: Decimal
    asset_value: Decimal
    liability_value: Decimal


@dataclass(frozen=True, slots=True)
class HealthReport:
    """
    Result of valuing an account.

    health_factor is Decimal('Infinity') when total_liability_value is zero.
    """
    account_id: str
    requirement: RequirementType
    total_collateral_value: Decimal
    total_liability_value: Decimal
    health_factor: Decimal
    valuations: Tuple[BalanceValuation, ...]

    @property
    def has_liabilities(self) -> bool:
        return self.total_liability_value > 0

    @property
    def is_healthy(self) -> bool:
        return self.health_factor >= ONE

    @property
    def shortfall(self) -> Decimal:
        """Weighted value missing to reach health 1.0 (0 when healthy)."""
        return max(self.total_liability_value - self.total_collateral_value, ZERO)


# ============================================================================
# PURE CALCULATION FUNCTIONS
# ============================================================================

def calculate_health_factor(collateral_value: Decimal, liability_value: Decimal) -> Decimal:
    if liability_value <= 0:
        return INFINITY
    return collateral_value / liability_value


def calculate_balance_valuation(
    balance: Balance,
    bank: Bank,
    quote: PriceQuote,
    requirement: RequirementType,
    k: Decimal,
    places: int = FIXED_POINT_PLACES,
) -> BalanceValuation:
    """Value one balance with conservative price bounds and regime weights."""
    if balance.is_liability:
        amount = liability_amount(balance.liability_shares, bank.state.borrow_index, places)
        price = quote.price_high(k)
        weight = bank.config.liability_weight(requirement)
        value = mul_fixed(mul_fixed(amount, price, True, places), weight, True, places)
        return BalanceValuation(
            bank_id=bank.bank_id,
            asset_amount=ZERO,
            liability_amount=amount,
            price=price,
            weight=weight,
            asset_value=ZERO,
            liability_value=value,
        )

    amount = asset_amount(balance.asset_shares, bank.state.deposit_index, places)
    price = quote.price_low(k)
    weight = bank.config.asset_weight(requirement)
    value = mul_fixed(mul_fixed(amount, price, False, places), weight, False, places)
    return BalanceValuation(
        bank_id=bank.bank_id,
        asset_amount=amount,
        liability_amount=ZERO,
        price=price,
        weight=weight,
        asset_value=value,
        liability_value=ZERO,
    )


def calculate_health(
    account: Account,
    banks: Mapping[str, Bank],
    quotes: Mapping[str, PriceQuote],
    requirement: RequirementType,
    k: Decimal,
    places: int = FIXED_POINT_PLACES,
) -> HealthReport:
    """
    Value every active balance of `account`.

    Args:
        account: Balance sheet to value
        banks: bank_id -> Bank, already accrued
        quotes: bank_id -> checked PriceQuote
        requirement: Weight regime
        k: Confidence multiplier

    Raises:
        InvalidBank: If a balance references a bank missing from `banks`.
        StalePrice: If a balance's bank has no quote in `quotes`.
    """
    valuations = []
    collateral = ZERO
    liabilities = ZERO
    for balance in active_balances(account):
        bank = banks.get(balance.bank_id)
        if bank is None:
            raise InvalidBank(f"account {account.account_id} references unknown bank {balance.bank_id}")
        quote = quotes.get(balance.bank_id)
        if quote is None:
            raise StalePrice(f"no price for bank {balance.bank_id}")
        valuation = calculate_balance_valuation(balance, bank, quote, requirement, k, places)
        valuations.append(valuation)
        collateral += valuation.asset_value
        liabilities += valuation.liability_value

    check_fixed(collateral, "collateral value")
    check_fixed(liabilities, "liability value")
    return HealthReport(
        account_id=account.account_id,
        requirement=requirement,
        total_collateral_value=collateral,
        total_liability_value=liabilities,
        health_factor=calculate_health_factor(collateral, liabilities),
        valuations=tuple(valuations),
    )


def check_initial_health(report: HealthReport) -> None:
    """
    Gate for risk-increasing operations.

    Raises:
        HealthCheckFailed: If the Initial health factor is below 1.0.
    """
    if report.requirement != RequirementType.INITIAL:
        raise ValueError(f"initial health check needs an INITIAL report, got {report.requirement}")
    if report.health_factor < ONE:
        raise HealthCheckFailed(
            f"account {report.account_id} initial health {report.health_factor:.6f} < 1 "
            f"(collateral {report.total_collateral_value}, "
            f"liabilities {report.total_liability_value})"
        )


def is_bankrupt(report: HealthReport) -> bool:
    """Debt outstanding with nothing of value left to seize."""
    return report.has_liabilities and report.total_collateral_value == 0
