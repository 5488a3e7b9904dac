"""
lendpool - Risk and solvency engine for pooled, over-collateralized lending

Share-based interest accrual, confidence-adjusted health factors, and
all-or-nothing liquidations over fixed-slot account balance sheets.

Usage:
    from datetime import datetime
    from decimal import Decimal
    from lendpool import (
        LendingEngine, StaticPriceOracle, BankConfig, InterestRateConfig,
    )

    t0 = datetime(2024, 1, 1)
    oracle = StaticPriceOracle()
    oracle.set_price("USDC/USD", Decimal("1"), t0)

    engine = LendingEngine("main", oracle, initial_time=t0)
    engine.register_group("core")
    engine.add_bank("usdc", "core", BankConfig(
        asset_id="USDC", oracle_ref="USDC/USD",
        asset_weight_init=Decimal("0.9"), asset_weight_maint=Decimal("0.95"),
        liability_weight_init=Decimal("1.1"), liability_weight_maint=Decimal("1.05"),
        interest_rate_config=InterestRateConfig(
            optimal_utilization=Decimal("0.8"), base_rate=Decimal("0.01"),
            optimal_rate=Decimal("0.10"), max_rate=Decimal("1.0"),
        ),
    ))
    engine.open_account("alice", "core")
    result = engine.deposit("alice", "usdc", Decimal("1000"))
"""

# Core types
from .core import (
    MAX_BALANCES,
    SECONDS_PER_YEAR,
    FIXED_POINT_PLACES,
    FIXED_POINT_MAX,
    EngineConfig,
    RequirementType,
    OperationStatus,
    LendingError,
    StalePrice,
    InvalidPrice,
    CapExceeded,
    InsufficientLiquidity,
    HealthCheckFailed,
    AccountHealthy,
    InsufficientCollateral,
    BalanceSlotsFull,
    MathOverflow,
    InvalidBank,
    InvalidAccount,
    InvalidAmount,
    IllegalBalanceState,
    IllegalLiquidation,
    BankPaused,
    BankReduceOnly,
    AccountDisabled,
    AccountNotBankrupt,
)

# Interest rate model
from .interest_rate import (
    InterestRateConfig,
    InterestRates,
    calculate_utilization,
    calculate_borrow_rate,
    calculate_interest_rates,
    rate_curve,
)

# Share ledger
from .shares import (
    AccrualResult,
    amount_to_shares,
    shares_to_amount,
    compound_index,
    calculate_accrual,
)

# Banks
from .bank import (
    Bank,
    BankConfig,
    BankState,
    BankOperationalState,
    create_bank,
    total_asset_amount,
    total_liability_amount,
    total_asset_value,
    total_liability_value,
    insurance_claim,
)

# Oracle
from .oracle import (
    PriceQuote,
    PriceOracle,
    StaticPriceOracle,
    TimeSeriesPriceOracle,
    fetch_checked_quote,
    confidence_multiplier,
)

# Accounts
from .account import (
    Account,
    Balance,
    create_account,
    find_balance,
    active_balances,
)

# Risk and liquidation
from .risk import (
    BalanceValuation,
    HealthReport,
    calculate_health,
    check_initial_health,
    is_bankrupt,
)
from .liquidation import (
    LiquidationPlan,
    calculate_liquidation_plan,
    calculate_restore_amount,
)

# Engine
from .engine import (
    LendingEngine,
    OperationResult,
    OperationRecord,
    AccessSet,
)

# Analytics
from .analytics import (
    health_under_price_shocks,
    shortfall_under_price_shocks,
    liquidation_price,
    distance_to_liquidation,
)

__all__ = [
    # Core
    'MAX_BALANCES', 'SECONDS_PER_YEAR', 'FIXED_POINT_PLACES', 'FIXED_POINT_MAX',
    'EngineConfig', 'RequirementType', 'OperationStatus',
    # Errors
    'LendingError', 'StalePrice', 'InvalidPrice', 'CapExceeded', 'InsufficientLiquidity',
    'HealthCheckFailed', 'AccountHealthy', 'InsufficientCollateral', 'BalanceSlotsFull',
    'MathOverflow', 'InvalidBank', 'InvalidAccount', 'InvalidAmount', 'IllegalBalanceState',
    'IllegalLiquidation', 'BankPaused', 'BankReduceOnly', 'AccountDisabled',
    'AccountNotBankrupt',
    # Interest rates
    'InterestRateConfig', 'InterestRates', 'calculate_utilization', 'calculate_borrow_rate',
    'calculate_interest_rates', 'rate_curve',
    # Shares
    'AccrualResult', 'amount_to_shares', 'shares_to_amount', 'compound_index',
    'calculate_accrual',
    # Banks
    'Bank', 'BankConfig', 'BankState', 'BankOperationalState', 'create_bank',
    'total_asset_amount', 'total_liability_amount', 'total_asset_value',
    'total_liability_value', 'insurance_claim',
    # Oracle
    'PriceQuote', 'PriceOracle', 'StaticPriceOracle', 'TimeSeriesPriceOracle',
    'fetch_checked_quote', 'confidence_multiplier',
    # Accounts
    'Account', 'Balance', 'create_account', 'find_balance', 'active_balances',
    # Risk and liquidation
    'BalanceValuation', 'HealthReport', 'calculate_health', 'check_initial_health',
    'is_bankrupt', 'LiquidationPlan', 'calculate_liquidation_plan',
    'calculate_restore_amount',
    # Engine
    'LendingEngine', 'OperationResult', 'OperationRecord', 'AccessSet',
    # Analytics
    'health_under_price_shocks', 'shortfall_under_price_shocks', 'liquidation_price',
    'distance_to_liquidation',
]

__version__ = '1.0.0'
