"""
Health Ordering Conformance Tests

INVARIANT: For every account with liabilities, at every instant:
    health(INITIAL) <= health(MAINTENANCE) <= health(EQUITY)

INVARIANT: Health never rises when
    - the collateral price falls, or
    - any quote's confidence interval widens.

Weights satisfy asset_weight_init <= asset_weight_maint <= 1 and
liability_weight_init >= liability_weight_maint >= 1, and every regime
values collateral at the low end of the band and debt at the high end.
"""

from decimal import Decimal

from hypothesis import given, settings
from hypothesis import strategies as st

from lendpool import Balance, PriceQuote, RequirementType, calculate_health, create_account
from lendpool.account import set_balance
from tests.fake_oracle import T0, make_bank


K = Decimal("2.12")


# =============================================================================
# STRATEGIES
# =============================================================================

positive = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("100000"), places=2,
                       allow_nan=False, allow_infinity=False)
price = st.decimals(min_value=Decimal("0.01"), max_value=Decimal("10000"), places=4,
                    allow_nan=False, allow_infinity=False)
confidence_fraction = st.decimals(min_value=Decimal("0"), max_value=Decimal("0.2"), places=4,
                                  allow_nan=False, allow_infinity=False)


@st.composite
def weights(draw):
    """(asset init, asset maint, liability init, liability maint) respecting the ordering."""
    asset = sorted(draw(st.lists(
        st.decimals(min_value=Decimal("0"), max_value=Decimal("1"), places=2,
                    allow_nan=False, allow_infinity=False), min_size=2, max_size=2)))
    liability = sorted(draw(st.lists(
        st.decimals(min_value=Decimal("1"), max_value=Decimal("2"), places=2,
                    allow_nan=False, allow_infinity=False), min_size=2, max_size=2)),
        reverse=True)
    return asset[0], asset[1], liability[0], liability[1]


def position(collateral, debt, bank_weights):
    asset_init, asset_maint, liability_init, liability_maint = bank_weights
    banks = {
        "sol": make_bank("sol", asset_weight_init=asset_init, asset_weight_maint=asset_maint),
        "usdc": make_bank("usdc", liability_weight_init=liability_init,
                          liability_weight_maint=liability_maint),
    }
    account = create_account("alice", "core")
    account = set_balance(account, Balance("sol", asset_shares=collateral))
    account = set_balance(account, Balance("usdc", liability_shares=debt))
    return account, banks


def quotes(sol_price, sol_conf, usdc_conf=Decimal("0")):
    return {
        "sol": PriceQuote(sol_price, sol_conf, T0),
        "usdc": PriceQuote(Decimal("1"), usdc_conf, T0),
    }


def health(account, banks, prices, requirement):
    return calculate_health(account, banks, prices, requirement, K).health_factor


# =============================================================================
# REGIME ORDERING
# =============================================================================

class TestRegimeOrdering:

    @given(positive, positive, price, confidence_fraction, weights())
    @settings(max_examples=100, deadline=None)
    def test_initial_le_maintenance_le_equity(self, collateral, debt, sol_price, fraction,
                                              bank_weights):
        account, banks = position(collateral, debt, bank_weights)
        prices = quotes(sol_price, sol_price * fraction)
        initial = health(account, banks, prices, RequirementType.INITIAL)
        maintenance = health(account, banks, prices, RequirementType.MAINTENANCE)
        equity = health(account, banks, prices, RequirementType.EQUITY)
        assert initial <= maintenance <= equity


# =============================================================================
# PRICE AND CONFIDENCE SENSITIVITY
# =============================================================================

class TestPriceSensitivity:

    @given(positive, positive, price, price, weights(),
           st.sampled_from(list(RequirementType)))
    @settings(max_examples=100, deadline=None)
    def test_lower_collateral_price_never_raises_health(self, collateral, debt, p1, p2,
                                                        bank_weights, requirement):
        low, high = sorted((p1, p2))
        account, banks = position(collateral, debt, bank_weights)
        at_low = health(account, banks, quotes(low, Decimal("0")), requirement)
        at_high = health(account, banks, quotes(high, Decimal("0")), requirement)
        assert at_low <= at_high

    @given(positive, positive, price, confidence_fraction, confidence_fraction, weights(),
           st.sampled_from(list(RequirementType)))
    @settings(max_examples=100, deadline=None)
    def test_wider_confidence_never_raises_health(self, collateral, debt, sol_price, f1, f2,
                                                  bank_weights, requirement):
        narrow, wide = sorted((f1, f2))
        account, banks = position(collateral, debt, bank_weights)
        tight = health(account, banks,
                       quotes(sol_price, sol_price * narrow, narrow), requirement)
        loose = health(account, banks,
                       quotes(sol_price, sol_price * wide, wide), requirement)
        assert loose <= tight
