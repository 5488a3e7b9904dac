"""
conftest.py - Shared pytest fixtures for lendpool tests

Provides common fixtures used across unit, functional and conformance tests:
- A static oracle with USDC, SOL and ETH quotes at T0
- An engine with one group, three banks and four accounts
- A funded engine where the liquidity provider has deposited in every bank

Plain helper functions live in tests/fake_oracle.py so that property tests,
which cannot use function-scoped fixtures, can build the same setups.
"""

import pytest

from tests.fake_oracle import build_engine, fund, standard_oracle


# =============================================================================
# FIXTURES
# =============================================================================

@pytest.fixture
def oracle():
    """Static oracle: USDC 1, SOL 100, ETH 2000, published at T0 with zero confidence."""
    return standard_oracle()


@pytest.fixture
def engine(oracle):
    """Engine with banks usdc/sol/eth in group 'core' and accounts lp, alice, bob, liquidator."""
    return build_engine(oracle)


@pytest.fixture
def funded_engine(engine):
    """Engine where lp has deposited 100k USDC, 1000 SOL and 100 ETH."""
    return fund(engine)
