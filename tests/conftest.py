"""
conftest.py - Shared pytest fixtures for feeledger tests

Provides common fixtures used across unit, functional and conformance tests:
- Bare ledgers with the reference currency registered
- A constant-product exchange on that ledger
- Deployed tokens, before and after liquidity and trading are enabled
- Funded traders
"""

import pytest

from feeledger import TokenConfig

from tests.helpers import (
    OWNER, CHARITY, SUPPLY,
    make_ledger, make_exchange, deploy, seed_pool, fund_trader,
)


@pytest.fixture
def ledger():
    """Quiet ledger with ETH registered."""
    return make_ledger()


@pytest.fixture
def exchange(ledger):
    """(factory, router) over the ledger."""
    return make_exchange(ledger)


@pytest.fixture
def config():
    return TokenConfig(total_supply=SUPPLY, charity_wallet=CHARITY)


@pytest.fixture
def fresh_token(ledger, config):
    """Just deployed: no liquidity, trading disabled."""
    return deploy(ledger, config)


@pytest.fixture
def live_token(fresh_token):
    """Pool seeded and trading enabled."""
    seed_pool(fresh_token)
    fresh_token.policy.enable_trading(OWNER)
    return fresh_token


@pytest.fixture
def traders(live_token):
    """Three funded traders who have approved the router."""
    names = ["alice", "bob", "carol"]
    for name in names:
        fund_trader(live_token, name)
    return names
